"""Live sidebar: total signature count and the recent-signers feed.

Both views load once and then follow INSERT events from the store.
They subscribe independently, on separate channels, and make no
ordering promise relative to each other. The count is never re-queried
after the initial load, so it drifts if events are missed until the
next reload.

A subscription is a scoped resource: use :func:`subscribed` (or pair
``activate``/``deactivate`` yourself) so the channel is released on
every exit path.
"""

import logging
from abc import ABC, abstractmethod
from contextlib import asynccontextmanager
from datetime import datetime, timezone
from typing import Any, AsyncIterator, Optional

from pydantic import ValidationError

from .config import DEFAULT_SIGNATURE_TARGET
from .models import SignerRow
from .store import PetitionStore

logger = logging.getLogger("petisi.live")

INITIAL_SIGNERS = 50
MAX_SIGNERS = 100

_SHORT_MONTHS = (
    "Jan", "Feb", "Mar", "Apr", "Mei", "Jun",
    "Jul", "Agu", "Sep", "Okt", "Nov", "Des",
)


class _LiveFeed(ABC):
    """Shared subscription plumbing."""

    channel_name = "public:signatures"

    def __init__(self, store: PetitionStore) -> None:
        self.store = store
        self.loading = True
        self._channel: Optional[Any] = None

    @property
    def active(self) -> bool:
        return self._channel is not None

    @abstractmethod
    async def load(self) -> None:
        """Fetch the initial snapshot from the store."""

    @abstractmethod
    def on_insert(self, row: dict[str, Any]) -> None:
        """Apply one inserted row to the snapshot."""

    async def activate(self) -> None:
        """Load the initial view and start following inserts."""
        if self.active:
            return
        await self.load()
        try:
            self._channel = await self.store.subscribe_inserts(
                self.channel_name, self.on_insert
            )
        except Exception as exc:
            logger.error("Realtime subscription failed for %s: %s", self.channel_name, exc)

    async def deactivate(self) -> None:
        """Release the realtime channel."""
        channel, self._channel = self._channel, None
        if channel is not None:
            await self.store.unsubscribe(channel)


class LiveStats(_LiveFeed):
    """Total signature count with optimistic increments.

    Args:
        store: Signature store.
        target: Goal used for :attr:`percentage`.
    """

    def __init__(self, store: PetitionStore, target: int = DEFAULT_SIGNATURE_TARGET) -> None:
        super().__init__(store)
        self.target = target
        self.total = 0

    async def load(self) -> None:
        """Read the count via the RPC, falling back to an exact count."""
        self.loading = True
        try:
            self.total = await self.store.count_rpc()
        except Exception as exc:
            logger.warning("RPC count failed, using fallback method: %s", exc)
            try:
                self.total = await self.store.count_exact()
            except Exception as inner:
                logger.error("Exact count failed: %s", inner)
        finally:
            self.loading = False

    def on_insert(self, row: dict[str, Any]) -> None:
        self.total += 1

    @property
    def percentage(self) -> float:
        if self.target <= 0:
            return 100.0
        return min(self.total / self.target * 100, 100.0)


class RecentSigners(_LiveFeed):
    """Newest-first list of recent signers, capped at :data:`MAX_SIGNERS`."""

    channel_name = "public:signatures_list"

    def __init__(
        self,
        store: PetitionStore,
        initial: int = INITIAL_SIGNERS,
        cap: int = MAX_SIGNERS,
    ) -> None:
        super().__init__(store)
        self.initial = initial
        self.cap = cap
        self.signers: list[SignerRow] = []

    async def load(self) -> None:
        self.loading = True
        try:
            rows = await self.store.recent(self.initial)
            self.signers = [SignerRow.model_validate(r) for r in rows]
        except Exception as exc:
            logger.error("Error fetching signers: %s", exc)
        finally:
            self.loading = False

    def on_insert(self, row: dict[str, Any]) -> None:
        try:
            signer = SignerRow.model_validate(row)
        except ValidationError as exc:
            logger.warning("Ignoring malformed signer event: %s", exc)
            return
        self.signers = [signer, *self.signers][: self.cap]


@asynccontextmanager
async def subscribed(*feeds: _LiveFeed) -> AsyncIterator[tuple[_LiveFeed, ...]]:
    """Activate ``feeds`` for the duration of the block."""
    activated: list[_LiveFeed] = []
    try:
        for feed in feeds:
            await feed.activate()
            activated.append(feed)
        yield feeds
    finally:
        for feed in reversed(activated):
            try:
                await feed.deactivate()
            except Exception as exc:
                logger.error("Failed to release %s: %s", type(feed).__name__, exc)


# ---------------------------------------------------------------------------
# Presentation
# ---------------------------------------------------------------------------

def format_location(row: SignerRow) -> str:
    """Short location label for a feed entry."""
    if row.village_name and row.regency_name:
        return f"{row.village_name}, {row.regency_name}"
    if row.address:
        if len(row.address) > 35:
            return row.address[:35] + "..."
        return row.address
    return row.province_name or "Indonesia"


def format_relative_time(created_at: datetime, now: Optional[datetime] = None) -> str:
    """Age of an entry, e.g. ``"5 menit lalu"`` or ``"3 Okt"``."""
    if created_at.tzinfo is None:
        created_at = created_at.replace(tzinfo=timezone.utc)
    now = now or datetime.now(timezone.utc)
    if now.tzinfo is None:
        now = now.replace(tzinfo=timezone.utc)
    seconds = int((now - created_at).total_seconds())
    if seconds < 60:
        return "Baru saja"
    if seconds < 3600:
        return f"{seconds // 60} menit lalu"
    if seconds < 86400:
        return f"{seconds // 3600} jam lalu"
    return f"{created_at.day} {_SHORT_MONTHS[created_at.month - 1]}"


def format_count(value: int) -> str:
    """Thousands separated with dots, Indonesian style."""
    return f"{value:,}".replace(",", ".")
