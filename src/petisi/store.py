"""Hosted signature store backed by Supabase.

One table holds one flat row per signature::

    signatures(
        id, created_at,
        full_name, position,
        province_id, province_name, regency_id, regency_name,
        district_id, district_name, village_id, village_name,
        address,            -- free text, imported paper records only
        reason, signature   -- signature is a PNG data URI
    )

plus a ``get_petition_count()`` database function and a realtime
channel emitting INSERT events for the table. The store is a thin
async wrapper: errors from the backend propagate to the caller, which
decides whether they are user-facing (writes) or degrade silently
(reads).
"""

import logging
from typing import Any, Callable, Optional

from supabase import AsyncClient, acreate_client

from .config import Settings

logger = logging.getLogger("petisi.store")

FEED_COLUMNS = (
    "id, full_name, position, province_name, regency_name, district_name, "
    "village_name, address, created_at"
)

InsertCallback = Callable[[dict[str, Any]], None]


def extract_record(payload: Any) -> Optional[dict[str, Any]]:
    """Pull the inserted row out of a realtime change payload."""
    if not isinstance(payload, dict):
        return None
    data = payload.get("data")
    if isinstance(data, dict) and isinstance(data.get("record"), dict):
        return data["record"]
    for key in ("new", "record"):
        if isinstance(payload.get(key), dict):
            return payload[key]
    return None


class PetitionStore:
    """Reads and writes the ``signatures`` table.

    Args:
        client: Connected async Supabase client.
        table: Name of the signatures table.
        count_rpc: Name of the aggregate count function.
        schema: Database schema watched for realtime events.
    """

    def __init__(
        self,
        client: AsyncClient,
        table: str = "signatures",
        count_rpc: str = "get_petition_count",
        schema: str = "public",
    ) -> None:
        self._client = client
        self.table = table
        self.count_rpc_name = count_rpc
        self.schema = schema

    @classmethod
    async def connect(cls, settings: Settings) -> "PetitionStore":
        """Create a store from settings.

        Raises:
            ValueError: If the store URL or key is missing.
        """
        url, key = settings.require_store()
        client = await acreate_client(url, key)
        logger.info("Connected to store at %s", url)
        return cls(client, table=settings.signatures_table, count_rpc=settings.count_rpc)

    # ------------------------------------------------------------------
    # Writes
    # ------------------------------------------------------------------

    async def insert_signature(self, row: dict[str, Any]) -> dict[str, Any]:
        """Insert one signature row.

        Returns:
            The stored row as returned by the backend (or ``row`` when the
            backend returns no representation).
        """
        response = await self._client.table(self.table).insert([row]).execute()
        stored = response.data[0] if response.data else row
        logger.info("Inserted signature for %s", row.get("full_name"))
        return stored

    # ------------------------------------------------------------------
    # Reads
    # ------------------------------------------------------------------

    async def count_rpc(self) -> int:
        """Total signatures via the database aggregate function."""
        response = await self._client.rpc(self.count_rpc_name).execute()
        return int(response.data or 0)

    async def count_exact(self) -> int:
        """Total signatures via an exact count on the table."""
        response = await (
            self._client.table(self.table)
            .select("*", count="exact", head=True)
            .execute()
        )
        if response.count is None:
            raise RuntimeError("Store returned no count")
        return response.count

    async def recent(self, limit: int = 50) -> list[dict[str, Any]]:
        """Most recent rows, newest first."""
        response = await (
            self._client.table(self.table)
            .select(FEED_COLUMNS)
            .order("created_at", desc=True)
            .limit(limit)
            .execute()
        )
        return list(response.data or [])

    # ------------------------------------------------------------------
    # Realtime
    # ------------------------------------------------------------------

    async def subscribe_inserts(self, name: str, callback: InsertCallback) -> Any:
        """Subscribe to INSERT events on the table.

        Args:
            name: Channel name; each subscriber uses its own channel.
            callback: Receives every inserted row.

        Returns:
            The channel handle to pass to :meth:`unsubscribe`.
        """

        def _on_change(payload: Any) -> None:
            record = extract_record(payload)
            if record is None:
                logger.warning("Ignoring realtime payload without a record")
                return
            callback(record)

        channel = self._client.channel(name)
        channel.on_postgres_changes(
            "INSERT", schema=self.schema, table=self.table, callback=_on_change
        )
        await channel.subscribe()
        logger.info("Subscribed %s to inserts on %s", name, self.table)
        return channel

    async def unsubscribe(self, channel: Any) -> None:
        await self._client.remove_channel(channel)
        logger.info("Released realtime channel")
