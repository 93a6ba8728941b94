"""Writes a frozen signer record to the store.

Exactly one insert per call. There is no retry and no idempotency key;
duplicate clicks are held back by the form's in-flight flag.
"""

import logging
from typing import Any

from .models import FIXED_REASON, SignerRecord
from .store import PetitionStore

logger = logging.getLogger("petisi.submission")

NETWORK_ERROR_MESSAGE = "Terjadi kesalahan jaringan"


class SubmissionError(RuntimeError):
    """The store rejected or failed the insert.

    Attributes:
        message: Backend error text, or a generic network message.
    """

    def __init__(self, message: str) -> None:
        self.message = message
        super().__init__(message)


def to_row(record: SignerRecord) -> dict[str, Any]:
    """Map a record onto the flat column names of the signatures table."""

    def unit_columns(prefix: str, unit: Any) -> dict[str, Any]:
        return {
            f"{prefix}_id": unit.id if unit is not None else None,
            f"{prefix}_name": unit.name if unit is not None else None,
        }

    row: dict[str, Any] = {
        "full_name": record.full_name,
        "position": record.position,
    }
    row.update(unit_columns("province", record.province))
    row.update(unit_columns("regency", record.regency))
    row.update(unit_columns("district", record.district))
    row.update(unit_columns("village", record.village))
    row["reason"] = FIXED_REASON
    row["signature"] = record.signature
    return row


def error_message(exc: BaseException) -> str:
    """Best human-readable text for a backend failure."""
    message = getattr(exc, "message", None)
    if isinstance(message, str) and message:
        return message
    text = str(exc)
    return text or NETWORK_ERROR_MESSAGE


class SubmissionClient:
    """Submits records to a :class:`PetitionStore`."""

    def __init__(self, store: PetitionStore) -> None:
        self.store = store

    async def submit(self, record: SignerRecord) -> dict[str, Any]:
        """Insert ``record`` once.

        Returns:
            The stored row.

        Raises:
            SubmissionError: On any backend or network failure.
        """
        frozen = record.freeze()
        try:
            return await self.store.insert_signature(to_row(frozen))
        except Exception as exc:
            logger.error("Error submitting petition: %s", exc)
            raise SubmissionError(error_message(exc)) from exc
