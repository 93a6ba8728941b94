"""Petition form state machine.

    DETAILS ──next──▶ ADDRESS ──next──▶ SIGNATURE ──submit──▶ SUCCESS
       ◀──back───        ◀──back───

Forward moves check the fields of the step being left; a blocked move
alerts the user, raises :class:`StepBlocked` and changes nothing.
Backward moves are always allowed and keep what was entered. SUCCESS is
terminal: the only way out is :meth:`PetitionForm.reset`.
"""

import logging
from typing import Any, Callable, Optional

from .models import (
    FIXED_REASON,
    District,
    FormStep,
    Province,
    Regency,
    SignerRecord,
    Village,
)
from .submission import SubmissionClient, SubmissionError

logger = logging.getLogger("petisi.form")

MSG_DETAILS_REQUIRED = "Mohon lengkapi nama dan jabatan."
MSG_ADDRESS_REQUIRED = "Mohon lengkapi alamat hingga tingkat Desa/Kelurahan."
MSG_SIGNATURE_REQUIRED = "Mohon tanda tangan terlebih dahulu."
MSG_SUBMIT_IN_FLIGHT = "Pernyataan sedang dikirim, mohon tunggu."
MSG_ALREADY_SUBMITTED = "Pernyataan sudah terkirim. Buat formulir baru untuk mengisi lagi."
MSG_WRONG_STEP = "Lengkapi langkah sebelumnya terlebih dahulu."

Alert = Callable[[str], None]


class StepBlocked(ValueError):
    """A transition was refused; the message is what the user was shown."""


def submit_failure_message(message: str) -> str:
    return f"Maaf, gagal menyimpan data: {message}"


class PetitionForm:
    """Owns the step, the in-progress record and submission.

    Args:
        submitter: Client used for the single remote insert.
        alert: Sink for blocking user messages.
    """

    def __init__(self, submitter: SubmissionClient, alert: Optional[Alert] = None) -> None:
        self.submitter = submitter
        self.alert = alert or (lambda message: logger.info("Alert: %s", message))
        self.step = FormStep.DETAILS
        self.record = SignerRecord()
        self.submitting = False
        self.stored_row: Optional[dict[str, Any]] = None

    def reset(self) -> None:
        """Start over with an empty record.

        Raises:
            StepBlocked: While a submission is in flight.
        """
        if self.submitting:
            raise StepBlocked(MSG_SUBMIT_IN_FLIGHT)
        self.step = FormStep.DETAILS
        self.record = SignerRecord()
        self.submitting = False
        self.stored_row = None

    # ------------------------------------------------------------------
    # Field input
    # ------------------------------------------------------------------

    def set_full_name(self, full_name: str) -> None:
        self.ensure_open()
        self.record.full_name = full_name

    def set_position(self, position: str) -> None:
        self.ensure_open()
        self.record.position = position

    def on_address_change(
        self,
        province: Optional[Province],
        regency: Optional[Regency],
        district: Optional[District],
        village: Optional[Village],
    ) -> None:
        """Receive the full address tuple from the cascade."""
        self.ensure_open()
        self.record.province = province
        self.record.regency = regency
        self.record.district = district
        self.record.village = village

    def on_sign(self, data_uri: str) -> None:
        self.ensure_open()
        self.record.signature = data_uri

    def on_clear(self) -> None:
        self.ensure_open()
        self.record.signature = ""

    # ------------------------------------------------------------------
    # Navigation
    # ------------------------------------------------------------------

    def next(self) -> FormStep:
        """Advance one step after checking the current step's fields."""
        if self.submitting:
            raise StepBlocked(MSG_SUBMIT_IN_FLIGHT)
        if self.step == FormStep.DETAILS:
            if not self.record.full_name or not self.record.position:
                self._block(MSG_DETAILS_REQUIRED)
            self.step = FormStep.ADDRESS
        elif self.step == FormStep.ADDRESS:
            if self.record.village is None:
                self._block(MSG_ADDRESS_REQUIRED)
            self.record.reason = FIXED_REASON
            self.step = FormStep.SIGNATURE
        elif self.step == FormStep.SIGNATURE:
            self._block(MSG_SIGNATURE_REQUIRED if not self.record.signature else MSG_WRONG_STEP)
        else:
            self._block(MSG_ALREADY_SUBMITTED)
        logger.info("Form moved to %s", self.step.name)
        return self.step

    def back(self) -> FormStep:
        """Go back one step, keeping entered data."""
        if self.submitting:
            raise StepBlocked(MSG_SUBMIT_IN_FLIGHT)
        if self.step == FormStep.SUCCESS:
            self._block(MSG_ALREADY_SUBMITTED)
        if self.step > FormStep.DETAILS:
            self.step = FormStep(self.step - 1)
        return self.step

    async def submit(self) -> FormStep:
        """Write the record and move to SUCCESS on a confirmed insert.

        Raises:
            StepBlocked: If the form is not on the signature step, has no
                signature, or a submission is already in flight.
            SubmissionError: If the store write failed. The form stays on
                SIGNATURE and keeps the captured signature.
        """
        if self.step == FormStep.SUCCESS:
            self._block(MSG_ALREADY_SUBMITTED)
        if self.step != FormStep.SIGNATURE:
            self._block(MSG_WRONG_STEP)
        if self.submitting:
            raise StepBlocked(MSG_SUBMIT_IN_FLIGHT)
        if not self.record.signature:
            self._block(MSG_SIGNATURE_REQUIRED)
        if not self.record.reason:
            self.record.reason = FIXED_REASON

        frozen = self.record.freeze()
        self.submitting = True
        try:
            row = await self.submitter.submit(frozen)
        except SubmissionError as exc:
            self.alert(submit_failure_message(exc.message))
            raise
        finally:
            self.submitting = False

        self.stored_row = row
        # the letter shows exactly what was stored
        data = frozen.model_dump()
        data["created_at"] = row.get("created_at") or data["created_at"]
        self.record = SignerRecord.model_validate(data).freeze()
        self.step = FormStep.SUCCESS
        logger.info("Petition submitted by %s", self.record.full_name)
        return self.step

    # ------------------------------------------------------------------
    # Helpers
    # ------------------------------------------------------------------

    @property
    def progress(self) -> list[tuple[FormStep, bool]]:
        """Every step with whether it has been reached."""
        return [(step, self.step >= step) for step in FormStep]

    def _block(self, message: str) -> None:
        self.alert(message)
        raise StepBlocked(message)

    def ensure_open(self) -> None:
        """Raise :class:`StepBlocked` unless the record may still change."""
        if self.step == FormStep.SUCCESS:
            raise StepBlocked(MSG_ALREADY_SUBMITTED)
        if self.submitting:
            raise StepBlocked(MSG_SUBMIT_IN_FLIGHT)
