"""Core data models for the petisi petition service.

A signer fills a four-step form: identity, administrative address,
signature, and a success screen showing the finished letter. The
address is a province → regency → district → village chain taken from
a public lookup dataset, and the finished record is written to the
``signatures`` table of the hosted store.

Records are built up in memory across steps and frozen at submission
time. Nothing is persisted locally.
"""

from datetime import datetime, timezone
from enum import Enum, IntEnum
from typing import Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator


FIXED_REASON = (
    "Menuntut kepastian status kepegawaian sebagai ASN Desa dalam UU ASN 2026."
)


# ---------------------------------------------------------------------------
# Enums
# ---------------------------------------------------------------------------

class FormStep(IntEnum):
    """Ordered steps of the petition form."""

    DETAILS = 0
    ADDRESS = 1
    SIGNATURE = 2
    SUCCESS = 3

    @property
    def label(self) -> str:
        return _STEP_LABELS[self]


_STEP_LABELS = {
    FormStep.DETAILS: "Biodata",
    FormStep.ADDRESS: "Alamat",
    FormStep.SIGNATURE: "Tanda Tangan",
    FormStep.SUCCESS: "Selesai",
}


class VillagePosition(str, Enum):
    """Fixed roles a village official can sign as."""

    KEPALA_DESA = "Kepala Desa"
    SEKRETARIS_DESA = "Sekretaris Desa"
    KAUR_KEUANGAN = "Kaur Keuangan"
    KAUR_PERENCANAAN = "Kaur Perencanaan"
    KAUR_TU_UMUM = "Kaur Tata Usaha & Umum"
    KASI_PEMERINTAHAN = "Kasi Pemerintahan"
    KASI_KESEJAHTERAAN = "Kasi Kesejahteraan"
    KASI_PELAYANAN = "Kasi Pelayanan"
    KEPALA_DUSUN = "Kepala Dusun"
    STAF = "Staf Perangkat Desa"
    BPD = "BPD"
    LAINNYA = "Lainnya"


VILLAGE_POSITIONS: list[str] = [p.value for p in VillagePosition]


# ---------------------------------------------------------------------------
# Administrative units
# ---------------------------------------------------------------------------

class AdministrativeUnit(BaseModel):
    """One node of the province/regency/district/village hierarchy.

    Attributes:
        id: Opaque identifier from the lookup dataset. The format is not
            guaranteed stable across providers.
        parent_id: Identifier of the parent unit (None for provinces).
        name: Display name.
    """

    model_config = ConfigDict(frozen=True)

    id: str
    parent_id: Optional[str] = None
    name: str


class Province(AdministrativeUnit):
    """Top level unit (provinsi)."""


class Regency(AdministrativeUnit):
    """Regency or city (kabupaten/kota), child of a province."""


class District(AdministrativeUnit):
    """District (kecamatan), child of a regency."""


class Village(AdministrativeUnit):
    """Village (desa/kelurahan), child of a district."""


# ---------------------------------------------------------------------------
# Signer record
# ---------------------------------------------------------------------------

class SignerRecord(BaseModel):
    """Everything describing one petition signature.

    Built incrementally by the form and frozen with :meth:`freeze`
    right before submission.

    Attributes:
        full_name: Signer's name as typed.
        position: One of :data:`VILLAGE_POSITIONS` (empty until chosen).
        province: Selected province.
        regency: Selected regency.
        district: Selected district.
        village: Selected village; implies the full chain above it.
        reason: Always :data:`FIXED_REASON` once the address step passes.
        signature: PNG image as a ``data:`` URI.
        created_at: Assigned by the store on insert.
    """

    full_name: str = ""
    position: str = ""
    province: Optional[Province] = None
    regency: Optional[Regency] = None
    district: Optional[District] = None
    village: Optional[Village] = None
    reason: str = ""
    signature: str = ""
    created_at: Optional[datetime] = None

    @property
    def is_submittable(self) -> bool:
        """Name, position, village and signature are all present."""
        return bool(
            self.full_name
            and self.position
            and self.village is not None
            and self.signature
        )

    @property
    def address_line(self) -> str:
        """Address in letter form, e.g. ``DS. X, KEC. Y, Z, W``."""
        return (
            f"DS. {_name(self.village)}, KEC. {_name(self.district)}, "
            f"{_name(self.regency)}, {_name(self.province)}"
        )

    def freeze(self) -> "FrozenSignerRecord":
        """Return an immutable copy for submission."""
        return FrozenSignerRecord.model_validate(self.model_dump())


class FrozenSignerRecord(SignerRecord):
    """A signer record that can no longer change."""

    model_config = ConfigDict(frozen=True)

    def freeze(self) -> "FrozenSignerRecord":
        return self


def _name(unit: Optional[AdministrativeUnit]) -> str:
    return unit.name if unit is not None else ""


# ---------------------------------------------------------------------------
# Rows read back from the store
# ---------------------------------------------------------------------------

class SignerRow(BaseModel):
    """A row of the ``signatures`` table as shown in the recent feed.

    ``address`` is a free-text fallback carried by records imported from
    paper forms; structured rows leave it empty.
    """

    model_config = ConfigDict(extra="ignore")

    id: str
    full_name: str
    position: str = ""
    province_name: Optional[str] = None
    regency_name: Optional[str] = None
    district_name: Optional[str] = None
    village_name: Optional[str] = None
    address: Optional[str] = None
    created_at: datetime = Field(
        default_factory=lambda: datetime.now(timezone.utc)
    )

    @field_validator("id", mode="before")
    @classmethod
    def _coerce_id(cls, value: object) -> str:
        return str(value)
