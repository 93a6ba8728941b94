"""Client for the public Indonesian administrative-region dataset.

The dataset is a set of static JSON files, one per parent::

    propinsi.json
    kabupaten/<province id>.json
    kecamatan/<regency id>.json
    kelurahan/<district id>.json

Each file is an array of ``{"id", "nama", "id_<parent>"}`` objects. The
field names are provider specific, so every item goes through
:func:`normalize` before leaving this module.

Lookups are read-only and never raise: any failure is logged and
degrades to an empty list so the dependent select simply shows no
options.
"""

import logging
from typing import Any, Optional, TypeVar

import httpx

from .config import DEFAULT_GEO_BASE_URL
from .models import AdministrativeUnit, District, Province, Regency, Village

logger = logging.getLogger("petisi.geo")

U = TypeVar("U", bound=AdministrativeUnit)

# (path template, parent field) per unit type
_ENDPOINTS: dict[type, tuple[str, Optional[str]]] = {
    Province: ("propinsi.json", None),
    Regency: ("kabupaten/{parent}.json", "id_propinsi"),
    District: ("kecamatan/{parent}.json", "id_kabupaten"),
    Village: ("kelurahan/{parent}.json", "id_kecamatan"),
}

_NAME_KEYS = ("nama", "name")


def normalize(item: dict[str, Any], unit_type: type[U], parent_id: Optional[str] = None) -> U:
    """Map a raw dataset item onto an administrative unit.

    Args:
        item: One object from the dataset.
        unit_type: Target model (Province, Regency, District, Village).
        parent_id: Fallback parent id when the item does not carry one.

    Returns:
        The normalized unit.

    Raises:
        KeyError: If the item has no id or no name.
    """
    _, parent_key = _ENDPOINTS[unit_type]
    name = next((item[k] for k in _NAME_KEYS if item.get(k) is not None), None)
    if name is None:
        raise KeyError("name")
    parent = item.get(parent_key) if parent_key else None
    if parent is None:
        parent = item.get("parent_id", parent_id)
    return unit_type(
        id=str(item["id"]),
        parent_id=str(parent) if parent is not None else None,
        name=str(name),
    )


class GeoLookupClient:
    """Fetches provinces, regencies, districts and villages.

    Args:
        http: Shared ``httpx.AsyncClient``. When omitted the client owns
            one and closes it in :meth:`aclose`.
        base_url: Root of the dataset.
        timeout: Per-request timeout in seconds for an owned client.
    """

    def __init__(
        self,
        http: Optional[httpx.AsyncClient] = None,
        base_url: str = DEFAULT_GEO_BASE_URL,
        timeout: float = 15.0,
    ) -> None:
        self.base_url = base_url.rstrip("/")
        self._owns_http = http is None
        self._http = http or httpx.AsyncClient(timeout=timeout)

    async def aclose(self) -> None:
        if self._owns_http:
            await self._http.aclose()

    async def __aenter__(self) -> "GeoLookupClient":
        return self

    async def __aexit__(self, *exc_info: object) -> None:
        await self.aclose()

    async def get_provinces(self) -> list[Province]:
        return await self._fetch(Province)

    async def get_regencies(self, province_id: str) -> list[Regency]:
        return await self._fetch(Regency, province_id)

    async def get_districts(self, regency_id: str) -> list[District]:
        return await self._fetch(District, regency_id)

    async def get_villages(self, district_id: str) -> list[Village]:
        return await self._fetch(Village, district_id)

    async def _fetch(self, unit_type: type[U], parent_id: Optional[str] = None) -> list[U]:
        path, _ = _ENDPOINTS[unit_type]
        url = f"{self.base_url}/{path.format(parent=parent_id)}"
        try:
            response = await self._http.get(url)
            response.raise_for_status()
            data = response.json()
            return [normalize(item, unit_type, parent_id) for item in data]
        except (httpx.HTTPError, ValueError, KeyError, TypeError, AttributeError) as exc:
            logger.error(
                "Failed to fetch %s for parent %s: %s",
                unit_type.__name__.lower(),
                parent_id,
                exc,
            )
            return []
