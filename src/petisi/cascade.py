"""Four-level address selection: province → regency → district → village.

The state is a single immutable :class:`CascadeState` keyed by level.
:func:`select_at` is the only place that applies the clear-downstream
rule; :class:`AddressCascade` wires it to the geo lookup and notifies
its consumer with the full selection tuple after every change.
"""

import logging
from dataclasses import dataclass, replace
from enum import IntEnum
from typing import Awaitable, Callable, Optional, Sequence

from .geo import GeoLookupClient
from .models import AdministrativeUnit, District, Province, Regency, Village

logger = logging.getLogger("petisi.cascade")

Selection = tuple[
    Optional[Province], Optional[Regency], Optional[District], Optional[Village]
]
AddressListener = Callable[
    [Optional[Province], Optional[Regency], Optional[District], Optional[Village]],
    None,
]


class AddressLevel(IntEnum):
    """Depth in the administrative hierarchy."""

    PROVINCE = 0
    REGENCY = 1
    DISTRICT = 2
    VILLAGE = 3

    @property
    def child(self) -> Optional["AddressLevel"]:
        """The level whose options depend on this one (None for villages)."""
        if self is AddressLevel.VILLAGE:
            return None
        return AddressLevel(self + 1)


_EMPTY_SELECTED: tuple[Optional[AdministrativeUnit], ...] = (None,) * len(AddressLevel)
_EMPTY_OPTIONS: tuple[tuple[AdministrativeUnit, ...], ...] = ((),) * len(AddressLevel)


@dataclass(frozen=True)
class CascadeState:
    """Selections and option lists of all four levels.

    Attributes:
        selected: Chosen unit per level (None = nothing chosen).
        options: Units offered per level.
        loading: Level whose options are currently being fetched.
    """

    selected: tuple[Optional[AdministrativeUnit], ...] = _EMPTY_SELECTED
    options: tuple[tuple[AdministrativeUnit, ...], ...] = _EMPTY_OPTIONS
    loading: Optional[AddressLevel] = None

    @property
    def selection(self) -> Selection:
        return tuple(self.selected)  # type: ignore[return-value]

    def selected_at(self, level: AddressLevel) -> Optional[AdministrativeUnit]:
        return self.selected[level]

    def options_at(self, level: AddressLevel) -> tuple[AdministrativeUnit, ...]:
        return self.options[level]

    def with_options(
        self, level: AddressLevel, units: Sequence[AdministrativeUnit]
    ) -> "CascadeState":
        """Replace the option list of ``level`` and finish its loading."""
        options = list(self.options)
        options[level] = tuple(units)
        loading = None if self.loading == level else self.loading
        return replace(self, options=tuple(options), loading=loading)


def select_at(
    state: CascadeState,
    level: AddressLevel,
    unit: Optional[AdministrativeUnit],
) -> CascadeState:
    """Select ``unit`` at ``level`` and clear everything below it.

    Choosing nothing (``unit=None``) cascades the same way as choosing a
    new unit. When a unit is chosen above the village level, the child
    level is marked as loading.
    """
    level = AddressLevel(level)
    selected = list(state.selected)
    options = list(state.options)
    selected[level] = unit
    for lower in range(level + 1, len(AddressLevel)):
        selected[lower] = None
        options[lower] = ()

    loading = state.loading
    if loading is not None and loading > level:
        loading = None
    if unit is not None and level.child is not None:
        loading = level.child
    return CascadeState(selected=tuple(selected), options=tuple(options), loading=loading)


class AddressCascade:
    """Owns the cascade state and fetches child options on demand.

    Args:
        geo: Region lookup used to fill each level.
        on_change: Called with ``(province, regency, district, village)``
            whenever any level changes.
    """

    def __init__(
        self,
        geo: GeoLookupClient,
        on_change: Optional[AddressListener] = None,
    ) -> None:
        self.geo = geo
        self.on_change = on_change
        self.state = CascadeState()
        self._loaders: dict[AddressLevel, Callable[[str], Awaitable[list]]] = {
            AddressLevel.REGENCY: geo.get_regencies,
            AddressLevel.DISTRICT: geo.get_districts,
            AddressLevel.VILLAGE: geo.get_villages,
        }

    @property
    def selection(self) -> Selection:
        return self.state.selection

    def is_loading(self, level: AddressLevel) -> bool:
        return self.state.loading == level

    def is_enabled(self, level: AddressLevel) -> bool:
        """A level accepts input once its parent is chosen and loaded."""
        if self.is_loading(level):
            return False
        if level == AddressLevel.PROVINCE:
            return True
        return self.state.selected[level - 1] is not None

    async def mount(self) -> None:
        """Fetch the province list."""
        self.state = replace(self.state, loading=AddressLevel.PROVINCE)
        provinces = await self.geo.get_provinces()
        self.state = self.state.with_options(AddressLevel.PROVINCE, provinces)
        logger.debug("Loaded %d provinces", len(provinces))

    async def select(self, level: AddressLevel, unit_id: Optional[str]) -> Selection:
        """Select the unit with ``unit_id`` at ``level``.

        An empty or unknown id selects nothing. Children of the new
        selection are fetched afterwards; a response that arrives after
        the parent selection has changed again is discarded.

        Returns:
            The selection tuple after the change.
        """
        level = AddressLevel(level)
        unit = self._resolve(level, unit_id)
        self.state = select_at(self.state, level, unit)
        self._notify()

        child = level.child
        if unit is None or child is None:
            return self.selection

        units = await self._loaders[child](unit.id)
        if self.state.selected[level] != unit:
            logger.debug(
                "Dropping %d stale %s options for %s",
                len(units),
                child.name.lower(),
                unit.id,
            )
            return self.selection
        self.state = self.state.with_options(child, units)
        return self.selection

    def reset(self) -> None:
        """Forget every selection but keep the province list."""
        provinces = self.state.options[AddressLevel.PROVINCE]
        self.state = CascadeState().with_options(AddressLevel.PROVINCE, provinces)
        self._notify()

    def _resolve(
        self, level: AddressLevel, unit_id: Optional[str]
    ) -> Optional[AdministrativeUnit]:
        if not unit_id:
            return None
        for unit in self.state.options[level]:
            if unit.id == unit_id:
                return unit
        return None

    def _notify(self) -> None:
        if self.on_change is not None:
            self.on_change(*self.selection)
