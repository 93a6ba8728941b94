"""Tests for the four-level address cascade."""

import asyncio

import pytest

from petisi.cascade import AddressCascade, AddressLevel, CascadeState, select_at
from petisi.models import District, Province, Regency, Village


def _full_state() -> CascadeState:
    units = (
        Province(id="32", name="JAWA BARAT"),
        Regency(id="3204", parent_id="32", name="KAB. BANDUNG"),
        District(id="3204010", parent_id="3204", name="CIWIDEY"),
        Village(id="3204010001", parent_id="3204010", name="SUKAMAJU"),
    )
    return CascadeState(selected=units, options=tuple((u,) for u in units))


class TestSelectAt:
    """The clear-downstream rule."""

    @pytest.mark.parametrize("level", list(AddressLevel))
    def test_clears_every_lower_level(self, level):
        new_unit = Province(id="x", name="X")
        state = select_at(_full_state(), level, new_unit)
        assert state.selected[level] == new_unit
        for lower in range(level + 1, len(AddressLevel)):
            assert state.selected[lower] is None
            assert state.options[lower] == ()
        for upper in range(level):
            assert state.selected[upper] is not None

    def test_selecting_nothing_also_cascades(self):
        state = select_at(_full_state(), AddressLevel.REGENCY, None)
        assert state.selection == (_full_state().selected[0], None, None, None)
        assert state.loading is None

    def test_marks_child_loading(self):
        state = select_at(CascadeState(), AddressLevel.DISTRICT, District(id="d", name="D"))
        assert state.loading == AddressLevel.VILLAGE
        assert select_at(state, AddressLevel.VILLAGE, Village(id="v", name="V")).loading is None

    def test_input_state_untouched(self):
        before = _full_state()
        select_at(before, AddressLevel.PROVINCE, None)
        assert before.selected[3] is not None


class TestAddressCascade:
    """Controller wired to the mock dataset."""

    def test_full_selection_notifies_consumer(self, geo):
        seen = []
        cascade = AddressCascade(geo, on_change=lambda *units: seen.append(units))

        async def run():
            await cascade.mount()
            await cascade.select(AddressLevel.PROVINCE, "32")
            await cascade.select(AddressLevel.REGENCY, "3204")
            await cascade.select(AddressLevel.DISTRICT, "3204010")
            return await cascade.select(AddressLevel.VILLAGE, "3204010001")

        province, regency, district, village = asyncio.run(run())
        assert (province.name, regency.name, district.name, village.name) == (
            "JAWA BARAT", "KAB. BANDUNG", "CIWIDEY", "SUKAMAJU",
        )
        assert len(seen) == 4
        assert seen[-1][3] == village

    def test_enabled_follows_parent(self, geo):
        cascade = AddressCascade(geo)
        asyncio.run(cascade.mount())
        assert cascade.is_enabled(AddressLevel.PROVINCE)
        assert not cascade.is_enabled(AddressLevel.REGENCY)
        asyncio.run(cascade.select(AddressLevel.PROVINCE, "32"))
        assert cascade.is_enabled(AddressLevel.REGENCY)
        assert not cascade.is_loading(AddressLevel.REGENCY)

    def test_new_parent_clears_children(self, geo):
        cascade = AddressCascade(geo)

        async def run():
            await cascade.mount()
            await cascade.select(AddressLevel.PROVINCE, "32")
            await cascade.select(AddressLevel.REGENCY, "3204")
            await cascade.select(AddressLevel.DISTRICT, "3204010")
            await cascade.select(AddressLevel.PROVINCE, "33")

        asyncio.run(run())
        state = cascade.state
        assert state.selected[1:] == (None, None, None)
        assert [r.name for r in state.options[AddressLevel.REGENCY]] == ["KAB. CILACAP"]
        assert state.options[AddressLevel.DISTRICT] == ()
        assert state.options[AddressLevel.VILLAGE] == ()

    def test_unknown_id_selects_nothing(self, geo):
        cascade = AddressCascade(geo)
        asyncio.run(cascade.mount())
        assert asyncio.run(cascade.select(AddressLevel.PROVINCE, "nope")) == (None,) * 4

    def test_failed_lookup_leaves_level_empty(self, geo):
        cascade = AddressCascade(geo)

        async def run():
            await cascade.mount()
            await cascade.select(AddressLevel.PROVINCE, "32")
            await cascade.select(AddressLevel.REGENCY, "3273")

        asyncio.run(run())
        assert cascade.state.options[AddressLevel.DISTRICT] == ()
        assert cascade.is_enabled(AddressLevel.DISTRICT)

    def test_reset_keeps_provinces(self, geo):
        seen = []
        cascade = AddressCascade(geo, on_change=lambda *units: seen.append(units))

        async def run():
            await cascade.mount()
            await cascade.select(AddressLevel.PROVINCE, "32")

        asyncio.run(run())
        cascade.reset()
        assert cascade.selection == (None,) * 4
        assert len(cascade.state.options[AddressLevel.PROVINCE]) == 2
        assert seen[-1] == (None,) * 4


class _SlowGeo:
    """Regencies of province 32 are held back until ``release`` is set."""

    def __init__(self) -> None:
        self.release = asyncio.Event()

    async def get_provinces(self):
        return [Province(id="32", name="JAWA BARAT"), Province(id="33", name="JAWA TENGAH")]

    async def get_regencies(self, province_id):
        if province_id == "32":
            await self.release.wait()
        return [Regency(id=province_id + "01", parent_id=province_id, name=f"KAB {province_id}")]

    async def get_districts(self, regency_id):
        return []

    async def get_villages(self, district_id):
        return []


class TestInFlightLookups:
    def test_child_is_loading_and_disabled_mid_fetch(self):
        geo = _SlowGeo()
        cascade = AddressCascade(geo)
        during = {}

        async def run():
            await cascade.mount()
            pending = asyncio.create_task(cascade.select(AddressLevel.PROVINCE, "32"))
            await asyncio.sleep(0)
            during["loading"] = cascade.is_loading(AddressLevel.REGENCY)
            during["enabled"] = cascade.is_enabled(AddressLevel.REGENCY)
            during["district_enabled"] = cascade.is_enabled(AddressLevel.DISTRICT)
            geo.release.set()
            await pending

        asyncio.run(run())
        assert during == {"loading": True, "enabled": False, "district_enabled": False}
        assert not cascade.is_loading(AddressLevel.REGENCY)
        assert cascade.is_enabled(AddressLevel.REGENCY)
        assert [r.id for r in cascade.state.options[AddressLevel.REGENCY]] == ["3201"]

    def test_late_response_for_old_parent_is_dropped(self):
        geo = _SlowGeo()
        cascade = AddressCascade(geo)

        async def run():
            await cascade.mount()
            first = asyncio.create_task(cascade.select(AddressLevel.PROVINCE, "32"))
            await asyncio.sleep(0)
            await cascade.select(AddressLevel.PROVINCE, "33")
            geo.release.set()
            await first

        asyncio.run(run())
        assert cascade.state.selected[0].id == "33"
        assert [r.id for r in cascade.state.options[AddressLevel.REGENCY]] == ["3301"]
