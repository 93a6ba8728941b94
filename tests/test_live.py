"""Tests for the live count and recent-signers feed."""

import asyncio
from datetime import datetime, timedelta, timezone

import pytest

from conftest import FakeStore, signer_row
from petisi.live import (
    LiveStats,
    RecentSigners,
    _LiveFeed,
    format_count,
    format_location,
    format_relative_time,
    subscribed,
)
from petisi.models import SignerRow


class TestLiveStats:
    """Initial load and optimistic increments."""

    def test_count_follows_inserts(self):
        store = FakeStore(count=41)
        stats = LiveStats(store, target=100)
        asyncio.run(stats.activate())
        for n in range(3):
            store.emit(signer_row(n))
        assert stats.total == 44
        assert stats.percentage == pytest.approx(44.0)
        assert not stats.loading

    def test_rpc_failure_falls_back_to_exact_count(self):
        store = FakeStore(count=12)
        store.fail_rpc = True
        stats = LiveStats(store)
        asyncio.run(stats.load())
        assert stats.total == 12

    def test_both_counts_failing_degrade_to_zero(self):
        store = FakeStore(count=12)
        store.fail_rpc = True
        store.fail_exact = True
        stats = LiveStats(store)
        asyncio.run(stats.load())
        assert stats.total == 0
        assert not stats.loading

    def test_percentage_is_capped(self):
        stats = LiveStats(FakeStore(), target=10)
        stats.total = 25
        assert stats.percentage == 100.0

    def test_subscribe_failure_keeps_loaded_count(self):
        store = FakeStore(count=5)
        store.fail_subscribe = True
        stats = LiveStats(store)
        asyncio.run(stats.activate())
        assert stats.total == 5
        assert not stats.active


class TestRecentSigners:
    def test_initial_load(self):
        store = FakeStore(rows=[signer_row(n) for n in range(60, 0, -1)])
        feed = RecentSigners(store)
        asyncio.run(feed.load())
        assert len(feed.signers) == 50
        assert feed.signers[0].id == "60"

    def test_keeps_only_newest_hundred(self):
        store = FakeStore()
        feed = RecentSigners(store)
        asyncio.run(feed.activate())
        for n in range(1, 121):
            store.emit(signer_row(n))
        assert len(feed.signers) == 100
        assert [s.id for s in feed.signers[:3]] == ["120", "119", "118"]
        assert feed.signers[-1].id == "21"

    def test_malformed_event_is_ignored(self):
        store = FakeStore()
        feed = RecentSigners(store)
        asyncio.run(feed.activate())
        store.emit({"id": 1})
        assert feed.signers == []


class TestSubscribed:
    """Subscriptions are released on every exit path."""

    def test_release_after_error(self):
        store = FakeStore()
        stats, signers = LiveStats(store), RecentSigners(store)

        async def run():
            async with subscribed(stats, signers):
                assert set(store.channels) == {"public:signatures", "public:signatures_list"}
                raise RuntimeError("boom")

        with pytest.raises(RuntimeError):
            asyncio.run(run())
        assert store.channels == {}
        assert sorted(store.released) == ["public:signatures", "public:signatures_list"]
        assert not stats.active

    def test_events_after_release_are_not_seen(self):
        store = FakeStore()
        stats = LiveStats(store)

        async def run():
            async with subscribed(stats):
                store.emit(signer_row(1))

        asyncio.run(run())
        store.emit(signer_row(2))
        assert stats.total == 1


class TestFeedContract:
    def test_feed_must_handle_inserts(self):
        class SnapshotOnly(_LiveFeed):
            async def load(self) -> None:
                self.loading = False

        with pytest.raises(TypeError, match="on_insert"):
            SnapshotOnly(FakeStore())

    def test_complete_feed_is_instantiable(self):
        class Counter(_LiveFeed):
            async def load(self) -> None:
                self.loading = False

            def on_insert(self, row):
                pass

        assert not Counter(FakeStore()).active


NOW = datetime(2026, 10, 18, 12, 0, tzinfo=timezone.utc)


class TestFormatting:
    @pytest.mark.parametrize(
        "age,expected",
        [
            (timedelta(seconds=30), "Baru saja"),
            (timedelta(minutes=5), "5 menit lalu"),
            (timedelta(hours=3, minutes=20), "3 jam lalu"),
            (timedelta(days=15), "3 Okt"),
        ],
    )
    def test_relative_time(self, age, expected):
        assert format_relative_time(NOW - age, now=NOW) == expected

    def test_naive_timestamps_are_utc(self):
        naive = (NOW - timedelta(minutes=2)).replace(tzinfo=None)
        assert format_relative_time(naive, now=NOW) == "2 menit lalu"

    def test_location_prefers_village_and_regency(self):
        row = SignerRow.model_validate(signer_row(1))
        assert format_location(row) == "SUKAMAJU, KAB. BANDUNG"

    def test_location_truncates_free_text_address(self):
        row = SignerRow(id="1", full_name="A", address="Jl. Raya Ciwidey No. 123, Kabupaten Bandung")
        assert format_location(row) == "Jl. Raya Ciwidey No. 123, Kabupaten..."

    def test_location_fallbacks(self):
        assert format_location(SignerRow(id="1", full_name="A", province_name="BALI")) == "BALI"
        assert format_location(SignerRow(id="1", full_name="A")) == "Indonesia"

    def test_count(self):
        assert format_count(1234567) == "1.234.567"
        assert format_count(0) == "0"
