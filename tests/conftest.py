"""Shared fixtures for petisi tests."""

import asyncio
import base64
import io
from typing import Any, Callable, Optional

import httpx
import pytest
from PIL import Image, ImageDraw

from petisi.config import Settings
from petisi.geo import GeoLookupClient
from petisi.signature_pad import DATA_URI_PREFIX


GEO_BASE_URL = "https://geo.test/data-indonesia"

GEO_DATA: dict[str, list[dict[str, str]]] = {
    "propinsi.json": [
        {"id": "32", "nama": "JAWA BARAT"},
        {"id": "33", "nama": "JAWA TENGAH"},
    ],
    "kabupaten/32.json": [
        {"id": "3204", "id_propinsi": "32", "nama": "KAB. BANDUNG"},
        {"id": "3273", "id_propinsi": "32", "nama": "KOTA BANDUNG"},
    ],
    "kabupaten/33.json": [
        {"id": "3301", "id_propinsi": "33", "nama": "KAB. CILACAP"},
    ],
    "kecamatan/3204.json": [
        {"id": "3204010", "id_kabupaten": "3204", "nama": "CIWIDEY"},
    ],
    "kelurahan/3204010.json": [
        {"id": "3204010001", "id_kecamatan": "3204010", "nama": "SUKAMAJU"},
        {"id": "3204010002", "id_kecamatan": "3204010", "nama": "LEBAKMUNCANG"},
    ],
}


class FakeStore:
    """In-memory stand-in for :class:`petisi.store.PetitionStore`.

    ``rows`` are kept newest first. Realtime subscribers are recorded by
    channel name and receive rows passed to :meth:`emit`.
    """

    def __init__(self, count: int = 0, rows: Optional[list[dict[str, Any]]] = None) -> None:
        self.count = count
        self.rows = list(rows or [])
        self.inserted: list[dict[str, Any]] = []
        self.fail_insert: Optional[Exception] = None
        self.fail_rpc = False
        self.fail_exact = False
        self.fail_subscribe = False
        self.channels: dict[str, Callable[[dict[str, Any]], None]] = {}
        self.released: list[str] = []

    async def insert_signature(self, row: dict[str, Any]) -> dict[str, Any]:
        await asyncio.sleep(0)
        if self.fail_insert is not None:
            raise self.fail_insert
        stored = dict(row, id=len(self.inserted) + 1, created_at="2026-10-18T09:00:00+00:00")
        self.inserted.append(stored)
        return stored

    async def count_rpc(self) -> int:
        if self.fail_rpc:
            raise RuntimeError("function get_petition_count() does not exist")
        return self.count

    async def count_exact(self) -> int:
        if self.fail_exact:
            raise RuntimeError("permission denied for table signatures")
        return self.count

    async def recent(self, limit: int = 50) -> list[dict[str, Any]]:
        return self.rows[:limit]

    async def subscribe_inserts(self, name: str, callback: Callable[[dict[str, Any]], None]) -> str:
        if self.fail_subscribe:
            raise ConnectionError("realtime unavailable")
        self.channels[name] = callback
        return name

    async def unsubscribe(self, channel: str) -> None:
        self.channels.pop(channel, None)
        self.released.append(channel)

    def emit(self, row: dict[str, Any]) -> None:
        for callback in list(self.channels.values()):
            callback(row)


def signer_row(n: int, **extra: Any) -> dict[str, Any]:
    """A stored row as the realtime channel delivers it."""
    row = {
        "id": n,
        "full_name": f"Penandatangan {n}",
        "position": "Kepala Desa",
        "province_name": "JAWA BARAT",
        "regency_name": "KAB. BANDUNG",
        "village_name": "SUKAMAJU",
        "created_at": "2026-10-18T08:00:00+00:00",
    }
    row.update(extra)
    return row


def _geo_handler(request: httpx.Request) -> httpx.Response:
    prefix = httpx.URL(GEO_BASE_URL).path + "/"
    path = request.url.path[len(prefix):]
    if path == "kabupaten/99.json":
        return httpx.Response(200, content=b"<html>not json</html>")
    if path not in GEO_DATA:
        return httpx.Response(404, json={"message": "Not Found"})
    return httpx.Response(200, json=GEO_DATA[path])


@pytest.fixture
def geo_http():
    """An httpx client answering from :data:`GEO_DATA`."""
    return httpx.AsyncClient(transport=httpx.MockTransport(_geo_handler))


@pytest.fixture
def geo(geo_http):
    """Region lookup backed by the mock dataset."""
    return GeoLookupClient(http=geo_http, base_url=GEO_BASE_URL)


@pytest.fixture
def fake_store():
    """Empty in-memory signature store."""
    return FakeStore()


@pytest.fixture
def settings():
    """Settings without store credentials or a model key."""
    return Settings(geo_base_url=GEO_BASE_URL, signature_target=1000)


@pytest.fixture
def signature_data_uri() -> str:
    """A small hand-drawn PNG signature as a data URI."""
    image = Image.new("RGBA", (120, 40), (0, 0, 0, 0))
    ImageDraw.Draw(image).line(
        [(5, 30), (40, 5), (80, 35), (115, 10)], fill=(0, 0, 0, 255), width=2
    )
    buf = io.BytesIO()
    image.save(buf, format="PNG")
    return DATA_URI_PREFIX + base64.b64encode(buf.getvalue()).decode("ascii")
