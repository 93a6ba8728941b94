"""petisi CLI: run the petition service and inspect its data.

Usage:
    petisi serve [--port 8400]
    petisi stats
    petisi signers [--limit 20]
    petisi regions [--province 32] [--regency 3273] [--district 3273010]
    petisi suggest --position "Kepala Desa" --location "Sukamaju, Bandung"
    petisi letter --name "Budi Santoso" --position "Kepala Desa" ... -s ttd.png
"""

import asyncio
import base64
from datetime import date
from pathlib import Path
from typing import Callable, Optional, TypeVar

import click
from rich.console import Console
from rich.panel import Panel
from rich.table import Table

from .config import Settings
from .geo import GeoLookupClient
from .letter import ExportError, build_letter, export_pdf, pdf_filename
from .live import (
    LiveStats,
    RecentSigners,
    format_count,
    format_location,
    format_relative_time,
)
from .models import District, Province, Regency, SignerRecord, Village
from .signature_pad import DATA_URI_PREFIX, check_signature
from .store import PetitionStore
from .suggestion import SupportSuggester

console = Console()

_Feed = TypeVar("_Feed", LiveStats, RecentSigners)


@click.group()
@click.pass_context
def main(ctx: click.Context) -> None:
    """petisi: Pernyataan Sikap Aparatur Desa.

    Settings are read from PETISI_* environment variables.
    """
    ctx.ensure_object(dict)
    ctx.obj.setdefault("settings", Settings.from_env())


def _load(ctx: click.Context, make_feed: Callable[[PetitionStore], _Feed]) -> _Feed:
    """Connect (unless a store was injected) and load a feed on one loop.

    The async client is bound to the loop that created it, so connecting
    and querying happen inside a single coroutine.
    """
    settings: Settings = ctx.obj["settings"]

    async def run() -> _Feed:
        store = ctx.obj.get("store") or await PetitionStore.connect(settings)
        feed = make_feed(store)
        await feed.load()
        return feed

    try:
        return asyncio.run(run())
    except ValueError as exc:
        console.print(f"[red]{exc}[/]")
        raise SystemExit(1)


# ---------------------------------------------------------------------------
# Stats
# ---------------------------------------------------------------------------

@main.command()
@click.pass_context
def stats(ctx: click.Context) -> None:
    """Show the total signature count against the target."""
    settings: Settings = ctx.obj["settings"]
    live = _load(ctx, lambda store: LiveStats(store, target=settings.signature_target))

    console.print(Panel(
        f"[bold]{format_count(live.total)}[/] tanda tangan\n"
        f"Target: {format_count(live.target)} ({live.percentage:.2f}%)",
        title="Total Dukungan",
        border_style="red",
    ))


@main.command()
@click.option("--limit", default=20, show_default=True, help="Number of signers")
@click.pass_context
def signers(ctx: click.Context, limit: int) -> None:
    """List the most recent signers, newest first."""
    feed = _load(ctx, lambda store: RecentSigners(store, initial=limit))

    if not feed.signers:
        console.print("[dim]Belum ada tanda tangan.[/]")
        return

    table = Table(title="Penandatangan Terbaru")
    table.add_column("Nama", style="cyan")
    table.add_column("Jabatan")
    table.add_column("Lokasi")
    table.add_column("Waktu", style="dim")

    for row in feed.signers:
        table.add_row(
            row.full_name,
            row.position,
            format_location(row),
            format_relative_time(row.created_at),
        )

    console.print(table)


# ---------------------------------------------------------------------------
# Regions
# ---------------------------------------------------------------------------

@main.command()
@click.option("--province", "province_id", default=None, help="List regencies of this province")
@click.option("--regency", "regency_id", default=None, help="List districts of this regency")
@click.option("--district", "district_id", default=None, help="List villages of this district")
@click.pass_context
def regions(
    ctx: click.Context,
    province_id: Optional[str],
    regency_id: Optional[str],
    district_id: Optional[str],
) -> None:
    """Browse the administrative-region dataset.

    The deepest option given wins; with none, provinces are listed.
    """
    settings: Settings = ctx.obj["settings"]

    async def fetch():
        async with GeoLookupClient(
            http=ctx.obj.get("http"),
            base_url=settings.geo_base_url,
            timeout=settings.geo_timeout_seconds,
        ) as geo:
            if district_id:
                return "Desa/Kelurahan", await geo.get_villages(district_id)
            if regency_id:
                return "Kecamatan", await geo.get_districts(regency_id)
            if province_id:
                return "Kabupaten/Kota", await geo.get_regencies(province_id)
            return "Provinsi", await geo.get_provinces()

    title, units = asyncio.run(fetch())
    if not units:
        console.print("[dim]Tidak ada data wilayah.[/]")
        return

    table = Table(title=title)
    table.add_column("ID", style="dim")
    table.add_column("Nama", style="cyan")
    for unit in units:
        table.add_row(unit.id, unit.name)
    console.print(table)


# ---------------------------------------------------------------------------
# Suggest
# ---------------------------------------------------------------------------

@main.command()
@click.option("--position", required=True, help="Signer's position")
@click.option("--location", required=True, help="Signer's village and regency")
@click.pass_context
def suggest(ctx: click.Context, position: str, location: str) -> None:
    """Ask the language model for a support statement."""
    settings: Settings = ctx.obj["settings"]
    suggester = ctx.obj.get("suggester") or SupportSuggester(
        api_key=settings.gemini_api_key, model=settings.gemini_model
    )
    text = asyncio.run(suggester.suggest(position, location))
    console.print(Panel(text, title="Saran Pernyataan", border_style="cyan"))


# ---------------------------------------------------------------------------
# Letter
# ---------------------------------------------------------------------------

@main.command()
@click.option("--name", required=True, help="Signer's full name")
@click.option("--position", required=True, help="Signer's position")
@click.option("--village", required=True, help="Village name")
@click.option("--district", required=True, help="District name")
@click.option("--regency", required=True, help="Regency or city name")
@click.option("--province", required=True, help="Province name")
@click.option(
    "--signature", "-s", "signature_path",
    type=click.Path(exists=True, dir_okay=False),
    default=None,
    help="Signature image (PNG)",
)
@click.option("--output", "-o", type=click.Path(), default=None, help="Output PDF path")
@click.pass_context
def letter(
    ctx: click.Context,
    name: str,
    position: str,
    village: str,
    district: str,
    regency: str,
    province: str,
    signature_path: Optional[str],
    output: Optional[str],
) -> None:
    """Render a Pernyataan Sikap letter to PDF without submitting it."""
    settings: Settings = ctx.obj["settings"]
    signature = ""
    if signature_path:
        raw = Path(signature_path).read_bytes()
        signature = DATA_URI_PREFIX + base64.b64encode(raw).decode("ascii")
        try:
            check_signature(signature, settings.max_signature_bytes)
        except ValueError as exc:
            console.print(f"[red]{exc}[/]")
            raise SystemExit(1)

    # names only; the ids are not known offline
    record = SignerRecord(
        full_name=name,
        position=position,
        province=Province(id="", name=province),
        regency=Regency(id="", name=regency),
        district=District(id="", name=district),
        village=Village(id="", name=village),
        signature=signature,
    )
    try:
        pdf = export_pdf(build_letter(record, date.today()))
    except ExportError as exc:
        console.print(f"[red]{exc}[/]")
        raise SystemExit(1)

    out_path = Path(output) if output else Path(pdf_filename(name))
    out_path.write_bytes(pdf)
    console.print(f"[green]Letter saved:[/] {out_path}")


# ---------------------------------------------------------------------------
# Serve
# ---------------------------------------------------------------------------

@main.command()
@click.option("--host", default="127.0.0.1", help="Bind address")
@click.option("--port", default=8400, help="Port")
def serve(host: str, port: int) -> None:
    """Start the petisi API server."""
    import uvicorn

    console.print(
        f"[bold]petisi API[/] listening on [cyan]http://{host}:{port}[/]"
    )
    console.print("[dim]Pernyataan Sikap Aparatur Desa.[/]\n")
    uvicorn.run(
        "petisi.api:create_app", factory=True, host=host, port=port, log_level="info"
    )


if __name__ == "__main__":
    main()
