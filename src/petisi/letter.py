"""Letter rendering and PDF export.

The finished record is laid out as a "Pernyataan Sikap" letter:
letterhead, recipient, identity table, fixed statement, quote, closing
and a place/date footer above the signature. The same :class:`Letter`
feeds three outputs:

* :func:`render_html` for on-screen preview,
* :func:`render_image` for a raster capture of the page,
* :func:`export_pdf`, which fits that capture onto a single A4 page.
"""

import html
import io
import logging
import re
import unicodedata
from datetime import date
from typing import Optional
from urllib.parse import quote

from PIL import Image, ImageDraw, ImageFont
from pydantic import BaseModel
from reportlab.lib.pagesizes import A4
from reportlab.lib.units import mm
from reportlab.lib.utils import ImageReader
from reportlab.pdfgen import canvas

from .models import SignerRecord
from .signature_pad import decode_image

logger = logging.getLogger("petisi.letter")

EXPORT_FAILED_MESSAGE = "Gagal mengunduh dokumen. Silakan coba lagi."

ACCENT = (163, 25, 28)
INK = (15, 23, 42)

_MONTHS = (
    "Januari", "Februari", "Maret", "April", "Mei", "Juni",
    "Juli", "Agustus", "September", "Oktober", "November", "Desember",
)

STATEMENT = (
    "Dengan ini menyatakan sikap untuk mendukung penuh dan "
    "\"Menuntut kepastian status kepegawaian sebagai ASN Desa dalam UU ASN 2026\" "
    "sebagai upaya menjamin kesejahteraan dan kepastian hukum bagi pelayan "
    "masyarakat di tingkat desa."
)
QUOTE = (
    "\"Kami akan memenuhi jalanan Jakarta, jika Tuntutan ini tidak Negara "
    "Dengarkan dan Penuhi.\""
)
CLOSING = (
    "Demikian pernyataan sikap ini saya buat dengan kesadaran penuh dan tanpa "
    "paksaan dari pihak manapun sebagai bentuk aspirasi konstitusional."
)


class ExportError(RuntimeError):
    """Capture or PDF generation failed; no file was produced."""


class Letter(BaseModel):
    """Everything printed on the letter, already formatted."""

    title: str = "PERNYATAAN SIKAP"
    subtitle: str = "GERAKAN NASIONAL APARATUR DESA"
    recipient: list[str] = [
        "Kepada Yth,",
        "Bapak Presiden Republik Indonesia",
        "di Jakarta",
    ]
    greeting: str = "Dengan hormat,"
    intro: str = "Saya yang bertanda tangan di bawah ini:"
    identity: list[tuple[str, str]]
    statement: str = STATEMENT
    quote: str = QUOTE
    closing: str = CLOSING
    place_date: str
    sign_off: str = "Hormat Saya,"
    signer_name: str
    signer_position: str
    signature: str = ""


def format_long_date(day: date) -> str:
    """Indonesian long date, e.g. ``17 Agustus 2026``."""
    return f"{day.day} {_MONTHS[day.month - 1]} {day.year}"


def pdf_filename(full_name: str) -> str:
    """Download name for the exported letter."""
    return "Pernyataan_Sikap_" + re.sub(r"\s+", "_", full_name) + ".pdf"


def content_disposition(filename: str) -> str:
    """Attachment header value safe for any signer name.

    HTTP headers are latin-1, so the plain ``filename`` carries an ASCII
    transliteration and ``filename*`` (RFC 5987) the exact UTF-8 name.
    """
    ascii_name = (
        unicodedata.normalize("NFKD", filename)
        .encode("ascii", "ignore")
        .decode("ascii")
    )
    ascii_name = "".join(c for c in ascii_name if c.isprintable() and c not in "\"\\")
    return f"attachment; filename=\"{ascii_name}\"; filename*=UTF-8''{quote(filename, safe='')}"


def build_letter(record: SignerRecord, today: Optional[date] = None) -> Letter:
    """Format ``record`` into a letter dated ``today`` (defaults to now)."""
    today = today or date.today()
    village = record.village.name if record.village else ""
    district = record.district.name if record.district else ""
    regency = record.regency.name if record.regency else ""
    province = record.province.name if record.province else ""
    address = f"DS. {village}, KEC. {district},\n{regency}, {province}".upper()
    place = (village or "Tempat").upper()
    return Letter(
        identity=[
            ("Nama", record.full_name.upper()),
            ("Jabatan", record.position),
            ("Alamat", address),
        ],
        place_date=f"{place}, {format_long_date(today)}",
        signer_name=record.full_name.upper(),
        signer_position=record.position,
        signature=record.signature,
    )


# ---------------------------------------------------------------------------
# HTML
# ---------------------------------------------------------------------------

def render_html(letter: Letter) -> str:
    """Printable HTML fragment of the letter."""
    e = html.escape
    rows = "\n".join(
        f"<tr><td>{e(label)}</td><td>:</td>"
        f"<td>{e(value).replace(chr(10), '<br/>')}</td></tr>"
        for label, value in letter.identity
    )
    recipient = "\n".join(f"<p>{e(line)}</p>" for line in letter.recipient)
    signature = (
        f'<img src="{e(letter.signature, quote=True)}" alt="Tanda Tangan"/>'
        if letter.signature
        else ""
    )
    return f"""<div class="letter" data-pdf-content="true">
<div class="letter-bar"></div>
<header><h1>{e(letter.title)}</h1><h2>{e(letter.subtitle)}</h2></header>
<section class="recipient">
{recipient}
</section>
<p>{e(letter.greeting)}</p>
<p>{e(letter.intro)}</p>
<table class="identity">
{rows}
</table>
<p class="statement">{e(letter.statement)}</p>
<p class="quote">{e(letter.quote)}</p>
<p class="closing">{e(letter.closing)}</p>
<footer>
<p>{e(letter.place_date)}</p>
<p>{e(letter.sign_off)}</p>
<div class="signature">{signature}</div>
<p class="signer-name">{e(letter.signer_name)}</p>
<p class="signer-position">{e(letter.signer_position)}</p>
</footer>
</div>"""


# ---------------------------------------------------------------------------
# Raster capture
# ---------------------------------------------------------------------------

PAGE_PX = (1240, 1754)  # A4 at 150 dpi
MARGIN_PX = 148  # 25 mm
BODY_SIZE = 26
QUOTE_SIZE = 30


def _font(size: int) -> ImageFont.ImageFont:
    return ImageFont.load_default(size=size)


def _wrap(draw: ImageDraw.ImageDraw, text: str, font: ImageFont.ImageFont, width: int) -> list[str]:
    lines: list[str] = []
    for paragraph in text.split("\n"):
        current = ""
        for word in paragraph.split():
            candidate = f"{current} {word}".strip()
            if current and draw.textlength(candidate, font=font) > width:
                lines.append(current)
                current = word
            else:
                current = candidate
        lines.append(current)
    return lines


def render_image(letter: Letter) -> Image.Image:
    """Draw the letter onto an A4-proportioned white page."""
    page = Image.new("RGB", PAGE_PX, "white")
    draw = ImageDraw.Draw(page)
    left = MARGIN_PX
    right = PAGE_PX[0] - MARGIN_PX
    text_width = right - left
    body = _font(BODY_SIZE)
    y = MARGIN_PX

    draw.rectangle((left, y, right, y + 9), fill=ACCENT)
    y += 40

    for text, size in ((letter.title, 54), (letter.subtitle, 24)):
        font = _font(size)
        w = draw.textlength(text, font=font)
        draw.text(((PAGE_PX[0] - w) / 2, y), text, font=font, fill=INK)
        y += size + 16
    draw.line((left, y, right, y), fill="black", width=4)
    draw.line((left, y + 8, right, y + 8), fill="black", width=2)
    y += 48

    line_h = BODY_SIZE + 14

    def paragraph(text: str, fill=INK, font=body, indent: int = 0) -> None:
        nonlocal y
        for line in _wrap(draw, text, font, text_width - indent):
            draw.text((left + indent, y), line, font=font, fill=fill)
            y += line_h
        y += 18

    for line in letter.recipient:
        draw.text((left, y), line, font=body, fill=INK)
        y += line_h
    y += 18
    paragraph(letter.greeting)
    paragraph(letter.intro)

    label_x = left + 30
    colon_x = label_x + 170
    value_x = colon_x + 30
    for label, value in letter.identity:
        draw.text((label_x, y), label, font=body, fill=INK)
        draw.text((colon_x, y), ":", font=body, fill=INK)
        for line in _wrap(draw, value, body, right - value_x):
            draw.text((value_x, y), line, font=body, fill=INK)
            y += line_h
    y += 18

    paragraph(letter.statement, indent=0)
    quote_font = _font(QUOTE_SIZE)
    for line in _wrap(draw, letter.quote, quote_font, text_width - 120):
        w = draw.textlength(line, font=quote_font)
        draw.text(((PAGE_PX[0] - w) / 2, y), line, font=quote_font, fill=ACCENT)
        y += QUOTE_SIZE + 14
    y += 24
    paragraph(letter.closing)

    # signature block, right aligned
    block_w = 420
    cx = right - block_w / 2
    y += 40

    def centered(text: str, font=body) -> None:
        nonlocal y
        w = draw.textlength(text, font=font)
        draw.text((cx - w / 2, y), text, font=font, fill=INK)
        y += line_h

    centered(letter.place_date)
    centered(letter.sign_off)
    box_h = 144
    if letter.signature:
        sig = decode_image(letter.signature).convert("RGBA")
        sig.thumbnail((block_w, box_h))
        page.paste(sig, (int(cx - sig.width / 2), int(y + (box_h - sig.height) / 2)), sig)
    y += box_h + 10
    name_w = draw.textlength(letter.signer_name, font=body)
    centered(letter.signer_name)
    draw.line((cx - name_w / 2, y - 10, cx + name_w / 2, y - 10), fill="black", width=2)
    centered(letter.signer_position, font=_font(22))
    return page


# ---------------------------------------------------------------------------
# PDF
# ---------------------------------------------------------------------------

def export_pdf(letter: Letter, margin: float = 10 * mm, jpeg_quality: int = 75) -> bytes:
    """Capture the letter and place it on one A4 page.

    The raster is scaled to fit inside ``margin`` on every side and
    centred on the page.

    Raises:
        ExportError: If capture or PDF generation fails.
    """
    try:
        image = render_image(letter)
        raster = io.BytesIO()
        image.save(raster, format="JPEG", quality=jpeg_quality)
        raster.seek(0)

        page_w, page_h = A4
        ratio = min((page_w - 2 * margin) / image.width, (page_h - 2 * margin) / image.height)
        draw_w = image.width * ratio
        draw_h = image.height * ratio
        x = (page_w - draw_w) / 2
        y = (page_h - draw_h) / 2

        buf = io.BytesIO()
        pdf = canvas.Canvas(buf, pagesize=A4)
        pdf.setTitle(f"Pernyataan Sikap - {letter.signer_name}")
        pdf.drawImage(ImageReader(raster), x, y, width=draw_w, height=draw_h)
        pdf.showPage()
        pdf.save()
        return buf.getvalue()
    except Exception as exc:
        logger.error("Download failed: %s", exc)
        raise ExportError(EXPORT_FAILED_MESSAGE) from exc
