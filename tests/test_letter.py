"""Tests for letter formatting and PDF export."""

from datetime import date

import pytest

from petisi.letter import (
    CLOSING,
    EXPORT_FAILED_MESSAGE,
    ExportError,
    build_letter,
    content_disposition,
    export_pdf,
    format_long_date,
    pdf_filename,
    render_html,
    render_image,
)
from petisi.models import District, Province, Regency, SignerRecord, Village


@pytest.fixture
def budi(signature_data_uri) -> SignerRecord:
    return SignerRecord(
        full_name="Budi Santoso",
        position="Kepala Desa",
        province=Province(id="32", name="Jawa Barat"),
        regency=Regency(id="3204", name="Kab. Bandung"),
        district=District(id="3204010", name="Ciwidey"),
        village=Village(id="3204010001", name="Sukamaju"),
        signature=signature_data_uri,
    ).freeze()


class TestBuildLetter:
    def test_identity(self, budi):
        letter = build_letter(budi, date(2026, 8, 17))
        assert letter.identity[0] == ("Nama", "BUDI SANTOSO")
        assert letter.identity[1] == ("Jabatan", "Kepala Desa")
        assert letter.identity[2] == (
            "Alamat",
            "DS. SUKAMAJU, KEC. CIWIDEY,\nKAB. BANDUNG, JAWA BARAT",
        )
        assert letter.signer_name == "BUDI SANTOSO"
        assert letter.closing == CLOSING

    def test_place_and_date(self, budi):
        assert build_letter(budi, date(2026, 8, 17)).place_date == "SUKAMAJU, 17 Agustus 2026"

    def test_long_date(self):
        assert format_long_date(date(2026, 1, 5)) == "5 Januari 2026"
        assert format_long_date(date(2026, 12, 31)) == "31 Desember 2026"

    def test_filename(self):
        assert pdf_filename("Budi Santoso") == "Pernyataan_Sikap_Budi_Santoso.pdf"
        assert pdf_filename("Siti  Nur\tAini") == "Pernyataan_Sikap_Siti_Nur_Aini.pdf"

    def test_disposition_for_ascii_name(self):
        assert content_disposition("Pernyataan_Sikap_Budi_Santoso.pdf") == (
            'attachment; filename="Pernyataan_Sikap_Budi_Santoso.pdf"; '
            "filename*=UTF-8''Pernyataan_Sikap_Budi_Santoso.pdf"
        )

    def test_disposition_is_latin1_safe(self):
        value = content_disposition(pdf_filename("Nguyễn Văn Ánh"))
        value.encode("latin-1")
        assert 'filename="Pernyataan_Sikap_Nguyen_Van_Anh.pdf"' in value
        assert "Nguy%E1%BB%85n_V%C4%83n_%C3%81nh" in value

    def test_disposition_strips_quotes(self):
        value = content_disposition('Pernyataan_Sikap_Budi_"Ucok"\\.pdf')
        assert 'filename="Pernyataan_Sikap_Budi_Ucok.pdf"' in value
        assert "%22Ucok%22%5C" in value


class TestRendering:
    def test_html(self, budi):
        html = render_html(build_letter(budi, date(2026, 8, 17)))
        assert "BUDI SANTOSO" in html
        assert "Kepala Desa" in html
        assert "DS. SUKAMAJU, KEC. CIWIDEY,<br/>KAB. BANDUNG, JAWA BARAT" in html
        assert 'src="data:image/png;base64,' in html

    def test_html_escapes_input(self, budi):
        record = budi.model_copy(update={"full_name": "<script>x</script>"})
        html = render_html(build_letter(record))
        assert "<script>" not in html
        assert "&lt;SCRIPT&gt;" in html

    def test_image_is_a4_proportioned(self, budi):
        image = render_image(build_letter(budi, date(2026, 8, 17)))
        assert image.size == (1240, 1754)
        assert image.getbbox() is not None

    def test_without_signature(self, budi):
        record = budi.model_copy(update={"signature": ""})
        assert render_image(build_letter(record)).mode == "RGB"


class TestExport:
    def test_single_page_pdf(self, budi):
        pdf = export_pdf(build_letter(budi, date(2026, 8, 17)))
        assert pdf.startswith(b"%PDF")
        assert b"/Count 1" in pdf

    def test_failure_raises_export_error(self, budi):
        record = budi.model_copy(update={"signature": "data:image/png;base64,AAAA"})
        with pytest.raises(ExportError) as info:
            export_pdf(build_letter(record))
        assert str(info.value) == EXPORT_FAILED_MESSAGE
