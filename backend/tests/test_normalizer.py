import io

import pytest
from PIL import Image
from pypdf import PdfReader

from docshelf.exceptions import ConversionError
from docshelf.services.classifier import DOCX_MIME, PDF_MIME, PPTX_MIME, DocumentKind
from docshelf.services.normalizer import (
    DOCUMENT_STYLE,
    NormalizedDocument,
    _image_attributes,
    adapt_html_for_pdf,
    build_presentation_placeholder,
    build_unsupported_notice,
    count_pages,
    docx_to_html,
    normalize,
)
from docshelf.services.pdf_service import render_pdf
from docshelf.services.uploads import UploadedFile

XLSX_MIME = "application/vnd.openxmlformats-officedocument.spreadsheetml.sheet"


def _pdf_text(data: bytes) -> str:
    reader = PdfReader(io.BytesIO(data))
    return "\n".join(page.extract_text() or "" for page in reader.pages)


class _FakeImage:
    def __init__(self, data: bytes, content_type: str = "image/png"):
        self._data = data
        self.content_type = content_type

    def open(self):
        return io.BytesIO(self._data)


def _png(width: int, height: int) -> bytes:
    buf = io.BytesIO()
    Image.new("RGB", (width, height), "white").save(buf, format="PNG")
    return buf.getvalue()


class TestPassThrough:
    def test_pdf_bytes_are_untouched(self):
        data = b"%PDF-1.4 fake pdf content"
        result = normalize(UploadedFile(data, "x.pdf", PDF_MIME))
        assert result == NormalizedDocument(data, "x.pdf", PDF_MIME)

    def test_plain_text_is_untouched(self):
        result = normalize(UploadedFile(b"plain notes", "notes.txt", "text/plain"))
        assert result.data == b"plain notes"
        assert result.display_name == "notes.txt"
        assert result.media_type == "text/plain"

    def test_powerpoint_keeps_original_bytes_and_type(self):
        result = normalize(UploadedFile(b"PK\x03\x04deck", "lecture.pptx", PPTX_MIME))
        assert result.data == b"PK\x03\x04deck"
        assert result.display_name == "lecture.pptx"
        assert result.media_type == PPTX_MIME

    def test_mislabeled_powerpoint_gets_presentation_type(self):
        result = normalize(UploadedFile(b"deck", "lecture.ppt", "application/octet-stream"))
        assert result.media_type == "application/vnd.ms-powerpoint"


class TestWordConversion:
    def test_word_upload_becomes_pdf(self, make_docx):
        upload = UploadedFile(make_docx("Lecture notes week one"), "notes.docx", DOCX_MIME)
        result = normalize(upload)
        assert result.media_type == PDF_MIME
        assert result.display_name == "notes.pdf"
        assert result.data.startswith(b"%PDF")
        assert "Lecture notes week one" in _pdf_text(result.data)

    def test_docx_to_html_wraps_body_with_print_css(self, make_docx):
        document = docx_to_html(make_docx("First", "Second"), title="notes")
        assert "<p>First</p>" in document.body
        assert "<p>Second</p>" in document.body
        html = document.to_html()
        assert html.startswith("<!DOCTYPE html>")
        assert "img { max-width: 100%; }" in html
        assert "margin: 3cm" in html

    def test_footnotes_render(self, make_docx):
        data = make_docx(
            body_xml=(
                "<w:p><w:r><w:t>Main claim</w:t></w:r>"
                '<w:r><w:footnoteReference w:id="1"/></w:r></w:p>'
            ),
            footnotes_xml='<w:footnote w:id="1"><w:p><w:r><w:t>Source note</w:t></w:r></w:p></w:footnote>',
        )
        result = normalize(UploadedFile(data, "essay.docx", DOCX_MIME))
        assert result.media_type == PDF_MIME
        text = _pdf_text(result.data)
        assert "Main claim" in text
        assert "Source note" in text

    def test_multi_paragraph_table_cell_renders(self, make_docx):
        data = make_docx(
            "Results",
            body_xml=(
                "<w:tbl><w:tr>"
                "<w:tc><w:p><w:r><w:t>Line one</w:t></w:r></w:p>"
                "<w:p><w:r><w:t>Line two</w:t></w:r></w:p></w:tc>"
                "<w:tc><w:p><w:r><w:t>Other cell</w:t></w:r></w:p></w:tc>"
                "</w:tr></w:tbl>"
            ),
        )
        result = normalize(UploadedFile(data, "table.docx", DOCX_MIME))
        text = _pdf_text(result.data)
        assert "Line one" in text
        assert "Line two" in text
        assert "Other cell" in text

    def test_internal_links_are_unwrapped(self):
        html = (
            '<p>Claim<sup><a href="#footnote-1" id="footnote-ref-1">[1]</a></sup></p>'
            '<p><a href="https://example.com">site</a></p>'
        )
        adapted = adapt_html_for_pdf(html)
        assert "<sup>[1]</sup>" in adapted
        assert 'href="#' not in adapted
        assert '<a href="https://example.com">site</a>' in adapted

    def test_table_cells_are_flattened_to_text(self):
        html = (
            "<table><thead><tr><th><p><strong>Head</strong></p></th></tr></thead>"
            '<tr><td colspan="2"><p>a</p><p><em>b</em> c</p></td><td></td></tr></table>'
        )
        adapted = adapt_html_for_pdf(html)
        assert "<th>Head</th>" in adapted
        assert '<td colspan="2">a\nb c</td>' in adapted
        assert "<td></td>" in adapted
        assert "<thead>" in adapted

    def test_image_only_cell_keeps_image(self):
        adapted = adapt_html_for_pdf('<td><p><img src="data:image/png;base64,AA" width="10" /></p></td>')
        assert adapted == '<td><img src="data:image/png;base64,AA" width="10" /></td>'

    def test_corrupt_word_document_raises(self):
        with pytest.raises(ConversionError):
            normalize(UploadedFile(b"not a zip archive", "broken.docx", DOCX_MIME))

    def test_large_images_are_capped_to_printable_width(self):
        attrs = _image_attributes(DOCUMENT_STYLE)(_FakeImage(_png(2000, 100)))
        assert attrs["src"].startswith("data:image/png;base64,")
        assert attrs["width"] == str(DOCUMENT_STYLE.max_image_width_px)

    def test_small_images_keep_their_width(self):
        attrs = _image_attributes(DOCUMENT_STYLE)(_FakeImage(_png(40, 40)))
        assert attrs["width"] == "40"

    def test_unreadable_images_are_dropped(self):
        assert _image_attributes(DOCUMENT_STYLE)(_FakeImage(b"\x01\x00EMF", "image/x-emf")) == {}


class TestPlaceholders:
    def test_unsupported_type_becomes_single_page_notice(self):
        upload = UploadedFile(b"PK\x03\x04sheet", "sheet.xlsx", XLSX_MIME)
        result = normalize(upload)
        assert result.media_type == PDF_MIME
        assert result.display_name == "sheet.pdf"
        reader = PdfReader(io.BytesIO(result.data))
        assert len(reader.pages) == 1
        text = _pdf_text(result.data)
        assert "sheet.xlsx" in text
        assert "download the original" in text

    def test_notice_escapes_markup_in_filename(self):
        body = build_unsupported_notice("<script>alert(1)</script>.xlsx").body
        assert "&lt;script&gt;alert(1)&lt;/script&gt;.xlsx" in body
        assert "<script>" not in body

    def test_presentation_placeholder_escapes_filename(self):
        document = build_presentation_placeholder("<b>deck</b>.pptx")
        assert "&lt;b&gt;deck&lt;/b&gt;.pptx" in document.body
        assert document.style.landscape

    def test_hostile_filename_still_renders(self):
        result = normalize(UploadedFile(b"data", "<script>.bin", "application/x-thing"), DocumentKind.UNSUPPORTED)
        assert result.display_name == "<script>.pdf"
        assert result.data.startswith(b"%PDF")

    def test_presentation_placeholder_renders_landscape(self):
        pdf = render_pdf(build_presentation_placeholder("deck.pptx"))
        page = PdfReader(io.BytesIO(pdf)).pages[0]
        assert float(page.mediabox.width) > float(page.mediabox.height)


class TestCountPages:
    def test_non_pdf_counts_as_one_page(self):
        assert count_pages(NormalizedDocument(b"text", "a.txt", "text/plain")) == 1

    def test_unparseable_pdf_counts_as_one_page(self):
        assert count_pages(NormalizedDocument(b"fake pdf content", "a.pdf", PDF_MIME)) == 1

    def test_rendered_pdf_page_count(self):
        pdf = render_pdf(build_unsupported_notice("a.zip"))
        assert count_pages(NormalizedDocument(pdf, "a.pdf", PDF_MIME)) == 1
