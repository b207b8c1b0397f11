"""
Normalize uploaded office documents into a servable format.

PDFs and plain text pass through untouched and presentations keep their
original bytes. Word documents go through two stages: mammoth turns the
document markup into HTML with inlined images, then fpdf renders that HTML
onto A4 pages. Anything else becomes a one-page "preview not available"
notice rendered by the same renderer.
"""
import base64
import io
import logging
import re
from dataclasses import dataclass

import mammoth
from PIL import Image
from pypdf import PdfReader
from pypdf.errors import PyPdfError

from docshelf.exceptions import ConversionError
from docshelf.services.classifier import (
    PDF_MIME,
    PPT_MIME,
    PPTX_MIME,
    PRESENTATION_MIMES,
    TEXT_MIME,
    DocumentKind,
    classify,
)
from docshelf.services.pdf_service import HtmlDocument, PrintStyle, render_pdf
from docshelf.services.uploads import UploadedFile
from docshelf.utils.filenames import escape_html, replace_extension, split_extension

logger = logging.getLogger("docshelf.normalizer")

DOCUMENT_STYLE = PrintStyle()
NOTICE_STYLE = PrintStyle(margin_mm=20.0)
SLIDE_STYLE = PrintStyle(landscape=True, margin_mm=20.0)

# mammoth emits empty anchors for Word bookmarks; fpdf only understands links.
_BOOKMARK_RE = re.compile(r"<a id=\"[^\"]*\"></a>")
# Footnote, endnote, comment and TOC references point at ids fpdf never registers.
_INTERNAL_LINK_RE = re.compile(r"<a href=\"#[^\"]*\"[^>]*>(.*?)</a>", re.DOTALL)
_CELL_RE = re.compile(r"(<t[dh](?:\s[^>]*)?>)(.*?)(</t[dh]>)", re.DOTALL)
_CELL_BREAK_RE = re.compile(r"</p>|</li>|<br\s*/?>")
_TAG_RE = re.compile(r"<[^>]+>")
_IMG_RE = re.compile(r"<img\s[^>]*>")


@dataclass(frozen=True)
class NormalizedDocument:
    data: bytes
    display_name: str
    media_type: str


def _image_attributes(style: PrintStyle):
    max_width = style.max_image_width_px

    def convert(image) -> dict[str, str]:
        with image.open() as stream:
            data = stream.read()
        try:
            with Image.open(io.BytesIO(data)) as img:
                width = img.width
        except OSError:
            # EMF/WMF and friends: fpdf cannot draw them, leave the image out.
            logger.warning("Dropping unreadable %s image from Word document", image.content_type)
            return {}
        encoded = base64.b64encode(data).decode("ascii")
        return {
            "src": f"data:{image.content_type};base64,{encoded}",
            "width": str(min(width, max_width)),
        }

    return convert


def _flatten_cell(match: re.Match) -> str:
    # fpdf fills a table cell from a single text run and rejects any further markup.
    opening, inner, closing = match.groups()
    lines = [_TAG_RE.sub("", part).strip() for part in _CELL_BREAK_RE.split(inner)]
    text = "\n".join(line for line in lines if line)
    if not text:
        image = _IMG_RE.search(inner)
        text = image.group(0) if image else ""
    return f"{opening}{text}{closing}"


def adapt_html_for_pdf(html: str) -> str:
    """Rewrite mammoth output into the HTML subset fpdf's write_html accepts."""
    html = _BOOKMARK_RE.sub("", html)
    html = _INTERNAL_LINK_RE.sub(r"\1", html)
    return _CELL_RE.sub(_flatten_cell, html)


def docx_to_html(data: bytes, title: str = "Converted Document") -> HtmlDocument:
    """Stage one of the Word path: document markup to structural HTML."""
    try:
        result = mammoth.convert_to_html(
            io.BytesIO(data),
            convert_image=mammoth.images.img_element(_image_attributes(DOCUMENT_STYLE)),
        )
    except Exception as exc:
        logger.error("Word to HTML conversion failed: %s", exc)
        raise ConversionError("Failed to convert Word document to PDF") from exc

    for message in result.messages:
        logger.debug("mammoth: %s", message)

    body = adapt_html_for_pdf(result.value)
    return HtmlDocument(title=title, body=body, style=DOCUMENT_STYLE)


def build_unsupported_notice(filename: str) -> HtmlDocument:
    name = escape_html(filename)
    body = (
        '<h1 align="center">Document Preview Not Available</h1>\n'
        f'<p align="center">The file "{name}" cannot be directly previewed.</p>\n'
        '<p align="center">Please download the original file to view its contents.</p>'
    )
    return HtmlDocument(title="Document Conversion", body=body, style=NOTICE_STYLE)


def build_presentation_placeholder(filename: str) -> HtmlDocument:
    name = escape_html(filename)
    body = (
        "<br><br><br><br>\n"
        '<h1 align="center">PowerPoint Preview</h1>\n'
        f'<p align="center">This is a PDF preview of: "{name}"</p>\n'
        '<p align="center">Download the original presentation to view its slides.</p>'
    )
    return HtmlDocument(title="PowerPoint Preview", body=body, style=SLIDE_STYLE)


def _presentation_media_type(upload: UploadedFile) -> str:
    if upload.declared_media_type in PRESENTATION_MIMES:
        return upload.declared_media_type
    _, ext = split_extension(upload.display_name)
    return PPT_MIME if ext == ".ppt" else PPTX_MIME


def normalize(upload: UploadedFile, kind: DocumentKind | None = None) -> NormalizedDocument:
    """Produce the servable form of an upload.

    Raises:
        ConversionError: if the Word path or the placeholder render fails.
    """
    if kind is None:
        kind = classify(upload.declared_media_type, upload.display_name)
    name = upload.display_name
    logger.info("Processing file: %s, type: %s, kind: %s", name, upload.declared_media_type, kind.value)

    if kind is DocumentKind.PDF:
        return NormalizedDocument(upload.data, name, PDF_MIME)

    if kind is DocumentKind.PLAIN_TEXT:
        return NormalizedDocument(upload.data, name, TEXT_MIME)

    if kind is DocumentKind.POWERPOINT:
        return NormalizedDocument(upload.data, name, _presentation_media_type(upload))

    if kind is DocumentKind.WORD:
        stem, _ = split_extension(name)
        pdf = render_pdf(docx_to_html(upload.data, title=stem or "Converted Document"))
    else:
        logger.info("Unsupported file type for %s, creating placeholder PDF", name)
        pdf = render_pdf(build_unsupported_notice(name))

    return NormalizedDocument(pdf, replace_extension(name, ".pdf"), PDF_MIME)


def count_pages(document: NormalizedDocument) -> int:
    if document.media_type != PDF_MIME:
        return 1
    try:
        return max(len(PdfReader(io.BytesIO(document.data)).pages), 1)
    except (PyPdfError, ValueError, OSError) as exc:
        logger.warning("Could not count pages of %s: %s", document.display_name, exc)
        return 1
