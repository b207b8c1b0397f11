import logging
from dataclasses import dataclass, field

from fpdf import FPDF

from docshelf.exceptions import ConversionError
from docshelf.utils.filenames import escape_html

logger = logging.getLogger("docshelf.pdf")

MM_PER_PX = 25.4 / 72  # fpdf2 converts HTML pixel sizes at 72 dpi


@dataclass(frozen=True)
class PrintStyle:
    """Page setup shared by the HTML stylesheet and the PDF renderer."""

    page_format: str = "A4"
    landscape: bool = False
    margin_mm: float = 30.0  # 3cm
    font_family: str = "Helvetica"
    font_size_pt: int = 11
    line_height: float = 1.5

    @property
    def printable_width_mm(self) -> float:
        page_width = 297.0 if self.landscape else 210.0
        return page_width - 2 * self.margin_mm

    @property
    def max_image_width_px(self) -> int:
        return int(self.printable_width_mm / MM_PER_PX)

    def to_css(self) -> str:
        return (
            f"@page {{ size: {self.page_format}{' landscape' if self.landscape else ''}; }}\n"
            f"body {{ font-family: {self.font_family}, Arial, sans-serif; "
            f"font-size: {self.font_size_pt}pt; line-height: {self.line_height}; "
            f"margin: {self.margin_mm / 10:g}cm; }}\n"
            "img { max-width: 100%; }\n"
        )


@dataclass(frozen=True)
class HtmlDocument:
    """Intermediate markup between a source document and its PDF rendering."""

    title: str
    body: str
    style: PrintStyle = field(default_factory=PrintStyle)

    def to_html(self) -> str:
        return (
            "<!DOCTYPE html>\n"
            "<html>\n<head>\n<meta charset=\"utf-8\">\n"
            f"<title>{escape_html(self.title)}</title>\n"
            f"<style>\n{self.style.to_css()}</style>\n"
            "</head>\n<body>\n"
            f"{self.body}\n"
            "</body>\n</html>\n"
        )


def _latin1(text: str) -> str:
    """Encode to latin-1, replacing unsupported chars; fpdf built-in fonts are latin-1 only."""
    return text.encode("latin-1", errors="replace").decode("latin-1")


def render_pdf(document: HtmlDocument) -> bytes:
    """Render an HtmlDocument to a fixed-page-size PDF.

    Raises:
        ConversionError: if fpdf cannot lay out the markup.
    """
    style = document.style
    try:
        pdf = FPDF(orientation="L" if style.landscape else "P", unit="mm", format=style.page_format)
        pdf.set_title(_latin1(document.title))
        pdf.set_margins(style.margin_mm, style.margin_mm, style.margin_mm)
        pdf.set_auto_page_break(auto=True, margin=style.margin_mm)
        pdf.add_page()
        pdf.set_font(style.font_family, size=style.font_size_pt)
        pdf.write_html(_latin1(document.body), font_family=style.font_family)
        data = bytes(pdf.output())
    except Exception as exc:
        logger.error("PDF rendering failed for %r: %s", document.title, exc)
        raise ConversionError() from exc

    logger.info("Rendered %r to PDF, %d page(s), %.2f KB", document.title, pdf.page_no(), len(data) / 1024)
    return data
