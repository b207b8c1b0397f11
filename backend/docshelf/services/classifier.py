"""
Decide which conversion path an upload takes.

Classification is total: every (media type, filename) pair lands in exactly
one DocumentKind, including UNSUPPORTED. Nothing here raises.
"""
from enum import Enum

PDF_MIME = "application/pdf"
TEXT_MIME = "text/plain"
DOCX_MIME = "application/vnd.openxmlformats-officedocument.wordprocessingml.document"
DOC_MIME = "application/msword"
PPTX_MIME = "application/vnd.openxmlformats-officedocument.presentationml.presentation"
PPT_MIME = "application/vnd.ms-powerpoint"
OCTET_STREAM = "application/octet-stream"

PRESENTATION_MIMES = {PPTX_MIME, PPT_MIME}

WORD_EXTENSIONS = (".docx", ".doc")
POWERPOINT_EXTENSIONS = (".pptx", ".ppt")


class DocumentKind(str, Enum):
    PDF = "pdf"
    PLAIN_TEXT = "plain-text"
    WORD = "word"
    POWERPOINT = "powerpoint"
    UNSUPPORTED = "unsupported"


def is_word(media_type: str, name: str) -> bool:
    return (
        "application/vnd.openxmlformats-officedocument.wordprocessingml.document" in media_type
        or DOC_MIME in media_type
        or name.endswith(WORD_EXTENSIONS)
    )


def is_powerpoint(media_type: str, name: str) -> bool:
    return (
        "application/vnd.openxmlformats-officedocument.presentationml.presentation" in media_type
        or PPT_MIME in media_type
        or name.endswith(POWERPOINT_EXTENSIONS)
    )


def classify(media_type: str | None, filename: str | None) -> DocumentKind:
    media_type = media_type or ""
    # Name check is a fallback for uploads the browser mislabeled.
    name = (filename or "").lower()

    if media_type == PDF_MIME:
        return DocumentKind.PDF
    if media_type == TEXT_MIME:
        return DocumentKind.PLAIN_TEXT
    if is_word(media_type, name):
        return DocumentKind.WORD
    if is_powerpoint(media_type, name):
        return DocumentKind.POWERPOINT
    return DocumentKind.UNSUPPORTED
