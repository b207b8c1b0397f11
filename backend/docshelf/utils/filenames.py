import html
import posixpath


def sanitize_filename(name: str) -> str:
    keep = set("abcdefghijklmnopqrstuvwxyzABCDEFGHIJKLMNOPQRSTUVWXYZ0123456789._-")
    return "".join(c if c in keep else "_" for c in name)


def split_extension(name: str) -> tuple[str, str]:
    """Split "notes.final.docx" into ("notes.final", ".docx"); the extension is lower-cased."""
    stem, ext = posixpath.splitext(name)
    return stem, ext.lower()


def replace_extension(name: str, ext: str) -> str:
    stem, _ = posixpath.splitext(name)
    return f"{stem or 'document'}{ext}"


def escape_html(text: str) -> str:
    # Filenames come from the client; never interpolate them unescaped.
    return html.escape(text, quote=False)
