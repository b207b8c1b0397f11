from docshelf.models.document import Document

__all__ = ["Document"]
