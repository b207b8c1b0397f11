import asyncio
import logging
import time
from collections.abc import Callable
from dataclasses import dataclass
from typing import Protocol

from sqlalchemy.orm import Session, sessionmaker

from docshelf.models.document import Document
from docshelf.services.compression import compress
from docshelf.services.delivery_cache import DocumentLocation
from docshelf.services.normalizer import NormalizedDocument, count_pages, normalize
from docshelf.services.object_store import ObjectStore, build_object_key
from docshelf.services.uploads import UploadedFile

logger = logging.getLogger("docshelf.ingest")


@dataclass(frozen=True)
class IngestResult:
    key: str
    document: NormalizedDocument
    pages: int


class KeyIndex(Protocol):
    async def file_path_in_use(self, file_path: str) -> bool:
        ...


class DocumentIngestor:
    """Upload -> classify -> normalize -> compress -> store.

    Nothing is written when conversion fails, and an UploadError from the
    store means the caller must not record a metadata row for the key.

    Object writes are upserts, so the key is claimed before writing: a key
    still being written by another request, or already recorded in
    ``key_index``, moves the timestamp forward by a millisecond.
    """

    def __init__(
        self,
        object_store: ObjectStore,
        clock: Callable[[], float] = time.time,
        *,
        key_index: KeyIndex | None = None,
    ) -> None:
        self._store = object_store
        self._clock = clock
        self._key_index = key_index
        self._writing: set[str] = set()

    async def _claim_key(self, owner_id: str, display_name: str) -> str:
        now_ms = int(self._clock() * 1000)
        while True:
            key = build_object_key(owner_id, display_name, now_ms)
            if key not in self._writing:
                self._writing.add(key)
                if self._key_index is None or not await self._key_index.file_path_in_use(key):
                    return key
                self._writing.discard(key)
            now_ms += 1

    async def ingest(self, upload: UploadedFile, owner_id: str) -> IngestResult:
        # Conversion is CPU-bound; keep it off the event loop.
        document = await asyncio.to_thread(normalize, upload)
        pages = await asyncio.to_thread(count_pages, document)
        payload = await asyncio.to_thread(compress, document.data)

        key = await self._claim_key(owner_id, document.display_name)
        try:
            await self._store.put(key, payload, document.media_type)
        finally:
            # The caller records the row before yielding to the loop again.
            self._writing.discard(key)
        logger.info(
            "Ingested %s as %s (%s, %d -> %d bytes)",
            upload.display_name, key, document.media_type, len(document.data), len(payload),
        )
        return IngestResult(key=key, document=document, pages=pages)


class SqlDocumentLocator:
    """Read-only view of the documents table used by the delivery cache and ingestor."""

    def __init__(self, session_factory: sessionmaker) -> None:
        self._session_factory = session_factory

    def _find(self, document_id: str) -> DocumentLocation | None:
        db: Session = self._session_factory()
        try:
            doc = db.query(Document).filter(Document.id == document_id).first()
            if not doc:
                return None
            return DocumentLocation(file_path=doc.file_path, title=doc.title)
        finally:
            db.close()

    async def find_document(self, document_id: str) -> DocumentLocation | None:
        return await asyncio.to_thread(self._find, document_id)

    def _file_path_in_use(self, file_path: str) -> bool:
        db: Session = self._session_factory()
        try:
            return db.query(Document.id).filter(Document.file_path == file_path).first() is not None
        finally:
            db.close()

    async def file_path_in_use(self, file_path: str) -> bool:
        return await asyncio.to_thread(self._file_path_in_use, file_path)
