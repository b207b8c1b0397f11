"""
Read-through delivery cache in front of the object store.

Entries are keyed by document id and hold decompressed, ready-to-serve bytes
with their content type and display filename. A miss resolves the document's
storage key through the metadata locator, fetches the object through a
presigned URL, gunzips it when the key says so and infers the content type
from the extension under the ``.gz`` suffix.

Entries expire ``ttl_seconds`` after insertion; a background task sweeps
expired entries every ``sweep_interval_seconds``. Concurrent misses for the
same id are collapsed onto one fetch by a per-key lock.
"""
import asyncio
import logging
import posixpath
import time
from collections.abc import Callable
from contextlib import asynccontextmanager
from dataclasses import dataclass
from typing import Literal, Protocol

import httpx

from docshelf.exceptions import NotFoundError, StorageError
from docshelf.services.classifier import (
    DOC_MIME,
    DOCX_MIME,
    OCTET_STREAM,
    PDF_MIME,
    PPT_MIME,
    PPTX_MIME,
    TEXT_MIME,
)
from docshelf.services.compression import decompress, is_compressed_key, strip_compressed_suffix
from docshelf.services.object_store import ObjectStore

logger = logging.getLogger("docshelf.delivery")

DEFAULT_TTL_SECONDS = 1800  # 30 minutes
DEFAULT_SWEEP_INTERVAL_SECONDS = 60

EXTENSION_CONTENT_TYPES = {
    ".pdf": PDF_MIME,
    ".docx": DOCX_MIME,
    ".pptx": PPTX_MIME,
    ".txt": TEXT_MIME,
    ".doc": DOC_MIME,
    ".ppt": PPT_MIME,
}

CacheStatus = Literal["HIT", "MISS"]


@dataclass(frozen=True)
class DocumentLocation:
    file_path: str
    title: str | None


class DocumentLocator(Protocol):
    async def find_document(self, document_id: str) -> DocumentLocation | None:
        ...


@dataclass(frozen=True)
class CacheEntry:
    key: str
    content_type: str
    filename: str
    data: bytes
    expires_at: float


@dataclass(frozen=True)
class DeliveredDocument:
    content_type: str
    filename: str
    data: bytes
    cache_status: CacheStatus


def inner_extension(file_path: str) -> str:
    """Extension of the stored object once the compression suffix is removed."""
    return posixpath.splitext(strip_compressed_suffix(file_path))[1].lower()


def infer_content_type(file_path: str) -> str:
    return EXTENSION_CONTENT_TYPES.get(inner_extension(file_path), OCTET_STREAM)


def display_filename(title: str | None, file_path: str) -> str:
    return f"{title or 'document'}{inner_extension(file_path) or '.bin'}"


class DeliveryCache:
    def __init__(
        self,
        object_store: ObjectStore,
        locator: DocumentLocator,
        http_client: httpx.AsyncClient,
        *,
        ttl_seconds: float = DEFAULT_TTL_SECONDS,
        sweep_interval_seconds: float = DEFAULT_SWEEP_INTERVAL_SECONDS,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self._store = object_store
        self._locator = locator
        self._http = http_client
        self._ttl = ttl_seconds
        self._sweep_interval = sweep_interval_seconds
        self._clock = clock
        self._entries: dict[str, CacheEntry] = {}
        self._locks: dict[str, tuple[asyncio.Lock, int]] = {}
        self._sweeper: asyncio.Task | None = None

    def __len__(self) -> int:
        return len(self._entries)

    def _lookup(self, document_id: str) -> CacheEntry | None:
        entry = self._entries.get(document_id)
        if entry is None:
            return None
        if self._clock() >= entry.expires_at:
            self._entries.pop(document_id, None)
            return None
        return entry

    @asynccontextmanager
    async def _key_lock(self, document_id: str):
        lock, users = self._locks.get(document_id, (None, 0))
        if lock is None:
            lock = asyncio.Lock()
        self._locks[document_id] = (lock, users + 1)
        try:
            async with lock:
                yield
        finally:
            lock, users = self._locks[document_id]
            if users <= 1:
                del self._locks[document_id]
            else:
                self._locks[document_id] = (lock, users - 1)

    async def get(self, document_id: str) -> DeliveredDocument:
        """Serve a document from cache, populating it on a miss.

        Raises:
            NotFoundError: no metadata record for ``document_id``.
            StorageError: signed URL or fetch failed.
            DecodeError: the stored bytes are not valid gzip.
        """
        entry = self._lookup(document_id)
        if entry is not None:
            logger.debug("Cache HIT for %s", document_id)
            return DeliveredDocument(entry.content_type, entry.filename, entry.data, "HIT")

        async with self._key_lock(document_id):
            # Another request may have filled the entry while we waited.
            entry = self._lookup(document_id)
            if entry is not None:
                logger.debug("Cache HIT for %s after wait", document_id)
                return DeliveredDocument(entry.content_type, entry.filename, entry.data, "HIT")

            entry = await self._load(document_id)
            self._entries[document_id] = entry

        return DeliveredDocument(entry.content_type, entry.filename, entry.data, "MISS")

    async def _load(self, document_id: str) -> CacheEntry:
        location = await self._locator.find_document(document_id)
        if location is None:
            logger.info("Document not found: %s", document_id)
            raise NotFoundError()

        raw = await self._fetch(location.file_path)
        if is_compressed_key(location.file_path):
            data = decompress(raw)
            logger.debug("Decompressed %s: %d -> %d bytes", location.file_path, len(raw), len(data))
        else:
            data = raw

        content_type = infer_content_type(location.file_path)
        logger.info("Cache MISS for %s, %s, %d bytes", document_id, content_type, len(data))
        return CacheEntry(
            key=document_id,
            content_type=content_type,
            filename=display_filename(location.title, location.file_path),
            data=data,
            expires_at=self._clock() + self._ttl,
        )

    async def _fetch(self, file_path: str) -> bytes:
        url = await self._store.signed_get_url(file_path)
        try:
            response = await self._http.get(url)
            response.raise_for_status()
        except httpx.HTTPStatusError as exc:
            logger.error("Object store answered %d for %s", exc.response.status_code, file_path)
            raise StorageError("Failed to fetch document from storage") from exc
        except httpx.HTTPError as exc:
            logger.error("Error fetching %s: %s", file_path, exc)
            raise StorageError("Failed to fetch document from storage") from exc
        return response.content

    def evict(self, document_id: str) -> None:
        self._entries.pop(document_id, None)

    def sweep(self) -> int:
        now = self._clock()
        expired = [k for k, e in self._entries.items() if e.expires_at <= now]
        for key in expired:
            del self._entries[key]
        if expired:
            logger.debug("Swept %d expired cache entries", len(expired))
        return len(expired)

    async def _sweep_loop(self) -> None:
        while True:
            await asyncio.sleep(self._sweep_interval)
            self.sweep()

    def start(self) -> None:
        if self._sweeper is None:
            self._sweeper = asyncio.create_task(self._sweep_loop())

    async def stop(self) -> None:
        if self._sweeper is None:
            return
        self._sweeper.cancel()
        try:
            await self._sweeper
        except asyncio.CancelledError:
            pass
        self._sweeper = None
