from dataclasses import dataclass
from typing import Protocol

from docshelf.exceptions import EmptyUploadError, UploadTooLargeError

CHUNK_SIZE = 1024 * 1024


@dataclass(frozen=True)
class UploadedFile:
    """A submitted file, held only for the duration of one conversion."""

    data: bytes
    display_name: str
    declared_media_type: str


class UploadSource(Protocol):
    """Anything that can produce a byte payload, a filename and a media type.

    FastAPI's UploadFile satisfies this as-is (its media type attribute is
    ``content_type``); BufferedUpload covers callers that already hold bytes.
    """

    filename: str | None
    content_type: str | None

    async def read(self, size: int = -1) -> bytes:
        ...


@dataclass
class BufferedUpload:
    data: bytes
    filename: str | None
    content_type: str | None = None
    _offset: int = 0

    async def read(self, size: int = -1) -> bytes:
        if size < 0:
            size = len(self.data) - self._offset
        chunk = self.data[self._offset:self._offset + size]
        self._offset += len(chunk)
        return chunk


async def receive_upload(source: UploadSource, max_bytes: int) -> UploadedFile:
    """Drain an upload source into an UploadedFile.

    Raises:
        UploadTooLargeError: if the payload exceeds ``max_bytes``.
        EmptyUploadError: if the payload is empty.
    """
    size = 0
    chunks: list[bytes] = []
    while True:
        chunk = await source.read(CHUNK_SIZE)
        if not chunk:
            break
        size += len(chunk)
        if size > max_bytes:
            raise UploadTooLargeError(f"File too large (max {max_bytes} bytes)")
        chunks.append(chunk)

    content = b"".join(chunks)
    if not content:
        raise EmptyUploadError()

    return UploadedFile(
        data=content,
        display_name=source.filename or "upload",
        declared_media_type=source.content_type or "",
    )
