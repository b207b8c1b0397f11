"""Gzip codec applied to every stored object, whatever its format."""
import gzip
import zlib

from docshelf.exceptions import DecodeError

COMPRESSED_SUFFIX = ".gz"


def compress(data: bytes) -> bytes:
    # mtime=0 keeps the output a pure function of the input.
    return gzip.compress(data, mtime=0)


def decompress(data: bytes) -> bytes:
    try:
        return gzip.decompress(data)
    except (OSError, EOFError, zlib.error) as exc:
        raise DecodeError() from exc


def is_compressed_key(key: str) -> bool:
    return key.endswith(COMPRESSED_SUFFIX)


def strip_compressed_suffix(key: str) -> str:
    if is_compressed_key(key):
        return key[: -len(COMPRESSED_SUFFIX)]
    return key
