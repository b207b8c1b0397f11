import gzip

import pytest

from docshelf.exceptions import DecodeError
from docshelf.services.compression import (
    compress,
    decompress,
    is_compressed_key,
    strip_compressed_suffix,
)


class TestCompression:
    @pytest.mark.parametrize("payload", [
        b"",
        b"hello world",
        b"%PDF-1.4\n" + bytes(range(256)) * 64,
    ])
    def test_round_trip(self, payload):
        assert decompress(compress(payload)) == payload

    def test_output_is_gzip(self):
        assert gzip.decompress(compress(b"abc")) == b"abc"

    def test_compress_is_deterministic(self):
        assert compress(b"same bytes") == compress(b"same bytes")

    def test_garbage_raises_decode_error(self):
        with pytest.raises(DecodeError):
            decompress(b"this is not gzip")

    def test_truncated_stream_raises_decode_error(self):
        data = compress(b"x" * 10_000)
        with pytest.raises(DecodeError):
            decompress(data[: len(data) // 2])

    def test_key_helpers(self):
        key = "documents/u1/1700000000-report.docx.gz"
        assert is_compressed_key(key)
        assert strip_compressed_suffix(key) == "documents/u1/1700000000-report.docx"
        assert not is_compressed_key("documents/u1/plain.pdf")
        assert strip_compressed_suffix("documents/u1/plain.pdf") == "documents/u1/plain.pdf"
