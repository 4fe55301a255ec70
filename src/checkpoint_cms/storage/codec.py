"""Snapshot blob encoding: canonical JSON compressed with zstd."""

from typing import Any, Dict
import json
import zstandard as zstd

from ..models import Snapshot, canonical_json


BLOB_FORMAT = 1


class SnapshotCodec:
    """Encode and decode snapshot blobs

    The blob is the zstd-compressed canonical JSON of the snapshot, so equal
    snapshots always compress to byte-identical blobs.
    """

    def __init__(self, compression_level: int = 3):
        """Initialize codec

        Args:
            compression_level: Zstd compression level (1-22, default 3)
        """
        self.compression_level = compression_level
        self._compressor = zstd.ZstdCompressor(level=compression_level)
        self._decompressor = zstd.ZstdDecompressor()

    def encode(self, snapshot: Snapshot) -> bytes:
        payload: Dict[str, Any] = {"format": BLOB_FORMAT}
        payload.update(snapshot.to_dict())
        return self._compressor.compress(canonical_json(payload).encode("utf-8"))

    def decode(self, blob: bytes) -> Snapshot:
        data = json.loads(self._decompressor.decompress(blob).decode("utf-8"))
        if data.get("format") != BLOB_FORMAT:
            raise ValueError(f"Unsupported snapshot blob format: {data.get('format')}")
        return Snapshot.from_dict(data)
