"""
URL-safe snapshot codec.

A snapshot is serialized as compact JSON (sorted keys, so equal snapshots
give equal tokens), deflated with zlib and base64url encoded without
padding. The token alphabet is [A-Za-z0-9_-], safe in a query string
without further escaping.
"""

import base64
import binascii
import json
import zlib
from typing import Any

from .errors import DecodeError

# Upper bound on decompressed size, guards against zip bombs in shared links
MAX_DECODED_BYTES = 5 * 1024 * 1024


def encode_snapshot(snapshot: dict) -> str:
    """Encode a snapshot dict into a URL-safe token."""
    text = json.dumps(snapshot, sort_keys=True, separators=(",", ":"), ensure_ascii=False)
    compressed = zlib.compress(text.encode("utf-8"), 9)
    return base64.urlsafe_b64encode(compressed).decode("ascii").rstrip("=")


def decode_snapshot(token: str) -> dict[str, Any]:
    """
    Decode a token produced by encode_snapshot.

    Raises:
        DecodeError: The token is not valid base64url, not a zlib stream,
            too large, not JSON (or nested too deeply), or not a JSON object
    """
    if not isinstance(token, str) or not token:
        raise DecodeError("Empty canvas token")

    padded = token + "=" * (-len(token) % 4)
    try:
        compressed = base64.urlsafe_b64decode(padded.encode("ascii"))
    except (UnicodeEncodeError, binascii.Error, ValueError) as e:
        raise DecodeError(f"Canvas token is not base64url: {e}") from e

    decompressor = zlib.decompressobj()
    try:
        raw = decompressor.decompress(compressed, MAX_DECODED_BYTES)
    except zlib.error as e:
        raise DecodeError(f"Canvas token is not a compressed snapshot: {e}") from e
    if decompressor.unconsumed_tail:
        raise DecodeError("Canvas token expands beyond the size limit")
    if not decompressor.eof:
        raise DecodeError("Canvas token is truncated")

    try:
        snapshot = json.loads(raw.decode("utf-8"))
    except (UnicodeDecodeError, ValueError) as e:
        raise DecodeError(f"Canvas token does not contain JSON: {e}") from e
    except RecursionError as e:
        raise DecodeError("Canvas token nests JSON too deeply") from e

    if not isinstance(snapshot, dict):
        raise DecodeError("Canvas token does not contain a snapshot object")
    return snapshot
