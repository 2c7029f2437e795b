"""Small utility helpers."""

from __future__ import annotations

import base64
import binascii
import hashlib
import json
import math
import re
import time
from typing import Any

_B64URL_RE = re.compile(r"^[A-Za-z0-9_-]*$")


def now_epoch() -> int:
    return int(time.time())


def canonical_json_bytes(value: Any) -> bytes:
    return json.dumps(
        value,
        sort_keys=True,
        separators=(",", ":"),
        ensure_ascii=False,
        allow_nan=False,
    ).encode("utf-8")


def compact_json_bytes(value: Any) -> bytes:
    return json.dumps(value, separators=(",", ":"), ensure_ascii=False, allow_nan=False).encode("utf-8")


def sha256_hex(data: bytes) -> str:
    return hashlib.sha256(data).hexdigest()


def b64url_encode(data: bytes) -> str:
    return base64.urlsafe_b64encode(data).decode("ascii").rstrip("=")


def b64url_decode(data: str) -> bytes:
    """Decode unpadded base64url in its canonical form only.

    Padding, foreign characters and non-zero trailing bits are rejected, so
    every byte string has exactly one accepted encoding.
    """
    if not isinstance(data, str) or not _B64URL_RE.match(data):
        raise ValueError("invalid base64url segment")
    if len(data) % 4 == 1:
        raise ValueError("invalid base64url segment length")
    padding = "=" * ((4 - len(data) % 4) % 4)
    try:
        decoded = base64.urlsafe_b64decode(data + padding)
    except binascii.Error as exc:
        raise ValueError("invalid base64url segment") from exc
    if b64url_encode(decoded) != data:
        raise ValueError("non-canonical base64url segment")
    return decoded


def is_finite_number(value: Any) -> bool:
    """True for int/float values that are not bool, NaN or infinite."""
    if isinstance(value, bool):
        return False
    if isinstance(value, int):
        return True
    return isinstance(value, float) and math.isfinite(value)


def json_dumps_pretty(value: Any) -> str:
    return json.dumps(value, indent=2, ensure_ascii=False, sort_keys=True)
