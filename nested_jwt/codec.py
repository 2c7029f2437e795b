"""Compact token framing checks run before a token reaches joserfc.

Tokens are split, every segment must be canonical base64url and the
protected header must be a JSON object naming its algorithm. Signing,
encryption and their serialization live in :mod:`joserfc`.
"""

from __future__ import annotations

import json
from dataclasses import dataclass
from typing import Any, NoReturn

from .constants import MAX_TOKEN_BYTES
from .errors import MalformedTokenError
from .utils import b64url_decode, b64url_encode, compact_json_bytes

SIGNED_PARTS = 3
ENCRYPTED_PARTS = 5


@dataclass(frozen=True, slots=True)
class CompactToken:
    header: dict[str, Any]
    segments: tuple[str, ...]

    @property
    def alg(self) -> str:
        return self.header["alg"]

    @property
    def is_encrypted(self) -> bool:
        return len(self.segments) == ENCRYPTED_PARTS

    def segment(self, index: int) -> bytes:
        return b64url_decode(self.segments[index])

    def serialize(self) -> str:
        return ".".join(self.segments)


class SignedToken(CompactToken):
    @property
    def payload(self) -> bytes:
        return self.segment(1)

    @property
    def signature(self) -> bytes:
        return self.segment(2)


class EncryptedToken(CompactToken):
    @property
    def enc(self) -> str:
        return self.header["enc"]

    @property
    def encrypted_key(self) -> bytes:
        return self.segment(1)

    @property
    def iv(self) -> bytes:
        return self.segment(2)

    @property
    def ciphertext(self) -> bytes:
        return self.segment(3)

    @property
    def tag(self) -> bytes:
        return self.segment(4)


def encode_json_segment(value: dict[str, Any]) -> str:
    return b64url_encode(compact_json_bytes(value))


def decode_json_object(data: bytes | str, *, what: str = "payload") -> dict[str, Any]:
    """Strict JSON object decoding: no NaN/Infinity, bounded nesting."""
    try:
        text = data.decode("utf-8") if isinstance(data, bytes) else data
        decoded = json.loads(text, parse_constant=_reject_constant)
    except (UnicodeDecodeError, ValueError) as exc:
        raise MalformedTokenError(f"invalid JSON {what}: {exc}") from exc
    except RecursionError as exc:
        raise MalformedTokenError(f"invalid JSON {what}: nesting too deep") from exc

    if not isinstance(decoded, dict):
        raise MalformedTokenError(f"{what} must be a JSON object")
    return decoded


def split_compact(token: str) -> list[str]:
    if not isinstance(token, str):
        raise MalformedTokenError("token must be a string")
    if len(token) > MAX_TOKEN_BYTES:
        raise MalformedTokenError("token exceeds maximum size")
    try:
        token.encode("ascii")
    except UnicodeEncodeError as exc:
        raise MalformedTokenError("token must be ASCII") from exc

    parts = token.strip().split(".")
    if len(parts) not in {SIGNED_PARTS, ENCRYPTED_PARTS}:
        raise MalformedTokenError(f"token must have 3 or 5 segments, found {len(parts)}")
    return parts


def is_signed_compact(value: Any) -> bool:
    return isinstance(value, str) and value.count(".") == SIGNED_PARTS - 1 and " " not in value


def is_encrypted_compact(value: Any) -> bool:
    return isinstance(value, str) and value.count(".") == ENCRYPTED_PARTS - 1


def parse_signed(token: str) -> SignedToken:
    parts = _checked_parts(token)
    if len(parts) != SIGNED_PARTS:
        raise MalformedTokenError("signed token must have 3 segments")
    return SignedToken(header=_decode_header(parts[0]), segments=tuple(parts))


def parse_encrypted(token: str) -> EncryptedToken:
    parts = _checked_parts(token)
    if len(parts) != ENCRYPTED_PARTS:
        raise MalformedTokenError("encrypted token must have 5 segments")
    header = _decode_header(parts[0])
    if not isinstance(header.get("enc"), str):
        raise MalformedTokenError("encrypted token header requires enc")
    return EncryptedToken(header=header, segments=tuple(parts))


def _checked_parts(token: str) -> list[str]:
    parts = split_compact(token)
    for index, part in enumerate(parts[1:], start=1):
        try:
            b64url_decode(part)
        except ValueError as exc:
            raise MalformedTokenError(f"invalid token segment {index}: {exc}") from exc
    return parts


def _decode_header(segment: str) -> dict[str, Any]:
    try:
        raw = b64url_decode(segment)
    except ValueError as exc:
        raise MalformedTokenError(f"invalid header segment: {exc}") from exc
    header = decode_json_object(raw, what="header")

    if not isinstance(header.get("alg"), str) or not header["alg"]:
        raise MalformedTokenError("token header requires alg")
    crit = header.get("crit")
    if crit is not None:
        raise MalformedTokenError("critical header parameters are not supported")
    return header


def _reject_constant(name: str) -> NoReturn:
    raise ValueError(f"non-finite number {name} is not allowed")
