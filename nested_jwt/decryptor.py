"""Encrypted (JWE compact) token decryption."""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Any, Collection

from joserfc import jwe
from joserfc.errors import DecodeError, JoseError

from .algorithms import (
    AlgorithmError,
    EncryptionRegistry,
    get_content_encryption_algorithm,
    get_key_management_algorithm,
)
from .codec import parse_encrypted
from .constants import NESTED_CONTENT_TYPE
from .errors import DecryptionError
from .keys import KeyMaterial, KeyRole, as_key_material

logger = logging.getLogger(__name__)


@dataclass(frozen=True, slots=True)
class DecryptedToken:
    header: dict[str, Any]
    plaintext: bytes

    @property
    def is_nested(self) -> bool:
        cty = self.header.get("cty")
        return isinstance(cty, str) and cty.upper() == NESTED_CONTENT_TYPE


def decrypt_token(
    token: str,
    key: KeyMaterial | Any,
    *,
    allowed_algorithms: Collection[str] | None = None,
    allowed_encryptions: Collection[str] | None = None,
) -> DecryptedToken:
    """Unwrap the content key and authenticate/decrypt the ciphertext.

    Every cryptographic failure surfaces as a :class:`DecryptionError` with
    the same message; the cause is kept on ``reason`` for diagnostics.
    """
    recipient_key = as_key_material(key, KeyRole.DECRYPT)
    parsed = parse_encrypted(token)

    alg_name = parsed.header["alg"]
    enc_name = parsed.header["enc"]
    if allowed_algorithms is not None and alg_name not in allowed_algorithms:
        raise _failure(f"key management algorithm not allowed: {alg_name}")
    if allowed_encryptions is not None and enc_name not in allowed_encryptions:
        raise _failure(f"content encryption algorithm not allowed: {enc_name}")
    try:
        get_key_management_algorithm(alg_name).check_key(recipient_key)
        get_content_encryption_algorithm(enc_name)
    except AlgorithmError as exc:
        raise _failure(str(exc)) from exc

    registry = EncryptionRegistry({alg_name, enc_name})
    try:
        decrypted = jwe.decrypt_compact(parsed.serialize(), recipient_key.to_jwk(), registry=registry)
    except DecodeError:
        raise _failure(registry.unwrap_failure or "authentication tag mismatch") from None
    except (JoseError, ValueError) as exc:
        raise _failure(registry.unwrap_failure or f"decryption rejected: {exc}") from None

    if registry.unwrap_failure is not None:
        raise _failure(registry.unwrap_failure)
    logger.debug("decrypted token with %s/%s", alg_name, enc_name)
    return DecryptedToken(header=dict(decrypted.protected), plaintext=decrypted.plaintext or b"")


def _failure(reason: str) -> DecryptionError:
    logger.debug("decryption failed: %s", reason)
    return DecryptionError(reason)
