"""Encrypted (JWE compact) token construction."""

from __future__ import annotations

import logging
from typing import Any, Mapping

from joserfc import jwe
from joserfc.errors import JoseError

from .algorithms import (
    AlgorithmError,
    EncryptionRegistry,
    get_content_encryption_algorithm,
    get_key_management_algorithm,
)
from .claims import validate_claims
from .codec import is_signed_compact
from .constants import (
    DEFAULT_CONTENT_ENCRYPTION_ALGORITHM,
    DEFAULT_KEY_MANAGEMENT_ALGORITHM,
    DEFAULT_TOKEN_TYPE,
    NESTED_CONTENT_TYPE,
)
from .errors import ClaimsError, EncryptionError, KeyResolutionError
from .keys import KeyMaterial, KeyRole, as_key_material
from .utils import compact_json_bytes

logger = logging.getLogger(__name__)


def encrypt_payload(
    payload: bytes | str | Mapping[str, Any],
    key: KeyMaterial | Any,
    algorithm: str = DEFAULT_KEY_MANAGEMENT_ALGORITHM,
    encryption: str = DEFAULT_CONTENT_ENCRYPTION_ALGORITHM,
    *,
    kid: str | None = None,
    content_type: str | None = None,
) -> str:
    """Encrypt ``payload`` for the holder of ``key`` and return the five-part token.

    A signed compact token is tagged ``cty: JWT`` so the recipient re-parses
    the plaintext as a nested token; a mapping is serialized as claims JSON.
    """
    try:
        recipient_key = as_key_material(key, KeyRole.ENCRYPT)
        key_management = get_key_management_algorithm(algorithm)
        content_encryption = get_content_encryption_algorithm(encryption)
        key_management.check_key(recipient_key)
    except (KeyResolutionError, AlgorithmError) as exc:
        raise EncryptionError(str(exc)) from exc

    plaintext, detected_cty = _plaintext_for(payload)
    header: dict[str, Any] = {
        "alg": key_management.name,
        "enc": content_encryption,
        "typ": DEFAULT_TOKEN_TYPE,
    }
    effective_cty = content_type if content_type is not None else detected_cty
    if effective_cty:
        header["cty"] = effective_cty
    effective_kid = kid if kid is not None else recipient_key.kid
    if effective_kid:
        header["kid"] = effective_kid

    try:
        token = jwe.encrypt_compact(
            header,
            plaintext,
            recipient_key.to_jwk(),
            registry=EncryptionRegistry({key_management.name, content_encryption}),
        )
    except (JoseError, ValueError) as exc:
        raise EncryptionError(f"encryption with {key_management.name}/{content_encryption} failed: {exc}") from exc

    logger.debug(
        "encrypted %d byte payload with %s/%s (cty=%s)",
        len(plaintext),
        key_management.name,
        content_encryption,
        effective_cty,
    )
    return token


def _plaintext_for(payload: bytes | str | Mapping[str, Any]) -> tuple[bytes, str | None]:
    if isinstance(payload, Mapping):
        try:
            validate_claims(payload)
        except ClaimsError as exc:
            raise EncryptionError(f"refusing to encrypt invalid claims: {exc}") from exc
        return compact_json_bytes(dict(payload)), None
    if isinstance(payload, str):
        if is_signed_compact(payload):
            return payload.encode("ascii"), NESTED_CONTENT_TYPE
        return payload.encode("utf-8"), None
    if isinstance(payload, (bytes, bytearray)):
        return bytes(payload), None
    raise EncryptionError(f"unsupported payload type: {type(payload).__name__}")
