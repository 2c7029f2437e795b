"""Sign/encrypt orchestration for nested tokens."""

from __future__ import annotations

import logging
from enum import Enum
from typing import Any, Mapping

from .constants import (
    DEFAULT_CONTENT_ENCRYPTION_ALGORITHM,
    DEFAULT_KEY_MANAGEMENT_ALGORITHM,
    DEFAULT_SIGNATURE_ALGORITHM,
)
from .encryptor import encrypt_payload
from .errors import InvalidRequest
from .keys import KeyMaterial
from .signer import sign_claims

logger = logging.getLogger(__name__)


class BuildMode(str, Enum):
    SIGN = "sign"
    ENCRYPT = "encrypt"
    SIGN_THEN_ENCRYPT = "sign+encrypt"


def select_mode(signing_key: Any, encryption_key: Any) -> BuildMode:
    if signing_key is not None and encryption_key is not None:
        return BuildMode.SIGN_THEN_ENCRYPT
    if signing_key is not None:
        return BuildMode.SIGN
    if encryption_key is not None:
        return BuildMode.ENCRYPT
    raise InvalidRequest("nothing to protect: neither a signing nor an encryption key was supplied")


def build_token(
    claims: Mapping[str, Any],
    signing_key: KeyMaterial | Any = None,
    encryption_key: KeyMaterial | Any = None,
    *,
    signature_algorithm: str = DEFAULT_SIGNATURE_ALGORITHM,
    key_management_algorithm: str = DEFAULT_KEY_MANAGEMENT_ALGORITHM,
    content_encryption_algorithm: str = DEFAULT_CONTENT_ENCRYPTION_ALGORITHM,
    signing_kid: str | None = None,
    encryption_kid: str | None = None,
) -> str:
    mode = select_mode(signing_key, encryption_key)
    logger.debug("building token in %s mode", mode.value)

    if mode is BuildMode.ENCRYPT:
        return encrypt_payload(
            claims,
            encryption_key,
            key_management_algorithm,
            content_encryption_algorithm,
            kid=encryption_kid,
        )

    signed = sign_claims(claims, signing_key, signature_algorithm, kid=signing_kid)
    if mode is BuildMode.SIGN:
        return signed
    return encrypt_payload(
        signed,
        encryption_key,
        key_management_algorithm,
        content_encryption_algorithm,
        kid=encryption_kid,
    )
