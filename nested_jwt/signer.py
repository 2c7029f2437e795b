"""Signed (JWS compact) token construction."""

from __future__ import annotations

import logging
from typing import Any, Mapping

from joserfc import jws
from joserfc.errors import JoseError

from .algorithms import AlgorithmError, get_signature_algorithm, signature_registry
from .claims import validate_claims
from .constants import DEFAULT_SIGNATURE_ALGORITHM, DEFAULT_TOKEN_TYPE
from .errors import ClaimsError, KeyResolutionError, SigningError
from .keys import KeyMaterial, KeyRole, as_key_material
from .utils import compact_json_bytes

logger = logging.getLogger(__name__)

_RESERVED_HEADERS = {"alg", "kid", "typ", "b64", "crit"}


def sign_claims(
    claims: Mapping[str, Any],
    key: KeyMaterial | Any,
    algorithm: str = DEFAULT_SIGNATURE_ALGORITHM,
    *,
    kid: str | None = None,
    typ: str | None = DEFAULT_TOKEN_TYPE,
    extra_headers: Mapping[str, Any] | None = None,
) -> str:
    """Sign ``claims`` and return the three-part compact token.

    ``kid`` defaults to the key material's own ``kid`` when it has one.
    """
    try:
        signing_key = as_key_material(key, KeyRole.SIGN)
        alg = get_signature_algorithm(algorithm)
        alg.check_key(signing_key)
    except (KeyResolutionError, AlgorithmError) as exc:
        raise SigningError(str(exc)) from exc

    try:
        validate_claims(claims)
    except ClaimsError as exc:
        raise SigningError(f"refusing to sign invalid claims: {exc}") from exc

    header: dict[str, Any] = {"alg": alg.name}
    if typ:
        header["typ"] = typ
    effective_kid = kid if kid is not None else signing_key.kid
    if effective_kid:
        header["kid"] = effective_kid
    for name, value in (extra_headers or {}).items():
        if name in _RESERVED_HEADERS:
            raise SigningError(f"header {name} cannot be overridden")
        header[name] = value

    try:
        token = jws.serialize_compact(
            header,
            compact_json_bytes(dict(claims)),
            signing_key.to_jwk(),
            registry=signature_registry({alg.name}),
        )
    except (JoseError, ValueError) as exc:
        raise SigningError(f"signing with {alg.name} failed: {exc}") from exc
    logger.debug("signed token with %s (kid=%s)", alg.name, effective_kid)
    return token
