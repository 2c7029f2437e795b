"""Claims set construction from templates and overrides."""

from __future__ import annotations

import copy
import json
import uuid
from pathlib import Path
from typing import Any, Mapping

from .constants import DEFAULT_EXP_OFFSET_S
from .errors import ClaimsError
from .utils import canonical_json_bytes, is_finite_number, now_epoch

TIME_CLAIMS = ("exp", "nbf", "iat", "auth_time")


def load_claims_template(path: str | Path) -> dict[str, Any]:
    try:
        content = Path(path).read_text(encoding="utf-8")
    except OSError as exc:
        raise ClaimsError(f"unable to read claims template {path}: {exc}") from exc
    try:
        decoded = json.loads(content)
    except ValueError as exc:
        raise ClaimsError(f"claims template {path} is not valid JSON") from exc
    if not isinstance(decoded, dict):
        raise ClaimsError(f"claims template {path} must contain a JSON object")
    return decoded


def build_claims(
    template: Mapping[str, Any],
    overrides: Mapping[str, Any] | None = None,
    *,
    now: int | float | None = None,
    exp_offset: Any = None,
    nbf_offset: Any = None,
) -> dict[str, Any]:
    """Merge ``overrides`` onto ``template`` and fill in the time claims.

    An override set to ``None`` removes that claim. ``exp`` is ``now +
    exp_offset`` (default 300 seconds) unless the merged claims already carry
    one; ``iat``, ``auth_time`` and ``jti`` are filled in when absent.
    """
    if not isinstance(template, Mapping):
        raise ClaimsError("claims template must be a mapping")
    if overrides is not None and not isinstance(overrides, Mapping):
        raise ClaimsError("claims overrides must be a mapping")

    issued_at = int(now) if now is not None else now_epoch()
    claims: dict[str, Any] = copy.deepcopy(dict(template))
    for name, value in (overrides or {}).items():
        if not isinstance(name, str):
            raise ClaimsError("claim names must be strings")
        if value is None:
            claims.pop(name, None)
        else:
            claims[name] = copy.deepcopy(value)

    claims.setdefault("iat", issued_at)
    claims.setdefault("auth_time", issued_at)
    claims.setdefault("jti", str(uuid.uuid4()))
    if exp_offset is not None or "exp" not in claims:
        claims["exp"] = issued_at + _offset(exp_offset, "exp_offset", DEFAULT_EXP_OFFSET_S)
    if nbf_offset is not None:
        claims["nbf"] = issued_at + _offset(nbf_offset, "nbf_offset", 0)

    validate_claims(claims)
    return claims


def validate_claims(claims: Mapping[str, Any]) -> None:
    iss = claims.get("iss")
    if not isinstance(iss, str) or not iss:
        raise ClaimsError("claims require a non-empty iss")

    for name in TIME_CLAIMS:
        if name in claims and not is_finite_number(claims[name]):
            raise ClaimsError(f"{name} must be a numeric date")
    if "exp" not in claims:
        raise ClaimsError("claims require exp")

    exp = claims["exp"]
    nbf = claims.get("nbf")
    iat = claims.get("iat")
    if nbf is not None and not exp > nbf:
        raise ClaimsError("exp must be later than nbf")
    if iat is not None and not exp > iat:
        raise ClaimsError("exp must be later than iat")
    if nbf is not None and iat is not None and not nbf > iat:
        raise ClaimsError("nbf must be later than iat")

    try:
        canonical_json_bytes(dict(claims))
    except (TypeError, ValueError) as exc:
        raise ClaimsError(f"claims are not JSON serializable: {exc}") from exc


def _offset(value: Any, name: str, default: int) -> int | float:
    if value is None:
        return default
    if not is_finite_number(value):
        raise ClaimsError(f"{name} must be numeric")
    return value
