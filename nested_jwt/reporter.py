"""Pass/fail reporting of recovered claims against expectations."""

from __future__ import annotations

import copy
from dataclasses import dataclass, field
from types import MappingProxyType
from typing import Any, Mapping

from .errors import ErrorKind, TokenError

_MISSING = object()


@dataclass(frozen=True, slots=True)
class VerificationResult:
    passed: bool
    msg: str
    error_kind: ErrorKind | None = None
    claims: Mapping[str, Any] = field(default_factory=lambda: MappingProxyType({}), compare=False, repr=False)

    def to_dict(self) -> dict[str, Any]:
        return {"pass": self.passed, "msg": self.msg}


def report(claims: Mapping[str, Any], expectations: Mapping[str, Any] | None = None) -> VerificationResult:
    """Compare expected claim values in order; the first mismatch fails the result."""
    frozen_claims = MappingProxyType(copy.deepcopy(dict(claims)))
    checked = 0
    for name, expected in (expectations or {}).items():
        actual = claims.get(name, _MISSING)
        if actual is _MISSING:
            return VerificationResult(False, f"{name} claim is missing", ErrorKind.INVALID_CLAIM, frozen_claims)
        if not _matches(name, actual, expected):
            return VerificationResult(
                False,
                f"{name} mismatch: expected {expected!r}, got {actual!r}",
                ErrorKind.INVALID_CLAIM,
                frozen_claims,
            )
        checked += 1
    return VerificationResult(True, f"token valid, {checked} claim check(s) passed", None, frozen_claims)


def report_error(exc: TokenError) -> VerificationResult:
    return VerificationResult(False, f"{exc.kind.value}: {exc}", exc.kind)


def _matches(name: str, actual: Any, expected: Any) -> bool:
    if name == "aud" and isinstance(actual, list) and not isinstance(expected, list):
        return expected in actual
    if isinstance(actual, bool) or isinstance(expected, bool):
        return type(actual) is type(expected) and actual == expected
    return actual == expected
