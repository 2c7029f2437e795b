"""Validator configuration using MicroProfile JWT property names."""

from __future__ import annotations

import json
import logging
import pathlib
from dataclasses import dataclass
from typing import Any, Mapping

from . import constants as names
from .algorithms import CONTENT_ENCRYPTION_ALGORITHMS, KEY_MANAGEMENT_ALGORITHMS, SIGNATURE_ALGORITHMS
from .constants import DEFAULT_DECRYPT_ALGORITHMS, DEFAULT_VERIFY_ALGORITHMS
from .errors import ConfigError

logger = logging.getLogger(__name__)


@dataclass(frozen=True, slots=True)
class ValidatorConfig:
    verify_public_key: str | None = None
    verify_public_key_location: str | None = None
    verify_algorithms: frozenset[str] = DEFAULT_VERIFY_ALGORITHMS
    decrypt_key_location: str | None = None
    decrypt_algorithms: frozenset[str] = DEFAULT_DECRYPT_ALGORITHMS
    decrypt_encryptions: frozenset[str] = frozenset(CONTENT_ENCRYPTION_ALGORITHMS)
    issuer: str | None = None
    audiences: frozenset[str] | None = None
    clock_skew: int = 0
    token_age: int | None = None
    token_header: str = "Authorization"

    @property
    def verification_key_descriptor(self) -> str | None:
        return self.verify_public_key or self.verify_public_key_location

    @classmethod
    def from_properties(cls, props: Mapping[str, Any]) -> "ValidatorConfig":
        if not isinstance(props, Mapping):
            raise ConfigError("configuration must be a mapping")
        unknown = sorted(
            key
            for key in props
            if isinstance(key, str) and key.startswith("mp.jwt.") and key not in names.KNOWN_CONFIG_NAMES
        )
        if unknown:
            logger.warning("ignoring unknown configuration properties: %s", ", ".join(unknown))

        inline_key = _optional_text(props, names.VERIFIER_PUBLIC_KEY)
        key_location = _optional_text(props, names.VERIFIER_PUBLIC_KEY_LOCATION)
        if inline_key and key_location:
            logger.warning(
                "%s and %s are both set; using the inline key",
                names.VERIFIER_PUBLIC_KEY,
                names.VERIFIER_PUBLIC_KEY_LOCATION,
            )
            key_location = None

        verify_algorithms = _algorithm_set(
            props, names.VERIFIER_PUBLIC_KEY_ALGORITHM, SIGNATURE_ALGORITHMS, DEFAULT_VERIFY_ALGORITHMS
        )
        decrypt_algorithms = _algorithm_set(
            props, names.DECRYPTOR_KEY_ALGORITHM, KEY_MANAGEMENT_ALGORITHMS, DEFAULT_DECRYPT_ALGORITHMS
        )

        audiences_raw = _optional_text(props, names.AUDIENCES)
        audiences = None
        if audiences_raw:
            audiences = frozenset(item.strip() for item in audiences_raw.split(",") if item.strip())

        return cls(
            verify_public_key=inline_key,
            verify_public_key_location=key_location,
            verify_algorithms=verify_algorithms,
            decrypt_key_location=_optional_text(props, names.DECRYPTOR_KEY_LOCATION),
            decrypt_algorithms=decrypt_algorithms,
            issuer=_optional_text(props, names.ISSUER),
            audiences=audiences,
            clock_skew=_non_negative_int(props, names.CLOCK_SKEW, 0),
            token_age=_optional_non_negative_int(props, names.TOKEN_AGE),
            token_header=_optional_text(props, names.TOKEN_HEADER) or "Authorization",
        )


def load_config(path: str | pathlib.Path) -> ValidatorConfig:
    """Load a JSON object or a ``.properties`` file of MicroProfile JWT settings."""
    file_path = pathlib.Path(path)
    try:
        content = file_path.read_text(encoding="utf-8")
    except OSError as exc:
        raise ConfigError(f"unable to read configuration {path}: {exc}") from exc

    if file_path.suffix == ".json":
        try:
            decoded = json.loads(content)
        except ValueError as exc:
            raise ConfigError(f"{path} is not valid JSON") from exc
        if not isinstance(decoded, dict):
            raise ConfigError(f"{path} must contain a JSON object")
        return ValidatorConfig.from_properties(decoded)
    return ValidatorConfig.from_properties(parse_properties(content))


def parse_properties(content: str) -> dict[str, str]:
    """Parse ``key=value`` (or ``key: value``) lines; ``#`` and ``!`` start comments."""
    result: dict[str, str] = {}
    pending = ""
    for raw_line in content.splitlines():
        line = raw_line.strip() if not pending else raw_line.lstrip()
        if not pending and (not line or line[0] in "#!"):
            continue
        if line.endswith("\\") and not line.endswith("\\\\"):
            pending += line[:-1]
            continue
        line = pending + line
        pending = ""

        separator = min((idx for idx in (line.find("="), line.find(":")) if idx >= 0), default=-1)
        if separator < 0:
            result[line.strip()] = ""
            continue
        key = line[:separator].strip()
        value = line[separator + 1:].strip()
        result[key] = value.replace("\\n", "\n").replace("\\:", ":").replace("\\=", "=")
    return result


def _optional_text(props: Mapping[str, Any], key: str) -> str | None:
    value = props.get(key)
    if value is None:
        return None
    if not isinstance(value, str):
        raise ConfigError(f"{key} must be a string")
    value = value.strip()
    return value or None


def _algorithm_set(
    props: Mapping[str, Any],
    key: str,
    registry: Mapping[str, Any],
    default: frozenset[str],
) -> frozenset[str]:
    value = props.get(key)
    if value is None:
        return default
    if isinstance(value, str):
        items = [item.strip() for item in value.split(",") if item.strip()]
    elif isinstance(value, (list, tuple)) and all(isinstance(item, str) for item in value):
        items = list(value)
    else:
        raise ConfigError(f"{key} must be a string or string array")
    if not items:
        return default
    unsupported = sorted(set(items) - set(registry))
    if unsupported:
        raise ConfigError(f"{key} has unsupported algorithms: {unsupported}")
    return frozenset(items)


def _non_negative_int(props: Mapping[str, Any], key: str, default: int) -> int:
    value = _optional_non_negative_int(props, key)
    return default if value is None else value


def _optional_non_negative_int(props: Mapping[str, Any], key: str) -> int | None:
    value = props.get(key)
    if value is None or value == "":
        return None
    if isinstance(value, bool):
        raise ConfigError(f"{key} must be an integer")
    try:
        number = int(value)
    except (TypeError, ValueError) as exc:
        raise ConfigError(f"{key} must be an integer") from exc
    if number < 0:
        raise ConfigError(f"{key} must be >= 0")
    return number
