"""Key location classification, loading and parsing."""

from __future__ import annotations

import base64
import binascii
import dataclasses
import json
import logging
import re
import threading
import urllib.error
import urllib.parse
import urllib.request
from dataclasses import dataclass, field
from enum import Enum
from pathlib import Path
from typing import Any, Callable, Iterable, Sequence, Union

from cryptography import x509
from cryptography.exceptions import UnsupportedAlgorithm
from cryptography.hazmat.primitives import serialization
from cryptography.hazmat.primitives.asymmetric import ec, ed25519, rsa
from joserfc.jwk import ECKey, JWKRegistry, OKPKey, RSAKey
from joserfc.errors import JoseError

from .constants import DEFAULT_URL_TIMEOUT_S, MAX_KEY_SOURCE_BYTES
from .errors import KeyResolutionError
from .utils import sha256_hex

logger = logging.getLogger(__name__)

AnyKey = Union[
    rsa.RSAPrivateKey,
    rsa.RSAPublicKey,
    ec.EllipticCurvePrivateKey,
    ec.EllipticCurvePublicKey,
    ed25519.Ed25519PrivateKey,
    ed25519.Ed25519PublicKey,
]

_PEM_BLOCK_RE = re.compile(
    r"-----BEGIN ([A-Z0-9 ]+)-----\r?\n?(.*?)-----END ([A-Z0-9 ]+)-----",
    re.DOTALL,
)
_BARE_BASE64_RE = re.compile(r"^[A-Za-z0-9+/=\s]+$")
_SCHEME_RE = re.compile(r"^([A-Za-z][A-Za-z0-9+.-]*):")
_PRIVATE_LABELS = {"PRIVATE KEY", "RSA PRIVATE KEY", "EC PRIVATE KEY"}
_PUBLIC_LABELS = {"PUBLIC KEY", "RSA PUBLIC KEY"}

_JWK_CURVES = {"EC": {"P-256", "P-384", "P-521"}, "OKP": {"Ed25519"}}
_JOSE_KEY_TYPES = {"RSA": RSAKey, "EC": ECKey, "OKP": OKPKey}


class KeyRole(str, Enum):
    SIGN = "sign"
    VERIFY = "verify"
    ENCRYPT = "encrypt"
    DECRYPT = "decrypt"

    @property
    def requires_private(self) -> bool:
        return self in {KeyRole.SIGN, KeyRole.DECRYPT}

    @property
    def jwk_use(self) -> str:
        return "sig" if self in {KeyRole.SIGN, KeyRole.VERIFY} else "enc"


class KeyFamily(str, Enum):
    RSA = "RSA"
    EC = "EC"
    OKP = "OKP"


class LocationKind(str, Enum):
    RESOURCE = "resource"
    FILESYSTEM = "filesystem"
    URL = "url"
    INLINE_PEM = "inline_pem"
    INLINE_JWK = "inline_jwk"


@dataclass(frozen=True, slots=True)
class KeyLocation:
    kind: LocationKind
    value: str

    def __str__(self) -> str:
        if self.kind in {LocationKind.INLINE_PEM, LocationKind.INLINE_JWK}:
            return f"{self.kind.value}:<inline>"
        return f"{self.kind.value}:{self.value}"


@dataclass(frozen=True, slots=True)
class KeyMaterial:
    """A parsed asymmetric key bound (optionally) to the role it was resolved for."""

    key: AnyKey = field(repr=False, compare=False)
    family: KeyFamily
    is_private: bool
    size: int
    fingerprint: str
    curve: str | None = None
    kid: str | None = None
    use: str | None = None
    alg: str | None = None
    role: KeyRole | None = None

    @classmethod
    def from_key(
        cls,
        key: Any,
        *,
        role: KeyRole | None = None,
        kid: str | None = None,
        use: str | None = None,
        alg: str | None = None,
    ) -> "KeyMaterial":
        family, is_private, size, curve = _describe_key(key)
        material = cls(
            key=key,
            family=family,
            is_private=is_private,
            size=size,
            fingerprint=_canonical_fingerprint(key, is_private),
            curve=curve,
            kid=kid,
            use=use,
            alg=alg,
        )
        return material.with_role(role) if role is not None else material

    def satisfies(self, role: KeyRole) -> bool:
        return self.is_private == role.requires_private

    def with_role(self, role: KeyRole) -> "KeyMaterial":
        if not self.satisfies(role):
            expected = "private" if role.requires_private else "public"
            raise KeyResolutionError(f"role mismatch: {role.value} requires a {expected} key")
        if self.role is not None and self.role is not role:
            raise KeyResolutionError(f"key resolved for {self.role.value} cannot be used to {role.value}")
        return dataclasses.replace(self, role=role)

    def require_role(self, role: KeyRole) -> None:
        if self.role is not None and self.role is not role:
            raise KeyResolutionError(f"key resolved for {self.role.value} cannot be used to {role.value}")
        if not self.satisfies(role):
            expected = "private" if role.requires_private else "public"
            raise KeyResolutionError(f"role mismatch: {role.value} requires a {expected} key")

    def public_der(self) -> bytes:
        if self.is_private:
            raise KeyResolutionError("private key material is never serialized")
        return self.key.public_bytes(
            encoding=serialization.Encoding.DER,
            format=serialization.PublicFormat.SubjectPublicKeyInfo,
        )

    def to_jwk(self) -> RSAKey | ECKey | OKPKey:
        """The joserfc key for this material, carrying its ``kid`` and ``use``."""
        parameters = {name: value for name, value in (("kid", self.kid), ("use", self.use)) if value}
        return _JOSE_KEY_TYPES[self.family.value].import_key(self.key, parameters or None)

    def public_jwk(self) -> dict[str, Any]:
        if self.is_private:
            raise KeyResolutionError("private key material is never serialized")
        extra = {"alg": self.alg} if self.alg else {}
        return dict(self.to_jwk().as_dict(private=False, **extra))


def as_key_material(value: KeyMaterial | Any, role: KeyRole) -> KeyMaterial:
    """Accept resolved key material or a bare ``cryptography`` key object."""
    if isinstance(value, KeyMaterial):
        value.require_role(role)
        return value if value.role is role else value.with_role(role)
    return KeyMaterial.from_key(value, role=role)


class KeyStore:
    """Load-once cache of parsed key sources keyed by the exact descriptor string."""

    def __init__(self) -> None:
        self._entries: dict[str, tuple[KeyMaterial, ...]] = {}
        self._slots: dict[str, threading.Lock] = {}
        self._loads: dict[str, int] = {}
        self._lock = threading.Lock()

    def get_or_load(
        self,
        descriptor: str,
        loader: Callable[[], tuple[KeyMaterial, ...]],
    ) -> tuple[KeyMaterial, ...]:
        with self._lock:
            cached = self._entries.get(descriptor)
            if cached is not None:
                return cached
            slot = self._slots.setdefault(descriptor, threading.Lock())

        with slot:
            with self._lock:
                cached = self._entries.get(descriptor)
            if cached is not None:
                return cached

            loaded = loader()
            with self._lock:
                self._entries[descriptor] = loaded
                self._loads[descriptor] = self._loads.get(descriptor, 0) + 1
            logger.debug("key store populated (%d cached sources)", len(self._entries))
            return loaded

    def load_count(self, descriptor: str) -> int:
        with self._lock:
            return self._loads.get(descriptor, 0)

    def __contains__(self, descriptor: object) -> bool:
        with self._lock:
            return descriptor in self._entries

    def __len__(self) -> int:
        with self._lock:
            return len(self._entries)


class KeyResolver:
    """Turns key location descriptors into role-checked key material."""

    def __init__(
        self,
        resource_roots: Iterable[str | Path | Any] = (),
        *,
        store: KeyStore | None = None,
        url_timeout_s: float = DEFAULT_URL_TIMEOUT_S,
        max_source_bytes: int = MAX_KEY_SOURCE_BYTES,
    ) -> None:
        self.resource_roots = tuple(Path(root) if isinstance(root, str) else root for root in resource_roots)
        self.store = store
        self.url_timeout_s = url_timeout_s
        self.max_source_bytes = max_source_bytes

    def classify(self, descriptor: str) -> KeyLocation:
        return classify_location(descriptor, self.resource_roots)

    def resolve(self, descriptor: str, role: KeyRole, *, kid: str | None = None) -> KeyMaterial:
        if self.store is not None:
            candidates = self.store.get_or_load(descriptor, lambda: self._load_candidates(descriptor))
        else:
            candidates = self._load_candidates(descriptor)
        return select_key(candidates, role, kid=kid)

    def load_bytes(self, location: KeyLocation) -> bytes:
        loader = _LOADERS[location.kind]
        data = loader(self, location.value)
        if len(data) > self.max_source_bytes:
            raise KeyResolutionError(f"key source exceeds {self.max_source_bytes} bytes: {location}")
        return data

    def _load_candidates(self, descriptor: str) -> tuple[KeyMaterial, ...]:
        location = self.classify(descriptor)
        logger.debug("loading key material from %s", location)
        return parse_key_source(self.load_bytes(location))

    def _load_resource(self, value: str) -> bytes:
        target = _find_resource(value, self.resource_roots)
        if target is None:
            raise KeyResolutionError(f"resource not found: {value}")
        try:
            with target.open("rb") as handle:
                return handle.read(self.max_source_bytes + 1)
        except OSError as exc:
            raise KeyResolutionError(f"unable to read resource {value}: {exc.strerror or exc}") from exc

    def _load_file(self, value: str) -> bytes:
        path = Path(value)
        try:
            with path.open("rb") as handle:
                return handle.read(self.max_source_bytes + 1)
        except OSError as exc:
            raise KeyResolutionError(f"unable to read key file {value}: {exc.strerror or exc}") from exc

    def _load_url(self, value: str) -> bytes:
        request = urllib.request.Request(value, headers={"Accept": "application/x-pem-file, application/json, */*"})
        try:
            with urllib.request.urlopen(request, timeout=self.url_timeout_s) as response:
                return response.read(self.max_source_bytes + 1)
        except urllib.error.HTTPError as exc:
            raise KeyResolutionError(f"key URL returned HTTP {exc.code}: {value}") from exc
        except (urllib.error.URLError, TimeoutError, OSError, ValueError) as exc:
            raise KeyResolutionError(f"unable to fetch key URL {value}: {exc}") from exc

    def _load_inline(self, value: str) -> bytes:
        return value.encode("utf-8")


_LOADERS: dict[LocationKind, Callable[[KeyResolver, str], bytes]] = {
    LocationKind.RESOURCE: KeyResolver._load_resource,
    LocationKind.FILESYSTEM: KeyResolver._load_file,
    LocationKind.URL: KeyResolver._load_url,
    LocationKind.INLINE_PEM: KeyResolver._load_inline,
    LocationKind.INLINE_JWK: KeyResolver._load_inline,
}


def resolve_key(
    descriptor: str,
    role: KeyRole,
    *,
    resource_roots: Iterable[str | Path | Any] = (),
    kid: str | None = None,
) -> KeyMaterial:
    return KeyResolver(resource_roots).resolve(descriptor, role, kid=kid)


def classify_location(descriptor: str, resource_roots: Sequence[Any] = ()) -> KeyLocation:
    if not isinstance(descriptor, str) or not descriptor.strip():
        raise KeyResolutionError("key location must be a non-empty string")

    if "-----BEGIN" in descriptor:
        return KeyLocation(LocationKind.INLINE_PEM, descriptor)

    text = descriptor.strip()
    if text.startswith("{"):
        return KeyLocation(LocationKind.INLINE_JWK, text)

    scheme_match = _SCHEME_RE.match(text)
    if scheme_match and not _looks_like_drive(text):
        scheme = scheme_match.group(1).lower()
        if scheme == "classpath":
            resource = "/" + text[len("classpath:"):].lstrip("/")
            return KeyLocation(LocationKind.RESOURCE, resource)
        if scheme == "file":
            parsed = urllib.parse.urlparse(text)
            return KeyLocation(LocationKind.FILESYSTEM, urllib.request.url2pathname(parsed.path))
        if scheme in {"http", "https"}:
            return KeyLocation(LocationKind.URL, text)
        raise KeyResolutionError(f"unsupported key location scheme: {scheme}")

    if text.startswith("/") and _find_resource(text, resource_roots) is not None:
        return KeyLocation(LocationKind.RESOURCE, text)

    if Path(text).is_file():
        return KeyLocation(LocationKind.FILESYSTEM, text)

    raise KeyResolutionError(f"key location not found: {text}")


def parse_key_source(data: bytes) -> tuple[KeyMaterial, ...]:
    """Parse PEM, bare base64 DER, JWK or JWKS content into candidate keys."""
    try:
        text = data.decode("utf-8").strip()
    except UnicodeDecodeError as exc:
        raise KeyResolutionError("key source is not text") from exc
    if not text:
        raise KeyResolutionError("key source is empty")

    if text.startswith("{"):
        return _parse_jwk_text(text)
    if "-----BEGIN" in text:
        return tuple(KeyMaterial.from_key(_key_from_pem_block(label, der)) for label, der in decode_pem(text)[:1])
    if _BARE_BASE64_RE.match(text):
        return (KeyMaterial.from_key(_key_from_bare_der(_b64decode_strict(text))),)
    raise KeyResolutionError("unrecognized key format")


def decode_pem(text: str) -> list[tuple[str, bytes]]:
    """Strip PEM armor and return ``(label, der)`` pairs in document order."""
    blocks: list[tuple[str, bytes]] = []
    for match in _PEM_BLOCK_RE.finditer(text):
        begin, body, end = match.group(1), match.group(2), match.group(3)
        if begin != end:
            raise KeyResolutionError(f"malformed PEM: BEGIN {begin} closed by END {end}")
        if ":" in body:
            raise KeyResolutionError("malformed PEM: encrypted or annotated PEM is not supported")
        blocks.append((begin, _b64decode_strict(body)))

    if not blocks:
        raise KeyResolutionError("malformed PEM: no complete BEGIN/END block")
    return blocks


def select_key(candidates: Sequence[KeyMaterial], role: KeyRole, *, kid: str | None = None) -> KeyMaterial:
    if not candidates:
        raise KeyResolutionError("key source contains no keys")

    if kid is not None:
        matching = [item for item in candidates if item.kid == kid]
        if not matching:
            raise KeyResolutionError(f"no key with kid {kid!r}")
        return matching[0].with_role(role)

    if len(candidates) == 1:
        return candidates[0].with_role(role)

    for item in candidates:
        if item.satisfies(role) and item.use in {None, role.jwk_use}:
            return item.with_role(role)
    raise KeyResolutionError(f"no key in set satisfies role {role.value}")


def _find_resource(value: str, roots: Sequence[Any]) -> Any | None:
    parts = [part for part in value.split("/") if part]
    if not parts or any(part in {".", ".."} for part in parts):
        return None
    for root in roots:
        candidate = root.joinpath(*parts)
        if candidate.is_file():
            return candidate
    return None


def _looks_like_drive(text: str) -> bool:
    return len(text) >= 3 and text[0].isalpha() and text[1] == ":" and text[2] in "\\/"


def _b64decode_strict(body: str) -> bytes:
    compact = "".join(body.split())
    if not compact:
        raise KeyResolutionError("malformed PEM: empty body")
    try:
        return base64.b64decode(compact, validate=True)
    except (binascii.Error, ValueError) as exc:
        raise KeyResolutionError("malformed PEM: invalid base64 body") from exc


def _key_from_pem_block(label: str, der: bytes) -> AnyKey:
    try:
        if label in _PRIVATE_LABELS:
            return serialization.load_der_private_key(der, password=None)
        if label in _PUBLIC_LABELS:
            return serialization.load_der_public_key(der)
        if label == "CERTIFICATE":
            return x509.load_der_x509_certificate(der).public_key()
    except (ValueError, TypeError, UnsupportedAlgorithm) as exc:
        raise KeyResolutionError(f"PEM {label} does not contain a valid key") from exc
    raise KeyResolutionError(f"unsupported PEM type: {label}")


def _key_from_bare_der(der: bytes) -> AnyKey:
    try:
        return serialization.load_der_public_key(der)
    except (ValueError, UnsupportedAlgorithm):
        pass
    try:
        return serialization.load_der_private_key(der, password=None)
    except (ValueError, TypeError, UnsupportedAlgorithm) as exc:
        raise KeyResolutionError("key bytes do not parse as a supported key") from exc


def _parse_jwk_text(text: str) -> tuple[KeyMaterial, ...]:
    try:
        decoded = json.loads(text)
    except ValueError as exc:
        raise KeyResolutionError("malformed JWK: invalid JSON") from exc
    if not isinstance(decoded, dict):
        raise KeyResolutionError("malformed JWK: expected a JSON object")

    if "keys" in decoded:
        keys = decoded["keys"]
        if not isinstance(keys, list) or not keys:
            raise KeyResolutionError("malformed JWKS: keys must be a non-empty array")
        return tuple(_key_from_jwk(item) for item in keys)
    return (_key_from_jwk(decoded),)


def _key_from_jwk(jwk: Any) -> KeyMaterial:
    if not isinstance(jwk, dict):
        raise KeyResolutionError("malformed JWK: expected a JSON object")
    kty = jwk.get("kty")
    if not isinstance(kty, str) or kty not in _JOSE_KEY_TYPES:
        raise KeyResolutionError(f"unsupported JWK kty: {kty!r}")
    crv = jwk.get("crv")
    if kty in _JWK_CURVES and not (isinstance(crv, str) and crv in _JWK_CURVES[kty]):
        raise KeyResolutionError(f"unsupported {kty} curve: {crv!r}")
    try:
        imported = JWKRegistry.import_key(jwk)
    except (JoseError, KeyError, TypeError, ValueError) as exc:
        raise KeyResolutionError(f"malformed {kty} JWK: {exc}") from exc

    return KeyMaterial.from_key(
        imported.private_key if imported.is_private else imported.public_key,
        kid=_optional_str(jwk, "kid"),
        use=_optional_str(jwk, "use"),
        alg=_optional_str(jwk, "alg"),
    )


def _optional_str(value: dict[str, Any], key: str) -> str | None:
    item = value.get(key)
    if item is None:
        return None
    if not isinstance(item, str):
        raise KeyResolutionError(f"JWK {key} must be a string")
    return item


def _describe_key(key: Any) -> tuple[KeyFamily, bool, int, str | None]:
    if isinstance(key, rsa.RSAPrivateKey):
        return KeyFamily.RSA, True, key.key_size, None
    if isinstance(key, rsa.RSAPublicKey):
        return KeyFamily.RSA, False, key.key_size, None
    if isinstance(key, ec.EllipticCurvePrivateKey):
        return KeyFamily.EC, True, key.curve.key_size, key.curve.name
    if isinstance(key, ec.EllipticCurvePublicKey):
        return KeyFamily.EC, False, key.curve.key_size, key.curve.name
    if isinstance(key, ed25519.Ed25519PrivateKey):
        return KeyFamily.OKP, True, 256, "Ed25519"
    if isinstance(key, ed25519.Ed25519PublicKey):
        return KeyFamily.OKP, False, 256, "Ed25519"
    raise KeyResolutionError(f"unsupported key type: {type(key).__name__}")


def _canonical_fingerprint(key: Any, is_private: bool) -> str:
    if is_private:
        der = key.private_bytes(
            encoding=serialization.Encoding.DER,
            format=serialization.PrivateFormat.PKCS8,
            encryption_algorithm=serialization.NoEncryption(),
        )
    else:
        der = key.public_bytes(
            encoding=serialization.Encoding.DER,
            format=serialization.PublicFormat.SubjectPublicKeyInfo,
        )
    return sha256_hex(der)
