"""Accepted JOSE algorithms and the joserfc registries restricted to them."""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Collection

from joserfc import jwe, jws
from joserfc.errors import DecodeError
from joserfc.jwa import JWEAlgModel, JWEKeyEncryption

from .constants import MAX_TOKEN_BYTES, MIN_RSA_KEY_BITS
from .keys import KeyFamily, KeyMaterial

MAX_HEADER_BYTES = 8192


class AlgorithmError(ValueError):
    """Raised when an algorithm is unknown or does not fit the key."""


@dataclass(frozen=True, slots=True)
class SignatureAlgorithm:
    name: str
    family: KeyFamily
    curve: str | None = None

    def check_key(self, key: KeyMaterial) -> None:
        if key.family is not self.family:
            raise AlgorithmError(f"{self.name} requires a {self.family.value} key, got {key.family.value}")
        if self.family is KeyFamily.RSA and key.size < MIN_RSA_KEY_BITS:
            raise AlgorithmError(f"{self.name} requires an RSA key of at least {MIN_RSA_KEY_BITS} bits")
        if self.curve is not None and key.curve != self.curve:
            raise AlgorithmError(f"{self.name} requires curve {self.curve}, got {key.curve}")


SIGNATURE_ALGORITHMS: dict[str, SignatureAlgorithm] = {
    "RS256": SignatureAlgorithm("RS256", KeyFamily.RSA),
    "RS384": SignatureAlgorithm("RS384", KeyFamily.RSA),
    "RS512": SignatureAlgorithm("RS512", KeyFamily.RSA),
    "PS256": SignatureAlgorithm("PS256", KeyFamily.RSA),
    "PS384": SignatureAlgorithm("PS384", KeyFamily.RSA),
    "PS512": SignatureAlgorithm("PS512", KeyFamily.RSA),
    "ES256": SignatureAlgorithm("ES256", KeyFamily.EC, "secp256r1"),
    "ES384": SignatureAlgorithm("ES384", KeyFamily.EC, "secp384r1"),
    "ES512": SignatureAlgorithm("ES512", KeyFamily.EC, "secp521r1"),
    "EdDSA": SignatureAlgorithm("EdDSA", KeyFamily.OKP, "Ed25519"),
}


def get_signature_algorithm(name: Any) -> SignatureAlgorithm:
    algorithm = SIGNATURE_ALGORITHMS.get(name) if isinstance(name, str) else None
    if algorithm is None:
        raise AlgorithmError(f"unsupported signature algorithm: {name!r}")
    return algorithm


@dataclass(frozen=True, slots=True)
class KeyManagementAlgorithm:
    name: str

    def check_key(self, key: KeyMaterial) -> None:
        if key.family is not KeyFamily.RSA:
            raise AlgorithmError(f"{self.name} requires an RSA key, got {key.family.value}")
        if key.size < MIN_RSA_KEY_BITS:
            raise AlgorithmError(f"{self.name} requires an RSA key of at least {MIN_RSA_KEY_BITS} bits")


KEY_MANAGEMENT_ALGORITHMS: dict[str, KeyManagementAlgorithm] = {
    "RSA-OAEP": KeyManagementAlgorithm("RSA-OAEP"),
    "RSA-OAEP-256": KeyManagementAlgorithm("RSA-OAEP-256"),
}

CONTENT_ENCRYPTION_ALGORITHMS: tuple[str, ...] = (
    "A128GCM",
    "A192GCM",
    "A256GCM",
    "A128CBC-HS256",
    "A192CBC-HS384",
    "A256CBC-HS512",
)


def get_key_management_algorithm(name: Any) -> KeyManagementAlgorithm:
    algorithm = KEY_MANAGEMENT_ALGORITHMS.get(name) if isinstance(name, str) else None
    if algorithm is None:
        raise AlgorithmError(f"unsupported key management algorithm: {name!r}")
    return algorithm


def get_content_encryption_algorithm(name: Any) -> str:
    if not isinstance(name, str) or name not in CONTENT_ENCRYPTION_ALGORITHMS:
        raise AlgorithmError(f"unsupported content encryption algorithm: {name!r}")
    return name


class SignatureRegistry(jws.JWSRegistry):
    max_header_length = MAX_HEADER_BYTES
    max_payload_length = MAX_TOKEN_BYTES
    max_signature_length = 2048


def signature_registry(names: Collection[str]) -> SignatureRegistry:
    return SignatureRegistry(algorithms=sorted(names), strict_check_header=False)


class EncryptionRegistry(jwe.JWERegistry):
    """A JWE registry for one operation, limited to RSA-OAEP key wrapping.

    A failed unwrap hands joserfc an empty content key, which it replaces
    with a random one, so wrong-key and tampered tokens both fail at content
    decryption. The cause is left on ``unwrap_failure``.
    """

    max_protected_header_length = MAX_HEADER_BYTES
    max_encrypted_key_length = 2048
    max_ciphertext_length = MAX_TOKEN_BYTES

    def __init__(self, names: Collection[str]) -> None:
        super().__init__(algorithms=sorted(names), strict_check_header=False)
        self.unwrap_failure: str | None = None
        shared = jwe.JWERegistry.algorithms
        self.algorithms = {
            "alg": {name: _FallbackKeyEncryption(shared["alg"][name], self) for name in KEY_MANAGEMENT_ALGORITHMS},
            "enc": {name: shared["enc"][name] for name in CONTENT_ENCRYPTION_ALGORITHMS},
            "zip": {},
        }


class _FallbackKeyEncryption(JWEKeyEncryption):
    def __init__(self, model: JWEAlgModel, registry: EncryptionRegistry) -> None:
        self.model = model
        self.name = model.name
        self.description = model.description
        self.key_size = model.key_size
        self.key_types = model.key_types
        self.recommended = model.recommended
        self.registry = registry

    def encrypt_cek(self, cek: bytes, recipient: jwe.Recipient[Any]) -> bytes:
        return self.model.encrypt_cek(cek, recipient)

    def decrypt_cek(self, recipient: jwe.Recipient[Any]) -> bytes:
        try:
            cek = self.model.decrypt_cek(recipient)
        except DecodeError:
            self.registry.unwrap_failure = "key_unwrap_failed"
            return b""
        enc = self.registry.algorithms["enc"].get(recipient.headers().get("enc"))
        if enc is not None and len(cek) * 8 != enc.cek_size:
            self.registry.unwrap_failure = "content_key_length_mismatch"
        return cek
