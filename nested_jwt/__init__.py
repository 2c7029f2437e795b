"""Nested JWS/JWE token construction and validation."""

from .builder import BuildMode, build_token
from .claims import build_claims, load_claims_template, validate_claims
from .config import ValidatorConfig, load_config
from .decryptor import DecryptedToken, decrypt_token
from .encryptor import encrypt_payload
from .errors import (
    ClaimsError,
    ConfigError,
    DecryptionError,
    EncryptionError,
    ErrorKind,
    ExpiredTokenError,
    InvalidClaimError,
    InvalidRequest,
    KeyResolutionError,
    MalformedTokenError,
    NotYetValidError,
    SignatureError,
    SigningError,
    TokenError,
)
from .keys import (
    KeyFamily,
    KeyLocation,
    KeyMaterial,
    KeyResolver,
    KeyRole,
    KeyStore,
    LocationKind,
    classify_location,
    resolve_key,
)
from .reporter import VerificationResult, report, report_error
from .signer import sign_claims
from .transport_http import TokenValidationServer
from .verifier import TokenValidator, verify_token

__all__ = [
    "BuildMode",
    "build_token",
    "build_claims",
    "load_claims_template",
    "validate_claims",
    "ValidatorConfig",
    "load_config",
    "DecryptedToken",
    "decrypt_token",
    "encrypt_payload",
    "ClaimsError",
    "ConfigError",
    "DecryptionError",
    "EncryptionError",
    "ErrorKind",
    "ExpiredTokenError",
    "InvalidClaimError",
    "InvalidRequest",
    "KeyResolutionError",
    "MalformedTokenError",
    "NotYetValidError",
    "SignatureError",
    "SigningError",
    "TokenError",
    "KeyFamily",
    "KeyLocation",
    "KeyMaterial",
    "KeyResolver",
    "KeyRole",
    "KeyStore",
    "LocationKind",
    "classify_location",
    "resolve_key",
    "VerificationResult",
    "report",
    "report_error",
    "sign_claims",
    "TokenValidationServer",
    "TokenValidator",
    "verify_token",
]

__version__ = "0.1.0"
