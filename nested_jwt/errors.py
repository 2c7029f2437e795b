"""Error taxonomy shared by the build and validation pipelines."""

from __future__ import annotations

from enum import Enum


class ErrorKind(str, Enum):
    KEY_RESOLUTION = "key_resolution"
    CLAIMS = "claims"
    MALFORMED_TOKEN = "malformed_token"
    SIGNING = "signing"
    SIGNATURE = "signature"
    ENCRYPTION = "encryption"
    DECRYPTION = "decryption"
    EXPIRED = "expired"
    NOT_YET_VALID = "not_yet_valid"
    INVALID_CLAIM = "invalid_claim"
    INVALID_REQUEST = "invalid_request"
    CONFIG = "config"


class TokenError(ValueError):
    """Base class for token pipeline failures."""

    kind: ErrorKind = ErrorKind.MALFORMED_TOKEN


class KeyResolutionError(TokenError):
    """Raised when a key location cannot be turned into usable key material."""

    kind = ErrorKind.KEY_RESOLUTION


class ClaimsError(TokenError):
    """Raised when a claims template or its overrides are malformed."""

    kind = ErrorKind.CLAIMS


class MalformedTokenError(TokenError):
    """Raised when a compact token cannot be parsed."""

    kind = ErrorKind.MALFORMED_TOKEN


class SigningError(TokenError):
    """Raised when a signature cannot be produced."""

    kind = ErrorKind.SIGNING


class SignatureError(TokenError):
    """Raised when a signature does not verify."""

    kind = ErrorKind.SIGNATURE


class EncryptionError(TokenError):
    """Raised when a payload cannot be encrypted."""

    kind = ErrorKind.ENCRYPTION


class DecryptionError(TokenError):
    """Raised when an encrypted token cannot be decrypted.

    The message is identical for every cause; ``reason`` carries the
    internal diagnostic and must not be returned to callers.
    """

    kind = ErrorKind.DECRYPTION
    public_message = "token decryption failed"

    def __init__(self, reason: str) -> None:
        super().__init__(self.public_message)
        self.reason = reason


class ExpiredTokenError(TokenError):
    """Raised when the token is past its expiration (or maximum age)."""

    kind = ErrorKind.EXPIRED


class NotYetValidError(TokenError):
    """Raised when the token is used before its not-before time."""

    kind = ErrorKind.NOT_YET_VALID


class InvalidClaimError(TokenError):
    """Raised when a recovered claim does not meet validation requirements."""

    kind = ErrorKind.INVALID_CLAIM


class InvalidRequest(TokenError):
    """Raised when a build request has nothing to protect."""

    kind = ErrorKind.INVALID_REQUEST


class ConfigError(TokenError):
    """Raised on invalid validator configuration."""

    kind = ErrorKind.CONFIG
