"""Signed token verification and the decrypt-then-verify validation pipeline."""

from __future__ import annotations

import logging
from typing import Any, Collection, Mapping

from joserfc import jws
from joserfc.errors import BadSignatureError, JoseError

from .algorithms import AlgorithmError, get_signature_algorithm, signature_registry
from .codec import ENCRYPTED_PARTS, decode_json_object, parse_signed, split_compact
from .config import ValidatorConfig
from .decryptor import decrypt_token
from .errors import (
    ConfigError,
    ExpiredTokenError,
    InvalidClaimError,
    KeyResolutionError,
    MalformedTokenError,
    NotYetValidError,
    SignatureError,
    TokenError,
)
from .keys import KeyMaterial, KeyResolver, KeyRole, KeyStore, as_key_material
from .reporter import VerificationResult, report, report_error
from .utils import is_finite_number, now_epoch

logger = logging.getLogger(__name__)


def verify_token(
    token: str,
    key: KeyMaterial | Any,
    now: int | float | None = None,
    *,
    leeway: int = 0,
    allowed_algorithms: Collection[str] | None = None,
    max_age: int | None = None,
) -> dict[str, Any]:
    """Verify the signature of a three-part token and return its claims.

    Raises :class:`SignatureError` before any claim is looked at, then
    :class:`ExpiredTokenError` / :class:`NotYetValidError` for the time checks.
    """
    verify_key = as_key_material(key, KeyRole.VERIFY)
    parsed = parse_signed(token)

    alg_name = parsed.header["alg"]
    if alg_name == "none" or (allowed_algorithms is not None and alg_name not in allowed_algorithms):
        raise SignatureError(f"signature algorithm not accepted: {alg_name}")
    try:
        get_signature_algorithm(alg_name).check_key(verify_key)
    except AlgorithmError as exc:
        raise SignatureError(str(exc)) from exc

    try:
        verified = jws.deserialize_compact(
            parsed.serialize(),
            verify_key.to_jwk(),
            registry=signature_registry({alg_name}),
        )
    except BadSignatureError:
        raise SignatureError("signature verification failed") from None
    except (JoseError, ValueError) as exc:
        raise SignatureError(f"signature rejected: {exc}") from exc

    claims = decode_json_object(verified.payload, what="claims")
    check_time_claims(claims, now, leeway=leeway, max_age=max_age)
    return claims


def check_time_claims(
    claims: Mapping[str, Any],
    now: int | float | None = None,
    *,
    leeway: int = 0,
    max_age: int | None = None,
) -> None:
    current = now if now is not None else now_epoch()

    exp = claims.get("exp")
    if not is_finite_number(exp):
        raise InvalidClaimError("exp claim is missing or not numeric")
    if not current < exp + leeway:
        raise ExpiredTokenError("token has expired")

    nbf = claims.get("nbf")
    if nbf is not None:
        if not is_finite_number(nbf):
            raise InvalidClaimError("nbf claim is not numeric")
        if current < nbf - leeway:
            raise NotYetValidError("token is not valid yet")

    iat = claims.get("iat")
    if iat is not None and not is_finite_number(iat):
        raise InvalidClaimError("iat claim is not numeric")
    if max_age is not None:
        if iat is None:
            raise InvalidClaimError("iat claim is required to check token age")
        if current - iat > max_age + leeway:
            raise ExpiredTokenError("token exceeds maximum age")


class TokenValidator:
    """Relying-party pipeline: decrypt if needed, verify, then check claims."""

    def __init__(self, config: ValidatorConfig, resolver: KeyResolver | None = None) -> None:
        self.config = config
        self.resolver = resolver if resolver is not None else KeyResolver(store=KeyStore())

    def verification_key(self) -> KeyMaterial | None:
        descriptor = self.config.verification_key_descriptor
        if descriptor is None:
            return None
        return self.resolver.resolve(descriptor, KeyRole.VERIFY)

    def decryption_key(self) -> KeyMaterial | None:
        if self.config.decrypt_key_location is None:
            return None
        return self.resolver.resolve(self.config.decrypt_key_location, KeyRole.DECRYPT)

    def default_expectations(self) -> dict[str, Any]:
        if self.config.issuer is None:
            return {}
        return {"iss": self.config.issuer}

    def recover_claims(self, token: str, now: int | float | None = None) -> dict[str, Any]:
        verification_key = self.verification_key()
        decryption_key = self.decryption_key()
        if verification_key is None and decryption_key is None:
            raise ConfigError("no verification or decryption key is configured")

        if len(split_compact(token)) == ENCRYPTED_PARTS:
            if decryption_key is None:
                raise MalformedTokenError("encrypted token received but no decryption key is configured")
            claims = self._recover_encrypted(token, decryption_key, verification_key, now)
        else:
            if decryption_key is not None:
                raise MalformedTokenError("signed token received but only encrypted tokens are accepted")
            claims = self._verify(token, verification_key, now)

        self._check_audience(claims)
        return claims

    def validate(
        self,
        token: str,
        expectations: Mapping[str, Any] | None = None,
        now: int | float | None = None,
    ) -> VerificationResult:
        try:
            claims = self.recover_claims(token, now)
        except (KeyResolutionError, ConfigError):
            raise
        except TokenError as exc:
            logger.warning("token rejected (%s)", exc.kind.value)
            return report_error(exc)
        except RecursionError:
            logger.warning("token rejected (nesting too deep)")
            return report_error(MalformedTokenError("token nesting too deep"))

        merged = self.default_expectations()
        merged.update(expectations or {})
        result = report(claims, merged)
        if not result.passed:
            logger.warning("claim check failed: %s", result.msg)
        return result

    def _recover_encrypted(
        self,
        token: str,
        decryption_key: KeyMaterial,
        verification_key: KeyMaterial | None,
        now: int | float | None,
    ) -> dict[str, Any]:
        decrypted = decrypt_token(
            token,
            decryption_key,
            allowed_algorithms=self.config.decrypt_algorithms,
            allowed_encryptions=self.config.decrypt_encryptions,
        )
        if decrypted.is_nested:
            try:
                inner = decrypted.plaintext.decode("ascii")
            except UnicodeDecodeError as exc:
                raise MalformedTokenError("nested token is not ASCII") from exc
            return self._verify(inner, verification_key, now)

        if verification_key is not None:
            raise SignatureError("encrypted token does not contain a signed token")
        claims = decode_json_object(decrypted.plaintext, what="claims")
        check_time_claims(claims, now, leeway=self.config.clock_skew, max_age=self.config.token_age)
        return claims

    def _verify(self, token: str, verification_key: KeyMaterial | None, now: int | float | None) -> dict[str, Any]:
        if verification_key is None:
            raise SignatureError("signed token received but no verification key is configured")
        return verify_token(
            token,
            verification_key,
            now,
            leeway=self.config.clock_skew,
            allowed_algorithms=self.config.verify_algorithms,
            max_age=self.config.token_age,
        )

    def _check_audience(self, claims: Mapping[str, Any]) -> None:
        audiences = self.config.audiences
        if not audiences:
            return
        aud = claims.get("aud")
        values = aud if isinstance(aud, list) else [aud]
        if not any(isinstance(item, str) and item in audiences for item in values):
            raise InvalidClaimError("aud claim does not match an accepted audience")
