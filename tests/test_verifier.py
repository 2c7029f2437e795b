from __future__ import annotations

import unittest

from joserfc import jws

from nested_jwt.builder import build_token
from nested_jwt.codec import encode_json_segment
from nested_jwt.config import ValidatorConfig
from nested_jwt.errors import (
    ConfigError,
    ErrorKind,
    ExpiredTokenError,
    InvalidClaimError,
    KeyResolutionError,
    MalformedTokenError,
    NotYetValidError,
    SignatureError,
)
from nested_jwt.keys import KeyMaterial, KeyResolver, KeyRole, KeyStore
from nested_jwt.signer import sign_claims
from nested_jwt.utils import b64url_encode, now_epoch
from nested_jwt.verifier import TokenValidator, check_time_claims, verify_token
from tests.test_helpers import (
    PRIVATE_KEY_4K,
    PUBLIC_KEY_4K,
    RESOURCES,
    TEST_ISSUER,
    fixture_key,
    flip_last_char_bit,
    flip_segment_byte,
    generated_rsa_key,
    make_claims,
)


def _signing_key() -> KeyMaterial:
    return fixture_key(PRIVATE_KEY_4K, KeyRole.SIGN)


def _verify_key() -> KeyMaterial:
    return fixture_key(PUBLIC_KEY_4K, KeyRole.VERIFY)


def _sign_raw(payload: bytes) -> str:
    return jws.serialize_compact({"alg": "RS256"}, payload, _signing_key().to_jwk(), algorithms=["RS256"])


def _validator(**changes: object) -> TokenValidator:
    settings = {"verify_public_key_location": PUBLIC_KEY_4K, "issuer": TEST_ISSUER}
    settings.update(changes)
    return TokenValidator(ValidatorConfig(**settings), KeyResolver([RESOURCES], store=KeyStore()))


class VerifyTokenTests(unittest.TestCase):
    def test_expiration_boundary(self) -> None:
        now = 1_900_000_000
        expired = sign_claims(make_claims(now=now - 10, exp_offset=9), _signing_key())
        with self.assertRaises(ExpiredTokenError):
            verify_token(expired, _verify_key(), now)

        at_exp = sign_claims(make_claims(now=now - 10, exp_offset=10), _signing_key())
        with self.assertRaises(ExpiredTokenError):
            verify_token(at_exp, _verify_key(), now)

        valid = sign_claims(make_claims(now=now - 10, exp_offset=11), _signing_key())
        self.assertEqual(verify_token(valid, _verify_key(), now)["exp"], now + 1)

    def test_leeway_extends_expiration(self) -> None:
        now = 1_900_000_000
        token = sign_claims(make_claims(now=now - 10, exp_offset=9), _signing_key())
        self.assertEqual(verify_token(token, _verify_key(), now, leeway=5)["iss"], TEST_ISSUER)

    def test_not_before(self) -> None:
        now = 1_900_000_000
        claims = make_claims(now=now, nbf=now + 60, exp_offset=300)
        token = sign_claims(claims, _signing_key())
        with self.assertRaises(NotYetValidError):
            verify_token(token, _verify_key(), now)
        self.assertEqual(verify_token(token, _verify_key(), now + 60)["nbf"], now + 60)

    def test_maximum_token_age(self) -> None:
        now = 1_900_000_000
        token = sign_claims(make_claims(now=now - 100, exp_offset=1_000), _signing_key())
        verify_token(token, _verify_key(), now, max_age=100)
        with self.assertRaisesRegex(ExpiredTokenError, "age"):
            verify_token(token, _verify_key(), now, max_age=99)

    def test_alg_none_is_rejected_before_claims(self) -> None:
        header = encode_json_segment({"alg": "none", "typ": "JWT"})
        payload = encode_json_segment(make_claims())
        with self.assertRaisesRegex(SignatureError, "not accepted"):
            verify_token(f"{header}.{payload}.", _verify_key())

    def test_algorithm_allow_list(self) -> None:
        token = sign_claims(make_claims(), _signing_key(), "PS256")
        with self.assertRaisesRegex(SignatureError, "not accepted"):
            verify_token(token, _verify_key(), allowed_algorithms={"RS256"})
        self.assertEqual(verify_token(token, _verify_key(), allowed_algorithms={"PS256"})["iss"], TEST_ISSUER)

    def test_signature_tampering(self) -> None:
        token = sign_claims(make_claims(), _signing_key())
        with self.assertRaisesRegex(SignatureError, "verification failed"):
            verify_token(flip_segment_byte(token, 2), _verify_key())

        header, _, signature = token.split(".")
        forged_payload = encode_json_segment(make_claims(sub="mallory"))
        with self.assertRaises(SignatureError):
            verify_token(f"{header}.{forged_payload}.{signature}", _verify_key())

    def test_wrong_verification_key(self) -> None:
        token = sign_claims(make_claims(), _signing_key())
        with self.assertRaises(SignatureError):
            verify_token(token, generated_rsa_key("other").public_key())

    def test_signed_payload_must_be_a_json_object(self) -> None:
        token = _sign_raw(b"[1]")
        with self.assertRaises(MalformedTokenError):
            verify_token(token, _verify_key())

    def test_re_encoded_signature_segment_is_rejected(self) -> None:
        token = sign_claims(make_claims(), _signing_key())
        with self.assertRaisesRegex(MalformedTokenError, "non-canonical"):
            verify_token(flip_last_char_bit(token, 2), _verify_key())
        self.assertFalse(_validator().validate(flip_last_char_bit(token, 2)).passed)

    def test_non_finite_exp_is_rejected(self) -> None:
        infinite = _sign_raw(f'{{"iss":"{TEST_ISSUER}","exp":Infinity}}'.encode("ascii"))
        with self.assertRaisesRegex(MalformedTokenError, "non-finite"):
            verify_token(infinite, _verify_key())

        overflowing = _sign_raw(f'{{"iss":"{TEST_ISSUER}","exp":1e999}}'.encode("ascii"))
        with self.assertRaisesRegex(InvalidClaimError, "exp"):
            verify_token(overflowing, _verify_key())
        result = _validator().validate(overflowing)
        self.assertFalse(result.passed)
        self.assertIs(result.error_kind, ErrorKind.INVALID_CLAIM)


class CheckTimeClaimsTests(unittest.TestCase):
    def test_exp_is_required_and_numeric(self) -> None:
        with self.assertRaises(InvalidClaimError):
            check_time_claims({}, 100)
        with self.assertRaises(InvalidClaimError):
            check_time_claims({"exp": "200"}, 100)
        with self.assertRaises(InvalidClaimError):
            check_time_claims({"exp": 200, "nbf": True}, 100)

    def test_max_age_requires_iat(self) -> None:
        with self.assertRaisesRegex(InvalidClaimError, "iat"):
            check_time_claims({"exp": 200}, 100, max_age=10)


class TokenValidatorTests(unittest.TestCase):
    def test_signed_token_with_4k_key_passes(self) -> None:
        validator = _validator()
        token = build_token(make_claims(), signing_key=_signing_key())
        result = validator.validate(token)
        self.assertTrue(result.passed, result.msg)
        self.assertEqual(result.claims["iss"], TEST_ISSUER)
        self.assertEqual(result.to_dict(), {"pass": True, "msg": result.msg})

    def test_nested_token_with_4k_keys_passes(self) -> None:
        validator = _validator(decrypt_key_location=PRIVATE_KEY_4K)
        token = build_token(
            make_claims(),
            _signing_key(),
            fixture_key(PUBLIC_KEY_4K, KeyRole.ENCRYPT),
        )
        result = validator.validate(token, {"customInteger": 123456789, "aud": "s6BhdRkqt3"})
        self.assertTrue(result.passed, result.msg)
        self.assertEqual(result.claims["iss"], TEST_ISSUER)
        self.assertEqual(result.claims["customDouble"], 3.141592653589793)

    def test_nested_token_tampering_reports_uniform_decryption_failure(self) -> None:
        validator = _validator(decrypt_key_location=PRIVATE_KEY_4K)
        token = build_token(make_claims(), _signing_key(), fixture_key(PUBLIC_KEY_4K, KeyRole.ENCRYPT))
        result = validator.validate(flip_segment_byte(token, 3))
        self.assertFalse(result.passed)
        self.assertIs(result.error_kind, ErrorKind.DECRYPTION)
        self.assertEqual(result.msg, "decryption: token decryption failed")

    def test_expired_token_reports_failure(self) -> None:
        now = now_epoch()
        token = sign_claims(make_claims(now=now - 10, exp_offset=9), _signing_key())
        result = _validator().validate(token, now=now)
        self.assertFalse(result.passed)
        self.assertIs(result.error_kind, ErrorKind.EXPIRED)

    def test_issuer_mismatch(self) -> None:
        token = sign_claims(make_claims(iss="https://other.example.com"), _signing_key())
        result = _validator().validate(token)
        self.assertFalse(result.passed)
        self.assertIn("iss mismatch", result.msg)

    def test_expectations_override_configured_issuer(self) -> None:
        token = sign_claims(make_claims(iss="https://other.example.com"), _signing_key())
        result = _validator().validate(token, {"iss": "https://other.example.com"})
        self.assertTrue(result.passed, result.msg)

    def test_encrypted_token_requires_decryption_key(self) -> None:
        token = build_token(make_claims(), _signing_key(), fixture_key(PUBLIC_KEY_4K, KeyRole.ENCRYPT))
        result = _validator().validate(token)
        self.assertFalse(result.passed)
        self.assertIs(result.error_kind, ErrorKind.MALFORMED_TOKEN)

    def test_signed_token_rejected_when_encryption_is_required(self) -> None:
        token = sign_claims(make_claims(), _signing_key())
        result = _validator(decrypt_key_location=PRIVATE_KEY_4K).validate(token)
        self.assertFalse(result.passed)
        self.assertIs(result.error_kind, ErrorKind.MALFORMED_TOKEN)

    def test_encrypted_claims_without_signature(self) -> None:
        token = build_token(make_claims(), encryption_key=fixture_key(PUBLIC_KEY_4K, KeyRole.ENCRYPT))

        strict = _validator(decrypt_key_location=PRIVATE_KEY_4K)
        result = strict.validate(token)
        self.assertFalse(result.passed)
        self.assertIs(result.error_kind, ErrorKind.SIGNATURE)

        decrypt_only = _validator(verify_public_key_location=None, decrypt_key_location=PRIVATE_KEY_4K)
        result = decrypt_only.validate(token)
        self.assertTrue(result.passed, result.msg)

    def test_disallowed_signature_algorithm(self) -> None:
        token = sign_claims(make_claims(), _signing_key(), "RS512")
        result = _validator().validate(token)
        self.assertIs(result.error_kind, ErrorKind.SIGNATURE)
        result = _validator(verify_algorithms=frozenset({"RS512"})).validate(token)
        self.assertTrue(result.passed, result.msg)

    def test_audience_check(self) -> None:
        token = sign_claims(make_claims(), _signing_key())
        result = _validator(audiences=frozenset({"other-client"})).validate(token)
        self.assertIs(result.error_kind, ErrorKind.INVALID_CLAIM)
        result = _validator(audiences=frozenset({"other-client", "s6BhdRkqt3"})).validate(token)
        self.assertTrue(result.passed, result.msg)

    def test_inline_public_key(self) -> None:
        inline = (RESOURCES / "publicKey4k.pem").read_text(encoding="ascii")
        validator = _validator(verify_public_key_location=None, verify_public_key=inline)
        result = validator.validate(sign_claims(make_claims(), _signing_key()))
        self.assertTrue(result.passed, result.msg)

    def test_malformed_token_is_reported(self) -> None:
        result = _validator().validate("not-a-token")
        self.assertFalse(result.passed)
        self.assertTrue(result.msg.startswith("malformed_token:"))

    def test_deeply_nested_header_is_reported_as_malformed(self) -> None:
        header = b64url_encode(b"[" * 100_000)
        token = f"{header}.{encode_json_segment(make_claims())}.c2ln"
        result = _validator().validate(token)
        self.assertFalse(result.passed)
        self.assertIs(result.error_kind, ErrorKind.MALFORMED_TOKEN)

        nested = _validator(decrypt_key_location=PRIVATE_KEY_4K).validate(f"{header}.a2V5.aXY.Y3Q.dGFn")
        self.assertFalse(nested.passed)
        self.assertIs(nested.error_kind, ErrorKind.MALFORMED_TOKEN)

    def test_misconfiguration_raises(self) -> None:
        with self.assertRaises(ConfigError):
            TokenValidator(ValidatorConfig()).validate("a.b.c")
        with self.assertRaises(KeyResolutionError):
            _validator(verify_public_key_location="/missing.pem").validate("a.b.c")
        with self.assertRaises(KeyResolutionError):
            _validator(verify_public_key_location=PRIVATE_KEY_4K).validate("a.b.c")

    def test_validator_reuses_cached_keys(self) -> None:
        store = KeyStore()
        validator = TokenValidator(
            ValidatorConfig(verify_public_key_location=PUBLIC_KEY_4K, issuer=TEST_ISSUER),
            KeyResolver([RESOURCES], store=store),
        )
        token = sign_claims(make_claims(), _signing_key())
        for _ in range(3):
            self.assertTrue(validator.validate(token).passed)
        self.assertEqual(store.load_count(PUBLIC_KEY_4K), 1)


if __name__ == "__main__":
    unittest.main()
