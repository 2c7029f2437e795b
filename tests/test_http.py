from __future__ import annotations

import json
import threading
import time
import unittest
import urllib.error
import urllib.request
from typing import Any

from nested_jwt.builder import build_token
from nested_jwt.config import ValidatorConfig
from nested_jwt.keys import KeyResolver, KeyRole, KeyStore
from nested_jwt.transport_http import (
    TokenValidationServer,
    extract_bearer_token,
    handle_validation_request,
    query_expectations,
)
from nested_jwt.utils import b64url_encode
from nested_jwt.verifier import TokenValidator
from tests.test_helpers import (
    PRIVATE_KEY_4K,
    PUBLIC_KEY_4K,
    RESOURCES,
    TEST_ISSUER,
    fixture_key,
    make_claims,
    serve_directory,
)


def _validator(config: ValidatorConfig) -> TokenValidator:
    return TokenValidator(config, KeyResolver([RESOURCES], store=KeyStore()))


def _nested_token(**overrides: Any) -> str:
    return build_token(
        make_claims(**overrides),
        fixture_key(PRIVATE_KEY_4K, KeyRole.SIGN),
        fixture_key(PUBLIC_KEY_4K, KeyRole.ENCRYPT),
    )


class RequestHelperTests(unittest.TestCase):
    def test_extract_bearer_token(self) -> None:
        self.assertEqual(extract_bearer_token("Bearer abc.def.ghi"), "abc.def.ghi")
        self.assertEqual(extract_bearer_token("bearer   abc.def.ghi "), "abc.def.ghi")
        self.assertIsNone(extract_bearer_token("Basic dXNlcg=="))
        self.assertIsNone(extract_bearer_token("Bearer "))
        self.assertIsNone(extract_bearer_token(None))
        self.assertEqual(extract_bearer_token("abc.def.ghi", require_scheme=False), "abc.def.ghi")

    def test_query_expectations_decode_scalars(self) -> None:
        expectations = query_expectations("customInteger=123456789&active=true&sub=24400320&upn=jdoe%40example.com")
        self.assertEqual(expectations["customInteger"], 123456789)
        self.assertIs(expectations["active"], True)
        self.assertEqual(expectations["upn"], "jdoe@example.com")
        self.assertEqual(expectations["sub"], 24400320)

    def test_handle_validation_request_status_codes(self) -> None:
        validator = _validator(
            ValidatorConfig(
                verify_public_key_location=PUBLIC_KEY_4K,
                decrypt_key_location=PRIVATE_KEY_4K,
                issuer=TEST_ISSUER,
            )
        )
        status, body = handle_validation_request(validator, None)
        self.assertEqual(status, 401)
        self.assertFalse(body["pass"])

        status, body = handle_validation_request(validator, f"Bearer {_nested_token()}")
        self.assertEqual((status, body["pass"]), (200, True))

        status, body = handle_validation_request(validator, "Bearer not-a-token")
        self.assertEqual((status, body["pass"]), (200, False))

        broken = _validator(ValidatorConfig(verify_public_key_location="/missing.pem"))
        status, body = handle_validation_request(broken, "Bearer a.b.c")
        self.assertEqual(status, 500)
        self.assertFalse(body["pass"])

    def test_deeply_nested_header_is_a_failed_validation(self) -> None:
        validator = _validator(
            ValidatorConfig(
                verify_public_key_location=PUBLIC_KEY_4K,
                decrypt_key_location=PRIVATE_KEY_4K,
                issuer=TEST_ISSUER,
            )
        )
        header = b64url_encode(b"[" * 100_000)
        status, body = handle_validation_request(validator, f"Bearer {header}.a2V5.aXY.Y3Q.dGFn")
        self.assertEqual((status, body["pass"]), (200, False))
        self.assertTrue(body["msg"].startswith("malformed_token:"))

    def test_custom_token_header_has_no_scheme(self) -> None:
        validator = _validator(
            ValidatorConfig(
                verify_public_key_location=PUBLIC_KEY_4K,
                decrypt_key_location=PRIVATE_KEY_4K,
                token_header="X-Token",
            )
        )
        status, body = handle_validation_request(validator, _nested_token())
        self.assertEqual((status, body["pass"]), (200, True), body)


class TokenValidationServerTests(unittest.TestCase):
    def setUp(self) -> None:
        validator = _validator(
            ValidatorConfig(
                verify_public_key_location=PUBLIC_KEY_4K,
                decrypt_key_location=PRIVATE_KEY_4K,
                issuer=TEST_ISSUER,
            )
        )
        self.server = TokenValidationServer("127.0.0.1", 0, validator, expectations={"aud": "s6BhdRkqt3"})
        self.thread = threading.Thread(target=self.server.serve_forever, daemon=True)
        self.thread.start()
        time.sleep(0.05)
        host, port = self.server.server_address
        self.base_url = f"http://{host}:{port}"

    def tearDown(self) -> None:
        self.server.shutdown()
        self.thread.join(timeout=1)

    def _get(self, path: str, token: str | None) -> tuple[int, dict[str, Any]]:
        headers = {"Authorization": f"Bearer {token}"} if token else {}
        request = urllib.request.Request(self.base_url + path, headers=headers)
        try:
            with urllib.request.urlopen(request, timeout=5) as response:
                return response.status, json.loads(response.read().decode("utf-8"))
        except urllib.error.HTTPError as exc:
            return exc.code, json.loads(exc.read().decode("utf-8"))

    def test_valid_nested_token(self) -> None:
        status, body = self._get("/verify?customInteger=123456789", _nested_token())
        self.assertEqual(status, 200)
        self.assertTrue(body["pass"], body["msg"])
        self.assertEqual(set(body), {"pass", "msg"})

    def test_claim_mismatch_from_query(self) -> None:
        status, body = self._get("/verify?customString=wrong", _nested_token())
        self.assertEqual(status, 200)
        self.assertFalse(body["pass"])
        self.assertIn("customString mismatch", body["msg"])

    def test_missing_token(self) -> None:
        status, body = self._get("/verify", None)
        self.assertEqual(status, 401)
        self.assertFalse(body["pass"])

    def test_expired_token(self) -> None:
        status, body = self._get("/", _nested_token(exp=1, iat=0, auth_time=0))
        self.assertEqual(status, 200)
        self.assertFalse(body["pass"])
        self.assertTrue(body["msg"].startswith("expired:"))

    def test_tls_arguments_must_come_together(self) -> None:
        with self.assertRaises(ValueError):
            TokenValidationServer("127.0.0.1", 0, self.server.validator, tls_certfile="cert.pem")


class UrlKeyLocationTests(unittest.TestCase):
    def test_verification_key_from_url(self) -> None:
        with serve_directory() as base_url:
            validator = _validator(
                ValidatorConfig(
                    verify_public_key_location=f"{base_url}/publicKey4k.pem",
                    decrypt_key_location=f"{base_url}/privateKey4k.pem",
                    issuer=TEST_ISSUER,
                )
            )
            result = validator.validate(_nested_token())
        self.assertTrue(result.passed, result.msg)


if __name__ == "__main__":
    unittest.main()
