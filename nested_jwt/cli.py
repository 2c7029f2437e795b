"""CLI entrypoint for nested-jwt."""

from __future__ import annotations

import argparse
import dataclasses
import json
import logging
import pathlib
import sys
from typing import Any

from .builder import build_token
from .claims import build_claims, load_claims_template
from .config import ValidatorConfig, load_config
from .constants import (
    DEFAULT_CONTENT_ENCRYPTION_ALGORITHM,
    DEFAULT_KEY_MANAGEMENT_ALGORITHM,
    DEFAULT_SIGNATURE_ALGORITHM,
)
from .errors import TokenError
from .keys import KeyResolver, KeyRole, KeyStore
from .transport_http import TokenValidationServer
from .utils import json_dumps_pretty
from .verifier import TokenValidator


def main(argv: list[str] | None = None) -> int:
    parser = argparse.ArgumentParser(prog="nested-jwt", description="Build and validate nested JWS/JWE tokens")
    parser.add_argument("--log-level", default="WARNING", help="Logging level (DEBUG, INFO, WARNING, ...)")
    subparsers = parser.add_subparsers(dest="command", required=True)

    build = subparsers.add_parser("build", help="Build a signed and/or encrypted token from a claims template")
    build.add_argument("--claims", required=True, help="Claims template JSON file")
    build.add_argument("--claim", action="append", default=[], help="Claim override name=value (repeatable)")
    build.add_argument("--exp-offset", type=int, help="Seconds from now until expiration")
    build.add_argument("--sign-key", help="Signing private key location")
    build.add_argument("--sign-alg", default=DEFAULT_SIGNATURE_ALGORITHM)
    build.add_argument("--sign-kid", help="Key id placed in the JWS header")
    build.add_argument("--encrypt-key", help="Recipient public key location")
    build.add_argument("--key-alg", default=DEFAULT_KEY_MANAGEMENT_ALGORITHM)
    build.add_argument("--enc", default=DEFAULT_CONTENT_ENCRYPTION_ALGORITHM)
    build.add_argument("--encrypt-kid", help="Key id placed in the JWE header")
    build.add_argument("--resource-root", action="append", default=[], help="Directory for /resource paths")
    build.set_defaults(func=_cmd_build)

    validate_cmd = subparsers.add_parser("validate", help="Validate a token and print a pass/fail result")
    token_group = validate_cmd.add_mutually_exclusive_group(required=True)
    token_group.add_argument("--token", help="Compact token")
    token_group.add_argument("--token-file", help="File holding the compact token")
    _add_validator_arguments(validate_cmd)
    validate_cmd.add_argument("--expect", action="append", default=[], help="Expected claim name=value (repeatable)")
    validate_cmd.set_defaults(func=_cmd_validate)

    serve = subparsers.add_parser("serve", help="Run the bearer-token validation endpoint")
    serve.add_argument("--host", default="127.0.0.1")
    serve.add_argument("--port", type=int, default=8080)
    serve.add_argument("--tls-cert-file", help="TLS server certificate chain file (PEM)")
    serve.add_argument("--tls-key-file", help="TLS server private key file (PEM)")
    _add_validator_arguments(serve)
    serve.add_argument("--expect", action="append", default=[], help="Expected claim name=value (repeatable)")
    serve.set_defaults(func=_cmd_serve)

    args = parser.parse_args(argv)
    logging.basicConfig(level=getattr(logging, str(args.log_level).upper(), logging.WARNING))
    return args.func(args)


def _add_validator_arguments(parser: argparse.ArgumentParser) -> None:
    parser.add_argument("--config", help="JSON or .properties file with mp.jwt.* settings")
    parser.add_argument("--verify-key", help="Verification public key location (overrides config)")
    parser.add_argument("--decrypt-key", help="Decryption private key location (overrides config)")
    parser.add_argument("--issuer", help="Expected issuer (overrides config)")
    parser.add_argument("--verify-alg", action="append", default=[], help="Accepted signature algorithm (repeatable)")
    parser.add_argument("--resource-root", action="append", default=[], help="Directory for /resource paths")


def _cmd_build(args: argparse.Namespace) -> int:
    if not args.sign_key and not args.encrypt_key:
        print("build requires --sign-key and/or --encrypt-key", file=sys.stderr)
        return 2

    resolver = KeyResolver(args.resource_root, store=KeyStore())
    try:
        template = load_claims_template(args.claims)
        overrides = _parse_assignments(args.claim)
        claims = build_claims(template, overrides, exp_offset=args.exp_offset)
        signing_key = resolver.resolve(args.sign_key, KeyRole.SIGN) if args.sign_key else None
        encryption_key = resolver.resolve(args.encrypt_key, KeyRole.ENCRYPT) if args.encrypt_key else None
        token = build_token(
            claims,
            signing_key,
            encryption_key,
            signature_algorithm=args.sign_alg,
            key_management_algorithm=args.key_alg,
            content_encryption_algorithm=args.enc,
            signing_kid=args.sign_kid,
            encryption_kid=args.encrypt_kid,
        )
    except (TokenError, ValueError) as exc:
        print(f"build failed: {exc}", file=sys.stderr)
        return 2

    print(token)
    return 0


def _cmd_validate(args: argparse.Namespace) -> int:
    try:
        validator = _make_validator(args)
        token = args.token if args.token else pathlib.Path(args.token_file).read_text(encoding="utf-8").strip()
        result = validator.validate(token, _parse_assignments(args.expect))
    except (TokenError, ValueError, OSError) as exc:
        print(f"validation could not run: {exc}", file=sys.stderr)
        return 2

    print(json_dumps_pretty(result.to_dict()))
    return 0 if result.passed else 1


def _cmd_serve(args: argparse.Namespace) -> int:
    try:
        validator = _make_validator(args)
        server = TokenValidationServer(
            args.host,
            args.port,
            validator,
            expectations=_parse_assignments(args.expect),
            tls_certfile=args.tls_cert_file,
            tls_keyfile=args.tls_key_file,
        )
    except (TokenError, ValueError, OSError) as exc:
        print(f"failed to initialize server: {exc}", file=sys.stderr)
        return 2

    host, port = server.server_address
    scheme = "https" if args.tls_cert_file else "http"
    print(f"serving on {scheme}://{host}:{port}/")
    try:
        server.serve_forever()
    except KeyboardInterrupt:
        pass
    finally:
        server.shutdown()
    return 0


def _make_validator(args: argparse.Namespace) -> TokenValidator:
    config = load_config(args.config) if args.config else ValidatorConfig()
    changes: dict[str, Any] = {}
    if args.verify_key:
        changes["verify_public_key"] = None
        changes["verify_public_key_location"] = args.verify_key
    if args.decrypt_key:
        changes["decrypt_key_location"] = args.decrypt_key
    if args.issuer:
        changes["issuer"] = args.issuer
    if args.verify_alg:
        changes["verify_algorithms"] = frozenset(args.verify_alg)
    if changes:
        config = dataclasses.replace(config, **changes)
    return TokenValidator(config, KeyResolver(args.resource_root, store=KeyStore()))


def _parse_assignments(items: list[str]) -> dict[str, Any]:
    result: dict[str, Any] = {}
    for item in items:
        if "=" not in item:
            raise ValueError(f"expected name=value, got {item!r}")
        name, raw = item.split("=", 1)
        name = name.strip()
        if not name:
            raise ValueError(f"empty claim name in {item!r}")
        try:
            result[name] = json.loads(raw)
        except ValueError:
            result[name] = raw
    return result


if __name__ == "__main__":
    raise SystemExit(main())
