"""Bearer-token validation endpoint on the standard library HTTP server."""

from __future__ import annotations

import json
import logging
import ssl
import urllib.parse
from http.server import BaseHTTPRequestHandler, ThreadingHTTPServer
from typing import Any, Mapping

from .errors import ConfigError, KeyResolutionError
from .verifier import TokenValidator

logger = logging.getLogger(__name__)


def extract_bearer_token(value: str | None, *, require_scheme: bool = True) -> str | None:
    if not value:
        return None
    value = value.strip()
    if not require_scheme:
        return value or None
    scheme, _, token = value.partition(" ")
    if scheme.lower() != "bearer" or not token.strip():
        return None
    return token.strip()


def query_expectations(query: str) -> dict[str, Any]:
    """Turn ``?claim=value`` pairs into expectations; JSON scalars are decoded."""
    expectations: dict[str, Any] = {}
    for name, raw in urllib.parse.parse_qsl(query, keep_blank_values=True):
        try:
            value = json.loads(raw)
        except ValueError:
            value = raw
        expectations[name] = value if isinstance(value, (int, float, bool)) else raw
    return expectations


def handle_validation_request(
    validator: TokenValidator,
    header_value: str | None,
    expectations: Mapping[str, Any] | None = None,
) -> tuple[int, dict[str, Any]]:
    header_name = validator.config.token_header
    token = extract_bearer_token(header_value, require_scheme=header_name.lower() == "authorization")
    if token is None:
        return 401, {"pass": False, "msg": f"missing bearer token in {header_name} header"}

    try:
        result = validator.validate(token, expectations)
    except (KeyResolutionError, ConfigError) as exc:
        logger.error("validator is misconfigured: %s", exc)
        return 500, {"pass": False, "msg": f"validator misconfigured: {exc}"}
    return 200, result.to_dict()


class TokenValidationServer:
    """Threaded stdlib HTTP server answering every GET with a validation result."""

    def __init__(
        self,
        host: str,
        port: int,
        validator: TokenValidator,
        *,
        expectations: Mapping[str, Any] | None = None,
        tls_certfile: str | None = None,
        tls_keyfile: str | None = None,
    ) -> None:
        self.host = host
        self.port = port
        self.validator = validator
        self.expectations = dict(expectations or {})
        self.tls_certfile = tls_certfile
        self.tls_keyfile = tls_keyfile
        if bool(tls_certfile) != bool(tls_keyfile):
            raise ValueError("tls_certfile and tls_keyfile must be provided together")
        self._server = self._build_server()
        self._wrap_server_socket_with_tls()

    @property
    def server_address(self) -> tuple[str, int]:
        host, port = self._server.server_address[:2]
        return str(host), int(port)

    def _wrap_server_socket_with_tls(self) -> None:
        if not self.tls_certfile or not self.tls_keyfile:
            return
        context = ssl.SSLContext(ssl.PROTOCOL_TLS_SERVER)
        context.minimum_version = ssl.TLSVersion.TLSv1_2
        context.load_cert_chain(certfile=self.tls_certfile, keyfile=self.tls_keyfile)
        self._server.socket = context.wrap_socket(self._server.socket, server_side=True)

    def _build_server(self) -> ThreadingHTTPServer:
        validator = self.validator
        base_expectations = self.expectations

        class RequestHandler(BaseHTTPRequestHandler):
            def do_GET(self) -> None:  # noqa: N802
                query = urllib.parse.urlsplit(self.path).query
                expectations = dict(base_expectations)
                expectations.update(query_expectations(query))
                status, body = handle_validation_request(
                    validator,
                    self.headers.get(validator.config.token_header),
                    expectations,
                )
                raw = json.dumps(body, separators=(",", ":")).encode("utf-8")
                self.send_response(status)
                self.send_header("Content-Type", "application/json")
                self.send_header("Content-Length", str(len(raw)))
                self.end_headers()
                self.wfile.write(raw)

            def log_message(self, format: str, *args: object) -> None:
                logger.debug("%s - %s", self.address_string(), format % args)

        class ReusableServer(ThreadingHTTPServer):
            allow_reuse_address = True
            daemon_threads = True

        return ReusableServer((self.host, self.port), RequestHandler)

    def serve_forever(self) -> None:
        self._server.serve_forever()

    def shutdown(self) -> None:
        self._server.shutdown()
        self._server.server_close()
