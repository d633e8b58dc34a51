# Copyright (c) 2025 CoReason, Inc.
#
# This software is proprietary and dual-licensed.
# Licensed under the Prosperity Public License 3.0 (the "License").
# A copy of the license is available at https://prosperitylicense.com/versions/3.0.0
# For details, see the LICENSE file.
# Commercial use beyond a 30-day trial requires a separate license.
#
# Source Code: https://github.com/CoReason-AI/coreason_identity

import json
import socket
import time
from collections.abc import Callable, Generator
from typing import Any
from unittest.mock import MagicMock, patch

import httpx
import pytest
from authlib.jose import JsonWebKey, jwt

CLIENT_SECRET = "s3cr3t-client-secret-with-enough-entropy-0123456789"
KID = "key-1"


@pytest.fixture(autouse=True)
def mock_dns_resolution() -> Generator[MagicMock, None, None]:
    """
    Globally patches socket.getaddrinfo to return a safe public IP by default.

    Tests that need to verify SSRF logic should configure this mock's return value.
    """
    safe_response = [(socket.AF_INET, socket.SOCK_STREAM, 6, "", ("8.8.8.8", 443))]
    with patch("socket.getaddrinfo", return_value=safe_response) as mock:
        yield mock


@pytest.fixture(autouse=True)
def http_timeout_env(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setenv("COREASON_OIDC_HTTP_TIMEOUT", "5")


class FakeIdP:
    """Routes requests of an `httpx.MockTransport` to canned responses and records them."""

    def __init__(self) -> None:
        self.routes: dict[str, Any] = {}
        self.requests: list[httpx.Request] = []

    def route(self, url: str, body: Any, status: int = 200) -> None:
        content = body if isinstance(body, (str, bytes)) else json.dumps(body)
        self.routes[url] = (status, content)

    def fail(self, url: str, error: Exception) -> None:
        self.routes[url] = error

    def handler(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        route = self.routes.get(str(request.url))
        if route is None:
            return httpx.Response(404)
        if isinstance(route, Exception):
            raise route
        status, content = route
        return httpx.Response(status, content=content)

    def calls(self, url: str) -> int:
        return sum(1 for r in self.requests if str(r.url) == url)


@pytest.fixture
def idp() -> FakeIdP:
    return FakeIdP()


@pytest.fixture
def http_client(idp: FakeIdP) -> httpx.AsyncClient:
    return httpx.AsyncClient(transport=httpx.MockTransport(idp.handler))


@pytest.fixture(scope="session")
def rsa_key() -> Any:
    return JsonWebKey.generate_key("RSA", 2048, is_private=True)


@pytest.fixture(scope="session")
def public_jwk(rsa_key: Any) -> dict[str, Any]:
    jwk = rsa_key.as_dict(is_private=False)
    jwk["kid"] = KID
    return jwk


@pytest.fixture(scope="session")
def jwks_blob(public_jwk: dict[str, Any]) -> str:
    return json.dumps({"keys": [public_jwk]})


@pytest.fixture
def base_claims() -> dict[str, Any]:
    now = int(time.time())
    return {
        "sub": "some-login-attribute",
        "aud": "abc",
        "iat": now,
        "exp": now + 30,
        "iss": "issuer",
        "nonce": "nonce",
    }


@pytest.fixture
def sign_hs256() -> Callable[..., str]:
    def _sign(claims: dict[str, Any], secret: str = CLIENT_SECRET) -> str:
        return jwt.encode({"alg": "HS256"}, claims, secret).decode("utf-8")  # type: ignore[no-any-return]

    return _sign


@pytest.fixture
def sign_rs256(rsa_key: Any) -> Callable[..., str]:
    def _sign(claims: dict[str, Any], key: Any = None, kid: str | None = KID) -> str:
        header = {"alg": "RS256"}
        if kid is not None:
            header["kid"] = kid
        return jwt.encode(header, claims, key or rsa_key).decode("utf-8")  # type: ignore[no-any-return]

    return _sign
