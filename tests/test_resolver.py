# Copyright (c) 2025 CoReason, Inc.
#
# This software is proprietary and dual-licensed.
# Licensed under the Prosperity Public License 3.0 (the "License").
# A copy of the license is available at https://prosperitylicense.com/versions/3.0.0
# For details, see the LICENSE file.
# Commercial use beyond a 30-day trial requires a separate license.
#
# Source Code: https://github.com/CoReason-AI/coreason_identity

from collections.abc import Callable
from typing import Any

import httpx
import pytest
from pydantic import SecretStr

from coreason_oidc.exceptions import FetchError, InvalidTokenError
from coreason_oidc.flags import StaticFeatureFlags
from coreason_oidc.jwks import JWKSCache
from coreason_oidc.models import ProviderConfig, TokenExchange
from coreason_oidc.resolver import UniqueIdResolver
from coreason_oidc.validator import IDTokenValidator

CLIENT_SECRET = "s3cr3t-client-secret-with-enough-entropy-0123456789"
USERINFO_URL = "https://idp.example.com/userinfo"


@pytest.fixture
def config() -> ProviderConfig:
    return ProviderConfig(
        client_id="abc",
        client_secret=SecretStr(CLIENT_SECRET),
        issuer="issuer",
        userinfo_endpoint=USERINFO_URL,
    )


@pytest.fixture
def resolver(http_client: httpx.AsyncClient) -> UniqueIdResolver:
    validator = IDTokenValidator(JWKSCache(http_client), StaticFeatureFlags(), SecretStr("salt"))
    return UniqueIdResolver(validator, http_client)


def exchange_for(token: str | None, access_token: str | None = "access-token") -> TokenExchange:
    return TokenExchange.from_token_response(
        {"id_token": token, "access_token": access_token, "token_type": "Bearer"}, nonce="nonce"
    )


def test_from_token_response() -> None:
    exchange = TokenExchange.from_token_response({"id_token": "t", "access_token": "a"}, nonce="n")
    assert exchange.id_token == "t"
    assert exchange.access_token is not None
    assert exchange.access_token.get_secret_value() == "a"
    assert exchange.nonce == "n"
    assert TokenExchange.from_token_response({}).access_token is None


class TestUniqueId:
    @pytest.mark.asyncio
    async def test_gets_the_sub_from_the_id_token(
        self,
        resolver: UniqueIdResolver,
        config: ProviderConfig,
        sign_hs256: Callable[..., str],
        base_claims: dict[str, Any],
        idp: Any,
    ) -> None:
        assert await resolver.unique_id(exchange_for(sign_hs256(base_claims)), config) == "some-login-attribute"
        assert idp.requests == []

    @pytest.mark.asyncio
    async def test_gets_the_login_attribute_from_the_id_token(
        self,
        resolver: UniqueIdResolver,
        config: ProviderConfig,
        sign_hs256: Callable[..., str],
        base_claims: dict[str, Any],
    ) -> None:
        config = config.model_copy(update={"login_attribute": "email"})
        token = sign_hs256({**base_claims, "email": "user@example.com"})
        assert await resolver.unique_id(exchange_for(token), config) == "user@example.com"

    @pytest.mark.asyncio
    async def test_falls_back_to_userinfo(
        self,
        resolver: UniqueIdResolver,
        config: ProviderConfig,
        sign_hs256: Callable[..., str],
        base_claims: dict[str, Any],
        idp: Any,
    ) -> None:
        idp.route(USERINFO_URL, {"sub": "some-login-attribute", "preferred_username": "jdoe"})
        config = config.model_copy(update={"login_attribute": "preferred_username"})

        assert await resolver.unique_id(exchange_for(sign_hs256(base_claims)), config) == "jdoe"

        request = idp.requests[0]
        assert request.headers["Authorization"] == "Bearer access-token"

    @pytest.mark.asyncio
    async def test_ignores_userinfo_with_mismatched_sub(
        self,
        resolver: UniqueIdResolver,
        config: ProviderConfig,
        sign_hs256: Callable[..., str],
        base_claims: dict[str, Any],
        idp: Any,
    ) -> None:
        idp.route(USERINFO_URL, {"sub": "someone-else", "preferred_username": "intruder"})
        config = config.model_copy(update={"login_attribute": "preferred_username"})

        assert await resolver.unique_id(exchange_for(sign_hs256(base_claims)), config) is None

    @pytest.mark.asyncio
    async def test_ignores_userinfo_when_id_token_has_no_sub(
        self,
        resolver: UniqueIdResolver,
        config: ProviderConfig,
        sign_hs256: Callable[..., str],
        base_claims: dict[str, Any],
        idp: Any,
    ) -> None:
        idp.route(USERINFO_URL, {"preferred_username": "intruder"})
        config = config.model_copy(update={"login_attribute": "preferred_username"})
        claims = {k: v for k, v in base_claims.items() if k != "sub"}

        assert await resolver.unique_id(exchange_for(sign_hs256(claims)), config) is None
        assert idp.calls(USERINFO_URL) == 0

    @pytest.mark.asyncio
    async def test_no_userinfo_without_access_token(
        self,
        resolver: UniqueIdResolver,
        config: ProviderConfig,
        sign_hs256: Callable[..., str],
        base_claims: dict[str, Any],
        idp: Any,
    ) -> None:
        config = config.model_copy(update={"login_attribute": "preferred_username"})
        exchange = exchange_for(sign_hs256(base_claims), access_token=None)
        assert await resolver.unique_id(exchange, config) is None
        assert idp.requests == []

    @pytest.mark.asyncio
    async def test_no_userinfo_without_endpoint(
        self,
        resolver: UniqueIdResolver,
        config: ProviderConfig,
        sign_hs256: Callable[..., str],
        base_claims: dict[str, Any],
        idp: Any,
    ) -> None:
        config = config.model_copy(update={"login_attribute": "preferred_username", "userinfo_endpoint": None})
        assert await resolver.unique_id(exchange_for(sign_hs256(base_claims)), config) is None
        assert idp.requests == []

    @pytest.mark.asyncio
    @pytest.mark.parametrize("token", [None, "", "   "])
    async def test_missing_id_token(
        self, resolver: UniqueIdResolver, config: ProviderConfig, token: str | None
    ) -> None:
        assert await resolver.unique_id(exchange_for(token), config) is None

    @pytest.mark.asyncio
    async def test_invalid_id_token_propagates(
        self,
        resolver: UniqueIdResolver,
        config: ProviderConfig,
        sign_hs256: Callable[..., str],
        base_claims: dict[str, Any],
    ) -> None:
        token = sign_hs256({**base_claims, "aud": "someone_else"})
        with pytest.raises(InvalidTokenError):
            await resolver.unique_id(exchange_for(token), config)

    @pytest.mark.asyncio
    async def test_userinfo_failure_propagates(
        self,
        resolver: UniqueIdResolver,
        config: ProviderConfig,
        sign_hs256: Callable[..., str],
        base_claims: dict[str, Any],
        idp: Any,
    ) -> None:
        idp.route(USERINFO_URL, {"error": "invalid_token"}, status=401)
        config = config.model_copy(update={"login_attribute": "preferred_username"})
        with pytest.raises(FetchError):
            await resolver.unique_id(exchange_for(sign_hs256(base_claims)), config)


class TestProviderAttributes:
    @pytest.mark.asyncio
    async def test_maps_claims_from_the_id_token(
        self,
        resolver: UniqueIdResolver,
        config: ProviderConfig,
        sign_hs256: Callable[..., str],
        base_claims: dict[str, Any],
        idp: Any,
    ) -> None:
        config = config.model_copy(update={"federated_attributes": {"email": "email", "display_name": "name"}})
        token = sign_hs256({**base_claims, "email": "user@example.com", "name": "Jane Doe"})

        attributes = await resolver.provider_attributes(exchange_for(token), config)

        assert attributes == {"email": "user@example.com", "display_name": "Jane Doe"}
        assert idp.requests == []

    @pytest.mark.asyncio
    async def test_missing_claims_come_from_userinfo(
        self,
        resolver: UniqueIdResolver,
        config: ProviderConfig,
        sign_hs256: Callable[..., str],
        base_claims: dict[str, Any],
        idp: Any,
    ) -> None:
        idp.route(
            USERINFO_URL,
            {"sub": "some-login-attribute", "email": "stale@example.com", "name": "Jane Doe"},
        )
        config = config.model_copy(update={"federated_attributes": {"email": "email", "display_name": "name"}})
        token = sign_hs256({**base_claims, "email": "user@example.com"})

        attributes = await resolver.provider_attributes(exchange_for(token), config)

        assert attributes == {"email": "user@example.com", "display_name": "Jane Doe"}
        assert idp.calls(USERINFO_URL) == 1

    @pytest.mark.asyncio
    async def test_unresolvable_attributes_are_omitted(
        self,
        resolver: UniqueIdResolver,
        config: ProviderConfig,
        sign_hs256: Callable[..., str],
        base_claims: dict[str, Any],
        idp: Any,
    ) -> None:
        idp.route(USERINFO_URL, {"sub": "someone-else", "name": "Intruder"})
        config = config.model_copy(update={"federated_attributes": {"display_name": "name"}})

        assert await resolver.provider_attributes(exchange_for(sign_hs256(base_claims)), config) == {}

    @pytest.mark.asyncio
    async def test_reuses_validated_claims(
        self,
        resolver: UniqueIdResolver,
        config: ProviderConfig,
        sign_hs256: Callable[..., str],
        base_claims: dict[str, Any],
    ) -> None:
        config = config.model_copy(update={"federated_attributes": {"email": "email"}})
        exchange = exchange_for(sign_hs256({**base_claims, "email": "user@example.com"}))
        claims = await resolver.validate(exchange, config)

        assert await resolver.provider_attributes(exchange, config, claims) == {"email": "user@example.com"}

    @pytest.mark.asyncio
    async def test_missing_id_token(self, resolver: UniqueIdResolver, config: ProviderConfig) -> None:
        assert await resolver.provider_attributes(exchange_for(None), config) == {}
