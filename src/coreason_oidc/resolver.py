# Copyright (c) 2025 CoReason, Inc.
#
# This software is proprietary and dual-licensed.
# Licensed under the Prosperity Public License 3.0 (the "License").
# A copy of the license is available at https://prosperitylicense.com/versions/3.0.0
# For details, see the LICENSE file.
# Commercial use beyond a 30-day trial requires a separate license.
#
# Source Code: https://github.com/CoReason-AI/coreason_identity

"""
UniqueIdResolver component for deriving the login identity from a validated ID token.
"""

from typing import Any

import httpx

from coreason_oidc.models import ProviderConfig, TokenExchange, ValidatedClaims
from coreason_oidc.transport import DEFAULT_MAX_BYTES, safe_json_fetch
from coreason_oidc.utils.logger import logger
from coreason_oidc.validator import IDTokenValidator


class UniqueIdResolver:
    """
    Resolves the login identifier (and federated attributes) of an authentication attempt.

    Userinfo responses are only trusted when their `sub` matches the validated ID token.
    """

    def __init__(
        self,
        validator: IDTokenValidator,
        client: httpx.AsyncClient,
        max_bytes: int = DEFAULT_MAX_BYTES,
    ) -> None:
        self.validator = validator
        self.client = client
        self.max_bytes = max_bytes

    async def validate(self, exchange: TokenExchange, config: ProviderConfig) -> ValidatedClaims | None:
        """
        Validates the exchange's ID token.

        Returns:
            ValidatedClaims | None: The claims, or None if the exchange carries no ID token.

        Raises:
            InvalidTokenError: If the ID token is present but cannot be trusted.
        """
        if not exchange.id_token or not exchange.id_token.strip():
            logger.warning(f"No id_token in token response for provider {config.provider_id}")
            return None
        return await self.validator.validate(exchange.id_token, config, nonce=exchange.nonce)

    async def fetch_userinfo(
        self,
        exchange: TokenExchange,
        config: ProviderConfig,
        claims: ValidatedClaims,
    ) -> dict[str, Any] | None:
        """
        Fetches the userinfo endpoint with the exchange's access token.

        Returns:
            dict[str, Any] | None: The userinfo claims, or None when no endpoint or access token is
            available, when the ID token has no `sub`, or when the response's `sub` disagrees with it.

        Raises:
            FetchError: If the request or parsing fails.
        """
        if not config.userinfo_endpoint or exchange.access_token is None:
            return None
        if claims.get("sub") is None:
            logger.warning(f"Skipping userinfo for provider {config.provider_id}: the ID token carries no sub")
            return None

        headers = {"Authorization": f"Bearer {exchange.access_token.get_secret_value()}"}
        userinfo = await safe_json_fetch(self.client, config.userinfo_endpoint, headers=headers, max_bytes=self.max_bytes)

        if userinfo.get("sub") != claims.get("sub"):
            logger.warning(f"Ignoring userinfo for provider {config.provider_id}: sub does not match the ID token")
            return None
        return userinfo

    async def unique_id(self, exchange: TokenExchange, config: ProviderConfig) -> str | None:
        """
        Returns the value of the configured login attribute.

        The attribute is read from the ID token, falling back to the userinfo endpoint.

        Args:
            exchange: The in-flight token exchange.
            config: The provider configuration.

        Returns:
            str | None: The login identifier, or None if it cannot be resolved.

        Raises:
            InvalidTokenError: If the ID token cannot be trusted.
            FetchError: If the userinfo request fails.
        """
        claims = await self.validate(exchange, config)
        if claims is None:
            return None

        value = claims.get(config.login_attribute)
        if value is None:
            userinfo = await self.fetch_userinfo(exchange, config, claims)
            value = userinfo.get(config.login_attribute) if userinfo else None

        if value is None:
            logger.info(f"Login attribute '{config.login_attribute}' not found for provider {config.provider_id}")
            return None
        return str(value)

    async def provider_attributes(
        self,
        exchange: TokenExchange,
        config: ProviderConfig,
        claims: ValidatedClaims | None = None,
    ) -> dict[str, Any]:
        """
        Maps the configured federated attributes from the token (and userinfo) claims.

        Userinfo is only requested when a mapped claim is missing from the ID token.

        Args:
            exchange: The in-flight token exchange.
            config: The provider configuration.
            claims: Already validated claims, to avoid validating twice.

        Returns:
            dict[str, Any]: Local attribute name to value, for the claims that were found.
        """
        if claims is None:
            claims = await self.validate(exchange, config)
            if claims is None:
                return {}

        available = dict(claims.claims)
        if any(source.attribute not in available for source in config.federated_attributes.values()):
            userinfo = await self.fetch_userinfo(exchange, config, claims)
            if userinfo:
                available = {**userinfo, **available}

        return {
            name: available[source.attribute]
            for name, source in config.federated_attributes.items()
            if source.attribute in available
        }
