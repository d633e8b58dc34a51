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
RelyingPartyManager component for orchestrating provider configuration and login resolution.
"""

from collections.abc import Mapping, MutableMapping
from typing import Any

import httpx
from authlib.integrations.httpx_client import AsyncOAuth2Client
from opentelemetry.instrumentation.httpx import HTTPXClientInstrumentor

from coreason_oidc.auth_method import build_oauth_client, validate_token_endpoint_auth_method
from coreason_oidc.config import RelyingPartySettings
from coreason_oidc.discovery import DiscoveryPopulator
from coreason_oidc.exceptions import ConfigInvalidError, CoreasonOIDCError, FetchError
from coreason_oidc.flags import FeatureFlags, StaticFeatureFlags
from coreason_oidc.jwks import JWKSCache
from coreason_oidc.logout import build_logout_redirect, remember_id_token
from coreason_oidc.models import FieldError, ProviderConfig, TokenExchange, ValidatedClaims
from coreason_oidc.resolver import UniqueIdResolver
from coreason_oidc.store import InMemoryProviderConfigStore, ProviderConfigStore
from coreason_oidc.transport import SafeHTTPTransport
from coreason_oidc.utils.logger import logger
from coreason_oidc.validator import IDTokenValidator


class RelyingPartyManager:
    """
    Async implementation of the relying party (The Core).
    Handles resources via async context manager.
    """

    def __init__(
        self,
        settings: RelyingPartySettings,
        store: ProviderConfigStore | None = None,
        flags: FeatureFlags | None = None,
        client: httpx.AsyncClient | None = None,
        refresh_on_unknown_key: bool = False,
    ) -> None:
        """
        Initialize the RelyingPartyManager.

        Args:
            settings: The deployment settings.
            store: Record store for provider configurations. Defaults to an in-memory store.
            flags: Feature-flag lookup. Defaults to the flags enabled in `settings`.
            client: External async client (optional). If not provided, a `SafeHTTPTransport` client is created.
            refresh_on_unknown_key: Force one JWKS refresh when a token's key id is unknown.
        """
        self.settings = settings
        self.store = store or InMemoryProviderConfigStore()
        self.flags = flags or StaticFeatureFlags.from_settings(settings)
        self._internal_client = client is None

        if client:
            self._client = client
        else:
            # Plain transport is only allowed for local IdPs on private addresses
            transport = httpx.AsyncHTTPTransport() if settings.unsafe_local_dev else SafeHTTPTransport()
            self._client = httpx.AsyncClient(transport=transport, timeout=settings.http_timeout)

        # Instrument the client for distributed tracing
        HTTPXClientInstrumentor().instrument_client(self._client)

        self.discovery = DiscoveryPopulator(self._client, max_bytes=settings.max_response_bytes)
        self.jwks_cache = JWKSCache(
            self._client,
            refresh_cooldown=settings.jwks_refresh_cooldown,
            max_bytes=settings.max_response_bytes,
        )
        self.validator = IDTokenValidator(
            jwks_cache=self.jwks_cache,
            flags=self.flags,
            pii_salt=settings.pii_salt,
            allowed_algorithms=settings.allowed_algorithms,
            leeway=settings.clock_skew_leeway,
            refresh_on_unknown_key=refresh_on_unknown_key,
            on_keys_refreshed=self._store_refreshed_keys,
        )
        self.resolver = UniqueIdResolver(self.validator, self._client, max_bytes=settings.max_response_bytes)

    async def __aenter__(self) -> "RelyingPartyManager":
        return self

    async def __aexit__(self, exc_type: Any, exc_val: Any, exc_tb: Any) -> None:
        if self._internal_client:
            await self._client.aclose()

    async def _store_refreshed_keys(self, config: ProviderConfig) -> None:
        # Only the key cache of the stored record is updated, and only while it still points at the same jwks_uri
        stored = await self.store.load(config.provider_id)
        if stored is None or stored.jwks_uri != config.jwks_uri:
            return
        if stored.cached_jwks_blob == config.cached_jwks_blob:
            return
        await self.store.save(
            stored.model_copy(
                update={"cached_jwks_uri": config.cached_jwks_uri, "cached_jwks_blob": config.cached_jwks_blob}
            )
        )
        logger.info(f"Stored rotated signing keys for provider {config.provider_id}")

    async def validate_and_refresh(self, config: ProviderConfig) -> tuple[list[FieldError], ProviderConfig]:
        """
        Runs the validity check that precedes persistence.

        Discovery (when `discovery_url` is set) is applied first, then the auth method is checked
        and the JWKS refresh policy evaluated against the stored record of the same provider.
        Fetch failures become field errors.

        Args:
            config: The configuration about to be saved.

        Returns:
            tuple[list[FieldError], ProviderConfig]: The errors (empty when valid) and the refreshed configuration.
        """
        errors: list[FieldError] = []

        if config.discovery_url:
            try:
                config = await self.discovery.refresh(config)
            except FetchError as e:
                logger.warning(f"Discovery failed for provider {config.provider_id}: {e}")
                errors.append(FieldError(field="discovery_url", message=str(e)))

        errors.extend(validate_token_endpoint_auth_method(config))

        previous = await self.store.load(config.provider_id)
        try:
            config = await self.jwks_cache.refresh(config, previous=previous)
        except FetchError as e:
            logger.warning(f"JWKS download failed for provider {config.provider_id}: {e}")
            errors.append(FieldError(field="jwks_uri", message=str(e)))

        return errors, config

    async def save(self, config: ProviderConfig) -> ProviderConfig:
        """
        Validates, refreshes and persists a provider configuration.

        Returns:
            ProviderConfig: The configuration as persisted.

        Raises:
            ConfigInvalidError: If the validity check fails; nothing is persisted.
        """
        errors, refreshed = await self.validate_and_refresh(config)
        if errors:
            raise ConfigInvalidError(errors)
        await self.store.save(refreshed)
        logger.info(f"Saved provider configuration {refreshed.provider_id}")
        return refreshed

    async def load(self, provider_id: str) -> ProviderConfig:
        """
        Loads a persisted provider configuration.

        Raises:
            CoreasonOIDCError: If no configuration exists for `provider_id`.
        """
        config = await self.store.load(provider_id)
        if config is None:
            raise CoreasonOIDCError(f"Unknown provider {provider_id!r}")
        return config

    def oauth_client(self, config: ProviderConfig, redirect_uri: str) -> AsyncOAuth2Client:
        """
        Builds the OAuth2 client for the authorization-code exchange of `config`.

        The caller owns the returned client and must close it.
        """
        return build_oauth_client(config, redirect_uri=redirect_uri, timeout=self.settings.http_timeout)

    async def validate_id_token(self, exchange: TokenExchange, config: ProviderConfig) -> ValidatedClaims | None:
        """Validates the exchange's ID token; see `UniqueIdResolver.validate`."""
        return await self.resolver.validate(exchange, config)

    async def unique_id(self, exchange: TokenExchange, config: ProviderConfig) -> str | None:
        """
        Resolves the login identifier of an authentication attempt.

        Raises:
            InvalidTokenError: If the ID token cannot be trusted.
            FetchError: If keys or userinfo cannot be fetched.
        """
        return await self.resolver.unique_id(exchange, config)

    async def provider_attributes(
        self,
        exchange: TokenExchange,
        config: ProviderConfig,
        claims: ValidatedClaims | None = None,
    ) -> dict[str, Any]:
        """Maps the provider's federated attributes; see `UniqueIdResolver.provider_attributes`."""
        return await self.resolver.provider_attributes(exchange, config, claims)

    def remember_id_token(self, session: MutableMapping[str, Any], claims: ValidatedClaims) -> None:
        remember_id_token(session, claims)

    def logout_redirect(
        self,
        config: ProviderConfig,
        post_logout_redirect_uri: str,
        session: Mapping[str, Any],
    ) -> str | None:
        """Builds the end-session redirect; see `build_logout_redirect`."""
        return build_logout_redirect(config, post_logout_redirect_uri, session, self.flags)
