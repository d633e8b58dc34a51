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
JWKS component: fetches, stores and invalidates a provider's signing keys.

The key set is cached on the provider configuration itself (`cached_jwks_uri`, `cached_jwks_blob`).
Refresh is decided by comparing `jwks_uri` with the URI the blob was fetched from, so steady-state
validation performs no network call.
"""

import json
import time
from collections.abc import Iterator, Mapping
from functools import lru_cache
from types import MappingProxyType
from typing import Any

import anyio
import httpx
from authlib.jose import JsonWebKey

from coreason_oidc.exceptions import FetchError, KeyNotFoundError, KeySetParseError
from coreason_oidc.models import ProviderConfig
from coreason_oidc.transport import DEFAULT_MAX_BYTES, safe_fetch
from coreason_oidc.utils.logger import logger


class SigningKeySet(Mapping[str, dict[str, Any]]):
    """
    Immutable mapping of key id to public JWK, reconstructed from a serialized JWKS.
    """

    def __init__(self, keys: Mapping[str, dict[str, Any]]) -> None:
        self._keys = MappingProxyType(dict(keys))

    def __getitem__(self, kid: str) -> dict[str, Any]:
        return self._keys[kid]

    def __iter__(self) -> Iterator[str]:
        return iter(self._keys)

    def __len__(self) -> int:
        return len(self._keys)

    def find(self, kid: str | None) -> dict[str, Any]:
        """
        Resolves the signing key for a token header.

        A token without `kid` only resolves when the set holds exactly one key.

        Raises:
            KeyNotFoundError: If no key matches.
        """
        if kid is None:
            if len(self._keys) == 1:
                return next(iter(self._keys.values()))
            raise KeyNotFoundError(kid)
        try:
            return self._keys[kid]
        except KeyError:
            raise KeyNotFoundError(kid) from None


@lru_cache(maxsize=64)
def parse_key_set(blob: str) -> SigningKeySet:
    """
    Parses a serialized JWKS.

    Accepts a JWKS object (`{"keys": [...]}`) or a bare JSON array of JWKs. Keys without a `kid`
    are indexed by their RFC 7638 thumbprint.

    Args:
        blob: The serialized key set.

    Returns:
        SigningKeySet: The parsed key set.

    Raises:
        KeySetParseError: If the blob is not well-formed JWKS JSON.
    """
    try:
        data = json.loads(blob)
    except ValueError as e:
        raise KeySetParseError(f"JWKS is not valid JSON: {e}") from e

    entries = data.get("keys") if isinstance(data, dict) else data
    if not isinstance(entries, list):
        raise KeySetParseError("JWKS must be an object with a 'keys' array or an array of keys")

    keys: dict[str, dict[str, Any]] = {}
    for entry in entries:
        if not isinstance(entry, dict):
            raise KeySetParseError("Every JWKS entry must be a JSON object")
        try:
            key = JsonWebKey.import_key(entry)
        except (ValueError, KeyError, TypeError) as e:
            raise KeySetParseError(f"Invalid JWK in key set: {e}") from e
        jwk = dict(entry)
        jwk.setdefault("kid", key.thumbprint())
        keys[jwk["kid"]] = jwk

    return SigningKeySet(keys)


def set_cached_jwks(config: ProviderConfig, blob: str) -> ProviderConfig:
    """
    Administrative override of the cached key set.

    Validates the blob and stores it; `cached_jwks_uri` is left untouched.

    Raises:
        KeySetParseError: If the blob is not well-formed JWKS JSON.
    """
    parse_key_set(blob)
    return config.model_copy(update={"cached_jwks_blob": blob})


def needs_refresh(config: ProviderConfig, previous: ProviderConfig | None = None) -> bool:
    """
    Decides whether the cached key set must be (re)downloaded before `config` is persisted.

    Without a stored record to compare against, the blob is stale when it was fetched from a
    different URI than `jwks_uri`. With one, the refresh follows the edit: a blob carried over
    unchanged is refetched only when `jwks_uri` moved, and a blob replaced in the same edit
    (administrative override) is kept as is.

    Args:
        config: The configuration about to be saved.
        previous: The currently stored record for the same provider, if any.
    """
    if not config.jwks_uri:
        return config.cached_jwks_blob is not None or config.cached_jwks_uri is not None
    if not config.cached_jwks_blob:
        return True
    if previous is not None:
        if config.cached_jwks_blob == previous.cached_jwks_blob:
            return config.jwks_uri != previous.jwks_uri
        return False
    return config.cached_jwks_uri is not None and config.cached_jwks_uri != config.jwks_uri


class JWKSCache:
    """
    Keeps a provider's cached JWKS consistent with its `jwks_uri`.

    The last key set downloaded from each URI is remembered, so a rotation picked up by a forced
    refresh keeps serving configurations that still carry the old blob.

    Attributes:
        client (httpx.AsyncClient): The HTTP client used for fetches.
        refresh_cooldown (float): Minimum seconds between forced refetches of the same URI.
        max_bytes (int): Upper bound on the JWKS document size.
    """

    def __init__(
        self,
        client: httpx.AsyncClient,
        refresh_cooldown: float = 30.0,
        max_bytes: int = DEFAULT_MAX_BYTES,
    ) -> None:
        self.client = client
        self.refresh_cooldown = refresh_cooldown
        self.max_bytes = max_bytes
        self._last_fetch: dict[str, float] = {}
        self._blobs: dict[str, str] = {}
        self._lock: anyio.Lock | None = None

    async def _download(self, jwks_uri: str) -> str:
        body = await safe_fetch(self.client, jwks_uri, max_bytes=self.max_bytes)
        try:
            blob = body.decode("utf-8")
            parse_key_set(blob)
        except (UnicodeDecodeError, KeySetParseError) as e:
            raise FetchError(f"Invalid JWKS from {jwks_uri}: {e}") from e
        self._last_fetch[jwks_uri] = time.monotonic()
        self._blobs[jwks_uri] = blob
        return blob

    @staticmethod
    def _with_blob(config: ProviderConfig, jwks_uri: str, blob: str) -> ProviderConfig:
        if config.cached_jwks_blob == blob and config.cached_jwks_uri == jwks_uri:
            return config
        return config.model_copy(update={"cached_jwks_blob": blob, "cached_jwks_uri": jwks_uri})

    async def refresh(
        self,
        config: ProviderConfig,
        force: bool = False,
        previous: ProviderConfig | None = None,
    ) -> ProviderConfig:
        """
        Applies the refresh policy and returns the resulting configuration.

        - no `jwks_uri`: the cached blob and URI are cleared, no network call;
        - `needs_refresh` is False: no-op (unless `force`);
        - otherwise: the key set is downloaded and recorded against `jwks_uri`.

        A forced refresh within `refresh_cooldown` of the last download from the same URI does not
        hit the network; it returns the key set of that download.

        Args:
            config: The provider configuration.
            force: Refetch even when nothing changed.
            previous: The stored record `config` is replacing, for change detection.

        Returns:
            ProviderConfig: The configuration with up-to-date cache fields.

        Raises:
            FetchError: If downloading or parsing the key set fails.
        """
        jwks_uri = config.jwks_uri
        if not jwks_uri:
            if needs_refresh(config):
                logger.info(f"Clearing cached JWKS for provider {config.provider_id}: jwks_uri is not set")
                return config.model_copy(update={"cached_jwks_blob": None, "cached_jwks_uri": None})
            return config

        if not force and not needs_refresh(config, previous):
            return config

        if self._lock is None:
            self._lock = anyio.Lock()

        async with self._lock:
            if force:
                last = self._last_fetch.get(jwks_uri)
                if last is not None and (time.monotonic() - last) < self.refresh_cooldown:
                    logger.warning("JWKS refresh cooldown active. Serving the last downloaded keys.")
                    return self._with_blob(config, jwks_uri, self._blobs[jwks_uri])

            logger.info(f"Downloading JWKS for provider {config.provider_id} from {jwks_uri}")
            blob = await self._download(jwks_uri)

        return self._with_blob(config, jwks_uri, blob)

    def get_keys(self, config: ProviderConfig) -> SigningKeySet | None:
        """
        Returns the signing keys cached on `config`.

        No network call is made; downloads happen in `refresh`, at save time or on a forced retry.

        Returns:
            SigningKeySet | None: The key set, or None when no blob is cached.
        """
        if not config.cached_jwks_blob:
            return None
        return parse_key_set(config.cached_jwks_blob)
