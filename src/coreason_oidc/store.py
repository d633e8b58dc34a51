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
Record store contract for provider configurations.
"""

from typing import Protocol

import anyio

from coreason_oidc.models import ProviderConfig


class ProviderConfigStore(Protocol):
    """Protocol for persisting provider configurations."""

    async def load(self, provider_id: str) -> ProviderConfig | None:
        ...

    async def save(self, config: ProviderConfig) -> None:
        ...


class InMemoryProviderConfigStore:
    """
    In-memory implementation of ProviderConfigStore.
    Last writer wins. Not suitable for distributed systems.
    """

    def __init__(self) -> None:
        self._records: dict[str, ProviderConfig] = {}
        self._lock: anyio.Lock | None = None

    def _get_lock(self) -> anyio.Lock:
        if self._lock is None:
            self._lock = anyio.Lock()
        return self._lock

    async def load(self, provider_id: str) -> ProviderConfig | None:
        async with self._get_lock():
            return self._records.get(provider_id)

    async def save(self, config: ProviderConfig) -> None:
        async with self._get_lock():
            self._records[config.provider_id] = config
