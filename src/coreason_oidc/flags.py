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
Feature-flag lookup used to gate strict token validation and logout parameters.
"""

from collections.abc import Iterable, Mapping
from typing import Protocol

from coreason_oidc.config import RelyingPartySettings

STRICT_TOKEN_VALIDATION = "oidc_full_token_validation"
RP_INITIATED_LOGOUT_PARAMS = "oidc_rp_initiated_logout_params"


class FeatureFlags(Protocol):
    """Protocol for a feature-flag lookup keyed by flag name and scope (e.g. an account id)."""

    def is_enabled(self, flag: str, scope: str) -> bool:
        ...


class StaticFeatureFlags:
    """
    In-memory implementation of FeatureFlags.

    A flag is enabled for a scope when it is enabled globally or for that scope specifically.
    """

    def __init__(self, enabled: Iterable[str] = (), scoped: Mapping[str, Iterable[str]] | None = None) -> None:
        self._enabled = set(enabled)
        self._scoped = {scope: set(flags) for scope, flags in (scoped or {}).items()}

    @classmethod
    def from_settings(cls, settings: RelyingPartySettings) -> "StaticFeatureFlags":
        return cls(enabled=settings.enabled_features)

    def enable(self, flag: str, scope: str | None = None) -> None:
        if scope is None:
            self._enabled.add(flag)
        else:
            self._scoped.setdefault(scope, set()).add(flag)

    def disable(self, flag: str, scope: str | None = None) -> None:
        if scope is None:
            self._enabled.discard(flag)
        else:
            self._scoped.get(scope, set()).discard(flag)

    def is_enabled(self, flag: str, scope: str) -> bool:
        return flag in self._enabled or flag in self._scoped.get(scope, set())
