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
Configuration for the coreason-oidc package.
"""

from pydantic import Field, SecretStr, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

SYMMETRIC_ALGORITHMS = frozenset({"HS256", "HS384", "HS512"})

DEFAULT_ALGORITHMS = [
    "RS256",
    "RS384",
    "RS512",
    "PS256",
    "PS384",
    "PS512",
    "ES256",
    "ES384",
    "ES512",
    "HS256",
    "HS384",
    "HS512",
]


class RelyingPartySettings(BaseSettings):
    """
    Deployment-wide settings for the relying party.

    Per-provider trust configuration lives in `ProviderConfig`; these settings cover the runtime.

    Attributes:
        http_timeout (float): Timeout in seconds for discovery, JWKS and userinfo requests.
        max_response_bytes (int): Upper bound on the size of any fetched document.
        allowed_algorithms (list[str]): JWS algorithms accepted on ID tokens.
        clock_skew_leeway (int): Seconds of tolerance applied to `exp`.
        jwks_refresh_cooldown (float): Minimum seconds between forced JWKS refetches of one URI.
        pii_salt (SecretStr): Salt for anonymizing subjects in logs/traces.
        unsafe_local_dev (bool): Allows requests to private addresses (local IdPs only).
        enabled_features (set[str]): Feature flags enabled for every scope.
    """

    model_config = SettingsConfigDict(
        env_prefix="COREASON_OIDC_",
        case_sensitive=False,
    )

    http_timeout: float = Field(..., description="Timeout in seconds for all IdP network operations.")
    max_response_bytes: int = Field(default=1_048_576, gt=0)
    allowed_algorithms: list[str] = Field(default_factory=lambda: list(DEFAULT_ALGORITHMS))
    clock_skew_leeway: int = Field(default=0, ge=0)
    jwks_refresh_cooldown: float = Field(default=30.0, ge=0)
    pii_salt: SecretStr = SecretStr("coreason-unsafe-default-salt")
    unsafe_local_dev: bool = False
    enabled_features: set[str] = Field(default_factory=set)

    @field_validator("allowed_algorithms")
    @classmethod
    def reject_none_algorithm(cls, v: list[str]) -> list[str]:
        """
        Ensures unsigned tokens can never be accepted.
        """
        if any(alg.lower() == "none" for alg in v):
            raise ValueError("The 'none' algorithm cannot be allowed for ID tokens.")
        if not v:
            raise ValueError("At least one signing algorithm must be allowed.")
        return v
