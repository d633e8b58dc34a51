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
Data models for the coreason-oidc package.
"""

from collections.abc import Mapping
from enum import StrEnum
from typing import Any

from pydantic import BaseModel, ConfigDict, Field, SecretStr, field_validator


class ProviderVariant(StrEnum):
    """
    Identity-provider flavour, selecting the extra claim checks applied to its ID tokens.
    """

    GENERIC = "generic"
    MICROSOFT = "microsoft"


class FederatedAttribute(BaseModel):
    """
    Source of a federated (provisioned) user attribute.

    Attributes:
        attribute (str): The claim name the value is read from.
    """

    model_config = ConfigDict(frozen=True)

    attribute: str


class ProviderConfig(BaseModel):
    """
    Persistent identity and trust configuration of a single OpenID Connect provider.

    This model is frozen; every change produces a new instance via `model_copy(update=...)`.
    `token_endpoint_auth_method` is stored unvalidated and only checked by an explicit validity check.
    """

    model_config = ConfigDict(
        frozen=True,
        extra="forbid",
        json_schema_extra={
            "example": {
                "provider_id": "acme",
                "discovery_url": "https://idp.example.com/.well-known/openid-configuration",
                "client_id": "abc",
                "login_attribute": "preferred_username",
                "federated_attributes": {"email": {"attribute": "email"}},
            }
        },
    )

    provider_id: str = Field(default="default", description="Record-store key for this provider.")
    account_id: str = Field(default="default", description="Scope used for feature-flag lookups.")

    issuer: str | None = None
    authorize_url: str | None = None
    token_url: str | None = None
    userinfo_endpoint: str | None = None
    end_session_endpoint: str | None = None
    discovery_url: str | None = None
    jwks_uri: str | None = None

    client_id: str | None = None
    client_secret: SecretStr | None = None
    token_endpoint_auth_method: str = "client_secret_post"

    login_attribute: str = "sub"
    federated_attributes: dict[str, FederatedAttribute] = Field(default_factory=dict)
    scope: str | None = Field(default=None, description="Additional space-delimited scopes to request.")

    variant: ProviderVariant = ProviderVariant.GENERIC
    tenants: list[str] = Field(
        default_factory=list,
        description="Allowed tenant ids or aliases for the microsoft variant. Empty means `common`.",
    )

    cached_jwks_uri: str | None = None
    cached_jwks_blob: str | None = None

    @field_validator("federated_attributes", mode="before")
    @classmethod
    def normalize_federated_attributes(cls, v: Any) -> Any:
        """Accepts `{"email": "mail"}` as shorthand for `{"email": {"attribute": "mail"}}`."""
        if isinstance(v, Mapping):
            return {k: {"attribute": val} if isinstance(val, str) else val for k, val in v.items()}
        return v


class FieldError(BaseModel):
    """A validation error scoped to a single configuration field."""

    model_config = ConfigDict(frozen=True)

    field: str
    message: str


class ValidatedClaims(BaseModel):
    """
    Claims of an ID token that passed validation, together with the raw token.

    The raw token is kept for the logout `id_token_hint` and is redacted from repr.
    """

    model_config = ConfigDict(frozen=True)

    claims: dict[str, Any]
    id_token: SecretStr

    @property
    def sub(self) -> str | None:
        sub = self.claims.get("sub")
        return None if sub is None else str(sub)

    def get(self, name: str, default: Any = None) -> Any:
        return self.claims.get(name, default)

    def __getitem__(self, name: str) -> Any:
        return self.claims[name]

    def __contains__(self, name: object) -> bool:
        return name in self.claims

    def __repr__(self) -> str:
        return f"ValidatedClaims(claims=<{len(self.claims)} claims>, id_token=<REDACTED>)"

    def __str__(self) -> str:
        return self.__repr__()


class TokenExchange(BaseModel):
    """
    The in-flight result of an authorization-code exchange.

    Attributes:
        id_token (str | None): The raw ID token returned by the token endpoint.
        access_token (SecretStr | None): The access token, used for userinfo calls.
        nonce (str | None): The nonce generated by the relying party for this attempt.
    """

    model_config = ConfigDict(frozen=True)

    id_token: str | None = None
    access_token: SecretStr | None = None
    nonce: str | None = None

    @classmethod
    def from_token_response(cls, token: Mapping[str, Any], nonce: str | None = None) -> "TokenExchange":
        """
        Builds an exchange from an OAuth2 token response (e.g. authlib's `OAuth2Token`).

        Args:
            token: The token endpoint response mapping.
            nonce: The nonce stored in the in-flight OAuth2 state.

        Returns:
            TokenExchange: The exchange object.
        """
        access_token = token.get("access_token")
        return cls(
            id_token=token.get("id_token"),
            access_token=SecretStr(access_token) if access_token else None,
            nonce=nonce,
        )
