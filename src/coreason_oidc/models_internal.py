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
Internal data models for the coreason-oidc package.
These are not exposed in the public API.
"""

from pydantic import BaseModel, ConfigDict, Field


class DiscoveryDocument(BaseModel):
    """
    OIDC metadata from .well-known/openid-configuration.

    Every field is optional: a provider may publish only part of it, and absent fields must not
    overwrite configured values.
    """

    model_config = ConfigDict(frozen=True, extra="ignore")

    issuer: str | None = Field(default=None, description="The OIDC issuer identifier.")
    authorization_endpoint: str | None = Field(default=None, description="The authorization endpoint URL.")
    token_endpoint: str | None = Field(default=None, description="The token endpoint URL.")
    userinfo_endpoint: str | None = Field(default=None, description="The userinfo endpoint URL.")
    end_session_endpoint: str | None = Field(default=None, description="The RP-initiated logout endpoint URL.")
    jwks_uri: str | None = Field(default=None, description="The URL to the JWKS.")


class ClientAuthOptions(BaseModel):
    """
    Outbound client-authentication behavior for the token request.

    Attributes:
        auth_scheme (str): `basic_auth` (HTTP Basic) or `request_body` (credentials in the POST body).
        token_method (str): HTTP method used for the token request.
    """

    model_config = ConfigDict(frozen=True)

    auth_scheme: str
    token_method: str = "POST"
