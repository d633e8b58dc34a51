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
Derives the OAuth2 `scope` request parameter from the claims a provider is configured to consume.
"""

from collections.abc import Mapping
from enum import StrEnum

from coreason_oidc.models import FederatedAttribute


class OIDCScope(StrEnum):
    OPENID = "openid"
    PROFILE = "profile"
    EMAIL = "email"
    ADDRESS = "address"
    PHONE = "phone"


# Standard claims (OIDC Core 5.4) and the scope that carries them, in request order
SCOPE_CLAIMS: dict[OIDCScope, frozenset[str]] = {
    OIDCScope.PROFILE: frozenset(
        {
            "name",
            "family_name",
            "given_name",
            "middle_name",
            "nickname",
            "preferred_username",
            "profile",
            "picture",
            "website",
            "gender",
            "birthdate",
            "zoneinfo",
            "locale",
            "updated_at",
        }
    ),
    OIDCScope.EMAIL: frozenset({"email", "email_verified"}),
    OIDCScope.ADDRESS: frozenset({"address"}),
    OIDCScope.PHONE: frozenset({"phone_number", "phone_number_verified"}),
}


def infer_scope(
    login_attribute: str | None,
    federated_attributes: Mapping[str, FederatedAttribute],
    extra_scope: str | None = None,
) -> str:
    """
    Builds the space-delimited scope string to request.

    `openid` always comes first, followed by any explicitly configured scopes, then the scopes
    needed for the login attribute and federated attributes (profile, email, address, phone).

    Args:
        login_attribute: The claim that names the login identity.
        federated_attributes: Local attribute name to source claim mapping.
        extra_scope: Additional configured scopes (space-delimited).

    Returns:
        str: The scope string, without duplicates.
    """
    requested_claims = {source.attribute for source in federated_attributes.values()}
    if login_attribute:
        requested_claims.add(login_attribute)

    scopes: list[str] = [OIDCScope.OPENID.value]
    scopes.extend((extra_scope or "").split())
    for scope, claims in SCOPE_CLAIMS.items():
        if requested_claims & claims:
            scopes.append(scope.value)

    return " ".join(dict.fromkeys(scopes))
