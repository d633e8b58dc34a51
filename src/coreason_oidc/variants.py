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
Provider-variant claim checks, run by IDTokenValidator after the baseline and strict checks.
"""

from collections.abc import Iterable, Mapping
from typing import Any, Protocol

from coreason_oidc.exceptions import InvalidClaimError, MissingClaimError
from coreason_oidc.models import ProviderConfig, ProviderVariant

# Tenant id of Microsoft personal (consumer) accounts
PERSONAL_ACCOUNTS_TENANT = "9188040d-6c67-4c5b-b112-36a304b66dad"


class ClaimsCheck(Protocol):
    """
    Extra trust requirement of an identity-provider variant.

    Implementations raise an `InvalidTokenError` subclass to reject the token.
    """

    def __call__(self, claims: Mapping[str, Any], config: ProviderConfig) -> None:
        ...


class TenantClaimsCheck:
    """
    Requires the token's tenant claim to belong to one of the configured tenants.

    Besides literal tenant ids, the aliases `common` (any tenant), `organizations` (any tenant but
    personal accounts) and `consumers` / `microsoft` (personal accounts only) are understood.

    Attributes:
        tenants (tuple[str, ...]): Allowed tenants or aliases.
        claim (str): The claim carrying the tenant id.
    """

    def __init__(self, tenants: Iterable[str], claim: str = "tid") -> None:
        self.tenants = tuple(tenants)
        self.claim = claim

    def allows(self, tenant_id: str) -> bool:
        for tenant in self.tenants:
            if tenant == "common" or tenant == tenant_id:
                return True
            if tenant == "organizations" and tenant_id != PERSONAL_ACCOUNTS_TENANT:
                return True
            if tenant in ("consumers", "microsoft") and tenant_id == PERSONAL_ACCOUNTS_TENANT:
                return True
        return False

    def __call__(self, claims: Mapping[str, Any], config: ProviderConfig) -> None:
        tenant_id = claims.get(self.claim)
        if not tenant_id:
            raise MissingClaimError(self.claim)
        if not self.allows(str(tenant_id)):
            raise InvalidClaimError(self.claim, f"Tenant {tenant_id!r} is not allowed for provider {config.provider_id}")


def checks_for(config: ProviderConfig) -> list[ClaimsCheck]:
    """
    Resolves the variant checks that apply to tokens of `config`.

    Args:
        config: The provider the token was issued for.

    Returns:
        list[ClaimsCheck]: The checks for the provider's variant (empty for generic providers).
    """
    if config.variant == ProviderVariant.MICROSOFT:
        return [TenantClaimsCheck(config.tenants or ["common"])]
    return []
