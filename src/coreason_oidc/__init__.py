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
OpenID Connect relying-party core: discovery, JWKS trust management, ID token validation,
login identity resolution and RP-initiated logout.
"""

__version__ = "0.1.0"
__author__ = "Gowtham A Rao"
__email__ = "gowtham.rao@coreason.ai"

from .config import RelyingPartySettings
from .exceptions import ConfigInvalidError, CoreasonOIDCError, FetchError, InvalidTokenError
from .flags import StaticFeatureFlags
from .jwks import JWKSCache, SigningKeySet
from .manager import RelyingPartyManager
from .models import ProviderConfig, ProviderVariant, TokenExchange, ValidatedClaims
from .resolver import UniqueIdResolver
from .validator import IDTokenValidator
from .variants import TenantClaimsCheck

__all__ = [
    "ConfigInvalidError",
    "CoreasonOIDCError",
    "FetchError",
    "IDTokenValidator",
    "InvalidTokenError",
    "JWKSCache",
    "ProviderConfig",
    "ProviderVariant",
    "RelyingPartyManager",
    "RelyingPartySettings",
    "SigningKeySet",
    "StaticFeatureFlags",
    "TenantClaimsCheck",
    "TokenExchange",
    "UniqueIdResolver",
    "ValidatedClaims",
]
