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
Populates provider endpoints from an OIDC discovery document.
"""

from collections.abc import Mapping
from typing import Any

import httpx
from pydantic import ValidationError

from coreason_oidc.exceptions import FetchError
from coreason_oidc.models import ProviderConfig
from coreason_oidc.models_internal import DiscoveryDocument
from coreason_oidc.transport import DEFAULT_MAX_BYTES, safe_json_fetch
from coreason_oidc.utils.logger import logger

# Discovery metadata field -> ProviderConfig field
DISCOVERY_FIELDS = {
    "issuer": "issuer",
    "authorization_endpoint": "authorize_url",
    "token_endpoint": "token_url",
    "userinfo_endpoint": "userinfo_endpoint",
    "end_session_endpoint": "end_session_endpoint",
    "jwks_uri": "jwks_uri",
}


def populate_from_discovery(config: ProviderConfig, document: Mapping[str, Any] | DiscoveryDocument) -> ProviderConfig:
    """
    Copies the well-known metadata fields onto the provider configuration.

    Fields absent from the document are left unchanged. Applying the same document twice yields
    the same configuration as applying it once.

    Args:
        config: The current provider configuration.
        document: The discovery document.

    Returns:
        ProviderConfig: The updated configuration.

    Raises:
        FetchError: If the document does not have the expected shape.
    """
    if not isinstance(document, DiscoveryDocument):
        try:
            document = DiscoveryDocument.model_validate(document)
        except ValidationError as e:
            raise FetchError(f"Invalid discovery document: {e}") from e

    present = document.model_dump(exclude_none=True)
    update = {DISCOVERY_FIELDS[name]: value for name, value in present.items()}
    return config.model_copy(update=update)


class DiscoveryPopulator:
    """
    Downloads the discovery document of a provider and applies it.

    Attributes:
        client (httpx.AsyncClient): The HTTP client used for the fetch.
        max_bytes (int): Upper bound on the document size.
    """

    def __init__(self, client: httpx.AsyncClient, max_bytes: int = DEFAULT_MAX_BYTES) -> None:
        self.client = client
        self.max_bytes = max_bytes

    async def refresh(self, config: ProviderConfig) -> ProviderConfig:
        """
        Fetches `discovery_url` and populates the configuration from it.

        A configuration without `discovery_url` is returned unchanged.

        Args:
            config: The current provider configuration.

        Returns:
            ProviderConfig: The populated configuration.

        Raises:
            FetchError: On network errors, non-2xx responses or malformed documents.
        """
        if not config.discovery_url:
            return config

        logger.debug(f"Fetching discovery document for provider {config.provider_id}")
        document = await safe_json_fetch(self.client, config.discovery_url, max_bytes=self.max_bytes)
        populated = populate_from_discovery(config, document)
        logger.info(f"Populated provider {config.provider_id} from {config.discovery_url}")
        return populated
