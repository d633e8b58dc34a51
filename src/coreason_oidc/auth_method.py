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
Client-authentication policy for the token endpoint.
"""

from enum import StrEnum
from typing import Any

from authlib.integrations.httpx_client import AsyncOAuth2Client

from coreason_oidc.exceptions import ConfigInvalidError
from coreason_oidc.models import FieldError, ProviderConfig
from coreason_oidc.models_internal import ClientAuthOptions
from coreason_oidc.scope import infer_scope


class TokenEndpointAuthMethod(StrEnum):
    CLIENT_SECRET_BASIC = "client_secret_basic"
    CLIENT_SECRET_POST = "client_secret_post"


DEFAULT_TOKEN_ENDPOINT_AUTH_METHOD = TokenEndpointAuthMethod.CLIENT_SECRET_POST

_CLIENT_AUTH_OPTIONS = {
    TokenEndpointAuthMethod.CLIENT_SECRET_BASIC: ClientAuthOptions(auth_scheme="basic_auth"),
    TokenEndpointAuthMethod.CLIENT_SECRET_POST: ClientAuthOptions(auth_scheme="request_body", token_method="POST"),
}


def set_token_endpoint_auth_method(config: ProviderConfig, value: str) -> ProviderConfig:
    """
    Returns a copy of `config` with the given auth method.

    Unrecognized values are stored as-is; they are reported by `validate_token_endpoint_auth_method`.
    """
    return config.model_copy(update={"token_endpoint_auth_method": value})


def validate_token_endpoint_auth_method(config: ProviderConfig) -> list[FieldError]:
    """
    Checks the configured auth method against the recognized values.

    Returns:
        list[FieldError]: Empty when valid, otherwise one error keyed to `token_endpoint_auth_method`.
    """
    allowed = [m.value for m in TokenEndpointAuthMethod]
    if config.token_endpoint_auth_method in allowed:
        return []
    return [
        FieldError(
            field="token_endpoint_auth_method",
            message=f"must be one of {', '.join(allowed)} (got {config.token_endpoint_auth_method!r})",
        )
    ]


def client_auth_options(config: ProviderConfig) -> ClientAuthOptions:
    """
    Maps the configured auth method to the outbound token-request behavior.

    Raises:
        ConfigInvalidError: If the auth method is not recognized.
    """
    errors = validate_token_endpoint_auth_method(config)
    if errors:
        raise ConfigInvalidError(errors)
    return _CLIENT_AUTH_OPTIONS[TokenEndpointAuthMethod(config.token_endpoint_auth_method)]


def build_oauth_client(config: ProviderConfig, redirect_uri: str | None = None, **client_kwargs: Any) -> AsyncOAuth2Client:
    """
    Builds the authlib OAuth2 client used for the authorization-code exchange.

    Args:
        config: The provider configuration.
        redirect_uri: The relying party's callback URL.
        **client_kwargs: Extra `httpx.AsyncClient` arguments (timeout, transport, ...).

    Returns:
        AsyncOAuth2Client: A client authenticating to `token_url` with the configured method.

    Raises:
        ConfigInvalidError: If the auth method is not recognized.
    """
    client_auth_options(config)
    return AsyncOAuth2Client(
        client_id=config.client_id,
        client_secret=config.client_secret.get_secret_value() if config.client_secret else None,
        token_endpoint_auth_method=config.token_endpoint_auth_method,
        scope=infer_scope(config.login_attribute, config.federated_attributes, config.scope),
        redirect_uri=redirect_uri,
        token_endpoint=config.token_url,
        **client_kwargs,
    )
