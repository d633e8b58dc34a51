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
RP-initiated logout redirect construction.
"""

from collections.abc import Mapping, MutableMapping
from typing import Any
from urllib.parse import parse_qsl, urlencode, urlsplit, urlunsplit

from coreason_oidc.flags import RP_INITIATED_LOGOUT_PARAMS, FeatureFlags
from coreason_oidc.models import ProviderConfig, ValidatedClaims

SESSION_ID_TOKEN_KEY = "oidc_id_token"


def remember_id_token(session: MutableMapping[str, Any], claims: ValidatedClaims) -> None:
    """Stores the raw ID token in the session for a later `id_token_hint`."""
    session[SESSION_ID_TOKEN_KEY] = claims.id_token.get_secret_value()


def build_logout_redirect(
    config: ProviderConfig,
    post_logout_redirect_uri: str,
    session: Mapping[str, Any],
    flags: FeatureFlags,
) -> str | None:
    """
    Builds the end-session redirect URL.

    With the logout-parameters flag on, the query becomes `client_id`, `post_logout_redirect_uri`
    (an existing value in the endpoint always wins and keeps this position), then the endpoint's
    other parameters in their original order, then `id_token_hint` when the session holds an ID
    token.

    Args:
        config: The provider configuration.
        post_logout_redirect_uri: Where the provider should send the user after logout.
        session: The caller's session.
        flags: Feature-flag lookup.

    Returns:
        str | None: The redirect URL, or None when the provider has no end-session endpoint.
    """
    endpoint = config.end_session_endpoint
    if not endpoint:
        return None
    if not flags.is_enabled(RP_INITIATED_LOGOUT_PARAMS, config.account_id):
        return endpoint

    parts = urlsplit(endpoint)
    existing = parse_qsl(parts.query, keep_blank_values=True)
    existing_names = {name for name, _ in existing}

    defaults = [("client_id", config.client_id or ""), ("post_logout_redirect_uri", post_logout_redirect_uri)]
    default_names = {name for name, _ in defaults}

    params: list[tuple[str, str]] = []
    for name, value in defaults:
        if name in existing_names:
            params.extend(pair for pair in existing if pair[0] == name)
        else:
            params.append((name, value))
    params.extend(pair for pair in existing if pair[0] not in default_names)

    id_token = session.get(SESSION_ID_TOKEN_KEY)
    if id_token and "id_token_hint" not in existing_names:
        params.append(("id_token_hint", str(id_token)))

    return urlunsplit(parts._replace(query=urlencode(params)))
