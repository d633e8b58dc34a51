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
Custom exceptions for the coreason-oidc package.
"""

from collections.abc import Iterable
from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from coreason_oidc.models import FieldError


class CoreasonOIDCError(Exception):
    """Base exception for all coreason-oidc errors."""


class ConfigInvalidError(CoreasonOIDCError):
    """
    Raised when a provider configuration fails its validity check.

    Carries the field-scoped errors so callers can surface them next to the offending fields.
    """

    def __init__(self, errors: Iterable["FieldError"]) -> None:
        self.errors = list(errors)
        summary = "; ".join(f"{e.field}: {e.message}" for e in self.errors)
        super().__init__(f"Invalid provider configuration: {summary}")

    @property
    def errors_by_field(self) -> dict[str, list[str]]:
        grouped: dict[str, list[str]] = {}
        for error in self.errors:
            grouped.setdefault(error.field, []).append(error.message)
        return grouped


class KeySetParseError(CoreasonOIDCError, ValueError):
    """Raised when a JSON Web Key Set is not well-formed."""


class FetchError(CoreasonOIDCError):
    """Raised when a discovery, JWKS or userinfo fetch fails (network, status or parse error)."""


class OversizedResponseError(FetchError):
    """Raised when an HTTP response is too large."""


class SecurityError(FetchError):
    """Raised when an outbound request targets a blocked address."""


class InvalidTokenError(CoreasonOIDCError):
    """
    Raised when an ID token cannot be trusted (malformed, bad signature, bad claims).

    Always aborts the authentication attempt.
    """


class MalformedTokenError(InvalidTokenError):
    """Raised when the token is not a well-formed compact JWS."""


class SignatureVerificationError(InvalidTokenError):
    """Raised when the token's signature cannot be verified."""


class KeyNotFoundError(SignatureVerificationError):
    """Raised when no signing key matches the token's key id."""

    def __init__(self, kid: str | None) -> None:
        self.kid = kid
        super().__init__(f"No signing key found for kid {kid!r}")


class MissingClaimError(InvalidTokenError):
    """Raised when a required claim is absent."""

    def __init__(self, claim: str) -> None:
        self.claim = claim
        super().__init__(f"Missing '{claim}' claim")


class InvalidClaimError(InvalidTokenError):
    """Raised when a claim is present but has an unacceptable value."""

    def __init__(self, claim: str, detail: str | None = None) -> None:
        self.claim = claim
        super().__init__(detail or f"Invalid '{claim}' claim")


class InvalidAudienceError(InvalidClaimError):
    """Raised when the token's audience does not match the client id."""

    def __init__(self, detail: str | None = None) -> None:
        super().__init__("aud", detail)


class InvalidIssuerError(InvalidClaimError):
    """Raised when the token's issuer does not match the configured issuer."""

    def __init__(self, detail: str | None = None) -> None:
        super().__init__("iss", detail)


class TokenExpiredError(InvalidClaimError):
    """Raised when the provided token has expired."""

    def __init__(self, detail: str | None = None) -> None:
        super().__init__("exp", detail)


class InvalidNonceError(InvalidClaimError):
    """Raised when the token's nonce does not match the one issued for this attempt."""

    def __init__(self, detail: str | None = None) -> None:
        super().__init__("nonce", detail)
