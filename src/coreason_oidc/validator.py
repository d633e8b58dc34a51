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
IDTokenValidator component for validating ID token signatures and claims.
"""

import hmac
import json
import time
from collections.abc import Awaitable, Callable, Iterable, Mapping
from typing import Any, cast

from authlib.common.encoding import urlsafe_b64decode
from authlib.jose import JsonWebToken
from authlib.jose.errors import BadSignatureError, DecodeError, JoseError, UnsupportedAlgorithmError
from opentelemetry import trace
from opentelemetry.trace import Status, StatusCode
from pydantic import SecretStr

from coreason_oidc.config import DEFAULT_ALGORITHMS, SYMMETRIC_ALGORITHMS
from coreason_oidc.exceptions import (
    CoreasonOIDCError,
    FetchError,
    InvalidAudienceError,
    InvalidClaimError,
    InvalidIssuerError,
    InvalidNonceError,
    InvalidTokenError,
    KeyNotFoundError,
    MalformedTokenError,
    MissingClaimError,
    SignatureVerificationError,
    TokenExpiredError,
)
from coreason_oidc.flags import STRICT_TOKEN_VALIDATION, FeatureFlags
from coreason_oidc.jwks import JWKSCache, parse_key_set
from coreason_oidc.models import ProviderConfig, ValidatedClaims
from coreason_oidc.utils.logger import anonymize, logger
from coreason_oidc.variants import ClaimsCheck, checks_for

tracer = trace.get_tracer(__name__)


def audience_matches(aud: Any, client_id: str | None) -> bool:
    """True when `client_id` is the audience, or one of the audiences of a multi-audience token."""
    if not client_id:
        return False
    if isinstance(aud, list):
        return client_id in aud
    return bool(aud == client_id)


class IDTokenValidator:
    """
    Validates ID tokens returned by a provider's token endpoint.

    A token goes through decode, signature check, baseline claims check, strict claims check (when
    the strict-validation flag is on for the provider's account) and the checks of the provider's variant. Any failure
    raises an `InvalidTokenError` subclass.

    Attributes:
        jwks_cache (JWKSCache): Source of the provider's signing keys.
        flags (FeatureFlags): Feature-flag lookup.
        leeway (int): Acceptable clock skew in seconds for `exp`.
        claims_checks (tuple[ClaimsCheck, ...]): Checks applied to every provider, after the variant checks.
        refresh_on_unknown_key (bool): Force one JWKS refresh when the key id is unknown.
        on_keys_refreshed (Callable | None): Receives the configuration carrying keys picked up by that refresh.
    """

    def __init__(
        self,
        jwks_cache: JWKSCache,
        flags: FeatureFlags,
        pii_salt: SecretStr,
        allowed_algorithms: list[str] | None = None,
        leeway: int = 0,
        claims_checks: Iterable[ClaimsCheck] = (),
        refresh_on_unknown_key: bool = False,
        on_keys_refreshed: Callable[[ProviderConfig], Awaitable[None]] | None = None,
    ) -> None:
        """
        Initialize the IDTokenValidator.

        Args:
            jwks_cache: The JWKSCache supplying signing keys.
            flags: Feature-flag lookup for strict validation.
            pii_salt: Salt for anonymizing subjects in logs/traces.
            allowed_algorithms: Accepted JWS algorithms. Defaults to RS*/PS*/ES*/HS*.
            leeway: Acceptable clock skew in seconds. Defaults to 0.
            claims_checks: Checks run for every provider after its variant checks.
            refresh_on_unknown_key: Force one JWKS refresh and retry on an unknown key id.
            on_keys_refreshed: Async callback persisting the configuration updated by that refresh.
        """
        self.jwks_cache = jwks_cache
        self.flags = flags
        self.pii_salt = pii_salt
        self.allowed_algorithms = list(allowed_algorithms or DEFAULT_ALGORITHMS)
        self.leeway = leeway
        self.claims_checks = tuple(claims_checks)
        self.refresh_on_unknown_key = refresh_on_unknown_key
        self.on_keys_refreshed = on_keys_refreshed
        # A dedicated JsonWebToken instance rejects any algorithm outside the allow-list (including 'none')
        self.jwt = JsonWebToken(self.allowed_algorithms)

    def _decode_header(self, token: str) -> dict[str, Any]:
        segments = token.split(".")
        if len(segments) != 3 or not segments[0] or not segments[1]:
            raise MalformedTokenError("ID token is not a compact JWS (expected three segments)")
        try:
            header = json.loads(urlsafe_b64decode(segments[0].encode("ascii")))
        except (ValueError, TypeError) as e:
            raise MalformedTokenError(f"Invalid ID token header: {e}") from e
        if not isinstance(header, dict):
            raise MalformedTokenError("ID token header must be a JSON object")
        return header

    async def _resolve_key(self, header: Mapping[str, Any], config: ProviderConfig) -> Any:
        alg = header.get("alg")
        if alg in SYMMETRIC_ALGORITHMS:
            if config.client_secret is None:
                raise SignatureVerificationError(f"Token signed with {alg} but no client secret is configured")
            return config.client_secret.get_secret_value().encode("utf-8")

        kid = header.get("kid")
        keys = self.jwks_cache.get_keys(config)
        if keys is not None:
            try:
                return keys.find(kid)
            except KeyNotFoundError:
                if not self.refresh_on_unknown_key:
                    raise
        elif not self.refresh_on_unknown_key:
            raise KeyNotFoundError(kid)

        logger.info("Unknown signing key, refreshing JWKS and retrying...")
        trace.get_current_span().add_event("refreshing_jwks")
        refreshed = await self.jwks_cache.refresh(config, force=True)
        if not refreshed.cached_jwks_blob:
            raise KeyNotFoundError(kid)
        if refreshed is not config and self.on_keys_refreshed is not None:
            await self.on_keys_refreshed(refreshed)
        return parse_key_set(refreshed.cached_jwks_blob).find(kid)

    async def _verify_signature(self, token: str, header: Mapping[str, Any], config: ProviderConfig) -> dict[str, Any]:
        key = await self._resolve_key(header, config)
        try:
            # Cast self.jwt to Any to bypass MyPy overload confusion or missing stubs
            claims = cast("Any", self.jwt).decode(token, key)
        except UnsupportedAlgorithmError as e:
            raise SignatureVerificationError(f"Algorithm {header.get('alg')!r} is not allowed") from e
        except BadSignatureError as e:
            raise SignatureVerificationError(f"Invalid signature: {e}") from e
        except DecodeError as e:
            raise MalformedTokenError(f"Invalid ID token: {e}") from e
        except JoseError as e:
            raise InvalidTokenError(f"Token validation failed: {e}") from e
        except ValueError as e:
            # authlib raises ValueError when the key cannot be used with the token's algorithm
            raise SignatureVerificationError(f"Invalid signature or unusable key: {e}") from e
        return dict(claims)

    def _check_baseline(self, claims: Mapping[str, Any], config: ProviderConfig) -> None:
        aud = claims.get("aud")
        if aud is None or audience_matches(aud, config.client_id):
            return
        # Tokens minted by this very client (iss == client_id) are exempt
        if config.client_id and claims.get("iss") == config.client_id:
            return
        raise InvalidAudienceError(f"Audience {aud!r} does not match client id")

    def _check_strict(
        self,
        claims: Mapping[str, Any],
        config: ProviderConfig,
        nonce: str | None,
        now: float,
    ) -> None:
        for claim in ("aud", "iss", "exp", "nonce"):
            if claims.get(claim) is None:
                raise MissingClaimError(claim)

        if not audience_matches(claims["aud"], config.client_id):
            raise InvalidAudienceError(f"Audience {claims['aud']!r} does not match client id")

        if not config.issuer or claims["iss"] != config.issuer:
            raise InvalidIssuerError(f"Issuer {claims['iss']!r} does not match the configured issuer")

        exp = claims["exp"]
        if isinstance(exp, bool) or not isinstance(exp, (int, float)):
            raise InvalidClaimError("exp", "The 'exp' claim must be a number")
        if exp + self.leeway <= now:
            raise TokenExpiredError("Token has expired")

        token_nonce = str(claims["nonce"])
        if nonce is None or not hmac.compare_digest(token_nonce.encode("utf-8"), nonce.encode("utf-8")):
            raise InvalidNonceError("Nonce does not match the one issued for this authentication attempt")

    async def validate(
        self,
        id_token: str,
        config: ProviderConfig,
        nonce: str | None = None,
        now: float | None = None,
    ) -> ValidatedClaims:
        """
        Validates the ID token signature and claims.

        Emits an OpenTelemetry span `validate_id_token`.
        Sets attribute `enduser.id` (anonymized) on success.

        Args:
            id_token: The raw compact-serialized ID token.
            config: The provider the token was issued for.
            nonce: The nonce generated for this authentication attempt.
            now: Validation time (epoch seconds). Defaults to the current time.

        Returns:
            ValidatedClaims: The validated claims and raw token.

        Raises:
            MalformedTokenError: If the token is not a compact JWS.
            SignatureVerificationError: If the signature is invalid or the key is unknown.
            MissingClaimError: If a required claim is absent.
            InvalidClaimError: If a claim has an unacceptable value.
            FetchError: If the signing keys cannot be downloaded.
            CoreasonOIDCError: For unexpected errors.
        """
        with tracer.start_as_current_span("validate_id_token") as span:
            span.set_attribute("oidc.provider_id", config.provider_id)
            token = id_token.strip()
            strict = self.flags.is_enabled(STRICT_TOKEN_VALIDATION, config.account_id)

            try:
                header = self._decode_header(token)
                claims = await self._verify_signature(token, header, config)
                self._check_baseline(claims, config)
                if strict:
                    self._check_strict(claims, config, nonce, time.time() if now is None else now)
                for check in (*checks_for(config), *self.claims_checks):
                    check(claims, config)
            except InvalidTokenError as e:
                logger.warning(f"ID token rejected for provider {config.provider_id}: {e}")
                span.record_exception(e)
                span.set_status(Status(StatusCode.ERROR, str(e)))
                raise
            except FetchError as e:
                logger.error(f"Signing keys unavailable for provider {config.provider_id}: {e}")
                span.record_exception(e)
                span.set_status(Status(StatusCode.ERROR, str(e)))
                raise
            except CoreasonOIDCError:
                raise
            except Exception as e:
                logger.exception("Unexpected error during ID token validation")
                span.record_exception(e)
                span.set_status(Status(StatusCode.ERROR, str(e)))
                raise CoreasonOIDCError(f"Unexpected error during ID token validation: {e}") from e

            user_hash = anonymize(str(claims.get("sub", "unknown")), self.pii_salt)
            logger.info(f"ID token validated for user {user_hash} (strict={strict})")
            span.set_attribute("enduser.id", user_hash)
            span.set_status(Status(StatusCode.OK))

            return ValidatedClaims(claims=claims, id_token=SecretStr(token))
