# Copyright (c) 2025 CoReason, Inc.
#
# This software is proprietary and dual-licensed.
# Licensed under the Prosperity Public License 3.0 (the "License").
# A copy of the license is available at https://prosperitylicense.com/versions/3.0.0
# For details, see the LICENSE file.
# Commercial use beyond a 30-day trial requires a separate license.
#
# Source Code: https://github.com/CoReason-AI/coreason_identity

import os
from unittest.mock import patch

import pytest
from pydantic import SecretStr, ValidationError

from coreason_oidc.config import DEFAULT_ALGORITHMS, RelyingPartySettings
from coreason_oidc.exceptions import ConfigInvalidError
from coreason_oidc.flags import STRICT_TOKEN_VALIDATION, StaticFeatureFlags
from coreason_oidc.models import FieldError, ProviderConfig, ValidatedClaims


def test_settings_loading() -> None:
    """Test loading settings from environment variables."""
    with patch.dict(
        os.environ,
        {
            "COREASON_OIDC_HTTP_TIMEOUT": "2.5",
            "COREASON_OIDC_CLOCK_SKEW_LEEWAY": "30",
            "COREASON_OIDC_ENABLED_FEATURES": '["oidc_full_token_validation"]',
        },
    ):
        settings = RelyingPartySettings()
        assert settings.http_timeout == 2.5
        assert settings.clock_skew_leeway == 30
        assert settings.enabled_features == {STRICT_TOKEN_VALIDATION}
        assert StaticFeatureFlags.from_settings(settings).is_enabled(STRICT_TOKEN_VALIDATION, "acct")


def test_settings_case_insensitive(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.delenv("COREASON_OIDC_HTTP_TIMEOUT")
    with patch.dict(os.environ, {"coreason_oidc_http_timeout": "7"}):
        assert RelyingPartySettings().http_timeout == 7


def test_settings_defaults() -> None:
    settings = RelyingPartySettings(http_timeout=5)
    assert settings.allowed_algorithms == DEFAULT_ALGORITHMS
    assert settings.max_response_bytes == 1_048_576
    assert settings.unsafe_local_dev is False
    assert settings.enabled_features == set()


def test_http_timeout_is_required(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.delenv("COREASON_OIDC_HTTP_TIMEOUT", raising=False)
    with pytest.raises(ValidationError):
        RelyingPartySettings()


@pytest.mark.parametrize("algorithms", [["none"], ["RS256", "NONE"], []])
def test_rejects_unsafe_algorithm_lists(algorithms: list[str]) -> None:
    with pytest.raises(ValidationError):
        RelyingPartySettings(http_timeout=5, allowed_algorithms=algorithms)


def test_rejects_negative_leeway() -> None:
    with pytest.raises(ValidationError):
        RelyingPartySettings(http_timeout=5, clock_skew_leeway=-1)


def test_provider_config_is_frozen() -> None:
    config = ProviderConfig(client_id="abc")
    with pytest.raises(ValidationError):
        config.client_id = "other"  # type: ignore[misc]


def test_provider_config_forbids_unknown_fields() -> None:
    with pytest.raises(ValidationError):
        ProviderConfig(client_idd="typo")  # type: ignore[call-arg]


def test_provider_config_hides_client_secret() -> None:
    config = ProviderConfig(client_secret=SecretStr("top-secret"))
    assert "top-secret" not in repr(config)
    assert "top-secret" not in config.model_dump_json()


def test_validated_claims_mapping_access() -> None:
    claims = ValidatedClaims(claims={"sub": 42, "email": "a@b.c"}, id_token=SecretStr("raw"))
    assert claims.sub == "42"
    assert "email" in claims
    assert claims["email"] == "a@b.c"
    assert claims.get("missing", "default") == "default"
    assert "raw" not in str(claims)


def test_config_invalid_error_groups_by_field() -> None:
    error = ConfigInvalidError(
        [
            FieldError(field="jwks_uri", message="unreachable"),
            FieldError(field="discovery_url", message="bad status"),
            FieldError(field="jwks_uri", message="malformed"),
        ]
    )
    assert error.errors_by_field == {"jwks_uri": ["unreachable", "malformed"], "discovery_url": ["bad status"]}
    assert "jwks_uri: unreachable" in str(error)


def test_static_feature_flags_enable_disable() -> None:
    flags = StaticFeatureFlags()
    assert not flags.is_enabled("x", "acct")
    flags.enable("x", "acct")
    assert flags.is_enabled("x", "acct")
    assert not flags.is_enabled("x", "other")
    flags.disable("x", "acct")
    assert not flags.is_enabled("x", "acct")
    flags.enable("x")
    assert flags.is_enabled("x", "other")
    flags.disable("x")
    assert not flags.is_enabled("x", "other")
