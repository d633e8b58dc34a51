import asyncio
import contextlib

from anyio import create_task_group
from pydantic import SecretStr

from coreason_oidc import (
    ConfigInvalidError,
    ProviderConfig,
    RelyingPartyManager,
    RelyingPartySettings,
    StaticFeatureFlags,
)
from coreason_oidc.flags import RP_INITIATED_LOGOUT_PARAMS, STRICT_TOKEN_VALIDATION


async def main() -> None:
    """
    Demonstrates provider setup and logout with the async relying party.
    Includes:
    - TaskGroup for refreshing several providers concurrently
    - Discovery and JWKS download as part of the validity check
    - OpenTelemetry instrumentation (auto-applied in Manager)
    """
    print(">>> Starting Relying Party Example")

    settings = RelyingPartySettings(
        http_timeout=5.0,
        pii_salt=SecretStr("super-secret-salt-for-pii-hashing"),
        allowed_algorithms=["RS256"],
    )
    flags = StaticFeatureFlags(enabled={STRICT_TOKEN_VALIDATION, RP_INITIATED_LOGOUT_PARAMS})

    providers = [
        ProviderConfig(
            provider_id="acme",
            discovery_url="https://auth.example.com/.well-known/openid-configuration",
            client_id="my-client",
            client_secret=SecretStr("my-client-secret"),
            login_attribute="email",
            federated_attributes={"display_name": "name"},
        ),
        ProviderConfig(
            provider_id="globex",
            discovery_url="https://login.example.org/.well-known/openid-configuration",
            client_id="other-client",
        ),
    ]

    async with RelyingPartyManager(settings, flags=flags) as manager:
        print(">>> Saving providers concurrently...")

        async def save(config: ProviderConfig) -> None:
            try:
                saved = await manager.save(config)
                print(f"    - {saved.provider_id}: issuer={saved.issuer}")
            except ConfigInvalidError as e:
                # Without a reachable IdP, discovery fails and is reported per field
                print(f"    - {config.provider_id}: {e.errors_by_field}")

        async with create_task_group() as tg:
            for config in providers:
                tg.start_soon(save, config)

        offline = providers[0].model_copy(update={"end_session_endpoint": "https://auth.example.com/logout"})
        print(f">>> Logout redirect: {manager.logout_redirect(offline, 'https://app.example.com/', {})}")


if __name__ == "__main__":
    with contextlib.suppress(KeyboardInterrupt):
        asyncio.run(main())
