try:
    from . import _bootstrap  # noqa: F401
except Exception:  # pragma: no cover - fallback for direct execution
    import _bootstrap  # type: ignore # noqa: F401

from datetime import datetime, timezone

import jwt
import pytest
from botocore.exceptions import ClientError

from federated_chat.clients.identity_center import JWT_BEARER_GRANT, TokenExchangeClient
from federated_chat.core.config import IdentityCenterSettings
from federated_chat.core.exceptions import InvalidIdentityContext, UpstreamHttpError

SIGNING_KEY = "broker-signing-key-for-tests-only-0123456789"


def _broker_token(**claims: object) -> str:
    return jwt.encode(claims, SIGNING_KEY, algorithm="HS256")


class FakeSSOOIDCClient:
    def __init__(self, id_token: str | None = None, error: Exception | None = None) -> None:
        self.id_token = id_token
        self.error = error
        self.calls: list[dict] = []

    def create_token_with_iam(self, **kwargs: str) -> dict:
        self.calls.append(kwargs)
        if self.error:
            raise self.error
        return {"idToken": self.id_token}


class FakeSTSClient:
    def __init__(self) -> None:
        self.calls: list[dict] = []

    def assume_role(self, **kwargs: object) -> dict:
        self.calls.append(kwargs)
        return {
            "Credentials": {
                "AccessKeyId": "ASIA123",
                "SecretAccessKey": "secret",
                "SessionToken": "session",
                "Expiration": datetime(2024, 1, 1, 12, 15, tzinfo=timezone.utc),
            }
        }


@pytest.fixture()
def settings() -> IdentityCenterSettings:
    return IdentityCenterSettings()


@pytest.mark.asyncio
async def test_exchange_passes_identity_context_verbatim(settings) -> None:
    sso = FakeSSOOIDCClient(id_token=_broker_token(**{"sts:identity_context": "ctx1"}))
    sts = FakeSTSClient()
    client = TokenExchangeClient(settings, sso_oidc_client=sso, sts_client=sts)

    credentials = await client.exchange("t1")

    assert sso.calls == [
        {
            "clientId": settings.application_arn,
            "grantType": JWT_BEARER_GRANT,
            "assertion": "t1",
        }
    ]
    call = sts.calls[0]
    assert call["RoleArn"] == settings.role_arn
    assert call["DurationSeconds"] == 900
    assert call["ProvidedContexts"] == [
        {
            "ProviderArn": "arn:aws:iam::aws:contextProvider/IdentityCenter",
            "ContextAssertion": "ctx1",
        }
    ]
    assert credentials.access_key_id == "ASIA123"
    assert credentials.expiration == datetime(2024, 1, 1, 12, 15, tzinfo=timezone.utc)


@pytest.mark.parametrize(
    "token",
    [
        "not-a-jwt",
        _broker_token(sub="user-1"),
        _broker_token(**{"sts:identity_context": ""}),
    ],
)
def test_missing_or_malformed_identity_context_fails_hard(token: str) -> None:
    with pytest.raises(InvalidIdentityContext):
        TokenExchangeClient.extract_identity_context(token)


@pytest.mark.asyncio
async def test_no_role_assumption_without_identity_context(settings) -> None:
    sso = FakeSSOOIDCClient(id_token=_broker_token(sub="user-1"))
    sts = FakeSTSClient()
    client = TokenExchangeClient(settings, sso_oidc_client=sso, sts_client=sts)

    with pytest.raises(InvalidIdentityContext):
        await client.exchange("t1")
    assert sts.calls == []


@pytest.mark.asyncio
async def test_broker_rejection_surfaces_as_upstream_error(settings) -> None:
    error = ClientError(
        {
            "Error": {"Code": "InvalidGrantException", "Message": "bad token"},
            "ResponseMetadata": {"HTTPStatusCode": 400},
        },
        "CreateTokenWithIAM",
    )
    client = TokenExchangeClient(
        settings, sso_oidc_client=FakeSSOOIDCClient(error=error), sts_client=FakeSTSClient()
    )

    with pytest.raises(UpstreamHttpError) as excinfo:
        await client.exchange_id_token_for_broker_token("t1")
    assert excinfo.value.status_code == 400
