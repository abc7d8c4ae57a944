try:
    from . import _bootstrap  # noqa: F401
except Exception:  # pragma: no cover - fallback for direct execution
    import _bootstrap  # type: ignore # noqa: F401

from urllib.parse import parse_qs

import httpx
import pytest

from federated_chat.clients.oidc import (
    CONSERVATIVE_SCOPES,
    IdentityProviderClient,
    OIDCEndpoints,
    scopes_for_provider,
)
from federated_chat.core.exceptions import UpstreamHttpError
from federated_chat.utils.http import RetryConfig

ISSUER = "https://idp.example.com/oauth2/default"
ENDPOINTS = OIDCEndpoints(
    authorization_endpoint=f"{ISSUER}/v1/authorize",
    token_endpoint=f"{ISSUER}/v1/token",
)


class RecordingHandler:
    def __init__(self, responses: list[httpx.Response]) -> None:
        self.responses = list(responses)
        self.requests: list[httpx.Request] = []

    def __call__(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        return self.responses.pop(0)


def _client(handler: RecordingHandler) -> IdentityProviderClient:
    http_client = httpx.AsyncClient(transport=httpx.MockTransport(handler))
    return IdentityProviderClient(http_client=http_client)


def test_scopes_follow_provider_family() -> None:
    assert scopes_for_provider("okta") == "openid email offline_access"
    assert scopes_for_provider("Cognito") == "openid email"
    assert scopes_for_provider("some-new-idp") == CONSERVATIVE_SCOPES


def test_authorization_url_is_deterministic() -> None:
    url = IdentityProviderClient.build_authorization_url(
        ENDPOINTS,
        "client-1",
        "https://gateway.example.com/api/auth/callback",
        "abc123",
        "openid email",
    )

    assert url == (
        f"{ISSUER}/v1/authorize?response_type=code&client_id=client-1"
        "&redirect_uri=https%3A%2F%2Fgateway.example.com%2Fapi%2Fauth%2Fcallback"
        "&state=abc123&scope=openid+email"
    )


@pytest.mark.asyncio
async def test_discovery_is_cached_per_issuer() -> None:
    handler = RecordingHandler(
        [
            httpx.Response(
                200,
                json={
                    "authorization_endpoint": ENDPOINTS.authorization_endpoint,
                    "token_endpoint": ENDPOINTS.token_endpoint,
                },
            )
        ]
    )
    client = _client(handler)

    first = await client.discover_endpoints(ISSUER + "/")
    second = await client.discover_endpoints(ISSUER)

    assert first == second == ENDPOINTS
    assert len(handler.requests) == 1
    assert str(handler.requests[0].url) == f"{ISSUER}/.well-known/openid-configuration"


@pytest.mark.asyncio
async def test_incomplete_discovery_document_raises() -> None:
    handler = RecordingHandler([httpx.Response(200, json={"issuer": ISSUER})])

    with pytest.raises(UpstreamHttpError):
        await _client(handler).discover_endpoints(ISSUER)


@pytest.mark.asyncio
async def test_code_exchange_posts_form_body() -> None:
    handler = RecordingHandler(
        [httpx.Response(200, json={"id_token": "t1", "refresh_token": "r1"})]
    )

    tokens = await _client(handler).exchange_code_for_tokens(
        ENDPOINTS, "c1", "client-1", "secret-1", "https://gateway.example.com/cb"
    )

    assert tokens.id_token == "t1"
    assert tokens.refresh_token == "r1"
    request = handler.requests[0]
    assert request.headers["content-type"] == "application/x-www-form-urlencoded"
    form = parse_qs(request.content.decode())
    assert form == {
        "grant_type": ["authorization_code"],
        "code": ["c1"],
        "redirect_uri": ["https://gateway.example.com/cb"],
        "client_id": ["client-1"],
        "client_secret": ["secret-1"],
    }


@pytest.mark.asyncio
async def test_rejected_exchange_raises_with_status() -> None:
    handler = RecordingHandler([httpx.Response(400, json={"error": "invalid_grant"})])

    with pytest.raises(UpstreamHttpError) as excinfo:
        await _client(handler).exchange_code_for_tokens(
            ENDPOINTS, "c1", "client-1", "secret-1", "https://gateway.example.com/cb"
        )

    assert excinfo.value.status_code == 400
    assert "invalid_grant" in str(excinfo.value)


@pytest.mark.asyncio
async def test_missing_id_token_raises() -> None:
    handler = RecordingHandler([httpx.Response(200, json={"access_token": "a"})])

    with pytest.raises(UpstreamHttpError):
        await _client(handler).exchange_code_for_tokens(
            ENDPOINTS, "c1", "client-1", "secret-1", "https://gateway.example.com/cb"
        )


@pytest.mark.asyncio
async def test_refresh_keeps_previous_token_when_omitted() -> None:
    handler = RecordingHandler([httpx.Response(200, json={"id_token": "t2"})])

    tokens = await _client(handler).refresh_tokens(ENDPOINTS, "r1", "client-1", "secret-1")

    assert tokens.id_token == "t2"
    assert tokens.refresh_token == "r1"
    assert parse_qs(handler.requests[0].content.decode())["grant_type"] == ["refresh_token"]


@pytest.mark.asyncio
async def test_refresh_without_retention_drops_rotated_token() -> None:
    handler = RecordingHandler([httpx.Response(200, json={"id_token": "t2"})])

    tokens = await _client(handler).refresh_tokens(
        ENDPOINTS, "r1", "client-1", "secret-1", retain_previous=False
    )

    assert tokens.refresh_token is None


@pytest.mark.asyncio
async def test_refresh_prefers_new_token() -> None:
    handler = RecordingHandler(
        [httpx.Response(200, json={"id_token": "t2", "refresh_token": "r2"})]
    )

    tokens = await _client(handler).refresh_tokens(ENDPOINTS, "r1", "client-1", "secret-1")

    assert tokens.refresh_token == "r2"


@pytest.mark.asyncio
async def test_discovery_retries_transient_failures() -> None:
    handler = RecordingHandler(
        [
            httpx.Response(503),
            httpx.Response(
                200,
                json={
                    "authorization_endpoint": ENDPOINTS.authorization_endpoint,
                    "token_endpoint": ENDPOINTS.token_endpoint,
                },
            ),
        ]
    )
    http_client = httpx.AsyncClient(transport=httpx.MockTransport(handler))
    client = IdentityProviderClient(
        http_client=http_client, retry_config=RetryConfig(backoff_seconds=0)
    )

    assert await client.discover_endpoints(ISSUER) == ENDPOINTS
    assert len(handler.requests) == 2


@pytest.mark.asyncio
async def test_discovery_does_not_retry_client_errors() -> None:
    handler = RecordingHandler([httpx.Response(404)])
    http_client = httpx.AsyncClient(transport=httpx.MockTransport(handler))
    client = IdentityProviderClient(
        http_client=http_client, retry_config=RetryConfig(backoff_seconds=0)
    )

    with pytest.raises(UpstreamHttpError) as excinfo:
        await client.discover_endpoints(ISSUER)
    assert excinfo.value.status_code == 404
    assert len(handler.requests) == 1
