"""
OpenID Connect utilities.

These helpers resolve provider metadata, build the user authorization URL and
exchange authorization codes or refresh tokens for ID tokens.
"""

from __future__ import annotations

import logging
from contextlib import asynccontextmanager
from dataclasses import dataclass
from typing import Any, AsyncIterator, Dict, Optional
from urllib.parse import urlencode

import httpx
from fastapi import status

from federated_chat.core.exceptions import UpstreamHttpError
from federated_chat.utils.http import RetryConfig, request_with_retry

logger = logging.getLogger(__name__)

# Okta: https://developer.okta.com/docs/api/oauth2/
# Cognito: resource server scopes do not include offline_access.
_PROVIDER_SCOPES: Dict[str, str] = {
    "okta": "openid email offline_access",
    "cognito": "openid email",
}
CONSERVATIVE_SCOPES = "openid email"

_FORM_HEADERS = {"Content-Type": "application/x-www-form-urlencoded"}


def scopes_for_provider(idp_name: str) -> str:
    """Return the scope set accepted by a provider family."""
    return _PROVIDER_SCOPES.get((idp_name or "").strip().lower(), CONSERVATIVE_SCOPES)


@dataclass(frozen=True)
class OIDCEndpoints:
    authorization_endpoint: str
    token_endpoint: str


@dataclass(frozen=True)
class TokenSet:
    """Tokens returned by the provider token endpoint."""

    id_token: str
    refresh_token: Optional[str] = None

    def __repr__(self) -> str:
        return f"TokenSet(refresh_token={'set' if self.refresh_token else 'unset'})"


class IdentityProviderClient:
    """Talk to an OIDC provider's discovery document and token endpoint."""

    def __init__(
        self,
        *,
        timeout: float = 10.0,
        http_client: httpx.AsyncClient | None = None,
        retry_config: RetryConfig | None = None,
    ) -> None:
        self._timeout = timeout
        self._http_client = http_client
        self._retry_config = retry_config
        self._endpoint_cache: Dict[str, OIDCEndpoints] = {}

    @asynccontextmanager
    async def _client(self) -> AsyncIterator[httpx.AsyncClient]:
        if self._http_client is not None:
            yield self._http_client
            return
        async with httpx.AsyncClient(timeout=self._timeout) as client:
            yield client

    async def discover_endpoints(self, issuer_url: str) -> OIDCEndpoints:
        """Resolve authorization and token endpoints, cached per issuer."""
        issuer = issuer_url.rstrip("/")
        cached = self._endpoint_cache.get(issuer)
        if cached is not None:
            return cached

        url = f"{issuer}/.well-known/openid-configuration"
        try:
            async with self._client() as client:
                response = await request_with_retry(
                    client.get, url, retry_config=self._retry_config
                )
        except httpx.HTTPError as exc:
            raise UpstreamHttpError(f"OIDC discovery failed for {issuer}") from exc

        if response.status_code != status.HTTP_200_OK:
            raise UpstreamHttpError(
                f"OIDC discovery returned {response.status_code} for {issuer}",
                status_code=response.status_code,
            )

        document = response.json()
        authorization_endpoint = document.get("authorization_endpoint")
        token_endpoint = document.get("token_endpoint")
        if not authorization_endpoint or not token_endpoint:
            raise UpstreamHttpError(f"Incomplete discovery document for {issuer}")

        endpoints = OIDCEndpoints(
            authorization_endpoint=authorization_endpoint,
            token_endpoint=token_endpoint,
        )
        self._endpoint_cache[issuer] = endpoints
        return endpoints

    @staticmethod
    def build_authorization_url(
        endpoints: OIDCEndpoints,
        client_id: str,
        redirect_url: str,
        state: str,
        scopes: str,
    ) -> str:
        """Construct the provider consent URL."""
        params = {
            "response_type": "code",
            "client_id": client_id,
            "redirect_uri": redirect_url,
            "state": state,
            "scope": scopes,
        }
        query = urlencode(params)
        separator = "&" if "?" in endpoints.authorization_endpoint else "?"
        return f"{endpoints.authorization_endpoint}{separator}{query}"

    async def exchange_code_for_tokens(
        self,
        endpoints: OIDCEndpoints,
        code: str,
        client_id: str,
        client_secret: str,
        redirect_url: str,
    ) -> TokenSet:
        """Exchange an authorization code for an ID token and refresh token."""
        payload = {
            "grant_type": "authorization_code",
            "code": code,
            "redirect_uri": redirect_url,
            "client_id": client_id,
            "client_secret": client_secret,
        }
        token_payload = await self._post_token(endpoints.token_endpoint, payload)
        id_token = token_payload.get("id_token")
        if not id_token:
            raise UpstreamHttpError("Incomplete token payload returned by the provider.")
        return TokenSet(id_token=id_token, refresh_token=token_payload.get("refresh_token"))

    async def refresh_tokens(
        self,
        endpoints: OIDCEndpoints,
        refresh_token: str,
        client_id: str,
        client_secret: str,
        *,
        retain_previous: bool = True,
    ) -> TokenSet:
        """Obtain a fresh ID token using a stored refresh token.

        Some providers omit ``refresh_token`` from refresh responses. With
        ``retain_previous`` the old token is kept in that case; providers that
        rotate refresh tokens should run with it disabled.
        """
        payload = {
            "grant_type": "refresh_token",
            "refresh_token": refresh_token,
            "client_id": client_id,
            "client_secret": client_secret,
        }
        token_payload = await self._post_token(endpoints.token_endpoint, payload)
        id_token = token_payload.get("id_token")
        if not id_token:
            raise UpstreamHttpError("Incomplete refresh payload returned by the provider.")

        new_refresh_token = token_payload.get("refresh_token")
        if new_refresh_token is None and retain_previous:
            new_refresh_token = refresh_token
        return TokenSet(id_token=id_token, refresh_token=new_refresh_token)

    async def _post_token(self, token_endpoint: str, payload: Dict[str, str]) -> Dict[str, Any]:
        try:
            async with self._client() as client:
                response = await client.post(
                    token_endpoint, data=payload, headers=_FORM_HEADERS
                )
        except httpx.HTTPError as exc:
            raise UpstreamHttpError("Token endpoint unreachable.") from exc

        if response.status_code != status.HTTP_200_OK:
            error_code = _error_code(response)
            logger.warning(
                "Token endpoint rejected %s grant: %s %s",
                payload["grant_type"],
                response.status_code,
                error_code,
            )
            raise UpstreamHttpError(
                f"Token endpoint returned {response.status_code} ({error_code})",
                status_code=response.status_code,
            )
        return response.json()


def _error_code(response: httpx.Response) -> str:
    try:
        body = response.json()
    except ValueError:
        return "unknown_error"
    if isinstance(body, dict):
        return str(body.get("error", "unknown_error"))
    return "unknown_error"


__all__ = [
    "CONSERVATIVE_SCOPES",
    "IdentityProviderClient",
    "OIDCEndpoints",
    "TokenSet",
    "scopes_for_provider",
]
