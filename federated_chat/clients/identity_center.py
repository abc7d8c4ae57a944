"""
IAM Identity Center token exchange and identity-aware role assumption.

An IdP ID token is exchanged for an Identity Center ID token through a trusted
token issuer. The ``sts:identity_context`` claim of that token is then passed
to STS so the resulting credentials act as the end user.
"""

from __future__ import annotations

import asyncio
import logging
from typing import Any

import boto3
import jwt
from botocore.exceptions import BotoCoreError, ClientError

from federated_chat.core.config import IdentityCenterSettings
from federated_chat.core.exceptions import InvalidIdentityContext, UpstreamHttpError
from federated_chat.models import TemporaryCredentials

logger = logging.getLogger(__name__)

JWT_BEARER_GRANT = "urn:ietf:params:oauth:grant-type:jwt-bearer"
IDENTITY_CONTEXT_CLAIM = "sts:identity_context"


def _upstream_error(stage: str, exc: Exception) -> UpstreamHttpError:
    status_code = None
    if isinstance(exc, ClientError):
        status_code = exc.response.get("ResponseMetadata", {}).get("HTTPStatusCode")
        code = exc.response.get("Error", {}).get("Code", "Unknown")
        message = f"{stage} failed: {code}"
    else:
        message = f"{stage} failed: {type(exc).__name__}"
    return UpstreamHttpError(message, status_code=status_code)


class TokenExchangeClient:
    """Translate an external identity into scoped temporary AWS credentials."""

    def __init__(
        self,
        settings: IdentityCenterSettings,
        *,
        sso_oidc_client: Any | None = None,
        sts_client: Any | None = None,
    ) -> None:
        self._settings = settings
        self._sso_oidc = sso_oidc_client or boto3.client(
            "sso-oidc", region_name=settings.region_name
        )
        self._sts = sts_client or boto3.client("sts", region_name=settings.region_name)

    async def exchange_id_token_for_broker_token(self, id_token: str) -> str:
        """Exchange the IdP ID token for an Identity Center ID token."""

        def _invoke() -> dict[str, Any]:
            return self._sso_oidc.create_token_with_iam(
                clientId=self._settings.application_arn,
                grantType=JWT_BEARER_GRANT,
                assertion=id_token,
            )

        try:
            response = await asyncio.to_thread(_invoke)
        except (ClientError, BotoCoreError) as exc:
            raise _upstream_error("CreateTokenWithIAM", exc) from exc

        broker_token = response.get("idToken")
        if not broker_token:
            raise InvalidIdentityContext("Identity broker returned no ID token.")
        return broker_token

    @staticmethod
    def extract_identity_context(broker_token: str) -> str:
        """Read the identity context claim verbatim from the broker token."""
        try:
            claims = jwt.decode(broker_token, options={"verify_signature": False})
        except jwt.PyJWTError as exc:
            raise InvalidIdentityContext("Broker token could not be decoded.") from exc

        identity_context = claims.get(IDENTITY_CONTEXT_CLAIM)
        if not isinstance(identity_context, str) or not identity_context:
            raise InvalidIdentityContext(
                f"Broker token is missing the {IDENTITY_CONTEXT_CLAIM} claim."
            )
        return identity_context

    async def assume_scoped_role(self, identity_context: str) -> TemporaryCredentials:
        """Assume the chat role with the identity context as a provided context."""

        def _invoke() -> dict[str, Any]:
            return self._sts.assume_role(
                RoleArn=self._settings.role_arn,
                RoleSessionName=self._settings.role_session_name,
                DurationSeconds=self._settings.duration_seconds,
                ProvidedContexts=[
                    {
                        "ProviderArn": self._settings.context_provider_arn,
                        "ContextAssertion": identity_context,
                    }
                ],
            )

        try:
            response = await asyncio.to_thread(_invoke)
        except (ClientError, BotoCoreError) as exc:
            raise _upstream_error("AssumeRole", exc) from exc

        credentials = response.get("Credentials") or {}
        try:
            return TemporaryCredentials(
                access_key_id=credentials["AccessKeyId"],
                secret_access_key=credentials["SecretAccessKey"],
                session_token=credentials["SessionToken"],
                expiration=credentials["Expiration"],
            )
        except KeyError as exc:
            raise UpstreamHttpError("AssumeRole returned incomplete credentials.") from exc

    async def exchange(self, id_token: str) -> TemporaryCredentials:
        """Run the full ID token to temporary credentials chain."""
        broker_token = await self.exchange_id_token_for_broker_token(id_token)
        identity_context = self.extract_identity_context(broker_token)
        logger.debug("Identity context extracted; assuming %s", self._settings.role_arn)
        return await self.assume_scoped_role(identity_context)


__all__ = [
    "IDENTITY_CONTEXT_CLAIM",
    "JWT_BEARER_GRANT",
    "TokenExchangeClient",
]
