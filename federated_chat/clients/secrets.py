"""Resolve the OIDC client secret from configuration or AWS Secrets Manager."""

from __future__ import annotations

import asyncio
import json
import logging
from typing import Any, Optional

import boto3
from botocore.exceptions import BotoCoreError, ClientError

from federated_chat.core.config import OIDCSettings
from federated_chat.core.exceptions import UpstreamHttpError

logger = logging.getLogger(__name__)

SECRET_FIELD = "OIDCClientSecret"


class ClientSecretProvider:
    """Return the IdP client secret, fetching it at most once per instance."""

    def __init__(
        self,
        settings: OIDCSettings,
        *,
        region_name: str,
        secrets_client: Any | None = None,
    ) -> None:
        self._static_secret = settings.client_secret
        self._secret_name = settings.client_secret_name
        self._region_name = region_name
        self._secrets_client = secrets_client
        self._cached: Optional[str] = None

    async def get_client_secret(self) -> str:
        if self._static_secret:
            return self._static_secret
        if self._cached is not None:
            return self._cached
        if not self._secret_name:
            raise ValueError(
                "Either OIDC_CLIENT_SECRET or OIDC_CLIENT_SECRET_NAME must be configured."
            )
        self._cached = await asyncio.to_thread(self._fetch)
        return self._cached

    def _fetch(self) -> str:
        client = self._secrets_client or boto3.client(
            "secretsmanager", region_name=self._region_name
        )
        try:
            response = client.get_secret_value(SecretId=self._secret_name)
        except (ClientError, BotoCoreError) as exc:
            logger.error("Unable to read client secret %s", self._secret_name)
            raise UpstreamHttpError("Client secret lookup failed.") from exc

        secret_string = response.get("SecretString")
        if secret_string is None:
            raise UpstreamHttpError("Client secret has no SecretString.")
        try:
            value = json.loads(secret_string)[SECRET_FIELD]
        except (ValueError, KeyError, TypeError) as exc:
            raise UpstreamHttpError(
                f"Client secret does not contain {SECRET_FIELD}."
            ) from exc
        return value


__all__ = ["ClientSecretProvider", "SECRET_FIELD"]
