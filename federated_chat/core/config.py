"""
Application configuration models and helpers.

Centralizes settings management so the FastAPI app, the OIDC callback Lambda
and the operational scripts share a consistent configuration surface.
"""

from functools import lru_cache
from typing import Literal, Optional

from pydantic import AnyHttpUrl, Field, HttpUrl, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class _EnvSettings(BaseSettings):
    """Base class wiring every settings group to the process env and ``.env``."""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
        populate_by_name=True,
    )


class OIDCSettings(_EnvSettings):
    """Configuration for the external OpenID Connect identity provider."""

    idp_name: str = Field(
        "okta",
        validation_alias="OIDC_IDP_NAME",
        description="Provider family used to pick a compatible scope set.",
    )
    issuer_url: str = Field(..., validation_alias="OIDC_ISSUER_URL")
    client_id: str = Field(..., validation_alias="OIDC_CLIENT_ID")
    client_secret: Optional[str] = Field(
        None,
        validation_alias="OIDC_CLIENT_SECRET",
        description="Inline client secret; takes precedence over the secret name.",
    )
    client_secret_name: Optional[str] = Field(
        None,
        validation_alias="OIDC_CLIENT_SECRET_NAME",
        description="AWS Secrets Manager secret holding {'OIDCClientSecret': ...}.",
    )
    redirect_url: AnyHttpUrl = Field(..., validation_alias="OIDC_REDIRECT_URL")
    scopes: Optional[str] = Field(
        None,
        validation_alias="OIDC_SCOPES",
        description="Optional scope override; defaults depend on the provider family.",
    )
    state_ttl_seconds: int = Field(300, validation_alias="OAUTH_STATE_TTL")
    retain_refresh_token: bool = Field(
        True,
        validation_alias="OIDC_RETAIN_REFRESH_TOKEN",
        description=(
            "Keep the previous refresh token when a refresh response omits one. "
            "Disable for providers that rotate refresh tokens on every use."
        ),
    )
    http_timeout_seconds: float = Field(10.0, validation_alias="OIDC_HTTP_TIMEOUT")

    @field_validator("scopes", mode="before")
    @classmethod
    def _normalize_scopes(cls, value: str | list[str] | tuple[str, ...] | None) -> str | None:
        """Support providing scopes as a comma or space separated string."""
        if value is None:
            return None
        if isinstance(value, (list, tuple)):
            parts = [str(scope).strip() for scope in value]
        else:
            parts = [scope.strip() for scope in value.replace(",", " ").split()]
        cleaned = [scope for scope in parts if scope]
        return " ".join(cleaned) or None


class IdentityCenterSettings(_EnvSettings):
    """Settings for the IAM Identity Center broker and the scoped role."""

    region_name: str = Field("us-east-1", validation_alias="AWS_IAM_IDC_REGION")
    application_arn: str = Field(..., validation_alias="GATEWAY_IDC_APP_ARN")
    role_arn: str = Field(..., validation_alias="Q_USER_API_ROLE_ARN")
    role_session_name: str = Field(
        "q-gateway-for-chat", validation_alias="ROLE_SESSION_NAME"
    )
    duration_seconds: int = Field(900, validation_alias="ROLE_DURATION_SECONDS")
    context_provider_arn: str = Field(
        "arn:aws:iam::aws:contextProvider/IdentityCenter",
        validation_alias="IDENTITY_CONTEXT_PROVIDER_ARN",
    )


class AWSSettings(_EnvSettings):
    """Settings for AWS storage and key management."""

    region_name: str = Field("us-east-1", validation_alias="AWS_REGION")
    storage_backend: Literal["dynamodb", "sqlite"] = Field(
        "dynamodb", validation_alias="STORAGE_BACKEND"
    )
    sqlite_db_path: str = Field(
        "data/federated_chat.db", validation_alias="SQLITE_DB_PATH"
    )
    oidc_state_table_name: str = Field(
        "oidc-state", validation_alias="OIDC_STATE_TABLE_NAME"
    )
    session_table_name: str = Field(
        "iam-session-credentials",
        validation_alias="IAM_SESSION_CREDENTIALS_TABLE_NAME",
    )
    cache_table_name: str = Field("channel-cache", validation_alias="CACHE_TABLE_NAME")
    message_metadata_table_name: str = Field(
        "message-metadata", validation_alias="MESSAGE_METADATA_TABLE_NAME"
    )
    kms_key_arn: Optional[str] = Field(
        None,
        validation_alias="KMS_KEY_ARN",
        description="KMS key protecting session records. Local key used when omitted.",
    )


class SecuritySettings(_EnvSettings):
    """Security-related configuration."""

    local_encryption_secret: Optional[str] = Field(
        None,
        validation_alias="LOCAL_ENCRYPTION_SECRET",
        description=(
            "Secret used to derive the local master key when no KMS key is configured."
        ),
    )


class SessionSettings(_EnvSettings):
    """Credential session tuning shared by every owner."""

    expiry_skew_seconds: int = Field(120, validation_alias="SESSION_EXPIRY_SKEW_SECONDS")
    record_ttl_seconds: int = Field(
        7 * 24 * 3600,
        validation_alias="SESSION_RECORD_TTL_SECONDS",
        description="Lifetime of a stored session, matching the refresh token lifetime.",
    )


class ChatSettings(_EnvSettings):
    """Configuration for the chat backend and response streaming."""

    region_name: str = Field("us-east-1", validation_alias="AMAZON_Q_REGION")
    application_id: str = Field(..., validation_alias="AMAZON_Q_APP_ID")
    endpoint_url: Optional[str] = Field(None, validation_alias="AMAZON_Q_ENDPOINT")
    flush_threshold_chars: int = Field(
        120,
        validation_alias="CHAT_FLUSH_THRESHOLD_CHARS",
        gt=0,
        description="Characters buffered before the chat message is edited again.",
    )
    context_days_to_live: int = Field(90, validation_alias="CONTEXT_DAYS_TO_LIVE")
    max_message_length: int = Field(7000, validation_alias="CHAT_MAX_MESSAGE_LENGTH")


class TelegramSettings(_EnvSettings):
    """Telegram Bot API integration."""

    bot_token: Optional[str] = Field(None, validation_alias="TELEGRAM_BOT_TOKEN")
    webhook_token: Optional[str] = Field(
        None,
        validation_alias="TELEGRAM_WEBHOOK_TOKEN",
        description="Shared token expected on webhook deliveries.",
    )


class AppSettings(_EnvSettings):
    """Root settings object for the FastAPI application."""

    environment: str = Field("development", validation_alias="APP_ENV")
    log_level: str = Field("INFO", validation_alias="APP_LOG_LEVEL")
    public_base_url: Optional[HttpUrl] = Field(
        None,
        validation_alias="PUBLIC_BASE_URL",
        description="Externally reachable base URL used in sign-in links.",
    )
    oidc: OIDCSettings = Field(default_factory=OIDCSettings)
    identity_center: IdentityCenterSettings = Field(
        default_factory=IdentityCenterSettings
    )
    aws: AWSSettings = Field(default_factory=AWSSettings)
    security: SecuritySettings = Field(default_factory=SecuritySettings)
    session: SessionSettings = Field(default_factory=SessionSettings)
    chat: ChatSettings = Field(default_factory=ChatSettings)
    telegram: TelegramSettings = Field(default_factory=TelegramSettings)


@lru_cache()
def get_settings() -> AppSettings:
    """Return a cached settings object."""
    return AppSettings()  # type: ignore[call-arg]


__all__ = [
    "AppSettings",
    "AWSSettings",
    "ChatSettings",
    "IdentityCenterSettings",
    "OIDCSettings",
    "SecuritySettings",
    "SessionSettings",
    "TelegramSettings",
    "get_settings",
]
