from __future__ import annotations

from typing import Optional

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict

from modules.helperClasses import UserInputs


class QobuzFavSettings(BaseSettings):
    model_config = SettingsConfigDict(env_file=".env", env_file_encoding="utf-8")

    # Qobuz settings
    qobuz_app_id: Optional[str] = Field(
        default=None, validation_alias="QOBUZ_APP_ID"
    )
    qobuz_username: Optional[str] = Field(
        default=None, validation_alias="QOBUZ_USERNAME"
    )
    qobuz_password: Optional[str] = Field(
        default=None, validation_alias="QOBUZ_PASSWORD"
    )
    qobuz_user_auth_token: Optional[str] = Field(
        default=None, validation_alias="QOBUZ_USER_AUTH_TOKEN"
    )
    qobuz_request_timeout_seconds: Optional[int] = Field(
        default=10, validation_alias="QOBUZ_REQUEST_TIMEOUT_SECONDS"
    )
    qobuz_max_retries: Optional[int] = Field(
        default=3, validation_alias="QOBUZ_MAX_RETRIES"
    )
    qobuz_retry_backoff_seconds: Optional[float] = Field(
        default=1.0, validation_alias="QOBUZ_RETRY_BACKOFF_SECONDS"
    )

    # Paging, batching and rate limiting
    page_size: int = Field(default=50, ge=1, validation_alias="PAGE_SIZE")
    batch_size: int = Field(default=50, ge=1, le=50, validation_alias="BATCH_SIZE")
    page_delay_seconds: float = Field(
        default=0.5, ge=0, validation_alias="PAGE_DELAY_SECONDS"
    )
    playlist_delay_seconds: float = Field(
        default=1.0, ge=0, validation_alias="PLAYLIST_DELAY_SECONDS"
    )
    batch_delay_seconds: float = Field(
        default=2.0, ge=0, validation_alias="BATCH_DELAY_SECONDS"
    )
    item_delay_seconds: float = Field(
        default=0.5, ge=0, validation_alias="ITEM_DELAY_SECONDS"
    )
    preview_sample_size: int = Field(
        default=5, ge=0, validation_alias="PREVIEW_SAMPLE_SIZE"
    )

    session_ttl_seconds: int = Field(
        default=7200, ge=1, validation_alias="SESSION_TTL_SECONDS"
    )

    # Web app
    web_host: str = Field(default="0.0.0.0", validation_alias="WEB_HOST")
    web_port: int = Field(default=8080, validation_alias="WEB_PORT")
    cors_origins: Optional[str] = Field(default=None, validation_alias="CORS_ORIGINS")
    static_dir: Optional[str] = Field(default=None, validation_alias="STATIC_DIR")

    # Logging
    log_level: str = Field(default="INFO", validation_alias="LOG_LEVEL")
    log_file: Optional[str] = Field(default=None, validation_alias="LOG_FILE")


def build_user_inputs(settings: QobuzFavSettings) -> UserInputs:
    return UserInputs(
        qobuz_app_id=settings.qobuz_app_id,
        qobuz_username=settings.qobuz_username,
        qobuz_password=settings.qobuz_password,
        qobuz_user_auth_token=settings.qobuz_user_auth_token,
        qobuz_request_timeout_seconds=settings.qobuz_request_timeout_seconds,
        qobuz_max_retries=settings.qobuz_max_retries,
        qobuz_retry_backoff_seconds=settings.qobuz_retry_backoff_seconds,
        page_size=settings.page_size,
        batch_size=settings.batch_size,
        page_delay_seconds=settings.page_delay_seconds,
        playlist_delay_seconds=settings.playlist_delay_seconds,
        batch_delay_seconds=settings.batch_delay_seconds,
        item_delay_seconds=settings.item_delay_seconds,
        preview_sample_size=settings.preview_sample_size,
        session_ttl_seconds=settings.session_ttl_seconds,
        web_host=settings.web_host,
        web_port=settings.web_port,
        cors_origins=settings.cors_origins,
        static_dir=settings.static_dir,
    )
