import json
from typing import List, Literal, Union

from pydantic import Field, field_validator, model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

DEFAULT_ALLOWED_MIME_TYPES = [
    "image/*",
    "application/pdf",
    "application/msword",
    "application/vnd.openxmlformats-officedocument.wordprocessingml.document",
    "application/vnd.ms-excel",
    "application/vnd.openxmlformats-officedocument.spreadsheetml.sheet",
    "text/csv",
    "text/plain",
]


def _parse_list(value: Union[str, List[str], None], *, name: str) -> List[str]:
    if value is None:
        return []
    if isinstance(value, str):
        if not value.strip():
            return []
        if value.startswith("["):
            parsed = json.loads(value)
            if not isinstance(parsed, list):
                raise ValueError(f"{name} JSON value must be a list")
            return [str(i).strip() for i in parsed if str(i).strip()]
        return [i.strip() for i in value.split(",") if i.strip()]
    if isinstance(value, list):
        return [str(i).strip() for i in value if str(i).strip()]
    raise ValueError(value)


class Settings(BaseSettings):
    app_name: str = "Facility Portal Backend"
    env: str = "dev"
    secret_key: str
    access_token_expire_minutes: int = 60

    # DATABASE
    database_url: str
    db_pool_size: int = Field(default=10, ge=1, le=100)
    db_max_overflow: int = Field(default=20, ge=0, le=200)
    db_pool_timeout_seconds: int = Field(default=30, ge=1, le=300)
    db_pool_recycle_seconds: int = Field(default=1800, ge=30, le=86_400)

    # TEAM INVITATIONS
    team_invite_mode: Literal["credentials", "token"] = "credentials"
    team_invite_expire_days: int = Field(default=7, ge=1, le=30)
    team_invite_web_base_url: str | None = None
    smtp_host: str | None = None
    smtp_port: int = Field(default=587, ge=1, le=65535)
    smtp_username: str | None = None
    smtp_password: str | None = None
    smtp_sender_email: str | None = None
    smtp_use_starttls: bool = True
    smtp_timeout_seconds: int = Field(default=10, ge=1, le=120)

    # OBJECT STORAGE
    storage_bucket: str = "user-uploads"
    storage_endpoint_url: str | None = None
    storage_region: str = "us-east-1"
    storage_access_key_id: str | None = None
    storage_secret_access_key: str | None = None
    storage_max_upload_bytes: int = Field(default=10 * 1024 * 1024, ge=1)
    storage_allowed_mime_types: List[str] = Field(
        default_factory=lambda: list(DEFAULT_ALLOWED_MIME_TYPES)
    )
    storage_signed_url_expires_seconds: int = Field(default=3600, ge=1, le=604_800)
    # SigV4 presigned URLs cannot outlive 7 days.
    storage_persisted_url_expires_seconds: int = Field(default=604_800, ge=1, le=604_800)
    storage_connect_timeout_seconds: int = Field(default=5, ge=1, le=60)
    storage_read_timeout_seconds: int = Field(default=30, ge=1, le=300)
    storage_ensure_bucket_on_startup: bool = True

    # CORS
    cors_origins: List[str] = Field(default_factory=lambda: ["http://localhost:5173"])

    @field_validator("cors_origins", mode="before")
    @classmethod
    def assemble_cors_origins(cls, v: Union[str, List[str]]) -> List[str]:
        return _parse_list(v, name="CORS_ORIGINS")

    @field_validator("storage_allowed_mime_types", mode="before")
    @classmethod
    def assemble_mime_types(cls, v: Union[str, List[str]]) -> List[str]:
        return [item.lower() for item in _parse_list(v, name="STORAGE_ALLOWED_MIME_TYPES")]

    @field_validator(
        "smtp_host",
        "smtp_username",
        "smtp_password",
        "smtp_sender_email",
        "team_invite_web_base_url",
        "storage_endpoint_url",
        "storage_access_key_id",
        "storage_secret_access_key",
        mode="before",
    )
    @classmethod
    def normalize_optional_strings(cls, value: str | None) -> str | None:
        if value is None:
            return None
        cleaned = str(value).strip()
        return cleaned or None

    @model_validator(mode="after")
    def validate_production_safety(self) -> "Settings":
        env_value = self.env.lower().strip()
        if env_value not in {"prod", "production"}:
            return self

        weak_secrets = {"", "change_me", "dev-secret-key-change-before-prod"}
        if self.secret_key.strip() in weak_secrets or len(self.secret_key.strip()) < 32:
            raise ValueError("SECRET_KEY must be a strong random value in production")

        if "*" in self.cors_origins:
            raise ValueError("CORS_ORIGINS cannot contain '*' in production")

        if self.team_invite_mode == "token" and not self.team_invite_web_base_url:
            raise ValueError("TEAM_INVITE_WEB_BASE_URL is required for token invitations in production")

        return self

    model_config = SettingsConfigDict(
        env_file=".env",
        case_sensitive=False,
        extra="ignore",
        enable_decoding=False,
    )


settings = Settings()
