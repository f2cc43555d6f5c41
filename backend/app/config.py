from functools import lru_cache
from pathlib import Path
from typing import Annotated, Any, List

from pydantic import AnyHttpUrl, Field, field_validator
from pydantic_settings import BaseSettings, NoDecode, SettingsConfigDict


DEFAULT_UPLOAD_EXTENSIONS: tuple[str, ...] = (
    "jpeg",
    "jpg",
    "png",
    "gif",
    "pdf",
    "doc",
    "docx",
    "txt",
    "mp4",
    "mp3",
    "wav",
)


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    app_name: str = Field(default="Parley API", env="APP_NAME", description="Human readable service name")
    environment: str = Field(default="development", env="ENVIRONMENT", description="Deployment environment name")
    debug: bool = Field(default=False, env="DEBUG", description="Enable debug mode")

    cors_origins: Annotated[List[AnyHttpUrl], NoDecode] = Field(
        default_factory=lambda: [
            "http://localhost",
            "http://localhost:5173",
            "http://127.0.0.1:5173",
        ],
        env="CORS_ORIGINS",
        description="List of allowed CORS origins",
    )

    database_user: str = Field(default="parley", env="DB_USER")
    database_password: str = Field(default="parley", env="DB_PASSWORD")
    database_host: str = Field(default="db", env="DB_HOST")
    database_port: int = Field(default=3306, env="DB_PORT")
    database_name: str = Field(default="parley", env="DB_NAME")
    database_url_override: str | None = Field(
        default=None,
        alias="DATABASE_URL",
        description="Full SQLAlchemy URL taking precedence over the individual DB_* values",
    )

    jwt_secret_key: str = Field(default="changeme", env="JWT_SECRET_KEY")
    jwt_algorithm: str = Field(default="HS256", env="JWT_ALGORITHM")
    access_token_expire_minutes: int = Field(default=60 * 24, env="ACCESS_TOKEN_EXPIRE_MINUTES")

    chat_history_default_limit: int = Field(default=50, env="CHAT_HISTORY_DEFAULT_LIMIT")
    chat_history_max_limit: int = Field(default=100, env="CHAT_HISTORY_MAX_LIMIT")
    chat_message_max_length: int = Field(default=2000, env="CHAT_MESSAGE_MAX_LENGTH")
    chat_search_limit: int = Field(default=50, env="CHAT_SEARCH_LIMIT")
    user_search_limit: int = Field(default=20, env="USER_SEARCH_LIMIT")
    user_directory_page_size: int = Field(default=50, env="USER_DIRECTORY_PAGE_SIZE")

    media_root: Path = Field(default=Path("uploads"), env="MEDIA_ROOT")
    media_base_url: str = Field(default="/api/messages/files", env="MEDIA_BASE_URL")
    avatar_base_url: str = Field(default="/api/auth/avatars", env="AVATAR_BASE_URL")
    max_upload_size: int = Field(
        default=10 * 1024 * 1024, env="MAX_UPLOAD_SIZE", description="Maximum upload size in bytes"
    )
    allowed_upload_extensions: Annotated[list[str], NoDecode] = Field(
        default_factory=lambda: list(DEFAULT_UPLOAD_EXTENSIONS),
        env="ALLOWED_UPLOAD_EXTENSIONS",
        description="File extensions accepted for message attachments",
    )

    websocket_keepalive_timeout_seconds: float = Field(
        default=30, env="WEBSOCKET_KEEPALIVE_TIMEOUT_SECONDS"
    )
    websocket_keepalive_ping_interval_seconds: float = Field(
        default=25, env="WEBSOCKET_KEEPALIVE_PING_INTERVAL_SECONDS"
    )

    realtime_redis_url: str | None = Field(
        default=None,
        env="REALTIME_REDIS_URL",
        description="Redis URL used to relay room events between API nodes",
    )
    realtime_namespace: str = Field(default="parley.realtime", env="REALTIME_NAMESPACE")
    realtime_node_id: str | None = Field(default=None, env="REALTIME_NODE_ID")
    realtime_typing_ttl_seconds: float = Field(default=6.0, env="REALTIME_TYPING_TTL_SECONDS")

    model_config = SettingsConfigDict(
        env_file=str(Path(__file__).resolve().parents[2] / ".env"),
        env_file_encoding="utf-8",
        extra="ignore",
        populate_by_name=True,
    )

    @property
    def database_url(self) -> str:
        if self.database_url_override:
            return self.database_url_override
        return (
            f"mysql+pymysql://{self.database_user}:{self.database_password}"
            f"@{self.database_host}:{self.database_port}/{self.database_name}"
        )

    @field_validator("cors_origins", mode="before")
    @classmethod
    def assemble_cors_origins(cls, v):  # type: ignore[override]
        if v in (None, "", Ellipsis):
            return v
        if isinstance(v, str):
            return [origin.strip() for origin in v.split(",") if origin.strip()]
        if isinstance(v, (list, tuple, set)):
            return list(v)
        return v

    @field_validator("allowed_upload_extensions", mode="before")
    @classmethod
    def normalize_extensions(cls, value: Any) -> list[str]:
        if value in (None, "", Ellipsis):
            return list(DEFAULT_UPLOAD_EXTENSIONS)
        if isinstance(value, str):
            value = value.split(",")
        return [str(item).strip().lower().lstrip(".") for item in value if str(item).strip()]

    @field_validator("media_root", mode="before")
    @classmethod
    def resolve_media_root(cls, value: str | Path) -> Path:
        if isinstance(value, Path):
            return value.resolve()
        return Path(value).resolve()


@lru_cache
def get_settings() -> Settings:
    return Settings()
