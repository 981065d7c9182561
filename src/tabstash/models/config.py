"""Configuration models."""

from typing import List, Optional

from pydantic import BaseModel, ConfigDict, Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class EnvSettings(BaseSettings):
    """Settings loaded from .env file (secrets)."""

    tabstash_api_token: Optional[str] = Field(
        None, description="Bearer token accepted by the command endpoint"
    )

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
    )


class AppConfig(BaseModel):
    """Application configuration from config.yaml."""

    # Server settings
    host: str = Field(default="127.0.0.1", description="Server host")
    port: Optional[int] = Field(None, description="Server port (auto-select if None)")

    # Storage
    store_path: Optional[str] = Field(
        None, description="YAML file holding the bookmark tree"
    )
    folder_colors_path: Optional[str] = Field(
        None, description="YAML file holding folder colors"
    )

    # URL normalization (read fresh for every operation)
    strip_all_params: bool = Field(
        default=False, description="Drop the whole query string when comparing URLs"
    )
    strip_tracking_params: bool = Field(
        default=True, description="Drop known tracking parameters when comparing URLs"
    )

    # Tree cache
    cache_ttl_seconds: float = Field(default=5.0, ge=0.0, le=300.0)

    # Metadata enrichment
    enrichment_delay_seconds: float = Field(
        default=2.0, ge=0.0, le=60.0, description="Pause between enriched items"
    )
    fetch_timeout_seconds: float = Field(
        default=5.0, gt=0.0, le=60.0, description="Page fetch timeout"
    )
    favicon_service_url: str = Field(
        default="https://www.google.com/s2/favicons?domain={domain}&sz=128",
        description="Fallback favicon URL template ({domain} is substituted)",
    )
    user_agent: str = Field(default="Mozilla/5.0 (compatible; TabStash/1.0)")

    # Logging
    log_level: str = Field(default="INFO", description="Logging level")

    # API surface
    allowed_origins: List[str] = Field(
        default_factory=list,
        description="Allowed browser extension origins (e.g., chrome-extension://<id>)",
    )
    require_auth: bool = Field(
        default=False,
        description="Require TABSTASH_API_TOKEN on the command endpoint",
    )

    model_config = ConfigDict(json_schema_extra={
        "example": {
            "host": "127.0.0.1",
            "port": 8080,
            "store_path": "/home/user/.tabstash/bookmarks.yaml",
            "strip_all_params": False,
            "strip_tracking_params": True,
            "cache_ttl_seconds": 5.0,
            "enrichment_delay_seconds": 2.0,
            "fetch_timeout_seconds": 5.0,
            "allowed_origins": ["chrome-extension://your-extension-id"],
        }
    })
