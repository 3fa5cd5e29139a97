"""Application settings using Pydantic Settings."""

from functools import lru_cache
from typing import Literal

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


DEFAULT_FALLBACK_GATEWAYS = [
    "https://gateway.pinata.cloud/ipfs/{cid}",
    "https://ipfs.io/ipfs/{cid}",
    "https://cloudflare-ipfs.com/ipfs/{cid}",
    "https://dweb.link/ipfs/{cid}",
]


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
    )

    # Application
    app_name: str = Field(default="coursegate", description="Application name")
    app_version: str = Field(default="0.1.0", description="Application version")
    environment: Literal["development", "staging", "production", "testing"] = Field(
        default="development", description="Environment name"
    )
    debug: bool = Field(default=True, description="Debug mode")

    # Runtime mode (resolved once when the runtime is built)
    mode: Literal["live", "demo"] = Field(
        default="demo",
        description="live: ledger gateway + signing service, demo: in-memory ledger",
    )

    # API Server
    api_host: str = Field(default="0.0.0.0", description="API host")
    api_port: int = Field(default=8000, description="API port")

    # Ledger gateway
    ledger_gateway_url: str = Field(
        default="http://localhost:3000",
        description="Base URL of the ledger gateway (license/progress API)",
    )
    ledger_timeout_seconds: float = Field(
        default=15.0, description="Ledger gateway request timeout"
    )
    ledger_api_key: str | None = Field(
        default=None, description="Optional bearer token for the ledger gateway"
    )

    # License verification
    license_retry_delay_seconds: float = Field(
        default=1.0,
        ge=0,
        description="Delay before the single re-query of a negative license answer",
    )

    # Content resolution
    resolver_sign_url: str | None = Field(
        default="https://api.pinata.cloud/v3",
        description="Base URL of the optimized (signed URL) resolution service",
    )
    resolver_jwt: str | None = Field(
        default=None, description="Bearer token for the resolution service"
    )
    resolver_timeout_seconds: float = Field(
        default=15.0, description="Optimized resolution request timeout"
    )
    resolver_signed_url_expiry_seconds: int = Field(
        default=7200, description="Signed URL lifetime (default: 2 hours)"
    )
    resolver_fallback_gateways: list[str] = Field(
        default_factory=lambda: list(DEFAULT_FALLBACK_GATEWAYS),
        description="Ordered fallback URL templates, {cid} is substituted",
    )
    resolver_fallback_policy: Literal["single_shot", "ordered"] = Field(
        default="single_shot",
        description="single_shot: only the first fallback, ordered: walk the list",
    )
    resolver_no_content_sentinel: str = Field(
        default="placeholder-video-content",
        description="Identifier meaning 'no content uploaded yet'",
    )
    resolver_no_content_url: str | None = Field(
        default=(
            "https://commondatastorage.googleapis.com/"
            "gtv-videos-bucket/sample/BigBuckBunny.mp4"
        ),
        description="URL served for the no-content sentinel",
    )

    # Sessions
    session_idle_ttl_seconds: float = Field(
        default=1800.0,
        gt=0,
        description="Close sessions unused for longer than this (default: 30 min)",
    )
    max_sessions: int = Field(
        default=10000, ge=1, description="Maximum number of open sessions"
    )

    # Logging
    log_level: Literal["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"] = Field(
        default="DEBUG", description="Log level"
    )
    log_format: Literal["json", "console"] = Field(
        default="console", description="Log format"
    )
    log_include_caller_info: bool = Field(
        default=True, description="Include caller info"
    )
    log_to_file: bool = Field(default=False, description="Also write JSON log files")
    log_dir: str = Field(default="logs", description="Directory for log files")
    log_file_max_bytes: int = Field(
        default=10 * 1024 * 1024, description="Max size per log file (10MB default)"
    )
    log_file_backup_count: int = Field(
        default=5, description="Number of backup log files to keep"
    )
    log_requests: bool = Field(
        default=True, description="Log HTTP request start/finish"
    )
    log_exclude_paths: list[str] = Field(
        default=["/health", "/health/live", "/health/ready"],
        description="Paths to exclude from request logging",
    )

    # CORS
    cors_origins: list[str] = Field(default=["*"], description="CORS origins")
    cors_allow_credentials: bool = Field(default=True, description="Allow credentials")
    cors_allow_methods: list[str] = Field(default=["*"], description="Allowed methods")
    cors_allow_headers: list[str] = Field(default=["*"], description="Allowed headers")
    cors_max_age: int = Field(default=600, description="CORS max age")

    @property
    def is_development(self) -> bool:
        """Check if running in development mode."""
        return self.environment == "development"

    @property
    def is_testing(self) -> bool:
        """Check if running in testing mode."""
        return self.environment == "testing"

    @property
    def is_live(self) -> bool:
        """Check if the runtime talks to the real ledger."""
        return self.mode == "live"

    @property
    def resolver_configured(self) -> bool:
        """Check if the optimized resolution service is configured."""
        return bool(self.resolver_sign_url and self.resolver_jwt)


@lru_cache
def get_settings() -> Settings:
    """Get cached settings instance."""
    return Settings()
