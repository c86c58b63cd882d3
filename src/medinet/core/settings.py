"""Application settings and configuration.

This module defines all configuration options for the MediNet backend.
Settings are loaded from environment variables with sensible defaults.
"""

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict

REDIS_DISABLED_URL = "memory://"


class Settings(BaseSettings):
    """Application settings loaded from environment variables.

    Settings can be overridden via environment variables or .env files.
    """

    # Application metadata
    app_name: str = Field(default="MediNet", alias="APP_NAME")
    app_version: str = Field(default="0.1.0", alias="APP_VERSION")
    environment: str = Field(default="development", alias="ENVIRONMENT")
    debug: bool = Field(default=False, alias="DEBUG")
    log_level: str = Field(default="INFO", alias="LOG_LEVEL")

    # Security and authentication
    secret_key: str = Field(alias="SECRET_KEY")
    jwt_algorithm: str = Field(default="HS256", alias="JWT_ALGORITHM")
    access_token_expire_minutes: int = Field(
        default=60 * 24 * 7,
        alias="ACCESS_TOKEN_EXPIRE_MINUTES",
    )

    # Database configuration
    database_url: str = Field(default="sqlite:///./medinet.db", alias="DATABASE_URL")
    test_database_url: str | None = Field(default=None, alias="TEST_DATABASE_URL")
    use_testing_database: bool = Field(default=False, alias="USE_TEST_DATABASE")
    sql_debug: bool = Field(default=False, alias="SQL_DEBUG")

    # Connection pool sizing (server databases only; SQLite keeps its default pool)
    db_pool_min: int = Field(default=2, ge=1, alias="DB_POOL_MIN")
    db_pool_max: int = Field(default=10, ge=1, alias="DB_POOL_MAX")
    db_pool_timeout_seconds: float = Field(default=2.0, alias="DB_POOL_TIMEOUT_SECONDS")
    db_idle_timeout_seconds: int = Field(default=30, alias="DB_IDLE_TIMEOUT_SECONDS")

    # Transient failure retry (exponential backoff: base * 2 ** (attempt - 1))
    db_retry_attempts: int = Field(default=3, ge=1, alias="DB_RETRY_ATTEMPTS")
    db_retry_base_delay_seconds: float = Field(
        default=0.1,
        alias="DB_RETRY_BASE_DELAY_SECONDS",
    )

    # Redis configuration for the feed cache; "memory://" keeps everything in-process
    redis_url: str = Field(default="redis://localhost:6379/0", alias="REDIS_URL")

    # Real-time fanout adapter
    pubsub_url: str | None = Field(default=None, alias="PUBSUB_URL")
    pubsub_channel: str = Field(default="medinet:realtime", alias="PUBSUB_CHANNEL")

    # Feed ranking and caching
    feed_cache_ttl_seconds: int = Field(default=60, alias="FEED_CACHE_TTL_SECONDS")
    feed_cache_hard_ttl_seconds: int = Field(default=120, alias="FEED_CACHE_HARD_TTL_SECONDS")
    slow_query_threshold_ms: int = Field(default=500, alias="SLOW_QUERY_THRESHOLD_MS")

    # Messaging rules
    require_connection_for_messaging: bool = Field(
        default=False,
        alias="REQUIRE_CONNECTION_FOR_MESSAGING",
    )
    message_edit_window_minutes: int = Field(
        default=15,
        ge=0,
        alias="MESSAGE_EDIT_WINDOW_MINUTES",
    )
    typing_throttle_seconds: float = Field(default=1.0, ge=0, alias="TYPING_THROTTLE_SECONDS")

    # Presence
    presence_heartbeat_seconds: float = Field(default=30.0, alias="PRESENCE_HEARTBEAT_SECONDS")
    presence_grace_seconds: float = Field(default=1.0, ge=0, alias="PRESENCE_GRACE_SECONDS")

    # CORS configuration for web and WebSocket clients
    cors_origins: list[str] = Field(
        default=["*"],
        alias="CORS_ORIGINS",
    )
    cors_allow_credentials: bool = Field(default=True, alias="CORS_ALLOW_CREDENTIALS")
    cors_allow_methods: list[str] = Field(
        default=["GET", "POST", "PUT", "DELETE", "OPTIONS"],
        alias="CORS_ALLOW_METHODS",
    )
    cors_allow_headers: list[str] = Field(
        default=["*"],
        alias="CORS_ALLOW_HEADERS",
    )

    model_config = SettingsConfigDict(
        env_file=".env",
        validate_assignment=True,
        extra="ignore",
    )

    @property
    def effective_database_url(self) -> str:
        """Return the database URL respecting testing overrides.

        Returns:
            The active database URL (test database if in testing mode, otherwise production)
        """
        if self.use_testing_database and self.test_database_url:
            return self.test_database_url
        return self.database_url

    @property
    def cache_enabled(self) -> bool:
        """Return True when the feed cache should talk to Redis."""
        return self.redis_url.strip().lower() != REDIS_DISABLED_URL

    @property
    def effective_pubsub_url(self) -> str | None:
        """Return the pub/sub adapter URL, falling back to the cache Redis."""
        url = self.pubsub_url or self.redis_url
        if not url or url.strip().lower() == REDIS_DISABLED_URL:
            return None
        return url.strip()

    @property
    def is_production(self) -> bool:
        """Return True when running with production error redaction."""
        return self.environment.lower() == "production"


settings = Settings()  # type: ignore[call-arg]
