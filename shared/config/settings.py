"""
Application settings loaded from environment variables.
Uses pydantic-settings for type-safe configuration.
"""

from functools import lru_cache

from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Relay settings with defaults for development."""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
    )

    # Environment
    environment: str = "development"
    debug: bool = True

    # Server
    relay_host: str = "0.0.0.0"
    relay_port: int = 3001
    # Comma-separated list of allowed origins (empty allows any origin)
    allowed_origins: str = ""

    # Rooms
    room_grace_period_seconds: float = 300.0  # Empty rooms survive this long before deletion
    room_history_limit: int = 500  # Messages retained per room, 0 disables history
    room_name_max_length: int = 100
    room_description_max_length: int = 500
    message_max_length: int = 4000

    # WebSocket
    ws_max_message_size: int = 64 * 1024  # 64 KB
    ws_receive_timeout: float = 90.0
    ws_broadcast_batch_size: int = 50  # Connections to send to in parallel
    ws_send_timeout: float = 5.0  # Per-recipient send timeout

    # Identity tokens
    jwt_secret: str = "dev-secret-change-me-in-production"
    jwt_issuer: str = "chat-relay"
    jwt_audience: str = "chat-relay-users"
    jwt_algorithm: str = "HS256"
    jwt_access_token_expire_minutes: int = 60
    allow_anonymous: bool = True

    # Persistence (fire-and-forget webhooks, empty disables)
    persistence_webhook_url: str = ""  # Committed messages
    persistence_presence_url: str = ""  # Online/offline changes
    persistence_timeout: float = 5.0

    @property
    def is_production(self) -> bool:
        return self.environment == "production"

    @property
    def origins(self) -> list[str]:
        """Parsed CORS origins, ``["*"]`` when none are configured."""
        parsed = [o.strip() for o in self.allowed_origins.split(",") if o.strip()]
        return parsed or ["*"]

    def validate_production_secrets(self) -> list[str]:
        """
        Validate that secrets are properly configured for production.
        Returns a list of validation errors. Empty list means all checks pass.
        """
        errors = []

        weak_secrets = {
            "dev-secret-change-me-in-production",
            "secret",
            "password",
            "changeme",
            "default",
        }

        if self.is_production:
            if self.jwt_secret in weak_secrets or len(self.jwt_secret) < 32:
                errors.append(
                    "JWT_SECRET must be at least 32 characters and not a default value in production"
                )

            if self.debug:
                errors.append("DEBUG must be False in production")

            if not self.allowed_origins:
                errors.append(
                    "ALLOWED_ORIGINS must be set in production (comma-separated list of allowed domains)"
                )

        return errors


@lru_cache
def get_settings() -> Settings:
    """Get cached settings instance."""
    return Settings()


settings = get_settings()
