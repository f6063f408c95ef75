from pydantic_settings import BaseSettings, SettingsConfigDict
from dotenv import load_dotenv

load_dotenv()


class Settings(BaseSettings):
    # Application settings
    app_name: str = "Social Relay"
    app_version: str = "1.0.0"
    debug: bool = False
    environment: str = "development"

    # Database settings
    database_url: str = "sqlite+aiosqlite:///./relay.db"

    # CORS settings
    allowed_origins: list[str] = ["http://localhost:3000", "http://localhost:5173"]

    # Web Push (VAPID) settings
    vapid_public_key: str | None = None
    vapid_private_key: str | None = None
    vapid_subject: str = "mailto:admin@localhost"
    push_ttl_seconds: int = 86400
    push_timeout_seconds: float = 10.0

    # Expo push settings (mobile tokens)
    expo_push_url: str = "https://exp.host/--/api/v2/push/send"
    expo_access_token: str | None = None

    # Hub settings
    hub_send_queue_size: int = 100
    hub_send_timeout_seconds: float = 5.0
    hub_heartbeat_timeout_seconds: int = 120
    hub_cleanup_interval_seconds: int = 60
    hub_ping_interval_seconds: float = 30.0

    # Client channel settings
    reconnect_base_delay_ms: int = 1000
    reconnect_max_delay_ms: int = 30000
    reconnect_max_attempts: int = 5
    connect_timeout_seconds: float = 10.0
    poll_interval_seconds: float = 3.0

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore"
    )


settings = Settings()
