from typing import Optional

from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    model_config = SettingsConfigDict(
        env_prefix="",
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    # Environment
    app_env: str = "dev"  # dev|prod

    # State store
    database_url: str = "sqlite:///./latch_gateway.db"
    device_node_path: str = "devices"

    # OAuth (authorization server side, the platform is our client)
    oauth_client_id: Optional[str] = None
    oauth_client_secret: Optional[str] = None
    default_user_id: str = "default-user"
    token_expires_in: int = 3600
    # Off by default: codes and tokens live until deleted.
    oauth_enforce_expiry: bool = False
    oauth_code_ttl_s: int = 600

    # Device identity reported to the platform
    device_external_id: str = "latch-01"
    device_friendly_name: str = "Smart Latch"
    device_manufacturer: str = "LatchGateway"
    device_model: str = "relay-pir-latch"
    device_handler_type: str = "c2c-motion-switch"

    # HTTP / CORS
    cors_allow_origins: str = "*"  # comma-separated or "*"

    # Server
    app_name: str = "LatchGateway"
    host: str = "0.0.0.0"
    port: int = 3000
    log_level: str = "INFO"


settings = Settings()
