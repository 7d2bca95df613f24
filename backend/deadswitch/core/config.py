from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Application settings"""

    model_config = SettingsConfigDict(
        env_file="../.env",
        env_ignore_empty=True,
        extra="ignore",
    )

    PROJECT_NAME: str = "deadswitch"
    PROJECT_VERSION: str = "1.0.0"
    DESCRIPTION: str = "Dead man's switch service"

    DATABASE_URI: str = "sqlite:///./data/deadswitch.db"
    UPLOADS_DIR: str = "./data/uploads"

    # Endpoints
    API_V1_STR: str = "/api/v1"
    BASE_URL: str = "http://localhost:5173"

    # Redis
    REDIS_URL: str = "redis://localhost:6379/0"

    SESSION_COOKIE_NAME: str = "sessionId"
    SESSION_TIMEOUT_MINUTES: int = 60 * 12
    SESSION_ID_LENGTH: int = 32
    REDIS_SESSION_PREFIX: str = "session:"

    # CORS Settings
    ALLOWED_ORIGINS: str = "http://localhost:5173"
    ALLOW_CREDENTIALS: bool = True
    ALLOW_METHODS: list[str] = ["GET", "POST", "PUT", "DELETE", "OPTIONS"]
    ALLOW_HEADERS: list[str] = ["*"]

    # Escrow key: second decryption factor held outside the database
    ESCROW_KEY: str = ""
    ESCROW_KEY_FILE: str = ""
    ESCROW_SECRET_PATH: str = "/run/secrets/encryption_key"

    # Optional master password override; disables the stored hash
    MASTER_PASSWORD: str = ""

    # Logging
    LOG_LEVEL: str = "INFO"
    LOG_FILE: str = ""

    # Sweep
    SWEEP_ENABLED: bool = True
    SWEEP_INTERVAL_SECONDS: int = 60
    SWEEP_WORKERS: int = 4

    # Dispatch
    DISPATCH_TIMEOUT_SECONDS: float = 10.0
    DISPATCH_MAX_RETRIES: int = 3
    DISPATCH_RETRY_BASE_DELAY: float = 0.5
    DELIVERY_MAX_ATTEMPTS: int = 5
    DELIVERY_LEASE_MINUTES: int = 15
    WEBHOOK_ALLOWLIST_HOSTS: str = ""

    # Validation limits
    MIN_TRIGGER_MINUTES: int = 1
    MAX_TRIGGER_MINUTES: int = 525600
    MAX_CONTENT_LENGTH: int = 50000
    MAX_REMINDERS: int = 10
    MAX_FILE_SIZE: int = 10 * 1024 * 1024
    MAX_TOTAL_ATTACHMENT_SIZE: int = 25 * 1024 * 1024
    MAX_ATTACHMENTS: int = 5
    MIN_PASSWORD_LENGTH: int = 8
    MAX_PASSWORD_LENGTH: int = 128


settings = Settings()
