from pydantic_settings import BaseSettings
from pydantic import ConfigDict
from typing import List


class Settings(BaseSettings):
    """Application settings."""

    model_config = ConfigDict(
        env_file=".env",
        case_sensitive=True,
        extra="allow"  # Allow extra fields from .env
    )

    # Application
    APP_NAME: str = "Group Chat API"
    APP_VERSION: str = "1.0.0"
    DEBUG: bool = False
    ENVIRONMENT: str = "development"  # development, staging, production

    # API
    API_PREFIX: str = "/api"
    HOST: str = "0.0.0.0"
    PORT: int = 8001

    # Store backend: "mongodb" for deployments, "memory" for local runs and tests
    STORE_BACKEND: str = "mongodb"

    # MongoDB
    MONGODB_URL: str = "mongodb://localhost:27017"
    DATABASE_NAME: str = "groupchat_db"

    # Upper bound for any single store call (seconds)
    STORE_TIMEOUT_SECONDS: float = 15.0

    # Redis (optional - caches hidden word lists)
    REDIS_URL: str = ""  # Example: "redis://localhost:6379/0"
    REDIS_TIMEOUT_SECONDS: float = 2.0
    HIDDEN_WORDS_CACHE_TTL: int = 300

    # Per-member index fan-out
    INDEX_WRITE_ATTEMPTS: int = 3
    INDEX_WRITE_BACKOFF_SECONDS: float = 0.2

    # Limits
    GROUP_NAME_MAX_LENGTH: int = 100
    MESSAGE_MAX_LENGTH: int = 10000
    HIDDEN_WORD_MAX_LENGTH: int = 50
    DEFAULT_SENDER_NAME: str = "Unknown User"

    # Rate limiting
    RATE_LIMIT_ENABLED: bool = True
    RATE_LIMIT_DEFAULT: str = "100/minute"
    RATE_LIMIT_SEND_MESSAGE: str = "20/minute"
    RATE_LIMIT_CREATE_GROUP: str = "10/minute"

    # Logging
    LOG_LEVEL: str = "INFO"  # DEBUG, INFO, WARNING, ERROR, CRITICAL

    # CORS
    CORS_ORIGINS: List[str] = ["http://localhost:3000", "http://localhost:8000"]
    CORS_ALLOW_CREDENTIALS: bool = True
    CORS_ALLOW_METHODS: List[str] = ["*"]
    CORS_ALLOW_HEADERS: List[str] = ["*"]

    # API Documentation (Swagger UI / OpenAPI)
    ENABLE_DOCS: bool = True
    PROJECT_NAME: str = "Group Chat API"
    API_VERSION: str = "1.0.0"


settings = Settings()
