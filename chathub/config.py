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
    APP_NAME: str = "Chathub"
    APP_VERSION: str = "1.0.0"
    DEBUG: bool = False
    ENVIRONMENT: str = "development"  # development, staging, production

    # API
    API_PREFIX: str = "/api/chat"
    HOST: str = "0.0.0.0"
    PORT: int = 8001

    # Storage backend for chatrooms and the message ledger: "mongodb" or "memory"
    STORAGE_BACKEND: str = "mongodb"

    # MongoDB
    MONGODB_URL: str = "mongodb://localhost:27017"
    DATABASE_NAME: str = "chathub"

    # Redis (optional - for directory caching)
    REDIS_URL: str = ""  # Example: "redis://localhost:6379/0"

    # ========== External directory (users, groups, attachments, presence) ==========
    # "http" talks to DIRECTORY_API_URL, "memory" keeps everything in process
    DIRECTORY_BACKEND: str = "http"
    DIRECTORY_API_URL: str = "http://directory-api:8000"
    DIRECTORY_API_TOKEN: str = "your-service-token-change-in-production"  # X-Service-Token header
    DIRECTORY_API_TIMEOUT: float = 3.0
    DIRECTORY_CACHE_TTL: int = 300  # Seconds a user/group/attachment lookup stays cached
    DIRECTORY_SEED_FILE: str = ""  # JSON seed for the in-memory directory

    # ========== Bearer token validation (HS256 shared secret) ==========
    JWT_SECRET_KEY: str = "dev_secret_key_change_in_production_min_32_chars_required"
    JWT_ALGORITHM: str = "HS256"

    # Rate limiting
    RATE_LIMIT_ENABLED: bool = True
    RATE_LIMIT_DEFAULT: str = "100/minute"
    RATE_LIMIT_SEND: str = "20/minute"  # Message creation (personal, group, reply, forward)
    RATE_LIMIT_MUTATE: str = "30/minute"  # Edits, deletes, status updates

    # WebSocket fan-out
    WS_OUTBOX_SIZE: int = 256  # Pending events per connection before it is dropped

    # Lifecycle policy
    FORWARD_SOFT_DELETED_ALLOWED: bool = True

    # Logging
    LOG_LEVEL: str = "INFO"  # DEBUG, INFO, WARNING, ERROR, CRITICAL
    LOG_JSON_FORMAT: bool = False  # Set to True in production for structured logging

    # CORS
    CORS_ORIGINS: List[str] = ["http://localhost:3000", "http://localhost:8000"]
    CORS_ALLOW_CREDENTIALS: bool = True
    CORS_ALLOW_METHODS: List[str] = ["*"]
    CORS_ALLOW_HEADERS: List[str] = ["*"]

    # API Documentation (Swagger UI / OpenAPI)
    ENABLE_DOCS: bool = True
    PROJECT_NAME: str = "Chathub - Real-time Chat API"
    API_VERSION: str = "1.0.0"


settings = Settings()
