from pydantic_settings import BaseSettings, SettingsConfigDict
from typing import List

class Settings(BaseSettings):
    # Environment
    ENVIRONMENT: str = "development"
    DEBUG: bool = True
    LOG_LEVEL: str = "INFO"

    # API Settings
    PROJECT_NAME: str = "SplitLedger API"
    API_V1_STR: str = "/api/v1"
    PROJECT_VERSION: str = "0.1.0"
    DESCRIPTION: str = "Group balances, debt simplification and settlements"

    # Server
    HOST: str = "0.0.0.0"
    PORT: int = 8000

    # MongoDB
    MONGODB_URL: str = "mongodb://localhost:27017"
    DATABASE_NAME: str = "splitledger"
    # Multi-document transactions need a replica set or sharded cluster
    MONGODB_TRANSACTIONS: bool = True

    # CORS
    CORS_ORIGINS: List[str] = ["http://localhost:3000", "http://localhost:8000"]

    # JWT
    SECRET_KEY: str = "change-this-in-production"
    ALGORITHM: str = "HS256"
    ACCESS_TOKEN_EXPIRE_MINUTES: int = 30

    # Exchange rates
    RATE_PROVIDER: str = "static"  # static | http
    RATE_API_URL: str = "http://data.fixer.io/api"
    RATE_API_KEY: str = ""
    RATE_CACHE_TTL_SECONDS: int = 3600
    RATE_CACHE_MAX_ENTRIES: int = 512
    RATE_FETCH_TIMEOUT_SECONDS: float = 5.0

    # Settlements
    SETTLEMENT_PAGE_LIMIT: int = 20

    model_config = SettingsConfigDict(
        case_sensitive=True,
        env_file=".env"
    )

settings = Settings()
