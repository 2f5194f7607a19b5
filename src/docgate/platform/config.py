"""
docgate Configuration Management

Uses Pydantic Settings for type-safe configuration from environment variables.
"""

from functools import lru_cache

from pydantic_settings import BaseSettings


class Settings(BaseSettings):
    """Application configuration loaded from environment variables."""

    # =========================================================================
    # APPLICATION
    # =========================================================================
    APP_NAME: str = "docgate"
    APP_ENV: str = "development"
    DEBUG: bool = True
    LOG_LEVEL: str = "info"
    VERSION: str = "0.1.0"

    # =========================================================================
    # API SERVER
    # =========================================================================
    API_HOST: str = "0.0.0.0"
    API_PORT: int = 8082

    # =========================================================================
    # ENGINE (chosen once at startup: "elasticsearch" or "mongodb")
    # =========================================================================
    ENGINE: str = "elasticsearch"

    # Known collections as "name:id_field" pairs, comma separated
    COLLECTIONS: str = "content:uuid"
    # Store identifiers as binary UUIDs (document database only)
    BINARY_IDS: bool = False

    # =========================================================================
    # ELASTICSEARCH (Search Index)
    # =========================================================================
    ELASTICSEARCH_URL: str = "http://localhost:9200"
    ELASTICSEARCH_INDEX_PREFIX: str = "store-"
    ELASTICSEARCH_REFRESH: str = "false"
    ELASTICSEARCH_TIMEOUT: float = 10.0
    ELASTICSEARCH_MAX_CONNECTIONS: int = 30

    # =========================================================================
    # MONGODB (Document Database)
    # =========================================================================
    MONGO_URL: str = "mongodb://localhost:27017"
    MONGO_DATABASE: str = "store"

    # =========================================================================
    # PIPELINES
    # =========================================================================
    BULK_WORKERS: int = 8
    BULK_QUEUE_SIZE: int = 16
    SEARCH_DEFAULT_MAX: int = 20

    # =========================================================================
    # OBSERVABILITY
    # =========================================================================
    METRICS_ENABLED: bool = True

    class Config:
        env_file = ".env"
        env_file_encoding = "utf-8"
        case_sensitive = True
        extra = "ignore"


@lru_cache()
def get_settings() -> Settings:
    """Get cached settings instance."""
    return Settings()


# Singleton instance for easy import
settings = get_settings()
