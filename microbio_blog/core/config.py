from functools import lru_cache
from typing import List, Optional

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Application settings loaded from environment variables or a .env file."""

    model_config = SettingsConfigDict(env_file=".env", extra="ignore")

    PROJECT_NAME: str = "Microbiology Blog API"
    API_PREFIX: str = "/api/v1"
    LOG_LEVEL: str = "INFO"

    MONGODB_URL: str = "mongodb://localhost:27017"
    MONGODB_DB_NAME: str = "microbio_blog"

    SECRET_KEY: str = "change-me"
    JWT_ALGORITHM: str = "HS256"
    ACCESS_TOKEN_EXPIRE_MINUTES: int = 60 * 24 * 7

    # Cloudinary media host
    CLOUDINARY_CLOUD_NAME: Optional[str] = None
    CLOUDINARY_API_KEY: Optional[str] = None
    CLOUDINARY_API_SECRET: Optional[str] = None
    MEDIA_FOLDER: str = "microbiology-blog"
    MEDIA_TIMEOUT_SECONDS: float = 30.0
    MEDIA_MAX_BYTES: int = Field(default=5 * 1024 * 1024)

    CORS_ORIGINS: List[str] = ["http://localhost:3000"]

    CACHE_ENABLED: bool = True
    CACHE_TTL_SECONDS: int = 300


@lru_cache
def get_settings() -> Settings:
    return Settings()
