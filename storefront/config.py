from __future__ import annotations
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    model_config = SettingsConfigDict(env_file=".env", extra="ignore")

    DATABASE_URL: str = "mongodb://localhost:27017"
    DATABASE_NAME: str = "storefront"

    JWT_SECRET: str = "change-me"
    JWT_ALGORITHM: str = "HS256"

    RECOMMENDER_URL: str = "http://127.0.0.1:5000/recommend"
    RECOMMENDER_TIMEOUT: float = 5.0

    LOG_LEVEL: str = "INFO"
    LOG_FORMAT: str = "text"

    PORT: int = 8000


settings = Settings()


def get_settings() -> Settings:
    return settings
