from functools import lru_cache
from typing import Optional

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    model_config = SettingsConfigDict(env_file='.env', env_file_encoding='utf-8', extra='ignore', case_sensitive=False)

    ENVIRONMENT: str = 'development'
    HOST: str = '0.0.0.0'
    PORT: int = 8000

    OPENAI_API_KEY: Optional[str] = None
    OPENAI_MODEL: str = 'gpt-4o-mini'
    OPENAI_EMBED_MODEL: str = 'text-embedding-3-small'
    OPENAI_TIMEOUT: float = Field(30.0, gt=0)
    OPENAI_TEMPERATURE: float = 0.2
    OPENAI_MAX_TOKENS: int = 2000
    OPENAI_RETRY_ATTEMPTS: int = Field(4, ge=1)
    OPENAI_RETRY_BASE_DELAY: float = Field(0.5, ge=0)
    OPENAI_RETRY_MAX_WAIT: float = Field(10.0, ge=0)

    CHUNK_SIZE: int = Field(520, gt=0)
    CHUNK_OVERLAP: int = Field(80, ge=0)
    EMBED_BATCH_SIZE: int = Field(64, gt=0)

    DATABASE_PATH: str = 'studybuddy.db'
    DEFAULT_USER_ID: str = 'local-user'
    EXPLANATION_TTL_DAYS: int = 7


@lru_cache(maxsize=1)
def get_settings() -> Settings:
    return Settings()
