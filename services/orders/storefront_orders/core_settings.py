from enum import Enum
from functools import lru_cache
from typing import Optional

from pydantic_settings import BaseSettings, SettingsConfigDict


class StockPolicy(str, Enum):
    """How the checkout transaction treats the stock floor.

    STRICT decrements only while stock covers the quantity and aborts the
    whole order otherwise. ALLOW_OVERSELL decrements unconditionally and lets
    two racing checkouts push a variant below zero.
    """
    STRICT = "strict"
    ALLOW_OVERSELL = "allow_oversell"


class Settings(BaseSettings):
    POSTGRES_HOST: str = "postgres"
    POSTGRES_PORT: int = 5432
    POSTGRES_DB: str = "storefront"
    POSTGRES_USER: str = "storefront"
    POSTGRES_PASSWORD: str = "storefront"
    DATABASE_URL: Optional[str] = None

    JWT_SECRET: str = "change-me"
    JWT_ALG: str = "HS256"

    ORDER_NUMBER_PREFIX: str = "TF"
    ORDER_NUMBER_MAX_ATTEMPTS: int = 5
    STOCK_POLICY: StockPolicy = StockPolicy.STRICT
    ORDERS_PAGE_SIZE: int = 20
    ORDERS_MAX_PAGE_SIZE: int = 100

    SERVICE_VERSION: str = "1.0.0"
    LOG_LEVEL: str = "INFO"
    RUN_MIGRATIONS: bool = False

    model_config = SettingsConfigDict(env_file=".env")

    @property
    def database_url(self) -> str:
        if self.DATABASE_URL:
            return self.DATABASE_URL
        return (
            f"postgresql+psycopg2://{self.POSTGRES_USER}:{self.POSTGRES_PASSWORD}"
            f"@{self.POSTGRES_HOST}:{self.POSTGRES_PORT}/{self.POSTGRES_DB}"
        )


@lru_cache
def get_settings() -> Settings:
    return Settings()
