import os
from functools import lru_cache
from typing import Literal

from pydantic import BaseModel, Field


class Settings(BaseModel):
    PRICE_ORACLE: Literal["redstone", "demo"]
    REDSTONE_PROVIDER: str
    REDSTONE_BASE_URL: str
    REDSTONE_TIMEOUT_SEC: float = Field(gt=0)
    PRICE_CACHE_TTL_SEC: float = Field(gt=0)
    PRICE_CACHE_MAX_SYMBOLS: int = Field(ge=0)
    PRICE_FANOUT_WORKERS: int = Field(ge=1)

    @classmethod
    def from_env(cls) -> "Settings":
        return cls.model_validate(
            {
                "PRICE_ORACLE": os.getenv("PRICE_ORACLE", "redstone"),
                "REDSTONE_PROVIDER": os.getenv("REDSTONE_PROVIDER", "redstone"),
                "REDSTONE_BASE_URL": os.getenv("REDSTONE_BASE_URL", "https://api.redstone.finance"),
                "REDSTONE_TIMEOUT_SEC": os.getenv("REDSTONE_TIMEOUT_SEC", "5"),
                "PRICE_CACHE_TTL_SEC": os.getenv("PRICE_CACHE_TTL_SEC", "30"),
                "PRICE_CACHE_MAX_SYMBOLS": os.getenv("PRICE_CACHE_MAX_SYMBOLS", "0"),
                "PRICE_FANOUT_WORKERS": os.getenv("PRICE_FANOUT_WORKERS", "8"),
            }
        )


@lru_cache
def get_settings() -> Settings:
    return Settings.from_env()
