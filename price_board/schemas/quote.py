from datetime import datetime

from pydantic import BaseModel, ConfigDict, Field, field_validator


class PriceQuote(BaseModel):
    symbol: str
    price: float = Field(ge=0, allow_inf_nan=False)
    fetched_at: float
    oracle_ts: int | None = None
    change_24h: float | None = None
    volume_24h: float | None = None
    market_cap: float | None = None
    error: str | None = None
    stale: bool = False

    @field_validator("symbol")
    @classmethod
    def normalize_symbol(cls, value: str) -> str:
        return value.strip().upper()


class CacheEntry(BaseModel):
    quote: PriceQuote
    fetched_at: float


class PriceBatchResponse(BaseModel):
    prices: list[PriceQuote]
    timestamp: int


class PricePoint(BaseModel):
    timestamp: int
    value: float


class PriceHistory(BaseModel):
    symbol: str
    start: datetime
    end: datetime
    interval_sec: int
    points: list[PricePoint]


class HistoryRequest(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    symbol: str | None = None
    start_date: datetime | None = Field(default=None, alias="startDate")
    end_date: datetime | None = Field(default=None, alias="endDate")
    interval: int = 3600
