from __future__ import annotations

import time
from contextlib import asynccontextmanager

from fastapi import FastAPI

from price_board.api.routes import router
from price_board.config.settings import Settings, get_settings
from price_board.integrations.redstone_rest import RedstoneRestClient
from price_board.services.price_history import PriceHistoryService
from price_board.services.quote_aggregator import QuoteAggregator
from price_board.services.quote_cache import QuoteCache


class _DemoPriceClient:
    _PRICES = {'BTC': 50000.0, 'ETH': 3000.0, 'AR': 10.0}

    def get_price(self, symbol: str) -> dict:
        return {
            'symbol': symbol,
            'price': self._PRICES.get(symbol, 1.0),
            'ts': int(time.time() * 1000),
        }

    def get_history(self, symbol: str, start_iso: str, end_iso: str, interval_sec: int) -> list[dict]:
        start_ms = RedstoneRestClient._iso_to_ms(start_iso)
        end_ms = RedstoneRestClient._iso_to_ms(end_iso)
        base = self._PRICES.get(symbol, 1.0)
        return [{'timestamp': ts, 'value': base} for ts in range(start_ms, end_ms + 1, interval_sec * 1000)]


def build_price_client(settings: Settings):
    if settings.PRICE_ORACLE == 'demo':
        return _DemoPriceClient()
    return RedstoneRestClient(
        provider=settings.REDSTONE_PROVIDER,
        base_url=settings.REDSTONE_BASE_URL,
        timeout_sec=settings.REDSTONE_TIMEOUT_SEC,
    )


def build_quote_aggregator(settings: Settings, price_client) -> QuoteAggregator:
    return QuoteAggregator(
        quote_cache=QuoteCache(max_entries=settings.PRICE_CACHE_MAX_SYMBOLS),
        price_client=price_client,
        ttl_sec=settings.PRICE_CACHE_TTL_SEC,
        max_workers=settings.PRICE_FANOUT_WORKERS,
    )


@asynccontextmanager
async def lifespan(app: FastAPI):
    settings = app.state.get_settings()
    print(
        f"[APP][startup] oracle={settings.PRICE_ORACLE} ttl_sec={settings.PRICE_CACHE_TTL_SEC} "
        f"max_symbols={settings.PRICE_CACHE_MAX_SYMBOLS} workers={settings.PRICE_FANOUT_WORKERS}",
        flush=True,
    )
    try:
        yield
    finally:
        cached = len(app.state.quote_aggregator.quote_cache)
        print(f"[APP][shutdown] cached_symbols={cached}", flush=True)


app = FastAPI(title="Price Board", version="0.1.0", lifespan=lifespan)
app.include_router(router, prefix="/v1")

app.state.get_settings = get_settings
_price_client = build_price_client(get_settings())
app.state.quote_aggregator = build_quote_aggregator(get_settings(), _price_client)
app.state.price_history_service = PriceHistoryService(price_client=_price_client)
