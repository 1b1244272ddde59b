from __future__ import annotations

import math
import threading
import time
from concurrent.futures import ThreadPoolExecutor
from typing import Callable

from price_board.errors import InvalidSymbolError
from price_board.schemas.quote import PriceQuote
from price_board.services.quote_cache import QuoteCache

FETCH_FAILED = "Failed to fetch price"


def _optional_float(value) -> float | None:
    if value is None or value == "":
        return None
    parsed = float(value)
    return parsed if math.isfinite(parsed) else None


class QuoteAggregator:
    """Cache-first batch quote resolver with stale fallback on oracle errors."""

    def __init__(
        self,
        *,
        quote_cache: QuoteCache,
        price_client,
        ttl_sec: float = 30,
        max_workers: int = 8,
        clock: Callable[[], float] | None = None,
    ) -> None:
        self.quote_cache = quote_cache
        self.price_client = price_client
        self.ttl_sec = ttl_sec
        self.max_workers = max_workers
        self.clock = clock or time.time
        self._metrics_lock = threading.Lock()

        self.cache_hits = 0
        self.upstream_calls = 0
        self.upstream_failures = 0
        self.stale_fallbacks = 0
        self.error_quotes = 0
        self.last_batch_target = 0
        self.last_batch_errors = 0

    def _inc(self, name: str) -> None:
        with self._metrics_lock:
            setattr(self, name, getattr(self, name) + 1)

    @staticmethod
    def normalize_symbol(symbol: str) -> str:
        value = str(symbol or "").strip().upper()
        if not value:
            raise InvalidSymbolError("SYMBOL_REQUIRED")
        return value

    @staticmethod
    def build_quote(symbol: str, payload: dict, fetched_at: float) -> PriceQuote:
        ts = payload.get("ts")
        return PriceQuote(
            symbol=symbol,
            price=float(payload["price"]),
            fetched_at=fetched_at,
            oracle_ts=int(ts) if ts is not None else None,
            change_24h=_optional_float(payload.get("change_24h")),
            volume_24h=_optional_float(payload.get("volume_24h")),
            market_cap=_optional_float(payload.get("market_cap")),
        )

    def _resolve_symbol(self, symbol: str, now: float) -> PriceQuote:
        entry = self.quote_cache.get(symbol)
        if entry is not None and self.quote_cache.is_fresh(entry, now, self.ttl_sec):
            self._inc("cache_hits")
            return entry.quote

        self._inc("upstream_calls")
        try:
            payload = self.price_client.get_price(symbol)
            quote = self.build_quote(symbol, payload, now)
        except Exception as exc:
            self._inc("upstream_failures")
            print(f"[PRICE][upstream_error] symbol={symbol} error={exc!r}", flush=True)
            if entry is not None:
                self._inc("stale_fallbacks")
                age = now - entry.fetched_at
                print(f"[PRICE][stale_fallback] symbol={symbol} age_sec={age:.1f}", flush=True)
                return entry.quote.model_copy(update={"stale": True})
            self._inc("error_quotes")
            return PriceQuote(symbol=symbol, price=0.0, fetched_at=now, error=FETCH_FAILED)

        self.quote_cache.put(symbol, quote, now)
        return quote

    def resolve_one(self, symbol: str, now: float | None = None) -> PriceQuote:
        return self.resolve([symbol], now=now)[0]

    def resolve(self, symbols: list[str], now: float | None = None) -> list[PriceQuote]:
        normalized = [self.normalize_symbol(s) for s in symbols]
        if not normalized:
            return []
        ref = self.clock() if now is None else now

        workers = max(1, min(self.max_workers, len(normalized)))
        with ThreadPoolExecutor(max_workers=workers, thread_name_prefix="price-fanout") as pool:
            out = list(pool.map(lambda s: self._resolve_symbol(s, ref), normalized))

        errors = sum(1 for q in out if q.error)
        stale = sum(1 for q in out if q.stale)
        with self._metrics_lock:
            self.last_batch_target = len(normalized)
            self.last_batch_errors = errors

        print(
            "[PRICE][batch_resolve] "
            f"target_count={len(normalized)} stale_count={stale} error_count={errors}",
            flush=True,
        )
        return out

    def metrics(self) -> dict[str, int | float]:
        with self._metrics_lock:
            return {
                "cache_hits": self.cache_hits,
                "upstream_calls": self.upstream_calls,
                "upstream_failures": self.upstream_failures,
                "stale_fallbacks": self.stale_fallbacks,
                "error_quotes": self.error_quotes,
                "batch_target_count": self.last_batch_target,
                "batch_error_count": self.last_batch_errors,
                "cached_symbols": len(self.quote_cache),
                "cache_evictions": self.quote_cache.evictions,
                "ttl_sec": self.ttl_sec,
            }
