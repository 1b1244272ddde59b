from __future__ import annotations

import threading
from collections import OrderedDict

from price_board.schemas.quote import CacheEntry, PriceQuote


class QuoteCache:
    """Last-good quote per symbol, guarded by a single lock.

    Unbounded by default. With ``max_entries`` set, the least recently
    touched symbol is evicted once the bound is exceeded.
    """

    def __init__(self, max_entries: int | None = None) -> None:
        self._rows: OrderedDict[str, CacheEntry] = OrderedDict()
        self._lock = threading.Lock()
        self.max_entries = max_entries or None
        self.evictions = 0

    @staticmethod
    def _key(symbol: str) -> str:
        return str(symbol).strip().upper()

    def get(self, symbol: str) -> CacheEntry | None:
        key = self._key(symbol)
        with self._lock:
            entry = self._rows.get(key)
            if entry is None:
                return None
            if self.max_entries:
                self._rows.move_to_end(key)
            return entry.model_copy(deep=True)

    def put(self, symbol: str, quote: PriceQuote, fetched_at: float) -> None:
        if quote.error:
            raise ValueError(f"refusing to cache error quote for {symbol}")
        key = self._key(symbol)
        entry = CacheEntry(
            quote=quote.model_copy(update={"fetched_at": fetched_at, "stale": False}, deep=True),
            fetched_at=fetched_at,
        )
        with self._lock:
            self._rows[key] = entry
            self._rows.move_to_end(key)
            if self.max_entries:
                while len(self._rows) > self.max_entries:
                    self._rows.popitem(last=False)
                    self.evictions += 1

    @staticmethod
    def is_fresh(entry: CacheEntry, now: float, ttl_sec: float) -> bool:
        return now - entry.fetched_at < ttl_sec

    def symbols(self) -> list[str]:
        with self._lock:
            return list(self._rows.keys())

    def clear(self) -> None:
        with self._lock:
            self._rows.clear()

    def __len__(self) -> int:
        with self._lock:
            return len(self._rows)
