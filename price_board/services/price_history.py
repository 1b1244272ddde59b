from __future__ import annotations

import time
from datetime import datetime, timedelta, timezone
from typing import Callable

from price_board.errors import HistoryFetchError, InvalidSymbolError
from price_board.schemas.quote import PriceHistory, PricePoint

DEFAULT_WINDOW = timedelta(hours=24)
DEFAULT_INTERVAL_SEC = 3600


def _as_utc(value: datetime) -> datetime:
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


def to_iso(value: datetime) -> str:
    return _as_utc(value).isoformat().replace("+00:00", "Z")


class PriceHistoryService:
    """Pass-through range queries against the oracle. Nothing is cached."""

    def __init__(
        self,
        *,
        price_client,
        clock: Callable[[], float] | None = None,
        default_window: timedelta = DEFAULT_WINDOW,
    ) -> None:
        self.price_client = price_client
        self.clock = clock or time.time
        self.default_window = default_window
        self.requests = 0
        self.failures = 0

    def fetch(
        self,
        symbol: str,
        start: datetime | None = None,
        end: datetime | None = None,
        interval_sec: int = DEFAULT_INTERVAL_SEC,
    ) -> PriceHistory:
        sym = str(symbol or "").strip().upper()
        if not sym:
            raise InvalidSymbolError("SYMBOL_REQUIRED")
        if interval_sec <= 0:
            raise ValueError("INVALID_INTERVAL")

        end_at = _as_utc(end) if end is not None else datetime.fromtimestamp(self.clock(), tz=timezone.utc)
        start_at = _as_utc(start) if start is not None else end_at - self.default_window

        self.requests += 1
        try:
            rows = self.price_client.get_history(sym, to_iso(start_at), to_iso(end_at), interval_sec)
            points = [PricePoint(timestamp=int(r["timestamp"]), value=float(r["value"])) for r in rows]
        except Exception as exc:
            self.failures += 1
            print(f"[PRICE][history_error] symbol={sym} error={exc!r}", flush=True)
            raise HistoryFetchError(sym, str(exc)) from exc

        return PriceHistory(
            symbol=sym,
            start=start_at,
            end=end_at,
            interval_sec=interval_sec,
            points=points,
        )
