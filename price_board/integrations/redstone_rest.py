from __future__ import annotations

import math
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional

import requests

from price_board.errors import UpstreamError


class RedstoneRestClient:
    """Minimal RedStone oracle REST client for latest and historical prices."""

    _DEFAULT_BASE_URL = "https://api.redstone.finance"

    # oracle field name -> quote field name
    _OPTIONAL_FIELDS = {
        "change24h": "change_24h",
        "volume24h": "volume_24h",
        "marketCap": "market_cap",
    }

    def __init__(
        self,
        provider: str = "redstone",
        base_url: Optional[str] = None,
        session: Optional[Any] = None,
        timeout_sec: float = 5,
    ) -> None:
        if not provider:
            raise ValueError("provider must not be empty")

        self.provider = provider
        self.base_url = (base_url or self._DEFAULT_BASE_URL).rstrip("/")
        self.session = session or requests
        self.timeout_sec = timeout_sec

    @staticmethod
    def _to_float(value: Any) -> Optional[float]:
        try:
            if value is None or value == "":
                return None
            parsed = float(value)
        except (TypeError, ValueError):
            return None
        return parsed if math.isfinite(parsed) else None

    @staticmethod
    def _iso_to_ms(value: str) -> int:
        parsed = datetime.fromisoformat(value.replace("Z", "+00:00"))
        if parsed.tzinfo is None:
            parsed = parsed.replace(tzinfo=timezone.utc)
        return int(parsed.timestamp() * 1000)

    def _get(self, params: Dict[str, Any]) -> Any:
        response = self.session.get(
            f"{self.base_url}/prices",
            params=params,
            timeout=self.timeout_sec,
        )
        response.raise_for_status()
        return response.json()

    def get_price(self, symbol: str) -> Dict[str, Any]:
        payload = self._get({"symbol": symbol, "provider": self.provider, "limit": 1})

        row = payload
        if isinstance(payload, list):
            row = payload[0] if payload else None
        elif isinstance(payload, dict) and symbol in payload:
            row = payload[symbol]
        if not isinstance(row, dict):
            raise UpstreamError(f"no price reported for {symbol}")

        price = self._to_float(row.get("value"))
        if price is None:
            raise UpstreamError(f"missing value in price for {symbol}")
        if not math.isfinite(price) or price < 0:
            raise UpstreamError(f"invalid price {price!r} for {symbol}")

        out: Dict[str, Any] = {
            "symbol": symbol,
            "price": price,
            "ts": int(row["timestamp"]) if row.get("timestamp") is not None else None,
        }
        for src, dst in self._OPTIONAL_FIELDS.items():
            value = self._to_float(row.get(src))
            if value is not None:
                out[dst] = value
        return out

    def get_history(
        self,
        symbol: str,
        start_iso: str,
        end_iso: str,
        interval_sec: int,
    ) -> List[Dict[str, Any]]:
        payload = self._get(
            {
                "symbol": symbol,
                "provider": self.provider,
                "fromTimestamp": self._iso_to_ms(start_iso),
                "toTimestamp": self._iso_to_ms(end_iso),
                "interval": int(interval_sec) * 1000,
            }
        )
        if not isinstance(payload, list):
            raise UpstreamError(f"unexpected history payload for {symbol}")

        points: List[Dict[str, Any]] = []
        for row in payload:
            value = self._to_float(row.get("value")) if isinstance(row, dict) else None
            if value is None or row.get("timestamp") is None:
                continue
            points.append({"timestamp": int(row["timestamp"]), "value": value})
        points.sort(key=lambda p: p["timestamp"])
        return points
