import threading
import time
import unittest

from price_board.errors import InvalidSymbolError
from price_board.schemas.quote import PriceQuote
from price_board.services.quote_aggregator import FETCH_FAILED, QuoteAggregator
from price_board.services.quote_cache import QuoteCache


class StubPriceClient:
    def __init__(self, prices: dict[str, float], failing: set[str] | None = None) -> None:
        self.prices = dict(prices)
        self.failing = set(failing or set())
        self.calls: list[str] = []
        self._lock = threading.Lock()

    def get_price(self, symbol: str) -> dict:
        with self._lock:
            self.calls.append(symbol)
        if symbol in self.failing:
            raise TimeoutError(f"timeout:{symbol}")
        return {"symbol": symbol, "price": self.prices[symbol], "ts": 1700000000000}

    def calls_for(self, symbol: str) -> int:
        return self.calls.count(symbol)


class SlowPriceClient(StubPriceClient):
    def __init__(self, prices: dict[str, float], delay_sec: float) -> None:
        super().__init__(prices)
        self.delay_sec = delay_sec

    def get_price(self, symbol: str) -> dict:
        time.sleep(self.delay_sec)
        return super().get_price(symbol)


def _aggregator(client, ttl_sec: float = 30, cache: QuoteCache | None = None) -> QuoteAggregator:
    return QuoteAggregator(
        quote_cache=cache or QuoteCache(),
        price_client=client,
        ttl_sec=ttl_sec,
        max_workers=4,
        clock=lambda: 0.0,
    )


class QuoteAggregatorTest(unittest.TestCase):
    def test_fresh_cache_issues_no_upstream_calls(self):
        client = StubPriceClient({"BTC": 50000.0})
        service = _aggregator(client)

        service.resolve(["BTC"], now=0)
        quotes = service.resolve(["BTC"], now=29)

        self.assertEqual(client.calls_for("BTC"), 1)
        self.assertEqual(quotes[0].price, 50000.0)
        self.assertFalse(quotes[0].stale)
        self.assertEqual(service.metrics()["cache_hits"], 1)

    def test_symbols_are_upper_cased_for_cache_and_upstream(self):
        client = StubPriceClient({"ETH": 3000.0})
        service = _aggregator(client)

        first = service.resolve([" eth "], now=0)
        second = service.resolve(["ETH"], now=1)

        self.assertEqual(first[0].symbol, "ETH")
        self.assertEqual(second[0].symbol, "ETH")
        self.assertEqual(client.calls, ["ETH"])

    def test_upstream_failure_falls_back_to_stale_cached_quote(self):
        client = StubPriceClient({"X": 10.0})
        service = _aggregator(client)
        service.resolve(["X"], now=0)

        client.failing.add("X")
        quotes = service.resolve(["X"], now=100)

        self.assertEqual(quotes[0].price, 10.0)
        self.assertEqual(quotes[0].fetched_at, 0)
        self.assertIsNone(quotes[0].error)
        self.assertTrue(quotes[0].stale)
        self.assertEqual(service.metrics()["stale_fallbacks"], 1)
        self.assertEqual(service.quote_cache.get("X").fetched_at, 0)

    def test_failure_without_cache_returns_error_quote_and_is_not_cached(self):
        client = StubPriceClient({"X": 10.0}, failing={"X"})
        service = _aggregator(client)

        failed = service.resolve(["X"], now=5)

        self.assertEqual(failed[0].price, 0.0)
        self.assertEqual(failed[0].error, FETCH_FAILED)
        self.assertEqual(failed[0].fetched_at, 5)
        self.assertIsNone(service.quote_cache.get("X"))

        client.failing.clear()
        recovered = service.resolve(["X"], now=6)

        self.assertEqual(client.calls_for("X"), 2)
        self.assertEqual(recovered[0].price, 10.0)
        self.assertIsNone(recovered[0].error)

    def test_order_preserved_with_duplicates(self):
        client = StubPriceClient({"ETH": 3000.0, "BTC": 50000.0})
        service = _aggregator(client)
        service.resolve(["ETH", "BTC"], now=0)

        quotes = service.resolve(["ETH", "BTC", "ETH"], now=1)

        self.assertEqual([q.symbol for q in quotes], ["ETH", "BTC", "ETH"])
        self.assertEqual(quotes[0], quotes[2])

    def test_one_failing_symbol_does_not_block_batch(self):
        client = StubPriceClient({"BTC": 1.0, "ETH": 2.0, "AR": 3.0, "BAD": 0.0}, failing={"BAD"})
        service = _aggregator(client)

        quotes = service.resolve(["BTC", "BAD", "ETH", "AR"], now=0)

        self.assertEqual(len(quotes), 4)
        self.assertEqual([q.price for q in quotes], [1.0, 0.0, 2.0, 3.0])
        self.assertEqual([q.error is None for q in quotes], [True, False, True, True])
        self.assertEqual(service.metrics()["batch_error_count"], 1)

    def test_sequential_refreshes_keep_latest_value(self):
        client = StubPriceClient({"BTC": 50000.0})
        service = _aggregator(client, ttl_sec=30)
        service.resolve(["BTC"], now=0)

        client.prices["BTC"] = 51000.0
        service.resolve(["BTC"], now=31)

        entry = service.quote_cache.get("BTC")
        self.assertEqual(entry.quote.price, 51000.0)
        self.assertEqual(entry.fetched_at, 31)

    def test_end_to_end_ttl_scenario(self):
        client = StubPriceClient({"BTC": 50000.0})
        service = _aggregator(client, ttl_sec=30)

        at0 = service.resolve(["BTC"], now=0)[0]
        self.assertEqual(at0.price, 50000.0)

        at10 = service.resolve(["BTC"], now=10)[0]
        self.assertEqual(at10.price, 50000.0)
        self.assertEqual(client.calls_for("BTC"), 1)

        client.failing.add("BTC")
        at40_failed = service.resolve(["BTC"], now=40)[0]
        self.assertEqual(client.calls_for("BTC"), 2)
        self.assertEqual(at40_failed.price, 50000.0)
        self.assertEqual(at40_failed.fetched_at, 0)

        client.failing.clear()
        client.prices["BTC"] = 51000.0
        at40_ok = service.resolve(["BTC"], now=40)[0]
        self.assertEqual(at40_ok.price, 51000.0)
        self.assertEqual(at40_ok.fetched_at, 40)
        self.assertFalse(at40_ok.stale)

    def test_optional_fields_absent_stay_none(self):
        class PartialClient:
            def get_price(self, symbol: str) -> dict:
                return {"symbol": symbol, "price": 5.0, "volume_24h": 0}

        service = _aggregator(PartialClient())

        quote = service.resolve(["AR"], now=0)[0]

        self.assertIsNone(quote.change_24h)
        self.assertEqual(quote.volume_24h, 0.0)
        self.assertIsNone(quote.market_cap)
        self.assertIsNone(quote.oracle_ts)

    def test_malformed_payload_counts_as_failure(self):
        class NoPriceClient:
            def get_price(self, symbol: str) -> dict:
                return {"symbol": symbol}

        service = _aggregator(NoPriceClient())

        quote = service.resolve(["BTC"], now=0)[0]

        self.assertEqual(quote.error, FETCH_FAILED)
        self.assertEqual(service.metrics()["upstream_failures"], 1)

    def test_invalid_oracle_price_is_a_failure_and_not_cached(self):
        for bad in (float("nan"), float("inf"), -1.0):
            with self.subTest(price=bad):
                client = StubPriceClient({"BTC": 1.0, "BAD": bad})
                service = _aggregator(client)

                quotes = service.resolve(["BTC", "BAD"], now=0)

                self.assertIsNone(quotes[0].error)
                self.assertEqual(quotes[1].price, 0.0)
                self.assertEqual(quotes[1].error, FETCH_FAILED)
                self.assertIsNone(service.quote_cache.get("BAD"))

    def test_invalid_oracle_price_serves_last_good_quote(self):
        client = StubPriceClient({"BTC": 50000.0})
        service = _aggregator(client)
        service.resolve(["BTC"], now=0)

        client.prices["BTC"] = float("nan")
        quote = service.resolve(["BTC"], now=60)[0]

        self.assertEqual(quote.price, 50000.0)
        self.assertEqual(quote.fetched_at, 0)
        self.assertTrue(quote.stale)
        self.assertEqual(service.quote_cache.get("BTC").quote.price, 50000.0)

    def test_empty_symbol_rejected_before_dispatch(self):
        client = StubPriceClient({"BTC": 1.0})
        service = _aggregator(client)

        with self.assertRaises(InvalidSymbolError):
            service.resolve(["BTC", "  "])
        self.assertEqual(client.calls, [])

    def test_empty_batch_returns_empty_list(self):
        service = _aggregator(StubPriceClient({}))
        self.assertEqual(service.resolve([]), [])

    def test_symbols_fetched_concurrently(self):
        client = SlowPriceClient({"A": 1.0, "B": 2.0, "C": 3.0, "D": 4.0}, delay_sec=0.2)
        service = _aggregator(client)

        started = time.monotonic()
        quotes = service.resolve(["A", "B", "C", "D"], now=0)
        elapsed = time.monotonic() - started

        self.assertEqual([q.price for q in quotes], [1.0, 2.0, 3.0, 4.0])
        self.assertLess(elapsed, 0.6)

    def test_resolve_one_uses_clock_when_now_omitted(self):
        client = StubPriceClient({"BTC": 1.0})
        service = QuoteAggregator(
            quote_cache=QuoteCache(),
            price_client=client,
            clock=lambda: 1234.0,
        )

        quote = service.resolve_one("btc")

        self.assertIsInstance(quote, PriceQuote)
        self.assertEqual(quote.fetched_at, 1234.0)


if __name__ == "__main__":
    unittest.main()
