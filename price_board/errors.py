class PriceBoardError(Exception):
    """Base error for the price board service."""


class InvalidSymbolError(PriceBoardError, ValueError):
    pass


class UpstreamError(PriceBoardError):
    """Oracle answered, but not with something usable."""


class HistoryFetchError(PriceBoardError):
    def __init__(self, symbol: str, reason: str) -> None:
        super().__init__(f"history fetch failed for {symbol}: {reason}")
        self.symbol = symbol
        self.reason = reason
