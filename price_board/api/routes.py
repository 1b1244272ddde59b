import time

from fastapi import APIRouter, HTTPException, Request

from price_board.errors import HistoryFetchError, InvalidSymbolError
from price_board.schemas.quote import HistoryRequest, PriceBatchResponse

router = APIRouter()


def _now_ms() -> int:
    return int(time.time() * 1000)


def _split_symbols(symbol: str | None, symbols: str | None) -> list[str]:
    raw = symbols.split(',') if symbols else [symbol or '']
    return [s.strip() for s in raw if s.strip()]


@router.get('/prices')
def get_prices(request: Request, symbol: str | None = None, symbols: str | None = None):
    req = _split_symbols(symbol, symbols)
    if not req:
        raise HTTPException(status_code=400, detail='SYMBOL_REQUIRED')

    aggregator = request.app.state.quote_aggregator
    try:
        quotes = aggregator.resolve(req)
    except InvalidSymbolError as exc:
        raise HTTPException(status_code=400, detail=str(exc)) from exc
    except Exception as exc:
        print(f"[API][prices_error] symbols={','.join(req)} error={exc!r}", flush=True)
        raise HTTPException(status_code=500, detail='PRICE_FETCH_FAILED') from exc

    return PriceBatchResponse(prices=quotes, timestamp=_now_ms()).model_dump()


@router.get('/prices/historical')
def get_price_history_not_allowed():
    raise HTTPException(status_code=405, detail='METHOD_NOT_ALLOWED', headers={'Allow': 'POST'})


@router.get('/prices/{symbol}')
def get_price(symbol: str, request: Request):
    aggregator = request.app.state.quote_aggregator
    try:
        quote = aggregator.resolve_one(symbol)
    except InvalidSymbolError as exc:
        raise HTTPException(status_code=400, detail=str(exc)) from exc
    except Exception as exc:
        print(f"[API][price_error] symbol={symbol} error={exc!r}", flush=True)
        raise HTTPException(status_code=500, detail='PRICE_FETCH_FAILED') from exc
    return quote.model_dump()


@router.post('/prices/historical')
def get_price_history(req: HistoryRequest, request: Request):
    if not req.symbol or not req.symbol.strip():
        raise HTTPException(status_code=400, detail='SYMBOL_REQUIRED')
    if req.interval <= 0:
        raise HTTPException(status_code=400, detail='INVALID_INTERVAL')

    service = request.app.state.price_history_service
    try:
        history = service.fetch(
            req.symbol,
            start=req.start_date,
            end=req.end_date,
            interval_sec=req.interval,
        )
    except HistoryFetchError as exc:
        raise HTTPException(status_code=502, detail='HISTORY_FETCH_FAILED') from exc

    return {
        'symbol': history.symbol,
        'data': [p.model_dump() for p in history.points],
        'start': history.start.isoformat(),
        'end': history.end.isoformat(),
        'interval': history.interval_sec,
        'timestamp': _now_ms(),
    }


@router.get('/metrics/price')
def price_metrics(request: Request):
    metrics = request.app.state.quote_aggregator.metrics()
    history = request.app.state.price_history_service
    metrics.update(
        {
            'history_requests': history.requests,
            'history_failures': history.failures,
        }
    )
    return metrics
