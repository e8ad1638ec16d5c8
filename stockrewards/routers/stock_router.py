"""
주가 API 라우터

- GET /stocks/{symbol}/price: 현재가
- GET /stocks/{symbol}/price-at: 특정 시점 가격
- GET /stocks/{symbol}/history: 기간별 저장 시세
"""

from datetime import datetime, timedelta
from typing import Optional

from fastapi import APIRouter, Depends, Path, Query

from stockrewards.deps import get_price_service
from stockrewards.schemas.price import PriceHistoryResponse, PricePoint
from stockrewards.services.price_service import PriceService
from stockrewards.utils.timezone_utils import utc_now

router = APIRouter(prefix="/stocks", tags=["stocks"])


@router.get("/{symbol}/price", response_model=PricePoint)
def get_latest_price(
    symbol: str = Path(..., description="종목 심볼"),
    service: PriceService = Depends(get_price_service),
) -> PricePoint:
    return service.get_latest_price(symbol)


@router.get("/{symbol}/price-at", response_model=PricePoint)
def get_price_at(
    symbol: str = Path(..., description="종목 심볼"),
    as_of: datetime = Query(..., description="기준 시각 (ISO 8601)"),
    allow_fallback: bool = Query(True, description="이력이 없을 때 현재가 사용 여부"),
    service: PriceService = Depends(get_price_service),
) -> PricePoint:
    return service.get_price_for_date(symbol, as_of, allow_fallback=allow_fallback)


@router.get("/{symbol}/history", response_model=PriceHistoryResponse)
def get_price_history(
    symbol: str = Path(..., description="종목 심볼"),
    start: Optional[datetime] = Query(None, description="시작 시각 (기본: 7일 전)"),
    end: Optional[datetime] = Query(None, description="종료 시각 (기본: 현재)"),
    limit: Optional[int] = Query(None, ge=1, le=1000),
    service: PriceService = Depends(get_price_service),
) -> PriceHistoryResponse:
    end = end or utc_now()
    start = start or end - timedelta(days=7)
    return service.get_historical_prices(symbol, start, end, limit=limit)
