from fastapi import APIRouter, Depends, Path

from stockrewards.deps import get_portfolio_service
from stockrewards.schemas.portfolio import (
    HistoricalInrResponse,
    PortfolioResponse,
    UserStatsResponse,
)
from stockrewards.services.portfolio_service import PortfolioService

router = APIRouter(prefix="/users", tags=["users"])


@router.get("/{user_id}/stats", response_model=UserStatsResponse)
def get_user_stats(
    user_id: str = Path(..., description="사용자 ID"),
    service: PortfolioService = Depends(get_portfolio_service),
) -> UserStatsResponse:
    """오늘 지급 수량(종목별)과 현재 포트폴리오 평가"""
    return service.user_stats(user_id)


@router.get("/{user_id}/portfolio", response_model=PortfolioResponse)
def get_user_portfolio(
    user_id: str = Path(..., description="사용자 ID"),
    service: PortfolioService = Depends(get_portfolio_service),
) -> PortfolioResponse:
    return service.portfolio(user_id)


@router.get("/{user_id}/historical-inr", response_model=HistoricalInrResponse)
def get_user_historical_inr(
    user_id: str = Path(..., description="사용자 ID"),
    service: PortfolioService = Depends(get_portfolio_service),
) -> HistoricalInrResponse:
    """일자별 지급 리워드 INR 가치 (오늘 제외)"""
    return service.historical_inr(user_id)
