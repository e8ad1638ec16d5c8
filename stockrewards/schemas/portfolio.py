from decimal import Decimal
from typing import List

from pydantic import BaseModel, Field

from stockrewards.schemas.reward import RewardEventRecord


class HoldingValuation(BaseModel):
    """종목별 보유 평가"""

    stock_symbol: str = Field(..., description="종목 심볼")
    shares: Decimal = Field(..., description="보유 수량 (소수점 6자리)")
    current_price: Decimal = Field(..., description="현재가 (소수점 4자리)")
    current_value: Decimal = Field(..., description="평가 금액 (소수점 4자리)")


class PortfolioResponse(BaseModel):
    user_id: str
    portfolio: List[HoldingValuation]
    total_portfolio_value: Decimal


class SymbolQuantity(BaseModel):
    stock_symbol: str
    total_shares: Decimal


class TodayRewardsResponse(BaseModel):
    """오늘 지급된 리워드"""

    user_id: str
    date: str = Field(..., description="기준일 (YYYY-MM-DD, 설정 타임존)")
    rewards: List[RewardEventRecord]


class UserStatsResponse(BaseModel):
    user_id: str
    today_rewards_by_stock: List[SymbolQuantity]
    current_portfolio_value: Decimal
    portfolio_details: List[HoldingValuation]


class HistoricalInrPoint(BaseModel):
    date: str = Field(..., description="일자 (YYYY-MM-DD, UTC)")
    total_inr_value: Decimal


class HistoricalInrResponse(BaseModel):
    user_id: str
    historical_inr_value: List[HistoricalInrPoint]
    total_events: int
    message: str
