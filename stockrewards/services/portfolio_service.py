import logging
from collections import defaultdict
from datetime import datetime
from decimal import Decimal
from typing import Dict, List, Optional, Tuple

from sqlalchemy.orm import Session

from stockrewards.config import Settings, settings as default_settings
from stockrewards.core.exceptions import PriceUnavailableError
from stockrewards.repositories.ledger_repository import LedgerRepository
from stockrewards.repositories.reward_event_repository import RewardEventRepository
from stockrewards.schemas.portfolio import (
    HistoricalInrPoint,
    HistoricalInrResponse,
    HoldingValuation,
    PortfolioResponse,
    SymbolQuantity,
    TodayRewardsResponse,
    UserStatsResponse,
)
from stockrewards.services.ledger_service import to_amount, to_quantity
from stockrewards.services.price_service import PriceService
from stockrewards.utils.timezone_utils import (
    day_bounds_utc,
    ensure_utc,
    local_today,
    utc_now,
)

logger = logging.getLogger(__name__)


class PortfolioService:
    """사용자 보유 현황/평가 조회 (읽기 전용)

    리워드/원장 레코드를 직접 읽고, 가격은 시세 오라클(PriceService)로만 조회합니다.
    """

    def __init__(
        self,
        db: Session,
        price_service: PriceService,
        settings: Optional[Settings] = None,
    ):
        self.db = db
        self.settings = settings or default_settings
        self.price_service = price_service
        self.reward_repo = RewardEventRepository(db)
        self.ledger_repo = LedgerRepository(db)

    def holdings_from_records(self, user_id: str) -> Dict[str, Decimal]:
        """리워드 레코드 기준 종목별 보유 수량"""
        totals: Dict[str, Decimal] = defaultdict(lambda: Decimal("0"))
        for record in self.reward_repo.find_holding_records(user_id=user_id):
            totals[record.stock_symbol] += record.quantity
        return {
            symbol: to_quantity(quantity)
            for symbol, quantity in sorted(totals.items())
            if to_quantity(quantity) != 0
        }

    def holdings_from_ledger(self, user_id: str) -> Dict[str, Decimal]:
        """원장 포트폴리오 계정 기준 종목별 보유 수량"""
        return self.ledger_repo.portfolio_balances(user_id)

    def _valuate(self, holdings: Dict[str, Decimal]) -> Tuple[List[HoldingValuation], Decimal]:
        details = []
        total = Decimal("0")
        for symbol, shares in holdings.items():
            try:
                quote = self.price_service.get_latest_price(symbol)
            except PriceUnavailableError as e:
                logger.warning(f"Skipping valuation of {symbol}: {e.message}")
                continue
            value = to_amount(shares * quote.price)
            total += value
            details.append(
                HoldingValuation(
                    stock_symbol=symbol,
                    shares=to_quantity(shares),
                    current_price=to_amount(quote.price),
                    current_value=value,
                )
            )
        return details, to_amount(total)

    def todays_rewards(
        self, user_id: str, now: Optional[datetime] = None
    ) -> TodayRewardsResponse:
        """설정 타임존 기준 오늘 지급된 리워드"""
        today = local_today(self.settings.TIMEZONE, now)
        start, end = day_bounds_utc(today, self.settings.TIMEZONE)
        rewards = self.reward_repo.list_by_user(user_id, start=start, end=end)
        return TodayRewardsResponse(
            user_id=user_id, date=today.isoformat(), rewards=rewards
        )

    def portfolio(self, user_id: str) -> PortfolioResponse:
        details, total = self._valuate(self.holdings_from_ledger(user_id))
        return PortfolioResponse(
            user_id=user_id, portfolio=details, total_portfolio_value=total
        )

    def user_stats(self, user_id: str, now: Optional[datetime] = None) -> UserStatsResponse:
        """오늘 지급 수량(종목별) + 현재 포트폴리오 평가"""
        today_rewards = self.todays_rewards(user_id, now)
        today_totals: Dict[str, Decimal] = defaultdict(lambda: Decimal("0"))
        for record in today_rewards.rewards:
            if record.counts_toward_holding:
                today_totals[record.stock_symbol] += record.quantity

        details, total = self._valuate(self.holdings_from_ledger(user_id))
        return UserStatsResponse(
            user_id=user_id,
            today_rewards_by_stock=[
                SymbolQuantity(stock_symbol=symbol, total_shares=to_quantity(quantity))
                for symbol, quantity in sorted(today_totals.items())
            ],
            current_portfolio_value=total,
            portfolio_details=details,
        )

    def historical_inr(
        self, user_id: str, now: Optional[datetime] = None
    ) -> HistoricalInrResponse:
        """일자별(UTC) 지급 리워드의 INR 가치 - 오늘 제외

        각 레코드는 지급 시점 이전의 가장 최근 시세로 평가하며, 시세 이력이 없으면 현재가로 대체합니다.
        """
        today_utc = ensure_utc(now or utc_now()).date()
        daily_totals: Dict[str, Decimal] = defaultdict(lambda: Decimal("0"))
        events = 0

        for record in self.reward_repo.find_holding_records(user_id=user_id):
            record_day = record.timestamp.date()
            if record_day >= today_utc:
                continue
            try:
                quote = self.price_service.get_price_for_date(
                    record.stock_symbol, record.timestamp, allow_fallback=True
                )
            except PriceUnavailableError as e:
                logger.warning(f"Skipping {record.id} in historical INR: {e.message}")
                continue
            daily_totals[record_day.isoformat()] += record.quantity * quote.price
            events += 1

        points = [
            HistoricalInrPoint(date=day, total_inr_value=to_amount(value))
            for day, value in sorted(daily_totals.items())
        ]
        return HistoricalInrResponse(
            user_id=user_id,
            historical_inr_value=points,
            total_events=events,
            message=(
                f"Historical INR value for {len(points)} days"
                if points
                else "No historical data available"
            ),
        )
