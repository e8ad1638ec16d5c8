from __future__ import annotations

import logging
import random
import time
from datetime import datetime
from decimal import ROUND_HALF_UP, Decimal
from typing import Callable, Dict, Optional, Tuple

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from stockrewards.config import Settings, settings as default_settings
from stockrewards.core.exceptions import (
    HistoricalPriceNotFoundError,
    InvalidInputError,
    PriceUnavailableError,
)
from stockrewards.repositories.price_repository import PriceRepository
from stockrewards.schemas.price import PriceHistoryResponse, PricePoint, PriceSource
from stockrewards.utils.timezone_utils import ensure_utc, utc_now

logger = logging.getLogger(__name__)

FOUR_DP = Decimal("0.0001")


class PriceCache:
    """프로세스 공용 시세 캐시

    - 최초 조회 시 채워지고 재시작 시 사라짐 (영속화하지 않음)
    - 만료된 값도 보관하여 조회 실패 시 대체값으로 사용
    - clear()로 테스트 간 격리
    """

    def __init__(
        self,
        ttl_seconds: float = 300.0,
        clock: Callable[[], float] = time.monotonic,
    ):
        self.ttl_seconds = ttl_seconds
        self._clock = clock
        self._entries: Dict[str, Tuple[PricePoint, float]] = {}

    @classmethod
    def from_settings(cls, settings: Settings) -> "PriceCache":
        return cls(ttl_seconds=settings.PRICE_CACHE_TTL_SECONDS)

    def get(self, symbol: str) -> Optional[PricePoint]:
        """TTL 이내의 값만 반환"""
        entry = self._entries.get(symbol)
        if entry is None:
            return None
        point, stored_at = entry
        if self._clock() - stored_at >= self.ttl_seconds:
            return None
        return point

    def get_stale(self, symbol: str) -> Optional[PricePoint]:
        """만료 여부와 관계없이 마지막 값 반환"""
        entry = self._entries.get(symbol)
        return entry[0] if entry else None

    def set(self, point: PricePoint) -> None:
        self._entries[point.symbol] = (point, self._clock())

    def clear(self) -> None:
        self._entries.clear()

    def __len__(self) -> int:
        return len(self._entries)


class PriceService:
    """시세 오라클 - 캐시, 변동성 시뮬레이션, 이력 저장, 장애 시 대체값"""

    def __init__(
        self,
        db: Session,
        cache: PriceCache,
        settings: Optional[Settings] = None,
        rng: Optional[random.Random] = None,
    ):
        self.db = db
        self.cache = cache
        self.settings = settings or default_settings
        self.rng = rng or random.Random()
        self.price_repo = PriceRepository(db)

    @staticmethod
    def normalize_symbol(symbol: Optional[str]) -> str:
        normalized = (symbol or "").strip().upper()
        if not normalized:
            raise InvalidInputError("stock symbol is required")
        return normalized

    def _perturb(self, base: Decimal, volatility: Decimal) -> Decimal:
        """base 가격에 ±volatility 균등 분포 변동을 적용 (하한 MIN_PRICE, 소수점 4자리)"""
        change = Decimal(str(self.rng.uniform(-float(volatility), float(volatility))))
        price = base * (Decimal("1") + change)
        price = max(price, self.settings.MIN_PRICE)
        return price.quantize(FOUR_DP, rounding=ROUND_HALF_UP)

    def _simulate_price(self, symbol: str) -> Decimal:
        latest = self.price_repo.get_latest(symbol)
        if latest is not None:
            return self._perturb(latest.price, self.settings.PRICE_HISTORY_VOLATILITY)

        base = self.settings.BASE_PRICES.get(symbol, self.settings.DEFAULT_BASE_PRICE)
        return self._perturb(Decimal(base), self.settings.PRICE_BASE_VOLATILITY)

    def get_latest_price(self, symbol: str, commit: bool = True) -> PricePoint:
        """현재가 조회

        우선순위: TTL 이내 캐시 → 저장 이력 기반 시뮬레이션(±2%) → 기준가 기반 시뮬레이션(±5%).
        새 시세는 SAVEPOINT 안에서 이력에 저장됩니다. commit=False면 호출자의 트랜잭션에 합류합니다.
        DB 조회/저장이 실패하면 만료된 캐시라도 반환하고, 캐시가 없으면 PriceUnavailableError.
        """
        symbol = self.normalize_symbol(symbol)

        cached = self.cache.get(symbol)
        if cached is not None:
            return cached.model_copy(update={"source": PriceSource.CACHE})

        try:
            price = self._simulate_price(symbol)
            observed_at = utc_now()
            with self.db.begin_nested():
                self.price_repo.insert_quote(symbol, price, observed_at)
            if commit:
                self.db.commit()
        except SQLAlchemyError as e:
            stale = self.cache.get_stale(symbol)
            if stale is not None:
                logger.warning(
                    f"Price lookup failed for {symbol}, serving stale cache {stale.price}: {str(e)}"
                )
                return stale.model_copy(update={"source": PriceSource.STALE_CACHE})
            logger.error(f"Price lookup failed for {symbol} with no cached fallback: {str(e)}")
            raise PriceUnavailableError(symbol, str(e))

        point = PricePoint(
            symbol=symbol,
            price=price,
            observed_at=observed_at,
            source=PriceSource.SIMULATED,
        )
        self.cache.set(point)
        logger.debug(f"Simulated price for {symbol}: {price}")
        return point

    def get_price_for_date(
        self,
        symbol: str,
        as_of: datetime,
        allow_fallback: bool = True,
        commit: bool = True,
    ) -> PricePoint:
        """as_of 시각 이전(포함)의 가장 최근 저장 시세

        이력이 없으면 allow_fallback=True일 때 현재가를 LATEST_FALLBACK 출처로 반환하고,
        False일 때 HistoricalPriceNotFoundError를 발생시킵니다.
        """
        symbol = self.normalize_symbol(symbol)
        as_of = ensure_utc(as_of)

        try:
            historical = self.price_repo.get_at_or_before(symbol, as_of)
        except SQLAlchemyError as e:
            logger.error(f"Historical price lookup failed for {symbol}: {str(e)}")
            raise PriceUnavailableError(symbol, str(e))

        if historical is not None:
            return historical

        if not allow_fallback:
            raise HistoricalPriceNotFoundError(symbol, as_of.isoformat())

        logger.warning(
            f"No historical price for {symbol} at or before {as_of.isoformat()}, using latest price"
        )
        latest = self.get_latest_price(symbol, commit=commit)
        return latest.model_copy(update={"source": PriceSource.LATEST_FALLBACK})

    def get_historical_prices(
        self,
        symbol: str,
        start: datetime,
        end: datetime,
        limit: Optional[int] = None,
    ) -> PriceHistoryResponse:
        """[start, end] 구간 저장 시세 (시간 오름차순)"""
        symbol = self.normalize_symbol(symbol)
        start, end = ensure_utc(start), ensure_utc(end)
        if start > end:
            raise InvalidInputError(
                "start must not be after end",
                details={"start": start.isoformat(), "end": end.isoformat()},
            )

        prices = self.price_repo.get_between(symbol, start, end, limit=limit)
        return PriceHistoryResponse(symbol=symbol, prices=prices, total_count=len(prices))

    def clear_cache(self) -> None:
        self.cache.clear()
        logger.info("Price cache cleared")
