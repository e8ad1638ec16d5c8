"""
주가 이력 리포지토리 - 최신/시점/기간 조회와 시세 추가
"""

from datetime import datetime
from decimal import Decimal
from typing import List, Optional

from sqlalchemy import desc
from sqlalchemy.orm import Session

from stockrewards.models.price_history import StockPriceHistory
from stockrewards.repositories.base import BaseRepository
from stockrewards.schemas.price import PricePoint, PriceSource
from stockrewards.utils.timezone_utils import ensure_utc


class PriceRepository(BaseRepository[StockPriceHistory, PricePoint]):
    def __init__(self, db: Session):
        super().__init__(StockPriceHistory, PricePoint, db)

    def _to_schema(self, model_instance: StockPriceHistory) -> Optional[PricePoint]:
        if model_instance is None:
            return None
        return PricePoint(
            symbol=model_instance.stock_symbol,
            price=model_instance.price,
            observed_at=model_instance.fetched_at,
            source=PriceSource.HISTORY,
        )

    def get_latest(self, symbol: str) -> Optional[PricePoint]:
        """가장 최근에 저장된 시세"""
        instance = (
            self.db.query(self.model_class)
            .filter(self.model_class.stock_symbol == symbol)
            .order_by(desc(self.model_class.fetched_at), desc(self.model_class.id))
            .first()
        )
        return self._to_schema(instance)

    def get_at_or_before(self, symbol: str, as_of: datetime) -> Optional[PricePoint]:
        """as_of 시각 이전(포함) 가장 최근 시세"""
        instance = (
            self.db.query(self.model_class)
            .filter(
                self.model_class.stock_symbol == symbol,
                self.model_class.fetched_at <= ensure_utc(as_of),
            )
            .order_by(desc(self.model_class.fetched_at), desc(self.model_class.id))
            .first()
        )
        return self._to_schema(instance)

    def get_between(
        self,
        symbol: str,
        start: datetime,
        end: datetime,
        limit: Optional[int] = None,
    ) -> List[PricePoint]:
        """[start, end] 구간 시세 (시간 오름차순)"""
        query = (
            self.db.query(self.model_class)
            .filter(
                self.model_class.stock_symbol == symbol,
                self.model_class.fetched_at >= ensure_utc(start),
                self.model_class.fetched_at <= ensure_utc(end),
            )
            .order_by(self.model_class.fetched_at, self.model_class.id)
        )
        if limit:
            query = query.limit(limit)
        return self._to_schemas(query.all())

    def insert_quote(
        self, symbol: str, price: Decimal, fetched_at: datetime, commit: bool = False
    ) -> PricePoint:
        return self.create(
            commit=commit,
            stock_symbol=symbol,
            price=price,
            fetched_at=ensure_utc(fetched_at),
        )
