"""
주가 이력 데이터 모델

가격 오라클이 캐시 미스 때마다 추가하는 시세 관측값을 저장합니다.
레코드는 수정/삭제되지 않으며 특정 시점 가격 조회에 사용됩니다.
"""

from datetime import datetime
from decimal import Decimal

from sqlalchemy import DateTime, Index, Numeric, String
from sqlalchemy.orm import Mapped, mapped_column

from stockrewards.models.base import Base, BigIntegerPK


class StockPriceHistory(Base):
    __tablename__ = "stock_price_history"
    __table_args__ = (
        # 종목별 최신/시점 조회용 복합 인덱스
        Index("ix_stock_price_history_symbol_fetched_at", "stock_symbol", "fetched_at"),
    )

    id: Mapped[int] = mapped_column(BigIntegerPK, primary_key=True, autoincrement=True)
    stock_symbol: Mapped[str] = mapped_column(String(32), nullable=False, comment="종목 심볼")
    price: Mapped[Decimal] = mapped_column(Numeric(20, 4), nullable=False, comment="관측 가격")
    fetched_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, comment="관측 시각"
    )

    def __repr__(self):
        return f"<StockPriceHistory(symbol='{self.stock_symbol}', price={self.price}, fetched_at='{self.fetched_at}')>"
