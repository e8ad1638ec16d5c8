"""
기업 행위(Corporate Action) 데이터 모델

종목에 예정된 구조적 이벤트(분할, 배당, 합병, 상장폐지, 무상증자)를 저장합니다.
레코드 생성은 외부에서 이루어지며, 이 서비스는 상태 전이만 수행합니다.

상태 전이: ANNOUNCED → PENDING(처리 선점) → PROCESSED | CANCELLED
"""

import enum
from datetime import datetime
from decimal import Decimal
from typing import Optional

from sqlalchemy import DateTime, Enum, Index, Integer, Numeric, String, Text
from sqlalchemy.orm import Mapped, mapped_column

from stockrewards.models.base import BaseModel, BigIntegerPK


class CorporateActionType(str, enum.Enum):
    STOCK_SPLIT = "STOCK_SPLIT"
    STOCK_DIVIDEND = "STOCK_DIVIDEND"
    MERGER = "MERGER"
    DELISTING = "DELISTING"
    BONUS_ISSUE = "BONUS_ISSUE"


class CorporateActionStatus(str, enum.Enum):
    ANNOUNCED = "ANNOUNCED"
    PENDING = "PENDING"
    PROCESSED = "PROCESSED"
    CANCELLED = "CANCELLED"


class StockCorporateAction(BaseModel):
    __tablename__ = "corporate_actions"
    __table_args__ = (
        Index("ix_corporate_actions_symbol_effective", "stock_symbol", "effective_date"),
        Index("ix_corporate_actions_type_status", "action_type", "status"),
    )

    id: Mapped[int] = mapped_column(BigIntegerPK, primary_key=True, autoincrement=True)
    stock_symbol: Mapped[str] = mapped_column(String(32), nullable=False, index=True)
    action_type: Mapped[CorporateActionType] = mapped_column(
        Enum(CorporateActionType, name="corporate_action_type"), nullable=False
    )
    effective_date: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, index=True
    )
    announcement_date: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False
    )

    # 분할/무상증자: from:to (예: 1:2 분할)
    ratio_from: Mapped[Optional[int]] = mapped_column(Integer, nullable=True)
    ratio_to: Mapped[Optional[int]] = mapped_column(Integer, nullable=True)
    # 배당: 주당 배당금
    dividend_amount: Mapped[Optional[Decimal]] = mapped_column(Numeric(20, 4), nullable=True)
    # 합병: 신규 종목과 교환 비율
    new_stock_symbol: Mapped[Optional[str]] = mapped_column(String(32), nullable=True)
    exchange_ratio: Mapped[Optional[Decimal]] = mapped_column(Numeric(20, 6), nullable=True)
    # 상장폐지: 최종 가격
    final_price: Mapped[Optional[Decimal]] = mapped_column(Numeric(20, 4), nullable=True)

    status: Mapped[CorporateActionStatus] = mapped_column(
        Enum(CorporateActionStatus, name="corporate_action_status"),
        default=CorporateActionStatus.ANNOUNCED,
        nullable=False,
        index=True,
    )
    description: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    # PENDING 선점 시각 (시간 초과 선점 회수용)
    claimed_at: Mapped[Optional[datetime]] = mapped_column(
        DateTime(timezone=True), nullable=True
    )
    processed_at: Mapped[Optional[datetime]] = mapped_column(
        DateTime(timezone=True), nullable=True
    )

    def __repr__(self):
        return f"<StockCorporateAction(id={self.id}, symbol='{self.stock_symbol}', type={self.action_type}, status={self.status})>"
