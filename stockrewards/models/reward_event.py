"""
리워드 이벤트 데이터 모델

사용자에게 지급된 주식 리워드(소수점 수량)를 기록하는 감사(Audit) 테이블입니다.
레코드는 물리적으로 삭제되지 않으며, 기업 행위(분할/합병/상장폐지) 처리 시
상태와 조정 메타데이터만 변경됩니다.
"""

import enum
import uuid
from datetime import datetime
from decimal import Decimal
from typing import Optional

from sqlalchemy import (
    CheckConstraint,
    DateTime,
    Enum,
    ForeignKey,
    Index,
    Numeric,
    String,
    Text,
    Uuid,
)
from sqlalchemy.orm import Mapped, mapped_column

from stockrewards.models.base import BaseModel


class RewardStatus(str, enum.Enum):
    ACTIVE = "ACTIVE"
    ADJUSTED = "ADJUSTED"  # 기업 행위로 조정됨
    CANCELLED = "CANCELLED"
    REFUNDED = "REFUNDED"


class AdjustmentReason(str, enum.Enum):
    STOCK_SPLIT = "STOCK_SPLIT"
    BONUS_ISSUE = "BONUS_ISSUE"
    MERGER = "MERGER"
    DELISTING = "DELISTING"
    MANUAL_ADJUSTMENT = "MANUAL_ADJUSTMENT"
    REFUND = "REFUND"


# 원본 레코드가 이 사유로 조정되어도 보유 수량에는 계속 포함됨 (델타 레코드가 추가됨)
NON_SUPERSEDING_REASONS = (AdjustmentReason.STOCK_SPLIT, AdjustmentReason.BONUS_ISSUE)


def is_holding_record(
    status: RewardStatus,
    adjustment_reason: Optional[AdjustmentReason],
    parent_reward_id: Optional[uuid.UUID],
) -> bool:
    """보유 수량 합산 대상 여부

    ACTIVE 레코드, 파생(델타/합병) 레코드, 분할/무상증자로만 조정된 원본이 포함됩니다.
    합병/상장폐지로 대체된 원본과 취소/환불 레코드는 제외됩니다.
    """
    if status == RewardStatus.ACTIVE:
        return True
    if status != RewardStatus.ADJUSTED:
        return False
    if parent_reward_id is not None:
        return True
    return adjustment_reason in NON_SUPERSEDING_REASONS


class RewardEvent(BaseModel):
    """
    리워드 이벤트 테이블

    원칙:
    1. 멱등성(Idempotent): idempotency_key는 시스템 전체에서 유니크
    2. 불변성(Immutable): 수량과 종목은 생성 후 변경되지 않음
    3. 파생 레코드: 분할/합병 조정은 parent_reward_id로 원본을 참조하는 새 레코드로 기록
    """

    __tablename__ = "reward_events"
    __table_args__ = (
        CheckConstraint("quantity >= 0", name="ck_reward_events_quantity_non_negative"),
        Index("ix_reward_events_symbol_status_ts", "stock_symbol", "status", "timestamp"),
    )

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    user_id: Mapped[str] = mapped_column(String(64), nullable=False, index=True)
    stock_symbol: Mapped[str] = mapped_column(String(32), nullable=False)
    quantity: Mapped[Decimal] = mapped_column(Numeric(20, 6), nullable=False)
    timestamp: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, index=True
    )
    notes: Mapped[Optional[str]] = mapped_column(Text, nullable=True)

    # 중복 처리 방지용 고유 키 (DB 유니크 제약으로 보장)
    idempotency_key: Mapped[str] = mapped_column(
        String(255), nullable=False, unique=True
    )

    status: Mapped[RewardStatus] = mapped_column(
        Enum(RewardStatus, name="reward_status"),
        default=RewardStatus.ACTIVE,
        nullable=False,
        index=True,
    )
    adjustment_reason: Mapped[Optional[AdjustmentReason]] = mapped_column(
        Enum(AdjustmentReason, name="adjustment_reason"), nullable=True
    )
    parent_reward_id: Mapped[Optional[uuid.UUID]] = mapped_column(
        Uuid, ForeignKey("reward_events.id"), nullable=True, index=True
    )
    original_quantity: Mapped[Optional[Decimal]] = mapped_column(
        Numeric(20, 6), nullable=True
    )

    def __repr__(self):
        return f"<RewardEvent(id='{self.id}', user='{self.user_id}', symbol='{self.stock_symbol}', quantity={self.quantity}, status={self.status})>"

    @property
    def counts_toward_holding(self) -> bool:
        return is_holding_record(
            self.status, self.adjustment_reason, self.parent_reward_id
        )
