"""
복식부기 원장 데이터 모델

하나의 거래(transaction_id)는 여러 원장 라인으로 구성되며 항상 한 묶음으로 기록됩니다.
포트폴리오 계정 라인은 (종목, 수량)을, 그 외 계정 라인은 INR 금액을 가집니다.
"""

import enum
import uuid
from decimal import Decimal
from typing import Optional

from sqlalchemy import (
    CheckConstraint,
    Enum,
    Numeric,
    String,
    Text,
    UniqueConstraint,
    Uuid,
)
from sqlalchemy.orm import Mapped, mapped_column

from stockrewards.models.base import BaseModel
from stockrewards.models.reward_event import AdjustmentReason


class LedgerAccount(str, enum.Enum):
    USER_PORTFOLIO = "USER_PORTFOLIO"
    COMPANY_CASH = "COMPANY_CASH"
    BROKERAGE_EXPENSE = "BROKERAGE_EXPENSE"
    STT_EXPENSE = "STT_EXPENSE"
    GST_EXPENSE = "GST_EXPENSE"
    STAMP_DUTY_EXPENSE = "STAMP_DUTY_EXPENSE"
    SEBI_FEES_EXPENSE = "SEBI_FEES_EXPENSE"
    EXCHANGE_FEES_EXPENSE = "EXCHANGE_FEES_EXPENSE"
    BROKER_SETTLEMENT = "BROKER_SETTLEMENT"  # 브로커 정산 계정 (매수/청산 대금)


class EntryType(str, enum.Enum):
    DEBIT = "DEBIT"
    CREDIT = "CREDIT"


class LedgerEntryStatus(str, enum.Enum):
    PENDING = "PENDING"
    COMPLETED = "COMPLETED"
    CANCELLED = "CANCELLED"
    ADJUSTED = "ADJUSTED"


class LedgerEntry(BaseModel):
    """
    원장 라인 테이블

    제약:
    - USER_PORTFOLIO 라인은 stock_symbol/quantity만, 나머지 계정은 inr_amount만 가짐
    - 같은 거래 내에서 (계정, 차/대변) 조합은 한 번만 기록됨
      → 결정적 거래 ID로 재기록 시 DB가 중복을 거부 (조정 처리 멱등성)
    """

    __tablename__ = "ledger_entries"
    __table_args__ = (
        UniqueConstraint(
            "transaction_id",
            "account",
            "entry_type",
            name="uq_ledger_entries_transaction_account_side",
        ),
        CheckConstraint(
            "(account = 'USER_PORTFOLIO' AND stock_symbol IS NOT NULL "
            "AND quantity IS NOT NULL AND inr_amount IS NULL) OR "
            "(account <> 'USER_PORTFOLIO' AND inr_amount IS NOT NULL "
            "AND quantity IS NULL)",
            name="ck_ledger_entries_payload",
        ),
        CheckConstraint(
            "quantity IS NULL OR quantity >= 0", name="ck_ledger_entries_quantity"
        ),
        CheckConstraint(
            "inr_amount IS NULL OR inr_amount >= 0", name="ck_ledger_entries_amount"
        ),
    )

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    transaction_id: Mapped[uuid.UUID] = mapped_column(Uuid, nullable=False, index=True)
    user_id: Mapped[str] = mapped_column(String(64), nullable=False, index=True)
    account: Mapped[LedgerAccount] = mapped_column(
        Enum(LedgerAccount, name="ledger_account"), nullable=False, index=True
    )
    entry_type: Mapped[EntryType] = mapped_column(
        Enum(EntryType, name="ledger_entry_type"), nullable=False
    )

    # 포트폴리오 계정 전용
    stock_symbol: Mapped[Optional[str]] = mapped_column(String(32), nullable=True)
    quantity: Mapped[Optional[Decimal]] = mapped_column(Numeric(20, 6), nullable=True)

    # 현금/비용 계정 전용
    inr_amount: Mapped[Optional[Decimal]] = mapped_column(Numeric(20, 4), nullable=True)

    description: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    status: Mapped[LedgerEntryStatus] = mapped_column(
        Enum(LedgerEntryStatus, name="ledger_entry_status"),
        default=LedgerEntryStatus.COMPLETED,
        nullable=False,
        index=True,
    )
    adjustment_reason: Mapped[Optional[AdjustmentReason]] = mapped_column(
        Enum(AdjustmentReason, name="adjustment_reason"), nullable=True
    )
    parent_entry_id: Mapped[Optional[uuid.UUID]] = mapped_column(Uuid, nullable=True)

    def __repr__(self):
        payload = (
            f"{self.stock_symbol} x {self.quantity}"
            if self.account == LedgerAccount.USER_PORTFOLIO
            else f"INR {self.inr_amount}"
        )
        return f"<LedgerEntry(txn='{self.transaction_id}', {self.account.value} {self.entry_type.value} {payload})>"
