from datetime import datetime
from decimal import Decimal
from typing import Annotated, Dict, Literal, Optional, Union
from uuid import UUID

from pydantic import BaseModel, Field, model_validator

from stockrewards.models.ledger_entry import EntryType, LedgerAccount, LedgerEntryStatus
from stockrewards.models.reward_event import AdjustmentReason


class StockPayload(BaseModel):
    """포트폴리오 계정 라인 - 종목과 수량"""

    kind: Literal["STOCK"] = "STOCK"
    stock_symbol: str
    quantity: Decimal = Field(..., ge=0)


class CashPayload(BaseModel):
    """현금/비용 계정 라인 - INR 금액 (소수점 4자리)"""

    kind: Literal["CASH"] = "CASH"
    inr_amount: Decimal = Field(..., ge=0)


LinePayload = Annotated[Union[StockPayload, CashPayload], Field(discriminator="kind")]


class LedgerLineDraft(BaseModel):
    """기록 전 원장 라인"""

    user_id: str
    account: LedgerAccount
    entry_type: EntryType
    payload: LinePayload
    description: Optional[str] = None
    adjustment_reason: Optional[AdjustmentReason] = None
    parent_entry_id: Optional[UUID] = None

    @model_validator(mode="after")
    def _payload_matches_account(self):
        is_portfolio = self.account == LedgerAccount.USER_PORTFOLIO
        if is_portfolio != isinstance(self.payload, StockPayload):
            raise ValueError(
                f"{self.account.value} line requires a "
                f"{'stock' if is_portfolio else 'cash'} payload"
            )
        return self


class LedgerLine(BaseModel):
    """기록된 원장 라인"""

    id: UUID
    transaction_id: UUID
    user_id: str
    account: LedgerAccount
    entry_type: EntryType
    payload: LinePayload
    description: Optional[str] = None
    status: LedgerEntryStatus = LedgerEntryStatus.COMPLETED
    adjustment_reason: Optional[AdjustmentReason] = None
    parent_entry_id: Optional[UUID] = None
    created_at: Optional[datetime] = None

    @property
    def signed_amount(self) -> Decimal:
        """차변(+)/대변(-) 부호가 적용된 금액. 주식 라인은 0"""
        if not isinstance(self.payload, CashPayload):
            return Decimal("0")
        amount = self.payload.inr_amount
        return amount if self.entry_type == EntryType.DEBIT else -amount

    @property
    def signed_quantity(self) -> Decimal:
        """포트폴리오 기준 부호 (대변=입고 +, 차변=출고 -)"""
        if not isinstance(self.payload, StockPayload):
            return Decimal("0")
        quantity = self.payload.quantity
        return quantity if self.entry_type == EntryType.CREDIT else -quantity


class TransactionBreakdown(BaseModel):
    """리워드 거래 금액 및 수수료 내역"""

    price: Decimal = Field(..., description="적용 주가")
    inr_value: Decimal = Field(..., description="주식 가치 (수량 x 주가)")
    brokerage: Decimal = Field(..., description="중개 수수료")
    stt: Decimal = Field(..., description="증권거래세")
    gst: Decimal = Field(..., description="중개 수수료에 대한 GST")
    stamp_duty: Decimal = Field(Decimal("0"), description="인지세")
    sebi_fees: Decimal = Field(Decimal("0"), description="SEBI 수수료")
    exchange_fees: Decimal = Field(Decimal("0"), description="거래소 수수료")
    total_fees: Decimal = Field(..., description="수수료 합계")


class TransactionValidationResult(BaseModel):
    """거래 대차 검증 결과"""

    transaction_id: UUID
    balanced: bool = Field(..., description="금액 라인 합계가 허용 오차 이내인지 여부")
    monetary_sum: Decimal = Field(..., description="부호 적용 금액 합계")
    line_count: int = Field(..., description="라인 수")
    stock_net: Dict[str, Decimal] = Field(
        default_factory=dict, description="종목별 순 수량 (참고용, 검증 대상 아님)"
    )
