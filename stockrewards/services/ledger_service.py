import logging
import uuid
from decimal import ROUND_HALF_UP, Decimal
from typing import Dict, List, Optional, Tuple

from sqlalchemy.orm import Session

from stockrewards.config import Settings, settings as default_settings
from stockrewards.models.ledger_entry import EntryType, LedgerAccount
from stockrewards.models.reward_event import AdjustmentReason
from stockrewards.repositories.ledger_repository import LedgerRepository
from stockrewards.schemas.ledger import (
    CashPayload,
    LedgerLine,
    LedgerLineDraft,
    StockPayload,
    TransactionBreakdown,
)
from stockrewards.schemas.reward import RewardEventRecord

logger = logging.getLogger(__name__)

FOUR_DP = Decimal("0.0001")
SIX_DP = Decimal("0.000001")

# 수수료 항목 → 비용 계정
FEE_ACCOUNTS: Dict[str, LedgerAccount] = {
    "brokerage": LedgerAccount.BROKERAGE_EXPENSE,
    "stt": LedgerAccount.STT_EXPENSE,
    "gst": LedgerAccount.GST_EXPENSE,
    "stamp_duty": LedgerAccount.STAMP_DUTY_EXPENSE,
    "sebi_fees": LedgerAccount.SEBI_FEES_EXPENSE,
    "exchange_fees": LedgerAccount.EXCHANGE_FEES_EXPENSE,
}

# 금액이 0이어도 항상 기록하는 수수료
MANDATORY_FEES = ("brokerage", "stt", "gst")


def to_amount(value: Decimal) -> Decimal:
    return Decimal(value).quantize(FOUR_DP, rounding=ROUND_HALF_UP)


def to_quantity(value: Decimal) -> Decimal:
    return Decimal(value).quantize(SIX_DP, rounding=ROUND_HALF_UP)


def stock_line(
    user_id: str,
    entry_type: EntryType,
    stock_symbol: str,
    quantity: Decimal,
    description: str,
    adjustment_reason: Optional[AdjustmentReason] = None,
) -> LedgerLineDraft:
    return LedgerLineDraft(
        user_id=user_id,
        account=LedgerAccount.USER_PORTFOLIO,
        entry_type=entry_type,
        payload=StockPayload(stock_symbol=stock_symbol, quantity=to_quantity(quantity)),
        description=description,
        adjustment_reason=adjustment_reason,
    )


def cash_line(
    user_id: str,
    account: LedgerAccount,
    entry_type: EntryType,
    amount: Decimal,
    description: str,
    adjustment_reason: Optional[AdjustmentReason] = None,
) -> LedgerLineDraft:
    return LedgerLineDraft(
        user_id=user_id,
        account=account,
        entry_type=entry_type,
        payload=CashPayload(inr_amount=to_amount(amount)),
        description=description,
        adjustment_reason=adjustment_reason,
    )


class LedgerService:
    """복식부기 원장 기록 서비스

    부호 규칙: 차변(DEBIT) +, 대변(CREDIT) -.
    리워드 거래:
      COMPANY_CASH       DEBIT   inr_value
      *_EXPENSE          DEBIT   수수료별 금액
      BROKER_SETTLEMENT  CREDIT  inr_value + total_fees
      USER_PORTFOLIO     CREDIT  수량 (주식 라인)
    모든 금액을 소수점 4자리로 맞춘 뒤 합산하므로 거래는 정확히 0으로 맞아떨어집니다.
    """

    def __init__(self, db: Session, settings: Optional[Settings] = None):
        self.db = db
        self.settings = settings or default_settings
        self.ledger_repo = LedgerRepository(db)

    def compute_breakdown(self, quantity: Decimal, price: Decimal) -> TransactionBreakdown:
        """수량 x 주가 기준 금액 및 수수료 계산"""
        inr_value = to_amount(quantity * price)
        brokerage = to_amount(inr_value * self.settings.BROKERAGE_RATE)
        stt = to_amount(inr_value * self.settings.STT_RATE)
        gst = to_amount(brokerage * self.settings.GST_RATE)
        stamp_duty = to_amount(inr_value * self.settings.STAMP_DUTY_RATE)
        sebi_fees = to_amount(inr_value * self.settings.SEBI_FEE_RATE)
        exchange_fees = to_amount(inr_value * self.settings.EXCHANGE_FEE_RATE)

        return TransactionBreakdown(
            price=to_amount(price),
            inr_value=inr_value,
            brokerage=brokerage,
            stt=stt,
            gst=gst,
            stamp_duty=stamp_duty,
            sebi_fees=sebi_fees,
            exchange_fees=exchange_fees,
            total_fees=brokerage + stt + gst + stamp_duty + sebi_fees + exchange_fees,
        )

    def build_reward_lines(
        self, reward: RewardEventRecord, breakdown: TransactionBreakdown
    ) -> List[LedgerLineDraft]:
        symbol = reward.stock_symbol
        drafts = [
            cash_line(
                reward.user_id,
                LedgerAccount.COMPANY_CASH,
                EntryType.DEBIT,
                breakdown.inr_value,
                f"Stock purchase for {reward.quantity} {symbol}",
            )
        ]
        for fee_name, account in FEE_ACCOUNTS.items():
            amount = getattr(breakdown, fee_name)
            if fee_name not in MANDATORY_FEES and amount <= 0:
                continue
            drafts.append(
                cash_line(
                    reward.user_id,
                    account,
                    EntryType.DEBIT,
                    amount,
                    f"{fee_name} fee for {symbol} reward",
                )
            )
        drafts.append(
            cash_line(
                reward.user_id,
                LedgerAccount.BROKER_SETTLEMENT,
                EntryType.CREDIT,
                breakdown.inr_value + breakdown.total_fees,
                f"Broker settlement for {symbol} purchase",
            )
        )
        drafts.append(
            stock_line(
                reward.user_id,
                EntryType.CREDIT,
                symbol,
                reward.quantity,
                f"Reward of {reward.quantity} {symbol}",
            )
        )
        return drafts

    def post_reward_transaction(
        self, reward: RewardEventRecord, price: Decimal
    ) -> Tuple[TransactionBreakdown, List[LedgerLine]]:
        """리워드 거래 기록 (거래 ID = 리워드 ID, 커밋은 호출자 책임)"""
        breakdown = self.compute_breakdown(reward.quantity, price)
        lines = self.post_lines(reward.id, self.build_reward_lines(reward, breakdown))
        logger.info(
            f"Posted reward transaction {reward.id}: {reward.quantity} {reward.stock_symbol} "
            f"@ {breakdown.price}, value {breakdown.inr_value}, fees {breakdown.total_fees}"
        )
        return breakdown, lines

    def post_lines(
        self, transaction_id: uuid.UUID, drafts: List[LedgerLineDraft]
    ) -> List[LedgerLine]:
        """한 거래의 라인 묶음을 기록 (flush만 수행)"""
        return self.ledger_repo.insert_lines(transaction_id, drafts)

    def get_transaction_lines(self, transaction_id: uuid.UUID) -> List[LedgerLine]:
        return self.ledger_repo.get_transaction_lines(transaction_id)

    def breakdown_for_transaction(
        self, transaction_id: uuid.UUID
    ) -> Optional[TransactionBreakdown]:
        """기록된 리워드 거래 라인에서 금액 내역 복원 (리워드 거래가 아니면 None)"""
        lines = self.ledger_repo.get_transaction_lines(transaction_id)
        cash_debit = None
        quantity = None
        fees = {fee_name: Decimal("0") for fee_name in FEE_ACCOUNTS}
        accounts_to_fee = {account: fee_name for fee_name, account in FEE_ACCOUNTS.items()}

        for line in lines:
            if line.account == LedgerAccount.COMPANY_CASH and line.entry_type == EntryType.DEBIT:
                cash_debit = line.payload.inr_amount
            elif line.account == LedgerAccount.USER_PORTFOLIO and line.entry_type == EntryType.CREDIT:
                quantity = line.payload.quantity
            elif line.account in accounts_to_fee:
                fees[accounts_to_fee[line.account]] = line.payload.inr_amount

        if cash_debit is None or not quantity:
            return None

        return TransactionBreakdown(
            price=to_amount(cash_debit / quantity),
            inr_value=to_amount(cash_debit),
            total_fees=to_amount(sum(fees.values(), Decimal("0"))),
            **{name: to_amount(amount) for name, amount in fees.items()},
        )

    def portfolio_balances(self, user_id: str) -> Dict[str, Decimal]:
        """원장 기준 사용자 종목별 보유 수량"""
        return self.ledger_repo.portfolio_balances(user_id)
