import logging
import uuid
from collections import defaultdict
from decimal import Decimal
from typing import Dict, Optional

from sqlalchemy.orm import Session

from stockrewards.config import Settings, settings as default_settings
from stockrewards.core.exceptions import LedgerImbalanceError
from stockrewards.repositories.ledger_repository import LedgerRepository
from stockrewards.schemas.ledger import StockPayload, TransactionValidationResult

logger = logging.getLogger(__name__)


class ValidationService:
    """거래 대차 검증

    금액 라인(차변 +, 대변 -)의 합이 허용 오차 미만이면 균형으로 판단합니다.
    주식 수량 라인은 검증에 포함하지 않으며, 리포트에 종목별 순 수량을 참고용으로만 제공합니다.
    """

    def __init__(self, db: Session, settings: Optional[Settings] = None):
        self.db = db
        self.settings = settings or default_settings
        self.ledger_repo = LedgerRepository(db)

    def transaction_report(self, transaction_id: uuid.UUID) -> TransactionValidationResult:
        lines = self.ledger_repo.get_transaction_lines(transaction_id)

        monetary_sum = sum((line.signed_amount for line in lines), Decimal("0"))
        stock_net: Dict[str, Decimal] = defaultdict(lambda: Decimal("0"))
        for line in lines:
            if isinstance(line.payload, StockPayload):
                stock_net[line.payload.stock_symbol] += line.signed_quantity

        return TransactionValidationResult(
            transaction_id=transaction_id,
            balanced=abs(monetary_sum) < self.settings.LEDGER_TOLERANCE,
            monetary_sum=monetary_sum,
            line_count=len(lines),
            stock_net=dict(stock_net),
        )

    def validate_transaction(self, transaction_id: uuid.UUID) -> bool:
        """금액 라인 합계가 허용 오차(0.0001) 미만인지 여부"""
        return self.transaction_report(transaction_id).balanced

    def assert_balanced(self, transaction_id: uuid.UUID) -> TransactionValidationResult:
        """커밋 직전 검증 - 불균형이면 LedgerImbalanceError"""
        report = self.transaction_report(transaction_id)
        if not report.balanced:
            logger.error(
                f"Ledger imbalance in transaction {transaction_id}: sum={report.monetary_sum}"
            )
            raise LedgerImbalanceError(str(transaction_id), str(report.monetary_sum))
        return report
