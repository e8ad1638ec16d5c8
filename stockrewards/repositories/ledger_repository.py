"""
원장 리포지토리

거래 단위(transaction_id)로 원장 라인을 기록/조회합니다.
(transaction_id, account, entry_type) 유니크 제약으로 같은 거래의 재기록은 IntegrityError가 됩니다.
"""

import uuid
from collections import defaultdict
from decimal import Decimal
from typing import Dict, List, Optional

from sqlalchemy.orm import Session

from stockrewards.models.ledger_entry import (
    LedgerAccount,
    LedgerEntry as LedgerEntryModel,
)
from stockrewards.repositories.base import BaseRepository
from stockrewards.schemas.ledger import (
    CashPayload,
    LedgerLine,
    LedgerLineDraft,
    StockPayload,
)

SIX_DP = Decimal("0.000001")


class LedgerRepository(BaseRepository[LedgerEntryModel, LedgerLine]):
    def __init__(self, db: Session):
        super().__init__(LedgerEntryModel, LedgerLine, db)

    def _to_schema(self, model_instance: LedgerEntryModel) -> Optional[LedgerLine]:
        """컬럼 기반 라인을 payload 유니온 스키마로 변환"""
        if model_instance is None:
            return None

        if model_instance.account == LedgerAccount.USER_PORTFOLIO:
            payload = StockPayload(
                stock_symbol=model_instance.stock_symbol,
                quantity=model_instance.quantity,
            )
        else:
            payload = CashPayload(inr_amount=model_instance.inr_amount)

        return LedgerLine(
            id=model_instance.id,
            transaction_id=model_instance.transaction_id,
            user_id=model_instance.user_id,
            account=model_instance.account,
            entry_type=model_instance.entry_type,
            payload=payload,
            description=model_instance.description,
            status=model_instance.status,
            adjustment_reason=model_instance.adjustment_reason,
            parent_entry_id=model_instance.parent_entry_id,
            created_at=model_instance.created_at,
        )

    def insert_lines(
        self, transaction_id: uuid.UUID, drafts: List[LedgerLineDraft]
    ) -> List[LedgerLine]:
        """한 거래의 라인을 한 번에 추가 (flush만 수행)"""
        instances = []
        for draft in drafts:
            payload = draft.payload
            instance = LedgerEntryModel(
                transaction_id=transaction_id,
                user_id=draft.user_id,
                account=draft.account,
                entry_type=draft.entry_type,
                description=draft.description,
                adjustment_reason=draft.adjustment_reason,
                parent_entry_id=draft.parent_entry_id,
            )
            if isinstance(payload, StockPayload):
                instance.stock_symbol = payload.stock_symbol
                instance.quantity = payload.quantity
            else:
                instance.inr_amount = payload.inr_amount
            instances.append(instance)

        self.db.add_all(instances)
        self.db.flush()
        return self._to_schemas(instances)

    def get_transaction_lines(self, transaction_id: uuid.UUID) -> List[LedgerLine]:
        instances = (
            self.db.query(self.model_class)
            .filter(self.model_class.transaction_id == transaction_id)
            .order_by(self.model_class.account, self.model_class.entry_type)
            .all()
        )
        return self._to_schemas(instances)

    def get_user_lines(
        self, user_id: str, account: Optional[LedgerAccount] = None
    ) -> List[LedgerLine]:
        query = self.db.query(self.model_class).filter(
            self.model_class.user_id == user_id
        )
        if account is not None:
            query = query.filter(self.model_class.account == account)
        return self._to_schemas(query.all())

    def portfolio_balances(self, user_id: str) -> Dict[str, Decimal]:
        """포트폴리오 계정 라인 기준 종목별 보유 수량 (대변 - 차변)

        수량이 0인 종목(상장폐지/합병 완료)은 제외합니다.
        """
        balances: Dict[str, Decimal] = defaultdict(lambda: Decimal("0"))
        for line in self.get_user_lines(user_id, LedgerAccount.USER_PORTFOLIO):
            balances[line.payload.stock_symbol] += line.signed_quantity

        return {
            symbol: quantity.quantize(SIX_DP)
            for symbol, quantity in sorted(balances.items())
            if quantity.quantize(SIX_DP) != 0
        }
