"""
리워드 이벤트 리포지토리

1. 멱등성 보장 - idempotency_key 유니크 제약 위반(IntegrityError)을 호출자에게 그대로 전달
2. 조건부 상태 전이 - ACTIVE 인 레코드만 ADJUSTED 로 전환 (영향 행 수로 선점 여부 판단)
3. 파생 레코드 - 기업 행위 조정분을 parent_reward_id 로 원본과 연결
"""

import uuid
from datetime import datetime
from decimal import Decimal
from typing import List, Optional

from sqlalchemy import update
from sqlalchemy.orm import Session

from stockrewards.models.reward_event import (
    AdjustmentReason,
    RewardEvent as RewardEventModel,
    RewardStatus,
)
from stockrewards.repositories.base import BaseRepository
from stockrewards.schemas.reward import (
    ActiveReward,
    RewardEventRecord,
    reward_record_adapter,
)
from stockrewards.utils.timezone_utils import ensure_utc


class RewardEventRepository(BaseRepository[RewardEventModel, ActiveReward]):
    """리워드 이벤트 데이터 접근 - 상태별 태그 스키마(RewardEventRecord) 반환"""

    def __init__(self, db: Session):
        super().__init__(RewardEventModel, ActiveReward, db)

    def _to_schema(self, model_instance) -> Optional[RewardEventRecord]:
        if model_instance is None:
            return None
        return reward_record_adapter.validate_python(model_instance.dict())

    def insert_reward(
        self,
        user_id: str,
        stock_symbol: str,
        quantity: Decimal,
        timestamp: datetime,
        idempotency_key: str,
        notes: Optional[str] = None,
    ) -> RewardEventRecord:
        """ACTIVE 리워드 추가 (flush만 수행, 커밋은 호출자 책임)

        같은 idempotency_key가 이미 있으면 flush 시점에 IntegrityError가 발생합니다.
        """
        return self.create(
            commit=False,
            user_id=user_id,
            stock_symbol=stock_symbol,
            quantity=quantity,
            timestamp=ensure_utc(timestamp),
            idempotency_key=idempotency_key,
            notes=notes,
            status=RewardStatus.ACTIVE,
        )

    def insert_derived(
        self,
        parent: RewardEventRecord,
        stock_symbol: str,
        quantity: Decimal,
        reason: AdjustmentReason,
        idempotency_key: str,
        timestamp: datetime,
        notes: Optional[str] = None,
    ) -> RewardEventRecord:
        """기업 행위 조정분을 ADJUSTED 파생 레코드로 추가"""
        return self.create(
            commit=False,
            user_id=parent.user_id,
            stock_symbol=stock_symbol,
            quantity=quantity,
            timestamp=ensure_utc(timestamp),
            idempotency_key=idempotency_key,
            notes=notes,
            status=RewardStatus.ADJUSTED,
            adjustment_reason=reason,
            parent_reward_id=parent.id,
            original_quantity=parent.quantity,
        )

    def get_by_idempotency_key(self, idempotency_key: str) -> Optional[RewardEventRecord]:
        instance = (
            self.db.query(self.model_class)
            .filter(self.model_class.idempotency_key == idempotency_key)
            .first()
        )
        return self._to_schema(instance)

    def mark_adjusted(self, reward_id: uuid.UUID, reason: AdjustmentReason) -> bool:
        """ACTIVE → ADJUSTED 조건부 전환

        Returns:
            bool: 이번 호출이 전환했으면 True, 이미 처리된 레코드면 False
        """
        result = self.db.execute(
            update(self.model_class)
            .where(
                self.model_class.id == reward_id,
                self.model_class.status == RewardStatus.ACTIVE,
            )
            .values(
                status=RewardStatus.ADJUSTED,
                adjustment_reason=reason,
                original_quantity=self.model_class.quantity,
            )
            .execution_options(synchronize_session="fetch")
        )
        return result.rowcount == 1

    def find_active_before(
        self, stock_symbol: str, effective_date: datetime
    ) -> List[RewardEventRecord]:
        """기업 행위 대상: 효력일 이전에 지급된 ACTIVE 리워드 (시간순)"""
        instances = (
            self.db.query(self.model_class)
            .filter(
                self.model_class.stock_symbol == stock_symbol,
                self.model_class.status == RewardStatus.ACTIVE,
                self.model_class.timestamp < ensure_utc(effective_date),
            )
            .order_by(self.model_class.timestamp, self.model_class.id)
            .all()
        )
        return self._to_schemas(instances)

    def find_holding_records(
        self,
        stock_symbol: Optional[str] = None,
        user_id: Optional[str] = None,
        before: Optional[datetime] = None,
    ) -> List[RewardEventRecord]:
        """보유 수량에 포함되는 레코드 조회 (ACTIVE 및 대체되지 않은 ADJUSTED)"""
        query = self.db.query(self.model_class).filter(
            self.model_class.status.in_([RewardStatus.ACTIVE, RewardStatus.ADJUSTED])
        )
        if stock_symbol is not None:
            query = query.filter(self.model_class.stock_symbol == stock_symbol)
        if user_id is not None:
            query = query.filter(self.model_class.user_id == user_id)
        if before is not None:
            query = query.filter(self.model_class.timestamp < ensure_utc(before))

        instances = query.order_by(
            self.model_class.timestamp, self.model_class.id
        ).all()
        return self._to_schemas(
            [instance for instance in instances if instance.counts_toward_holding]
        )

    def list_by_user(
        self,
        user_id: str,
        start: Optional[datetime] = None,
        end: Optional[datetime] = None,
    ) -> List[RewardEventRecord]:
        """사용자 리워드 조회 (start <= timestamp < end)"""
        query = self.db.query(self.model_class).filter(
            self.model_class.user_id == user_id
        )
        if start is not None:
            query = query.filter(self.model_class.timestamp >= ensure_utc(start))
        if end is not None:
            query = query.filter(self.model_class.timestamp < ensure_utc(end))
        instances = query.order_by(self.model_class.timestamp, self.model_class.id).all()
        return self._to_schemas(instances)
