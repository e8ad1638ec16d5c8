"""
기업 행위 리포지토리

상태 전이는 모두 조건부 UPDATE로 수행하며, 영향 행 수로 전이 성공 여부를 판단합니다.
같은 종목에 PENDING 상태의 행위가 있으면 새 행위를 선점할 수 없으므로
한 종목의 행위는 동시에 처리되지 않습니다.
선점 후 처리가 끝나지 않은 행위는 release_stale_claims로 ANNOUNCED로 되돌립니다.
"""

import logging
from datetime import datetime, timedelta
from decimal import Decimal
from typing import List, Optional

from pydantic import ValidationError
from sqlalchemy import exists, or_, update
from sqlalchemy.orm import Session, aliased

from stockrewards.models.corporate_action import (
    CorporateActionStatus,
    CorporateActionType,
    StockCorporateAction,
)
from stockrewards.repositories.base import BaseRepository
from stockrewards.schemas.corporate_action import (
    CorporateActionRecord,
    build_action_params,
)
from stockrewards.utils.timezone_utils import ensure_utc, utc_now

logger = logging.getLogger(__name__)


class CorporateActionRepository(
    BaseRepository[StockCorporateAction, CorporateActionRecord]
):
    def __init__(self, db: Session):
        super().__init__(StockCorporateAction, CorporateActionRecord, db)

    def _to_schema(self, model_instance: StockCorporateAction) -> Optional[CorporateActionRecord]:
        """행 → 레코드 변환

        외부에서 등록된 행의 파라미터가 유효하지 않아도 예외를 내지 않고
        params=None, params_error에 사유를 담아 반환합니다.
        """
        if model_instance is None:
            return None

        params, params_error = None, None
        try:
            params = build_action_params(
                model_instance.action_type,
                ratio_from=model_instance.ratio_from,
                ratio_to=model_instance.ratio_to,
                dividend_amount=model_instance.dividend_amount,
                new_stock_symbol=model_instance.new_stock_symbol,
                exchange_ratio=model_instance.exchange_ratio,
                final_price=model_instance.final_price,
            )
        except ValidationError as e:
            params_error = str(e)
            logger.warning(
                f"Corporate action {model_instance.id} ({model_instance.stock_symbol}) has invalid parameters"
            )

        return CorporateActionRecord(
            id=model_instance.id,
            stock_symbol=model_instance.stock_symbol,
            action_type=model_instance.action_type,
            effective_date=model_instance.effective_date,
            announcement_date=model_instance.announcement_date,
            status=model_instance.status,
            params=params,
            params_error=params_error,
            description=model_instance.description,
            claimed_at=model_instance.claimed_at,
            processed_at=model_instance.processed_at,
        )

    def create_action(
        self,
        stock_symbol: str,
        action_type: CorporateActionType,
        effective_date: datetime,
        announcement_date: Optional[datetime] = None,
        ratio_from: Optional[int] = None,
        ratio_to: Optional[int] = None,
        dividend_amount: Optional[Decimal] = None,
        new_stock_symbol: Optional[str] = None,
        exchange_ratio: Optional[Decimal] = None,
        final_price: Optional[Decimal] = None,
        description: Optional[str] = None,
        commit: bool = True,
    ) -> CorporateActionRecord:
        """행위 등록 (ANNOUNCED) - 운영 데이터는 외부에서 들어오며 시드/테스트에서 사용

        Raises:
            ValidationError: 유형별 파라미터가 유효하지 않음 (아무것도 저장되지 않음)
        """
        new_stock_symbol = new_stock_symbol.upper() if new_stock_symbol else None
        build_action_params(
            action_type,
            ratio_from=ratio_from,
            ratio_to=ratio_to,
            dividend_amount=dividend_amount,
            new_stock_symbol=new_stock_symbol,
            exchange_ratio=exchange_ratio,
            final_price=final_price,
        )
        return self.create(
            commit=commit,
            stock_symbol=stock_symbol.upper(),
            action_type=action_type,
            effective_date=ensure_utc(effective_date),
            announcement_date=ensure_utc(announcement_date or utc_now()),
            ratio_from=ratio_from,
            ratio_to=ratio_to,
            dividend_amount=dividend_amount,
            new_stock_symbol=new_stock_symbol,
            exchange_ratio=exchange_ratio,
            final_price=final_price,
            description=description,
            status=CorporateActionStatus.ANNOUNCED,
        )

    def find_due(self, now: datetime) -> List[CorporateActionRecord]:
        """효력일이 도래한 ANNOUNCED 행위 (효력일 오름차순)"""
        instances = (
            self.db.query(self.model_class)
            .filter(
                self.model_class.status == CorporateActionStatus.ANNOUNCED,
                self.model_class.effective_date <= ensure_utc(now),
            )
            .order_by(self.model_class.effective_date, self.model_class.id)
            .all()
        )
        return self._to_schemas(instances)

    def list_actions(
        self,
        status: Optional[CorporateActionStatus] = None,
        stock_symbol: Optional[str] = None,
    ) -> List[CorporateActionRecord]:
        query = self.db.query(self.model_class)
        if status is not None:
            query = query.filter(self.model_class.status == status)
        if stock_symbol is not None:
            query = query.filter(self.model_class.stock_symbol == stock_symbol.upper())
        instances = query.order_by(
            self.model_class.effective_date, self.model_class.id
        ).all()
        return self._to_schemas(instances)

    def claim(self, action_id: int, now: Optional[datetime] = None) -> bool:
        """ANNOUNCED → PENDING 선점 후 커밋

        같은 종목에 PENDING 행위가 이미 있으면 선점하지 않습니다.
        """
        other = aliased(StockCorporateAction)
        result = self.db.execute(
            update(self.model_class)
            .where(
                self.model_class.id == action_id,
                self.model_class.status == CorporateActionStatus.ANNOUNCED,
                ~exists().where(
                    other.stock_symbol == self.model_class.stock_symbol,
                    other.status == CorporateActionStatus.PENDING,
                ),
            )
            .values(
                status=CorporateActionStatus.PENDING,
                claimed_at=ensure_utc(now or utc_now()),
            )
            .execution_options(synchronize_session="fetch")
        )
        self.db.commit()
        return result.rowcount == 1

    def release_stale_claims(self, now: datetime, timeout_seconds: float) -> List[int]:
        """선점 후 timeout_seconds 가 지나도록 끝나지 않은 PENDING 행위를 ANNOUNCED로 되돌림

        선점 시각이 없는 PENDING 행위도 대상입니다.

        Returns:
            List[int]: 되돌린 행위 ID
        """
        cutoff = ensure_utc(now) - timedelta(seconds=timeout_seconds)
        stale = or_(
            self.model_class.claimed_at.is_(None),
            self.model_class.claimed_at < cutoff,
        )
        action_ids = [
            action_id
            for (action_id,) in self.db.query(self.model_class.id)
            .filter(self.model_class.status == CorporateActionStatus.PENDING, stale)
            .order_by(self.model_class.id)
            .all()
        ]

        released = []
        for action_id in action_ids:
            result = self.db.execute(
                update(self.model_class)
                .where(
                    self.model_class.id == action_id,
                    self.model_class.status == CorporateActionStatus.PENDING,
                    stale,
                )
                .values(status=CorporateActionStatus.ANNOUNCED, claimed_at=None)
                .execution_options(synchronize_session="fetch")
            )
            if result.rowcount == 1:
                released.append(action_id)
        self.db.commit()
        return released

    def _finish(
        self,
        action_id: int,
        status: CorporateActionStatus,
        description: Optional[str] = None,
    ) -> bool:
        values = {"status": status, "processed_at": utc_now()}
        if description is not None:
            values["description"] = description
        result = self.db.execute(
            update(self.model_class)
            .where(
                self.model_class.id == action_id,
                self.model_class.status == CorporateActionStatus.PENDING,
            )
            .values(**values)
            .execution_options(synchronize_session="fetch")
        )
        self.db.commit()
        return result.rowcount == 1

    def mark_processed(self, action_id: int) -> bool:
        return self._finish(action_id, CorporateActionStatus.PROCESSED)

    def mark_cancelled(self, action_id: int, reason: str) -> bool:
        """PENDING → CANCELLED, 실패 사유는 description에 남김"""
        return self._finish(
            action_id,
            CorporateActionStatus.CANCELLED,
            description=f"Cancelled: {reason}"[:1000],
        )
