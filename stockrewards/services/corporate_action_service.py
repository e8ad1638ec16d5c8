"""
기업 행위 처리 서비스

처리 흐름:
0. 선점 후 시간 초과된 PENDING 행위를 ANNOUNCED로 되돌림 (중단된 실행 복구)
1. process_pending: 효력일이 도래한 ANNOUNCED 행위를 효력일 순으로 조회
2. 행위별로 ANNOUNCED → PENDING 조건부 선점 (같은 종목의 PENDING 행위가 있으면 건너뜀)
3. 파라미터 검증 및 핸들러 실행 → 성공 시 PROCESSED, 실패 시 CANCELLED (다음 행위는 계속 처리)

핸들러는 대상 리워드마다 별도 커밋 단위로 조정합니다.
- 원본 리워드 ACTIVE → ADJUSTED 조건부 전환 (영향 행 0이면 이미 처리된 것으로 보고 건너뜀)
- 파생 리워드 idempotency_key: {ACTION_TYPE}_{action_id}_{reward_id}
- 파생 리워드가 없는 조정(상장폐지/배당)의 거래 ID: uuid5(namespace, "{action_id}:{reward_id}")
- 커밋 직전 대차 검증
따라서 같은 행위를 다시 실행해도 조정이 중복 적용되지 않습니다.
"""

import logging
import uuid
from datetime import datetime
from decimal import Decimal
from typing import Callable, List, NamedTuple, Optional

from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from stockrewards.config import Settings, settings as default_settings
from stockrewards.core.exceptions import CorporateActionError
from stockrewards.models.corporate_action import (
    CorporateActionStatus,
    CorporateActionType,
)
from stockrewards.models.ledger_entry import EntryType, LedgerAccount
from stockrewards.models.reward_event import AdjustmentReason
from stockrewards.repositories.corporate_action_repository import (
    CorporateActionRepository,
)
from stockrewards.repositories.reward_event_repository import RewardEventRepository
from stockrewards.schemas.corporate_action import (
    AdjustmentSummary,
    CancelledAction,
    CorporateActionListResponse,
    CorporateActionRecord,
    DelistingParams,
    DividendParams,
    MergerParams,
    ProcessPendingResponse,
    RatioParams,
)
from stockrewards.schemas.reward import RewardEventRecord
from stockrewards.services.ledger_service import (
    LedgerService,
    cash_line,
    stock_line,
    to_amount,
    to_quantity,
)
from stockrewards.services.validation_service import ValidationService
from stockrewards.utils.timezone_utils import ensure_utc, utc_now

logger = logging.getLogger(__name__)

ADJUSTMENT_NAMESPACE = uuid.uuid5(uuid.NAMESPACE_OID, "stockrewards.corporate_actions")


def adjustment_key(
    action_type: CorporateActionType, action_id: int, reward_id: uuid.UUID
) -> str:
    """파생 리워드의 결정적 idempotency_key"""
    return f"{action_type.value}_{action_id}_{reward_id}"


def adjustment_transaction_id(action_id: int, reward_id: uuid.UUID) -> uuid.UUID:
    """파생 리워드가 없는 조정 거래의 결정적 거래 ID"""
    return uuid.uuid5(ADJUSTMENT_NAMESPACE, f"{action_id}:{reward_id}")


# 재실행 시 발생하는 중복 충돌 (파생 리워드 키, 거래별 계정/차대변 유니크)
DUPLICATE_ADJUSTMENT_MARKERS = (
    "uq_ledger_entries_transaction_account_side",
    "ledger_entries.transaction_id",
    "idempotency_key",
)


def is_duplicate_adjustment(error: IntegrityError) -> bool:
    """이미 적용된 조정과의 유니크 충돌인지 여부 (CHECK 위반 등은 False)"""
    message = str(error.orig)
    unique_violation = (
        getattr(error.orig, "pgcode", None) == "23505"
        or "UNIQUE constraint failed" in message
    )
    return unique_violation and any(marker in message for marker in DUPLICATE_ADJUSTMENT_MARKERS)


class _Adjustment(NamedTuple):
    transaction_id: uuid.UUID
    derived_reward_id: Optional[uuid.UUID] = None


class CorporateActionService:
    """기업 행위(분할/무상증자/합병/상장폐지/배당) 처리"""

    def __init__(self, db: Session, settings: Optional[Settings] = None):
        self.db = db
        self.settings = settings or default_settings
        self.action_repo = CorporateActionRepository(db)
        self.reward_repo = RewardEventRepository(db)
        self.ledger_service = LedgerService(db, settings=self.settings)
        self.validation_service = ValidationService(db, settings=self.settings)

    # ------------------------------------------------------------------
    # 조회
    # ------------------------------------------------------------------

    def list_actions(
        self,
        status: Optional[CorporateActionStatus] = None,
        stock_symbol: Optional[str] = None,
    ) -> CorporateActionListResponse:
        actions = self.action_repo.list_actions(status=status, stock_symbol=stock_symbol)
        return CorporateActionListResponse(actions=actions, total_count=len(actions))

    # ------------------------------------------------------------------
    # 일괄 처리
    # ------------------------------------------------------------------

    def process_pending(self, now: Optional[datetime] = None) -> ProcessPendingResponse:
        """효력일이 도래한 ANNOUNCED 행위를 순차 처리

        한 행위의 실패는 해당 행위만 CANCELLED로 만들고, 이미 커밋된 조정은 되돌리지 않습니다.
        """
        now = ensure_utc(now) if now else utc_now()
        response = ProcessPendingResponse()

        released = self.action_repo.release_stale_claims(
            now, self.settings.CORPORATE_ACTION_CLAIM_TIMEOUT_SECONDS
        )
        if released:
            logger.warning(f"Released stale corporate action claims: {released}")
            response.released_action_ids.extend(released)

        due_actions = self.action_repo.find_due(now)
        self.db.commit()

        logger.info(f"Processing {len(due_actions)} due corporate actions")

        for action in due_actions:
            if not self.action_repo.claim(action.id, now):
                logger.warning(
                    f"Corporate action {action.id} ({action.stock_symbol}) not claimable, skipping this run"
                )
                response.skipped_action_ids.append(action.id)
                continue

            try:
                summary = self.apply_action(action)
            except Exception as e:
                self.db.rollback()
                logger.exception(
                    f"Corporate action {action.id} {action.action_type.value} on {action.stock_symbol} failed"
                )
                self.action_repo.mark_cancelled(action.id, str(e))
                response.cancelled.append(
                    CancelledAction(
                        action_id=action.id,
                        action_type=action.action_type,
                        stock_symbol=action.stock_symbol,
                        error=str(e),
                    )
                )
                continue

            self.action_repo.mark_processed(action.id)
            logger.info(
                f"Corporate action {action.id} processed: adjusted={summary.adjusted_count}, skipped={summary.skipped_count}"
            )
            response.processed.append(summary)

        return response

    def apply_action(self, action: CorporateActionRecord) -> AdjustmentSummary:
        """행위 유형별 핸들러 실행

        저장된 파라미터가 유효하지 않은 행위는 CorporateActionError로 실패합니다.
        """
        params = action.params
        if params is None:
            raise CorporateActionError(
                f"Invalid parameters for {action.action_type.value} action {action.id}: {action.params_error}",
                details={"action_id": action.id},
            )
        symbol = action.stock_symbol
        effective_date = action.effective_date

        if isinstance(params, RatioParams):
            if params.action_type == CorporateActionType.STOCK_SPLIT:
                return self.process_stock_split(
                    symbol, params.ratio_from, params.ratio_to, effective_date,
                    action_id=action.id,
                )
            return self.process_bonus_issue(
                symbol, params.ratio_from, params.ratio_to, effective_date,
                action_id=action.id,
            )
        if isinstance(params, MergerParams):
            return self.process_merger(
                symbol, params.new_stock_symbol, params.exchange_ratio, effective_date,
                action_id=action.id,
            )
        if isinstance(params, DelistingParams):
            return self.process_delisting(
                symbol, params.final_price, effective_date, action_id=action.id
            )
        if isinstance(params, DividendParams):
            return self.process_dividend(
                symbol, params.dividend_amount, effective_date, action_id=action.id
            )
        raise CorporateActionError(
            f"Unsupported corporate action type: {action.action_type}",
            details={"action_id": action.id},
        )

    # ------------------------------------------------------------------
    # 핸들러
    # ------------------------------------------------------------------

    def process_stock_split(
        self,
        symbol: str,
        from_ratio: int,
        to_ratio: int,
        effective_date: datetime,
        *,
        action_id: int,
    ) -> AdjustmentSummary:
        """주식 분할 - 원본은 유지하고 증가분(delta)만 파생 레코드로 추가

        delta = quantity * (to / from) - quantity
        """
        if from_ratio <= 0 or to_ratio <= from_ratio:
            raise CorporateActionError(
                f"Invalid split ratio {from_ratio}:{to_ratio}",
                details={"ratio_from": from_ratio, "ratio_to": to_ratio},
            )
        symbol = symbol.upper()
        multiplier = Decimal(to_ratio) / Decimal(from_ratio)
        reason = AdjustmentReason.STOCK_SPLIT

        def adjust(record: RewardEventRecord) -> Optional[_Adjustment]:
            if not self.reward_repo.mark_adjusted(record.id, reason):
                return None
            delta = to_quantity(record.quantity * multiplier - record.quantity)
            derived = self.reward_repo.insert_derived(
                parent=record,
                stock_symbol=symbol,
                quantity=delta,
                reason=reason,
                idempotency_key=adjustment_key(CorporateActionType.STOCK_SPLIT, action_id, record.id),
                timestamp=effective_date,
                notes=f"Stock split adjustment: {from_ratio}:{to_ratio}",
            )
            self.ledger_service.post_lines(
                derived.id,
                [
                    stock_line(
                        record.user_id,
                        EntryType.CREDIT,
                        symbol,
                        delta,
                        f"Stock split adjustment: {from_ratio}:{to_ratio} for {symbol}",
                        adjustment_reason=reason,
                    )
                ],
            )
            return _Adjustment(derived.id, derived.id)

        return self._adjust_each(
            action_id,
            CorporateActionType.STOCK_SPLIT,
            symbol,
            self.reward_repo.find_active_before(symbol, effective_date),
            adjust,
        )

    def process_bonus_issue(
        self,
        symbol: str,
        from_ratio: int,
        to_ratio: int,
        effective_date: datetime,
        *,
        action_id: int,
    ) -> AdjustmentSummary:
        """무상증자 - from주당 to주를 추가 지급 (delta = quantity * to / from)"""
        if from_ratio <= 0 or to_ratio <= 0:
            raise CorporateActionError(
                f"Invalid bonus ratio {from_ratio}:{to_ratio}",
                details={"ratio_from": from_ratio, "ratio_to": to_ratio},
            )
        symbol = symbol.upper()
        multiplier = Decimal(to_ratio) / Decimal(from_ratio)
        reason = AdjustmentReason.BONUS_ISSUE

        def adjust(record: RewardEventRecord) -> Optional[_Adjustment]:
            if not self.reward_repo.mark_adjusted(record.id, reason):
                return None
            bonus = to_quantity(record.quantity * multiplier)
            derived = self.reward_repo.insert_derived(
                parent=record,
                stock_symbol=symbol,
                quantity=bonus,
                reason=reason,
                idempotency_key=adjustment_key(CorporateActionType.BONUS_ISSUE, action_id, record.id),
                timestamp=effective_date,
                notes=f"Bonus issue adjustment: {to_ratio} for every {from_ratio}",
            )
            self.ledger_service.post_lines(
                derived.id,
                [
                    stock_line(
                        record.user_id,
                        EntryType.CREDIT,
                        symbol,
                        bonus,
                        f"Bonus issue {from_ratio}:{to_ratio} for {symbol}",
                        adjustment_reason=reason,
                    )
                ],
            )
            return _Adjustment(derived.id, derived.id)

        return self._adjust_each(
            action_id,
            CorporateActionType.BONUS_ISSUE,
            symbol,
            self.reward_repo.find_active_before(symbol, effective_date),
            adjust,
        )

    def process_merger(
        self,
        old_symbol: str,
        new_symbol: str,
        exchange_ratio: Decimal,
        effective_date: datetime,
        *,
        action_id: int,
    ) -> AdjustmentSummary:
        """합병 - 구 종목 레코드를 대체하는 신 종목 레코드(quantity * ratio) 추가"""
        old_symbol = old_symbol.upper()
        new_symbol = (new_symbol or "").strip().upper()
        exchange_ratio = Decimal(exchange_ratio)
        if not new_symbol or new_symbol == old_symbol or exchange_ratio <= 0:
            raise CorporateActionError(
                f"Invalid merger {old_symbol} -> {new_symbol or '?'} ({exchange_ratio})",
                details={"new_stock_symbol": new_symbol, "exchange_ratio": str(exchange_ratio)},
            )
        reason = AdjustmentReason.MERGER
        description = f"Merger: {old_symbol} -> {new_symbol}"

        def adjust(record: RewardEventRecord) -> Optional[_Adjustment]:
            if not self.reward_repo.mark_adjusted(record.id, reason):
                return None
            new_quantity = to_quantity(record.quantity * exchange_ratio)
            derived = self.reward_repo.insert_derived(
                parent=record,
                stock_symbol=new_symbol,
                quantity=new_quantity,
                reason=reason,
                idempotency_key=adjustment_key(CorporateActionType.MERGER, action_id, record.id),
                timestamp=effective_date,
                notes=f"Merger adjustment: {old_symbol} -> {new_symbol} ({exchange_ratio}:1)",
            )
            self.ledger_service.post_lines(
                derived.id,
                [
                    stock_line(
                        record.user_id, EntryType.DEBIT, old_symbol, record.quantity,
                        description, adjustment_reason=reason,
                    ),
                    stock_line(
                        record.user_id, EntryType.CREDIT, new_symbol, new_quantity,
                        description, adjustment_reason=reason,
                    ),
                ],
            )
            return _Adjustment(derived.id, derived.id)

        return self._adjust_each(
            action_id,
            CorporateActionType.MERGER,
            old_symbol,
            self.reward_repo.find_active_before(old_symbol, effective_date),
            adjust,
        )

    def process_delisting(
        self,
        symbol: str,
        final_price: Decimal,
        effective_date: datetime,
        *,
        action_id: int,
    ) -> AdjustmentSummary:
        """상장폐지 - 보유 주식을 최종 가격으로 현금 보상

        USER_PORTFOLIO DEBIT 수량 / COMPANY_CASH CREDIT 보상금 / BROKER_SETTLEMENT DEBIT 보상금
        """
        final_price = Decimal(final_price)
        if final_price < 0:
            raise CorporateActionError(
                f"Invalid delisting price {final_price}",
                details={"final_price": str(final_price)},
            )
        symbol = symbol.upper()
        reason = AdjustmentReason.DELISTING

        def adjust(record: RewardEventRecord) -> Optional[_Adjustment]:
            if not self.reward_repo.mark_adjusted(record.id, reason):
                return None
            transaction_id = adjustment_transaction_id(action_id, record.id)
            compensation = to_amount(record.quantity * final_price)
            drafts = [
                stock_line(
                    record.user_id, EntryType.DEBIT, symbol, record.quantity,
                    f"Delisting: {symbol} at ₹{final_price}", adjustment_reason=reason,
                )
            ]
            if compensation > 0:
                drafts.extend(
                    [
                        cash_line(
                            record.user_id, LedgerAccount.COMPANY_CASH, EntryType.CREDIT,
                            compensation,
                            f"Delisting compensation: {record.quantity} shares of {symbol}",
                            adjustment_reason=reason,
                        ),
                        cash_line(
                            record.user_id, LedgerAccount.BROKER_SETTLEMENT, EntryType.DEBIT,
                            compensation,
                            f"Delisting settlement for {symbol}",
                            adjustment_reason=reason,
                        ),
                    ]
                )
            self.ledger_service.post_lines(transaction_id, drafts)
            return _Adjustment(transaction_id)

        return self._adjust_each(
            action_id,
            CorporateActionType.DELISTING,
            symbol,
            self.reward_repo.find_active_before(symbol, effective_date),
            adjust,
        )

    def process_dividend(
        self,
        symbol: str,
        dividend_per_share: Decimal,
        effective_date: datetime,
        *,
        action_id: int,
    ) -> AdjustmentSummary:
        """현금 배당 - 효력일 이전 보유분에 주당 배당금 지급, 리워드 상태는 변경하지 않음

        거래 ID 유니크 제약으로 재실행 시 같은 레코드에 중복 지급되지 않습니다.
        """
        dividend_per_share = Decimal(dividend_per_share)
        if dividend_per_share <= 0:
            raise CorporateActionError(
                f"Invalid dividend amount {dividend_per_share}",
                details={"dividend_amount": str(dividend_per_share)},
            )
        symbol = symbol.upper()

        def adjust(record: RewardEventRecord) -> Optional[_Adjustment]:
            amount = to_amount(record.quantity * dividend_per_share)
            if amount <= 0:
                return None
            transaction_id = adjustment_transaction_id(action_id, record.id)
            self.ledger_service.post_lines(
                transaction_id,
                [
                    cash_line(
                        record.user_id, LedgerAccount.COMPANY_CASH, EntryType.CREDIT, amount,
                        f"Dividend ₹{dividend_per_share}/share on {record.quantity} {symbol}",
                    ),
                    cash_line(
                        record.user_id, LedgerAccount.BROKER_SETTLEMENT, EntryType.DEBIT, amount,
                        f"Dividend settlement for {symbol}",
                    ),
                ],
            )
            return _Adjustment(transaction_id)

        return self._adjust_each(
            action_id,
            CorporateActionType.STOCK_DIVIDEND,
            symbol,
            self.reward_repo.find_holding_records(stock_symbol=symbol, before=effective_date),
            adjust,
        )

    # ------------------------------------------------------------------
    # 공통 처리
    # ------------------------------------------------------------------

    def _adjust_each(
        self,
        action_id: int,
        action_type: CorporateActionType,
        symbol: str,
        records: List[RewardEventRecord],
        adjust: Callable[[RewardEventRecord], Optional[_Adjustment]],
    ) -> AdjustmentSummary:
        """대상 리워드마다 조정 → 대차 검증 → 커밋

        이미 처리된 레코드(조건부 전환 실패, 결정적 키/거래 ID 충돌)는 건너뜁니다.
        그 외 예외는 현재 레코드만 롤백하고 호출자에게 전파합니다.
        """
        summary = AdjustmentSummary(
            action_id=action_id, action_type=action_type, stock_symbol=symbol
        )

        for record in records:
            try:
                adjustment = adjust(record)
                if adjustment is None:
                    self.db.rollback()
                    summary.skipped_count += 1
                    continue
                self.validation_service.assert_balanced(adjustment.transaction_id)
                self.db.commit()
            except IntegrityError as e:
                self.db.rollback()
                if not is_duplicate_adjustment(e):
                    raise
                logger.warning(
                    f"Reward {record.id} already adjusted by {action_type.value} action {action_id}"
                )
                summary.skipped_count += 1
                continue
            except Exception:
                self.db.rollback()
                raise

            summary.adjusted_count += 1
            summary.transaction_ids.append(adjustment.transaction_id)
            if adjustment.derived_reward_id is not None:
                summary.derived_reward_ids.append(adjustment.derived_reward_id)

        logger.info(
            f"{action_type.value} action {action_id} on {symbol}: "
            f"{summary.adjusted_count} adjusted, {summary.skipped_count} skipped"
        )
        return summary
