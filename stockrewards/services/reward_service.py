import logging
import uuid
from decimal import Decimal, InvalidOperation
from typing import Optional

from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from stockrewards.config import Settings, settings as default_settings
from stockrewards.core.exceptions import InvalidInputError, NotFoundError
from stockrewards.repositories.reward_event_repository import RewardEventRepository
from stockrewards.schemas.reward import (
    CreateRewardRequest,
    RewardEventRecord,
    RewardSubmissionResponse,
)
from stockrewards.services.ledger_service import LedgerService, to_quantity
from stockrewards.services.price_service import PriceService
from stockrewards.services.validation_service import ValidationService
from stockrewards.utils.timezone_utils import ensure_utc, utc_now

logger = logging.getLogger(__name__)

CREATED_MESSAGE = "Reward recorded successfully."
DUPLICATE_MESSAGE = "Reward already recorded with this idempotency key."


class RewardService:
    """리워드 지급 서비스

    하나의 DB 트랜잭션 안에서 리워드 추가 → 시세 조회 → 원장 기록 → 대차 검증 → 커밋을 수행합니다.
    중간에 실패하면 전체 롤백되어 원장 라인 없는 리워드가 남지 않습니다.
    같은 idempotency_key의 동시 요청은 DB 유니크 제약으로 하나만 성공하고,
    나머지는 IntegrityError를 감지해 이미 커밋된 레코드를 반환합니다.
    """

    def __init__(
        self,
        db: Session,
        price_service: PriceService,
        settings: Optional[Settings] = None,
    ):
        self.db = db
        self.settings = settings or default_settings
        self.price_service = price_service
        self.reward_repo = RewardEventRepository(db)
        self.ledger_service = LedgerService(db, settings=self.settings)
        self.validation_service = ValidationService(db, settings=self.settings)

    @staticmethod
    def _validate(request: CreateRewardRequest):
        user_id = (request.user_id or "").strip()
        symbol = (request.stock_symbol or "").strip().upper()
        missing = [
            name
            for name, value in (("userId", user_id), ("stockSymbol", symbol))
            if not value
        ]
        if missing:
            raise InvalidInputError(
                f"Missing required fields: {', '.join(missing)}",
                details={"missing": missing},
            )

        try:
            quantity = to_quantity(request.quantity) if request.quantity is not None else None
        except InvalidOperation:
            quantity = None
        if quantity is None or not quantity.is_finite() or quantity <= 0:
            raise InvalidInputError(
                "quantity must be a positive number",
                details={"quantity": str(request.quantity)},
            )
        return user_id, symbol, quantity

    def submit_reward(self, request: CreateRewardRequest) -> RewardSubmissionResponse:
        """리워드 지급 (멱등)

        Raises:
            InvalidInputError: 사용자/종목 누락 또는 수량이 0 이하
            PriceUnavailableError: 시세 조회 실패 (아무것도 기록되지 않음)
            LedgerImbalanceError: 원장 불균형 (아무것도 기록되지 않음)
        """
        user_id, symbol, quantity = self._validate(request)
        idempotency_key = request.idempotency_key or f"reward_{uuid.uuid4()}"
        timestamp = ensure_utc(request.timestamp) if request.timestamp else utc_now()

        try:
            reward = self.reward_repo.insert_reward(
                user_id=user_id,
                stock_symbol=symbol,
                quantity=quantity,
                timestamp=timestamp,
                idempotency_key=idempotency_key,
                notes=request.notes,
            )
        except IntegrityError:
            self.db.rollback()
            return self._existing_submission(idempotency_key)

        try:
            quote = self.price_service.get_latest_price(symbol, commit=False)
            breakdown, _ = self.ledger_service.post_reward_transaction(reward, quote.price)
            self.validation_service.assert_balanced(reward.id)
            self.db.commit()
        except Exception:
            self.db.rollback()
            logger.error(
                f"Reward submission rolled back for key {idempotency_key} ({user_id}, {symbol})"
            )
            raise

        logger.info(
            f"Reward {reward.id} created: {quantity} {symbol} for user {user_id} "
            f"(price {quote.price}, source {quote.source.value})"
        )
        return RewardSubmissionResponse(
            reward=reward,
            breakdown=breakdown,
            created=True,
            message=CREATED_MESSAGE,
        )

    def _existing_submission(self, idempotency_key: str) -> RewardSubmissionResponse:
        existing = self.reward_repo.get_by_idempotency_key(idempotency_key)
        if existing is None:
            # 유니크 위반이 다른 제약에서 발생한 경우
            raise InvalidInputError(
                "Reward could not be recorded",
                details={"idempotency_key": idempotency_key},
            )

        logger.warning(
            f"Duplicate idempotency key {idempotency_key}, returning reward {existing.id}"
        )
        response = RewardSubmissionResponse(
            reward=existing,
            breakdown=self.ledger_service.breakdown_for_transaction(existing.id),
            created=False,
            message=DUPLICATE_MESSAGE,
        )
        # 읽기 트랜잭션 종료 (SQLite 쓰기 잠금 해제)
        self.db.commit()
        return response

    def get_reward(self, reward_id: uuid.UUID) -> RewardEventRecord:
        reward = self.reward_repo.get_by_id(reward_id)
        if reward is None:
            raise NotFoundError(
                f"Reward {reward_id} not found", details={"reward_id": str(reward_id)}
            )
        return reward
