"""
리워드 API 라우터

- POST /rewards: 리워드 지급 (신규 201, 중복 키 200)
- GET /rewards/today-stocks/{user_id}: 오늘 지급된 리워드
- GET /rewards/{reward_id}: 리워드 조회
- GET /rewards/{reward_id}/validation: 리워드 거래 대차 검증
"""

import logging
from uuid import UUID

from fastapi import APIRouter, Depends, Path, Response, status

from stockrewards.deps import (
    get_portfolio_service,
    get_reward_service,
    get_validation_service,
)
from stockrewards.schemas.ledger import TransactionValidationResult
from stockrewards.schemas.portfolio import TodayRewardsResponse
from stockrewards.schemas.reward import (
    CreateRewardRequest,
    RewardEventRecord,
    RewardSubmissionResponse,
)
from stockrewards.services.portfolio_service import PortfolioService
from stockrewards.services.reward_service import RewardService
from stockrewards.services.validation_service import ValidationService

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/rewards", tags=["rewards"])


@router.post(
    "",
    response_model=RewardSubmissionResponse,
    status_code=status.HTTP_201_CREATED,
)
def submit_reward(
    request: CreateRewardRequest,
    response: Response,
    service: RewardService = Depends(get_reward_service),
) -> RewardSubmissionResponse:
    """리워드 지급 - 같은 idempotencyKey 재요청은 기존 기록을 200으로 반환"""
    result = service.submit_reward(request)
    if not result.created:
        response.status_code = status.HTTP_200_OK
    return result


@router.get("/today-stocks/{user_id}", response_model=TodayRewardsResponse)
def get_today_stocks(
    user_id: str = Path(..., description="사용자 ID"),
    service: PortfolioService = Depends(get_portfolio_service),
) -> TodayRewardsResponse:
    return service.todays_rewards(user_id)


@router.get("/{reward_id}", response_model=RewardEventRecord)
def get_reward(
    reward_id: UUID = Path(..., description="리워드 ID"),
    service: RewardService = Depends(get_reward_service),
):
    return service.get_reward(reward_id)


@router.get("/{reward_id}/validation", response_model=TransactionValidationResult)
def validate_reward_transaction(
    reward_id: UUID = Path(..., description="리워드 ID (= 거래 ID)"),
    service: ValidationService = Depends(get_validation_service),
) -> TransactionValidationResult:
    return service.transaction_report(reward_id)
