from datetime import datetime
from decimal import Decimal
from typing import Annotated, List, Literal, Optional, Union
from uuid import UUID

from pydantic import BaseModel, Field, TypeAdapter, field_validator

from stockrewards.models.corporate_action import (
    CorporateActionStatus,
    CorporateActionType,
)
from stockrewards.utils.timezone_utils import ensure_utc


class RatioParams(BaseModel):
    """분할/무상증자 비율 (from:to)"""

    action_type: Literal[
        CorporateActionType.STOCK_SPLIT, CorporateActionType.BONUS_ISSUE
    ]
    ratio_from: int = Field(..., gt=0)
    ratio_to: int = Field(..., gt=0)


class DividendParams(BaseModel):
    action_type: Literal[CorporateActionType.STOCK_DIVIDEND]
    dividend_amount: Decimal = Field(..., gt=0, description="주당 배당금")


class MergerParams(BaseModel):
    action_type: Literal[CorporateActionType.MERGER]
    new_stock_symbol: str
    exchange_ratio: Decimal = Field(..., gt=0, description="구 주식 1주당 신 주식 수")


class DelistingParams(BaseModel):
    action_type: Literal[CorporateActionType.DELISTING]
    final_price: Decimal = Field(..., ge=0, description="최종 정산 가격")


ActionParams = Annotated[
    Union[RatioParams, DividendParams, MergerParams, DelistingParams],
    Field(discriminator="action_type"),
]

action_params_adapter: TypeAdapter = TypeAdapter(ActionParams)


def build_action_params(
    action_type: CorporateActionType,
    ratio_from: Optional[int] = None,
    ratio_to: Optional[int] = None,
    dividend_amount: Optional[Decimal] = None,
    new_stock_symbol: Optional[str] = None,
    exchange_ratio: Optional[Decimal] = None,
    final_price: Optional[Decimal] = None,
):
    """행위 유형에 맞는 파라미터 모델 생성

    Raises:
        ValidationError: 유형에 필요한 값이 없거나 범위를 벗어난 경우
    """
    return action_params_adapter.validate_python(
        {
            "action_type": action_type,
            "ratio_from": ratio_from,
            "ratio_to": ratio_to,
            "dividend_amount": dividend_amount,
            "new_stock_symbol": new_stock_symbol,
            "exchange_ratio": exchange_ratio,
            "final_price": final_price,
        }
    )


class CorporateActionRecord(BaseModel):
    """기업 행위 레코드"""

    id: int
    stock_symbol: str
    action_type: CorporateActionType
    effective_date: datetime
    announcement_date: datetime
    status: CorporateActionStatus
    params: Optional[ActionParams] = Field(
        None, description="유형별 파라미터 (저장된 값이 유효하지 않으면 None)"
    )
    params_error: Optional[str] = Field(None, description="파라미터 검증 실패 사유")
    description: Optional[str] = None
    claimed_at: Optional[datetime] = None
    processed_at: Optional[datetime] = None

    @field_validator("effective_date", "announcement_date", "claimed_at", "processed_at")
    @classmethod
    def _normalize_utc(cls, v):
        return ensure_utc(v)


class CorporateActionListResponse(BaseModel):
    actions: List[CorporateActionRecord]
    total_count: int


class AdjustmentSummary(BaseModel):
    """단일 기업 행위 처리 결과"""

    action_id: int = Field(..., description="기업 행위 ID")
    action_type: CorporateActionType
    stock_symbol: str
    adjusted_count: int = Field(0, description="조정된 리워드 수")
    skipped_count: int = Field(0, description="이미 처리되어 건너뛴 리워드 수")
    derived_reward_ids: List[UUID] = Field(default_factory=list, description="생성된 파생 리워드 ID")
    transaction_ids: List[UUID] = Field(default_factory=list, description="기록된 거래 ID")


class CancelledAction(BaseModel):
    action_id: int
    action_type: CorporateActionType
    stock_symbol: str
    error: str


class ProcessPendingResponse(BaseModel):
    """대기 중인 기업 행위 일괄 처리 결과"""

    processed: List[AdjustmentSummary] = Field(default_factory=list)
    cancelled: List[CancelledAction] = Field(default_factory=list)
    skipped_action_ids: List[int] = Field(
        default_factory=list, description="다른 처리와 겹쳐 이번 실행에서 건너뛴 행위"
    )
    released_action_ids: List[int] = Field(
        default_factory=list, description="선점 시간이 초과되어 ANNOUNCED로 되돌린 행위"
    )
