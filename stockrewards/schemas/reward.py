from datetime import datetime
from decimal import Decimal
from typing import Annotated, Literal, Optional, Union
from uuid import UUID

from pydantic import AliasChoices, BaseModel, ConfigDict, Field, TypeAdapter, field_validator

from stockrewards.models.reward_event import (
    AdjustmentReason,
    RewardStatus,
    is_holding_record,
)
from stockrewards.schemas.ledger import TransactionBreakdown
from stockrewards.utils.timezone_utils import ensure_utc


class CreateRewardRequest(BaseModel):
    """리워드 지급 요청

    필드 검증(누락/0 이하 수량)은 서비스 계층에서 InvalidInputError로 처리합니다.
    """

    model_config = ConfigDict(
        populate_by_name=True,
        json_schema_extra={
            "example": {
                "userId": "user1",
                "stockSymbol": "RELIANCE",
                "quantity": "2.5",
                "idempotencyKey": "onboarding-user1-2024-01-15",
            }
        },
    )

    user_id: Optional[str] = Field(
        None, validation_alias=AliasChoices("user_id", "userId"), description="사용자 ID"
    )
    stock_symbol: Optional[str] = Field(
        None,
        validation_alias=AliasChoices("stock_symbol", "stockSymbol"),
        description="종목 심볼",
    )
    quantity: Optional[Decimal] = Field(
        None,
        validation_alias=AliasChoices("quantity", "shares"),
        description="지급 수량 (소수점 6자리)",
    )
    idempotency_key: Optional[str] = Field(
        None,
        validation_alias=AliasChoices("idempotency_key", "idempotencyKey"),
        description="중복 방지 키",
    )
    timestamp: Optional[datetime] = Field(None, description="지급 시각 (기본값: 현재)")
    notes: Optional[str] = Field(None, max_length=500, description="메모")


class RewardEventBase(BaseModel):
    id: UUID = Field(..., description="리워드 ID")
    user_id: str = Field(..., description="사용자 ID")
    stock_symbol: str = Field(..., description="종목 심볼")
    quantity: Decimal = Field(..., ge=0, description="수량")
    timestamp: datetime = Field(..., description="지급(효력) 시각")
    notes: Optional[str] = Field(None, description="메모")
    idempotency_key: str = Field(..., description="중복 방지 키")
    created_at: Optional[datetime] = Field(None, description="생성 시각")

    class Config:
        from_attributes = True

    @field_validator("timestamp", "created_at")
    @classmethod
    def _normalize_utc(cls, v):
        return ensure_utc(v)

    @property
    def counts_toward_holding(self) -> bool:
        return is_holding_record(
            self.status,
            getattr(self, "adjustment_reason", None),
            getattr(self, "parent_reward_id", None),
        )


class ActiveReward(RewardEventBase):
    """정상 상태의 리워드"""

    status: Literal[RewardStatus.ACTIVE] = RewardStatus.ACTIVE


class AdjustedReward(RewardEventBase):
    """기업 행위로 조정된 리워드

    parent_reward_id가 있으면 조정으로 생성된 파생 레코드, 없으면 조정 대상이 된 원본입니다.
    """

    status: Literal[RewardStatus.ADJUSTED] = RewardStatus.ADJUSTED
    adjustment_reason: AdjustmentReason
    original_quantity: Decimal
    parent_reward_id: Optional[UUID] = None

    @property
    def is_derived(self) -> bool:
        return self.parent_reward_id is not None


class CancelledReward(RewardEventBase):
    status: Literal[RewardStatus.CANCELLED] = RewardStatus.CANCELLED
    adjustment_reason: AdjustmentReason


class RefundedReward(RewardEventBase):
    status: Literal[RewardStatus.REFUNDED] = RewardStatus.REFUNDED
    adjustment_reason: AdjustmentReason
    parent_reward_id: UUID


RewardEventRecord = Annotated[
    Union[ActiveReward, AdjustedReward, CancelledReward, RefundedReward],
    Field(discriminator="status"),
]

reward_record_adapter: TypeAdapter = TypeAdapter(RewardEventRecord)


class RewardSubmissionResponse(BaseModel):
    """리워드 지급 응답

    created=False 이면 같은 idempotency_key로 이미 기록된 리워드를 그대로 반환한 것입니다.
    """

    reward: RewardEventRecord = Field(..., description="리워드 레코드")
    breakdown: Optional[TransactionBreakdown] = Field(None, description="금액/수수료 내역")
    created: bool = Field(..., description="신규 생성 여부")
    message: str = Field(..., description="응답 메시지")
