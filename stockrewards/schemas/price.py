from __future__ import annotations

import enum
from datetime import datetime
from decimal import Decimal
from typing import List

from pydantic import BaseModel, Field, field_validator

from stockrewards.utils.timezone_utils import ensure_utc


class PriceSource(str, enum.Enum):
    CACHE = "CACHE"  # TTL 이내 캐시
    SIMULATED = "SIMULATED"  # 새로 생성되어 이력에 저장된 시세
    STALE_CACHE = "STALE_CACHE"  # 조회 실패로 만료된 캐시를 사용
    HISTORY = "HISTORY"  # 이력에서 조회한 시점 가격
    LATEST_FALLBACK = "LATEST_FALLBACK"  # 시점 가격이 없어 현재가로 대체


class PricePoint(BaseModel):
    """주가 관측값"""

    symbol: str = Field(..., description="종목 심볼")
    price: Decimal = Field(..., gt=0, description="가격")
    observed_at: datetime = Field(..., description="관측 시각")
    source: PriceSource = Field(..., description="가격 출처")

    @field_validator("observed_at")
    @classmethod
    def _normalize_utc(cls, v):
        return ensure_utc(v)

    @property
    def is_fallback(self) -> bool:
        return self.source in (PriceSource.STALE_CACHE, PriceSource.LATEST_FALLBACK)


class PriceHistoryResponse(BaseModel):
    """기간별 주가 이력 응답"""

    symbol: str
    prices: List[PricePoint]
    total_count: int
