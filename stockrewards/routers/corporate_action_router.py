"""
기업 행위 API 라우터

- GET /corporate-actions: 행위 목록 (상태/종목 필터)
- POST /corporate-actions/process: 효력일이 도래한 행위 일괄 처리 (외부 스케줄러 호출용)
"""

import logging
from typing import Optional

from fastapi import APIRouter, Depends, Query

from stockrewards.deps import get_corporate_action_service
from stockrewards.models.corporate_action import CorporateActionStatus
from stockrewards.schemas.corporate_action import (
    CorporateActionListResponse,
    ProcessPendingResponse,
)
from stockrewards.services.corporate_action_service import CorporateActionService

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/corporate-actions", tags=["corporate-actions"])


@router.get("", response_model=CorporateActionListResponse)
def list_corporate_actions(
    status: Optional[CorporateActionStatus] = Query(None, description="처리 상태"),
    symbol: Optional[str] = Query(None, description="종목 심볼"),
    service: CorporateActionService = Depends(get_corporate_action_service),
) -> CorporateActionListResponse:
    return service.list_actions(status=status, stock_symbol=symbol)


@router.post("/process", response_model=ProcessPendingResponse)
def process_pending_actions(
    service: CorporateActionService = Depends(get_corporate_action_service),
) -> ProcessPendingResponse:
    result = service.process_pending()
    logger.info(
        f"Corporate action run: processed={len(result.processed)}, "
        f"cancelled={len(result.cancelled)}, skipped={len(result.skipped_action_ids)}"
    )
    return result
