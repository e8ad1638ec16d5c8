"""Pydantic models for health endpoints."""

from typing import Optional
from pydantic import BaseModel


class HealthCheckResponse(BaseModel):
    """Response model for service health checks."""

    status: str = "healthy"
    service: str = "stock-rewards-ledger"
    database: bool = True
    error: Optional[str] = None
