from fastapi import HTTPException, status
from typing import Optional, Dict, Any


class BaseAPIException(HTTPException):
    """Base exception for API errors"""
    def __init__(
        self,
        status_code: int,
        error_code: str,
        message: str,
        details: Optional[Dict[str, Any]] = None
    ):
        self.error_code = error_code
        self.message = message
        self.details = details or {}

        super().__init__(
            status_code=status_code,
            detail={
                "success": False,
                "error": {
                    "code": error_code,
                    "message": message,
                    "details": self.details
                }
            }
        )

    def __str__(self) -> str:  # Ensure str(e) returns the human message
        return self.message


class InvalidInputError(BaseAPIException):
    """Missing or non-positive required fields"""
    def __init__(self, message: str = "Invalid input", details: Optional[Dict] = None):
        super().__init__(
            status_code=status.HTTP_400_BAD_REQUEST,
            error_code="INVALID_INPUT",
            message=message,
            details=details
        )


class NotFoundError(BaseAPIException):
    """Resource not found errors"""
    def __init__(self, message: str = "Resource not found", details: Optional[Dict] = None):
        super().__init__(
            status_code=status.HTTP_404_NOT_FOUND,
            error_code="NOT_FOUND_001",
            message=message,
            details=details
        )


class PriceUnavailableError(BaseAPIException):
    """Live and cached price sources are both exhausted"""
    def __init__(self, symbol: str, reason: str = ""):
        super().__init__(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            error_code="PRICE_UNAVAILABLE",
            message=f"Unable to fetch price for {symbol}",
            details={"symbol": symbol, "reason": reason}
        )


class HistoricalPriceNotFoundError(BaseAPIException):
    """No persisted quote at or before the requested time"""
    def __init__(self, symbol: str, as_of: str):
        super().__init__(
            status_code=status.HTTP_404_NOT_FOUND,
            error_code="PRICE_HISTORY_NOT_FOUND",
            message=f"No historical price for {symbol} at or before {as_of}",
            details={"symbol": symbol, "as_of": as_of}
        )


class LedgerImbalanceError(BaseAPIException):
    """Monetary lines of a transaction do not sum to zero"""
    def __init__(self, transaction_id: str, monetary_sum: str):
        super().__init__(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            error_code="LEDGER_IMBALANCE",
            message=f"Transaction {transaction_id} is not balanced (sum={monetary_sum})",
            details={"transaction_id": transaction_id, "monetary_sum": monetary_sum}
        )


class CorporateActionError(BaseAPIException):
    """Corporate action handler failure"""
    def __init__(self, message: str = "Corporate action failed", details: Optional[Dict] = None):
        super().__init__(
            status_code=status.HTTP_400_BAD_REQUEST,
            error_code="CORPORATE_ACTION_FAILED",
            message=message,
            details=details
        )


class InternalServerError(BaseAPIException):
    """Internal server errors"""
    def __init__(self, message: str = "Internal server error", details: Optional[Dict] = None):
        super().__init__(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            error_code="INTERNAL_001",
            message=message,
            details=details
        )
