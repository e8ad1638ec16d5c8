from stockrewards.models.base import Base
from stockrewards.models.corporate_action import (
    CorporateActionStatus,
    CorporateActionType,
    StockCorporateAction,
)
from stockrewards.models.ledger_entry import (
    EntryType,
    LedgerAccount,
    LedgerEntry,
    LedgerEntryStatus,
)
from stockrewards.models.price_history import StockPriceHistory
from stockrewards.models.reward_event import (
    AdjustmentReason,
    RewardEvent,
    RewardStatus,
)

__all__ = [
    "Base",
    "AdjustmentReason",
    "CorporateActionStatus",
    "CorporateActionType",
    "EntryType",
    "LedgerAccount",
    "LedgerEntry",
    "LedgerEntryStatus",
    "RewardEvent",
    "RewardStatus",
    "StockCorporateAction",
    "StockPriceHistory",
]
