# Repository layer - Data access with Pydantic responses

from .base import BaseRepository
from .reward_event_repository import RewardEventRepository
from .ledger_repository import LedgerRepository
from .price_repository import PriceRepository
from .corporate_action_repository import CorporateActionRepository

__all__ = [
    "BaseRepository",
    "RewardEventRepository",
    "LedgerRepository",
    "PriceRepository",
    "CorporateActionRepository",
]
