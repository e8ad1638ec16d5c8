from .ledger import LedgerLine, LedgerLineDraft, TransactionBreakdown
from .price import PricePoint, PriceSource
from .reward import CreateRewardRequest, RewardEventRecord, RewardSubmissionResponse
from .corporate_action import AdjustmentSummary, CorporateActionRecord
