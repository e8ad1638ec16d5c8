from datetime import datetime, timedelta, timezone
from decimal import Decimal

from unittest.mock import patch

import pytest
from pydantic import ValidationError
from sqlalchemy import update
from sqlalchemy.exc import IntegrityError

from stockrewards.core.exceptions import CorporateActionError
from stockrewards.models import (
    AdjustmentReason,
    CorporateActionStatus,
    CorporateActionType,
    EntryType,
    LedgerAccount,
    LedgerEntry,
    RewardEvent,
    RewardStatus,
    StockCorporateAction,
)
from stockrewards.repositories.corporate_action_repository import CorporateActionRepository
from stockrewards.services.corporate_action_service import (
    adjustment_key,
    adjustment_transaction_id,
    is_duplicate_adjustment,
)

EFFECTIVE = datetime(2024, 2, 1, tzinfo=timezone.utc)
RUN_AT = datetime(2024, 3, 1, tzinfo=timezone.utc)


@pytest.fixture
def action_repo(db):
    return CorporateActionRepository(db)


@pytest.fixture
def grant(reward_service, make_request):
    """리워드 지급 헬퍼"""
    counter = {"n": 0}

    def _grant(quantity, symbol="TCS", user_id="user1", timestamp=None):
        counter["n"] += 1
        return reward_service.submit_reward(
            make_request(
                user_id=user_id,
                stock_symbol=symbol,
                quantity=quantity,
                idempotency_key=f"grant-{counter['n']}",
                timestamp=timestamp,
            )
        ).reward

    return _grant


class TestStockSplit:
    """주식 분할 테스트"""

    def test_split_creates_delta_record(
        self, corporate_action_service, action_repo, grant, portfolio_service, validation_service, db
    ):
        # Given
        original = grant("2.0")
        action = action_repo.create_action(
            "TCS", CorporateActionType.STOCK_SPLIT, EFFECTIVE, ratio_from=1, ratio_to=2
        )

        # When
        result = corporate_action_service.process_pending(now=RUN_AT)

        # Then
        assert [s.action_id for s in result.processed] == [action.id]
        summary = result.processed[0]
        assert summary.adjusted_count == 1
        assert len(summary.derived_reward_ids) == 1

        derived = db.get(RewardEvent, summary.derived_reward_ids[0])
        assert derived.quantity == Decimal("2.0")
        assert derived.status == RewardStatus.ADJUSTED
        assert derived.adjustment_reason == AdjustmentReason.STOCK_SPLIT
        assert derived.parent_reward_id == original.id
        assert derived.idempotency_key == adjustment_key(
            CorporateActionType.STOCK_SPLIT, action.id, original.id
        )

        parent = db.get(RewardEvent, original.id)
        assert parent.status == RewardStatus.ADJUSTED
        assert parent.quantity == Decimal("2.0")
        assert parent.original_quantity == Decimal("2.0")

        assert portfolio_service.holdings_from_records("user1") == {"TCS": Decimal("4.0")}
        assert portfolio_service.holdings_from_ledger("user1") == {"TCS": Decimal("4.0")}
        assert validation_service.validate_transaction(derived.id)

        stored = db.get(StockCorporateAction, action.id)
        assert stored.status == CorporateActionStatus.PROCESSED
        assert stored.processed_at is not None

    def test_only_active_records_before_effective_date(
        self, corporate_action_service, grant, portfolio_service
    ):
        grant("1.0", timestamp=datetime(2024, 1, 5, tzinfo=timezone.utc))
        grant("1.0", timestamp=datetime(2024, 2, 5, tzinfo=timezone.utc))

        summary = corporate_action_service.process_stock_split(
            "TCS", 1, 3, EFFECTIVE, action_id=99
        )

        assert summary.adjusted_count == 1
        assert portfolio_service.holdings_from_records("user1") == {"TCS": Decimal("4.0")}

    def test_rerun_does_not_double_adjust(self, corporate_action_service, grant, portfolio_service, db):
        # Given
        original = grant("2.0")
        corporate_action_service.process_stock_split("TCS", 1, 2, EFFECTIVE, action_id=7)

        # When: 원본이 ACTIVE로 되돌아간 상황에서 같은 행위를 다시 실행
        db.execute(
            update(RewardEvent)
            .where(RewardEvent.id == original.id)
            .values(status=RewardStatus.ACTIVE)
        )
        db.commit()
        summary = corporate_action_service.process_stock_split("TCS", 1, 2, EFFECTIVE, action_id=7)

        # Then
        assert summary.adjusted_count == 0
        assert summary.skipped_count == 1
        assert db.query(RewardEvent).filter(RewardEvent.parent_reward_id == original.id).count() == 1
        assert portfolio_service.holdings_from_ledger("user1") == {"TCS": Decimal("4.0")}

    def test_second_invocation_finds_nothing(self, corporate_action_service, grant):
        grant("2.0")
        corporate_action_service.process_stock_split("TCS", 1, 2, EFFECTIVE, action_id=1)

        summary = corporate_action_service.process_stock_split("TCS", 1, 2, EFFECTIVE, action_id=1)

        assert summary.adjusted_count == 0

    @pytest.mark.parametrize("ratio", [(0, 2), (2, 2), (3, 1)])
    def test_invalid_ratio_rejected(self, corporate_action_service, ratio):
        with pytest.raises(CorporateActionError):
            corporate_action_service.process_stock_split("TCS", *ratio, EFFECTIVE, action_id=1)


class TestBonusIssue:
    def test_bonus_adds_shares(self, corporate_action_service, grant, portfolio_service):
        grant("2.0")

        summary = corporate_action_service.process_bonus_issue("TCS", 2, 1, EFFECTIVE, action_id=3)

        assert summary.adjusted_count == 1
        assert portfolio_service.holdings_from_records("user1") == {"TCS": Decimal("3.0")}
        assert portfolio_service.holdings_from_ledger("user1") == {"TCS": Decimal("3.0")}


class TestMerger:
    """합병 테스트"""

    def test_merger_converts_holding(
        self, corporate_action_service, action_repo, grant, portfolio_service, db
    ):
        # Given
        old = grant("4.0", symbol="OLDCO")
        action_repo.create_action(
            "OLDCO",
            CorporateActionType.MERGER,
            EFFECTIVE,
            new_stock_symbol="NEWCO",
            exchange_ratio=Decimal("0.5"),
        )

        # When
        result = corporate_action_service.process_pending(now=RUN_AT)

        # Then
        summary = result.processed[0]
        derived = db.get(RewardEvent, summary.derived_reward_ids[0])
        assert derived.stock_symbol == "NEWCO"
        assert derived.quantity == Decimal("2.0")
        assert derived.adjustment_reason == AdjustmentReason.MERGER
        assert derived.parent_reward_id == old.id

        assert portfolio_service.holdings_from_records("user1") == {"NEWCO": Decimal("2.0")}
        assert portfolio_service.holdings_from_ledger("user1") == {"NEWCO": Decimal("2.0")}

        lines = db.query(LedgerEntry).filter_by(transaction_id=derived.id).all()
        assert {(l.stock_symbol, l.entry_type) for l in lines} == {
            ("OLDCO", EntryType.DEBIT),
            ("NEWCO", EntryType.CREDIT),
        }

    def test_merger_into_same_symbol_rejected(self, corporate_action_service):
        with pytest.raises(CorporateActionError):
            corporate_action_service.process_merger(
                "TCS", "tcs", Decimal("1"), EFFECTIVE, action_id=1
            )


class TestDelisting:
    """상장폐지 테스트"""

    def test_delisting_pays_cash(
        self, corporate_action_service, grant, portfolio_service, validation_service, db
    ):
        # Given
        reward = grant("2.5", symbol="GONE")

        # When
        summary = corporate_action_service.process_delisting(
            "GONE", Decimal("100"), EFFECTIVE, action_id=11
        )

        # Then
        transaction_id = adjustment_transaction_id(11, reward.id)
        assert summary.transaction_ids == [transaction_id]
        assert summary.derived_reward_ids == []

        cash = (
            db.query(LedgerEntry)
            .filter_by(transaction_id=transaction_id, account=LedgerAccount.COMPANY_CASH)
            .one()
        )
        assert cash.entry_type == EntryType.CREDIT
        assert cash.inr_amount == Decimal("250.0000")
        assert validation_service.validate_transaction(transaction_id)

        assert db.get(RewardEvent, reward.id).adjustment_reason == AdjustmentReason.DELISTING
        assert portfolio_service.holdings_from_records("user1") == {}
        assert portfolio_service.holdings_from_ledger("user1") == {}


class TestDividend:
    def test_dividend_paid_once_per_record(self, corporate_action_service, grant, validation_service, db):
        # Given
        reward = grant("2.0")

        # When
        first = corporate_action_service.process_dividend("TCS", Decimal("10"), EFFECTIVE, action_id=5)
        second = corporate_action_service.process_dividend("TCS", Decimal("10"), EFFECTIVE, action_id=5)

        # Then
        assert first.adjusted_count == 1
        assert second.adjusted_count == 0
        assert second.skipped_count == 1

        transaction_id = adjustment_transaction_id(5, reward.id)
        cash = (
            db.query(LedgerEntry)
            .filter_by(transaction_id=transaction_id, account=LedgerAccount.COMPANY_CASH)
            .one()
        )
        assert cash.inr_amount == Decimal("20.0000")
        assert validation_service.validate_transaction(transaction_id)
        assert db.get(RewardEvent, reward.id).status == RewardStatus.ACTIVE


class TestProcessPending:
    """일괄 처리 테스트"""

    def test_processed_action_not_reapplied(self, corporate_action_service, action_repo, grant, portfolio_service):
        grant("2.0")
        action_repo.create_action("TCS", CorporateActionType.STOCK_SPLIT, EFFECTIVE, ratio_from=1, ratio_to=2)
        corporate_action_service.process_pending(now=RUN_AT)

        rerun = corporate_action_service.process_pending(now=RUN_AT)

        assert rerun.processed == []
        assert rerun.cancelled == []
        assert portfolio_service.holdings_from_records("user1") == {"TCS": Decimal("4.0")}

    def test_failure_cancels_only_that_action(self, corporate_action_service, action_repo, grant, db):
        # Given
        grant("1.0", symbol="BAD")
        grant("1.0", symbol="GOOD")
        bad = action_repo.create_action(
            "BAD",
            CorporateActionType.MERGER,
            datetime(2024, 1, 20, tzinfo=timezone.utc),
            new_stock_symbol="BAD",
            exchange_ratio=Decimal("1"),
        )
        good = action_repo.create_action(
            "GOOD", CorporateActionType.STOCK_SPLIT, EFFECTIVE, ratio_from=1, ratio_to=2
        )

        # When
        result = corporate_action_service.process_pending(now=RUN_AT)

        # Then
        assert [c.action_id for c in result.cancelled] == [bad.id]
        assert [p.action_id for p in result.processed] == [good.id]
        assert db.get(StockCorporateAction, bad.id).status == CorporateActionStatus.CANCELLED
        assert db.get(StockCorporateAction, bad.id).description.startswith("Cancelled:")
        assert db.get(StockCorporateAction, good.id).status == CorporateActionStatus.PROCESSED

    def test_future_actions_left_announced(self, corporate_action_service, action_repo, db):
        future = action_repo.create_action(
            "TCS", CorporateActionType.STOCK_SPLIT, datetime(2030, 1, 1, tzinfo=timezone.utc),
            ratio_from=1, ratio_to=2,
        )

        result = corporate_action_service.process_pending(now=RUN_AT)

        assert result.processed == []
        assert db.get(StockCorporateAction, future.id).status == CorporateActionStatus.ANNOUNCED

    def test_symbol_with_pending_action_is_skipped(self, corporate_action_service, action_repo, db):
        # Given: 같은 종목의 다른 행위가 처리 중
        in_flight = action_repo.create_action(
            "TCS", CorporateActionType.STOCK_SPLIT, EFFECTIVE, ratio_from=1, ratio_to=2
        )
        db.execute(
            update(StockCorporateAction)
            .where(StockCorporateAction.id == in_flight.id)
            .values(status=CorporateActionStatus.PENDING, claimed_at=RUN_AT - timedelta(minutes=1))
        )
        db.commit()
        waiting = action_repo.create_action(
            "TCS", CorporateActionType.BONUS_ISSUE, EFFECTIVE, ratio_from=1, ratio_to=1
        )

        # When
        result = corporate_action_service.process_pending(now=RUN_AT)

        # Then
        assert result.skipped_action_ids == [waiting.id]
        assert db.get(StockCorporateAction, waiting.id).status == CorporateActionStatus.ANNOUNCED

    def test_actions_processed_in_effective_date_order(self, corporate_action_service, action_repo, grant):
        grant("1.0", symbol="AAA")
        grant("1.0", symbol="BBB")
        later = action_repo.create_action(
            "AAA", CorporateActionType.STOCK_SPLIT, datetime(2024, 2, 10, tzinfo=timezone.utc),
            ratio_from=1, ratio_to=2,
        )
        earlier = action_repo.create_action(
            "BBB", CorporateActionType.STOCK_SPLIT, datetime(2024, 2, 1, tzinfo=timezone.utc),
            ratio_from=1, ratio_to=2,
        )

        result = corporate_action_service.process_pending(now=RUN_AT)

        assert [s.action_id for s in result.processed] == [earlier.id, later.id]

    def test_list_actions_filters_by_status(self, corporate_action_service, action_repo):
        action_repo.create_action("TCS", CorporateActionType.STOCK_SPLIT, EFFECTIVE, ratio_from=1, ratio_to=2)
        action_repo.create_action(
            "ITC", CorporateActionType.STOCK_DIVIDEND, EFFECTIVE, dividend_amount=Decimal("5")
        )
        corporate_action_service.process_pending(now=RUN_AT)

        processed = corporate_action_service.list_actions(status=CorporateActionStatus.PROCESSED)

        assert processed.total_count == 2
        assert {a.action_type for a in processed.actions} == {
            CorporateActionType.STOCK_SPLIT,
            CorporateActionType.STOCK_DIVIDEND,
        }

    def test_malformed_action_cancelled_alone(self, corporate_action_service, grant, db):
        # Given: 최종 가격 없이 저장된 상장폐지와 정상 분할
        grant("1.0", symbol="ITC")
        grant("2.0")
        malformed = StockCorporateAction(
            stock_symbol="ITC",
            action_type=CorporateActionType.DELISTING,
            effective_date=EFFECTIVE,
            announcement_date=datetime(2024, 1, 1, tzinfo=timezone.utc),
            final_price=None,
            status=CorporateActionStatus.ANNOUNCED,
        )
        db.add(malformed)
        db.commit()
        split = corporate_action_service.action_repo.create_action(
            "TCS", CorporateActionType.STOCK_SPLIT, EFFECTIVE, ratio_from=1, ratio_to=2
        )

        # When
        result = corporate_action_service.process_pending(now=RUN_AT)

        # Then
        assert [c.action_id for c in result.cancelled] == [malformed.id]
        assert "Invalid parameters" in result.cancelled[0].error
        assert [p.action_id for p in result.processed] == [split.id]
        assert db.get(StockCorporateAction, malformed.id).status == CorporateActionStatus.CANCELLED
        assert db.get(StockCorporateAction, split.id).status == CorporateActionStatus.PROCESSED

    def test_listing_tolerates_malformed_action(self, corporate_action_service, db):
        db.add(
            StockCorporateAction(
                stock_symbol="ITC",
                action_type=CorporateActionType.MERGER,
                effective_date=EFFECTIVE,
                announcement_date=datetime(2024, 1, 1, tzinfo=timezone.utc),
                exchange_ratio=Decimal("0.5"),
            )
        )
        db.commit()

        listing = corporate_action_service.list_actions()

        assert listing.total_count == 1
        assert listing.actions[0].params is None
        assert listing.actions[0].params_error

    def test_stale_claim_released_and_processed(self, corporate_action_service, action_repo, grant, db):
        # Given: 한 시간 전에 선점된 뒤 끝나지 않은 분할
        grant("2.0")
        stale = action_repo.create_action(
            "TCS", CorporateActionType.STOCK_SPLIT, EFFECTIVE, ratio_from=1, ratio_to=2
        )
        db.execute(
            update(StockCorporateAction)
            .where(StockCorporateAction.id == stale.id)
            .values(status=CorporateActionStatus.PENDING, claimed_at=RUN_AT - timedelta(hours=1))
        )
        db.commit()
        bonus = action_repo.create_action(
            "TCS", CorporateActionType.BONUS_ISSUE, EFFECTIVE, ratio_from=2, ratio_to=1
        )

        # When
        result = corporate_action_service.process_pending(now=RUN_AT)

        # Then
        assert result.released_action_ids == [stale.id]
        assert result.skipped_action_ids == []
        assert [p.action_id for p in result.processed] == [stale.id, bonus.id]
        assert db.get(StockCorporateAction, stale.id).status == CorporateActionStatus.PROCESSED
        assert db.get(StockCorporateAction, bonus.id).status == CorporateActionStatus.PROCESSED

    def test_claim_without_timestamp_is_released(self, action_repo, db):
        action = action_repo.create_action(
            "TCS", CorporateActionType.STOCK_SPLIT, EFFECTIVE, ratio_from=1, ratio_to=2
        )
        db.execute(
            update(StockCorporateAction)
            .where(StockCorporateAction.id == action.id)
            .values(status=CorporateActionStatus.PENDING, claimed_at=None)
        )
        db.commit()

        released = action_repo.release_stale_claims(RUN_AT, 900)

        assert released == [action.id]
        assert db.get(StockCorporateAction, action.id).status == CorporateActionStatus.ANNOUNCED

    def test_claim_records_claimed_at(self, action_repo):
        action = action_repo.create_action(
            "TCS", CorporateActionType.STOCK_SPLIT, EFFECTIVE, ratio_from=1, ratio_to=2
        )

        assert action_repo.claim(action.id, RUN_AT)

        claimed = action_repo.get_by_id(action.id)
        assert claimed.status == CorporateActionStatus.PENDING
        assert claimed.claimed_at == RUN_AT
        assert action_repo.release_stale_claims(RUN_AT + timedelta(seconds=60), 900) == []


class TestCreateAction:
    def test_invalid_params_not_persisted(self, action_repo, db):
        with pytest.raises(ValidationError):
            action_repo.create_action(
                "TCS", CorporateActionType.STOCK_SPLIT, EFFECTIVE, ratio_from=0, ratio_to=2
            )

        db.rollback()
        assert db.query(StockCorporateAction).count() == 0

    def test_missing_merger_symbol_not_persisted(self, action_repo, db):
        with pytest.raises(ValidationError):
            action_repo.create_action(
                "TCS", CorporateActionType.MERGER, EFFECTIVE, exchange_ratio=Decimal("1")
            )

        assert db.query(StockCorporateAction).count() == 0


class TestAdjustmentConflicts:
    """조정 중 무결성 오류 구분 테스트"""

    CHECK_VIOLATION = IntegrityError(
        "INSERT INTO ledger_entries", {}, Exception("CHECK constraint failed: ck_ledger_entries_quantity")
    )

    def test_unique_conflict_is_duplicate(self):
        error = IntegrityError(
            "INSERT INTO reward_events", {}, Exception("UNIQUE constraint failed: reward_events.idempotency_key")
        )

        assert is_duplicate_adjustment(error)

    def test_check_violation_is_not_duplicate(self):
        assert not is_duplicate_adjustment(self.CHECK_VIOLATION)

    def test_check_violation_propagates(self, corporate_action_service, grant):
        grant("2.0")

        with patch.object(
            corporate_action_service.ledger_service, "post_lines", side_effect=self.CHECK_VIOLATION
        ):
            with pytest.raises(IntegrityError):
                corporate_action_service.process_stock_split("TCS", 1, 2, EFFECTIVE, action_id=5)

    def test_check_violation_cancels_action(self, corporate_action_service, action_repo, grant, db):
        # Given
        grant("2.0")
        action = action_repo.create_action(
            "TCS", CorporateActionType.STOCK_SPLIT, EFFECTIVE, ratio_from=1, ratio_to=2
        )

        # When
        with patch.object(
            corporate_action_service.ledger_service, "post_lines", side_effect=self.CHECK_VIOLATION
        ):
            result = corporate_action_service.process_pending(now=RUN_AT)

        # Then
        assert result.processed == []
        assert [c.action_id for c in result.cancelled] == [action.id]
        assert db.get(StockCorporateAction, action.id).status == CorporateActionStatus.CANCELLED
        assert db.query(RewardEvent).filter(RewardEvent.parent_reward_id.isnot(None)).count() == 0
