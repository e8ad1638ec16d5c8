from datetime import datetime, timedelta, timezone
from decimal import Decimal
from unittest.mock import patch

import pytest
from sqlalchemy.exc import OperationalError

from stockrewards.core.exceptions import (
    HistoricalPriceNotFoundError,
    InvalidInputError,
    PriceUnavailableError,
)
from stockrewards.models import StockPriceHistory
from stockrewards.schemas.price import PriceSource


def _add_quote(db, symbol, price, fetched_at):
    db.add(StockPriceHistory(stock_symbol=symbol, price=Decimal(price), fetched_at=fetched_at))
    db.commit()


class TestPriceCache:
    """PriceCache 테스트"""

    def test_entry_expires_after_ttl(self, price_cache, clock, price_service):
        # Given
        point = price_service.get_latest_price("TCS")

        # When
        clock.advance(299)
        fresh = price_cache.get("TCS")
        clock.advance(1)
        expired = price_cache.get("TCS")

        # Then
        assert fresh == point
        assert expired is None
        assert price_cache.get_stale("TCS") == point

    def test_clear(self, price_cache, price_service):
        price_service.get_latest_price("TCS")
        assert len(price_cache) == 1

        price_service.clear_cache()

        assert len(price_cache) == 0
        assert price_cache.get_stale("TCS") is None


class TestGetLatestPrice:
    """현재가 조회 테스트"""

    def test_two_calls_within_ttl_return_identical_price(self, price_service, clock):
        # When
        first = price_service.get_latest_price("reliance")
        clock.advance(60)
        second = price_service.get_latest_price("RELIANCE")

        # Then
        assert first.symbol == "RELIANCE"
        assert first.source == PriceSource.SIMULATED
        assert second.source == PriceSource.CACHE
        assert first.price == second.price

    def test_price_is_positive_and_persisted(self, price_service, db, clock):
        prices = []
        for _ in range(20):
            prices.append(price_service.get_latest_price("ITC").price)
            clock.advance(301)

        assert all(price > 0 for price in prices)
        assert all(price == price.quantize(Decimal("0.0001")) for price in prices)
        assert db.query(StockPriceHistory).filter_by(stock_symbol="ITC").count() == 20

    def test_base_price_within_five_percent(self, price_service):
        """이력이 없으면 기준가 ±5%"""
        point = price_service.get_latest_price("RELIANCE")

        assert Decimal("2375") <= point.price <= Decimal("2625")

    def test_unknown_symbol_uses_default_base(self, price_service):
        point = price_service.get_latest_price("UNLISTED")

        assert Decimal("950") <= point.price <= Decimal("1050")

    def test_existing_quote_perturbed_within_two_percent(self, price_service, db):
        # Given
        _add_quote(db, "TCS", "100.0000", datetime(2024, 1, 1, tzinfo=timezone.utc))

        # When
        point = price_service.get_latest_price("TCS")

        # Then
        assert Decimal("98") <= point.price <= Decimal("102")

    def test_price_floored_at_minimum(self, price_service, db):
        _add_quote(db, "PENNY", "0.5000", datetime(2024, 1, 1, tzinfo=timezone.utc))

        point = price_service.get_latest_price("PENNY")

        assert point.price == Decimal("1.0000")

    def test_stale_cache_served_when_lookup_fails(self, price_service, clock):
        # Given
        cached = price_service.get_latest_price("TCS")
        clock.advance(600)

        # When
        with patch.object(
            price_service.price_repo,
            "get_latest",
            side_effect=OperationalError("SELECT", {}, Exception("db down")),
        ):
            point = price_service.get_latest_price("TCS")

        # Then
        assert point.price == cached.price
        assert point.source == PriceSource.STALE_CACHE
        assert point.is_fallback

    def test_unavailable_without_cache(self, price_service):
        with patch.object(
            price_service.price_repo,
            "get_latest",
            side_effect=OperationalError("SELECT", {}, Exception("db down")),
        ):
            with pytest.raises(PriceUnavailableError) as exc_info:
                price_service.get_latest_price("TCS")

        assert exc_info.value.status_code == 503
        assert exc_info.value.error_code == "PRICE_UNAVAILABLE"

    def test_blank_symbol_rejected(self, price_service):
        with pytest.raises(InvalidInputError):
            price_service.get_latest_price("  ")


class TestPriceForDate:
    """특정 시점 가격 조회 테스트"""

    def test_returns_newest_quote_at_or_before(self, price_service, db):
        # Given
        base = datetime(2024, 1, 1, tzinfo=timezone.utc)
        _add_quote(db, "TCS", "100", base)
        _add_quote(db, "TCS", "110", base + timedelta(days=1))
        _add_quote(db, "TCS", "120", base + timedelta(days=2))

        # When
        point = price_service.get_price_for_date("TCS", base + timedelta(days=1, hours=5))

        # Then
        assert point.price == Decimal("110")
        assert point.source == PriceSource.HISTORY
        assert point.observed_at == base + timedelta(days=1)

    def test_exact_timestamp_is_included(self, price_service, db):
        at = datetime(2024, 1, 1, 12, tzinfo=timezone.utc)
        _add_quote(db, "TCS", "105", at)

        assert price_service.get_price_for_date("TCS", at).price == Decimal("105")

    def test_fallback_is_marked(self, price_service):
        point = price_service.get_price_for_date(
            "TCS", datetime(2020, 1, 1, tzinfo=timezone.utc)
        )

        assert point.source == PriceSource.LATEST_FALLBACK
        assert point.is_fallback

    def test_no_fallback_raises(self, price_service):
        with pytest.raises(HistoricalPriceNotFoundError) as exc_info:
            price_service.get_price_for_date(
                "TCS", datetime(2020, 1, 1, tzinfo=timezone.utc), allow_fallback=False
            )

        assert exc_info.value.status_code == 404


class TestHistoricalPrices:
    def test_range_is_inclusive_and_ascending(self, price_service, db):
        base = datetime(2024, 1, 1, tzinfo=timezone.utc)
        for day, price in [(2, "102"), (0, "100"), (1, "101"), (5, "105")]:
            _add_quote(db, "TCS", price, base + timedelta(days=day))

        result = price_service.get_historical_prices("tcs", base, base + timedelta(days=2))

        assert result.symbol == "TCS"
        assert result.total_count == 3
        assert [p.price for p in result.prices] == [
            Decimal("100"),
            Decimal("101"),
            Decimal("102"),
        ]

    def test_inverted_range_rejected(self, price_service):
        start = datetime(2024, 1, 2, tzinfo=timezone.utc)
        with pytest.raises(InvalidInputError):
            price_service.get_historical_prices("TCS", start, start - timedelta(days=1))
