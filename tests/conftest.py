import random
from datetime import datetime, timezone
from decimal import Decimal

import pytest
from fastapi.testclient import TestClient

from stockrewards.config import Settings
from stockrewards.database.connection import build_engine, build_session_factory
from stockrewards.database.session import get_db
from stockrewards.models import Base
from stockrewards.schemas.reward import CreateRewardRequest
from stockrewards.services.corporate_action_service import CorporateActionService
from stockrewards.services.ledger_service import LedgerService
from stockrewards.services.portfolio_service import PortfolioService
from stockrewards.services.price_service import PriceCache, PriceService
from stockrewards.services.reward_service import RewardService
from stockrewards.services.validation_service import ValidationService


class FakeClock:
    """PriceCache TTL 테스트용 수동 시계"""

    def __init__(self, start: float = 1000.0):
        self.now = start

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


@pytest.fixture
def test_settings():
    return Settings(_env_file=None, DATABASE_URL=None)


@pytest.fixture
def engine(tmp_path):
    """테스트마다 새 파일 기반 SQLite DB (스레드 간 공유 가능)"""
    db_engine = build_engine(f"sqlite:///{tmp_path / 'test.db'}")
    Base.metadata.create_all(bind=db_engine)
    yield db_engine
    db_engine.dispose()


@pytest.fixture
def session_factory(engine):
    return build_session_factory(engine)


@pytest.fixture
def db(session_factory):
    session = session_factory()
    yield session
    session.close()


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def price_cache(clock):
    return PriceCache(ttl_seconds=300.0, clock=clock)


@pytest.fixture
def rng():
    return random.Random(42)


@pytest.fixture
def price_service(db, price_cache, test_settings, rng):
    return PriceService(db, price_cache, settings=test_settings, rng=rng)


@pytest.fixture
def ledger_service(db, test_settings):
    return LedgerService(db, settings=test_settings)


@pytest.fixture
def validation_service(db, test_settings):
    return ValidationService(db, settings=test_settings)


@pytest.fixture
def reward_service(db, price_service, test_settings):
    return RewardService(db, price_service=price_service, settings=test_settings)


@pytest.fixture
def corporate_action_service(db, test_settings):
    return CorporateActionService(db, settings=test_settings)


@pytest.fixture
def portfolio_service(db, price_service, test_settings):
    return PortfolioService(db, price_service=price_service, settings=test_settings)


@pytest.fixture
def make_request():
    def _make(
        user_id="user1",
        stock_symbol="RELIANCE",
        quantity="2.5",
        idempotency_key="key-1",
        timestamp=None,
    ):
        return CreateRewardRequest(
            user_id=user_id,
            stock_symbol=stock_symbol,
            quantity=Decimal(quantity) if quantity is not None else None,
            idempotency_key=idempotency_key,
            timestamp=timestamp or datetime(2024, 1, 10, 10, 0, tzinfo=timezone.utc),
        )

    return _make


@pytest.fixture
def app(session_factory):
    """테스트 DB 세션을 사용하는 애플리케이션"""
    from stockrewards.main import create_app

    application = create_app()

    def override_get_db():
        session = session_factory()
        try:
            yield session
        finally:
            session.close()

    application.dependency_overrides[get_db] = override_get_db
    yield application
    application.dependency_overrides.clear()


@pytest.fixture
def client(app):
    return TestClient(app)
