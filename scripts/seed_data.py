"""
샘플 데이터 시드 스크립트
리워드 지급(시세/원장 포함)과 예정된 기업 행위를 초기 데이터로 설정
"""

import sys
import os

sys.path.append(os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

from datetime import timedelta
from decimal import Decimal

from stockrewards.config import settings
from stockrewards.database.connection import SessionLocal, engine
from stockrewards.models import Base, CorporateActionType
from stockrewards.repositories.corporate_action_repository import (
    CorporateActionRepository,
)
from stockrewards.schemas.reward import CreateRewardRequest
from stockrewards.services.price_service import PriceCache, PriceService
from stockrewards.services.reward_service import RewardService
from stockrewards.utils.timezone_utils import utc_now


def seed_rewards_data():
    """기본 리워드 데이터 시드 (같은 키로 재실행해도 중복 생성되지 않음)"""

    now = utc_now()
    default_rewards = [
        ("user1", "RELIANCE", "2.5", "test-reward-1", now - timedelta(days=2)),
        ("user1", "TCS", "1.0", "test-reward-2", now - timedelta(days=1)),
        ("user1", "INFOSYS", "3.0", "test-reward-3", now),
        ("user2", "RELIANCE", "1.5", "test-reward-4", now),
    ]

    db = SessionLocal()
    try:
        service = RewardService(
            db, price_service=PriceService(db, PriceCache.from_settings(settings))
        )
        for user_id, symbol, quantity, key, timestamp in default_rewards:
            result = service.submit_reward(
                CreateRewardRequest(
                    user_id=user_id,
                    stock_symbol=symbol,
                    quantity=Decimal(quantity),
                    idempotency_key=key,
                    timestamp=timestamp,
                )
            )
            status = "created" if result.created else "exists"
            print(f"   {key}: {user_id} {quantity} {symbol} ({status})")
        print(f"✅ 리워드 시드 데이터 생성 완료: {len(default_rewards)}건")
    except Exception as e:
        db.rollback()
        print(f"❌ 리워드 시드 데이터 생성 실패: {str(e)}")
        raise
    finally:
        db.close()


def seed_corporate_actions():
    """예정된 기업 행위 시드 (효력일이 미래이므로 처리 호출 전까지 ANNOUNCED 유지)"""

    now = utc_now()
    db = SessionLocal()
    try:
        repo = CorporateActionRepository(db)
        if repo.list_actions():
            print("ℹ️ 기업 행위 데이터가 이미 존재합니다")
            return

        repo.create_action(
            "TCS",
            CorporateActionType.STOCK_SPLIT,
            effective_date=now + timedelta(days=7),
            ratio_from=1,
            ratio_to=2,
            description="TCS 1:2 stock split",
        )
        repo.create_action(
            "INFOSYS",
            CorporateActionType.STOCK_DIVIDEND,
            effective_date=now + timedelta(days=14),
            dividend_amount=Decimal("12.5"),
            description="INFOSYS interim dividend",
        )
        print("✅ 기업 행위 시드 데이터 생성 완료: 2건")
    except Exception as e:
        db.rollback()
        print(f"❌ 기업 행위 시드 데이터 생성 실패: {str(e)}")
        raise
    finally:
        db.close()


if __name__ == "__main__":
    Base.metadata.create_all(bind=engine)
    seed_rewards_data()
    seed_corporate_actions()
