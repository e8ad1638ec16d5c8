from datetime import datetime, timezone
from decimal import Decimal

from stockrewards.models import CorporateActionType, StockCorporateAction
from stockrewards.repositories.corporate_action_repository import CorporateActionRepository

BASE = "/api/v1/corporate-actions"


class TestCorporateActionRoutes:
    """기업 행위 라우트 테스트"""

    def test_process_and_list(self, client, db):
        # Given
        client.post(
            "/api/v1/rewards",
            json={
                "userId": "user1",
                "stockSymbol": "TCS",
                "quantity": "2",
                "idempotencyKey": "ca-1",
                "timestamp": "2024-01-10T00:00:00Z",
            },
        )
        repo = CorporateActionRepository(db)
        split = repo.create_action(
            "TCS",
            CorporateActionType.STOCK_SPLIT,
            datetime(2024, 2, 1, tzinfo=timezone.utc),
            ratio_from=1,
            ratio_to=2,
        )
        repo.create_action(
            "ITC",
            CorporateActionType.STOCK_DIVIDEND,
            datetime(2099, 1, 1, tzinfo=timezone.utc),
            dividend_amount=Decimal("5"),
        )

        # When
        response = client.post(f"{BASE}/process")

        # Then
        assert response.status_code == 200
        data = response.json()
        assert [p["action_id"] for p in data["processed"]] == [split.id]
        assert data["processed"][0]["adjusted_count"] == 1
        assert data["cancelled"] == []

        portfolio = client.get("/api/v1/users/user1/portfolio").json()
        assert Decimal(portfolio["portfolio"][0]["shares"]) == Decimal("4")

        processed = client.get(BASE, params={"status": "PROCESSED"}).json()
        assert processed["total_count"] == 1
        assert processed["actions"][0]["params"]["ratio_to"] == 2

        announced = client.get(BASE, params={"symbol": "itc"}).json()
        assert announced["actions"][0]["status"] == "ANNOUNCED"

    def test_invalid_status_filter_is_422(self, client):
        response = client.get(BASE, params={"status": "UNKNOWN"})

        assert response.status_code == 422

    def test_list_reports_malformed_action(self, client, db):
        db.add(
            StockCorporateAction(
                stock_symbol="ITC",
                action_type=CorporateActionType.STOCK_DIVIDEND,
                effective_date=datetime(2024, 2, 1, tzinfo=timezone.utc),
                announcement_date=datetime(2024, 1, 1, tzinfo=timezone.utc),
            )
        )
        db.commit()

        response = client.get(BASE)

        assert response.status_code == 200
        action = response.json()["actions"][0]
        assert action["action_type"] == "STOCK_DIVIDEND"
        assert action["params"] is None
        assert action["params_error"]
