from decimal import Decimal

BASE = "/api/v1/users"


def _grant(client, key, symbol="TCS", quantity="2", timestamp=None):
    body = {"userId": "user1", "stockSymbol": symbol, "quantity": quantity, "idempotencyKey": key}
    if timestamp:
        body["timestamp"] = timestamp
    response = client.post("/api/v1/rewards", json=body)
    assert response.status_code == 201
    return response.json()


class TestUserRoutes:
    """사용자 조회 라우트 테스트"""

    def test_portfolio(self, client):
        # Given
        _grant(client, "u-1", symbol="TCS", quantity="2")
        _grant(client, "u-2", symbol="ITC", quantity="1.25")

        # When
        response = client.get(f"{BASE}/user1/portfolio")

        # Then
        assert response.status_code == 200
        data = response.json()
        shares = {h["stock_symbol"]: Decimal(h["shares"]) for h in data["portfolio"]}
        assert shares == {"ITC": Decimal("1.25"), "TCS": Decimal("2")}
        assert Decimal(data["total_portfolio_value"]) == sum(
            Decimal(h["current_value"]) for h in data["portfolio"]
        )

    def test_stats_counts_todays_rewards(self, client):
        _grant(client, "u-1", quantity="2")
        _grant(client, "u-2", quantity="0.5")
        _grant(client, "u-3", quantity="5", timestamp="2024-01-01T00:00:00Z")

        response = client.get(f"{BASE}/user1/stats")

        assert response.status_code == 200
        data = response.json()
        assert [
            (s["stock_symbol"], Decimal(s["total_shares"])) for s in data["today_rewards_by_stock"]
        ] == [("TCS", Decimal("2.5"))]
        assert Decimal(data["portfolio_details"][0]["shares"]) == Decimal("7.5")

    def test_historical_inr_excludes_today(self, client):
        _grant(client, "u-1", quantity="1", timestamp="2024-01-01T09:00:00Z")
        _grant(client, "u-2", quantity="1")

        response = client.get(f"{BASE}/user1/historical-inr")

        assert response.status_code == 200
        data = response.json()
        assert [p["date"] for p in data["historical_inr_value"]] == ["2024-01-01"]
        assert data["total_events"] == 1

    def test_unknown_user_is_empty(self, client):
        response = client.get(f"{BASE}/nobody/historical-inr")

        assert response.status_code == 200
        assert response.json()["message"] == "No historical data available"
