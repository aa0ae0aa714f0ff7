import pytest
from fastapi.testclient import TestClient

from config import Settings
from main import create_app


@pytest.fixture()
def app():
    settings = Settings(
        database_url="sqlite://",
        timezone="UTC",
        token_secret="test-secret",
        token_max_age_secs=300,
        environment="development",
        scheduler_enabled=False,
    )
    return create_app(settings)


@pytest.fixture()
def client(app):
    return TestClient(app)


@pytest.fixture()
def headers(app):
    token = app.state.verifier.issue("user-1", "user@example.com")
    return {"Authorization": f"Bearer {token}"}


def test_health_needs_no_credentials(client):
    response = client.get("/api/health")
    assert response.status_code == 200
    assert response.json()["status"] == "ok"
    assert response.json()["version"] == "0.4.0"


def test_missing_and_invalid_credentials(client):
    response = client.get("/api/balance")
    assert response.status_code == 401
    assert response.json() == {"error": "No token provided"}

    response = client.get("/api/balance", headers={"Authorization": "Bearer nope"})
    assert response.status_code == 403
    assert response.json() == {"error": "Invalid or expired token"}


def test_profile_absent_then_saved(client, headers):
    assert client.get("/api/profile", headers=headers).status_code == 404

    response = client.post(
        "/api/profile", json={"name": "Ana", "email": "ana@example.com"}, headers=headers
    )
    assert response.status_code == 200
    assert response.json()["profile"]["name"] == "Ana"

    profile = client.get("/api/profile", headers=headers).json()
    assert profile["email"] == "ana@example.com"

    client.post("/api/profile", json={"name": "Ana Maria"}, headers=headers)
    profile = client.get("/api/profile", headers=headers).json()
    assert profile["name"] == "Ana Maria"
    assert profile["email"] == "ana@example.com"


def test_balance_requires_both_fields(client, headers):
    assert client.get("/api/balance", headers=headers).json() == {
        "cashAmount": 0,
        "onlineAmount": 0,
    }

    response = client.post("/api/balance", json={"cashAmount": 10}, headers=headers)
    assert response.status_code == 400
    assert response.json() == {"error": "Both cashAmount and onlineAmount are required"}

    response = client.post(
        "/api/balance", json={"cashAmount": 0, "onlineAmount": "250"}, headers=headers
    )
    assert response.status_code == 200
    assert response.json()["balance"]["onlineAmount"] == 250.0


def test_expense_lifecycle_keeps_balance_consistent(client, headers):
    client.post(
        "/api/balance", json={"cashAmount": 100, "onlineAmount": 100}, headers=headers
    )

    response = client.post(
        "/api/expense",
        json={"amount": 50, "type": "cash", "category": "Food", "description": "Groceries"},
        headers=headers,
    )
    assert response.status_code == 200
    body = response.json()
    expense_id = body["id"]
    assert body["expense"]["amount"] == 50.0
    assert client.get("/api/balance", headers=headers).json()["cashAmount"] == 50.0

    response = client.put(
        f"/api/expense/{expense_id}",
        json={"amount": 30, "type": "online", "category": "Food"},
        headers=headers,
    )
    assert response.status_code == 200
    balance = client.get("/api/balance", headers=headers).json()
    assert balance["cashAmount"] == 100.0
    assert balance["onlineAmount"] == 70.0

    listed = client.get("/api/expenses", headers=headers).json()
    assert [e["id"] for e in listed] == [expense_id]

    response = client.delete(f"/api/expense/{expense_id}", headers=headers)
    assert response.json() == {"message": "Expense deleted"}
    assert client.get("/api/balance", headers=headers).json()["onlineAmount"] == 100.0


def test_expense_validation_and_not_found(client, headers):
    for amount in (10000.01, -0.01):
        response = client.post(
            "/api/expense",
            json={"amount": amount, "type": "cash", "category": "Food"},
            headers=headers,
        )
        assert response.status_code == 400
        assert "error" in response.json()

    response = client.post(
        "/api/expense", json={"amount": 5, "category": "Food"}, headers=headers
    )
    assert response.json() == {"error": "Amount, type, and category are required"}

    response = client.put("/api/expense/999", json={"amount": 5}, headers=headers)
    assert response.status_code == 404
    assert response.json() == {"error": "Expense not found"}

    assert client.delete("/api/expense/999", headers=headers).status_code == 404


def test_expense_list_filters(client, headers):
    for description, category, date in (
        ("Flat white coffee", "Food", "2025-04-01T08:00:00.000Z"),
        ("Sandwich", "Food", "2025-04-02T12:00:00.000Z"),
        ("Coffee machine", "Home", "2025-04-03T12:00:00.000Z"),
    ):
        client.post(
            "/api/expense",
            json={
                "amount": 3,
                "type": "cash",
                "category": category,
                "description": description,
                "date": date,
            },
            headers=headers,
        )

    response = client.get(
        "/api/expenses", params={"category": "Food", "search": "COFFEE"}, headers=headers
    )
    assert [e["description"] for e in response.json()] == ["Flat white coffee"]

    response = client.get(
        "/api/expenses", params={"startDate": "2025-04-02"}, headers=headers
    )
    assert [e["date"] for e in response.json()] == [
        "2025-04-03T12:00:00.000Z",
        "2025-04-02T12:00:00.000Z",
    ]

    response = client.get("/api/expenses", params={"endDate": "soon"}, headers=headers)
    assert response.status_code == 400


def test_budget_upsert_and_validation(client, headers):
    first = client.post(
        "/api/budgets",
        json={"category": "Food", "limitAmount": 100, "period": "monthly"},
        headers=headers,
    ).json()
    second = client.post(
        "/api/budgets",
        json={"category": "Food", "limitAmount": 150, "period": "monthly"},
        headers=headers,
    ).json()
    assert first["message"] == "Budget created"
    assert second["message"] == "Budget updated"
    assert second["id"] == first["id"]
    assert second["budget"]["limitAmount"] == 150.0

    response = client.post(
        "/api/budgets",
        json={"category": "Food", "limitAmount": 100, "period": "yearly"},
        headers=headers,
    )
    assert response.status_code == 400
    assert response.json() == {"error": "Period must be daily, weekly, or monthly"}

    assert client.delete("/api/budgets/999", headers=headers).status_code == 200
    assert len(client.get("/api/budgets", headers=headers).json()) == 1


def test_budget_limit_must_be_storable(client, headers):
    for limit, message in (
        (0.004, "limitAmount must be greater than 0"),
        (1e20, "Amount is too large"),
    ):
        response = client.post(
            "/api/budgets",
            json={"category": "Food", "limitAmount": limit, "period": "daily"},
            headers=headers,
        )
        assert response.status_code == 400
        assert response.json() == {"error": message}
    assert client.get("/api/budgets", headers=headers).json() == []


def test_balance_amounts_must_be_storable(client, headers):
    for body in (
        {"cashAmount": 1e20, "onlineAmount": 0},
        {"cashAmount": 0, "onlineAmount": -1e20},
    ):
        response = client.post("/api/balance", json=body, headers=headers)
        assert response.status_code == 400
        assert response.json() == {"error": "Amount is too large"}
    assert client.get("/api/balance", headers=headers).json() == {
        "cashAmount": 0,
        "onlineAmount": 0,
    }


def test_budget_check_and_stats(client, headers):
    client.post(
        "/api/budgets",
        json={"category": "Food", "limitAmount": 100, "period": "daily"},
        headers=headers,
    )
    client.post(
        "/api/expense",
        json={"amount": 95, "type": "online", "category": "Food"},
        headers=headers,
    )

    alerts = client.get("/api/stats/budget/check", headers=headers).json()
    assert [(a["category"], a["severity"], a["percentage"]) for a in alerts] == [
        ("Food", "warning", 95)
    ]

    stats = client.get("/api/stats", headers=headers).json()
    assert stats["today"] == {"total": 95.0, "count": 1}
    assert stats["byType"] == {"cash": 0.0, "online": 95.0}
    assert len(stats["trends"]) == 1


def test_recurring_endpoints(client, headers):
    response = client.post(
        "/api/recurring",
        json={"amount": 9.99, "type": "online", "category": "Subscriptions",
              "description": "Music", "frequency": "monthly"},
        headers=headers,
    )
    assert response.status_code == 200
    rule_id = response.json()["id"]

    response = client.post(
        "/api/recurring",
        json={"amount": 1, "type": "cash", "category": "Gym", "frequency": "hourly"},
        headers=headers,
    )
    assert response.status_code == 400
    assert response.json() == {"error": "Invalid frequency"}

    applied = client.post("/api/recurring/apply", headers=headers).json()
    assert applied == {"message": "Applied 0 recurring expense(s)", "applied": []}

    response = client.post(
        f"/api/recurring/{rule_id}/toggle", json={"active": False}, headers=headers
    )
    assert response.json()["recurring"]["active"] is False
    assert client.post(
        "/api/recurring/999/toggle", json={"active": False}, headers=headers
    ).status_code == 404

    assert client.delete(f"/api/recurring/{rule_id}", headers=headers).status_code == 200
    assert client.get("/api/recurring", headers=headers).json() == []


def test_users_do_not_see_each_other(client, headers, app):
    client.post(
        "/api/expense",
        json={"amount": 1, "type": "cash", "category": "Food"},
        headers=headers,
    )
    other = {"Authorization": f"Bearer {app.state.verifier.issue('user-2')}"}
    assert client.get("/api/expenses", headers=other).json() == []
