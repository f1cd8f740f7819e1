"""Integration tests for the ledger, analytics and account API routes."""

from __future__ import annotations

import io
import zipfile
from datetime import datetime, timezone
from unittest.mock import patch

import pytest
from fastapi.testclient import TestClient


@pytest.fixture
def category(client):
    response = client.post("/categories", json={"name": "Dining", "color": "#ff8800"})
    assert response.status_code == 201
    return response.json()


def create_expense(client, **overrides):
    payload = {"amount": "90", "description": "Dinner", "occurred_on": "2026-03-10", "split_by": 3}
    payload.update(overrides)
    response = client.post("/expenses", json=payload)
    assert response.status_code == 201, response.text
    return response.json()


class TestHealth:
    def test_health(self, anonymous_client):
        response = anonymous_client.get("/health")
        assert response.status_code == 200
        assert response.json() == {"status": "ok"}


class TestExpenses:
    def test_create_and_list(self, client, category):
        created = create_expense(client, category_id=category["id"])

        assert created["amount"] == 90.0
        assert created["impact_amount"] == 30.0
        assert created["category"]["name"] == "Dining"

        listed = client.get("/expenses").json()
        assert [e["id"] for e in listed] == [created["id"]]

    def test_validation_error_names_field(self, client):
        response = client.post(
            "/expenses", json={"amount": "abc", "description": "x", "occurred_on": "2026-03-10"}
        )
        assert response.status_code == 400
        body = response.json()
        assert "amount" in body["fields"]
        assert "amount" in body["error"]

    def test_unknown_category_is_404(self, client):
        response = client.post(
            "/expenses",
            json={"amount": "10", "description": "x", "occurred_on": "2026-03-10", "category_id": "nope"},
        )
        assert response.status_code == 404
        assert response.json() == {"error": "Category not found"}

    def test_partial_update(self, client, category):
        created = create_expense(client, category_id=category["id"])

        response = client.patch(f"/expenses/{created['id']}", json={"amount": "120"})

        assert response.status_code == 200
        data = response.json()
        assert data["impact_amount"] == 40.0
        assert data["category"]["id"] == category["id"]

    def test_other_users_cannot_see_expense(self, client):
        created = create_expense(client)
        response = client.get(f"/expenses/{created['id']}", headers={"X-Demo-User-Id": "someone-else"})
        assert response.status_code == 404

    def test_delete(self, client):
        created = create_expense(client)
        assert client.delete(f"/expenses/{created['id']}").json() == {"success": True}
        assert client.get(f"/expenses/{created['id']}").status_code == 404

    def test_bulk(self, client):
        response = client.post(
            "/expenses/bulk",
            json={
                "items": [
                    {"amount": "40", "description": "Lift pass", "occurred_on": "2026-03-10"},
                    {"amount": "60", "description": "Cabin", "occurred_on": "2026-03-11"},
                ],
                "group": {"title": "Ski trip", "split_by": 2},
            },
        )
        assert response.status_code == 201
        assert [e["impact_amount"] for e in response.json()] == [20.0, 30.0]

    def test_suggestions(self, client, category):
        create_expense(client, description="Pizza night", category_id=category["id"])

        assert client.get("/expenses/suggestions").json() == {"suggestions": ["Pizza night"]}
        suggestion = client.get("/expenses/suggest-category", params={"description": "pizza"}).json()
        assert suggestion["category_id"] == category["id"]

    def test_deleting_category_uncategorizes(self, client, category):
        created = create_expense(client, category_id=category["id"])
        assert client.delete(f"/categories/{category['id']}").status_code == 200
        assert client.get(f"/expenses/{created['id']}").json()["category"] is None


class TestRecurring:
    def test_create_toggle_delete(self, client):
        created = client.post(
            "/recurring", json={"amount": "1200", "description": "Rent", "due_day_of_month": 31}
        )
        assert created.status_code == 201
        template = created.json()
        assert template["is_active"] is True

        toggled = client.put(f"/recurring/{template['id']}")
        assert toggled.json()["is_active"] is False

        assert client.delete(f"/recurring/{template['id']}").status_code == 200
        assert client.get("/recurring").json() == []

    def test_due_day_out_of_range(self, client):
        response = client.post("/recurring", json={"amount": "10", "description": "x", "due_day_of_month": 32})
        assert response.status_code == 400
        assert "due_day_of_month" in response.json()["fields"]

    def test_recurring_income(self, client):
        response = client.post(
            "/income/recurring", json={"amount": "3000", "description": "Salary", "due_day_of_month": 1}
        )
        assert response.status_code == 201
        assert len(client.get("/income/recurring").json()) == 1


class TestIncome:
    def test_crud(self, client):
        created = client.post(
            "/income", json={"amount": "2500", "description": "Salary", "occurred_on": "2026-03-01"}
        ).json()
        assert created["amount"] == 2500.0

        updated = client.patch(f"/income/{created['id']}", json={"description": "Bonus"}).json()
        assert updated["description"] == "Bonus"

        assert client.delete(f"/income/{created['id']}").status_code == 200
        assert client.get("/income").json() == []


class TestAnalytics:
    def test_category_limit_report(self, client, category):
        assert client.post("/category-limits", json={"category_id": category["id"], "limit": "200"}).status_code == 200
        create_expense(client, amount="150", split_by=1, category_id=category["id"])
        create_expense(client, amount="100", split_by=1, category_id=category["id"], occurred_on="2026-03-20")

        report = client.get("/analytics/category-limits", params={"month": "2026-03"}).json()

        assert report["month"] == "2026-03"
        row = report["rows"][0]
        assert row["spent"] == 250.0
        assert row["variance"] == 50.0
        assert row["status"] == "over"
        assert row["progress"] == 1.0
        assert report["totals"]["overage"] == 50.0

    def test_upsert_twice_keeps_one_limit(self, client, category):
        client.post("/category-limits", json={"category_id": category["id"], "limit": "100"})
        client.post("/category-limits", json={"category_id": category["id"], "limit": "150"})

        limits = client.get("/category-limits").json()

        assert len(limits) == 1
        assert limits[0]["limit"] == 150.0

    def test_invalid_month_falls_back_to_current(self, client):
        response = client.get("/analytics/category-limits", params={"month": "March"})
        assert response.status_code == 200
        assert len(response.json()["month"]) == 7

    def test_summary(self, client):
        create_expense(client, occurred_on="2026-03-10")
        client.post("/income", json={"amount": "100", "description": "Refund", "occurred_on": "2026-03-02"})

        summary = client.get(
            "/analytics/summary", params={"preset": "custom", "start": "2026-03-01", "end": "2026-03-31"}
        ).json()

        assert summary["total_expenses"] == 30.0
        assert summary["total_income"] == 100.0
        assert summary["net"] == 70.0

    def test_spending_series(self, client):
        create_expense(client, occurred_on="2026-03-10")
        client.post("/income", json={"amount": "100", "description": "Refund", "occurred_on": "2026-03-02"})

        body = client.get(
            "/analytics/spending", params={"preset": "custom", "start": "2026-03-01", "end": "2026-03-31"}
        ).json()

        assert body["series"]["series"] == [
            {"period": "2026-03", "income": 100.0, "expenses": 30.0, "net": 70.0, "available_balance": 70.0}
        ]
        assert set(body["comparison"]) == {"current", "previous", "change", "expenses_change_pct"}

    def test_spending_month_preset_compares_requested_month(self, client):
        create_expense(client, occurred_on="2026-03-10")

        body = client.get("/analytics/spending", params={"preset": "month", "start": "2026-03-01"}).json()

        assert body["comparison"]["current"]["period"] == "2026-03"
        assert body["comparison"]["current"]["expenses"] == 30.0
        assert body["comparison"]["previous"]["period"] == "2026-02"

    def test_category_details(self, client, category):
        today = datetime.now(timezone.utc).date().isoformat()
        create_expense(client, occurred_on=today, category_id=category["id"])
        create_expense(client, occurred_on=today)

        body = client.get(
            "/analytics/category-details", params={"category": "Dining", "type": "expense", "preset": "month"}
        ).json()

        assert body["type"] == "expense"
        assert len(body["expenses"]) == 1
        assert body["total"] == 30.0

    def test_category_details_requires_type(self, client):
        response = client.get("/analytics/category-details", params={"category": "Dining"})
        assert response.status_code == 400
        assert "type" in response.json()["fields"]


class TestAccount:
    def test_update_settings(self, client):
        response = client.patch("/me", json={"default_currency": "EUR", "name": "Renamed"})
        assert response.status_code == 200
        assert response.json()["default_currency"] == "EUR"

    def test_invalid_currency(self, client):
        assert client.patch("/me", json={"default_currency": "euro"}).status_code == 400

    def test_delete_account_cascades(self, client, repo):
        create_expense(client)
        assert client.delete("/me").json() == {"success": True}
        assert repo.list_expenses("demo_test-user") == []

    def test_import_schedule_lifecycle(self, client):
        created = client.post(
            "/import/schedules",
            json={"name": "Bank", "frequency": "weekly", "source_url": "https://bank.example.com/a.csv"},
        )
        assert created.status_code == 201
        schedule = created.json()
        assert schedule["next_run_at"] is not None

        ran = client.post(f"/import/schedules/{schedule['id']}/run").json()
        assert ran["last_run_at"] is not None

        renamed = client.patch(f"/import/schedules/{schedule['id']}", json={"name": "Main bank"}).json()
        assert renamed["name"] == "Main bank"

        assert client.delete(f"/import/schedules/{schedule['id']}").status_code == 200
        assert client.get("/import/schedules").json() == []

    def test_schedule_rejects_non_http_source(self, client):
        response = client.post("/import/schedules", json={"name": "x", "source_url": "ftp://bank/a.csv"})
        assert response.status_code == 400

    def test_export(self, client):
        create_expense(client)

        response = client.get("/export/account")

        assert response.status_code == 200
        assert response.headers["content-type"] == "application/zip"
        assert response.headers["cache-control"] == "no-store"
        assert "expense-flow-account-export-" in response.headers["content-disposition"]
        with zipfile.ZipFile(io.BytesIO(response.content)) as archive:
            assert "data/expenses.json" in archive.namelist()


class TestErrorHandling:
    def test_undecryptable_value_is_generic_500(self, client, repo):
        created = create_expense(client)
        repo.update_expense("demo_test-user", created["id"], {"amount_encrypted": "v1.AAAA.AAAA.AAAA"})

        response = client.get(f"/expenses/{created['id']}")

        assert response.status_code == 500
        assert response.json() == {"error": "Internal Server Error"}

    def test_unexpected_error_is_generic_500(self, client):
        from app.main import app

        unsafe_client = TestClient(app, raise_server_exceptions=False)
        with patch(
            "app.services.category_service.CategoryService.list_categories",
            side_effect=RuntimeError("secret detail"),
        ):
            response = unsafe_client.get("/categories", headers={"X-Demo-User-Id": "test-user"})

        assert response.status_code == 500
        assert response.json() == {"error": "Internal Server Error"}

    def test_unknown_route(self, client):
        response = client.get("/nope")
        assert response.status_code == 404
        assert response.json() == {"error": "Not Found"}
