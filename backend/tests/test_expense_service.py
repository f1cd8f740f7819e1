"""Unit tests for ExpenseService and split shares."""

from __future__ import annotations

from datetime import date
from decimal import Decimal

import pytest

from app.core.exceptions import NotFoundError, ValidationError
from app.services.expense_service import ExpenseService
from app.services.shares import calculate_impact_share, effective_split_by, normalize_split


@pytest.fixture
def service(repo, codec):
    return ExpenseService(repo, codec)


def expense_payload(**overrides):
    payload = {"amount": "90.00", "description": "Dinner", "occurred_on": "2026-03-10", "split_by": 3}
    payload.update(overrides)
    return payload


class TestShares:
    def test_impact_share(self):
        assert calculate_impact_share(Decimal("90"), 3) == Decimal("30")
        assert calculate_impact_share(Decimal("40"), 2) == Decimal("20")

    def test_invalid_split_counts_as_one(self):
        assert normalize_split(0) == 1
        assert normalize_split(None) == 1
        assert normalize_split("x") == 1

    def test_group_split_wins(self):
        assert effective_split_by({"split_by": 2}, {"split_by": 4}) == 4
        assert effective_split_by({"split_by": 2}, None) == 2


class TestCreate:
    def test_amounts_are_encrypted_at_rest(self, service, repo, user_id):
        created = service.create_expense(user_id, expense_payload())

        stored = repo.get_expense(user_id, created["id"])
        assert "amount" not in stored
        assert stored["amount_encrypted"].startswith("v1.")
        assert "Dinner" not in str(stored)

    def test_impact_matches_split(self, service, user_id):
        created = service.create_expense(user_id, expense_payload())
        assert created["amount"] == Decimal("90.00")
        assert created["impact_amount"] == Decimal("30")

    def test_unknown_category(self, service, user_id):
        with pytest.raises(NotFoundError):
            service.create_expense(user_id, expense_payload(category_id="nope"))

    def test_invalid_amount(self, service, user_id):
        with pytest.raises(ValidationError) as exc_info:
            service.create_expense(user_id, expense_payload(amount="-5"))
        assert "amount" in exc_info.value.fields

    def test_bulk_with_group_split(self, service, user_id):
        created = service.bulk_create_expenses(
            user_id,
            {
                "items": [
                    expense_payload(amount="40", split_by=1),
                    expense_payload(amount="80", split_by=1),
                ],
                "group": {"title": "Ski trip", "split_by": 2},
            },
        )

        assert [e["impact_amount"] for e in created] == [Decimal("20"), Decimal("40")]
        assert all(e["group"]["title"] == "Ski trip" for e in created)
        assert created[0]["group"]["id"] == created[1]["group"]["id"]


class TestUpdate:
    def test_amount_change_recomputes_impact(self, service, user_id):
        created = service.create_expense(user_id, expense_payload())
        updated = service.update_expense(user_id, created["id"], {"amount": "120"})
        assert updated["impact_amount"] == Decimal("40")

    def test_split_change_recomputes_impact(self, service, user_id):
        created = service.create_expense(user_id, expense_payload())
        updated = service.update_expense(user_id, created["id"], {"split_by": 2})
        assert updated["impact_amount"] == Decimal("45")

    def test_absent_fields_are_untouched(self, service, repo, user_id):
        category = repo.create_category({"user_id": user_id, "name": "Food", "color": "#123456"})
        created = service.create_expense(user_id, expense_payload(category_id=category["id"]))

        updated = service.update_expense(user_id, created["id"], {"description": "Lunch"})

        assert updated["description"] == "Lunch"
        assert updated["category"]["id"] == category["id"]
        assert updated["amount"] == Decimal("90.00")

    def test_null_category_clears_it(self, service, repo, user_id):
        category = repo.create_category({"user_id": user_id, "name": "Food", "color": "#123456"})
        created = service.create_expense(user_id, expense_payload(category_id=category["id"]))

        updated = service.update_expense(user_id, created["id"], {"category_id": None})

        assert updated["category"] is None

    def test_null_amount_is_rejected(self, service, user_id):
        created = service.create_expense(user_id, expense_payload())
        with pytest.raises(ValidationError) as exc_info:
            service.update_expense(user_id, created["id"], {"amount": None})
        assert "amount" in exc_info.value.fields

    def test_other_users_expense_is_not_found(self, service, user_id):
        created = service.create_expense(user_id, expense_payload())
        with pytest.raises(NotFoundError):
            service.update_expense("intruder", created["id"], {"description": "mine now"})
        with pytest.raises(NotFoundError):
            service.get_expense("intruder", created["id"])


class TestReads:
    def test_list_is_newest_first_and_ranged(self, service, user_id):
        service.create_expense(user_id, expense_payload(occurred_on="2026-01-05"))
        service.create_expense(user_id, expense_payload(occurred_on="2026-03-05"))
        service.create_expense(user_id, expense_payload(occurred_on="2026-02-05"))

        dates = [e["occurred_on"] for e in service.list_expenses(user_id)]
        assert dates == [date(2026, 3, 5), date(2026, 2, 5), date(2026, 1, 5)]

        ranged = service.list_expenses(user_id, start=date(2026, 2, 1), end=date(2026, 2, 28))
        assert len(ranged) == 1

    def test_legacy_row_without_impact(self, service, repo, codec, user_id):
        created = service.create_expense(user_id, expense_payload())
        repo.update_expense(user_id, created["id"], {"impact_amount_encrypted": None})
        assert service.get_expense(user_id, created["id"])["impact_amount"] == Decimal("30")

    def test_deleted_category_leaves_expense_uncategorized(self, service, repo, user_id):
        category = repo.create_category({"user_id": user_id, "name": "Food", "color": "#123456"})
        created = service.create_expense(user_id, expense_payload(category_id=category["id"]))
        repo.delete_category(user_id, category["id"])
        assert service.get_expense(user_id, created["id"])["category"] is None


class TestSuggestions:
    def test_recent_unique_descriptions(self, service, user_id):
        for day, description in [(1, "Coffee"), (2, "Groceries"), (3, "Coffee")]:
            service.create_expense(user_id, expense_payload(description=description, occurred_on=f"2026-03-0{day}"))
        assert service.get_suggestions(user_id) == ["Coffee", "Groceries"]

    def test_suggest_category(self, service, repo, user_id):
        food = repo.create_category({"user_id": user_id, "name": "Food", "color": "#123456"})
        travel = repo.create_category({"user_id": user_id, "name": "Travel", "color": "#654321"})
        service.create_expense(user_id, expense_payload(description="Pizza night", category_id=food["id"]))
        service.create_expense(user_id, expense_payload(description="Train ticket", category_id=travel["id"]))

        suggestion = service.suggest_category(user_id, "pizza")

        assert suggestion["category_id"] == food["id"]
        assert service.suggest_category(user_id, "   ") is None
