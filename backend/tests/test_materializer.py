"""Unit tests for recurring entry materialization."""

from __future__ import annotations

from datetime import date, datetime, timezone
from decimal import Decimal
from uuid import NAMESPACE_URL, uuid5

import pytest

from app.services.expense_service import ExpenseService
from app.services.materializer import (
    RecurringMaterializer,
    first_due_date,
    following_due_date,
    latest_due_before,
)
from app.services.recurring_service import RecurringService


def make_template(repo, codec, user_id, kind="expense", **overrides):
    record = {
        "user_id": user_id,
        "due_day_of_month": 15,
        "is_active": True,
        "last_generated_on": None,
        "created_at": "2026-01-10T08:00:00+00:00",
        "amount_encrypted": codec.encrypt_number(Decimal("90")),
        "description_encrypted": codec.encrypt_string("Rent"),
    }
    if kind == "expense":
        record.update({"category_id": None, "split_by": 1})
    record.update(overrides)
    return repo.create_template(kind, record)


def occurred_dates(repo, user_id):
    return sorted(e["occurred_on"] for e in repo.list_expenses(user_id))


class TestDueDates:
    def test_day_31_clamps_in_february(self):
        assert following_due_date(date(2026, 1, 31), 31) == date(2026, 2, 28)

    def test_clamped_month_does_not_shift_following_months(self):
        assert following_due_date(date(2026, 2, 28), 31) == date(2026, 3, 31)

    def test_leap_year(self):
        assert following_due_date(date(2028, 1, 31), 30) == date(2028, 2, 29)

    def test_first_due_in_creation_month(self):
        assert first_due_date(date(2026, 3, 10), 15) == date(2026, 3, 15)
        assert first_due_date(date(2026, 3, 15), 15) == date(2026, 3, 15)

    def test_first_due_rolls_to_next_month(self):
        assert first_due_date(date(2026, 3, 20), 15) == date(2026, 4, 15)

    def test_latest_due_before(self):
        assert latest_due_before(date(2026, 6, 20), 15) == date(2026, 6, 15)
        assert latest_due_before(date(2026, 6, 15), 15) == date(2026, 5, 15)
        assert latest_due_before(date(2026, 3, 1), 31) == date(2026, 2, 28)


class TestMaterializeTemplate:
    def test_catches_up_missed_periods_with_clamping(self, repo, codec, user_id):
        make_template(repo, codec, user_id, due_day_of_month=31)
        materializer = RecurringMaterializer(repo, codec)

        result = materializer.materialize_user(user_id, today=date(2026, 4, 1))

        assert result.expenses == 3
        assert occurred_dates(repo, user_id) == ["2026-01-31", "2026-02-28", "2026-03-31"]
        template = repo.list_templates("expense", user_id)[0]
        assert template["last_generated_on"] == "2026-03-31"

    def test_second_pass_creates_nothing(self, repo, codec, user_id):
        make_template(repo, codec, user_id)
        materializer = RecurringMaterializer(repo, codec)

        materializer.materialize_user(user_id, today=date(2026, 3, 20))
        again = materializer.materialize_user(user_id, today=date(2026, 3, 20))

        assert again.total == 0
        assert occurred_dates(repo, user_id) == ["2026-01-15", "2026-02-15", "2026-03-15"]

    def test_stale_snapshot_loses_the_race(self, repo, codec, user_id):
        template = make_template(repo, codec, user_id)
        first = RecurringMaterializer(repo, codec)
        second = RecurringMaterializer(repo, codec)

        assert first.materialize_template("expense", template, date(2026, 2, 20)) == 2
        assert second.materialize_template("expense", template, date(2026, 2, 20)) == 0
        assert len(repo.list_expenses(user_id)) == 2

    def test_nothing_due_yet(self, repo, codec, user_id):
        make_template(repo, codec, user_id, created_at="2026-03-20T08:00:00+00:00")
        result = RecurringMaterializer(repo, codec).materialize_user(user_id, today=date(2026, 3, 25))
        assert result.total == 0

    def test_due_today_is_generated(self, repo, codec, user_id):
        make_template(repo, codec, user_id, created_at="2026-03-10T08:00:00+00:00")
        result = RecurringMaterializer(repo, codec).materialize_user(user_id, today=date(2026, 3, 15))
        assert result.expenses == 1

    def test_inactive_templates_are_skipped(self, repo, codec, user_id):
        make_template(repo, codec, user_id, is_active=False)
        result = RecurringMaterializer(repo, codec).materialize_user(user_id, today=date(2026, 6, 1))
        assert result.total == 0
        assert repo.list_expenses(user_id) == []

    def test_continues_after_last_generated(self, repo, codec, user_id):
        make_template(repo, codec, user_id, last_generated_on="2026-02-15")
        RecurringMaterializer(repo, codec).materialize_user(user_id, today=date(2026, 4, 15))
        assert occurred_dates(repo, user_id) == ["2026-03-15", "2026-04-15"]

    def test_entry_ids_are_deterministic(self, repo, codec, user_id):
        template = make_template(repo, codec, user_id)
        RecurringMaterializer(repo, codec).materialize_user(user_id, today=date(2026, 1, 20))
        expected = str(uuid5(NAMESPACE_URL, f"recurring:expense:{template['id']}:2026-01-15"))
        assert repo.list_expenses(user_id)[0]["id"] == expected

    def test_periods_per_pass_are_bounded(self, repo, codec, user_id):
        make_template(repo, codec, user_id, created_at="2000-01-01T00:00:00+00:00", due_day_of_month=1)
        result = RecurringMaterializer(repo, codec).materialize_user(user_id, today=date(2026, 3, 1))
        assert result.expenses == RecurringMaterializer.MAX_PERIODS_PER_PASS

    def test_income_templates(self, repo, codec, user_id):
        make_template(repo, codec, user_id, kind="income", due_day_of_month=1)
        result = RecurringMaterializer(repo, codec).materialize_user(user_id, today=date(2026, 3, 5))
        assert result.incomes == 2
        assert [i["occurred_on"] for i in repo.list_incomes(user_id)] == ["2026-03-01", "2026-02-01"]


class TestGeneratedEntries:
    def test_generated_expense_carries_split_impact(self, repo, codec, user_id):
        category = repo.create_category({"user_id": user_id, "name": "Housing", "color": "#112233"})
        template = make_template(repo, codec, user_id, split_by=3, category_id=category["id"])
        service = ExpenseService(repo, codec)

        RecurringMaterializer(repo, codec).materialize_user(user_id, today=date(2026, 1, 20))
        expense = service.list_expenses(user_id)[0]

        assert expense["amount"] == Decimal("90")
        assert expense["impact_amount"] == Decimal("30")
        assert expense["description"] == "Rent"
        assert expense["category"]["name"] == "Housing"
        assert expense["recurring_source_id"] == template["id"]


class FixedClock:
    def __init__(self, now: datetime) -> None:
        self.now = now

    def __call__(self) -> datetime:
        return self.now


class TestReactivation:
    @pytest.fixture
    def clock(self):
        return FixedClock(datetime(2026, 6, 20, 9, 0, tzinfo=timezone.utc))

    def test_paused_periods_are_not_backfilled(self, repo, codec, user_id, clock):
        template = make_template(repo, codec, user_id, is_active=False, last_generated_on="2026-01-15")
        service = RecurringService(repo, codec, "expense", clock=clock)

        toggled = service.toggle_template(user_id, template["id"])

        assert toggled["is_active"] is True
        assert toggled["last_generated_on"] == date(2026, 6, 15)
        materializer = RecurringMaterializer(repo, codec)
        assert materializer.materialize_user(user_id, today=date(2026, 6, 20)).total == 0
        assert materializer.materialize_user(user_id, today=date(2026, 7, 15)).expenses == 1


    def test_pausing_writes_periods_already_due(self, repo, codec, user_id, clock):
        template = make_template(repo, codec, user_id, last_generated_on="2026-05-15")
        service = RecurringService(repo, codec, "expense", clock=clock)

        paused = service.update_template(user_id, template["id"], {"is_active": False})

        assert paused["is_active"] is False
        assert paused["last_generated_on"] == date(2026, 6, 15)
        assert occurred_dates(repo, user_id) == ["2026-06-15"]
        assert repo.get_template("expense", user_id, template["id"])["deactivated_on"] == "2026-06-20"

    def test_pause_and_resume_keeps_every_active_period(self, repo, codec, user_id):
        template = make_template(repo, codec, user_id)
        clock = FixedClock(datetime(2026, 3, 20, 9, 0, tzinfo=timezone.utc))
        service = RecurringService(repo, codec, "expense", clock=clock)

        service.toggle_template(user_id, template["id"])
        clock.now = datetime(2026, 3, 21, 9, 0, tzinfo=timezone.utc)
        resumed = service.toggle_template(user_id, template["id"])
        RecurringMaterializer(repo, codec).materialize_user(user_id, today=date(2026, 3, 21))

        assert resumed["is_active"] is True
        assert occurred_dates(repo, user_id) == ["2026-01-15", "2026-02-15", "2026-03-15"]
        assert repo.get_template("expense", user_id, template["id"])["deactivated_on"] is None

    def test_resume_skips_only_periods_due_after_pause(self, repo, codec, user_id):
        template = make_template(repo, codec, user_id)
        clock = FixedClock(datetime(2026, 2, 20, 9, 0, tzinfo=timezone.utc))
        service = RecurringService(repo, codec, "expense", clock=clock)

        service.toggle_template(user_id, template["id"])
        clock.now = datetime(2026, 5, 1, 9, 0, tzinfo=timezone.utc)
        resumed = service.toggle_template(user_id, template["id"])
        RecurringMaterializer(repo, codec).materialize_user(user_id, today=date(2026, 5, 20))

        assert resumed["last_generated_on"] == date(2026, 4, 15)
        assert occurred_dates(repo, user_id) == ["2026-01-15", "2026-02-15", "2026-05-15"]

    def test_pausing_income_template_writes_due_income(self, repo, codec, user_id, clock):
        template = make_template(repo, codec, user_id, kind="income", last_generated_on="2026-05-15")
        service = RecurringService(repo, codec, "income", clock=clock)

        service.toggle_template(user_id, template["id"])

        assert [i["occurred_on"] for i in repo.list_incomes(user_id)] == ["2026-06-15"]

    def test_pausing_catches_up_past_the_per_pass_cap(self, repo, codec, user_id, clock):
        template = make_template(
            repo, codec, user_id, created_at="2000-01-01T00:00:00+00:00", due_day_of_month=1
        )
        service = RecurringService(repo, codec, "expense", clock=clock)

        paused = service.toggle_template(user_id, template["id"])

        assert len(repo.list_expenses(user_id)) == 318
        assert paused["last_generated_on"] == date(2026, 6, 1)
