"""
Recurring Materializer

Turns monthly recurring templates into concrete ledger entries. Runs lazily on
ledger reads instead of on a scheduler, so it must be idempotent: every
period is written through ``materialize_period``, which inserts the entry and
advances ``last_generated_on`` as one compare-and-set. A caller that loses the
race sees the advanced value and does nothing more. Each pass is capped per
template (see ``RecurringMaterializer.MAX_PERIODS_PER_PASS``).
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import date, datetime
from typing import Any, Callable, Optional
from uuid import NAMESPACE_URL, uuid5

from app.core.logging import get_logger
from app.core.utils import add_months, clamped_date, coerce_date, utc_now
from app.crypto.codec import FieldCodec
from app.repositories.base import LedgerRepository, TemplateKind
from app.services.expense_service import build_expense_record
from app.services.income_service import build_income_record

logger = get_logger("expenseflow.services.materializer")

TEMPLATE_KINDS: tuple[TemplateKind, ...] = ("expense", "income")


def due_date_for(year: int, month: int, due_day: int) -> date:
    """Due date in the given month; days past month end clamp to the last day."""
    return clamped_date(year, month, due_day)


def following_due_date(previous: date, due_day: int) -> date:
    """Due date in the month after ``previous``, using the template's unclamped day."""
    year, month = add_months(previous.year, previous.month, 1)
    return due_date_for(year, month, due_day)


def first_due_date(created_on: date, due_day: int) -> date:
    """First period for a template that has never generated an entry.

    The creation month counts when its due date has not passed yet.
    """
    candidate = due_date_for(created_on.year, created_on.month, due_day)
    if candidate >= created_on:
        return candidate
    return following_due_date(created_on, due_day)


def next_due_date(template: dict[str, Any]) -> date:
    due_day = int(template["due_day_of_month"])
    last = coerce_date(template.get("last_generated_on"))
    if last is not None:
        return following_due_date(last, due_day)
    created_on = coerce_date(template.get("created_at")) or utc_now().date()
    return first_due_date(created_on, due_day)


def latest_due_before(day: date, due_day: int) -> date:
    """Most recent due date strictly before ``day``."""
    candidate = due_date_for(day.year, day.month, due_day)
    if candidate < day:
        return candidate
    year, month = add_months(day.year, day.month, -1)
    return due_date_for(year, month, due_day)


@dataclass
class MaterializeResult:
    expenses: int = 0
    incomes: int = 0

    @property
    def total(self) -> int:
        return self.expenses + self.incomes


class RecurringMaterializer:
    """Catches templates up to today, writing every missed period in one pass.

    A single pass writes at most ``MAX_PERIODS_PER_PASS`` (240, twenty years of
    monthly periods) per template, so a read against a very old template may
    return partial history; the next read resumes where this one stopped.
    Pausing a template through ``RecurringService`` loops until nothing is due.
    """

    MAX_PERIODS_PER_PASS = 240

    def __init__(
        self,
        repository: LedgerRepository,
        codec: FieldCodec,
        clock: Callable[[], datetime] = utc_now,
    ) -> None:
        self.repository = repository
        self.codec = codec
        self.clock = clock

    def today(self) -> date:
        return self.clock().date()

    def materialize_user(self, user_id: str, today: Optional[date] = None) -> MaterializeResult:
        """Catch up every active template the user owns."""
        today = today or self.today()
        result = MaterializeResult()
        for kind in TEMPLATE_KINDS:
            for template in self.repository.find_active_templates(kind, user_id):
                generated = self.materialize_template(kind, template, today)
                if kind == "expense":
                    result.expenses += generated
                else:
                    result.incomes += generated
        return result

    def materialize_template(self, kind: TemplateKind, template: dict[str, Any], today: date) -> int:
        """Write one entry per elapsed period of ``template``; returns how many were written."""
        if not template.get("is_active"):
            return 0

        due_day = int(template["due_day_of_month"])
        expected = template.get("last_generated_on")
        due = next_due_date(template)
        if due > today:
            return 0

        amount = self.codec.decrypt_number(template.get("amount_encrypted"))
        description = self.codec.decrypt_string(template.get("description_encrypted"))

        generated = 0
        while due <= today and generated < self.MAX_PERIODS_PER_PASS:
            entry = self._build_entry(kind, template, amount, description, due)
            applied = self.repository.materialize_period(
                kind,
                template["user_id"],
                template["id"],
                expected_last_generated_on=expected,
                new_last_generated_on=due.isoformat(),
                entry=entry,
            )
            if not applied:
                logger.info(f"Recurring {kind} {template['id']} advanced concurrently; skipping")
                break
            generated += 1
            expected = due.isoformat()
            due = following_due_date(due, due_day)

        if generated:
            logger.info(f"Materialized {generated} {kind} entries from template {template['id']}")
        return generated

    def _build_entry(self, kind, template, amount, description, due: date) -> dict[str, Any]:
        if kind == "expense":
            entry = build_expense_record(
                self.codec,
                template["user_id"],
                amount=amount,
                description=description,
                occurred_on=due,
                category_id=template.get("category_id"),
                split_by=template.get("split_by", 1),
                recurring_source_id=template["id"],
            )
        else:
            entry = build_income_record(
                self.codec,
                template["user_id"],
                amount=amount,
                description=description,
                occurred_on=due,
                recurring_source_id=template["id"],
            )
        entry["id"] = str(uuid5(NAMESPACE_URL, f"recurring:{kind}:{template['id']}:{due.isoformat()}"))
        return entry
