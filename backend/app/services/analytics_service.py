from __future__ import annotations

from datetime import date
from decimal import Decimal
from typing import Any, Optional

from app.core.utils import add_months, month_bounds, resolve_range, utc_now
from app.services.expense_service import ExpenseService
from app.services.income_service import IncomeService

ZERO = Decimal("0")
RECURRING_INCOME = "Recurring"
ONE_TIME_INCOME = "One-time"


def month_keys(start: date, end: date) -> list[str]:
    """``YYYY-MM`` for every month touched by ``start..end``, oldest first."""
    keys = []
    year, month = start.year, start.month
    while (year, month) <= (end.year, end.month):
        keys.append(f"{year:04d}-{month:02d}")
        year, month = add_months(year, month, 1)
    return keys


class AnalyticsService:
    def __init__(self, expenses: ExpenseService, incomes: IncomeService) -> None:
        self.expenses = expenses
        self.incomes = incomes

    def spend_summary(
        self,
        user_id: str,
        preset: Optional[str] = None,
        start: Optional[date] = None,
        end: Optional[date] = None,
        today: Optional[date] = None,
    ) -> dict[str, Any]:
        """Total split-adjusted spending against income over a range preset."""
        window = resolve_range(preset, start, end, today=today)
        spent = self.expenses.total_impact(user_id, window["start"], window["end"])
        earned = self.incomes.total_income(user_id, window["start"], window["end"])
        return {
            **window,
            "total_expenses": spent,
            "total_income": earned,
            "net": earned - spent,
        }

    def balance_series(
        self,
        user_id: str,
        preset: Optional[str] = None,
        start: Optional[date] = None,
        end: Optional[date] = None,
        today: Optional[date] = None,
    ) -> dict[str, Any]:
        """Monthly income, split-adjusted spending and the running available balance."""
        window = resolve_range(preset, start, end, today=today)
        keys = month_keys(window["start"], window["end"])
        buckets = {key: {"income": ZERO, "expenses": ZERO} for key in keys}

        for expense in self.expenses.list_expenses(user_id, window["start"], window["end"], limit=None):
            key = expense["occurred_on"].strftime("%Y-%m")
            if key in buckets:
                buckets[key]["expenses"] += expense["impact_amount"]
        for income in self.incomes.list_incomes(user_id, window["start"], window["end"]):
            key = income["occurred_on"].strftime("%Y-%m")
            if key in buckets:
                buckets[key]["income"] += income["amount"]

        available = ZERO
        series = []
        for key in keys:
            income, spent = buckets[key]["income"], buckets[key]["expenses"]
            available += income - spent
            series.append(
                {
                    "period": key,
                    "income": income,
                    "expenses": spent,
                    "net": income - spent,
                    "available_balance": available,
                }
            )
        return {**window, "series": series}

    def _month_totals(self, user_id: str, first: date) -> dict[str, Any]:
        start, end = month_bounds(first)
        spent = self.expenses.total_impact(user_id, start, end)
        earned = self.incomes.total_income(user_id, start, end)
        return {"period": first.strftime("%Y-%m"), "income": earned, "expenses": spent, "net": earned - spent}

    def period_comparison(
        self,
        user_id: str,
        month: Optional[date] = None,
        today: Optional[date] = None,
    ) -> dict[str, Any]:
        """Compare a month (default: the current one) with the month before it."""
        current_first = (month or today or utc_now().date()).replace(day=1)
        year, previous_month = add_months(current_first.year, current_first.month, -1)
        current = self._month_totals(user_id, current_first)
        previous = self._month_totals(user_id, date(year, previous_month, 1))

        pct = None
        if previous["expenses"] > 0:
            pct = ((current["expenses"] - previous["expenses"]) / previous["expenses"] * 100).quantize(
                Decimal("0.01")
            )
        return {
            "current": current,
            "previous": previous,
            "change": {key: current[key] - previous[key] for key in ("income", "expenses", "net")},
            "expenses_change_pct": pct,
        }

    def category_details(
        self,
        user_id: str,
        category: str,
        kind: str,
        preset: Optional[str] = None,
        today: Optional[date] = None,
    ) -> dict[str, Any]:
        """Entries behind one slice of the analytics charts.

        Expenses match on category name. Income slices are ``Recurring`` (generated
        from a template) and ``One-time``; any other income slice is empty.
        """
        window = resolve_range(preset, today=today)
        result: dict[str, Any] = {**window, "category": category, "type": kind, "expenses": [], "incomes": []}

        if kind == "expense":
            entries = [
                e
                for e in self.expenses.list_expenses(user_id, window["start"], window["end"], limit=None)
                if e["category"] is not None and e["category"]["name"] == category
            ]
            result["expenses"] = entries
            result["total"] = sum((e["impact_amount"] for e in entries), ZERO)
            return result

        entries = []
        if category in (RECURRING_INCOME, ONE_TIME_INCOME):
            want_recurring = category == RECURRING_INCOME
            entries = [
                i
                for i in self.incomes.list_incomes(user_id, window["start"], window["end"])
                if bool(i["recurring_source_id"]) == want_recurring
            ]
        result["incomes"] = entries
        result["total"] = sum((i["amount"] for i in entries), ZERO)
        return result
