from __future__ import annotations

from datetime import date
from decimal import Decimal
from typing import TYPE_CHECKING, Any, Optional

from app.core.exceptions import NotFoundError
from app.core.logging import get_logger
from app.core.utils import month_bounds
from app.core.validation import parse
from app.crypto.codec import FieldCodec
from app.repositories.base import LedgerRepository
from app.schemas.models import CategoryLimitUpsert
from app.services.shares import calculate_impact_share, effective_split_by

if TYPE_CHECKING:
    from app.services.materializer import RecurringMaterializer

logger = get_logger("expenseflow.services.category_limit")

UNCATEGORIZED = "uncategorized"
ZERO = Decimal("0")


def limit_progress(spent: Decimal, limit: Decimal) -> Decimal:
    """Share of the limit used, saturated at 1. A zero limit saturates as soon as anything is spent."""
    if limit <= 0:
        return Decimal("1") if spent > 0 else ZERO
    return min(spent / limit, Decimal("1"))


class CategoryLimitService:
    def __init__(
        self,
        repository: LedgerRepository,
        codec: FieldCodec,
        materializer: Optional["RecurringMaterializer"] = None,
    ) -> None:
        self.repository = repository
        self.codec = codec
        self.materializer = materializer

    def _map_limit(self, record: dict[str, Any], category: dict[str, Any]) -> dict[str, Any]:
        return {
            "id": record["id"],
            "category_id": record["category_id"],
            "category_name": category["name"],
            "color": category["color"],
            # Legacy blank ceilings read as zero
            "limit": self.codec.decrypt_number(record.get("limit_amount_encrypted"), default=ZERO),
        }

    def _limits_with_categories(self, user_id: str) -> list[dict[str, Any]]:
        categories = {c["id"]: c for c in self.repository.list_categories(user_id)}
        mapped = [
            self._map_limit(record, categories[record["category_id"]])
            for record in self.repository.list_limits(user_id)
            if record.get("category_id") in categories
        ]
        return sorted(mapped, key=lambda row: row["category_name"].lower())

    def list_limits(self, user_id: str) -> list[dict[str, Any]]:
        return self._limits_with_categories(user_id)

    def upsert_limit(self, user_id: str, payload: Any) -> dict[str, Any]:
        data = parse(CategoryLimitUpsert, payload)
        category = self.repository.get_category(user_id, data.category_id)
        if category is None:
            raise NotFoundError("Category not found")
        record = self.repository.upsert_limit(
            user_id, data.category_id, self.codec.encrypt_number(data.limit)
        )
        return self._map_limit(record, category)

    def delete_limit(self, user_id: str, limit_id: str) -> None:
        if not self.repository.delete_limit(user_id, limit_id):
            raise NotFoundError("Limit not found")

    def spend_by_category(self, user_id: str, start: date, end: date) -> dict[str, Decimal]:
        """Sum split-adjusted expense impact per category for the date range."""
        groups = {g["id"]: g for g in self.repository.list_groups(user_id)}
        totals: dict[str, Decimal] = {}
        for expense in self.repository.list_expenses(user_id, start=start.isoformat(), end=end.isoformat()):
            amount = self.codec.decrypt_number(expense.get("amount_encrypted"))
            split_by = effective_split_by(expense, groups.get(expense.get("group_id") or ""))
            key = expense.get("category_id") or UNCATEGORIZED
            totals[key] = totals.get(key, ZERO) + calculate_impact_share(amount, split_by)
        return totals

    def build_report(self, user_id: str, month: date) -> dict[str, Any]:
        """Compare each category's monthly ceiling with what was spent in ``month``."""
        if self.materializer is not None:
            self.materializer.materialize_user(user_id)

        start, end = month_bounds(month)
        spend = self.spend_by_category(user_id, start, end)

        rows = []
        totals = {"limit": ZERO, "spent": ZERO, "overage": ZERO}
        for limit in self._limits_with_categories(user_id):
            spent = spend.get(limit["category_id"], ZERO)
            variance = spent - limit["limit"]
            rows.append(
                {
                    **limit,
                    "spent": spent,
                    "variance": variance,
                    "status": "over" if variance > 0 else "under",
                    "progress": limit_progress(spent, limit["limit"]),
                }
            )
            totals["limit"] += limit["limit"]
            totals["spent"] += spent
            if variance > 0:
                totals["overage"] += variance

        return {"month": start.strftime("%Y-%m"), "rows": rows, "totals": totals}
