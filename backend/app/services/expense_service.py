from __future__ import annotations

import re
from datetime import date
from decimal import Decimal
from typing import TYPE_CHECKING, Any, Optional

from app.core.exceptions import NotFoundError, ValidationError
from app.core.logging import get_logger
from app.core.utils import coerce_date
from app.core.validation import changes, parse
from app.crypto.codec import FieldCodec
from app.repositories.base import LedgerRepository
from app.schemas.models import BulkExpenseCreate, ExpenseCreate, ExpenseUpdate
from app.services.category_service import CategoryService
from app.services.shares import calculate_impact_share, effective_split_by, normalize_split

if TYPE_CHECKING:
    from app.services.materializer import RecurringMaterializer

logger = get_logger("expenseflow.services.expense")

_REQUIRED_ON_UPDATE = ("amount", "description", "occurred_on", "split_by")


def build_expense_record(
    codec: FieldCodec,
    user_id: str,
    amount: Decimal,
    description: str,
    occurred_on: date,
    category_id: Optional[str] = None,
    split_by: int = 1,
    group: Optional[dict[str, Any]] = None,
    recurring_source_id: Optional[str] = None,
) -> dict[str, Any]:
    """Build an encrypted expense record whose impact matches its split factor."""
    split = normalize_split(split_by)
    impact = calculate_impact_share(amount, effective_split_by({"split_by": split}, group))
    return {
        "user_id": user_id,
        "occurred_on": occurred_on.isoformat(),
        "category_id": category_id,
        "split_by": split,
        "recurring_source_id": recurring_source_id,
        "amount_encrypted": codec.encrypt_number(amount),
        "impact_amount_encrypted": codec.encrypt_number(impact),
        "description_encrypted": codec.encrypt_string(description),
    }


class ExpenseService:
    DEFAULT_PAGE_SIZE = 200

    def __init__(
        self,
        repository: LedgerRepository,
        codec: FieldCodec,
        materializer: Optional["RecurringMaterializer"] = None,
    ) -> None:
        self.repository = repository
        self.codec = codec
        self.materializer = materializer
        self.categories = CategoryService(repository)

    # =========================================================================
    # Mapping
    # =========================================================================

    def _lookups(self, user_id: str) -> tuple[dict[str, dict], dict[str, dict]]:
        categories = {c["id"]: c for c in self.repository.list_categories(user_id)}
        groups = {g["id"]: g for g in self.repository.list_groups(user_id)}
        return categories, groups

    def map_group(self, group: dict[str, Any]) -> dict[str, Any]:
        notes = self.codec.decrypt_string(group.get("notes_encrypted"), default=None)
        return {
            "id": group["id"],
            "title": self.codec.decrypt_string(group.get("title_encrypted")),
            "notes": notes or None,
            "split_by": normalize_split(group.get("split_by")),
        }

    def map_expense(
        self,
        record: dict[str, Any],
        categories: dict[str, dict],
        groups: dict[str, dict],
    ) -> dict[str, Any]:
        amount = self.codec.decrypt_number(record.get("amount_encrypted"))
        group = groups.get(record.get("group_id") or "")
        split_by = effective_split_by(record, group)
        impact = self.codec.decrypt_number(record.get("impact_amount_encrypted"), default=None)
        if impact is None:
            # Legacy rows without a stored impact
            impact = calculate_impact_share(amount, split_by)
        category = categories.get(record.get("category_id") or "")
        return {
            "id": record["id"],
            "amount": amount,
            "impact_amount": impact,
            "description": self.codec.decrypt_string(record.get("description_encrypted")),
            "occurred_on": coerce_date(record.get("occurred_on")),
            "split_by": split_by,
            "category": (
                {"id": category["id"], "name": category["name"], "color": category["color"]}
                if category
                else None
            ),
            "group": self.map_group(group) if group else None,
            "recurring_source_id": record.get("recurring_source_id"),
        }

    # =========================================================================
    # Reads
    # =========================================================================

    def list_expenses(
        self,
        user_id: str,
        start: Optional[date] = None,
        end: Optional[date] = None,
        limit: Optional[int] = DEFAULT_PAGE_SIZE,
    ) -> list[dict[str, Any]]:
        if self.materializer is not None:
            self.materializer.materialize_user(user_id)
        records = self.repository.list_expenses(
            user_id,
            start=start.isoformat() if start else None,
            end=end.isoformat() if end else None,
            limit=limit,
        )
        categories, groups = self._lookups(user_id)
        return [self.map_expense(record, categories, groups) for record in records]

    def get_expense(self, user_id: str, expense_id: str) -> dict[str, Any]:
        record = self.repository.get_expense(user_id, expense_id)
        if record is None:
            raise NotFoundError("Expense not found")
        categories, groups = self._lookups(user_id)
        return self.map_expense(record, categories, groups)

    def total_impact(self, user_id: str, start: date, end: date) -> Decimal:
        return sum(
            (e["impact_amount"] for e in self.list_expenses(user_id, start, end, limit=None)),
            Decimal("0"),
        )

    # =========================================================================
    # Writes
    # =========================================================================

    def create_expense(self, user_id: str, payload: Any) -> dict[str, Any]:
        data = parse(ExpenseCreate, payload)
        if data.category_id:
            self.categories.require_category(user_id, data.category_id)
        record = build_expense_record(
            self.codec,
            user_id,
            amount=data.amount,
            description=data.description,
            occurred_on=data.occurred_on,
            category_id=data.category_id,
            split_by=data.split_by,
        )
        created = self.repository.create_expenses([record])[0]
        categories, groups = self._lookups(user_id)
        return self.map_expense(created, categories, groups)

    def bulk_create_expenses(self, user_id: str, payload: Any) -> list[dict[str, Any]]:
        """Create several expenses at once, optionally sharing one group split factor."""
        data = parse(BulkExpenseCreate, payload)
        if not data.items:
            return []

        for category_id in {item.category_id for item in data.items if item.category_id}:
            self.categories.require_category(user_id, category_id)

        group = None
        if data.group is not None:
            group = {
                "user_id": user_id,
                "split_by": data.group.split_by,
                "title_encrypted": self.codec.encrypt_string(data.group.title),
                "notes_encrypted": self.codec.encrypt_optional(data.group.notes),
            }

        records = [
            build_expense_record(
                self.codec,
                user_id,
                amount=item.amount,
                description=item.description,
                occurred_on=item.occurred_on,
                category_id=item.category_id,
                split_by=item.split_by,
                group=group,
            )
            for item in data.items
        ]
        created = self.repository.create_expenses(records, group=group)
        logger.info(f"Bulk-created {len(created)} expenses for user {user_id}")
        categories, groups = self._lookups(user_id)
        return [self.map_expense(record, categories, groups) for record in created]

    def update_expense(self, user_id: str, expense_id: str, payload: Any) -> dict[str, Any]:
        data = changes(parse(ExpenseUpdate, payload))
        for field in _REQUIRED_ON_UPDATE:
            if field in data and data[field] is None:
                raise ValidationError(f"Invalid {field}: cannot be null", fields={field: "cannot be null"})

        existing = self.repository.get_expense(user_id, expense_id)
        if existing is None:
            raise NotFoundError("Expense not found")
        if data.get("category_id"):
            self.categories.require_category(user_id, data["category_id"])

        update: dict[str, Any] = {}
        if "occurred_on" in data:
            update["occurred_on"] = data["occurred_on"].isoformat()
        if "category_id" in data:
            update["category_id"] = data["category_id"]
        if "description" in data:
            update["description_encrypted"] = self.codec.encrypt_string(data["description"])
        if "split_by" in data:
            update["split_by"] = data["split_by"]

        if "amount" in data or "split_by" in data:
            amount = data.get("amount")
            if amount is None:
                amount = self.codec.decrypt_number(existing.get("amount_encrypted"))
            else:
                update["amount_encrypted"] = self.codec.encrypt_number(amount)
            group = self.repository.get_group(user_id, existing["group_id"]) if existing.get("group_id") else None
            split = effective_split_by({"split_by": data.get("split_by", existing.get("split_by"))}, group)
            update["impact_amount_encrypted"] = self.codec.encrypt_number(calculate_impact_share(amount, split))

        updated = self.repository.update_expense(user_id, expense_id, update) if update else existing
        if updated is None:
            raise NotFoundError("Expense not found")
        categories, groups = self._lookups(user_id)
        return self.map_expense(updated, categories, groups)

    def delete_expense(self, user_id: str, expense_id: str) -> None:
        if not self.repository.delete_expense(user_id, expense_id):
            raise NotFoundError("Expense not found")

    # =========================================================================
    # Suggestions
    # =========================================================================

    def get_suggestions(self, user_id: str, take: int = 5) -> list[str]:
        """Most recent distinct descriptions, newest first."""
        records = self.repository.list_expenses(user_id, limit=50)
        seen: list[str] = []
        for record in records:
            description = self.codec.decrypt_string(record.get("description_encrypted"))
            if description not in seen:
                seen.append(description)
        return seen[:take]

    def suggest_category(self, user_id: str, description: str) -> Optional[dict[str, Any]]:
        """Score past categorized expenses by token overlap with ``description``."""
        normalized = description.lower().strip()
        tokens = [token for token in re.split(r"\s+", normalized) if token]
        if not tokens:
            return None

        categories = {c["id"]: c for c in self.repository.list_categories(user_id)}
        best: Optional[dict[str, Any]] = None
        for record in self.repository.list_expenses(user_id, limit=200):
            category = categories.get(record.get("category_id") or "")
            if category is None:
                continue
            text = self.codec.decrypt_string(record.get("description_encrypted")).lower()
            words = text.split()
            score = 0.0
            for token in tokens:
                if token in words:
                    score += 2
                if text.startswith(token):
                    score += 1
                if token in text:
                    score += 0.5
            if score > 0 and (best is None or score > best["score"]):
                best = {"category_id": category["id"], "category_name": category["name"], "score": score}
        return best
