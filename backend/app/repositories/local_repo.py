"""
Local Repository

In-process implementation of the ledger storage ports, used for development
and tests. A single re-entrant lock serializes writes so multi-record
operations (grouped inserts, template advances, cascades) are atomic with
respect to concurrent request threads.
"""

import copy
import threading
from datetime import datetime, timezone
from typing import Any, Optional
from uuid import uuid4

from app.repositories.base import Record, TemplateKind

_TEMPLATE_COLLECTIONS = {"expense": "recurring_expenses", "income": "recurring_incomes"}
_ENTRY_COLLECTIONS = {"expense": "expenses", "income": "incomes"}

_OWNED_COLLECTIONS = (
    "categories",
    "category_limits",
    "expense_groups",
    "expenses",
    "recurring_expenses",
    "incomes",
    "recurring_incomes",
    "api_keys",
    "import_schedules",
)


def _now() -> str:
    return datetime.now(timezone.utc).isoformat()


class LocalRepository:
    def __init__(self) -> None:
        self._lock = threading.RLock()
        self._users: dict[str, Record] = {}
        self._data: dict[str, dict[str, Record]] = {name: {} for name in _OWNED_COLLECTIONS}

    # =========================================================================
    # Generic helpers
    # =========================================================================

    def _insert(self, collection: str, record: Record) -> Record:
        stored = copy.deepcopy(record)
        stored.setdefault("id", str(uuid4()))
        stored.setdefault("created_at", _now())
        stored.setdefault("updated_at", stored["created_at"])
        self._data[collection][stored["id"]] = stored
        return copy.deepcopy(stored)

    def _get(self, collection: str, user_id: str, record_id: str) -> Optional[Record]:
        record = self._data[collection].get(record_id)
        if record is None or record.get("user_id") != user_id:
            return None
        return record

    def _find(self, collection: str, user_id: str, record_id: str) -> Optional[Record]:
        with self._lock:
            record = self._get(collection, user_id, record_id)
            return copy.deepcopy(record) if record else None

    def _list(self, collection: str, user_id: str) -> list[Record]:
        with self._lock:
            return [
                copy.deepcopy(record)
                for record in self._data[collection].values()
                if record.get("user_id") == user_id
            ]

    def _update(self, collection: str, user_id: str, record_id: str, data: Record) -> Optional[Record]:
        with self._lock:
            record = self._get(collection, user_id, record_id)
            if record is None:
                return None
            record.update(copy.deepcopy(data))
            record["updated_at"] = _now()
            return copy.deepcopy(record)

    def _delete(self, collection: str, user_id: str, record_id: str) -> bool:
        with self._lock:
            if self._get(collection, user_id, record_id) is None:
                return False
            del self._data[collection][record_id]
            return True

    @staticmethod
    def _in_range(record: Record, start: Optional[str], end: Optional[str]) -> bool:
        occurred = record.get("occurred_on", "")
        if start and occurred < start:
            return False
        if end and occurred > end:
            return False
        return True

    @staticmethod
    def _newest_first(records: list[Record]) -> list[Record]:
        return sorted(
            records,
            key=lambda r: (r.get("occurred_on", ""), r.get("created_at", "")),
            reverse=True,
        )

    # =========================================================================
    # Users
    # =========================================================================

    def get_user(self, user_id: str) -> Optional[Record]:
        with self._lock:
            user = self._users.get(user_id)
            return copy.deepcopy(user) if user else None

    def create_user(self, record: Record) -> Record:
        with self._lock:
            existing = self._users.get(record["id"])
            if existing:
                return copy.deepcopy(existing)
            stored = copy.deepcopy(record)
            stored.setdefault("created_at", _now())
            stored.setdefault("updated_at", stored["created_at"])
            self._users[stored["id"]] = stored
            return copy.deepcopy(stored)

    def update_user(self, user_id: str, data: Record) -> Optional[Record]:
        with self._lock:
            user = self._users.get(user_id)
            if user is None:
                return None
            user.update(copy.deepcopy(data))
            user["updated_at"] = _now()
            return copy.deepcopy(user)

    def delete_user(self, user_id: str) -> bool:
        with self._lock:
            if self._users.pop(user_id, None) is None:
                return False
            for collection in _OWNED_COLLECTIONS:
                owned = [rid for rid, r in self._data[collection].items() if r.get("user_id") == user_id]
                for rid in owned:
                    del self._data[collection][rid]
            return True

    # =========================================================================
    # Categories
    # =========================================================================

    def list_categories(self, user_id: str) -> list[Record]:
        return sorted(self._list("categories", user_id), key=lambda r: r.get("name", "").lower())

    def get_category(self, user_id: str, category_id: str) -> Optional[Record]:
        return self._find("categories", user_id, category_id)

    def create_category(self, record: Record) -> Record:
        with self._lock:
            return self._insert("categories", record)

    def update_category(self, user_id: str, category_id: str, data: Record) -> Optional[Record]:
        return self._update("categories", user_id, category_id, data)

    def delete_category(self, user_id: str, category_id: str) -> bool:
        with self._lock:
            if self._get("categories", user_id, category_id) is None:
                return False
            for collection in ("expenses", "recurring_expenses"):
                for record in self._data[collection].values():
                    if record.get("user_id") == user_id and record.get("category_id") == category_id:
                        record["category_id"] = None
                        record["updated_at"] = _now()
            limits = self._data["category_limits"]
            for limit_id in [
                lid for lid, r in limits.items()
                if r.get("user_id") == user_id and r.get("category_id") == category_id
            ]:
                del limits[limit_id]
            del self._data["categories"][category_id]
            return True

    # =========================================================================
    # Expenses
    # =========================================================================

    def list_expenses(
        self,
        user_id: str,
        start: Optional[str] = None,
        end: Optional[str] = None,
        limit: Optional[int] = None,
    ) -> list[Record]:
        expenses = [e for e in self._list("expenses", user_id) if self._in_range(e, start, end)]
        expenses = self._newest_first(expenses)
        return expenses[:limit] if limit else expenses

    def get_expense(self, user_id: str, expense_id: str) -> Optional[Record]:
        return self._find("expenses", user_id, expense_id)

    def create_expenses(self, records: list[Record], group: Optional[Record] = None) -> list[Record]:
        with self._lock:
            if group is not None:
                group = self._insert("expense_groups", group)
            created = []
            for record in records:
                if group is not None:
                    record = {**record, "group_id": group["id"]}
                created.append(self._insert("expenses", record))
            return created

    def update_expense(self, user_id: str, expense_id: str, data: Record) -> Optional[Record]:
        return self._update("expenses", user_id, expense_id, data)

    def delete_expense(self, user_id: str, expense_id: str) -> bool:
        return self._delete("expenses", user_id, expense_id)

    def get_group(self, user_id: str, group_id: str) -> Optional[Record]:
        return self._find("expense_groups", user_id, group_id)

    def list_groups(self, user_id: str) -> list[Record]:
        return sorted(self._list("expense_groups", user_id), key=lambda r: r.get("created_at", ""))

    # =========================================================================
    # Income
    # =========================================================================

    def list_incomes(
        self,
        user_id: str,
        start: Optional[str] = None,
        end: Optional[str] = None,
    ) -> list[Record]:
        incomes = [i for i in self._list("incomes", user_id) if self._in_range(i, start, end)]
        return self._newest_first(incomes)

    def get_income(self, user_id: str, income_id: str) -> Optional[Record]:
        return self._find("incomes", user_id, income_id)

    def create_income(self, record: Record) -> Record:
        with self._lock:
            return self._insert("incomes", record)

    def update_income(self, user_id: str, income_id: str, data: Record) -> Optional[Record]:
        return self._update("incomes", user_id, income_id, data)

    def delete_income(self, user_id: str, income_id: str) -> bool:
        return self._delete("incomes", user_id, income_id)

    # =========================================================================
    # Recurring templates
    # =========================================================================

    def list_templates(self, kind: TemplateKind, user_id: str) -> list[Record]:
        templates = self._list(_TEMPLATE_COLLECTIONS[kind], user_id)
        return sorted(templates, key=lambda r: r.get("created_at", ""), reverse=True)

    def find_active_templates(self, kind: TemplateKind, user_id: str) -> list[Record]:
        return [t for t in self.list_templates(kind, user_id) if t.get("is_active")]

    def get_template(self, kind: TemplateKind, user_id: str, template_id: str) -> Optional[Record]:
        return self._find(_TEMPLATE_COLLECTIONS[kind], user_id, template_id)

    def create_template(self, kind: TemplateKind, record: Record) -> Record:
        with self._lock:
            return self._insert(_TEMPLATE_COLLECTIONS[kind], record)

    def update_template(
        self, kind: TemplateKind, user_id: str, template_id: str, data: Record
    ) -> Optional[Record]:
        return self._update(_TEMPLATE_COLLECTIONS[kind], user_id, template_id, data)

    def delete_template(self, kind: TemplateKind, user_id: str, template_id: str) -> bool:
        return self._delete(_TEMPLATE_COLLECTIONS[kind], user_id, template_id)

    def materialize_period(
        self,
        kind: TemplateKind,
        user_id: str,
        template_id: str,
        expected_last_generated_on: Optional[str],
        new_last_generated_on: str,
        entry: Record,
    ) -> bool:
        with self._lock:
            template = self._get(_TEMPLATE_COLLECTIONS[kind], user_id, template_id)
            if template is None or not template.get("is_active"):
                return False
            if template.get("last_generated_on") != expected_last_generated_on:
                return False
            self._insert(_ENTRY_COLLECTIONS[kind], entry)
            template["last_generated_on"] = new_last_generated_on
            template["updated_at"] = _now()
            return True

    # =========================================================================
    # Category limits
    # =========================================================================

    def list_limits(self, user_id: str) -> list[Record]:
        return self._list("category_limits", user_id)

    def upsert_limit(self, user_id: str, category_id: str, limit_amount_encrypted: str) -> Record:
        with self._lock:
            for record in self._data["category_limits"].values():
                if record.get("user_id") == user_id and record.get("category_id") == category_id:
                    record["limit_amount_encrypted"] = limit_amount_encrypted
                    record["updated_at"] = _now()
                    return copy.deepcopy(record)
            return self._insert(
                "category_limits",
                {
                    "user_id": user_id,
                    "category_id": category_id,
                    "limit_amount_encrypted": limit_amount_encrypted,
                },
            )

    def delete_limit(self, user_id: str, limit_id: str) -> bool:
        return self._delete("category_limits", user_id, limit_id)

    # =========================================================================
    # API keys
    # =========================================================================

    def create_api_key(self, record: Record) -> Record:
        with self._lock:
            if any(k.get("prefix") == record["prefix"] for k in self._data["api_keys"].values()):
                raise ValueError("API key prefix already exists.")
            return self._insert("api_keys", record)

    def get_api_key_by_prefix(self, prefix: str) -> Optional[Record]:
        with self._lock:
            for record in self._data["api_keys"].values():
                if record.get("prefix") == prefix:
                    return copy.deepcopy(record)
            return None

    def list_api_keys(self, user_id: str) -> list[Record]:
        return sorted(self._list("api_keys", user_id), key=lambda r: r.get("created_at", ""), reverse=True)

    def revoke_api_key(self, user_id: str, key_id: str, revoked_at: str) -> Optional[Record]:
        with self._lock:
            record = self._get("api_keys", user_id, key_id)
            if record is None:
                return None
            if not record.get("revoked_at"):
                record["revoked_at"] = revoked_at
            return copy.deepcopy(record)

    def touch_api_key(self, key_id: str, used_at: str) -> None:
        with self._lock:
            record = self._data["api_keys"].get(key_id)
            if record is not None:
                record["token_last_used_at"] = used_at

    # =========================================================================
    # Import schedules
    # =========================================================================

    def list_schedules(self, user_id: str) -> list[Record]:
        return sorted(
            self._list("import_schedules", user_id), key=lambda r: r.get("created_at", ""), reverse=True
        )

    def get_schedule(self, user_id: str, schedule_id: str) -> Optional[Record]:
        return self._find("import_schedules", user_id, schedule_id)

    def create_schedule(self, record: Record) -> Record:
        with self._lock:
            return self._insert("import_schedules", record)

    def update_schedule(self, user_id: str, schedule_id: str, data: Record) -> Optional[Record]:
        return self._update("import_schedules", user_id, schedule_id, data)

    def delete_schedule(self, user_id: str, schedule_id: str) -> bool:
        return self._delete("import_schedules", user_id, schedule_id)

    def stats(self) -> dict[str, Any]:
        """Record counts per collection."""
        with self._lock:
            counts = {name: len(records) for name, records in self._data.items()}
            counts["users"] = len(self._users)
            return counts
