"""
Firestore Repository

Repository implementation using Firestore for data persistence.
Every document carries ``user_id``; reads verify ownership and report foreign
documents as missing.

Data Structure:
    users/{user_id}                          - Account settings, key version
    categories/{id}                          - Expense categories
    category_limits/{user_id}__{category_id} - One monthly ceiling per category
    expense_groups/{id}                      - Bulk-entry groups (split factor)
    expenses/{id}, incomes/{id}              - Ledger entries
    recurring_expenses/{id}                  - Monthly templates
    recurring_incomes/{id}
    api_keys/{id}                            - Hashed API key secrets
    import_schedules/{id}                    - Recurring CSV pulls
"""

from datetime import datetime, timezone
from typing import Any, Optional
from uuid import uuid4

import firebase_admin
from firebase_admin import firestore
from google.api_core import exceptions as google_exceptions
from google.cloud.firestore_v1 import FieldFilter

from app.repositories.base import Record, TemplateKind

_TEMPLATE_COLLECTIONS = {"expense": "recurring_expenses", "income": "recurring_incomes"}
_ENTRY_COLLECTIONS = {"expense": "expenses", "income": "incomes"}


def _now() -> str:
    return datetime.now(timezone.utc).isoformat()


class FirestoreRepository:
    """Repository using Firestore for ledger persistence."""

    # Firestore batch write limit
    BATCH_SIZE = 500

    OWNED_COLLECTIONS = (
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

    def __init__(self, db: Any = None) -> None:
        if db is None:
            # Initialize Firebase Admin SDK with Application Default Credentials
            if not firebase_admin._apps:
                firebase_admin.initialize_app()
            db = firestore.client()
        self.db = db
        self.users_collection = "users"

    # =========================================================================
    # Generic helpers
    # =========================================================================

    def _owned_query(self, collection: str, user_id: str):
        return self.db.collection(collection).where(filter=FieldFilter("user_id", "==", user_id))

    def _insert(self, collection: str, record: Record) -> Record:
        data = dict(record)
        data.setdefault("id", str(uuid4()))
        data.setdefault("created_at", _now())
        data.setdefault("updated_at", data["created_at"])
        self.db.collection(collection).document(data["id"]).set(data)
        return data

    def _get(self, collection: str, user_id: str, record_id: str) -> Optional[Record]:
        doc = self.db.collection(collection).document(record_id).get()
        if not doc.exists:
            return None
        data = doc.to_dict()
        if data.get("user_id") != user_id:
            return None
        return data

    def _list(self, collection: str, user_id: str) -> list[Record]:
        return [doc.to_dict() for doc in self._owned_query(collection, user_id).stream()]

    def _update(self, collection: str, user_id: str, record_id: str, data: Record) -> Optional[Record]:
        if self._get(collection, user_id, record_id) is None:
            return None
        doc_ref = self.db.collection(collection).document(record_id)
        doc_ref.update({**data, "updated_at": _now()})
        return doc_ref.get().to_dict()

    def _delete(self, collection: str, user_id: str, record_id: str) -> bool:
        if self._get(collection, user_id, record_id) is None:
            return False
        self.db.collection(collection).document(record_id).delete()
        return True

    def _commit_in_batches(self, operations: list[tuple[str, Any, Optional[Record]]]) -> None:
        """Apply ``(op, doc_ref, data)`` tuples in batches to stay within Firestore limits."""
        for i in range(0, len(operations), self.BATCH_SIZE):
            batch = self.db.batch()
            for op, ref, data in operations[i:i + self.BATCH_SIZE]:
                if op == "delete":
                    batch.delete(ref)
                else:
                    batch.update(ref, data)
            batch.commit()

    @staticmethod
    def _newest_first(records: list[Record]) -> list[Record]:
        return sorted(
            records,
            key=lambda r: (r.get("occurred_on", ""), r.get("created_at", "")),
            reverse=True,
        )

    def _ranged(self, collection: str, user_id: str, start: Optional[str], end: Optional[str]):
        query = self._owned_query(collection, user_id)
        if start:
            query = query.where(filter=FieldFilter("occurred_on", ">=", start))
        if end:
            query = query.where(filter=FieldFilter("occurred_on", "<=", end))
        return [doc.to_dict() for doc in query.stream()]

    # =========================================================================
    # Users
    # =========================================================================

    def get_user(self, user_id: str) -> Optional[Record]:
        doc = self.db.collection(self.users_collection).document(user_id).get()
        return doc.to_dict() if doc.exists else None

    def create_user(self, record: Record) -> Record:
        data = dict(record)
        data.setdefault("created_at", _now())
        data.setdefault("updated_at", data["created_at"])
        doc_ref = self.db.collection(self.users_collection).document(data["id"])
        try:
            doc_ref.create(data)
        except google_exceptions.AlreadyExists:
            return doc_ref.get().to_dict()
        return data

    def update_user(self, user_id: str, data: Record) -> Optional[Record]:
        doc_ref = self.db.collection(self.users_collection).document(user_id)
        if not doc_ref.get().exists:
            return None
        doc_ref.update({**data, "updated_at": _now()})
        return doc_ref.get().to_dict()

    def delete_user(self, user_id: str) -> bool:
        doc_ref = self.db.collection(self.users_collection).document(user_id)
        if not doc_ref.get().exists:
            return False
        operations = []
        for collection in self.OWNED_COLLECTIONS:
            for doc in self._owned_query(collection, user_id).stream():
                operations.append(("delete", doc.reference, None))
        operations.append(("delete", doc_ref, None))
        self._commit_in_batches(operations)
        return True

    # =========================================================================
    # Categories
    # =========================================================================

    def list_categories(self, user_id: str) -> list[Record]:
        return sorted(self._list("categories", user_id), key=lambda r: r.get("name", "").lower())

    def get_category(self, user_id: str, category_id: str) -> Optional[Record]:
        return self._get("categories", user_id, category_id)

    def create_category(self, record: Record) -> Record:
        return self._insert("categories", record)

    def update_category(self, user_id: str, category_id: str, data: Record) -> Optional[Record]:
        return self._update("categories", user_id, category_id, data)

    def delete_category(self, user_id: str, category_id: str) -> bool:
        if self._get("categories", user_id, category_id) is None:
            return False
        now = _now()
        operations = []
        for collection in ("expenses", "recurring_expenses"):
            query = self._owned_query(collection, user_id).where(
                filter=FieldFilter("category_id", "==", category_id)
            )
            for doc in query.stream():
                operations.append(("update", doc.reference, {"category_id": None, "updated_at": now}))
        limit_ref = self.db.collection("category_limits").document(f"{user_id}__{category_id}")
        operations.append(("delete", limit_ref, None))
        operations.append(("delete", self.db.collection("categories").document(category_id), None))
        self._commit_in_batches(operations)
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
        expenses = self._newest_first(self._ranged("expenses", user_id, start, end))
        return expenses[:limit] if limit else expenses

    def get_expense(self, user_id: str, expense_id: str) -> Optional[Record]:
        return self._get("expenses", user_id, expense_id)

    def create_expenses(self, records: list[Record], group: Optional[Record] = None) -> list[Record]:
        now = _now()
        batch = self.db.batch()
        if group is not None:
            group = {"id": str(uuid4()), "created_at": now, "updated_at": now, **group}
            batch.set(self.db.collection("expense_groups").document(group["id"]), group)
        created = []
        for record in records:
            data = {"id": str(uuid4()), "created_at": now, "updated_at": now, **record}
            if group is not None:
                data["group_id"] = group["id"]
            batch.set(self.db.collection("expenses").document(data["id"]), data)
            created.append(data)
        batch.commit()
        return created

    def update_expense(self, user_id: str, expense_id: str, data: Record) -> Optional[Record]:
        return self._update("expenses", user_id, expense_id, data)

    def delete_expense(self, user_id: str, expense_id: str) -> bool:
        return self._delete("expenses", user_id, expense_id)

    def get_group(self, user_id: str, group_id: str) -> Optional[Record]:
        return self._get("expense_groups", user_id, group_id)

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
        return self._newest_first(self._ranged("incomes", user_id, start, end))

    def get_income(self, user_id: str, income_id: str) -> Optional[Record]:
        return self._get("incomes", user_id, income_id)

    def create_income(self, record: Record) -> Record:
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
        query = self._owned_query(_TEMPLATE_COLLECTIONS[kind], user_id).where(
            filter=FieldFilter("is_active", "==", True)
        )
        return [doc.to_dict() for doc in query.stream()]

    def get_template(self, kind: TemplateKind, user_id: str, template_id: str) -> Optional[Record]:
        return self._get(_TEMPLATE_COLLECTIONS[kind], user_id, template_id)

    def create_template(self, kind: TemplateKind, record: Record) -> Record:
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
        template_ref = self.db.collection(_TEMPLATE_COLLECTIONS[kind]).document(template_id)
        entry = {"id": str(uuid4()), "created_at": _now(), **entry}
        entry.setdefault("updated_at", entry["created_at"])
        entry_ref = self.db.collection(_ENTRY_COLLECTIONS[kind]).document(entry["id"])

        @firestore.transactional
        def advance(transaction) -> bool:
            snapshot = template_ref.get(transaction=transaction)
            if not snapshot.exists:
                return False
            data = snapshot.to_dict()
            if data.get("user_id") != user_id or not data.get("is_active"):
                return False
            if data.get("last_generated_on") != expected_last_generated_on:
                return False
            transaction.set(entry_ref, entry)
            transaction.update(
                template_ref,
                {"last_generated_on": new_last_generated_on, "updated_at": _now()},
            )
            return True

        return advance(self.db.transaction())

    # =========================================================================
    # Category limits
    # =========================================================================

    def list_limits(self, user_id: str) -> list[Record]:
        return self._list("category_limits", user_id)

    def upsert_limit(self, user_id: str, category_id: str, limit_amount_encrypted: str) -> Record:
        limit_id = f"{user_id}__{category_id}"
        doc_ref = self.db.collection("category_limits").document(limit_id)

        @firestore.transactional
        def upsert(transaction) -> Record:
            snapshot = doc_ref.get(transaction=transaction)
            now = _now()
            data = snapshot.to_dict() if snapshot.exists else {
                "id": limit_id,
                "user_id": user_id,
                "category_id": category_id,
                "created_at": now,
            }
            data["limit_amount_encrypted"] = limit_amount_encrypted
            data["updated_at"] = now
            transaction.set(doc_ref, data)
            return data

        return upsert(self.db.transaction())

    def delete_limit(self, user_id: str, limit_id: str) -> bool:
        return self._delete("category_limits", user_id, limit_id)

    # =========================================================================
    # API keys
    # =========================================================================

    def create_api_key(self, record: Record) -> Record:
        if self.get_api_key_by_prefix(record["prefix"]) is not None:
            raise ValueError("API key prefix already exists.")
        return self._insert("api_keys", record)

    def get_api_key_by_prefix(self, prefix: str) -> Optional[Record]:
        query = (
            self.db.collection("api_keys")
            .where(filter=FieldFilter("prefix", "==", prefix))
            .limit(1)
        )
        docs = list(query.stream())
        if not docs:
            return None
        return docs[0].to_dict()

    def list_api_keys(self, user_id: str) -> list[Record]:
        return sorted(self._list("api_keys", user_id), key=lambda r: r.get("created_at", ""), reverse=True)

    def revoke_api_key(self, user_id: str, key_id: str, revoked_at: str) -> Optional[Record]:
        record = self._get("api_keys", user_id, key_id)
        if record is None:
            return None
        if record.get("revoked_at"):
            return record
        doc_ref = self.db.collection("api_keys").document(key_id)
        doc_ref.update({"revoked_at": revoked_at})
        return doc_ref.get().to_dict()

    def touch_api_key(self, key_id: str, used_at: str) -> None:
        self.db.collection("api_keys").document(key_id).update({"token_last_used_at": used_at})

    # =========================================================================
    # Import schedules
    # =========================================================================

    def list_schedules(self, user_id: str) -> list[Record]:
        return sorted(
            self._list("import_schedules", user_id), key=lambda r: r.get("created_at", ""), reverse=True
        )

    def get_schedule(self, user_id: str, schedule_id: str) -> Optional[Record]:
        return self._get("import_schedules", user_id, schedule_id)

    def create_schedule(self, record: Record) -> Record:
        return self._insert("import_schedules", record)

    def update_schedule(self, user_id: str, schedule_id: str, data: Record) -> Optional[Record]:
        return self._update("import_schedules", user_id, schedule_id, data)

    def delete_schedule(self, user_id: str, schedule_id: str) -> bool:
        return self._delete("import_schedules", user_id, schedule_id)
