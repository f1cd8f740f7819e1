"""
Account Export

Decrypts everything a user owns into plain JSON documents and packs them in a
zip archive held in memory. Nothing decrypted touches disk or the logs.
"""

from __future__ import annotations

import json
import zipfile
from dataclasses import dataclass
from datetime import datetime
from decimal import Decimal
from io import BytesIO
from typing import TYPE_CHECKING, Any, Callable, Optional

from app.core.exceptions import NotFoundError
from app.core.logging import LogContext, get_logger
from app.core.utils import utc_now
from app.crypto.codec import FieldCodec
from app.repositories.base import LedgerRepository
from app.services.api_key_service import map_api_key
from app.services.shares import calculate_impact_share, effective_split_by

if TYPE_CHECKING:
    from app.services.materializer import RecurringMaterializer

logger = get_logger("expenseflow.services.export")

EXPORT_VERSION = 1


@dataclass(frozen=True)
class AccountExportArchive:
    filename: str
    content: bytes
    counts: dict[str, int]


def _json_default(value: Any) -> Any:
    if isinstance(value, Decimal):
        return float(value)
    if isinstance(value, datetime):
        return value.isoformat()
    raise TypeError(f"Object of type {type(value).__name__} is not JSON serializable")


def _dump(data: Any) -> str:
    return json.dumps(data, ensure_ascii=False, indent=2, default=_json_default)


class ExportService:
    def __init__(
        self,
        repository: LedgerRepository,
        codec: FieldCodec,
        materializer: Optional["RecurringMaterializer"] = None,
        clock: Callable[[], datetime] = utc_now,
    ) -> None:
        self.repository = repository
        self.codec = codec
        self.materializer = materializer
        self.clock = clock

    def collect(self, user_id: str) -> dict[str, Any]:
        """Decrypt every owned record into export-ready dicts, keyed by file stem."""
        user = self.repository.get_user(user_id)
        if user is None:
            raise NotFoundError("User not found")

        codec = self.codec
        categories = self.repository.list_categories(user_id)
        by_category = {c["id"]: c for c in categories}
        groups = self.repository.list_groups(user_id)
        by_group = {g["id"]: g for g in groups}

        def category_fields(category_id: Optional[str]) -> dict[str, Any]:
            category = by_category.get(category_id or "")
            return {
                "category_id": category_id,
                "category_name": category["name"] if category else None,
                "category_color": category["color"] if category else None,
            }

        def stamps(record: dict[str, Any]) -> dict[str, Any]:
            return {"created_at": record.get("created_at"), "updated_at": record.get("updated_at")}

        expenses = []
        for record in self.repository.list_expenses(user_id):
            amount = codec.decrypt_number(record.get("amount_encrypted"))
            split_by = effective_split_by(record, by_group.get(record.get("group_id") or ""))
            expenses.append(
                {
                    "id": record["id"],
                    "amount": amount,
                    "impact_amount": calculate_impact_share(amount, split_by),
                    "description": codec.decrypt_string(record.get("description_encrypted")),
                    "occurred_on": record.get("occurred_on"),
                    **category_fields(record.get("category_id")),
                    "split_by": split_by,
                    "group_id": record.get("group_id"),
                    "recurring_source_id": record.get("recurring_source_id"),
                    **stamps(record),
                }
            )

        limits = [
            {
                "id": record["id"],
                **category_fields(record.get("category_id")),
                "limit": codec.decrypt_number(record.get("limit_amount_encrypted"), default=Decimal("0")),
                **stamps(record),
            }
            for record in self.repository.list_limits(user_id)
        ]

        return {
            "user": {
                "id": user["id"],
                "email": user.get("email"),
                "name": user.get("name"),
                "default_currency": user.get("default_currency"),
                "encryption_key_version": user.get("encryption_key_version"),
                **stamps(user),
            },
            "categories": [
                {"id": c["id"], "name": c["name"], "color": c["color"], **stamps(c)} for c in categories
            ],
            "category-limits": limits,
            "expense-groups": [
                {
                    "id": g["id"],
                    "title": codec.decrypt_string(g.get("title_encrypted")),
                    "notes": codec.decrypt_string(g.get("notes_encrypted"), default=None) or None,
                    "split_by": g.get("split_by") or 1,
                    **stamps(g),
                }
                for g in groups
            ],
            "expenses": expenses,
            "recurring-expenses": [
                {
                    "id": t["id"],
                    "amount": codec.decrypt_number(t.get("amount_encrypted")),
                    "description": codec.decrypt_string(t.get("description_encrypted")),
                    "due_day_of_month": t["due_day_of_month"],
                    "split_by": t.get("split_by", 1),
                    "is_active": bool(t.get("is_active")),
                    **category_fields(t.get("category_id")),
                    "last_generated_on": t.get("last_generated_on"),
                    **stamps(t),
                }
                for t in self.repository.list_templates("expense", user_id)
            ],
            "income": [
                {
                    "id": i["id"],
                    "amount": codec.decrypt_number(i.get("amount_encrypted")),
                    "description": codec.decrypt_string(i.get("description_encrypted")),
                    "occurred_on": i.get("occurred_on"),
                    "recurring_source_id": i.get("recurring_source_id"),
                    **stamps(i),
                }
                for i in self.repository.list_incomes(user_id)
            ],
            "recurring-income": [
                {
                    "id": t["id"],
                    "amount": codec.decrypt_number(t.get("amount_encrypted")),
                    "description": codec.decrypt_string(t.get("description_encrypted")),
                    "due_day_of_month": t["due_day_of_month"],
                    "is_active": bool(t.get("is_active")),
                    "last_generated_on": t.get("last_generated_on"),
                    **stamps(t),
                }
                for t in self.repository.list_templates("income", user_id)
            ],
            "api-keys": [
                {**map_api_key(k), "hashed_secret": k.get("hashed_secret")}
                for k in self.repository.list_api_keys(user_id)
            ],
            "import-schedules": [
                {
                    "id": s["id"],
                    "name": s.get("name"),
                    "frequency": s.get("frequency"),
                    "source_url": s.get("source_url"),
                    "last_run_at": s.get("last_run_at"),
                    "next_run_at": s.get("next_run_at"),
                    **stamps(s),
                }
                for s in self.repository.list_schedules(user_id)
            ],
        }

    def build_archive(self, user_id: str) -> AccountExportArchive:
        """Build the zip archive: ``metadata.json`` plus ``data/<entity>.json`` per entity type."""
        with LogContext(logger, "account export", user_id=user_id):
            if self.materializer is not None:
                self.materializer.materialize_user(user_id)

            documents = self.collect(user_id)
            counts = {
                name: (1 if isinstance(data, dict) else len(data))
                for name, data in documents.items()
                if name != "user"
            }
            generated_at = self.clock()
            metadata = {
                "version": EXPORT_VERSION,
                "generated_at": generated_at.isoformat(),
                "user_id": user_id,
                "counts": counts,
            }

            buffer = BytesIO()
            with zipfile.ZipFile(buffer, "w", compression=zipfile.ZIP_DEFLATED, compresslevel=9) as archive:
                archive.writestr("metadata.json", _dump(metadata))
                for name, data in documents.items():
                    archive.writestr(f"data/{name}.json", _dump(data))

            stamp = generated_at.strftime("%Y-%m-%dT%H-%M-%SZ")
            return AccountExportArchive(
                filename=f"expense-flow-account-export-{stamp}.zip",
                content=buffer.getvalue(),
                counts=counts,
            )
