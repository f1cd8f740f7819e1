from __future__ import annotations

from datetime import date
from typing import Any, Callable, Optional

from pydantic import BaseModel

from app.core.exceptions import NotFoundError, ValidationError
from app.core.logging import get_logger
from app.core.utils import coerce_date, utc_now
from app.core.validation import changes, parse
from app.crypto.codec import FieldCodec
from app.repositories.base import LedgerRepository, TemplateKind
from app.schemas.models import (
    RecurringExpenseCreate,
    RecurringExpenseUpdate,
    RecurringIncomeCreate,
    RecurringIncomeUpdate,
)
from app.services.category_service import CategoryService
from app.services.materializer import RecurringMaterializer, latest_due_before

logger = get_logger("expenseflow.services.recurring")

_SCHEMAS: dict[str, tuple[type[BaseModel], type[BaseModel]]] = {
    "expense": (RecurringExpenseCreate, RecurringExpenseUpdate),
    "income": (RecurringIncomeCreate, RecurringIncomeUpdate),
}

_NOT_NULL = ("amount", "description", "due_day_of_month", "split_by", "is_active")


class RecurringService:
    """CRUD for recurring expense or income templates."""

    def __init__(
        self,
        repository: LedgerRepository,
        codec: FieldCodec,
        kind: TemplateKind,
        clock: Callable = utc_now,
        materializer: Optional[RecurringMaterializer] = None,
    ) -> None:
        self.repository = repository
        self.codec = codec
        self.kind = kind
        self.clock = clock
        self.materializer = materializer or RecurringMaterializer(repository, codec, clock=clock)
        self.categories = CategoryService(repository)
        self.create_schema, self.update_schema = _SCHEMAS[kind]

    @property
    def label(self) -> str:
        return f"Recurring {self.kind}"

    def map_template(self, template: dict[str, Any]) -> dict[str, Any]:
        mapped = {
            "id": template["id"],
            "amount": self.codec.decrypt_number(template.get("amount_encrypted")),
            "description": self.codec.decrypt_string(template.get("description_encrypted")),
            "due_day_of_month": template["due_day_of_month"],
            "is_active": bool(template.get("is_active")),
            "last_generated_on": coerce_date(template.get("last_generated_on")),
        }
        if self.kind == "expense":
            mapped["category_id"] = template.get("category_id")
            mapped["split_by"] = template.get("split_by", 1)
        return mapped

    def _require(self, user_id: str, template_id: str) -> dict[str, Any]:
        template = self.repository.get_template(self.kind, user_id, template_id)
        if template is None:
            raise NotFoundError(f"{self.label} not found")
        return template

    def list_templates(self, user_id: str) -> list[dict[str, Any]]:
        return [self.map_template(t) for t in self.repository.list_templates(self.kind, user_id)]

    def create_template(self, user_id: str, payload: Any) -> dict[str, Any]:
        data = parse(self.create_schema, payload)
        record: dict[str, Any] = {
            "user_id": user_id,
            "due_day_of_month": data.due_day_of_month,
            "is_active": True,
            "last_generated_on": None,
            "amount_encrypted": self.codec.encrypt_number(data.amount),
            "description_encrypted": self.codec.encrypt_string(data.description),
        }
        if self.kind == "expense":
            if data.category_id:
                self.categories.require_category(user_id, data.category_id)
            record["category_id"] = data.category_id
            record["split_by"] = data.split_by
        created = self.repository.create_template(self.kind, record)
        logger.info(f"Created {self.label.lower()} {created['id']} for user {user_id}")
        return self.map_template(created)

    def update_template(self, user_id: str, template_id: str, payload: Any) -> dict[str, Any]:
        data = changes(parse(self.update_schema, payload))
        for field in _NOT_NULL:
            if field in data and data[field] is None:
                raise ValidationError(f"Invalid {field}: cannot be null", fields={field: "cannot be null"})

        template = self._require(user_id, template_id)
        update: dict[str, Any] = {}
        if "amount" in data:
            update["amount_encrypted"] = self.codec.encrypt_number(data["amount"])
        if "description" in data:
            update["description_encrypted"] = self.codec.encrypt_string(data["description"])
        for field in ("due_day_of_month", "split_by"):
            if field in data:
                update[field] = data[field]
        if "category_id" in data:
            if data["category_id"]:
                self.categories.require_category(user_id, data["category_id"])
            update["category_id"] = data["category_id"]
        if "is_active" in data:
            update.update(self._activation_changes(template, data["is_active"], update))

        updated = self.repository.update_template(self.kind, user_id, template_id, update) if update else template
        if updated is None:
            raise NotFoundError(f"{self.label} not found")
        return self.map_template(updated)

    def toggle_template(self, user_id: str, template_id: str) -> dict[str, Any]:
        template = self._require(user_id, template_id)
        update = self._activation_changes(template, not template.get("is_active"), {})
        updated = self.repository.update_template(self.kind, user_id, template_id, update)
        if updated is None:
            raise NotFoundError(f"{self.label} not found")
        return self.map_template(updated)

    def delete_template(self, user_id: str, template_id: str) -> None:
        if not self.repository.delete_template(self.kind, user_id, template_id):
            raise NotFoundError(f"{self.label} not found")

    def _activation_changes(
        self, template: dict[str, Any], is_active: bool, pending: dict[str, Any]
    ) -> dict[str, Any]:
        """Changes for an active/paused flip.

        Pausing first writes every period already due, then records the pause
        day. Reactivation skips only the periods that fell due after that day.
        """
        today = self.clock().date()
        was_active = bool(template.get("is_active"))
        result: dict[str, Any] = {"is_active": is_active}

        if was_active and not is_active:
            self._catch_up(template, today)
            result["deactivated_on"] = today.isoformat()
        elif is_active and not was_active:
            due_day = int(pending.get("due_day_of_month", template["due_day_of_month"]))
            skipped_to = latest_due_before(today, due_day).isoformat()
            paused_on = coerce_date(template.get("deactivated_on"))
            last = template.get("last_generated_on")
            paused_period_due = paused_on is None or skipped_to > paused_on.isoformat()
            if paused_period_due and (last is None or skipped_to > last):
                result["last_generated_on"] = skipped_to
            result["deactivated_on"] = None
        return result

    def _catch_up(self, template: dict[str, Any], through: date) -> None:
        """Materialize every period of ``template`` due on or before ``through``."""
        cap = self.materializer.MAX_PERIODS_PER_PASS
        while self.materializer.materialize_template(self.kind, template, through) == cap:
            fresh = self.repository.get_template(self.kind, template["user_id"], template["id"])
            if fresh is None:
                return
            template = fresh
