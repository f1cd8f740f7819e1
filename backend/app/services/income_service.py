from __future__ import annotations

from datetime import date
from decimal import Decimal
from typing import TYPE_CHECKING, Any, Optional

from app.core.exceptions import NotFoundError, ValidationError
from app.core.utils import coerce_date
from app.core.validation import changes, parse
from app.crypto.codec import FieldCodec
from app.repositories.base import LedgerRepository
from app.schemas.models import IncomeCreate, IncomeUpdate

if TYPE_CHECKING:
    from app.services.materializer import RecurringMaterializer


def build_income_record(
    codec: FieldCodec,
    user_id: str,
    amount: Decimal,
    description: str,
    occurred_on: date,
    recurring_source_id: Optional[str] = None,
) -> dict[str, Any]:
    return {
        "user_id": user_id,
        "occurred_on": occurred_on.isoformat(),
        "recurring_source_id": recurring_source_id,
        "amount_encrypted": codec.encrypt_number(amount),
        "description_encrypted": codec.encrypt_string(description),
    }


class IncomeService:
    def __init__(
        self,
        repository: LedgerRepository,
        codec: FieldCodec,
        materializer: Optional["RecurringMaterializer"] = None,
    ) -> None:
        self.repository = repository
        self.codec = codec
        self.materializer = materializer

    def map_income(self, record: dict[str, Any]) -> dict[str, Any]:
        return {
            "id": record["id"],
            "amount": self.codec.decrypt_number(record.get("amount_encrypted")),
            "description": self.codec.decrypt_string(record.get("description_encrypted")),
            "occurred_on": coerce_date(record.get("occurred_on")),
            "recurring_source_id": record.get("recurring_source_id"),
        }

    def list_incomes(
        self,
        user_id: str,
        start: Optional[date] = None,
        end: Optional[date] = None,
    ) -> list[dict[str, Any]]:
        if self.materializer is not None:
            self.materializer.materialize_user(user_id)
        records = self.repository.list_incomes(
            user_id,
            start=start.isoformat() if start else None,
            end=end.isoformat() if end else None,
        )
        return [self.map_income(record) for record in records]

    def total_income(self, user_id: str, start: date, end: date) -> Decimal:
        return sum((i["amount"] for i in self.list_incomes(user_id, start, end)), Decimal("0"))

    def create_income(self, user_id: str, payload: Any) -> dict[str, Any]:
        data = parse(IncomeCreate, payload)
        record = build_income_record(
            self.codec,
            user_id,
            amount=data.amount,
            description=data.description,
            occurred_on=data.occurred_on,
        )
        return self.map_income(self.repository.create_income(record))

    def update_income(self, user_id: str, income_id: str, payload: Any) -> dict[str, Any]:
        data = changes(parse(IncomeUpdate, payload))
        for field in ("amount", "description", "occurred_on"):
            if field in data and data[field] is None:
                raise ValidationError(f"Invalid {field}: cannot be null", fields={field: "cannot be null"})

        update: dict[str, Any] = {}
        if "amount" in data:
            update["amount_encrypted"] = self.codec.encrypt_number(data["amount"])
        if "description" in data:
            update["description_encrypted"] = self.codec.encrypt_string(data["description"])
        if "occurred_on" in data:
            update["occurred_on"] = data["occurred_on"].isoformat()

        if update:
            updated = self.repository.update_income(user_id, income_id, update)
        else:
            updated = self.repository.get_income(user_id, income_id)
        if updated is None:
            raise NotFoundError("Income not found")
        return self.map_income(updated)

    def delete_income(self, user_id: str, income_id: str) -> None:
        if not self.repository.delete_income(user_id, income_id):
            raise NotFoundError("Income not found")
