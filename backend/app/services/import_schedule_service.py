from __future__ import annotations

from datetime import datetime, timedelta
from typing import Any, Callable

from app.core.exceptions import NotFoundError, ValidationError
from app.core.logging import get_logger
from app.core.utils import add_months, clamped_date, isoformat, utc_now
from app.core.validation import changes, parse
from app.repositories.base import LedgerRepository
from app.schemas.account_models import ImportScheduleCreate, ImportScheduleUpdate

logger = get_logger("expenseflow.services.import_schedule")


def next_run_after(moment: datetime, frequency: str) -> datetime:
    if frequency == "daily":
        return moment + timedelta(days=1)
    if frequency == "weekly":
        return moment + timedelta(weeks=1)
    year, month = add_months(moment.year, moment.month, 1)
    return moment.replace(year=year, month=month, day=clamped_date(year, month, moment.day).day)


def map_schedule(record: dict[str, Any]) -> dict[str, Any]:
    return {
        "id": record["id"],
        "name": record["name"],
        "frequency": record["frequency"],
        "source_url": record["source_url"],
        "last_run_at": record.get("last_run_at"),
        "next_run_at": record.get("next_run_at"),
        "created_at": record.get("created_at"),
    }


class ImportScheduleService:
    """Stores CSV pull schedules. Runs are only recorded; fetching happens elsewhere."""

    def __init__(self, repository: LedgerRepository, clock: Callable[[], datetime] = utc_now) -> None:
        self.repository = repository
        self.clock = clock

    def list_schedules(self, user_id: str) -> list[dict[str, Any]]:
        return [map_schedule(s) for s in self.repository.list_schedules(user_id)]

    def create_schedule(self, user_id: str, payload: Any) -> dict[str, Any]:
        data = parse(ImportScheduleCreate, payload)
        now = self.clock()
        record = self.repository.create_schedule(
            {
                "user_id": user_id,
                "name": data.name,
                "frequency": data.frequency,
                "source_url": data.source_url,
                "last_run_at": None,
                "next_run_at": isoformat(next_run_after(now, data.frequency)),
            }
        )
        return map_schedule(record)

    def update_schedule(self, user_id: str, schedule_id: str, payload: Any) -> dict[str, Any]:
        data = changes(parse(ImportScheduleUpdate, payload))
        for field, value in data.items():
            if value is None:
                raise ValidationError(f"Invalid {field}: cannot be null", fields={field: "cannot be null"})

        if self.repository.get_schedule(user_id, schedule_id) is None:
            raise NotFoundError("Import schedule not found")
        if "frequency" in data:
            data["next_run_at"] = isoformat(next_run_after(self.clock(), data["frequency"]))
        updated = self.repository.update_schedule(user_id, schedule_id, data)
        if updated is None:
            raise NotFoundError("Import schedule not found")
        return map_schedule(updated)

    def delete_schedule(self, user_id: str, schedule_id: str) -> None:
        if not self.repository.delete_schedule(user_id, schedule_id):
            raise NotFoundError("Import schedule not found")

    def mark_run(self, user_id: str, schedule_id: str) -> dict[str, Any]:
        schedule = self.repository.get_schedule(user_id, schedule_id)
        if schedule is None:
            raise NotFoundError("Import schedule not found")
        now = self.clock()
        updated = self.repository.update_schedule(
            user_id,
            schedule_id,
            {
                "last_run_at": isoformat(now),
                "next_run_at": isoformat(next_run_after(now, schedule["frequency"])),
            },
        )
        if updated is None:
            raise NotFoundError("Import schedule not found")
        logger.info(f"Recorded run of import schedule {schedule_id} for user {user_id}")
        return map_schedule(updated)
