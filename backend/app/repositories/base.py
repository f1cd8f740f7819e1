"""
Repository Ports

Narrow storage contracts the services depend on, one per entity family.
Records are plain dicts; encrypted fields hold codec blobs, dates are ISO
strings. Every lookup is scoped by ``user_id`` and returns ``None`` when the
record is absent or owned by someone else.
"""

from typing import Any, Literal, Optional, Protocol

Record = dict[str, Any]
TemplateKind = Literal["expense", "income"]


class UserStore(Protocol):
    def get_user(self, user_id: str) -> Optional[Record]: ...

    def create_user(self, record: Record) -> Record: ...

    def update_user(self, user_id: str, data: Record) -> Optional[Record]: ...

    def delete_user(self, user_id: str) -> bool:
        """Delete the user and every record they own."""
        ...


class CategoryStore(Protocol):
    def list_categories(self, user_id: str) -> list[Record]: ...

    def get_category(self, user_id: str, category_id: str) -> Optional[Record]: ...

    def create_category(self, record: Record) -> Record: ...

    def update_category(self, user_id: str, category_id: str, data: Record) -> Optional[Record]: ...

    def delete_category(self, user_id: str, category_id: str) -> bool:
        """Delete a category, uncategorizing expenses and templates that used it."""
        ...


class ExpenseStore(Protocol):
    def list_expenses(
        self,
        user_id: str,
        start: Optional[str] = None,
        end: Optional[str] = None,
        limit: Optional[int] = None,
    ) -> list[Record]: ...

    def get_expense(self, user_id: str, expense_id: str) -> Optional[Record]: ...

    def create_expenses(self, records: list[Record], group: Optional[Record] = None) -> list[Record]:
        """Insert a group (if any) and its expenses as one unit."""
        ...

    def update_expense(self, user_id: str, expense_id: str, data: Record) -> Optional[Record]: ...

    def delete_expense(self, user_id: str, expense_id: str) -> bool: ...

    def get_group(self, user_id: str, group_id: str) -> Optional[Record]: ...

    def list_groups(self, user_id: str) -> list[Record]: ...


class IncomeStore(Protocol):
    def list_incomes(
        self,
        user_id: str,
        start: Optional[str] = None,
        end: Optional[str] = None,
    ) -> list[Record]: ...

    def get_income(self, user_id: str, income_id: str) -> Optional[Record]: ...

    def create_income(self, record: Record) -> Record: ...

    def update_income(self, user_id: str, income_id: str, data: Record) -> Optional[Record]: ...

    def delete_income(self, user_id: str, income_id: str) -> bool: ...


class RecurringStore(Protocol):
    def list_templates(self, kind: TemplateKind, user_id: str) -> list[Record]: ...

    def find_active_templates(self, kind: TemplateKind, user_id: str) -> list[Record]: ...

    def get_template(self, kind: TemplateKind, user_id: str, template_id: str) -> Optional[Record]: ...

    def create_template(self, kind: TemplateKind, record: Record) -> Record: ...

    def update_template(
        self, kind: TemplateKind, user_id: str, template_id: str, data: Record
    ) -> Optional[Record]: ...

    def delete_template(self, kind: TemplateKind, user_id: str, template_id: str) -> bool: ...

    def materialize_period(
        self,
        kind: TemplateKind,
        user_id: str,
        template_id: str,
        expected_last_generated_on: Optional[str],
        new_last_generated_on: str,
        entry: Record,
    ) -> bool:
        """Insert ``entry`` and advance the template in one atomic unit.

        Applies only while the template is active and its stored
        ``last_generated_on`` still equals ``expected_last_generated_on``.
        Returns False (and writes nothing) otherwise.
        """
        ...


class CategoryLimitStore(Protocol):
    def list_limits(self, user_id: str) -> list[Record]: ...

    def upsert_limit(self, user_id: str, category_id: str, limit_amount_encrypted: str) -> Record:
        """Create or replace the single limit for (user, category) atomically."""
        ...

    def delete_limit(self, user_id: str, limit_id: str) -> bool: ...


class ApiKeyStore(Protocol):
    def create_api_key(self, record: Record) -> Record: ...

    def get_api_key_by_prefix(self, prefix: str) -> Optional[Record]: ...

    def list_api_keys(self, user_id: str) -> list[Record]: ...

    def revoke_api_key(self, user_id: str, key_id: str, revoked_at: str) -> Optional[Record]:
        """Set ``revoked_at`` once; an already revoked key keeps its original timestamp."""
        ...

    def touch_api_key(self, key_id: str, used_at: str) -> None: ...


class ImportScheduleStore(Protocol):
    def list_schedules(self, user_id: str) -> list[Record]: ...

    def get_schedule(self, user_id: str, schedule_id: str) -> Optional[Record]: ...

    def create_schedule(self, record: Record) -> Record: ...

    def update_schedule(self, user_id: str, schedule_id: str, data: Record) -> Optional[Record]: ...

    def delete_schedule(self, user_id: str, schedule_id: str) -> bool: ...


class LedgerRepository(
    UserStore,
    CategoryStore,
    ExpenseStore,
    IncomeStore,
    RecurringStore,
    CategoryLimitStore,
    ApiKeyStore,
    ImportScheduleStore,
    Protocol,
):
    """Everything the API needs from storage."""
