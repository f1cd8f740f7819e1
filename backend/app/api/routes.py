from datetime import date
from typing import Literal, Optional

from fastapi import APIRouter, Depends, Query

from app.api.deps import (
    get_analytics_service,
    get_category_limit_service,
    get_category_service,
    get_expense_service,
    get_income_service,
    get_recurring_expense_service,
    get_recurring_income_service,
)
from app.auth.gate import AuthContext, require_access
from app.core.utils import parse_month
from app.schemas.account_models import ApiScope
from app.schemas.models import (
    BulkExpenseCreate,
    CategoryCreate,
    CategoryDetailsResponse,
    CategoryLimitReport,
    CategoryLimitResponse,
    CategoryLimitUpsert,
    CategoryResponse,
    CategorySuggestion,
    CategoryUpdate,
    ExpenseCreate,
    ExpenseResponse,
    ExpenseUpdate,
    IncomeCreate,
    IncomeResponse,
    IncomeUpdate,
    RecurringExpenseCreate,
    RecurringExpenseResponse,
    RecurringExpenseUpdate,
    RecurringIncomeCreate,
    RecurringIncomeResponse,
    RecurringIncomeUpdate,
    SpendingResponse,
    SpendSummaryResponse,
)
from app.services.analytics_service import AnalyticsService
from app.services.category_limit_service import CategoryLimitService
from app.services.category_service import CategoryService
from app.services.expense_service import ExpenseService
from app.services.income_service import IncomeService
from app.services.recurring_service import RecurringService

router = APIRouter()

read_expenses = require_access(ApiScope.EXPENSES_READ)
write_expenses = require_access(ApiScope.EXPENSES_WRITE)
write_income = require_access(ApiScope.INCOME_WRITE)
read_analytics = require_access(ApiScope.ANALYTICS_READ)
read_budget = require_access(ApiScope.BUDGET_READ)


@router.get("/health")
def health() -> dict[str, str]:
    return {"status": "ok"}


# =============================================================================
# Categories
# =============================================================================


@router.get("/categories", response_model=list[CategoryResponse])
def list_categories(
    auth: AuthContext = Depends(read_expenses),
    service: CategoryService = Depends(get_category_service),
):
    return service.list_categories(auth.user_id)


@router.post("/categories", response_model=CategoryResponse, status_code=201)
def create_category(
    payload: CategoryCreate,
    auth: AuthContext = Depends(write_expenses),
    service: CategoryService = Depends(get_category_service),
):
    return service.create_category(auth.user_id, payload)


@router.patch("/categories/{category_id}", response_model=CategoryResponse)
def update_category(
    category_id: str,
    payload: CategoryUpdate,
    auth: AuthContext = Depends(write_expenses),
    service: CategoryService = Depends(get_category_service),
):
    return service.update_category(auth.user_id, category_id, payload)


@router.delete("/categories/{category_id}")
def delete_category(
    category_id: str,
    auth: AuthContext = Depends(write_expenses),
    service: CategoryService = Depends(get_category_service),
) -> dict[str, bool]:
    """Delete a category. Its expenses and recurring templates become uncategorized."""
    service.delete_category(auth.user_id, category_id)
    return {"success": True}


# =============================================================================
# Expenses
# =============================================================================


@router.get("/expenses", response_model=list[ExpenseResponse])
def list_expenses(
    start: Optional[date] = None,
    end: Optional[date] = None,
    limit: int = Query(default=ExpenseService.DEFAULT_PAGE_SIZE, ge=1, le=1000),
    auth: AuthContext = Depends(read_expenses),
    service: ExpenseService = Depends(get_expense_service),
):
    """List expenses newest first. Due recurring expenses are written before reading."""
    return service.list_expenses(auth.user_id, start=start, end=end, limit=limit)


@router.post("/expenses", response_model=ExpenseResponse, status_code=201)
def create_expense(
    payload: ExpenseCreate,
    auth: AuthContext = Depends(write_expenses),
    service: ExpenseService = Depends(get_expense_service),
):
    return service.create_expense(auth.user_id, payload)


@router.post("/expenses/bulk", response_model=list[ExpenseResponse], status_code=201)
def bulk_create_expenses(
    payload: BulkExpenseCreate,
    auth: AuthContext = Depends(write_expenses),
    service: ExpenseService = Depends(get_expense_service),
):
    return service.bulk_create_expenses(auth.user_id, payload)


@router.get("/expenses/suggestions")
def expense_suggestions(
    take: int = Query(default=5, ge=1, le=20),
    auth: AuthContext = Depends(read_expenses),
    service: ExpenseService = Depends(get_expense_service),
) -> dict[str, list[str]]:
    return {"suggestions": service.get_suggestions(auth.user_id, take=take)}


@router.get("/expenses/suggest-category", response_model=Optional[CategorySuggestion])
def suggest_category(
    description: str = Query(..., min_length=1, max_length=500),
    auth: AuthContext = Depends(read_expenses),
    service: ExpenseService = Depends(get_expense_service),
):
    return service.suggest_category(auth.user_id, description)


@router.get("/expenses/{expense_id}", response_model=ExpenseResponse)
def get_expense(
    expense_id: str,
    auth: AuthContext = Depends(read_expenses),
    service: ExpenseService = Depends(get_expense_service),
):
    return service.get_expense(auth.user_id, expense_id)


@router.patch("/expenses/{expense_id}", response_model=ExpenseResponse)
def update_expense(
    expense_id: str,
    payload: ExpenseUpdate,
    auth: AuthContext = Depends(write_expenses),
    service: ExpenseService = Depends(get_expense_service),
):
    return service.update_expense(auth.user_id, expense_id, payload)


@router.delete("/expenses/{expense_id}")
def delete_expense(
    expense_id: str,
    auth: AuthContext = Depends(write_expenses),
    service: ExpenseService = Depends(get_expense_service),
) -> dict[str, bool]:
    service.delete_expense(auth.user_id, expense_id)
    return {"success": True}


# =============================================================================
# Recurring expenses
# =============================================================================


@router.get("/recurring", response_model=list[RecurringExpenseResponse])
def list_recurring_expenses(
    auth: AuthContext = Depends(read_expenses),
    service: RecurringService = Depends(get_recurring_expense_service),
):
    return service.list_templates(auth.user_id)


@router.post("/recurring", response_model=RecurringExpenseResponse, status_code=201)
def create_recurring_expense(
    payload: RecurringExpenseCreate,
    auth: AuthContext = Depends(write_expenses),
    service: RecurringService = Depends(get_recurring_expense_service),
):
    return service.create_template(auth.user_id, payload)


@router.patch("/recurring/{template_id}", response_model=RecurringExpenseResponse)
def update_recurring_expense(
    template_id: str,
    payload: RecurringExpenseUpdate,
    auth: AuthContext = Depends(write_expenses),
    service: RecurringService = Depends(get_recurring_expense_service),
):
    return service.update_template(auth.user_id, template_id, payload)


@router.put("/recurring/{template_id}", response_model=RecurringExpenseResponse)
def toggle_recurring_expense(
    template_id: str,
    auth: AuthContext = Depends(write_expenses),
    service: RecurringService = Depends(get_recurring_expense_service),
):
    """Flip a template between active and paused."""
    return service.toggle_template(auth.user_id, template_id)


@router.delete("/recurring/{template_id}")
def delete_recurring_expense(
    template_id: str,
    auth: AuthContext = Depends(write_expenses),
    service: RecurringService = Depends(get_recurring_expense_service),
) -> dict[str, bool]:
    service.delete_template(auth.user_id, template_id)
    return {"success": True}


# =============================================================================
# Income
# =============================================================================


@router.get("/income", response_model=list[IncomeResponse])
def list_income(
    start: Optional[date] = None,
    end: Optional[date] = None,
    auth: AuthContext = Depends(read_expenses),
    service: IncomeService = Depends(get_income_service),
):
    return service.list_incomes(auth.user_id, start=start, end=end)


@router.post("/income", response_model=IncomeResponse, status_code=201)
def create_income(
    payload: IncomeCreate,
    auth: AuthContext = Depends(write_income),
    service: IncomeService = Depends(get_income_service),
):
    return service.create_income(auth.user_id, payload)


@router.get("/income/recurring", response_model=list[RecurringIncomeResponse])
def list_recurring_income(
    auth: AuthContext = Depends(write_income),
    service: RecurringService = Depends(get_recurring_income_service),
):
    return service.list_templates(auth.user_id)


@router.post("/income/recurring", response_model=RecurringIncomeResponse, status_code=201)
def create_recurring_income(
    payload: RecurringIncomeCreate,
    auth: AuthContext = Depends(write_income),
    service: RecurringService = Depends(get_recurring_income_service),
):
    return service.create_template(auth.user_id, payload)


@router.patch("/income/recurring/{template_id}", response_model=RecurringIncomeResponse)
def update_recurring_income(
    template_id: str,
    payload: RecurringIncomeUpdate,
    auth: AuthContext = Depends(write_income),
    service: RecurringService = Depends(get_recurring_income_service),
):
    return service.update_template(auth.user_id, template_id, payload)


@router.put("/income/recurring/{template_id}", response_model=RecurringIncomeResponse)
def toggle_recurring_income(
    template_id: str,
    auth: AuthContext = Depends(write_income),
    service: RecurringService = Depends(get_recurring_income_service),
):
    return service.toggle_template(auth.user_id, template_id)


@router.delete("/income/recurring/{template_id}")
def delete_recurring_income(
    template_id: str,
    auth: AuthContext = Depends(write_income),
    service: RecurringService = Depends(get_recurring_income_service),
) -> dict[str, bool]:
    service.delete_template(auth.user_id, template_id)
    return {"success": True}


@router.patch("/income/{income_id}", response_model=IncomeResponse)
def update_income(
    income_id: str,
    payload: IncomeUpdate,
    auth: AuthContext = Depends(write_income),
    service: IncomeService = Depends(get_income_service),
):
    return service.update_income(auth.user_id, income_id, payload)


@router.delete("/income/{income_id}")
def delete_income(
    income_id: str,
    auth: AuthContext = Depends(write_income),
    service: IncomeService = Depends(get_income_service),
) -> dict[str, bool]:
    service.delete_income(auth.user_id, income_id)
    return {"success": True}


# =============================================================================
# Category limits & analytics
# =============================================================================


@router.get("/category-limits", response_model=list[CategoryLimitResponse])
def list_category_limits(
    auth: AuthContext = Depends(read_analytics),
    service: CategoryLimitService = Depends(get_category_limit_service),
):
    return service.list_limits(auth.user_id)


@router.post("/category-limits", response_model=CategoryLimitResponse)
def upsert_category_limit(
    payload: CategoryLimitUpsert,
    auth: AuthContext = Depends(write_expenses),
    service: CategoryLimitService = Depends(get_category_limit_service),
):
    """Set the monthly ceiling for a category; an existing ceiling is replaced."""
    return service.upsert_limit(auth.user_id, payload)


@router.delete("/category-limits/{limit_id}")
def delete_category_limit(
    limit_id: str,
    auth: AuthContext = Depends(write_expenses),
    service: CategoryLimitService = Depends(get_category_limit_service),
) -> dict[str, bool]:
    service.delete_limit(auth.user_id, limit_id)
    return {"success": True}


@router.get("/analytics/category-limits", response_model=CategoryLimitReport)
def category_limit_report(
    month: Optional[str] = None,
    auth: AuthContext = Depends(read_analytics),
    service: CategoryLimitService = Depends(get_category_limit_service),
):
    """Spending against each ceiling for ``month`` (YYYY-MM, defaults to the current month)."""
    return service.build_report(auth.user_id, parse_month(month))


@router.get("/analytics/summary", response_model=SpendSummaryResponse)
def spend_summary(
    preset: Optional[str] = None,
    start: Optional[date] = None,
    end: Optional[date] = None,
    auth: AuthContext = Depends(read_budget),
    service: AnalyticsService = Depends(get_analytics_service),
):
    return service.spend_summary(auth.user_id, preset=preset, start=start, end=end)


@router.get("/analytics/spending", response_model=SpendingResponse)
def spending(
    preset: str = "6m",
    start: Optional[date] = None,
    end: Optional[date] = None,
    auth: AuthContext = Depends(read_analytics),
    service: AnalyticsService = Depends(get_analytics_service),
):
    """Available-balance series for the range plus a month-over-month comparison.

    With ``preset=month`` and a ``start`` date, the comparison uses that month.
    """
    comparison_month = start if preset == "month" and start else None
    return {
        "series": service.balance_series(auth.user_id, preset=preset, start=start, end=end),
        "comparison": service.period_comparison(auth.user_id, month=comparison_month),
    }


@router.get("/analytics/category-details", response_model=CategoryDetailsResponse)
def category_details(
    category: str = Query(..., min_length=1, max_length=60),
    kind: Literal["expense", "income"] = Query(..., alias="type"),
    preset: str = "6m",
    auth: AuthContext = Depends(read_analytics),
    service: AnalyticsService = Depends(get_analytics_service),
):
    """Entries behind one chart slice: an expense category, or Recurring / One-time income."""
    return service.category_details(auth.user_id, category, kind, preset=preset)
