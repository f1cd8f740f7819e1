from datetime import date
from decimal import Decimal
from typing import Literal, Optional

from pydantic import BaseModel, Field

Money = Decimal


class CategoryCreate(BaseModel):
    name: str = Field(..., min_length=1, max_length=60)
    color: str = Field(default="#64748b", pattern=r"^#[0-9a-fA-F]{6}$")


class CategoryUpdate(BaseModel):
    name: Optional[str] = Field(default=None, min_length=1, max_length=60)
    color: Optional[str] = Field(default=None, pattern=r"^#[0-9a-fA-F]{6}$")


class CategoryResponse(BaseModel):
    id: str
    name: str
    color: str


# =============================================================================
# Expenses
# =============================================================================


class ExpenseCreate(BaseModel):
    amount: Money = Field(..., gt=0, max_digits=14, decimal_places=2)
    description: str = Field(..., min_length=1, max_length=500)
    occurred_on: date
    category_id: Optional[str] = None
    split_by: int = Field(default=1, ge=1, le=100)


class ExpenseUpdate(BaseModel):
    """Partial update. Fields left out are unchanged; ``category_id: null`` clears it."""

    amount: Optional[Money] = Field(default=None, gt=0, max_digits=14, decimal_places=2)
    description: Optional[str] = Field(default=None, min_length=1, max_length=500)
    occurred_on: Optional[date] = None
    category_id: Optional[str] = None
    split_by: Optional[int] = Field(default=None, ge=1, le=100)


class ExpenseGroupCreate(BaseModel):
    title: str = Field(..., min_length=1, max_length=200)
    notes: Optional[str] = Field(default=None, max_length=2000)
    split_by: int = Field(default=1, ge=1, le=100)


class BulkExpenseCreate(BaseModel):
    items: list[ExpenseCreate] = Field(default_factory=list, max_length=200)
    group: Optional[ExpenseGroupCreate] = None


class ExpenseGroupResponse(BaseModel):
    id: str
    title: str
    notes: Optional[str] = None
    split_by: int


class ExpenseResponse(BaseModel):
    id: str
    amount: float
    impact_amount: float
    description: str
    occurred_on: date
    split_by: int
    category: Optional[CategoryResponse] = None
    group: Optional[ExpenseGroupResponse] = None
    recurring_source_id: Optional[str] = None


class CategorySuggestion(BaseModel):
    category_id: str
    category_name: str
    score: float


# =============================================================================
# Recurring templates
# =============================================================================


class RecurringExpenseCreate(BaseModel):
    amount: Money = Field(..., gt=0, max_digits=14, decimal_places=2)
    description: str = Field(..., min_length=1, max_length=500)
    due_day_of_month: int = Field(..., ge=1, le=31)
    category_id: Optional[str] = None
    split_by: int = Field(default=1, ge=1, le=100)


class RecurringExpenseUpdate(BaseModel):
    amount: Optional[Money] = Field(default=None, gt=0, max_digits=14, decimal_places=2)
    description: Optional[str] = Field(default=None, min_length=1, max_length=500)
    due_day_of_month: Optional[int] = Field(default=None, ge=1, le=31)
    category_id: Optional[str] = None
    split_by: Optional[int] = Field(default=None, ge=1, le=100)
    is_active: Optional[bool] = None


class RecurringExpenseResponse(BaseModel):
    id: str
    amount: float
    description: str
    due_day_of_month: int
    category_id: Optional[str] = None
    split_by: int
    is_active: bool
    last_generated_on: Optional[date] = None


class RecurringIncomeCreate(BaseModel):
    amount: Money = Field(..., gt=0, max_digits=14, decimal_places=2)
    description: str = Field(..., min_length=1, max_length=500)
    due_day_of_month: int = Field(..., ge=1, le=31)


class RecurringIncomeUpdate(BaseModel):
    amount: Optional[Money] = Field(default=None, gt=0, max_digits=14, decimal_places=2)
    description: Optional[str] = Field(default=None, min_length=1, max_length=500)
    due_day_of_month: Optional[int] = Field(default=None, ge=1, le=31)
    is_active: Optional[bool] = None


class RecurringIncomeResponse(BaseModel):
    id: str
    amount: float
    description: str
    due_day_of_month: int
    is_active: bool
    last_generated_on: Optional[date] = None


# =============================================================================
# Income
# =============================================================================


class IncomeCreate(BaseModel):
    amount: Money = Field(..., gt=0, max_digits=14, decimal_places=2)
    description: str = Field(..., min_length=1, max_length=500)
    occurred_on: date


class IncomeUpdate(BaseModel):
    amount: Optional[Money] = Field(default=None, gt=0, max_digits=14, decimal_places=2)
    description: Optional[str] = Field(default=None, min_length=1, max_length=500)
    occurred_on: Optional[date] = None


class IncomeResponse(BaseModel):
    id: str
    amount: float
    description: str
    occurred_on: date
    recurring_source_id: Optional[str] = None


# =============================================================================
# Category limits & analytics
# =============================================================================


class CategoryLimitUpsert(BaseModel):
    category_id: str = Field(..., min_length=1)
    limit: Money = Field(..., ge=0, max_digits=14, decimal_places=2)


class CategoryLimitResponse(BaseModel):
    id: str
    category_id: str
    category_name: str
    color: str
    limit: float


class CategoryLimitReportRow(CategoryLimitResponse):
    spent: float
    variance: float
    status: Literal["over", "under"]
    progress: float = Field(..., description="spent / limit, saturated at 1.0")


class CategoryLimitTotals(BaseModel):
    limit: float
    spent: float
    overage: float


class CategoryLimitReport(BaseModel):
    month: str = Field(..., description="Report month as YYYY-MM.")
    rows: list[CategoryLimitReportRow]
    totals: CategoryLimitTotals


class SpendSummaryResponse(BaseModel):
    preset: str
    start: date
    end: date
    total_expenses: float
    total_income: float
    net: float


class BalancePoint(BaseModel):
    period: str = Field(..., description="Month as YYYY-MM.")
    income: float
    expenses: float
    net: float
    available_balance: float = Field(..., description="Running sum of net from the first month of the range.")


class BalanceSeries(BaseModel):
    preset: str
    start: date
    end: date
    series: list[BalancePoint]


class PeriodTotals(BaseModel):
    period: str
    income: float
    expenses: float
    net: float


class PeriodChange(BaseModel):
    income: float
    expenses: float
    net: float


class PeriodComparison(BaseModel):
    current: PeriodTotals
    previous: PeriodTotals
    change: PeriodChange
    expenses_change_pct: Optional[float] = None


class SpendingResponse(BaseModel):
    series: BalanceSeries
    comparison: PeriodComparison


class CategoryDetailsResponse(BaseModel):
    category: str
    type: Literal["expense", "income"]
    preset: str
    start: date
    end: date
    total: float
    expenses: list[ExpenseResponse] = Field(default_factory=list)
    incomes: list[IncomeResponse] = Field(default_factory=list)
