"""
Dependency providers for the API routers.

Process-wide singletons are created lazily so importing the app never touches
Firestore (tests override ``get_repo`` and friends through
``app.dependency_overrides``).
"""

from fastapi import Depends

from app.auth.rate_limit import FirestoreCounterStore, InMemoryCounterStore, RateLimiter
from app.core.config import get_settings
from app.core.logging import get_logger
from app.crypto.codec import FieldCodec, get_codec
from app.repositories.base import LedgerRepository
from app.repositories.local_repo import LocalRepository
from app.services.analytics_service import AnalyticsService
from app.services.api_key_service import ApiKeyService
from app.services.category_limit_service import CategoryLimitService
from app.services.category_service import CategoryService
from app.services.expense_service import ExpenseService
from app.services.export_service import ExportService
from app.services.import_schedule_service import ImportScheduleService
from app.services.income_service import IncomeService
from app.services.materializer import RecurringMaterializer
from app.services.recurring_service import RecurringService
from app.services.user_service import UserService

logger = get_logger("expenseflow.api.deps")

_repo: LedgerRepository | None = None
_rate_limiter: RateLimiter | None = None


def get_repo() -> LedgerRepository:
    global _repo
    if _repo is None:
        backend = get_settings().storage_backend
        if backend == "firestore":
            from app.repositories.firestore_repo import FirestoreRepository

            _repo = FirestoreRepository()
        else:
            _repo = LocalRepository()
        logger.info(f"Using {backend} storage backend")
    return _repo


def get_rate_limiter() -> RateLimiter:
    global _rate_limiter
    if _rate_limiter is None:
        settings = get_settings()
        if settings.storage_backend == "firestore":
            store = FirestoreCounterStore(get_repo().db)
        else:
            store = InMemoryCounterStore()
        _rate_limiter = RateLimiter(
            store,
            max_requests=settings.rate_limit_requests,
            window_seconds=settings.rate_limit_window_seconds,
        )
    return _rate_limiter


def get_materializer(
    repo: LedgerRepository = Depends(get_repo),
    codec: FieldCodec = Depends(get_codec),
) -> RecurringMaterializer:
    return RecurringMaterializer(repo, codec)


def get_user_service(
    repo: LedgerRepository = Depends(get_repo),
    codec: FieldCodec = Depends(get_codec),
) -> UserService:
    return UserService(repo, codec, default_currency=get_settings().default_currency)


def get_category_service(repo: LedgerRepository = Depends(get_repo)) -> CategoryService:
    return CategoryService(repo)


def get_expense_service(
    repo: LedgerRepository = Depends(get_repo),
    codec: FieldCodec = Depends(get_codec),
    materializer: RecurringMaterializer = Depends(get_materializer),
) -> ExpenseService:
    return ExpenseService(repo, codec, materializer)


def get_income_service(
    repo: LedgerRepository = Depends(get_repo),
    codec: FieldCodec = Depends(get_codec),
    materializer: RecurringMaterializer = Depends(get_materializer),
) -> IncomeService:
    return IncomeService(repo, codec, materializer)


def get_recurring_expense_service(
    repo: LedgerRepository = Depends(get_repo),
    codec: FieldCodec = Depends(get_codec),
    materializer: RecurringMaterializer = Depends(get_materializer),
) -> RecurringService:
    return RecurringService(repo, codec, "expense", materializer=materializer)


def get_recurring_income_service(
    repo: LedgerRepository = Depends(get_repo),
    codec: FieldCodec = Depends(get_codec),
    materializer: RecurringMaterializer = Depends(get_materializer),
) -> RecurringService:
    return RecurringService(repo, codec, "income", materializer=materializer)


def get_category_limit_service(
    repo: LedgerRepository = Depends(get_repo),
    codec: FieldCodec = Depends(get_codec),
    materializer: RecurringMaterializer = Depends(get_materializer),
) -> CategoryLimitService:
    return CategoryLimitService(repo, codec, materializer)


def get_analytics_service(
    expenses: ExpenseService = Depends(get_expense_service),
    incomes: IncomeService = Depends(get_income_service),
) -> AnalyticsService:
    return AnalyticsService(expenses, incomes)


def get_api_key_service(repo: LedgerRepository = Depends(get_repo)) -> ApiKeyService:
    return ApiKeyService(repo, rounds=get_settings().bcrypt_rounds)


def get_import_schedule_service(repo: LedgerRepository = Depends(get_repo)) -> ImportScheduleService:
    return ImportScheduleService(repo)


def get_export_service(
    repo: LedgerRepository = Depends(get_repo),
    codec: FieldCodec = Depends(get_codec),
    materializer: RecurringMaterializer = Depends(get_materializer),
) -> ExportService:
    return ExportService(repo, codec, materializer)
