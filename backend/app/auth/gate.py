"""
Access Gate

Every protected route depends on ``require_access``. A request is admitted
through a session (cookie or demo header) or an ``x-api-key`` token, then
checked against the route's scopes and the rate limiter.

Usage:
    @router.get("/expenses")
    def list_expenses(auth: AuthContext = Depends(require_access(ApiScope.EXPENSES_READ))):
        return service.list_expenses(auth.user_id)
"""

from dataclasses import dataclass, field
from typing import Callable, Optional

from fastapi import BackgroundTasks, Depends, Request

from app.api.deps import get_rate_limiter, get_repo, get_user_service
from app.auth import credentials
from app.auth.rate_limit import RateLimiter
from app.auth.session import resolve_session
from app.core.config import Settings, get_settings
from app.core.exceptions import ForbiddenError, RateLimitError, UnauthorizedError
from app.core.logging import get_logger
from app.core.utils import coerce_datetime, isoformat, utc_now
from app.repositories.base import LedgerRepository
from app.schemas.account_models import ApiScope, AuthSource
from app.services.user_service import UserService

logger = get_logger("expenseflow.auth.gate")

API_KEY_HEADER = "x-api-key"
ALL_SCOPES = tuple(ApiScope)


@dataclass
class AuthContext:
    """Who is calling and with which capabilities."""

    user_id: str
    source: AuthSource
    scopes: list[ApiScope] = field(default_factory=list)
    api_key_id: Optional[str] = None

    @property
    def rate_limit_identity(self) -> str:
        return f"key:{self.api_key_id}" if self.api_key_id else f"user:{self.user_id}"


def touch_api_key(repo: LedgerRepository, key_id: str, used_at: str) -> None:
    """Record last use. Runs after the response; a failure never affects the request."""
    try:
        repo.touch_api_key(key_id, used_at)
    except Exception as e:
        logger.warning(f"Could not record use of API key {key_id}: {type(e).__name__}")


def authenticate_api_key(
    token: str,
    repo: LedgerRepository,
    background_tasks: Optional[BackgroundTasks] = None,
) -> AuthContext:
    """Resolve an ``exp_<prefix>_<secret>`` token to an AuthContext or raise 401."""
    parsed = credentials.parse_token(token)
    if parsed is None:
        raise UnauthorizedError("Invalid API key")

    record = repo.get_api_key_by_prefix(parsed.prefix)
    if record is None or not credentials.verify(parsed.secret, record.get("hashed_secret") or ""):
        raise UnauthorizedError("Invalid API key")
    if record.get("revoked_at"):
        raise UnauthorizedError("API key has been revoked")

    now = utc_now()
    expires_at = coerce_datetime(record.get("expires_at"))
    if expires_at is not None and expires_at <= now:
        raise UnauthorizedError("API key has expired")

    if background_tasks is not None:
        background_tasks.add_task(touch_api_key, repo, record["id"], isoformat(now))

    return AuthContext(
        user_id=record["user_id"],
        source=AuthSource.API_KEY,
        scopes=credentials.normalize_scopes(record.get("scopes") or []),
        api_key_id=record["id"],
    )


def require_access(*scopes: ApiScope, session_only: bool = False) -> Callable[..., AuthContext]:
    """Build a dependency admitting callers that hold every scope in ``scopes``."""
    required = set(scopes)

    def dependency(
        request: Request,
        background_tasks: BackgroundTasks,
        settings: Settings = Depends(get_settings),
        repo: LedgerRepository = Depends(get_repo),
        limiter: RateLimiter = Depends(get_rate_limiter),
        users: UserService = Depends(get_user_service),
    ) -> AuthContext:
        session = resolve_session(request, settings)
        if session is not None:
            users.ensure_user(session.uid, email=session.email, name=session.name)
            context = AuthContext(user_id=session.uid, source=AuthSource.SESSION, scopes=list(ALL_SCOPES))
        else:
            token = request.headers.get(API_KEY_HEADER)
            if not token:
                raise UnauthorizedError("Authentication required")
            context = authenticate_api_key(token, repo, background_tasks)
            if session_only:
                raise ForbiddenError("This endpoint requires a signed-in session")
            missing = required - set(context.scopes)
            if missing:
                logger.info(f"API key {context.api_key_id} lacks scopes {sorted(s.wire for s in missing)}")
                raise ForbiddenError("API key is missing required scopes")

        decision = limiter.check(context.rate_limit_identity, request.url.path)
        if not decision.allowed:
            raise RateLimitError(decision.retry_after)
        return context

    return dependency
