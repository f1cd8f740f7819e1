"""
Account Feature Models

Pydantic models for API keys, import schedules and user settings.
"""

from enum import Enum
from typing import Literal, Optional

from pydantic import BaseModel, Field


class ApiScope(str, Enum):
    """Capabilities an API key can carry (storage form)."""

    EXPENSES_READ = "expenses_read"
    EXPENSES_WRITE = "expenses_write"
    ANALYTICS_READ = "analytics_read"
    INCOME_WRITE = "income_write"
    BUDGET_READ = "budget_read"

    @property
    def wire(self) -> str:
        """Scope as clients send it, e.g. ``expenses:read``."""
        return self.value.replace("_", ":")


class AuthSource(str, Enum):
    """How a request was authenticated."""

    SESSION = "session"
    API_KEY = "api_key"


ScheduleFrequency = Literal["daily", "weekly", "monthly"]


# =============================================================================
# Request Models
# =============================================================================


class ApiKeyCreate(BaseModel):
    """Request model for issuing an API key."""

    description: Optional[str] = Field(default=None, max_length=100)
    scopes: list[str] = Field(
        default_factory=list,
        description="Wire-form scopes such as 'expenses:read'. Unknown scopes are ignored.",
    )
    expires_in_days: Optional[int] = Field(
        default=None,
        ge=1,
        le=365,
        description="Days until expiration (None = no expiration)",
    )


class ImportScheduleCreate(BaseModel):
    """Request model for creating a recurring CSV pull."""

    name: str = Field(..., min_length=1, max_length=100)
    frequency: ScheduleFrequency = "monthly"
    source_url: str = Field(..., min_length=1, max_length=2000, pattern=r"^https?://")


class ImportScheduleUpdate(BaseModel):
    name: Optional[str] = Field(default=None, min_length=1, max_length=100)
    frequency: Optional[ScheduleFrequency] = None
    source_url: Optional[str] = Field(default=None, min_length=1, max_length=2000, pattern=r"^https?://")


class UserSettingsUpdate(BaseModel):
    """Request model for account settings changes."""

    name: Optional[str] = Field(default=None, max_length=100)
    default_currency: Optional[str] = Field(default=None, pattern=r"^[A-Z]{3}$")


# =============================================================================
# Response Models
# =============================================================================


class ApiKeyResponse(BaseModel):
    """Response model for an API key (never includes the secret)."""

    id: str
    prefix: str
    description: Optional[str] = None
    scopes: list[str]
    created_at: str
    expires_at: Optional[str] = None
    revoked_at: Optional[str] = None
    token_last_used_at: Optional[str] = None


class ApiKeyCreatedResponse(BaseModel):
    """Returned once at issuance; ``token`` is not retrievable afterwards."""

    token: str
    record: ApiKeyResponse


class ImportScheduleResponse(BaseModel):
    id: str
    name: str
    frequency: ScheduleFrequency
    source_url: str
    last_run_at: Optional[str] = None
    next_run_at: Optional[str] = None
    created_at: str


class UserResponse(BaseModel):
    """Response model for the current user."""

    id: str
    email: Optional[str] = None
    name: Optional[str] = None
    default_currency: str
    encryption_key_version: int
    source: AuthSource
    scopes: list[str]
