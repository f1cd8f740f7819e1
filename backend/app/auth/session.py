"""
Session Authentication

Verifies Firebase session cookies for signed-in humans.
Supports demo mode with pseudo-IDs for local development and tests.
"""

from dataclasses import dataclass
from typing import Optional

import firebase_admin
from fastapi import Request
from firebase_admin import auth
from firebase_admin import exceptions as firebase_exceptions

from app.core.config import Settings
from app.core.exceptions import UnauthorizedError
from app.core.logging import get_logger

logger = get_logger("expenseflow.auth.session")

DEMO_HEADER = "X-Demo-User-Id"
DEMO_USER_PREFIX = "demo_"


def _ensure_firebase_initialized():
    """Lazy Firebase initialization - only when actually needed for cookie verification."""
    if not firebase_admin._apps:
        firebase_admin.initialize_app()


@dataclass
class SessionUser:
    """Represents a signed-in user."""

    uid: str
    email: Optional[str] = None
    name: Optional[str] = None
    is_demo: bool = False

    @classmethod
    def from_claims(cls, claims: dict) -> "SessionUser":
        """Create SessionUser from decoded session cookie claims."""
        return cls(
            uid=claims["uid"],
            email=claims.get("email"),
            name=claims.get("name"),
        )

    @classmethod
    def demo_user(cls, demo_id: str) -> "SessionUser":
        """Create a demo user with pseudo-ID."""
        return cls(
            uid=f"{DEMO_USER_PREFIX}{demo_id}",
            email=f"{demo_id}@demo.expenseflow.local",
            name=f"Demo User ({demo_id})",
            is_demo=True,
        )


def resolve_session(request: Request, settings: Settings) -> Optional[SessionUser]:
    """
    Return the signed-in user for this request, or None when there is no session.

    Demo mode:
        Send header: X-Demo-User-Id: my-demo-session
        Returns demo user with uid: demo_my-demo-session

    Raises:
        UnauthorizedError when a session cookie is present but invalid,
        expired or revoked.
    """
    demo_id = request.headers.get(DEMO_HEADER)
    if settings.demo_mode and demo_id:
        return SessionUser.demo_user(demo_id)

    cookie = request.cookies.get(settings.session_cookie_name)
    if not cookie:
        return None

    try:
        _ensure_firebase_initialized()
        claims = auth.verify_session_cookie(cookie, check_revoked=True)
        return SessionUser.from_claims(claims)
    except auth.ExpiredSessionCookieError:
        raise UnauthorizedError("Session has expired")
    except auth.RevokedSessionCookieError:
        raise UnauthorizedError("Session has been revoked")
    except (auth.InvalidSessionCookieError, auth.UserDisabledError, ValueError):
        raise UnauthorizedError("Invalid session")
    except firebase_exceptions.FirebaseError as e:
        logger.warning(f"Session verification unavailable: {type(e).__name__}")
        raise UnauthorizedError("Unable to verify session")
