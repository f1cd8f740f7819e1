from __future__ import annotations

from typing import Any, Optional

from app.core.exceptions import NotFoundError
from app.core.logging import get_logger
from app.core.validation import changes, parse
from app.crypto.codec import FieldCodec
from app.repositories.base import LedgerRepository
from app.schemas.account_models import UserSettingsUpdate

logger = get_logger("expenseflow.services.user")


class UserService:
    def __init__(self, repository: LedgerRepository, codec: FieldCodec, default_currency: str = "USD") -> None:
        self.repository = repository
        self.codec = codec
        self.default_currency = default_currency

    def ensure_user(self, user_id: str, email: Optional[str] = None, name: Optional[str] = None) -> dict[str, Any]:
        """Return the user, creating it on first sign-in."""
        user = self.repository.get_user(user_id)
        if user is not None:
            return user
        logger.info(f"Creating user {user_id} with key version {self.codec.active_version}")
        return self.repository.create_user(
            {
                "id": user_id,
                "email": email,
                "name": name,
                "default_currency": self.default_currency,
                "encryption_key_version": self.codec.active_version,
            }
        )

    def get_user(self, user_id: str) -> dict[str, Any]:
        user = self.repository.get_user(user_id)
        if user is None:
            raise NotFoundError("User not found")
        return user

    def update_settings(self, user_id: str, payload: Any) -> dict[str, Any]:
        data = changes(parse(UserSettingsUpdate, payload))
        if "default_currency" in data and data["default_currency"] is None:
            data.pop("default_currency")
        if not data:
            return self.get_user(user_id)
        updated = self.repository.update_user(user_id, data)
        if updated is None:
            raise NotFoundError("User not found")
        return updated

    def delete_user(self, user_id: str) -> None:
        if not self.repository.delete_user(user_id):
            raise NotFoundError("User not found")
        logger.info(f"Deleted user {user_id} and all owned records")
