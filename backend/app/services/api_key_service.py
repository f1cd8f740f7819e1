from __future__ import annotations

from datetime import datetime, timedelta
from typing import Any, Callable

from app.auth import credentials
from app.core.exceptions import ExpenseFlowError, NotFoundError
from app.core.logging import get_logger
from app.core.utils import isoformat, utc_now
from app.core.validation import parse
from app.repositories.base import LedgerRepository
from app.schemas.account_models import ApiKeyCreate

logger = get_logger("expenseflow.services.api_key")

MAX_ISSUE_ATTEMPTS = 5


def map_api_key(record: dict[str, Any]) -> dict[str, Any]:
    """Public view of a stored key. The hashed secret never leaves this layer."""
    return {
        "id": record["id"],
        "prefix": record["prefix"],
        "description": record.get("description"),
        "scopes": credentials.scopes_to_strings(record.get("scopes") or []),
        "created_at": record.get("created_at"),
        "expires_at": record.get("expires_at"),
        "revoked_at": record.get("revoked_at"),
        "token_last_used_at": record.get("token_last_used_at"),
    }


class ApiKeyService:
    def __init__(
        self,
        repository: LedgerRepository,
        rounds: int = credentials.DEFAULT_ROUNDS,
        clock: Callable[[], datetime] = utc_now,
    ) -> None:
        self.repository = repository
        self.rounds = rounds
        self.clock = clock

    def list_keys(self, user_id: str) -> list[dict[str, Any]]:
        return [map_api_key(k) for k in self.repository.list_api_keys(user_id)]

    def create_key(self, user_id: str, payload: Any) -> dict[str, Any]:
        """Issue a key. The plaintext token is returned here and nowhere else."""
        data = parse(ApiKeyCreate, payload)
        scopes = [scope.value for scope in credentials.normalize_scopes(data.scopes)]
        expires_at = None
        if data.expires_in_days:
            expires_at = isoformat(self.clock() + timedelta(days=data.expires_in_days))

        for _ in range(MAX_ISSUE_ATTEMPTS):
            issued = credentials.issue(self.rounds)
            try:
                record = self.repository.create_api_key(
                    {
                        "user_id": user_id,
                        "prefix": issued.prefix,
                        "hashed_secret": issued.hashed_secret,
                        "description": data.description,
                        "scopes": scopes,
                        "expires_at": expires_at,
                        "revoked_at": None,
                        "token_last_used_at": None,
                    }
                )
            except ValueError:
                logger.warning("API key prefix collision; issuing a new key")
                continue
            logger.info(f"Issued API key {record['prefix']} for user {user_id}")
            return {"token": issued.token, "record": map_api_key(record)}

        raise ExpenseFlowError("Unable to issue API key")

    def revoke_key(self, user_id: str, key_id: str) -> dict[str, Any]:
        record = self.repository.revoke_api_key(user_id, key_id, isoformat(self.clock()))
        if record is None:
            raise NotFoundError("API key not found")
        logger.info(f"Revoked API key {record['prefix']} for user {user_id}")
        return map_api_key(record)
