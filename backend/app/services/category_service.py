from __future__ import annotations

from typing import Any

from app.core.exceptions import NotFoundError, ValidationError
from app.core.logging import get_logger
from app.core.validation import changes, parse
from app.repositories.base import LedgerRepository
from app.schemas.models import CategoryCreate, CategoryUpdate

logger = get_logger("expenseflow.services.category")


class CategoryService:
    def __init__(self, repository: LedgerRepository) -> None:
        self.repository = repository

    def list_categories(self, user_id: str) -> list[dict[str, Any]]:
        return self.repository.list_categories(user_id)

    def require_category(self, user_id: str, category_id: str) -> dict[str, Any]:
        category = self.repository.get_category(user_id, category_id)
        if category is None:
            raise NotFoundError("Category not found")
        return category

    def create_category(self, user_id: str, payload: Any) -> dict[str, Any]:
        data = parse(CategoryCreate, payload)
        return self.repository.create_category(
            {"user_id": user_id, "name": data.name.strip(), "color": data.color}
        )

    def update_category(self, user_id: str, category_id: str, payload: Any) -> dict[str, Any]:
        data = changes(parse(CategoryUpdate, payload))
        for field in ("name", "color"):
            if field in data and data[field] is None:
                raise ValidationError(f"Invalid {field}: cannot be null", fields={field: "cannot be null"})
        if "name" in data:
            data["name"] = data["name"].strip()
        updated = self.repository.update_category(user_id, category_id, data)
        if updated is None:
            raise NotFoundError("Category not found")
        return updated

    def delete_category(self, user_id: str, category_id: str) -> None:
        """Delete a category; its expenses become uncategorized."""
        if not self.repository.delete_category(user_id, category_id):
            raise NotFoundError("Category not found")
        logger.info(f"Deleted category {category_id} for user {user_id}")
