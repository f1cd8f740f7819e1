"""Tests for the account export archive."""

from __future__ import annotations

import json
import zipfile
from io import BytesIO

import pytest

from app.core.exceptions import NotFoundError
from app.services.api_key_service import ApiKeyService
from app.services.category_limit_service import CategoryLimitService
from app.services.expense_service import ExpenseService
from app.services.export_service import ExportService
from app.services.import_schedule_service import ImportScheduleService
from app.services.income_service import IncomeService


@pytest.fixture
def populated(repo, codec, user_id, frozen_clock):
    category = repo.create_category({"user_id": user_id, "name": "Food", "color": "#123456"})
    ExpenseService(repo, codec).create_expense(
        user_id,
        {
            "amount": "90",
            "description": "Dinner",
            "occurred_on": "2026-03-10",
            "category_id": category["id"],
            "split_by": 3,
        },
    )
    IncomeService(repo, codec).create_income(
        user_id, {"amount": "2500", "description": "Salary", "occurred_on": "2026-03-01"}
    )
    CategoryLimitService(repo, codec).upsert_limit(user_id, {"category_id": category["id"], "limit": "200"})
    ApiKeyService(repo, rounds=4, clock=frozen_clock).create_key(user_id, {"scopes": ["expenses:read"]})
    ImportScheduleService(repo, clock=frozen_clock).create_schedule(
        user_id, {"name": "Bank CSV", "source_url": "https://bank.example.com/export.csv"}
    )
    return category


def read_archive(content: bytes) -> dict:
    with zipfile.ZipFile(BytesIO(content)) as archive:
        return {name: json.loads(archive.read(name)) for name in archive.namelist()}


class TestBuildArchive:
    def test_archive_layout(self, repo, codec, user_id, populated, frozen_clock):
        export = ExportService(repo, codec, clock=frozen_clock).build_archive(user_id)

        files = read_archive(export.content)
        assert export.filename == "expense-flow-account-export-2026-03-15T12-00-00Z.zip"
        assert set(files) == {
            "metadata.json",
            "data/user.json",
            "data/categories.json",
            "data/category-limits.json",
            "data/expense-groups.json",
            "data/expenses.json",
            "data/recurring-expenses.json",
            "data/income.json",
            "data/recurring-income.json",
            "data/api-keys.json",
            "data/import-schedules.json",
        }

    def test_metadata(self, repo, codec, user_id, populated, frozen_clock):
        export = ExportService(repo, codec, clock=frozen_clock).build_archive(user_id)

        metadata = read_archive(export.content)["metadata.json"]
        assert metadata["version"] == 1
        assert metadata["user_id"] == user_id
        assert metadata["generated_at"].startswith("2026-03-15T12:00:00")
        assert metadata["counts"]["expenses"] == 1
        assert metadata["counts"]["income"] == 1
        assert metadata["counts"] == export.counts

    def test_values_are_decrypted(self, repo, codec, user_id, populated, frozen_clock):
        files = read_archive(ExportService(repo, codec, clock=frozen_clock).build_archive(user_id).content)

        expense = files["data/expenses.json"][0]
        assert expense["description"] == "Dinner"
        assert expense["amount"] == 90.0
        assert expense["impact_amount"] == 30.0
        assert expense["category_name"] == "Food"
        assert files["data/income.json"][0]["amount"] == 2500.0
        assert files["data/category-limits.json"][0]["limit"] == 200.0
        assert files["data/user.json"]["email"] == "user@example.com"

    def test_no_ciphertext_in_archive(self, repo, codec, user_id, populated, frozen_clock):
        files = read_archive(ExportService(repo, codec, clock=frozen_clock).build_archive(user_id).content)
        assert "_encrypted" not in json.dumps(files)

    def test_only_owned_records(self, repo, codec, user_id, populated, frozen_clock):
        ExpenseService(repo, codec).create_expense(
            "someone-else", {"amount": "5", "description": "Theirs", "occurred_on": "2026-03-10"}
        )
        files = read_archive(ExportService(repo, codec, clock=frozen_clock).build_archive(user_id).content)
        assert [e["description"] for e in files["data/expenses.json"]] == ["Dinner"]

    def test_unknown_user(self, repo, codec):
        with pytest.raises(NotFoundError):
            ExportService(repo, codec).build_archive("ghost")
