"""Tests for the Firestore migration runner and the re-encryption migration."""

from __future__ import annotations

import importlib.util
from pathlib import Path
from unittest.mock import MagicMock

from app.crypto.codec import FieldCodec
from migrations import runner

MIGRATIONS_DIR = Path(runner.__file__).parent


def load_migration(stem: str):
    spec = importlib.util.spec_from_file_location(stem, MIGRATIONS_DIR / f"{stem}.py")
    module = importlib.util.module_from_spec(spec)
    spec.loader.exec_module(module)
    return module


def make_doc(doc_id: str, data: dict) -> MagicMock:
    doc = MagicMock()
    doc.id = doc_id
    doc.to_dict.return_value = data
    return doc


def fake_db(collections: dict[str, list[MagicMock]]) -> MagicMock:
    db = MagicMock()
    db.collection.side_effect = lambda name: MagicMock(
        stream=MagicMock(return_value=iter(collections.get(name, [])))
    )
    return db


class TestReencryptMigration:
    def test_reseals_old_blobs(self, codec, rotated_codec):
        migration = load_migration("m_20261019_001_reencrypt_fields")
        old = make_doc(
            "e1",
            {
                "amount_encrypted": codec.encrypt_number(12),
                "impact_amount_encrypted": codec.encrypt_number(12),
                "description_encrypted": rotated_codec.encrypt_string("already current"),
            },
        )
        user = make_doc("u1", {"encryption_key_version": 1})
        db = fake_db({"expenses": [old], "users": [user]})

        summary = migration.upgrade(db, codec=rotated_codec)

        assert summary["expenses"] == 1
        assert summary["users"] == 1
        update = db.batch.return_value.update.call_args[0][1]
        assert set(update) == {"amount_encrypted", "impact_amount_encrypted"}
        assert FieldCodec.key_version(update["amount_encrypted"]) == 2
        assert rotated_codec.decrypt_number(update["amount_encrypted"]) == 12
        user.reference.update.assert_called_once_with({"encryption_key_version": 2})

    def test_current_documents_untouched(self, rotated_codec):
        migration = load_migration("m_20261019_001_reencrypt_fields")
        doc = make_doc("i1", {"amount_encrypted": rotated_codec.encrypt_number(5), "description_encrypted": None})
        db = fake_db({"incomes": [doc]})

        summary = migration.upgrade(db, codec=rotated_codec)

        assert summary["incomes"] == 0
        db.batch.return_value.update.assert_not_called()
        db.batch.return_value.commit.assert_not_called()


class TestRunner:
    def test_pending_skips_executed(self, tmp_path):
        (tmp_path / "m_20260101_001_first.py").write_text("def upgrade(db):\n    return {}\n")
        (tmp_path / "m_20260102_001_second.py").write_text("def upgrade(db):\n    return {}\n")
        db = fake_db({runner.MIGRATIONS_COLLECTION: [make_doc("m_20260101_001_first", {})]})

        pending = runner.get_pending_migrations(db, migrations_dir=tmp_path)

        assert [migration_id for migration_id, _ in pending] == ["m_20260102_001_second"]

    def test_run_migration_records_summary(self, tmp_path):
        path = tmp_path / "m_20260101_001_first.py"
        path.write_text("def upgrade(db):\n    return {'docs': 3}\n")
        db = MagicMock()

        assert runner.run_migration(db, path.stem, path) is True
        record = db.collection.return_value.document.return_value.set.call_args[0][0]
        assert record["status"] == "completed"
        assert record["summary"] == {"docs": 3}

    def test_failed_migration_is_not_recorded(self, tmp_path):
        path = tmp_path / "m_20260101_001_broken.py"
        path.write_text("def upgrade(db):\n    raise RuntimeError('boom')\n")
        db = MagicMock()

        assert runner.run_migration(db, path.stem, path) is False
        db.collection.return_value.document.return_value.set.assert_not_called()

    def test_missing_upgrade(self, tmp_path):
        path = tmp_path / "m_20260101_001_empty.py"
        path.write_text("X = 1\n")
        assert runner.run_migration(MagicMock(), path.stem, path) is False
