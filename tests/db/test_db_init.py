"""Unit tests for certdesk.db.init -- init_database and apply_schema."""

from __future__ import annotations

from unittest.mock import MagicMock, patch

from certdesk.db.init import SCHEMA_PATH, apply_schema, init_database


class TestInitDatabase:
    def test_returns_existing_instance(self, settings):
        with patch("certdesk.db.init.Database") as db_cls:
            db_cls.is_initialized.return_value = True
            result = init_database(settings.database)
        assert result is db_cls.get_instance.return_value
        db_cls.init.assert_not_called()

    def test_initialises_with_schema_when_auto_setup(self, settings):
        with patch("certdesk.db.init.Database") as db_cls:
            db_cls.is_initialized.return_value = False
            init_database(settings.database)
        kwargs = db_cls.init.call_args.kwargs
        assert kwargs["config"].database == "certdesk_test"
        assert kwargs["config"].user == "testuser"
        assert kwargs["auto_setup"] is settings.database.auto_setup
        expected = SCHEMA_PATH if settings.database.auto_setup else None
        assert kwargs["schema_path"] == expected


class TestApplySchema:
    def test_executes_bundled_ddl(self):
        db = MagicMock()
        cur = db.transaction.return_value.__enter__.return_value.cursor.return_value
        apply_schema(db)
        sql = cur.__enter__.return_value.execute.call_args.args[0]
        assert "CREATE TABLE IF NOT EXISTS certificate_requests" in sql
        assert "retry_queue" in sql

    def test_schema_has_every_table(self):
        sql = SCHEMA_PATH.read_text(encoding="utf-8")
        for table in (
            "certificate_requests",
            "retry_queue",
            "delivery_outcomes",
            "delivery_alerts",
            "profiles",
        ):
            assert table in sql

    def test_live_retry_key_includes_notification_kind(self):
        sql = " ".join(SCHEMA_PATH.read_text(encoding="utf-8").split())
        assert "DROP INDEX IF EXISTS uq_retry_queue_live_attempt;" in sql
        assert (
            "uq_retry_queue_live_kind_attempt ON retry_queue "
            "(certificate_id, notification_kind, retry_count)"
        ) in sql
