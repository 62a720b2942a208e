"""
Unit tests for database models (keepsake/models.py).
"""

import json
from datetime import datetime

from keepsake.migrations import ensure_default_settings
from keepsake.models import BackupSettings, CycleHistory, EncryptionKey


class TestBackupSettingsModel:
    """Test BackupSettings model."""

    def test_default_row_created(self, app, db):
        """The schema initialization seeds one settings row from the config."""
        settings = BackupSettings.get()

        assert BackupSettings.query.count() == 1
        assert settings.prefix == app.config['DEFAULT_BACKUP_PREFIX']
        assert settings.schedule_cron == app.config['DEFAULT_SCHEDULE_CRON']
        assert settings.local_keep_count == app.config['DEFAULT_LOCAL_KEEP_COUNT']
        assert settings.enabled is True
        assert settings.notifications_enabled is True
        assert settings.remote_kind is None
        assert settings.remote_keep_count is None

    def test_default_row_not_duplicated(self, app, db):
        ensure_default_settings(app)

        assert BackupSettings.query.count() == 1

    def test_json_properties(self, db):
        settings = BackupSettings.get()
        settings.source_paths = json.dumps(['/config', '/media'])
        settings.remote_config = json.dumps({'host': 'example.com'})
        db.session.commit()

        assert settings.source_path_list == ['/config', '/media']
        assert settings.remote_config_dict == {'host': 'example.com'}

    def test_json_properties_empty(self, db):
        settings = BackupSettings.get()

        assert settings.source_path_list == []
        assert settings.remote_config_dict == {}

    def test_updated_at_changes(self, db):
        settings = BackupSettings.get()
        before = settings.updated_at

        settings.prefix = 'ha'
        db.session.commit()

        assert settings.updated_at >= before

    def test_repr(self, db):
        settings = BackupSettings.get()

        assert repr(settings) == f'<BackupSettings prefix={settings.prefix} remote=None enabled=True>'


class TestCycleHistoryModel:
    """Test CycleHistory model."""

    def test_create_cycle_history(self, db):
        record = CycleHistory(kind='backup', status='running')
        db.session.add(record)
        db.session.commit()

        assert record.id is not None
        assert record.trigger == 'manual'
        assert record.started_at is not None
        assert record.completed_at is None

    def test_repr(self, db):
        record = CycleHistory(kind='prune', status='success')

        assert repr(record) == '<CycleHistory kind=prune status=success>'


class TestEncryptionKeyModel:
    """Test EncryptionKey model."""

    def test_create_encryption_key(self, db):
        before = datetime.utcnow()
        key = EncryptionKey(salt=b'1234567890123456')
        db.session.add(key)
        db.session.commit()
        after = datetime.utcnow()

        assert key.id is not None
        assert before <= key.created_at <= after
        assert repr(key) == f'<EncryptionKey id={key.id}>'
