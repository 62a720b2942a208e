import json
from datetime import datetime
from keepsake import db


class BackupSettings(db.Model):
    """Backup configuration (single row)"""
    __tablename__ = 'backup_settings'

    id = db.Column(db.Integer, primary_key=True)
    enabled = db.Column(db.Boolean, default=True, nullable=False)
    prefix = db.Column(db.String(100), nullable=False)
    schedule_cron = db.Column(db.String(100))  # Cron expression
    source_paths = db.Column(db.Text, nullable=False, default='[]')  # JSON list of paths to back up
    restore_dir = db.Column(db.String(500))
    local_keep_count = db.Column(db.Integer)  # null = no local pruning
    remote_kind = db.Column(db.String(20))  # null, 'smb' or 'sftp'
    remote_config = db.Column(db.Text, nullable=False, default='{}')  # JSON string, without password
    remote_password_encrypted = db.Column(db.Text)
    remote_keep_count = db.Column(db.Integer)  # null = no remote pruning
    notifications_enabled = db.Column(db.Boolean, default=True, nullable=False)
    updated_at = db.Column(db.DateTime, default=datetime.utcnow, onupdate=datetime.utcnow, nullable=False)

    @classmethod
    def get(cls):
        """Return the settings row, or None before the schema is initialized."""
        return cls.query.order_by(cls.id).first()

    @property
    def source_path_list(self) -> list:
        return json.loads(self.source_paths or '[]')

    @property
    def remote_config_dict(self) -> dict:
        return json.loads(self.remote_config or '{}')

    def __repr__(self):
        return f'<BackupSettings prefix={self.prefix} remote={self.remote_kind} enabled={self.enabled}>'


class CycleHistory(db.Model):
    """Backup, prune and restore execution history and logs"""
    __tablename__ = 'cycle_history'

    id = db.Column(db.Integer, primary_key=True)
    kind = db.Column(db.String(20), nullable=False)  # backup, prune, restore
    trigger = db.Column(db.String(20), nullable=False, default='manual')  # scheduled, manual
    status = db.Column(db.String(20), nullable=False)  # running, success, warning, failed, skipped
    started_at = db.Column(db.DateTime, default=datetime.utcnow, nullable=False)
    completed_at = db.Column(db.DateTime)
    file_name = db.Column(db.String(255))
    local_removed = db.Column(db.Integer)
    remote_removed = db.Column(db.Integer)
    error_message = db.Column(db.Text)
    logs = db.Column(db.Text)  # Detailed execution logs

    def __repr__(self):
        return f'<CycleHistory kind={self.kind} status={self.status}>'


class EncryptionKey(db.Model):
    """Salt for the credential encryption key"""
    __tablename__ = 'encryption_key'

    id = db.Column(db.Integer, primary_key=True)
    salt = db.Column(db.LargeBinary, nullable=False)
    created_at = db.Column(db.DateTime, default=datetime.utcnow, nullable=False)

    def __repr__(self):
        return f'<EncryptionKey id={self.id}>'
