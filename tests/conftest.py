"""
Shared pytest fixtures for Keepsake tests.

This module provides fixtures for:
- Flask app and test client
- Database with in-memory SQLite and the default settings row
- Storage backends and a host with real source files
- Mock fixtures for remote transports (SSH/SFTP, SMB)
"""

import json
from unittest.mock import MagicMock, patch

import pytest

from keepsake import create_app, db as _db
from keepsake.models import BackupSettings
from keepsake.backup.host import DirectoryHost
from keepsake.backup.naming import encode_backup_name
from keepsake.backup.storage import LocalStorage


@pytest.fixture(scope='function')
def app(tmp_path):
    """
    Create Flask app with test configuration.

    Uses in-memory SQLite database for fast, isolated tests.
    """
    app = create_app('testing')

    app.config.update({
        'LOCAL_BACKUP_DIR': str(tmp_path / 'backups'),
    })

    yield app


@pytest.fixture(scope='function')
def db(app):
    """
    Database with all tables and the default settings row.

    Each test gets a fresh database.
    """
    with app.app_context():
        yield _db
        _db.session.remove()
        _db.drop_all()


@pytest.fixture(scope='function')
def client(app):
    """Flask test client for making HTTP requests."""
    return app.test_client()


@pytest.fixture(scope='function')
def backup_settings(db, source_dir, tmp_path):
    """
    Settings row pointing at real source files, local storage only.
    """
    settings = BackupSettings.get()
    settings.prefix = 'bk'
    settings.source_paths = json.dumps([str(source_dir)])
    settings.restore_dir = str(tmp_path / 'restored')
    settings.local_keep_count = 2
    settings.remote_kind = None
    settings.remote_keep_count = None
    db.session.commit()
    return settings


@pytest.fixture
def source_dir(tmp_path):
    """
    Create a directory with files to back up.

    Creates:
    - data/config.json
    - data/nested/state.txt
    """
    data_dir = tmp_path / 'data'
    (data_dir / 'nested').mkdir(parents=True)
    (data_dir / 'config.json').write_text('{"devices": 3}')
    (data_dir / 'nested' / 'state.txt').write_text('armed')
    return data_dir


@pytest.fixture
def host(source_dir, tmp_path):
    """DirectoryHost backing up source_dir and restoring into tmp_path/restored."""
    return DirectoryHost([str(source_dir)], str(tmp_path / 'restored'))


@pytest.fixture
def local_storage(tmp_path):
    """LocalStorage in a fresh temporary directory."""
    return LocalStorage(str(tmp_path / 'backups'))


@pytest.fixture
def make_backups(local_storage):
    """
    Factory writing dummy backups into local_storage.

    Usage: make_backups('bk', [datetime(...), ...]) -> list of names
    """
    def _make(prefix, timestamps):
        names = []
        for timestamp in timestamps:
            name = encode_backup_name(prefix, timestamp)
            local_storage.write_bytes(name, b'backup data')
            names.append(name)
        return names

    return _make


@pytest.fixture
def mock_ssh_client():
    """
    Mock paramiko SSHClient for SFTP testing.

    Yields the SSHClient class mock; the SFTP client is
    mock_ssh_client.return_value.open_sftp.return_value.
    """
    with patch('keepsake.backup.storage.paramiko.SSHClient') as mock_ssh:
        mock_sftp = MagicMock()
        mock_ssh.return_value.open_sftp.return_value = mock_sftp
        mock_ssh.return_value.connect.return_value = None

        yield mock_ssh


@pytest.fixture
def mock_smbclient():
    """
    Mock the smbclient module used by SMBStorage.
    """
    with patch('keepsake.backup.storage.smbclient') as mock_smb:
        yield mock_smb
