"""
Settings routes - backup configuration and remote storage checks.
"""

import json
import logging
from apscheduler.triggers.cron import CronTrigger
from flask import Blueprint, jsonify, request
from flask_login import login_required

from keepsake import db
from keepsake.models import BackupSettings
from keepsake.utils.crypto import credential_cipher
from keepsake.backup.executor import build_remote_storage
from keepsake.backup.naming import FIELD_DELIMITER
from keepsake.backup.storage import StorageError
from keepsake.scheduler import sync_schedule, get_scheduled_jobs


bp = Blueprint('settings', __name__, url_prefix='/api/settings')
logger = logging.getLogger(__name__)

REMOTE_KINDS = ['smb', 'sftp']
REMOTE_TEXT_FIELDS = ('address', 'host', 'hostname', 'username', 'domain', 'private_key', 'directory')


def _settings_to_dict(settings: BackupSettings) -> dict:
    remote_config = settings.remote_config_dict
    return {
        'enabled': settings.enabled,
        'prefix': settings.prefix,
        'schedule_cron': settings.schedule_cron,
        'source_paths': settings.source_path_list,
        'restore_dir': settings.restore_dir,
        'local_keep_count': settings.local_keep_count,
        'remote_kind': settings.remote_kind,
        'remote_config': remote_config,
        'remote_password_set': settings.remote_password_encrypted is not None,
        'remote_keep_count': settings.remote_keep_count,
        'notifications_enabled': settings.notifications_enabled,
        'updated_at': settings.updated_at.isoformat() if settings.updated_at else None,
        'scheduled_jobs': get_scheduled_jobs()
    }


def _validate_keep_count(data: dict, field: str):
    value = data[field]
    if value is None:
        return None
    if isinstance(value, bool) or not isinstance(value, int):
        return f'{field} must be an integer or null'
    if value < 0:
        return f'{field} must not be negative'
    return None


def _invalid(message: str):
    # Drop fields already applied from this request
    db.session.rollback()
    return jsonify({'error': message}), 400


@bp.route('', methods=['GET'])
@login_required
def get_settings():
    """
    Get backup settings (the remote password is never returned).

    Returns:
        JSON with backup configuration
    """
    settings = BackupSettings.get()
    if settings is None:
        return jsonify({'error': 'Backup settings not initialized'}), 500

    return jsonify(_settings_to_dict(settings))


@bp.route('', methods=['PUT'])
@login_required
def update_settings():
    """
    Update backup settings.

    Request body (all fields optional):
        - enabled: Run the scheduled backup
        - prefix: Backup file name prefix (must not contain '_')
        - schedule_cron: Cron expression
        - source_paths: List of paths to back up
        - restore_dir: Directory backups are restored into
        - local_keep_count: Backups to keep locally (null disables pruning)
        - remote_kind: null, 'smb' or 'sftp'
        - remote_config: Remote connection parameters
        - remote_password: Remote password (empty string clears it)
        - remote_keep_count: Backups to keep remotely (null disables pruning)
        - notifications_enabled: Send cycle notifications

    Returns:
        JSON with updated settings
    """
    settings = BackupSettings.get()
    if settings is None:
        return jsonify({'error': 'Backup settings not initialized'}), 500

    data = request.get_json(silent=True)
    if not isinstance(data, dict):
        return _invalid('JSON object body is required')

    if 'prefix' in data:
        prefix = data['prefix']
        if not isinstance(prefix, str) or not prefix.strip():
            return _invalid('Prefix is required')
        if FIELD_DELIMITER in prefix or '/' in prefix or '\\' in prefix:
            return _invalid(f"Prefix must not contain '{FIELD_DELIMITER}' or path separators")
        settings.prefix = prefix.strip()

    for field in ('local_keep_count', 'remote_keep_count'):
        if field in data:
            error = _validate_keep_count(data, field)
            if error:
                return _invalid(error)
            setattr(settings, field, data[field])

    if 'remote_kind' in data:
        if data['remote_kind'] not in REMOTE_KINDS + [None]:
            return _invalid(f'Remote kind must be one of {REMOTE_KINDS} or null')
        settings.remote_kind = data['remote_kind']

    if 'remote_config' in data:
        if not isinstance(data['remote_config'], dict):
            return _invalid('Remote configuration must be an object')
        remote_config = dict(data['remote_config'])
        for key, value in remote_config.items():
            if isinstance(value, (dict, list)):
                return _invalid(f'Remote configuration field {key} must be a single value')
            if key in REMOTE_TEXT_FIELDS and value is not None and not isinstance(value, str):
                return _invalid(f'Remote configuration field {key} must be a string')
        remote_config.pop('password', None)
        settings.remote_config = json.dumps(remote_config)

    if 'remote_password' in data:
        if data['remote_password']:
            if not credential_cipher.is_initialized:
                return jsonify({'error': 'Credential cipher not initialized'}), 500
            settings.remote_password_encrypted = credential_cipher.encrypt(data['remote_password'])
        else:
            settings.remote_password_encrypted = None

    if 'source_paths' in data:
        paths = data['source_paths']
        if not isinstance(paths, list) or not all(isinstance(p, str) for p in paths):
            return _invalid('Source paths must be a list of strings')
        settings.source_paths = json.dumps(paths)

    for field in ('enabled', 'notifications_enabled'):
        if field in data:
            setattr(settings, field, bool(data[field]))

    if 'schedule_cron' in data:
        schedule = data['schedule_cron'] or None
        if schedule:
            try:
                CronTrigger.from_crontab(schedule)
            except ValueError as e:
                return _invalid(f'Invalid cron expression: {e}')
        settings.schedule_cron = schedule

    if 'restore_dir' in data:
        settings.restore_dir = data['restore_dir'] or None

    db.session.commit()

    # Scheduler only exists in the designated scheduler process
    try:
        sync_schedule()
    except RuntimeError as e:
        logger.warning(f"Schedule not synced: {e}")

    return jsonify(_settings_to_dict(settings))


@bp.route('/remote/test', methods=['POST'])
@login_required
def test_remote_connection():
    """
    Test the configured remote storage.

    Returns:
        JSON with success status
    """
    settings = BackupSettings.get()
    if settings is None or not settings.remote_kind:
        return jsonify({'error': 'Remote storage not configured'}), 400

    try:
        remote = build_remote_storage(settings)
        remote.test_connection()
        return jsonify({'success': True, 'message': f'Connected to {remote.name} storage'})
    except StorageError as e:
        logger.warning(f"Remote storage test failed: {e}")
        return jsonify({'success': False, 'error': str(e)}), 400
