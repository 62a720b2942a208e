"""
Backup routes - browse backups, trigger cycles and restore.
"""

import logging
from apscheduler.jobstores.base import ConflictingIdError
from flask import Blueprint, jsonify, request
from flask_login import login_required

from keepsake.models import BackupSettings
from keepsake.backup.executor import build_coordinator, execute_restore
from keepsake.backup.naming import MalformedNameError, decode_backup_name
from keepsake.backup.storage import StorageError
from keepsake.scheduler import trigger_cycle_now


bp = Blueprint('backups', __name__, url_prefix='/api/backups')
logger = logging.getLogger(__name__)


@bp.route('', methods=['GET'])
@login_required
def list_backups():
    """
    List the backups of the configured series, newest first.

    Query params:
        - source: 'local' (default) or 'remote'

    Returns:
        JSON array of {name, created_at}
    """
    settings = BackupSettings.get()
    if settings is None:
        return jsonify({'error': 'Backup settings not initialized'}), 500

    source = request.args.get('source', 'local')
    if source not in ('local', 'remote'):
        return jsonify({'error': 'Source must be local or remote'}), 400

    try:
        coordinator = build_coordinator(settings)
        names = coordinator.list_backups(source)
    except ValueError as e:
        # ValueError includes MalformedNameError
        return jsonify({'error': str(e)}), 400
    except StorageError as e:
        logger.error(f"Failed to list {source} backups: {e}")
        return jsonify({'error': str(e)}), 502

    return jsonify([
        {
            'name': name,
            'created_at': decode_backup_name(name, settings.prefix).isoformat()
        }
        for name in reversed(names)
    ])


def _queue(kind: str):
    try:
        job_id = trigger_cycle_now(kind)
    except ConflictingIdError:
        return jsonify({'error': f"A manual {kind} cycle is already queued"}), 409
    except RuntimeError as e:
        return jsonify({'error': str(e)}), 503

    return jsonify({
        'job_id': job_id,
        'message': f"{kind.capitalize()} cycle has been queued for immediate execution"
    }), 202


@bp.route('/run', methods=['POST'])
@login_required
def run_backup_now():
    """
    Queue a backup cycle (create, store, replicate, prune).

    Returns:
        JSON with the queued job id
    """
    return _queue('backup')


@bp.route('/prune', methods=['POST'])
@login_required
def prune_now():
    """
    Queue a prune cycle on local and remote storage.

    Returns:
        JSON with the queued job id
    """
    return _queue('prune')


@bp.route('/restore', methods=['POST'])
@login_required
def restore_backup():
    """
    Restore a backup into the host. Runs synchronously.

    Request body:
        - name: Backup file name (required)
        - source: 'local' (default) or 'remote'

    Returns:
        JSON with the recorded restore
    """
    data = request.get_json(silent=True) or {}
    name = data.get('name')
    source = data.get('source', 'local')

    if not name:
        return jsonify({'error': 'Backup name is required'}), 400

    settings = BackupSettings.get()
    if settings is None:
        return jsonify({'error': 'Backup settings not initialized'}), 500

    try:
        decode_backup_name(name, settings.prefix)
    except MalformedNameError as e:
        return jsonify({'error': str(e)}), 400

    history = execute_restore(source, name)

    status_code = {'success': 200, 'skipped': 409}.get(history.status, 400)
    return jsonify({
        'id': history.id,
        'status': history.status,
        'file_name': history.file_name,
        'error_message': history.error_message
    }), status_code
