"""
Cycle executor - runs coordinator cycles from the stored settings.

Backends are built fresh from the current settings for every execution, so
a settings change takes effect on the next cycle and no remote session
outlives a cycle. Every execution is recorded as a CycleHistory row.
"""

import logging
from datetime import datetime
from typing import Optional

from flask import current_app

from keepsake import db
from keepsake.models import BackupSettings, CycleHistory
from keepsake.utils.crypto import credential_cipher
from .coordinator import BackupCoordinator, CycleInProgressError, RestoreError
from .host import DirectoryHost
from .notifications import LogNotifier
from .storage import ConfigurationError, LocalStorage, StorageBackend, create_storage


logger = logging.getLogger(__name__)

CYCLE_KINDS = ('backup', 'prune')


def build_remote_storage(settings: BackupSettings) -> Optional[StorageBackend]:
    """
    Create the remote backend described by the settings.

    Args:
        settings: BackupSettings row

    Returns:
        StorageBackend, or None if no remote is configured

    Raises:
        ConfigurationError: If the remote configuration is incomplete or the
            stored password cannot be decrypted
    """
    if not settings.remote_kind:
        return None

    if settings.remote_kind not in ('smb', 'sftp'):
        raise ConfigurationError(f"Invalid remote storage kind: {settings.remote_kind}")

    remote_config = settings.remote_config_dict

    if settings.remote_password_encrypted:
        if not credential_cipher.is_initialized:
            raise ConfigurationError("Credential cipher not initialized. Cannot decrypt remote password")
        try:
            remote_config['password'] = credential_cipher.decrypt(settings.remote_password_encrypted)
        except Exception as e:
            raise ConfigurationError(f"Failed to decrypt remote password: {e}")

    return create_storage(settings.remote_kind, remote_config)


def build_coordinator(settings: BackupSettings, app_config=None) -> BackupCoordinator:
    """
    Create a coordinator wired to the current settings.

    A remote that cannot be built does not stop local work: the coordinator
    runs without it and reports the problem as a cycle error.

    Args:
        settings: BackupSettings row
        app_config: Flask config mapping (default: current_app.config)

    Returns:
        BackupCoordinator
    """
    if app_config is None:
        app_config = current_app.config

    try:
        remote = build_remote_storage(settings)
        remote_error = None
    except ConfigurationError as e:
        logger.error(f"Remote storage not usable: {e}")
        remote, remote_error = None, str(e)

    return BackupCoordinator(
        host=DirectoryHost(settings.source_path_list, settings.restore_dir),
        local_storage=LocalStorage(app_config['LOCAL_BACKUP_DIR']),
        prefix=settings.prefix,
        local_keep_count=settings.local_keep_count,
        remote=remote,
        remote_keep_count=settings.remote_keep_count,
        notifier=LogNotifier() if settings.notifications_enabled else None,
        remote_error=remote_error
    )


def execute_cycle(kind: str, trigger: str = 'manual', now: datetime = None) -> CycleHistory:
    """
    Run a backup or prune cycle and record it.

    Args:
        kind: 'backup' or 'prune'
        trigger: 'scheduled' or 'manual'
        now: Timestamp for the backup name (default: current local time)

    Returns:
        CycleHistory record with execution results

    Raises:
        ValueError: If kind is invalid or settings are missing
    """
    if kind not in CYCLE_KINDS:
        raise ValueError(f"Invalid cycle kind: {kind}")

    settings = BackupSettings.get()
    if settings is None:
        raise ValueError("Backup settings not initialized")

    history = _start_history(kind, trigger)

    try:
        coordinator = build_coordinator(settings)
        if kind == 'backup':
            result = coordinator.run_backup_cycle(now)
        else:
            result = coordinator.run_prune_cycle()
    except CycleInProgressError as e:
        logger.warning(str(e))
        return _finish_history(history, 'skipped', error_message=str(e))
    except Exception as e:
        logger.exception(f"{kind.capitalize()} cycle failed: {e}")
        return _finish_history(history, 'failed', error_message=str(e))

    return _record_result(history, result)


def execute_restore(source: str, name: str) -> CycleHistory:
    """
    Restore a backup into the host and record it.

    Args:
        source: 'local' or 'remote'
        name: Backup file name

    Returns:
        CycleHistory record; status 'failed' if the backup could not be
        fetched or restored

    Raises:
        ValueError: If settings are missing
    """
    settings = BackupSettings.get()
    if settings is None:
        raise ValueError("Backup settings not initialized")

    history = _start_history('restore', 'manual')
    history.file_name = name

    try:
        coordinator = build_coordinator(settings)
        result = coordinator.restore_cycle(source, name)
    except CycleInProgressError as e:
        return _finish_history(history, 'skipped', error_message=str(e))
    except RestoreError as e:
        logger.error(f"Restore of {name} failed: {e}")
        return _finish_history(history, 'failed', error_message=str(e))
    except Exception as e:
        logger.exception(f"Restore of {name} failed: {e}")
        return _finish_history(history, 'failed', error_message=str(e))

    return _record_result(history, result)


def _start_history(kind: str, trigger: str) -> CycleHistory:
    history = CycleHistory(
        kind=kind,
        trigger=trigger,
        status='running',
        started_at=datetime.utcnow()
    )
    db.session.add(history)
    db.session.commit()
    return history


def _record_result(history: CycleHistory, result) -> CycleHistory:
    history.file_name = result.file_name or history.file_name
    history.logs = '\n'.join(result.logs)

    if result.local_prune is not None:
        history.local_removed = result.local_prune.removed
    if result.remote_prune is not None:
        history.remote_removed = result.remote_prune.removed

    if result.state == 'failed':
        return _finish_history(history, 'failed', error_message=result.error_message)
    if result.errors:
        return _finish_history(history, 'warning', error_message='\n'.join(result.errors))
    return _finish_history(history, 'success')


def _finish_history(history: CycleHistory, status: str, error_message: str = None) -> CycleHistory:
    history.status = status
    history.error_message = error_message
    history.completed_at = datetime.utcnow()
    db.session.commit()
    return history
