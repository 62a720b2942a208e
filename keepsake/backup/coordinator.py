"""
Backup coordinator - orchestrates backup, prune and restore cycles.

Backup cycle:
1. Request a fresh artifact from the host (failure aborts the cycle)
2. Write it to the local backup directory (failure is not fatal, pruning still runs)
3. Upload it to the remote backend (if configured; a failed upload or an
   unusable remote configuration is not fatal)
4. Prune old backups locally and remotely, independently

Only one cycle runs at a time per process; scheduled and manual triggers
share the same guard.
"""

import logging
import threading
from contextlib import contextmanager
from datetime import datetime
from typing import Optional, List

from .naming import MalformedNameError, encode_backup_name
from .retention import PruneResult, prune_backend, sort_backups
from .storage import StorageError


logger = logging.getLogger(__name__)


class CycleInProgressError(RuntimeError):
    """Raised when a cycle is started while another one is running."""
    pass


class RestoreError(Exception):
    """Raised when the backup to restore cannot be fetched."""
    pass


class CycleGuard:
    """Non-blocking lock shared by every cycle of the process."""

    def __init__(self):
        self._lock = threading.Lock()

    @property
    def busy(self) -> bool:
        return self._lock.locked()

    @contextmanager
    def hold(self, kind: str):
        if not self._lock.acquire(blocking=False):
            raise CycleInProgressError(f"Cannot start {kind} cycle: another cycle is in progress")
        try:
            yield
        finally:
            self._lock.release()


cycle_guard = CycleGuard()


class CycleResult:
    """
    Outcome of one cycle.

    `state` ends as 'done' or 'failed'. Non-fatal problems (remote upload,
    prune errors, restore handoff) are collected in `errors`.
    """

    def __init__(self, kind: str):
        self.kind = kind
        self.state = 'idle'
        self.started_at = datetime.utcnow()
        self.completed_at = None
        self.file_name = None
        self.replication = None  # replicated, skipped or failed
        self.local_prune: Optional[PruneResult] = None
        self.remote_prune: Optional[PruneResult] = None
        self.errors: List[str] = []
        self.error_message = None
        self.logs: List[str] = []

    @property
    def succeeded(self) -> bool:
        return self.state == 'done'

    def summary(self) -> str:
        """Human readable one-line summary used for notifications."""
        if self.state == 'failed':
            return f"{self.kind.capitalize()} failed: {self.error_message}"

        parts = []
        if self.file_name:
            parts.append(f"{'Restored' if self.kind == 'restore' else 'Created'} {self.file_name}")
        if self.local_prune is not None:
            parts.append(f"{self.local_prune.removed} removed locally")
        if self.remote_prune is not None:
            parts.append(f"{self.remote_prune.removed} removed from {self.remote_prune.backend}")
        if self.errors:
            parts.append(f"{len(self.errors)} errors")
        return ', '.join(parts) or f"{self.kind.capitalize()} completed"

    def to_dict(self) -> dict:
        def prune_dict(prune):
            if prune is None:
                return None
            return {
                'backend': prune.backend,
                'attempted': prune.attempted,
                'removed': prune.removed,
                'failed': list(prune.failed)
            }

        return {
            'kind': self.kind,
            'state': self.state,
            'file_name': self.file_name,
            'replication': self.replication,
            'local_prune': prune_dict(self.local_prune),
            'remote_prune': prune_dict(self.remote_prune),
            'errors': self.errors,
            'error_message': self.error_message,
            'summary': self.summary()
        }


class BackupCoordinator:
    """
    Runs backup, prune and restore cycles against one host, the local
    backup directory and an optional remote backend.
    """

    def __init__(
        self,
        host,
        local_storage,
        prefix: str,
        local_keep_count: Optional[int],
        remote=None,
        remote_keep_count: Optional[int] = None,
        notifier=None,
        guard: CycleGuard = None,
        remote_error: Optional[str] = None
    ):
        """
        Initialize backup coordinator.

        Args:
            host: ArtifactHost providing and restoring artifacts
            local_storage: LocalStorage for the backup directory
            prefix: Series prefix used in file names
            local_keep_count: Backups to keep locally (None disables local pruning)
            remote: Optional remote StorageBackend
            remote_keep_count: Backups to keep remotely (None disables remote pruning)
            notifier: Optional Notifier receiving cycle summaries
            guard: CycleGuard (default: process-wide guard)
            remote_error: Why the configured remote could not be built, if so
        """
        self.host = host
        self.local_storage = local_storage
        self.prefix = prefix
        self.local_keep_count = local_keep_count
        self.remote = remote
        self.remote_keep_count = remote_keep_count
        self.notifier = notifier
        self.guard = guard or cycle_guard
        self.remote_error = remote_error

    def run_backup_cycle(self, now: datetime = None) -> CycleResult:
        """
        Create a backup, store it, replicate it and prune old ones.

        Args:
            now: Timestamp to name the backup with (default: current local time)

        Returns:
            CycleResult; state is 'failed' only if the artifact could not be
            created

        Raises:
            CycleInProgressError: If another cycle is running
        """
        result = CycleResult('backup')

        with self.guard.hold(result.kind):
            now = now or datetime.now()
            self._log(result, f"Starting backup for prefix '{self.prefix}'")
            self._check_remote(result)

            # Step 1: Request artifact from host
            result.state = 'creating'
            try:
                data = self.host.create_artifact()
            except Exception as e:
                return self._fail(result, f"Error creating backup: {e}")

            # Step 2: Store locally
            file_name = encode_backup_name(self.prefix, now)
            try:
                local_path = self.local_storage.write_bytes(file_name, data)
                result.state = 'stored_locally'
                result.file_name = file_name
                self._log(result, f"Backup stored locally: {local_path} ({len(data) / 1024 / 1024:.2f} MB)")
            except StorageError as e:
                local_path = None
                self._error(result, f"Error storing backup locally: {e}")

            # Step 3: Replicate to remote backend
            if self.remote_error is not None:
                result.replication = 'failed'
            elif self.remote is None:
                result.replication = 'skipped'
                self._log(result, "Remote storage not configured, skipping upload")
            elif local_path is None:
                result.replication = 'skipped'
                self._log(result, "No local copy to upload, skipping upload")
            else:
                result.state = 'replicating'
                try:
                    location = self.remote.store(local_path, file_name)
                    result.replication = 'replicated'
                    self._log(result, f"Uploaded to {self.remote.name}: {location}")
                except StorageError as e:
                    result.replication = 'failed'
                    self._error(result, f"Error uploading backup to {self.remote.name}: {e}")

            # Step 4: Prune both sides
            self._prune_all(result)

            return self._finish(result)

    def run_prune_cycle(self) -> CycleResult:
        """
        Prune old backups locally and remotely without creating a new one.

        Returns:
            CycleResult with prune results

        Raises:
            CycleInProgressError: If another cycle is running
        """
        result = CycleResult('prune')

        with self.guard.hold(result.kind):
            self._log(result, f"Starting prune for prefix '{self.prefix}'")
            self._check_remote(result)
            self._prune_all(result)
            return self._finish(result)

    def list_backups(self, source: str = 'local') -> List[str]:
        """
        List the backups of the series, oldest first.

        Args:
            source: 'local' or 'remote'

        Returns:
            Backup file names sorted by creation time

        Raises:
            ValueError: If source is invalid or no remote is configured
            StorageError: If listing fails
            MalformedNameError: If a listed name cannot be decoded
        """
        storage = self._storage_for(source)
        return sort_backups(storage.list_backups(self.prefix), self.prefix)

    def restore_cycle(self, source: str, name: str) -> CycleResult:
        """
        Restore a backup into the host.

        Args:
            source: 'local' or 'remote' (remote backends cannot serve backups)
            name: Backup file name

        Returns:
            CycleResult; state is 'failed' if the host rejected the artifact

        Raises:
            RestoreError: If the backup cannot be fetched; the host is untouched
            CycleInProgressError: If another cycle is running
        """
        result = CycleResult('restore')

        with self.guard.hold(result.kind):
            self._log(result, f"Starting backup restore of {name} from {source}")

            try:
                storage = self._storage_for(source)
                data = storage.fetch(name)
            except (ValueError, StorageError) as e:
                self._log(result, f"Error finding the backup: {e}", logging.ERROR)
                raise RestoreError(str(e))

            result.file_name = name

            try:
                self.host.restore_artifact(data)
            except Exception as e:
                return self._fail(result, f"Error restoring backup: {e}")

            self._log(result, "Backup restore completed")
            return self._finish(result)

    def _storage_for(self, source: str):
        if source == 'local':
            return self.local_storage
        if source == 'remote':
            if self.remote_error is not None:
                raise ValueError(f"Remote storage unavailable: {self.remote_error}")
            if self.remote is None:
                raise ValueError("Remote storage not configured")
            return self.remote
        raise ValueError(f"Invalid backup source: {source}")

    def _check_remote(self, result: CycleResult):
        if self.remote_error is not None:
            self._error(result, f"Remote storage unavailable: {self.remote_error}")

    def _prune_all(self, result: CycleResult):
        result.state = 'pruning'

        if self.local_keep_count is None:
            self._log(result, "Local retention: not configured, skipping")
        else:
            result.local_prune = self._prune(result, self.local_storage, self.local_keep_count)

        if self.remote is None:
            return

        if self.remote_keep_count is None:
            self._log(result, "Remote retention: not configured, skipping")
        else:
            result.remote_prune = self._prune(result, self.remote, self.remote_keep_count)

    def _prune(self, result: CycleResult, storage, keep_count: int) -> Optional[PruneResult]:
        """
        Prune one backend, turning failures into non-fatal cycle errors.

        Returns:
            PruneResult, or None if the backend could not be listed
        """
        try:
            prune = prune_backend(storage, self.prefix, keep_count)
        except MalformedNameError as e:
            self._error(result, f"Cannot prune {storage.name} backups: {e}")
            return None
        except StorageError as e:
            self._error(result, f"Error listing {storage.name} backups: {e}")
            return None

        if prune.attempted:
            self._log(
                result,
                f"[{storage.name}] Removed {prune.removed} of {prune.attempted} old backups"
            )
        for name in prune.failed:
            result.errors.append(f"Error removing {storage.name} file {name}")

        return prune

    def _fail(self, result: CycleResult, message: str) -> CycleResult:
        result.state = 'failed'
        result.error_message = message
        result.completed_at = datetime.utcnow()
        self._log(result, message, logging.ERROR)
        self._notify(result)
        return result

    def _finish(self, result: CycleResult) -> CycleResult:
        result.state = 'done'
        result.completed_at = datetime.utcnow()
        self._log(result, f"{result.kind.capitalize()} completed: {result.summary()}")
        self._notify(result)
        return result

    def _error(self, result: CycleResult, message: str):
        result.errors.append(message)
        self._log(result, message, logging.ERROR)

    def _notify(self, result: CycleResult):
        if self.notifier is None:
            return

        title = f"Keepsake {result.kind} {'failed' if result.state == 'failed' else 'completed'}"
        try:
            self.notifier.send_notification(title, result.summary())
        except Exception as e:
            logger.warning(f"Failed to send notification: {e}")

    def _log(self, result: CycleResult, message: str, level: int = logging.INFO):
        """
        Add a log message with timestamp.

        Args:
            result: Cycle the message belongs to
            message: Log message
            level: Logging level for the module logger
        """
        timestamp = datetime.utcnow().strftime('%Y-%m-%d %H:%M:%S UTC')
        result.logs.append(f"[{timestamp}] {message}")
        logger.log(level, message)
