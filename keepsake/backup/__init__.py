"""
Backup module for Keepsake.

This module handles the core backup functionality including:
- Backup file naming
- Keep-count retention
- Storage backends (local, SMB and SFTP)
- Cycle orchestration (backup, prune, restore)
"""

from .naming import encode_backup_name, decode_backup_name, MalformedNameError
from .retention import compute_retention, prune_backend, RetentionDecision, PruneResult
from .storage import (
    LocalStorage,
    SMBStorage,
    SFTPStorage,
    create_storage,
    StorageError,
    ConfigurationError,
    NotSupportedError
)
from .coordinator import BackupCoordinator, CycleResult, CycleInProgressError, RestoreError

__all__ = [
    'encode_backup_name',
    'decode_backup_name',
    'MalformedNameError',
    'compute_retention',
    'prune_backend',
    'RetentionDecision',
    'PruneResult',
    'LocalStorage',
    'SMBStorage',
    'SFTPStorage',
    'create_storage',
    'StorageError',
    'ConfigurationError',
    'NotSupportedError',
    'BackupCoordinator',
    'CycleResult',
    'CycleInProgressError',
    'RestoreError'
]
