"""
Keep-count retention for backup series.

A backup series is the set of files in one storage location whose names start
with the configured prefix. Retention keeps the newest `keep_count` of them
and removes the rest, oldest first. Files belonging to other series are never
considered.
"""

import logging
from typing import Iterable, List, NamedTuple, Tuple

from .naming import decode_backup_name
from .storage import StorageError


logger = logging.getLogger(__name__)


class RetentionDecision(NamedTuple):
    """Outcome of a retention computation, both sides sorted oldest first."""
    to_keep: Tuple[str, ...]
    to_remove: Tuple[str, ...]


class PruneResult(NamedTuple):
    """
    Outcome of pruning one backend.

    `attempted` counts every delete that was issued, `removed` only those
    the backend confirmed. Names whose delete failed are listed in `failed`.
    """
    backend: str
    attempted: int
    removed: int
    failed: Tuple[str, ...] = ()


def sort_backups(names: Iterable[str], prefix: str) -> List[str]:
    """
    Order the backups of a series from oldest to newest.

    Args:
        names: Raw file names from a storage listing
        prefix: Series prefix; names not starting with it are dropped

    Returns:
        Matching names sorted by encoded timestamp, ties by name

    Raises:
        MalformedNameError: If a matching name cannot be decoded
    """
    matching = sorted(name for name in names if name.startswith(prefix))

    # Stable sort keeps the lexical order for identical timestamps
    return sorted(matching, key=lambda name: decode_backup_name(name, prefix))


def compute_retention(names: Iterable[str], prefix: str, keep_count: int) -> RetentionDecision:
    """
    Split a series into backups to keep and backups to remove.

    Args:
        names: Raw file names from a storage listing
        prefix: Series prefix
        keep_count: Number of newest backups to keep (<= 0 removes all)

    Returns:
        RetentionDecision with the oldest surplus in `to_remove`

    Raises:
        MalformedNameError: If a name of the series cannot be decoded. The
            whole computation fails rather than skipping the name, so that a
            bad name can never make retention keep too many files.
    """
    ordered = sort_backups(names, prefix)

    if keep_count <= 0:
        return RetentionDecision(to_keep=(), to_remove=tuple(ordered))

    remove_count = max(0, len(ordered) - keep_count)
    return RetentionDecision(
        to_keep=tuple(ordered[remove_count:]),
        to_remove=tuple(ordered[:remove_count])
    )


def prune_backend(storage, prefix: str, keep_count: int) -> PruneResult:
    """
    Enforce the keep-count on one storage backend.

    Each surplus backup is deleted independently; a failed delete is logged
    and the remaining deletes still run.

    Args:
        storage: StorageBackend to prune
        prefix: Series prefix
        keep_count: Number of newest backups to keep

    Returns:
        PruneResult for the backend

    Raises:
        StorageError: If the backend cannot be listed
        MalformedNameError: If a listed name of the series cannot be decoded
    """
    names = storage.list_backups(prefix)
    decision = compute_retention(names, prefix, keep_count)

    if not decision.to_remove:
        logger.info(f"[{storage.name}] {len(decision.to_keep)} backups within limit of {keep_count}")
        return PruneResult(backend=storage.name, attempted=0, removed=0)

    logger.info(f"[{storage.name}] Removing {len(decision.to_remove)} old backups")

    removed = 0
    failed = []
    for name in decision.to_remove:
        try:
            storage.delete(name)
            removed += 1
            logger.info(f"[{storage.name}] File {name} removed")
        except StorageError as e:
            failed.append(name)
            logger.error(f"[{storage.name}] Error removing file {name}: {e}")

    return PruneResult(
        backend=storage.name,
        attempted=len(decision.to_remove),
        removed=removed,
        failed=tuple(failed)
    )
