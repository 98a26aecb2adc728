from __future__ import annotations

import logging
from typing import Iterable, List

from .storage import BackupArchive, BackupStore

LOG = logging.getLogger(__name__)


def enforce_retention(store: BackupStore, repository: str, max_backups: int) -> List[BackupArchive]:
    if max_backups <= 0:
        return []

    archives = store.archives_for(repository)
    surplus = len(archives) - max_backups
    if surplus <= 0:
        return []

    LOG.debug("Cleaning up old backups for %s...", repository)
    removed: List[BackupArchive] = []
    for archive in archives[:surplus]:
        store.delete(archive)
        LOG.info("Removed old backup %s", archive.path)
        removed.append(archive)
    return removed


def remove_orphans(store: BackupStore, fork_names: Iterable[str]) -> List[BackupArchive]:
    """Delete archives whose repository is no longer a fork in the organization."""
    current = set(fork_names)
    removed: List[BackupArchive] = []

    for path in store.unrecognized():
        LOG.debug("Leaving %s in place: name does not match the archive pattern", path.name)

    for archive in store.all_archives():
        if archive.repository in current:
            continue
        store.delete(archive)
        LOG.info("Removed orphan backup %s (repository %s is no longer a fork)", archive.path, archive.repository)
        removed.append(archive)
    return removed
