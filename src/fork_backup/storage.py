from __future__ import annotations

import logging
import re
from dataclasses import dataclass
from datetime import datetime
from pathlib import Path
from typing import Dict, Iterable, List, Optional

LOG = logging.getLogger(__name__)

ARCHIVE_SUFFIX = ".zip"
TIMESTAMP_FORMAT = "%Y%m%d_%H%M%S"
ARCHIVE_PATTERN = re.compile(r"^(?P<repo>.+)_(?P<stamp>\d{8}_\d{6})\.zip$")


@dataclass(frozen=True)
class BackupArchive:
    repository: str
    created_at: datetime
    path: Path


def archive_filename(repository: str, timestamp: datetime) -> str:
    return f"{repository}_{timestamp.strftime(TIMESTAMP_FORMAT)}{ARCHIVE_SUFFIX}"


def parse_archive_name(path: Path) -> Optional[BackupArchive]:
    """Map ``<repo>_<YYYYMMDD>_<HHMMSS>.zip`` back to its repository.

    The repository part is the longest prefix before the final timestamp, so a
    name that itself looks like ``x_20240101_000000`` still round-trips.
    """
    match = ARCHIVE_PATTERN.match(path.name)
    if not match:
        return None
    try:
        created_at = datetime.strptime(match.group("stamp"), TIMESTAMP_FORMAT)
    except ValueError:
        return None
    return BackupArchive(repository=match.group("repo"), created_at=created_at, path=path)


class BackupStore:
    """Flat directory of per-repository zip archives.

    The directory is listed once by ``scan`` and kept in an in-memory index
    that ``add`` and ``delete`` update alongside the filesystem.
    """

    def __init__(self, directory: Path) -> None:
        self.directory = directory
        self.directory.mkdir(parents=True, exist_ok=True)
        self._index: Dict[str, List[BackupArchive]] = {}
        self._unrecognized: List[Path] = []
        self.scan()

    def scan(self) -> None:
        self._index = {}
        self._unrecognized = []
        for path in sorted(self.directory.glob(f"*{ARCHIVE_SUFFIX}")):
            if not path.is_file():
                continue
            archive = parse_archive_name(path)
            if archive is None:
                LOG.debug("Skipping unrecognized archive name %s", path.name)
                self._unrecognized.append(path)
                continue
            self._index.setdefault(archive.repository, []).append(archive)

    def path_for(self, repository: str, timestamp: datetime) -> Path:
        return self.directory / archive_filename(repository, timestamp)

    def archives_for(self, repository: str) -> List[BackupArchive]:
        """Archives of one repository, oldest first."""
        return sorted(self._index.get(repository, []), key=_age_key)

    def all_archives(self) -> List[BackupArchive]:
        archives: List[BackupArchive] = []
        for entries in self._index.values():
            archives.extend(entries)
        return sorted(archives, key=lambda a: (a.repository, _age_key(a)))

    def has_backup(self, repository: str) -> bool:
        return bool(self._index.get(repository))

    def unrecognized(self) -> List[Path]:
        return list(self._unrecognized)

    def add(self, path: Path) -> BackupArchive:
        archive = parse_archive_name(path)
        if archive is None:
            raise ValueError(f"Not a backup archive name: {path.name}")
        entries = self._index.setdefault(archive.repository, [])
        if archive not in entries:
            entries.append(archive)
        return archive

    def delete(self, archive: BackupArchive) -> None:
        archive.path.unlink(missing_ok=True)
        entries = self._index.get(archive.repository, [])
        if archive in entries:
            entries.remove(archive)
        LOG.debug("Removed backup %s", archive.path)

    def disk_usage(self) -> int:
        return _total_size(a.path for a in self.all_archives())


def _age_key(archive: BackupArchive):
    try:
        mtime = archive.path.stat().st_mtime
    except OSError:
        mtime = 0.0
    return (mtime, archive.created_at, archive.path.name)


def _total_size(paths: Iterable[Path]) -> int:
    total = 0
    for path in paths:
        try:
            total += path.stat().st_size
        except OSError:
            continue
    return total
