from __future__ import annotations

import logging
from datetime import datetime
from typing import Callable, Optional

import requests

from .config import ForkBackupConfig
from .github import (
    GitHubAPI,
    GitHubAPIError,
    Repository,
    download_archive,
    list_forks,
    merge_upstream,
    update_description,
)
from .retention import enforce_retention, remove_orphans
from .stats import DISPLAY_FORMAT, RunStatistics, StatsPublisher
from .storage import BackupStore

LOG = logging.getLogger(__name__)

Clock = Callable[[], datetime]

REPOSITORY_ERRORS = (GitHubAPIError, requests.RequestException, OSError)


class ForkBackupOrchestrator:
    """Syncs, backs up and describes every fork of the configured organization."""

    def __init__(
        self,
        config: ForkBackupConfig,
        api: GitHubAPI,
        store: Optional[BackupStore] = None,
        publisher: Optional[StatsPublisher] = None,
        clock: Clock = datetime.now,
    ) -> None:
        self._config = config
        self._api = api
        self._store = store or BackupStore(config.backup.directory)
        self._clock = clock
        self._publisher = publisher
        if self._publisher is None and config.stats.enabled:
            self._publisher = StatsPublisher(
                api,
                config.github.organization,
                repository=config.stats.repository,
                path=config.stats.path,
                start_marker=config.stats.start_marker,
                end_marker=config.stats.end_marker,
            )

    @property
    def organization(self) -> str:
        return self._config.github.organization

    def run(self) -> RunStatistics:
        started_at = self._clock()
        stats = RunStatistics(started_at=started_at)
        self._store.scan()
        stats.disk_before = self._store.disk_usage()

        LOG.debug("Fetching forked repositories for organization: %s", self.organization)
        forks = list_forks(self._api, self.organization)
        if not forks:
            LOG.info("No forked repositories found in %s.", self.organization)
            return self._finish(stats)

        for repo in forks:
            try:
                self.process_repository(repo, started_at, stats)
            except REPOSITORY_ERRORS as exc:
                stats.failures.append(f"{repo.name}: {exc}")
                LOG.error("Processing %s failed: %s", repo.name, exc)
                if self._config.fail_fast:
                    raise

        if self._config.backup.remove_orphans:
            removed = remove_orphans(self._store, (repo.name for repo in forks))
            stats.backups_deleted += len(removed)

        return self._finish(stats, publish=True)

    def process_repository(self, repo: Repository, run_timestamp: datetime, stats: RunStatistics) -> None:
        backup = self._config.backup
        LOG.debug("Processing repository: %s (default branch: %s)", repo.name, repo.default_branch)
        stats.repositories_processed += 1

        LOG.info("Updating fork for %s...", repo.name)
        merge = merge_upstream(self._api, self.organization, repo)
        if merge.merge_type is None:
            LOG.warning("Upstream merge for %s did not complete: %s", repo.name, merge.message or "no merge outcome")
        if merge.fast_forward:
            stats.repositories_updated += 1

        if self._needs_backup(repo, merge.fast_forward):
            LOG.info("Creating backup for %s...", repo.name)
            destination = self._store.path_for(repo.name, run_timestamp)
            download_archive(self._api, self.organization, repo, destination)
            self._store.add(destination)
            stats.backups_created += 1
            LOG.info("Backup created: %s", destination)
        else:
            LOG.info("No new changes for %s and backup already exists locally. Skipping backup.", repo.name)

        removed = enforce_retention(self._store, repo.name, backup.max_backups)
        stats.backups_deleted += len(removed)

        description = backup.description_template.format(last_sync=self._clock().strftime(DISPLAY_FORMAT))
        LOG.info("Updating description for %s with: %s", repo.name, description)
        update_description(self._api, self.organization, repo, description)

    def _needs_backup(self, repo: Repository, fast_forward: bool) -> bool:
        if not self._config.backup.check_for_changes:
            return True
        return fast_forward or not self._store.has_backup(repo.name)

    def _finish(self, stats: RunStatistics, publish: bool = False) -> RunStatistics:
        stats.disk_after = self._store.disk_usage()
        stats.completed_at = self._clock()
        if publish and self._publisher is not None:
            try:
                self._publisher.publish(stats)
            except requests.RequestException as exc:
                LOG.warning("Stats publishing failed: %s", exc)
        return stats
