"""Run statistics and their publication into the organization profile."""

from __future__ import annotations

import base64
import logging
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from typing import List, Optional

from .github.api import GitHubAPI, decode_payload, error_message

LOG = logging.getLogger(__name__)

COMMIT_MESSAGE = "Update fork backup statistics"
DISPLAY_FORMAT = "%Y-%m-%d %H:%M:%S"
REJECTED_WRITE_STATUSES = (409, 412, 422)


@dataclass
class RunStatistics:
    started_at: datetime
    completed_at: Optional[datetime] = None
    repositories_processed: int = 0
    repositories_updated: int = 0
    backups_created: int = 0
    backups_deleted: int = 0
    disk_before: int = 0
    disk_after: int = 0
    failures: List[str] = field(default_factory=list)

    @property
    def duration(self) -> timedelta:
        if self.completed_at is None:
            return timedelta(0)
        return self.completed_at - self.started_at

    @property
    def disk_delta(self) -> int:
        return self.disk_after - self.disk_before

    @property
    def success(self) -> bool:
        return not self.failures


def format_bytes(value: int) -> str:
    sign = "-" if value < 0 else ""
    size = float(abs(value))
    for unit in ("B", "KiB", "MiB", "GiB"):
        if size < 1024 or unit == "GiB":
            if unit == "B":
                return f"{sign}{int(size)} {unit}"
            return f"{sign}{size:.1f} {unit}"
        size /= 1024
    return f"{sign}{size:.1f} GiB"  # pragma: no cover


def format_duration(value: timedelta) -> str:
    seconds = max(int(value.total_seconds()), 0)
    minutes, seconds = divmod(seconds, 60)
    hours, minutes = divmod(minutes, 60)
    if hours:
        return f"{hours}h {minutes}m {seconds}s"
    if minutes:
        return f"{minutes}m {seconds}s"
    return f"{seconds}s"


def render_stats_block(stats: RunStatistics) -> str:
    completed = stats.completed_at or stats.started_at
    delta = stats.disk_delta
    lines = [
        "",
        "### Fork backup statistics",
        "",
        "| Metric | Value |",
        "| --- | --- |",
        f"| Last run | {completed.strftime(DISPLAY_FORMAT)} |",
        f"| Duration | {format_duration(stats.duration)} |",
        f"| Repositories processed | {stats.repositories_processed} |",
        f"| Repositories updated | {stats.repositories_updated} |",
        f"| Backups created | {stats.backups_created} |",
        f"| Backups deleted | {stats.backups_deleted} |",
        f"| Disk usage change | {'+' if delta > 0 else ''}{format_bytes(delta)} |",
        "",
    ]
    return "\n".join(lines)


def replace_between_markers(text: str, start_marker: str, end_marker: str, block: str) -> Optional[str]:
    start = text.find(start_marker)
    end = text.find(end_marker)
    if start == -1 or end == -1:
        return None
    if start >= end:
        return None
    head = text[: start + len(start_marker)]
    return head + block + text[end:]


class StatsPublisher:
    """Rewrites the statistics block inside a file of the organization profile repository."""

    def __init__(
        self,
        api: GitHubAPI,
        organization: str,
        repository: str = ".github",
        path: str = "profile/README.md",
        start_marker: str = "<!-- FORK-BACKUP-STATS:START -->",
        end_marker: str = "<!-- FORK-BACKUP-STATS:END -->",
    ) -> None:
        self._api = api
        self._organization = organization
        self._repository = repository
        self._path = path.lstrip("/")
        self._start = start_marker
        self._end = end_marker

    def publish(self, stats: RunStatistics) -> bool:
        repo_path = f"repos/{self._organization}/{self._repository}"

        response = self._api.request("GET", repo_path)
        repo_info = decode_payload(response)
        if response.status_code >= 400 or not isinstance(repo_info, dict) or "default_branch" not in repo_info:
            LOG.warning(
                "Stats repository %s/%s not available (%s); skipping stats update",
                self._organization,
                self._repository,
                error_message(repo_info, str(response.status_code)),
            )
            return False
        branch = repo_info["default_branch"]

        response = self._api.request("GET", f"{repo_path}/contents/{self._path}", params={"ref": branch})
        content_info = decode_payload(response)
        if response.status_code >= 400 or not isinstance(content_info, dict) or "content" not in content_info:
            LOG.warning(
                "Stats file %s not found in %s (%s); skipping stats update",
                self._path,
                self._repository,
                error_message(content_info, str(response.status_code)),
            )
            return False

        try:
            current = base64.b64decode(content_info["content"]).decode("utf-8")
        except (ValueError, UnicodeDecodeError) as exc:
            LOG.warning("Could not decode %s: %s; skipping stats update", self._path, exc)
            return False

        updated = replace_between_markers(current, self._start, self._end, render_stats_block(stats))
        if updated is None:
            LOG.warning("Stats markers missing or out of order in %s; skipping stats update", self._path)
            return False
        if updated == current:
            LOG.info("Stats block in %s is already current", self._path)
            return False

        body = {
            "message": COMMIT_MESSAGE,
            "content": base64.b64encode(updated.encode("utf-8")).decode("ascii"),
            "sha": content_info.get("sha"),
            "branch": branch,
        }
        response = self._api.request("PUT", f"{repo_path}/contents/{self._path}", json=body)
        if response.status_code in REJECTED_WRITE_STATUSES:
            LOG.warning(
                "Stats file %s changed while updating (%s); skipping this run",
                self._path,
                error_message(decode_payload(response), str(response.status_code)),
            )
            return False
        if response.status_code >= 400:
            LOG.error(
                "Failed to write stats file %s: %s",
                self._path,
                error_message(decode_payload(response), str(response.status_code)),
            )
            return False

        LOG.info("Published run statistics to %s/%s/%s", self._organization, self._repository, self._path)
        return True
