from __future__ import annotations

import logging
import os
from dataclasses import dataclass
from pathlib import Path
from typing import List, Optional

import requests

from .api import GitHubAPI, GitHubAPIError, decode_payload, error_message

LOG = logging.getLogger(__name__)

FAST_FORWARD = "fast-forward"
CHUNK_SIZE = 1024 * 1024


@dataclass(frozen=True)
class Repository:
    name: str
    default_branch: str


@dataclass(frozen=True)
class MergeResult:
    merge_type: Optional[str]
    message: str = ""

    @property
    def fast_forward(self) -> bool:
        return self.merge_type == FAST_FORWARD


def list_forks(api: GitHubAPI, organization: str) -> List[Repository]:
    forks: List[Repository] = []
    for item in api.iterate(f"orgs/{organization}/repos", {"type": "forks"}):
        if not item.get("fork"):
            continue
        name = item.get("name")
        if not name:
            continue
        forks.append(Repository(name=name, default_branch=item.get("default_branch") or "main"))
    return forks


def merge_upstream(api: GitHubAPI, organization: str, repo: Repository) -> MergeResult:
    response = api.request(
        "POST",
        f"repos/{organization}/{repo.name}/merge-upstream",
        json={"branch": repo.default_branch},
    )
    payload = decode_payload(response)
    LOG.debug("Fork update response for %s: %s", repo.name, payload)

    if response.status_code >= 400:
        # Error payloads carry no merge outcome; the caller still decides on a backup.
        return MergeResult(
            merge_type=None,
            message=f"HTTP {response.status_code}: {error_message(payload, response.reason or 'no message')}",
        )

    merge_type = payload.get("merge_type") if isinstance(payload, dict) else None
    message = payload.get("message", "") if isinstance(payload, dict) else ""
    return MergeResult(merge_type=merge_type, message=message)


def update_description(api: GitHubAPI, organization: str, repo: Repository, description: str) -> None:
    response = api.request(
        "PATCH",
        f"repos/{organization}/{repo.name}",
        json={"description": description},
    )
    payload = decode_payload(response)
    LOG.debug("Update repository description response for %s: %s", repo.name, payload)
    if response.status_code >= 400:
        raise GitHubAPIError(
            response.status_code,
            error_message(payload, f"description update failed for {repo.name}"),
        )


def download_archive(api: GitHubAPI, organization: str, repo: Repository, destination: Path) -> int:
    partial = destination.with_name(destination.name + ".part")
    response = api.request(
        "GET",
        f"repos/{organization}/{repo.name}/zipball/{repo.default_branch}",
        stream=True,
    )
    try:
        if response.status_code >= 400:
            raise GitHubAPIError(
                response.status_code,
                error_message(decode_payload(response), f"archive download failed for {repo.name}"),
            )

        written = 0
        try:
            with partial.open("wb") as fh:
                for chunk in response.iter_content(chunk_size=CHUNK_SIZE):
                    if chunk:
                        fh.write(chunk)
                        written += len(chunk)
            os.replace(partial, destination)
        except (OSError, requests.RequestException):
            partial.unlink(missing_ok=True)
            raise
    finally:
        response.close()

    LOG.debug("Wrote %s bytes to %s", written, destination)
    return written
