from .api import GitHubAPI, GitHubAPIError
from .forks import (
    MergeResult,
    Repository,
    download_archive,
    list_forks,
    merge_upstream,
    update_description,
)

__all__ = [
    "GitHubAPI",
    "GitHubAPIError",
    "MergeResult",
    "Repository",
    "download_archive",
    "list_forks",
    "merge_upstream",
    "update_description",
]
