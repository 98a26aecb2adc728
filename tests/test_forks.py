"""Tests for fork_backup.github.forks wrappers over the API client."""

from unittest.mock import MagicMock

import pytest
import requests

from fork_backup.github.api import GitHubAPIError
from fork_backup.github.forks import (
    MergeResult,
    Repository,
    download_archive,
    list_forks,
    merge_upstream,
    update_description,
)

REPO = Repository(name="widget", default_branch="trunk")


def test_list_forks_keeps_only_forks():
    api = MagicMock()
    api.iterate.return_value = [
        {"name": "widget", "fork": True, "default_branch": "trunk"},
        {"name": "internal", "fork": False, "default_branch": "main"},
        {"name": "gadget", "fork": True, "default_branch": "main"},
        {"fork": True},
    ]
    forks = list_forks(api, "acme")
    assert forks == [Repository("widget", "trunk"), Repository("gadget", "main")]
    api.iterate.assert_called_once_with("orgs/acme/repos", {"type": "forks"})


def test_merge_upstream_reports_fast_forward(make_response):
    api = MagicMock()
    api.request.return_value = make_response(
        200, {"merge_type": "fast-forward", "message": "Successfully fetched and fast-forwarded"}
    )
    result = merge_upstream(api, "acme", REPO)
    assert result.fast_forward
    assert result.merge_type == "fast-forward"
    api.request.assert_called_once_with(
        "POST", "repos/acme/widget/merge-upstream", json={"branch": "trunk"}
    )


def test_merge_upstream_none_is_not_fast_forward(make_response):
    api = MagicMock()
    api.request.return_value = make_response(200, {"merge_type": "none"})
    assert merge_upstream(api, "acme", REPO) == MergeResult(merge_type="none", message="")
    assert not MergeResult("none").fast_forward
    assert not MergeResult("merge").fast_forward


def test_merge_upstream_conflict_is_returned(make_response):
    api = MagicMock()
    api.request.return_value = make_response(409, {"message": "There are merge conflicts"})
    result = merge_upstream(api, "acme", REPO)
    assert result.merge_type is None
    assert result.message == "HTTP 409: There are merge conflicts"


@pytest.mark.parametrize(
    "status,payload,message",
    [
        (403, {"message": "Resource not accessible by integration"}, "HTTP 403: Resource not accessible by integration"),
        (500, None, "HTTP 500: Error"),
    ],
)
def test_merge_upstream_error_status_yields_no_outcome(make_response, status, payload, message):
    api = MagicMock()
    api.request.return_value = make_response(status, payload)
    result = merge_upstream(api, "acme", REPO)
    assert result == MergeResult(merge_type=None, message=message)
    assert not result.fast_forward


def test_update_description_patches_repository(make_response):
    api = MagicMock()
    api.request.return_value = make_response(200, {"name": "widget"})
    update_description(api, "acme", REPO, "Last sync: now")
    api.request.assert_called_once_with("PATCH", "repos/acme/widget", json={"description": "Last sync: now"})


def test_update_description_raises_on_forbidden(make_response):
    api = MagicMock()
    api.request.return_value = make_response(403, {"message": "Resource not accessible"})
    with pytest.raises(GitHubAPIError, match="Resource not accessible"):
        update_description(api, "acme", REPO, "x")


def test_download_archive_streams_to_destination(make_response, tmp_path):
    api = MagicMock()
    resp = make_response(200, chunks=[b"PK\x03\x04", b"", b"data"])
    api.request.return_value = resp
    destination = tmp_path / "widget_20261018_030000.zip"

    written = download_archive(api, "acme", REPO, destination)

    assert written == 8
    assert destination.read_bytes() == b"PK\x03\x04data"
    assert not (tmp_path / "widget_20261018_030000.zip.part").exists()
    api.request.assert_called_once_with("GET", "repos/acme/widget/zipball/trunk", stream=True)
    resp.close.assert_called_once()


def test_download_archive_error_status_leaves_no_file(make_response, tmp_path):
    api = MagicMock()
    api.request.return_value = make_response(404, {"message": "Not Found"})
    destination = tmp_path / "widget_20261018_030000.zip"
    with pytest.raises(GitHubAPIError):
        download_archive(api, "acme", REPO, destination)
    assert list(tmp_path.iterdir()) == []


def test_download_archive_removes_partial_file_on_transport_error(make_response, tmp_path):
    def broken_stream():
        yield b"PK"
        raise requests.ConnectionError("connection reset")

    api = MagicMock()
    api.request.return_value = make_response(200, chunks=broken_stream())
    destination = tmp_path / "widget_20261018_030000.zip"
    with pytest.raises(requests.ConnectionError):
        download_archive(api, "acme", REPO, destination)
    assert list(tmp_path.iterdir()) == []
