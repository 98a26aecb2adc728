"""Tests for fork_backup.github.api: headers, rate-limit sleeping and pagination."""

from unittest.mock import MagicMock

import pytest

from fork_backup.config import ConfigurationError
from fork_backup.github.api import GitHubAPI, GitHubAPIError, decode_payload

NOW = 1_700_000_000


def _api(responses, sleeps=None):
    sleeps = sleeps if sleeps is not None else []
    api = GitHubAPI("t0ken", sleep=sleeps.append, clock=lambda: float(NOW))
    api._session = MagicMock()
    if isinstance(responses, list):
        api._session.request.side_effect = responses
    else:
        api._session.request.return_value = responses
    return api


def test_missing_token_raises():
    with pytest.raises(ConfigurationError):
        GitHubAPI(None)


def test_session_carries_auth_and_json_headers():
    api = GitHubAPI("t0ken")
    headers = api._session.headers
    assert headers["Authorization"] == "Bearer t0ken"
    assert headers["Content-Type"] == "application/json"
    assert headers["Accept"] == "application/vnd.github+json"


def test_request_builds_url_and_passes_body(make_response):
    api = _api(make_response(200, {"ok": True}))
    api.request("POST", "/repos/acme/x/merge-upstream", json={"branch": "main"})
    args, kwargs = api._session.request.call_args
    assert args == ("POST", "https://api.github.com/repos/acme/x/merge-upstream")
    assert kwargs["json"] == {"branch": "main"}


def test_request_does_not_raise_on_error_status(make_response):
    resp = make_response(404, {"message": "Not Found"})
    api = _api(resp)
    assert api.request("GET", "repos/acme/missing") is resp


def test_decode_payload_reads_json(make_response):
    assert decode_payload(make_response(200, {"merge_type": "none"})) == {"merge_type": "none"}


def test_decode_payload_returns_empty_dict_for_empty_body(make_response):
    assert decode_payload(make_response(204)) == {}


@pytest.mark.parametrize("remaining", ["0", "3", "5"])
def test_sleeps_until_reset_when_quota_low(make_response, remaining):
    sleeps = []
    headers = {"X-RateLimit-Remaining": remaining, "X-RateLimit-Reset": str(NOW + 30)}
    api = _api(make_response(200, {}, headers=headers), sleeps)
    api.request("GET", "rate_limit")
    assert sleeps == [30.0]


def test_no_sleep_when_quota_is_healthy(make_response):
    sleeps = []
    headers = {"X-RateLimit-Remaining": "6", "X-RateLimit-Reset": str(NOW + 30)}
    _api(make_response(200, {}, headers=headers), sleeps).request("GET", "x")
    assert sleeps == []


def test_no_sleep_when_reset_already_passed(make_response):
    sleeps = []
    headers = {"X-RateLimit-Remaining": "0", "X-RateLimit-Reset": str(NOW - 5)}
    _api(make_response(200, {}, headers=headers), sleeps).request("GET", "x")
    assert sleeps == []


def test_no_sleep_without_rate_limit_headers(make_response):
    sleeps = []
    _api(make_response(200, {}, headers={"X-RateLimit-Remaining": "garbage"}), sleeps).request("GET", "x")
    _api(make_response(200, {}), sleeps).request("GET", "x")
    assert sleeps == []


def test_iterate_follows_link_header(make_response):
    first = make_response(
        200,
        [{"id": 1}, {"id": 2}],
        headers={"Link": '<https://api.github.com/orgs/acme/repos?page=2>; rel="next", <x>; rel="last"'},
    )
    second = make_response(200, [{"id": 3}])
    api = _api([first, second])

    items = list(api.iterate("orgs/acme/repos", {"type": "forks"}))

    assert [item["id"] for item in items] == [1, 2, 3]
    calls = api._session.request.call_args_list
    assert calls[0].args[1] == "https://api.github.com/orgs/acme/repos"
    assert calls[0].kwargs["params"] == {"type": "forks", "per_page": 100}
    assert calls[1].args[1] == "https://api.github.com/orgs/acme/repos?page=2"
    assert calls[1].kwargs["params"] == {}


def test_iterate_raises_on_error_status(make_response):
    api = _api(make_response(403, {"message": "Bad credentials"}))
    with pytest.raises(GitHubAPIError) as excinfo:
        list(api.iterate("orgs/acme/repos"))
    assert excinfo.value.status == 403
    assert "Bad credentials" in str(excinfo.value)
