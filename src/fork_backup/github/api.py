from __future__ import annotations

import json
import logging
import time
from typing import Any, Callable, Dict, Iterable, Optional

import requests

from fork_backup.config import DEFAULT_API_URL, ConfigurationError

DEFAULT_ACCEPT_HEADER = "application/vnd.github+json"
DEFAULT_RATE_LIMIT_THRESHOLD = 5
PER_PAGE = 100


class GitHubAPIError(Exception):
    """Raised by callers that find an error status or error payload."""

    def __init__(self, status: Optional[int], message: str) -> None:
        super().__init__(f"HTTP {status}: {message}" if status else message)
        self.status = status
        self.message = message


class GitHubAPI:
    """Thin REST client that pauses when the rate-limit quota is nearly spent.

    Status codes are never interpreted here; ``request`` hands the response
    back as-is and ``call`` returns the decoded payload. Callers decide what an
    error looks like for their endpoint.
    """

    def __init__(
        self,
        token: Optional[str],
        base_url: str = DEFAULT_API_URL,
        timeout: float = 60.0,
        rate_limit_threshold: int = DEFAULT_RATE_LIMIT_THRESHOLD,
        sleep: Callable[[float], None] = time.sleep,
        clock: Callable[[], float] = time.time,
    ) -> None:
        if not token:
            raise ConfigurationError("GitHub token must be provided via configuration or environment variable")
        self._session = requests.Session()
        self._session.headers.update(
            {
                "Authorization": f"Bearer {token}",
                "Accept": DEFAULT_ACCEPT_HEADER,
                "Content-Type": "application/json",
                "User-Agent": "fork-backup",
            }
        )
        self._base_url = base_url.rstrip("/")
        self._timeout = timeout
        self._threshold = rate_limit_threshold
        self._sleep = sleep
        self._clock = clock
        self._log = logging.getLogger(self.__class__.__name__)

    def url(self, path: str) -> str:
        if path.startswith("http://") or path.startswith("https://"):
            return path
        return f"{self._base_url}/{path.lstrip('/')}"

    def request(
        self,
        method: str,
        path: str,
        *,
        json: Any = None,
        params: Optional[Dict[str, Any]] = None,
        stream: bool = False,
    ) -> requests.Response:
        url = self.url(path)
        self._log.debug("%s %s", method, url)
        if json is not None:
            self._log.debug("Request body: %s", _dump(json))

        response = self._session.request(
            method,
            url,
            json=json,
            params=params,
            stream=stream,
            timeout=self._timeout,
        )
        self._log.debug("Response %s for %s %s", response.status_code, method, url)
        self._wait_for_quota(response)
        return response

    def iterate(self, path: str, params: Optional[Dict[str, Any]] = None) -> Iterable[Dict[str, Any]]:
        next_url: Optional[str] = self.url(path)
        request_params = params.copy() if params else {}
        request_params.setdefault("per_page", PER_PAGE)

        while next_url:
            response = self.request("GET", next_url, params=request_params)
            if response.status_code >= 400:
                payload = decode_payload(response)
                message = payload.get("message", response.reason) if isinstance(payload, dict) else response.reason
                self._log.error("GitHub API pagination failed: %s %s", response.status_code, message)
                raise GitHubAPIError(response.status_code, str(message))

            page = decode_payload(response)
            if not isinstance(page, list):
                raise GitHubAPIError(response.status_code, f"Expected a list from {next_url}")
            yield from page

            next_url = self._extract_next_link(response.headers.get("Link"))
            request_params = {}

    def close(self) -> None:
        self._session.close()

    def _wait_for_quota(self, response: requests.Response) -> None:
        remaining = _int_header(response, "X-RateLimit-Remaining")
        reset = _int_header(response, "X-RateLimit-Reset")
        if remaining is None:
            return
        self._log.debug("Rate limit remaining: %s, resets at %s", remaining, reset)
        if remaining > self._threshold or reset is None:
            return

        wait_for = reset - self._clock()
        if wait_for <= 0:
            return
        self._log.warning(
            "Rate limit nearly exhausted (%s calls left); sleeping %.0fs until reset",
            remaining,
            wait_for,
        )
        self._sleep(wait_for)

    @staticmethod
    def _extract_next_link(link_header: Optional[str]) -> Optional[str]:
        if not link_header:
            return None
        parts = [p.strip() for p in link_header.split(",")]
        for part in parts:
            if 'rel="next"' in part:
                start = part.find("<") + 1
                end = part.find(">")
                return part[start:end]
        return None


def decode_payload(response: requests.Response) -> Any:
    if not response.content:
        return {}
    try:
        return response.json()
    except ValueError:
        return {}


def error_message(payload: Any, default: str = "unknown error") -> str:
    if isinstance(payload, dict) and payload.get("message"):
        return str(payload["message"])
    return default


def _int_header(response: requests.Response, name: str) -> Optional[int]:
    value = response.headers.get(name)
    if value is None:
        return None
    try:
        return int(value)
    except (TypeError, ValueError):
        return None


def _dump(payload: Any) -> str:
    try:
        return json.dumps(payload)
    except (TypeError, ValueError):
        return repr(payload)
