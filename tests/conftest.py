import json
import logging
from typing import Any, Dict, Iterable, Optional
from unittest.mock import MagicMock

import pytest

from fork_backup.config import ForkBackupConfig


def _make_response(
    status: int = 200,
    payload: Any = None,
    headers: Optional[Dict[str, str]] = None,
    chunks: Optional[Iterable[bytes]] = None,
):
    resp = MagicMock()
    resp.status_code = status
    resp.headers = headers or {}
    resp.reason = "OK" if status < 400 else "Error"
    if payload is None:
        resp.content = b""
        resp.json.side_effect = ValueError("empty body")
    else:
        resp.content = json.dumps(payload).encode("utf-8")
        resp.json.return_value = payload
    resp.text = resp.content.decode("utf-8")
    resp.iter_content.return_value = chunks if chunks is not None else []
    return resp


@pytest.fixture
def make_response():
    return _make_response


@pytest.fixture
def make_config(tmp_path):
    def _factory(**sections: Dict[str, Any]) -> ForkBackupConfig:
        raw: Dict[str, Any] = {
            "github": {"organization": "acme-forks", "auth": {"token": "t0ken"}},
            "backup": {"directory": str(tmp_path / "backups")},
        }
        for key, value in sections.items():
            if isinstance(value, dict) and isinstance(raw.get(key), dict):
                raw[key] = {**raw[key], **value}
            else:
                raw[key] = value
        return ForkBackupConfig.model_validate(raw)

    return _factory


@pytest.fixture(autouse=True)
def restore_logging():
    root = logging.getLogger()
    handlers = list(root.handlers)
    level = root.level
    yield
    for handler in list(root.handlers):
        if handler not in handlers:
            root.removeHandler(handler)
            handler.close()
    for handler in handlers:
        if handler not in root.handlers:
            root.addHandler(handler)
    root.setLevel(level)
