from __future__ import annotations

import logging
import sys
import tarfile
from datetime import datetime
from pathlib import Path
from typing import List, Optional

LOG_FORMAT = "%(asctime)s [%(levelname)s] %(name)s: %(message)s"
DATE_FORMAT = "%Y-%m-%d %H:%M:%S"
ROTATED_STAMP_FORMAT = "%Y%m%d_%H%M%S"
ROTATED_SUFFIX = ".tar.gz"

_QUIET_LOGGERS = ("urllib3", "requests")


def configure_logging(verbose: bool = False, log_path: Optional[Path] = None) -> None:
    """Send timestamped lines to stderr and, when configured, to ``log_path``.

    ``verbose`` lowers the threshold to DEBUG, which carries the request and
    response diagnostics.
    """
    formatter = logging.Formatter(LOG_FORMAT, DATE_FORMAT)
    handlers: List[logging.Handler] = [logging.StreamHandler(sys.stderr)]
    if log_path is not None:
        # Open the file before touching the root logger so a failure leaves it as it was.
        log_path.parent.mkdir(parents=True, exist_ok=True)
        handlers.append(logging.FileHandler(log_path, mode="a", encoding="utf-8"))

    root = logging.getLogger()
    for handler in list(root.handlers):
        root.removeHandler(handler)
        handler.close()

    for handler in handlers:
        handler.setFormatter(formatter)
        root.addHandler(handler)
    root.setLevel(logging.DEBUG if verbose else logging.INFO)

    for name in _QUIET_LOGGERS:
        logging.getLogger(name).setLevel(logging.WARNING)


def get_logger(name: str) -> logging.Logger:
    return logging.getLogger(name)


def rotated_logs(log_path: Path) -> List[Path]:
    """Compressed snapshots of ``log_path``, oldest first."""
    prefix = f"{log_path.name}_"
    snapshots = [
        path
        for path in log_path.parent.glob(f"{log_path.name}_*{ROTATED_SUFFIX}")
        if _snapshot_stamp(path, prefix) is not None
    ]
    return sorted(snapshots, key=lambda p: (_snapshot_stamp(p, prefix), p.name))


def rotate_log(
    log_path: Path,
    max_bytes: int,
    keep: int,
    now: Optional[datetime] = None,
) -> Optional[Path]:
    if not log_path.is_file():
        return None
    if log_path.stat().st_size < max_bytes:
        return None

    stamp = (now or datetime.now()).strftime(ROTATED_STAMP_FORMAT)
    snapshot = log_path.with_name(f"{log_path.name}_{stamp}{ROTATED_SUFFIX}")
    with tarfile.open(snapshot, "w:gz") as tar:
        tar.add(log_path, arcname=log_path.name)
    with log_path.open("w", encoding="utf-8"):
        pass

    if keep >= 0:
        snapshots = rotated_logs(log_path)
        for old in snapshots[: max(len(snapshots) - keep, 0)]:
            old.unlink(missing_ok=True)
    return snapshot


def _snapshot_stamp(path: Path, prefix: str) -> Optional[datetime]:
    name = path.name
    if not name.startswith(prefix) or not name.endswith(ROTATED_SUFFIX):
        return None
    try:
        return datetime.strptime(name[len(prefix) : -len(ROTATED_SUFFIX)], ROTATED_STAMP_FORMAT)
    except ValueError:
        return None
