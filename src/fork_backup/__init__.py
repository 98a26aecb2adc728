"""Fork sync and backup package."""

from __future__ import annotations

from .config import load_config, ForkBackupConfig  # noqa: F401
from .orchestrator import ForkBackupOrchestrator  # noqa: F401

__version__ = "1.0.0"
