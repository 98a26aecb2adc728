from __future__ import annotations

import argparse
import os
import signal
import sys
import threading
from datetime import datetime
from pathlib import Path
from typing import Optional, Sequence
from zoneinfo import ZoneInfo

import requests
from croniter import croniter

from .config import ConfigurationError, ForkBackupConfig, SchedulerConfig, load_config
from .github import GitHubAPI, GitHubAPIError
from .logger import configure_logging, get_logger, rotate_log
from .orchestrator import ForkBackupOrchestrator
from .stats import format_bytes, format_duration

DEFAULT_CONFIG_PATH = "/opt/fork-backup/config/fork-backup.yaml"

LOG = get_logger(__name__)


def parse_args(argv: Optional[Sequence[str]] = None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(description="Sync, back up and describe every fork of a GitHub organization.")
    parser.add_argument(
        "--config",
        default=os.getenv("FORK_BACKUP_CONFIG", DEFAULT_CONFIG_PATH),
        help="Path to configuration YAML file.",
    )
    parser.add_argument(
        "--verbose",
        action="store_true",
        help="Log request and response diagnostics regardless of the configuration.",
    )
    parser.add_argument(
        "--once",
        action="store_true",
        help="Run a single pass even when a scheduler is configured.",
    )
    return parser.parse_args(argv)


def load_configuration(path: Path, *, exit_on_error: bool = True) -> ForkBackupConfig:
    try:
        return load_config(path)
    except ConfigurationError as exc:
        if exit_on_error:
            raise SystemExit(f"Configuration error: {exc}") from exc
        raise


def setup_logging(config: ForkBackupConfig, force_verbose: bool = False, *, exit_on_error: bool = True) -> None:
    log_cfg = config.logging
    snapshot = None
    try:
        if log_cfg.path is not None:
            snapshot = rotate_log(log_cfg.path, log_cfg.rotate_size, log_cfg.keep_rotated)
        configure_logging(log_cfg.verbose or force_verbose, log_cfg.path)
    except OSError as exc:
        if exit_on_error:
            raise SystemExit(f"Logging setup failed: {exc}") from exc
        LOG.error("Failed to set up logging: %s; keeping previous log handlers", exc)
        return
    if snapshot is not None:
        LOG.info("Rotated log file into %s", snapshot)


def prepare_run(config_path: Path, force_verbose: bool = False, *, exit_on_error: bool = True) -> ForkBackupConfig:
    """Load the configuration and rotate and attach the log files it names.

    With ``exit_on_error`` unset, configuration errors are raised as
    ``ConfigurationError`` and logging failures only logged, so a scheduler can
    keep its previous settings.
    """
    config = load_configuration(config_path, exit_on_error=exit_on_error)
    setup_logging(config, force_verbose=force_verbose, exit_on_error=exit_on_error)
    return config


def run_once(config: ForkBackupConfig) -> int:
    try:
        api = GitHubAPI(
            config.github.auth.resolved_token(),
            base_url=config.github.api_url,
            timeout=config.github.timeout,
            rate_limit_threshold=config.github.rate_limit_threshold,
        )
    except ConfigurationError as exc:
        LOG.error("Authentication error: %s", exc)
        return 2

    try:
        orchestrator = ForkBackupOrchestrator(config=config, api=api)
        stats = orchestrator.run()
    except (GitHubAPIError, requests.RequestException, OSError) as exc:
        LOG.error("Backup run aborted: %s", exc)
        return 1
    finally:
        api.close()

    LOG.info(
        "Backup process completed in %s: %s processed, %s updated, %s created, %s deleted, disk change %s",
        format_duration(stats.duration),
        stats.repositories_processed,
        stats.repositories_updated,
        stats.backups_created,
        stats.backups_deleted,
        format_bytes(stats.disk_delta),
    )
    if not stats.success:
        LOG.warning("Backup completed with %s failed repositories", len(stats.failures))
        return 1
    return 0


def main(argv: Optional[Sequence[str]] = None) -> int:
    args = parse_args(argv)
    config_path = Path(args.config).expanduser()
    config = prepare_run(config_path, force_verbose=args.verbose)

    if config.scheduler and not args.once:
        return run_with_scheduler(config_path=config_path, initial_config=config, force_verbose=args.verbose)
    return run_once(config)


def run_with_scheduler(
    config_path: Path,
    initial_config: ForkBackupConfig,
    force_verbose: bool = False,
) -> int:
    stop_event = threading.Event()

    def _handle_signal(signum: int, _frame: Optional[object]) -> None:
        LOG.info("Received signal %s; stopping scheduler", signum)
        stop_event.set()

    signal.signal(signal.SIGTERM, _handle_signal)
    signal.signal(signal.SIGINT, _handle_signal)

    config = initial_config
    scheduler = _require_scheduler(config.scheduler)
    timezone = ZoneInfo(scheduler.timezone)
    next_run = datetime.now(timezone) if scheduler.run_on_startup else _next_run(scheduler.cron, datetime.now(timezone))

    if scheduler.run_on_startup:
        LOG.info("Executing initial run immediately")
    else:
        LOG.info("Next run scheduled for %s", next_run.isoformat())

    while not stop_event.is_set():
        now = datetime.now(timezone)
        if now >= next_run:
            try:
                config = prepare_run(config_path, force_verbose, exit_on_error=False)
            except ConfigurationError as exc:
                LOG.error("Failed to reload configuration: %s; continuing with previous settings", exc)
            else:
                if not config.scheduler:
                    LOG.info("Scheduler removed from configuration; exiting loop")
                    break
                scheduler = _require_scheduler(config.scheduler)
                timezone = ZoneInfo(scheduler.timezone)

            exit_code = run_once(config)
            if exit_code != 0:
                LOG.warning("Scheduled run completed with errors (exit code %s)", exit_code)

            next_run = _next_run(scheduler.cron, datetime.now(timezone))
            LOG.info("Next run scheduled for %s", next_run.isoformat())
            continue

        sleep_for = max((next_run - now).total_seconds(), 0)
        stop_event.wait(min(sleep_for, 60))

    LOG.info("Scheduler stopped")
    return 0


def _require_scheduler(scheduler: Optional[SchedulerConfig]) -> SchedulerConfig:
    if not scheduler:
        raise ValueError("Scheduler configuration is required")
    return scheduler


def _next_run(cron_expression: str, reference: datetime) -> datetime:
    return croniter(cron_expression, reference).get_next(datetime)


if __name__ == "__main__":
    sys.exit(main())
