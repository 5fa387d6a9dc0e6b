"""Entry point for Rsync Watch.

Usage:
    rsync-watch                       Use ./config.json, the user config
                                      file, or the FROM/TO variables
    rsync-watch --config FILE         Use an explicit config file
    python -m rsync_watch --log-file rsync-watch.log
"""

import argparse
import asyncio
import logging
import logging.handlers
import sys
from pathlib import Path

from rsync_watch import __app_name__, __version__
from rsync_watch.config import ConfigError, load_projects
from rsync_watch.notify import DesktopNotifier
from rsync_watch.orchestrator import Orchestrator
from rsync_watch.rsync import DEFAULT_EXECUTABLE
from rsync_watch.watcher import DEBOUNCE_SECONDS

logger = logging.getLogger(__name__)

LOG_FORMAT = "%(asctime)s [%(levelname)s] %(name)s: %(message)s"
MAX_LOG_SIZE_MB = 10
LOG_BACKUP_COUNT = 3


def _parse_args(argv: list[str] | None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(
        prog="rsync-watch",
        description="Watch folders and mirror every change with rsync.",
    )
    parser.add_argument(
        "-c", "--config", type=Path, default=None,
        help="JSON config file (default: ./config.json, then the user config dir)",
    )
    parser.add_argument(
        "--rsync", default=DEFAULT_EXECUTABLE, metavar="PATH",
        help="rsync binary to run (default: %(default)s)",
    )
    parser.add_argument(
        "--debounce", type=float, default=DEBOUNCE_SECONDS, metavar="SECONDS",
        help="quiet period before a re-sync (default: %(default)s)",
    )
    parser.add_argument(
        "--log-level", default="INFO",
        choices=["DEBUG", "INFO", "WARNING", "ERROR"],
    )
    parser.add_argument("--log-file", type=Path, default=None, help="also log to a rotating file")
    parser.add_argument("--version", action="version", version=f"%(prog)s {__version__}")
    return parser.parse_args(argv)


def setup_logging(level_name: str = "INFO", log_file: Path | None = None) -> None:
    """Configure the stdout handler and, optionally, a rotating file log."""
    level = getattr(logging, level_name.upper(), logging.INFO)
    root_logger = logging.getLogger()
    root_logger.setLevel(level)

    fmt = logging.Formatter(LOG_FORMAT)

    sh = logging.StreamHandler(sys.stdout)
    sh.setLevel(level)
    sh.setFormatter(fmt)
    root_logger.addHandler(sh)

    if log_file is not None:
        log_file.parent.mkdir(parents=True, exist_ok=True)
        fh = logging.handlers.RotatingFileHandler(
            str(log_file),
            maxBytes=MAX_LOG_SIZE_MB * 1024 * 1024,
            backupCount=LOG_BACKUP_COUNT,
            encoding="utf-8",
        )
        fh.setLevel(level)
        fh.setFormatter(fmt)
        root_logger.addHandler(fh)


def main(argv: list[str] | None = None) -> int:
    """Load the projects and run until shutdown.  Returns the exit code."""
    args = _parse_args(argv)
    setup_logging(args.log_level, args.log_file)

    try:
        projects = load_projects(args.config)
    except ConfigError as exc:
        logger.error("%s", exc)
        return 1

    logger.info("%s %s starting (%d projects).", __app_name__, __version__, len(projects))
    orchestrator = Orchestrator(
        projects,
        notifier=DesktopNotifier(),
        executable=args.rsync,
        debounce_seconds=args.debounce,
    )
    return asyncio.run(orchestrator.run())


if __name__ == "__main__":
    sys.exit(main())
