"""Loguru sinks for the duty roster API and its command-line scripts."""

import os
import sys
from pathlib import Path

from loguru import logger

LOG_DIR = Path(__file__).resolve().parent / "data" / "logs"

CONSOLE_FORMAT = (
    "<green>{time:HH:mm:ss}</green> | <level>{level: <7}</level> | "
    "<cyan>{name}</cyan> - <level>{message}</level>"
)
FILE_FORMAT = "{time:YYYY-MM-DD HH:mm:ss} | {level: <8} | {name}:{function}:{line} - {message}"


def setup_logger(
    level: str | None = None,
    *,
    script: str | None = None,
    log_file: str | Path | None = None,
    rotation: str = "1 week",
    retention: int = 8,
) -> Path:
    """Send roster logs to stderr and to a weekly-rotated file under ``app/data/logs``.

    The API writes ``roster.log``. A script passes its own name as ``script``:
    its console drops to WARNING so the ``[workflow]`` lines stay readable,
    while its file still records INFO. ``ROSTER_LOG_LEVEL`` overrides the
    console level in both cases.

    Returns the path of the file sink.
    """
    console_level = (level or os.environ.get("ROSTER_LOG_LEVEL") or ("WARNING" if script else "INFO")).upper()
    file_level = "DEBUG" if console_level == "DEBUG" else "INFO"
    log_path = Path(log_file) if log_file else LOG_DIR / f"{script or 'roster'}.log"
    log_path.parent.mkdir(parents=True, exist_ok=True)

    logger.remove()
    logger.add(sys.stderr, format=CONSOLE_FORMAT, level=console_level, colorize=True)
    logger.add(
        log_path,
        format=FILE_FORMAT,
        level=file_level,
        rotation=rotation,
        retention=retention,
        encoding="utf-8",
        backtrace=True,
        diagnose=False,
    )
    logger.info(f"Roster logging to {log_path} (console={console_level}, file={file_level})")
    return log_path
