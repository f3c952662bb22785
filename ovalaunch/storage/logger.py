"""
Logging configuration using loguru.

Every record passes through a patcher that replaces registered credentials
with a placeholder, so a VM password that ends up in a message (an echoed
request body, an agent error text) never reaches the console or a log file.
"""

import sys
import threading
from pathlib import Path
from typing import Iterable

from loguru import logger

REDACTED = "<redacted secret>"
RUN_LOG_NAME = "bring-up.log"

FILE_FORMAT = "{time:YYYY-MM-DD HH:mm:ss} | {level: <8} | {name}:{function}:{line} | {message}"

_secrets: set = set()
_secrets_lock = threading.Lock()


def register_secret(value: str) -> None:
    """Have every later log record mask ``value``."""
    if not value:
        return
    with _secrets_lock:
        _secrets.add(value)


def redact(text: str, secrets: Iterable[str] = ()) -> str:
    """Replace registered secrets (and any given ones) in ``text``."""
    with _secrets_lock:
        known = _secrets | {s for s in secrets if s}
    # Longest first, so a secret containing another is masked whole.
    for secret in sorted(known, key=len, reverse=True):
        text = text.replace(secret, REDACTED)
    return text


def _redact_record(record: dict) -> None:
    record["message"] = redact(record["message"])


def setup_logging(output_dir: Path, verbose: bool = False) -> logger:
    """
    Setup application logging.

    Args:
        output_dir: Directory for log files
        verbose: Enable verbose logging

    Returns:
        Configured logger instance
    """
    logger.remove()
    logger.configure(patcher=_redact_record)

    log_level = "DEBUG" if verbose else "INFO"
    logger.add(
        sys.stderr,
        level=log_level,
        format="<green>{time:HH:mm:ss}</green> | <level>{level: <8}</level> | <level>{message}</level>",
    )

    log_file = output_dir / "ovalaunch.log"
    logger.add(log_file, rotation="10 MB", retention="30 days", level="DEBUG", format=FILE_FORMAT)

    error_log = output_dir / "ovalaunch_errors.log"
    logger.add(error_log, rotation="10 MB", retention="90 days", level="ERROR", format=FILE_FORMAT)

    logger.debug(f"Logging initialized; log files: {log_file}, {error_log}")
    return logger


def add_run_log(run_dir: Path) -> int:
    """
    Log everything about one bring-up attempt into its run directory.

    Returns:
        Sink id, for ``logger.remove`` once the attempt is over
    """
    path = run_dir / RUN_LOG_NAME
    sink_id = logger.add(path, level="DEBUG", format=FILE_FORMAT)
    logger.debug(f"Run log: {path}")
    return sink_id
