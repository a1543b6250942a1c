from __future__ import annotations

import logging
import logging.handlers
import sys
from pathlib import Path

COMBINED_LOG_NAME = "combined.log"
ERROR_LOG_NAME = "error.log"
MAX_LOG_BYTES = 5 * 1024 * 1024
LOG_BACKUP_COUNT = 5
LOG_FORMAT = "%(asctime)s [%(levelname)s] %(name)s: %(message)s"


def configure_logging(
    log_dir: Path | None,
    log_level: int = logging.INFO,
    console_level: int | None = logging.WARNING,
) -> None:
    """Set up the root logger.

    Writes everything at ``log_level`` and above to a rotating
    ``combined.log``, errors to ``error.log``, and mirrors ``console_level``
    and above to stderr. Pass ``console_level=None`` to keep the console quiet.
    """
    root_logger = logging.getLogger()
    root_logger.setLevel(log_level)
    root_logger.handlers.clear()
    formatter = logging.Formatter(LOG_FORMAT)

    if log_dir is not None:
        log_dir = Path(log_dir)
        log_dir.mkdir(parents=True, exist_ok=True)

        combined = logging.handlers.RotatingFileHandler(
            log_dir / COMBINED_LOG_NAME,
            maxBytes=MAX_LOG_BYTES,
            backupCount=LOG_BACKUP_COUNT,
            encoding="utf-8",
        )
        combined.setLevel(log_level)
        combined.setFormatter(formatter)
        root_logger.addHandler(combined)

        errors = logging.FileHandler(log_dir / ERROR_LOG_NAME, encoding="utf-8")
        errors.setLevel(logging.ERROR)
        errors.setFormatter(formatter)
        root_logger.addHandler(errors)

    if console_level is not None:
        console = logging.StreamHandler(sys.stderr)
        console.setLevel(console_level)
        console.setFormatter(formatter)
        root_logger.addHandler(console)


def recent_logs(log_dir: Path, lines: int = 1000) -> list[str]:
    log_file = Path(log_dir) / COMBINED_LOG_NAME
    try:
        text = log_file.read_text(encoding="utf-8", errors="replace")
    except OSError:
        return []
    entries = [line for line in text.splitlines() if line.strip()]
    return entries[-max(0, int(lines)):] if lines else []
