"""Logging configuration setup."""

import copy
import logging
import logging.config
import os
import re
import sys
from datetime import datetime
from typing import Optional, Set

_REDACTED = "***REDACTED***"


# ── Secret redaction filter ──────────────────────────────────────────────


class SecretRedactionFilter(logging.Filter):
    """Logging filter that replaces unseal key shares with a placeholder.

    Every share is registered via :meth:`register` as soon as it enters the
    process, so a share can never reach a log sink even if it ends up in an
    exception message or traceback.
    """

    def __init__(self) -> None:
        super().__init__()
        self._secrets: Set[str] = set()
        self._pattern: Optional[re.Pattern[str]] = None

    def register(self, value: str) -> None:
        """Register a secret value for redaction."""
        if value and len(value) >= 4:  # skip trivially short values
            self._secrets.add(value)
            # Rebuild regex pattern with longest-first ordering
            escaped = sorted((re.escape(s) for s in self._secrets), key=len, reverse=True)
            self._pattern = re.compile("|".join(escaped))

    def clear(self) -> None:
        self._secrets.clear()
        self._pattern = None

    def scrub(self, text: str) -> str:
        if self._pattern is None:
            return text
        return self._pattern.sub(_REDACTED, text)

    def filter(self, record: logging.LogRecord) -> bool:
        if self._pattern is None:
            return True
        if isinstance(record.msg, str):
            record.msg = self.scrub(record.msg)
        if record.args:
            if isinstance(record.args, dict):
                record.args = {
                    k: self.scrub(v) if isinstance(v, str) else v
                    for k, v in record.args.items()
                }
            elif isinstance(record.args, tuple):
                record.args = tuple(
                    self.scrub(a) if isinstance(a, str) else a for a in record.args
                )
        # Exception text is rendered lazily by the formatter; render it here
        # so the scrubbed copy is what the formatter reuses.
        if record.exc_info and not record.exc_text:
            record.exc_text = logging.Formatter().formatException(record.exc_info)
        if record.exc_text:
            record.exc_text = self.scrub(record.exc_text)
        return True


# Module-level singleton so key acquisition and storage can register shares.
secret_redaction_filter = SecretRedactionFilter()

BASE_LOG_CFG = {
    "version": 1,
    "disable_existing_loggers": False,
    "formatters": {
        "console": {
            "format": "%(message)s",
            "datefmt": "%Y-%m-%d %H:%M:%S",
        },
        "simple_file": {
            "format": ("%(asctime)s - %(name)25s:%(lineno)-4d - " "%(levelname)-7s - %(message)s"),
            "datefmt": "%Y-%m-%d %H:%M:%S",
        },
    },
    "handlers": {
        "console_handler": {
            "class": "rich.logging.RichHandler",
            "level": "DEBUG",
            "formatter": "console",
            "show_path": False,
            "rich_tracebacks": False,
        },
    },
    "loggers": {
        "vault_unsealer": {
            "handlers": ["console_handler"],
            "propagate": False,
            "level": "INFO",
        },
        "hvac": {
            "handlers": ["console_handler"],
            "propagate": False,
            "level": "WARNING",
        },
        "urllib3": {
            "handlers": ["console_handler"],
            "propagate": False,
            "level": "WARNING",
        },
    },
    "root": {
        "handlers": ["console_handler"],
        "level": "WARNING",
    },
}


def setup_logging(log_lvl_str: str, log_dir: Optional[str] = None) -> Optional[str]:
    """
    Set up the logging system.

    Console output always goes through rich. When *log_dir* is given a
    timestamped log file is written there as well.

    Args:
        log_lvl_str: The desired log level string (e.g., 'debug', 'info').
        log_dir: Optional directory for a file log.

    Returns:
        The log file path, or ``None`` when logging to the console only.
    """
    log_lvl_valid = log_lvl_str.upper()
    valid_levels = ["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"]
    if log_lvl_valid not in valid_levels:
        print(f"Warning: invalid log level '{log_lvl_str}'. Using 'INFO'.", file=sys.stderr)
        log_lvl_valid = "INFO"

    log_cfg: dict = copy.deepcopy(BASE_LOG_CFG)
    log_fpath: Optional[str] = None
    if log_dir:
        ts = datetime.now().strftime("%Y%m%d_%H%M%S")
        os.makedirs(log_dir, mode=0o700, exist_ok=True)
        log_fpath = os.path.join(log_dir, f"unsealer_{ts}.log")
        log_cfg["handlers"]["file_handler"] = {
            "class": "logging.FileHandler",
            "level": "DEBUG",
            "formatter": "simple_file",
            "filename": log_fpath,
            "encoding": "utf-8",
        }
        for logger_cfg in log_cfg["loggers"].values():
            logger_cfg["handlers"].append("file_handler")
        log_cfg["root"]["handlers"].append("file_handler")

    log_cfg["loggers"]["vault_unsealer"]["level"] = log_lvl_valid
    log_cfg["root"]["level"] = log_lvl_valid if log_lvl_valid == "DEBUG" else "WARNING"

    try:
        logging.config.dictConfig(log_cfg)
        # Attach secret redaction filter to every configured handler
        handlers = set(logging.root.handlers)
        for name in log_cfg["loggers"]:
            handlers.update(logging.getLogger(name).handlers)
        for handler in handlers:
            handler.addFilter(secret_redaction_filter)
    except Exception as e_log_cfg:
        print(
            f"Error applying logging configuration: {e_log_cfg}",
            file=sys.stderr,
        )

    return log_fpath
