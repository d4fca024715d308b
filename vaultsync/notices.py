"""User-visible transient notices."""

import logging
from typing import Protocol

notice_logger = logging.getLogger("vaultsync.notices")


class Notifier(Protocol):
    def __call__(self, message: str, level: int = logging.INFO) -> None: ...


def log_notifier(message: str, level: int = logging.INFO) -> None:
    """Default notifier: record the notice in the log."""
    notice_logger.log(level, message)


def console_notifier(message: str, level: int = logging.INFO) -> None:
    """Print the notice for an interactive user and record it in the log."""
    prefix = "!" if level >= logging.WARNING else "*"
    print(f"{prefix} {message}")
    notice_logger.log(level, message)
