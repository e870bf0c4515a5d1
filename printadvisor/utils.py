"""
Logging and artifact helpers shared across printadvisor.
"""

import hashlib
import logging
import os
from datetime import datetime
from typing import List, Optional, Union

PACKAGE_LOGGER = "printadvisor"
LOG_FORMAT = "%(asctime)s - %(name)s - %(levelname)s - %(message)s"
LOG_DIR = "logs"

_CHUNK_SIZE = 1 << 20


def _default_log_path() -> str:
    os.makedirs(LOG_DIR, exist_ok=True)
    stamp = datetime.now().strftime("%Y%m%d_%H%M%S")
    return os.path.join(LOG_DIR, f"printadvisor_{stamp}.log")


def _build_handlers(console: bool, log_file: Optional[str]) -> List[logging.Handler]:
    formatter = logging.Formatter(LOG_FORMAT)
    handlers: List[logging.Handler] = []
    if console:
        handlers.append(logging.StreamHandler())
    if log_file is not None:
        handlers.append(logging.FileHandler(log_file))
    for handler in handlers:
        handler.setFormatter(formatter)
    return handlers


def setup_logging(
    log_level: str = "INFO",
    log_to_file: bool = False,
    log_file_path: Optional[str] = None,
    enable_console: bool = True,
    enabled: bool = False,
) -> logging.Logger:
    """
    Opt in to printadvisor log output.

    Only the ``printadvisor`` logger is touched; the root logger and other
    libraries keep their configuration. Calling this again replaces the
    handlers installed by the previous call.

    Args:
        log_level: Level name such as "DEBUG" or "INFO".
        log_to_file: Also write to ``log_file_path``, or to a timestamped
            file under ``logs/`` when no path is given.
        log_file_path: Target file for ``log_to_file``.
        enable_console: Write to stderr.
        enabled: When False the package logger is silenced and nothing else
            changes.

    Returns:
        The package logger.
    """
    package_logger = logging.getLogger(PACKAGE_LOGGER)
    package_logger.disabled = not enabled
    if not enabled:
        return package_logger

    log_file = None
    if log_to_file:
        log_file = log_file_path or _default_log_path()

    package_logger.setLevel(getattr(logging, log_level.upper()))
    package_logger.handlers.clear()
    for handler in _build_handlers(enable_console, log_file):
        package_logger.addHandler(handler)
    # records stop at the package logger
    package_logger.propagate = False

    package_logger.info("printadvisor logging at %s", log_level.upper())
    if log_file is not None:
        package_logger.info("Writing log to %s", log_file)
    return package_logger


def get_logger(name: Optional[str] = None) -> logging.Logger:
    """
    Logger for a printadvisor module.

    Pass ``__name__`` so records land under the package logger and follow
    whatever ``setup_logging`` configured.

    Example:
        >>> from printadvisor.utils import get_logger
        >>> logger = get_logger(__name__)
        >>> logger.debug("Queued request %s", correlation_id)
    """
    return logging.getLogger(name or __name__)


def disable_logging(logger_name: Optional[str] = None) -> None:
    """
    Silence the package logger, or one module's logger.

    Example:
        >>> disable_logging("printadvisor.inference.dispatcher")
    """
    logging.getLogger(logger_name or PACKAGE_LOGGER).disabled = True


def enable_logging(logger_name: Optional[str] = None, level: str = "INFO") -> None:
    """
    Re-enable the package logger, or one module's logger, at ``level``.

    Example:
        >>> enable_logging(level="DEBUG")
    """
    target = logging.getLogger(logger_name or PACKAGE_LOGGER)
    target.disabled = False
    target.setLevel(getattr(logging, level.upper()))


def artifact_digest(source: Union[str, os.PathLike, bytes]) -> str:
    """SHA-256 hex digest of a model artifact given as a path or raw bytes."""
    digest = hashlib.sha256()
    if isinstance(source, (bytes, bytearray, memoryview)):
        digest.update(source)
        return digest.hexdigest()

    with open(source, "rb") as f:
        for chunk in iter(lambda: f.read(_CHUNK_SIZE), b""):
            digest.update(chunk)
    return digest.hexdigest()
