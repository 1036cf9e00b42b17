"""Logging configuration for wg-bridge.

Provides:
- Console output plus a rotating log file
- A separate performance logger fed by timing decorators
- Environment-driven levels and locations

Environment Variables:
    WG_BRIDGE_LOG_LEVEL: DEBUG, INFO, WARNING, ERROR (default: INFO)
    WG_BRIDGE_LOG_FILE: Path to log file (default: /var/log/wg-bridge/wg-bridge.log)
    WG_BRIDGE_LOG_MAX_SIZE: Max log file size in MB (default: 10)
    WG_BRIDGE_LOG_BACKUPS: Number of backup files to keep (default: 5)

Usage:
    from wg_bridge.utils.logging_config import setup_logging, timed

    setup_logging()  # Call once at startup

    @timed("export")
    async def export_bundle(self, interface, recipient):
        ...

    async with timed_section("sync", interface="wg0"):
        ...
"""
import functools
import inspect
import logging
import os
import time
from contextlib import asynccontextmanager
from logging.handlers import RotatingFileHandler
from pathlib import Path
from typing import Any, Callable, Optional

# Performance logger - separate from main logger for easy filtering
perf_logger = logging.getLogger("wg_bridge.perf")

DEFAULT_LOG_FILE = Path("/var/log/wg-bridge/wg-bridge.log")


def get_log_level() -> int:
    """Get log level from environment."""
    level_str = os.environ.get("WG_BRIDGE_LOG_LEVEL", "INFO").upper()
    return getattr(logging, level_str, logging.INFO)


def get_log_file() -> Path:
    """Get log file path from environment."""
    return Path(os.environ.get("WG_BRIDGE_LOG_FILE", str(DEFAULT_LOG_FILE)))


def setup_logging(log_file: Optional[Path] = None) -> None:
    """Configure logging for the application.

    Sets up:
    - Console handler (respects WG_BRIDGE_LOG_LEVEL)
    - File handler with rotation (DEBUG level - captures everything)
    - Performance log file next to the main log
    """
    log_level = get_log_level()
    log_file = Path(log_file) if log_file else get_log_file()
    max_size_mb = int(os.environ.get("WG_BRIDGE_LOG_MAX_SIZE", "10"))
    backup_count = int(os.environ.get("WG_BRIDGE_LOG_BACKUPS", "5"))

    log_file.parent.mkdir(parents=True, exist_ok=True)

    main_format = logging.Formatter(
        "%(asctime)s.%(msecs)03d | %(name)-28s | %(levelname)-7s | %(message)s",
        datefmt="%Y-%m-%d %H:%M:%S"
    )
    perf_format = logging.Formatter(
        "%(asctime)s.%(msecs)03d | PERF | %(message)s",
        datefmt="%Y-%m-%d %H:%M:%S"
    )

    console_handler = logging.StreamHandler()
    console_handler.setLevel(log_level)
    console_handler.setFormatter(main_format)

    file_handler = RotatingFileHandler(
        log_file,
        maxBytes=max_size_mb * 1024 * 1024,
        backupCount=backup_count,
        encoding="utf-8"
    )
    file_handler.setLevel(logging.DEBUG)
    file_handler.setFormatter(main_format)

    perf_log_file = log_file.parent / "wg-bridge-perf.log"
    perf_handler = RotatingFileHandler(
        perf_log_file,
        maxBytes=max_size_mb * 1024 * 1024,
        backupCount=backup_count,
        encoding="utf-8"
    )
    perf_handler.setLevel(logging.DEBUG)
    perf_handler.setFormatter(perf_format)

    root_logger = logging.getLogger("wg_bridge")
    root_logger.setLevel(logging.DEBUG)  # Capture all, handlers filter
    root_logger.addHandler(console_handler)
    root_logger.addHandler(file_handler)

    # perf records also reach the main handlers through propagation
    perf_logger.setLevel(logging.DEBUG)
    perf_logger.addHandler(perf_handler)

    root_logger.info(f"Logging initialized: level={logging.getLevelName(log_level)}, file={log_file}")


def _subject(args: tuple, explicit: Optional[str]) -> str:
    if explicit:
        return explicit
    # first positional after self is the interface name or bundle path
    if len(args) > 1 and isinstance(args[1], (str, Path)):
        return str(args[1])
    return "N/A"


def timed(operation: str, subject: Optional[str] = None):
    """Decorator to log execution time of sync/async functions.

    Args:
        operation: Name of the operation (e.g., "apply", "export")
        subject: Optional interface/bundle; inferred from the first argument
    """
    def decorator(func: Callable) -> Callable:
        @functools.wraps(func)
        async def async_wrapper(*args, **kwargs) -> Any:
            name = _subject(args, subject)
            start = time.perf_counter()
            try:
                result = await func(*args, **kwargs)
                elapsed = (time.perf_counter() - start) * 1000  # ms
                perf_logger.info(f"{operation:16s} | {name:15s} | {elapsed:8.2f}ms | OK")
                return result
            except Exception as e:
                elapsed = (time.perf_counter() - start) * 1000
                perf_logger.warning(f"{operation:16s} | {name:15s} | {elapsed:8.2f}ms | FAIL: {e}")
                raise

        @functools.wraps(func)
        def sync_wrapper(*args, **kwargs) -> Any:
            name = _subject(args, subject)
            start = time.perf_counter()
            try:
                result = func(*args, **kwargs)
                elapsed = (time.perf_counter() - start) * 1000
                perf_logger.info(f"{operation:16s} | {name:15s} | {elapsed:8.2f}ms | OK")
                return result
            except Exception as e:
                elapsed = (time.perf_counter() - start) * 1000
                perf_logger.warning(f"{operation:16s} | {name:15s} | {elapsed:8.2f}ms | FAIL: {e}")
                raise

        if inspect.iscoroutinefunction(func):
            return async_wrapper
        return sync_wrapper

    return decorator


@asynccontextmanager
async def timed_section(operation: str, interface: Optional[str] = None, **extra):
    """Async context manager for timing code sections.

    Usage:
        async with timed_section("syncconf", interface="wg0"):
            await tool.syncconf(...)
    """
    start = time.perf_counter()
    extra_str = " | ".join(f"{k}={v}" for k, v in extra.items()) if extra else ""

    try:
        yield
        elapsed = (time.perf_counter() - start) * 1000
        msg = f"{operation:16s} | {interface or 'N/A':15s} | {elapsed:8.2f}ms | OK"
        if extra_str:
            msg += f" | {extra_str}"
        perf_logger.info(msg)
    except Exception as e:
        elapsed = (time.perf_counter() - start) * 1000
        msg = f"{operation:16s} | {interface or 'N/A':15s} | {elapsed:8.2f}ms | FAIL: {e}"
        if extra_str:
            msg += f" | {extra_str}"
        perf_logger.warning(msg)
        raise
