"""Per-interface advisory locks.

One lock file per interface under the lock directory, held with
`flock(LOCK_EX)` for the duration of a single apply. Acquisition polls a
non-blocking flock so a stuck holder surfaces as LockError after the
configured timeout instead of blocking forever. Other processes that
honour the same lock files are excluded too.
"""
import asyncio
import fcntl
import logging
import os
import time
from contextlib import asynccontextmanager
from pathlib import Path
from typing import AsyncIterator

from ..config_model import validate_interface_name
from ..errors import LockError

logger = logging.getLogger(__name__)

POLL_INTERVAL = 0.05


class InterfaceLockManager:
    """Hands out exclusive leases keyed by interface name."""

    def __init__(self, lock_dir: Path, timeout: float = 30.0, poll_interval: float = POLL_INTERVAL):
        """
        Args:
            lock_dir: Directory holding <interface>.lock files
            timeout: Seconds to wait before giving up with LockError
            poll_interval: Delay between non-blocking attempts
        """
        self.lock_dir = Path(lock_dir)
        self.timeout = timeout
        self.poll_interval = poll_interval

    def lock_path(self, interface: str) -> Path:
        validate_interface_name(interface)
        return self.lock_dir / f"{interface}.lock"

    @asynccontextmanager
    async def acquire(self, interface: str) -> AsyncIterator[Path]:
        """
        Hold the interface lock for the body of the `async with`.

        Raises:
            LockError: Lock directory unusable or timeout expired
        """
        path = self.lock_path(interface)
        try:
            self.lock_dir.mkdir(parents=True, exist_ok=True, mode=0o755)
            fd = os.open(path, os.O_CREAT | os.O_RDWR, 0o600)
        except OSError as e:
            raise LockError(f"cannot open lock for {interface}: {e}")

        try:
            await self._wait_for_flock(fd, interface)
            logger.debug(f"Lock acquired: {interface}")
            try:
                yield path
            finally:
                fcntl.flock(fd, fcntl.LOCK_UN)
                logger.debug(f"Lock released: {interface}")
        finally:
            os.close(fd)

    async def _wait_for_flock(self, fd: int, interface: str) -> None:
        deadline = time.monotonic() + self.timeout
        while True:
            try:
                fcntl.flock(fd, fcntl.LOCK_EX | fcntl.LOCK_NB)
                return
            except BlockingIOError:
                pass
            except OSError as e:
                raise LockError(f"cannot lock {interface}: {e}")

            if time.monotonic() >= deadline:
                raise LockError(
                    f"timed out after {self.timeout}s waiting for lock on {interface}"
                )
            await asyncio.sleep(self.poll_interval)
