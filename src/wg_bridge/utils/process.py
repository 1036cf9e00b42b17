"""Subprocess execution with bounded timeouts, plus retry helpers."""
import asyncio
import contextlib
import inspect
import logging
import shutil
from functools import wraps
from typing import Any, Callable, Optional, TypeVar

from tenacity import (
    retry,
    stop_after_attempt,
    wait_exponential,
    retry_if_exception_type,
    before_sleep_log,
)

from ..errors import ExternalToolError, ToolTimeoutError
from .audit_log import sanitize_output

logger = logging.getLogger(__name__)

T = TypeVar("T")

# Transient failures worth retrying for read-only queries
RETRYABLE_EXCEPTIONS = (
    ToolTimeoutError,
    ConnectionResetError,
    BlockingIOError,
)


def with_retry(
    max_attempts: int = 3,
    min_wait: float = 0.2,
    max_wait: float = 2,
    exceptions: tuple = RETRYABLE_EXCEPTIONS,
) -> Callable:
    """Decorator factory for retry logic with exponential backoff.

    Only use on idempotent operations.

    Args:
        max_attempts: Maximum number of attempts
        min_wait: Minimum wait time between retries (seconds)
        max_wait: Maximum wait time between retries (seconds)
        exceptions: Tuple of exception types to retry on
    """
    def decorator(func: Callable[..., T]) -> Callable[..., T]:
        @retry(
            stop=stop_after_attempt(max_attempts),
            wait=wait_exponential(multiplier=min_wait, min=min_wait, max=max_wait),
            retry=retry_if_exception_type(exceptions),
            before_sleep=before_sleep_log(logger, logging.WARNING),
            reraise=True,
        )
        @wraps(func)
        async def async_wrapper(*args: Any, **kwargs: Any) -> T:
            return await func(*args, **kwargs)  # type: ignore[misc]

        @retry(
            stop=stop_after_attempt(max_attempts),
            wait=wait_exponential(multiplier=min_wait, min=min_wait, max=max_wait),
            retry=retry_if_exception_type(exceptions),
            before_sleep=before_sleep_log(logger, logging.WARNING),
            reraise=True,
        )
        @wraps(func)
        def sync_wrapper(*args: Any, **kwargs: Any) -> T:
            return func(*args, **kwargs)

        if inspect.iscoroutinefunction(func):
            return async_wrapper  # type: ignore[return-value]
        return sync_wrapper

    return decorator


class CommandResult:
    """Result of one external command."""

    def __init__(
        self,
        returncode: int,
        output: str = "",
        error: str = "",
        command: str = "",
    ):
        self.returncode = returncode
        self.output = output
        self.error = error
        self.command = command

    @property
    def success(self) -> bool:
        return self.returncode == 0

    def to_dict(self) -> dict:
        return {
            "success": self.success,
            "returncode": self.returncode,
            "output": sanitize_output(self.output),
            "error": sanitize_output(self.error),
            "command": self.command,
        }

    def __repr__(self) -> str:
        status = "OK" if self.success else f"FAILED({self.returncode})"
        return f"CommandResult({status}, command={self.command})"


class CommandRunner:
    """Run external utilities without a shell."""

    async def run(
        self,
        *argv: str,
        input: Optional[bytes] = None,
        timeout: Optional[float] = None,
    ) -> CommandResult:
        """
        Run a command and wait for it.

        Args:
            *argv: Program and arguments
            input: Bytes written to the child's stdin
            timeout: Seconds before the child is killed

        Returns:
            CommandResult (non-zero exit is not raised here)

        Raises:
            ExternalToolError: Executable not found or could not start
            ToolTimeoutError: Timeout expired
        """
        command = " ".join(argv)
        if shutil.which(argv[0]) is None:
            raise ExternalToolError(f"Executable not found: {argv[0]}")

        logger.debug(f"Running: {command}")
        try:
            proc = await asyncio.create_subprocess_exec(
                *argv,
                stdin=asyncio.subprocess.PIPE if input is not None else asyncio.subprocess.DEVNULL,
                stdout=asyncio.subprocess.PIPE,
                stderr=asyncio.subprocess.PIPE,
            )
        except OSError as e:
            raise ExternalToolError(f"Failed to start {argv[0]}: {e}")

        try:
            stdout, stderr = await asyncio.wait_for(proc.communicate(input), timeout=timeout)
        except asyncio.TimeoutError:
            with contextlib.suppress(ProcessLookupError):
                proc.kill()
            await proc.wait()
            raise ToolTimeoutError(f"Timeout after {timeout}s running: {command}")

        return CommandResult(
            returncode=proc.returncode,
            output=stdout.decode(errors="replace") if stdout else "",
            error=stderr.decode(errors="replace") if stderr else "",
            command=command,
        )

    async def check(
        self,
        *argv: str,
        input: Optional[bytes] = None,
        timeout: Optional[float] = None,
    ) -> CommandResult:
        """Like run(), but raise ExternalToolError on non-zero exit."""
        result = await self.run(*argv, input=input, timeout=timeout)
        if not result.success:
            raise ExternalToolError(
                f"{argv[0]} exited with {result.returncode}",
                details=sanitize_output(result.error.strip() or result.output.strip()),
            )
        return result
