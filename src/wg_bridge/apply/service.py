"""wg-quick unit control through systemd."""
import logging
from typing import Optional

from ..errors import ExternalToolError
from ..utils.audit_log import sanitize_output
from ..utils.process import CommandRunner

logger = logging.getLogger(__name__)

STATUS_PROPERTIES = "ActiveState,SubState,ActiveEnterTimestamp,InactiveEnterTimestamp"
JOURNAL_LINES = 20


def unit_name(interface: str) -> str:
    return f"wg-quick@{interface}"


class ServiceManager:
    """Starts, stops and inspects wg-quick@<iface> units."""

    def __init__(
        self,
        runner: Optional[CommandRunner] = None,
        timeout: Optional[float] = 15.0,
        systemctl: str = "systemctl",
        journalctl: str = "journalctl",
    ):
        self.runner = runner or CommandRunner()
        self.timeout = timeout
        self.systemctl = systemctl
        self.journalctl = journalctl

    async def _systemctl(self, action: str, interface: str) -> None:
        result = await self.runner.run(self.systemctl, action, unit_name(interface), timeout=self.timeout)
        if not result.success:
            raise ExternalToolError(
                f"systemctl {action} {unit_name(interface)} exited with {result.returncode}",
                details=sanitize_output((result.error + result.output).strip()),
            )
        logger.info(f"systemctl {action} {unit_name(interface)}")

    async def start(self, interface: str) -> None:
        await self._systemctl("start", interface)

    async def stop(self, interface: str) -> None:
        await self._systemctl("stop", interface)

    async def restart(self, interface: str) -> None:
        await self._systemctl("restart", interface)

    async def reload(self, interface: str) -> None:
        await self._systemctl("reload", interface)

    async def status(self, interface: str) -> dict:
        """
        Unit state plus the tail of its journal.

        Returns:
            {"status": "active (exited)", "last_change": <timestamp>, "message": <journal tail>}

        Raises:
            ExternalToolError: systemctl show failed
            ToolTimeoutError: Timeout expired
        """
        unit = unit_name(interface)
        result = await self.runner.check(
            self.systemctl, "show", unit, "--no-pager", f"--property={STATUS_PROPERTIES}",
            timeout=self.timeout,
        )
        info = {}
        for line in result.output.strip().splitlines():
            key, sep, value = line.partition("=")
            if sep:
                info[key] = value

        status = info.get("ActiveState", "")
        if info.get("SubState"):
            status = f"{status} ({info['SubState']})"
        if info.get("ActiveState") == "active":
            last_change = info.get("ActiveEnterTimestamp", "")
        else:
            last_change = info.get("InactiveEnterTimestamp", "")

        return {
            "status": status,
            "last_change": last_change,
            "message": await self._journal_tail(unit),
        }

    async def _journal_tail(self, unit: str) -> str:
        try:
            result = await self.runner.run(
                self.journalctl, "-u", unit, "-n", str(JOURNAL_LINES), "--no-pager", "--output=cat",
                timeout=self.timeout,
            )
        except ExternalToolError as e:
            # Journal is informational; unit state is already known
            logger.warning(f"Could not read journal for {unit}: {e}")
            return ""
        return sanitize_output(result.output.strip())
