"""Reconciliation against the running interface via the `wg` utility."""
import logging
from dataclasses import dataclass, field
from typing import Optional, Protocol

from ..config_model import ConfigSummary, render_config
from ..errors import ExternalToolError
from ..utils.process import CommandRunner, with_retry

logger = logging.getLogger(__name__)


@dataclass
class LiveState:
    """What the kernel reports for an interface."""
    listen_port: int = 0
    peers: set[str] = field(default_factory=set)

    @classmethod
    def from_dump(cls, dump: str) -> "LiveState":
        """
        Parse `wg show <iface> dump`.

        First line: private-key, public-key, listen-port, fwmark.
        Each following line: public-key, preshared-key, endpoint,
        allowed-ips, latest-handshake, rx, tx, persistent-keepalive.
        """
        lines = [l for l in dump.splitlines() if l.strip()]
        if not lines:
            raise ExternalToolError("empty output from wg show dump")

        header = lines[0].split("\t")
        if len(header) < 3:
            raise ExternalToolError("unexpected wg show dump header")
        try:
            port = int(header[2])
        except ValueError:
            raise ExternalToolError(f"unexpected listen port in wg dump: {header[2]!r}")

        peers = {line.split("\t", 1)[0] for line in lines[1:]}
        return cls(listen_port=port, peers=peers)


class Reconciler(Protocol):
    """Pushes configuration into a running interface and reads it back."""

    async def syncconf(self, interface: str, summary: ConfigSummary) -> None: ...

    async def show(self, interface: str) -> LiveState: ...


class WireGuardTool:
    """`wg syncconf` / `wg show` wrapper."""

    def __init__(
        self,
        runner: Optional[CommandRunner] = None,
        timeout: Optional[float] = 15.0,
        binary: str = "wg",
    ):
        self.runner = runner or CommandRunner()
        self.timeout = timeout
        self.binary = binary

    async def syncconf(self, interface: str, summary: ConfigSummary) -> None:
        """
        Push the peer set and listen port without restarting the interface.

        wg-quick-only keys are stripped; the text is fed on stdin so no
        second copy of the private key touches the disk.

        Raises:
            ExternalToolError: Non-zero exit
            ToolTimeoutError: Timeout expired
        """
        text = render_config(summary, strip_quick=True)
        await self.runner.check(
            self.binary, "syncconf", interface, "/dev/stdin",
            input=text.encode(),
            timeout=self.timeout,
        )
        logger.info(f"Synced configuration into {interface}")

    @with_retry(max_attempts=3)
    async def show(self, interface: str) -> LiveState:
        """Read listen port and peer keys from the running interface."""
        result = await self.runner.check(
            self.binary, "show", interface, "dump",
            timeout=self.timeout,
        )
        return LiveState.from_dump(result.output)
