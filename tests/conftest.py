"""Shared fixtures: temp settings, audit sink, fake `wg`, bundle builders."""
import asyncio
import base64
from pathlib import Path
from typing import Optional

import pytest

from wg_bridge.apply import AtomicApplyEngine, InterfaceLockManager, LiveState
from wg_bridge.config_model import ConfigSummary, Manifest, compute_checksum
from wg_bridge.errors import ExternalToolError
from wg_bridge.exchange import pack
from wg_bridge.keyring import KeyringManager, make_signature, seal
from wg_bridge.settings import SIGNATURE_SUFFIX, BridgeSettings
from wg_bridge.utils.audit_log import AuditSink
from wg_bridge.utils.process import CommandResult


def wg_key(seed: int) -> str:
    """A syntactically valid WireGuard key derived from a small integer."""
    return base64.b64encode(bytes([seed]) * 32).decode()


def make_config(
    port: Optional[int] = 51820,
    peers: tuple = ((2, "10.0.0.2/32"),),
    private_seed: int = 1,
    extra: str = "",
) -> str:
    """Build configuration text; peers are (key seed, AllowedIPs) pairs."""
    lines = ["[Interface]", f"PrivateKey = {wg_key(private_seed)}"]
    if port is not None:
        lines.append(f"ListenPort = {port}")
    if extra:
        lines.append(extra)
    for seed, allowed in peers:
        lines += ["", "[Peer]", f"PublicKey = {wg_key(seed)}", f"AllowedIPs = {allowed}"]
    return "\n".join(lines) + "\n"


class FakeWireGuard:
    """In-memory stand-in for `wg syncconf` / `wg show`."""

    def __init__(self):
        self.synced: list[tuple[str, ConfigSummary]] = []
        self.live: dict[str, LiveState] = {}
        self.fail_syncs = 0
        self.sync_error: type = ExternalToolError
        self.sync_delay = 0.0
        self.port_override: Optional[int] = None
        self.extra_peers: set[str] = set()
        self.active: dict[str, int] = {}
        self.max_active: dict[str, int] = {}
        self.max_active_total = 0

    async def syncconf(self, interface: str, summary: ConfigSummary) -> None:
        self.synced.append((interface, summary))
        self.active[interface] = self.active.get(interface, 0) + 1
        self.max_active[interface] = max(self.max_active.get(interface, 0), self.active[interface])
        self.max_active_total = max(self.max_active_total, sum(self.active.values()))
        try:
            if self.sync_delay:
                await asyncio.sleep(self.sync_delay)
            if self.fail_syncs > 0:
                self.fail_syncs -= 1
                raise self.sync_error("wg syncconf failed")
            self.live[interface] = LiveState(
                listen_port=int(summary.listen_port or 0),
                peers=set(summary.peer_keys),
            )
        finally:
            self.active[interface] -= 1

    async def show(self, interface: str) -> LiveState:
        state = self.live.get(interface, LiveState())
        port = self.port_override if self.port_override is not None else state.listen_port
        return LiveState(listen_port=port, peers=set(state.peers) | self.extra_peers)


class ScriptedRunner:
    """CommandRunner stand-in: records argv, answers from a per-program script."""

    def __init__(self, responses: Optional[dict] = None):
        self.calls: list[tuple[str, ...]] = []
        self.responses = responses or {}

    async def run(self, *argv, input=None, timeout=None):
        self.calls.append(argv)
        response = self.responses.get(argv[0], CommandResult(0))
        if isinstance(response, Exception):
            raise response
        return response

    async def check(self, *argv, input=None, timeout=None):
        result = await self.run(*argv, input=input, timeout=timeout)
        if not result.success:
            raise ExternalToolError(f"{argv[0]} exited with {result.returncode}", details=result.error)
        return result


def build_bundle(
    directory: Path,
    name: str,
    config: bytes,
    recipient_pub: bytes,
    signing_priv: Optional[bytes],
    interface: str = "wg0",
    checksum: Optional[str] = None,
    meta: Optional[dict[str, bytes]] = None,
    source: Optional[str] = "node-test",
) -> Path:
    """Write <directory>/<name>.wgx (and .sig when a signing key is given)."""
    manifest = Manifest(
        interface=interface,
        version=2,
        checksum=checksum or compute_checksum(config),
        timestamp=1700000000,
        source=source,
    )
    blob = seal(pack(manifest, config, meta), recipient_pub)
    path = directory / f"{name}.wgx"
    if signing_priv is not None:
        sig = path.with_name(path.name + SIGNATURE_SUFFIX)
        sig.write_bytes(make_signature(signing_priv, blob))
    path.write_bytes(blob)
    return path


@pytest.fixture
def settings(tmp_path):
    settings = BridgeSettings.for_root(tmp_path / "node", lock_timeout=2.0, node_name="node-a")
    settings.ensure_directories()
    return settings


@pytest.fixture
def audit(settings):
    sink = AuditSink(settings.log_dir)
    yield sink
    sink.close()


@pytest.fixture
def fake_wg():
    return FakeWireGuard()


@pytest.fixture
def engine(settings, fake_wg, audit):
    return AtomicApplyEngine(
        settings,
        fake_wg,
        audit,
        InterfaceLockManager(settings.lock_dir, timeout=settings.lock_timeout),
    )


@pytest.fixture
def keyring(settings, audit):
    ring = KeyringManager(settings, audit)
    ring.ensure_keys()
    return ring
