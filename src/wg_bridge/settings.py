"""Runtime settings for the bridge.

Environment variables:
- WG_BRIDGE_CONFIG_DIR: Live WireGuard configs (default: /etc/wireguard)
- WG_BRIDGE_KEY_DIR: Exchange and signing keys (default: /etc/wg-bridge/keys)
- WG_BRIDGE_STATE_DIR: Parent of inbox/pending/outbox/trusted (default: /var/lib/wg-bridge)
- WG_BRIDGE_LOCK_DIR: Per-interface lock files (default: /run/wg-bridge/locks)
- WG_BRIDGE_LOG_DIR: Audit log directory (default: /var/log/wg-bridge)
- WG_BRIDGE_STRICT: "0" relaxes catch-all and peer-count rules (default: 1)
- WG_BRIDGE_LOCK_TIMEOUT: Seconds to wait for an interface lock (default: 30)
- WG_BRIDGE_TOOL_TIMEOUT: Seconds allowed per `wg` invocation (default: 15)
- WG_BRIDGE_INGEST_WORKERS: Concurrent bundle ingest tasks (default: 4)
- WG_BRIDGE_NODE_NAME: Source name stamped into exported manifests
"""
import logging
import os
import socket
from dataclasses import dataclass, field, fields
from pathlib import Path
from typing import Any, Optional

import yaml

from .errors import ValidationError

logger = logging.getLogger(__name__)

DEFAULT_CONFIG_DIR = Path("/etc/wireguard")
DEFAULT_KEY_DIR = Path("/etc/wg-bridge/keys")
DEFAULT_STATE_DIR = Path("/var/lib/wg-bridge")
DEFAULT_LOCK_DIR = Path("/run/wg-bridge/locks")
DEFAULT_LOG_DIR = Path("/var/log/wg-bridge")

BUNDLE_SUFFIX = ".wgx"
SIGNATURE_SUFFIX = ".sig"

_PATH_FIELDS = (
    "config_dir",
    "key_dir",
    "trusted_keys_dir",
    "inbox_dir",
    "pending_dir",
    "outbox_dir",
    "lock_dir",
    "log_dir",
)


def _default_node_name() -> str:
    name = socket.gethostname() or "wg-bridge"
    return "".join(c for c in name if 32 <= ord(c) <= 126)[:255] or "wg-bridge"


@dataclass
class BridgeSettings:
    """Filesystem layout and tunables for one bridge instance."""
    config_dir: Path = DEFAULT_CONFIG_DIR
    key_dir: Path = DEFAULT_KEY_DIR
    trusted_keys_dir: Path = DEFAULT_STATE_DIR / "trusted"
    inbox_dir: Path = DEFAULT_STATE_DIR / "inbox"
    pending_dir: Path = DEFAULT_STATE_DIR / "pending"
    outbox_dir: Path = DEFAULT_STATE_DIR / "outbox"
    lock_dir: Path = DEFAULT_LOCK_DIR
    log_dir: Optional[Path] = DEFAULT_LOG_DIR
    strict: bool = True
    lock_timeout: float = 30.0
    tool_timeout: float = 15.0
    ingest_workers: int = 4
    node_name: str = field(default_factory=_default_node_name)

    def __post_init__(self) -> None:
        for name in _PATH_FIELDS:
            value = getattr(self, name)
            if value is not None and not isinstance(value, Path):
                setattr(self, name, Path(value))
        if self.ingest_workers < 1:
            raise ValidationError(f"ingest_workers must be >= 1, got {self.ingest_workers}")
        if self.lock_timeout <= 0 or self.tool_timeout <= 0:
            raise ValidationError("timeouts must be positive")

    @classmethod
    def for_root(cls, root: Path, **overrides: Any) -> "BridgeSettings":
        """Lay every directory out under a single root (tests, containers)."""
        root = Path(root)
        values: dict[str, Any] = {
            "config_dir": root / "wireguard",
            "key_dir": root / "keys",
            "trusted_keys_dir": root / "state" / "trusted",
            "inbox_dir": root / "state" / "inbox",
            "pending_dir": root / "state" / "pending",
            "outbox_dir": root / "state" / "outbox",
            "lock_dir": root / "locks",
            "log_dir": root / "log",
        }
        values.update(overrides)
        return cls(**values)

    @classmethod
    def from_env(cls) -> "BridgeSettings":
        """Load settings from environment variables."""
        state_dir = Path(os.environ.get("WG_BRIDGE_STATE_DIR", str(DEFAULT_STATE_DIR)))

        node_name = os.environ.get("WG_BRIDGE_NODE_NAME") or _default_node_name()

        return cls(
            config_dir=Path(os.environ.get("WG_BRIDGE_CONFIG_DIR", str(DEFAULT_CONFIG_DIR))),
            key_dir=Path(os.environ.get("WG_BRIDGE_KEY_DIR", str(DEFAULT_KEY_DIR))),
            trusted_keys_dir=state_dir / "trusted",
            inbox_dir=state_dir / "inbox",
            pending_dir=state_dir / "pending",
            outbox_dir=state_dir / "outbox",
            lock_dir=Path(os.environ.get("WG_BRIDGE_LOCK_DIR", str(DEFAULT_LOCK_DIR))),
            log_dir=Path(os.environ.get("WG_BRIDGE_LOG_DIR", str(DEFAULT_LOG_DIR))),
            strict=os.environ.get("WG_BRIDGE_STRICT", "1") != "0",
            lock_timeout=float(os.environ.get("WG_BRIDGE_LOCK_TIMEOUT", "30")),
            tool_timeout=float(os.environ.get("WG_BRIDGE_TOOL_TIMEOUT", "15")),
            ingest_workers=int(os.environ.get("WG_BRIDGE_INGEST_WORKERS", "4")),
            node_name=node_name,
        )

    @classmethod
    def from_file(cls, path: Path) -> "BridgeSettings":
        """Load settings from a YAML file.

        Unknown keys are rejected so typos do not silently fall back to
        defaults.
        """
        path = Path(path)
        if not path.exists():
            logger.warning(f"Settings file not found: {path}, using defaults")
            return cls()

        with open(path) as f:
            data = yaml.safe_load(f) or {}

        if not isinstance(data, dict):
            raise ValidationError(f"Settings file {path} must contain a mapping")

        known = {f.name for f in fields(cls)}
        unknown = sorted(set(data) - known)
        if unknown:
            raise ValidationError(f"Unknown settings in {path}: {', '.join(unknown)}")

        return cls(**data)

    def ensure_directories(self) -> None:
        """Create every managed directory with owner-only permissions."""
        for name in _PATH_FIELDS:
            path = getattr(self, name)
            if path is None:
                continue
            path.mkdir(parents=True, exist_ok=True, mode=0o700)

    def live_config_path(self, interface: str) -> Path:
        return self.config_dir / f"{interface}.conf"
