"""Audit logging for every mutating operation.

Provides:
- One structured JSON record per operation outcome
- Recursive redaction of key/password/secret/psk fields
- Scrubbing of inline PrivateKey/PresharedKey assignments in strings
- Separate, non-propagating audit log file with rotation
"""
import json
import logging
import re
import threading
from collections import deque
from dataclasses import dataclass, asdict, field
from datetime import datetime, timezone
from logging.handlers import RotatingFileHandler
from pathlib import Path
from typing import Any, Callable, Optional

AUDIT_LOGGER_NAME = "wg_bridge.audit"
AUDIT_FILE_NAME = "audit.log"

REDACTED = "<redacted>"

SENSITIVE_KEY_RE = re.compile(r"key|password|secret|psk", re.IGNORECASE)
INLINE_SECRET_RE = re.compile(r"(?i)(PrivateKey|PresharedKey)\s*=\s*[^\s]+")


def sanitize_output(text: str) -> str:
    """Replace inline key assignments (e.g. from tool output) with a placeholder."""
    return INLINE_SECRET_RE.sub(rf"\1={REDACTED}", text)


def redact(value: Any) -> Any:
    """Return a copy of value with sensitive fields replaced, recursively."""
    if isinstance(value, dict):
        return {
            k: REDACTED if SENSITIVE_KEY_RE.search(str(k)) else redact(v)
            for k, v in value.items()
        }
    if isinstance(value, (list, tuple)):
        return [redact(v) for v in value]
    if isinstance(value, str):
        return sanitize_output(value)
    return value


@dataclass
class AuditRecord:
    """One audit event."""
    timestamp: str
    action: str
    outcome: str
    fields: dict = field(default_factory=dict)

    def to_dict(self) -> dict:
        data = {"timestamp": self.timestamp, "action": self.action, "outcome": self.outcome}
        data.update(self.fields)
        return data

    def to_json(self) -> str:
        return json.dumps(self.to_dict(), default=str)

    @classmethod
    def from_json(cls, json_str: str) -> "AuditRecord":
        data = json.loads(json_str)
        return cls(
            timestamp=data.pop("timestamp"),
            action=data.pop("action"),
            outcome=data.pop("outcome"),
            fields=data,
        )

    def get(self, name: str, default: Any = None) -> Any:
        return self.fields.get(name, default)


class AuditSink:
    """
    Structured audit sink.

    Records are redacted before they leave this object: the log file,
    the in-memory tail and listeners only ever see redacted data.
    """

    def __init__(self, log_dir: Optional[Path] = None, tail_size: int = 1000):
        """
        Initialize the sink.

        Args:
            log_dir: Directory for audit.log. None keeps records in memory only.
            tail_size: Number of recent records kept in memory
        """
        self.log_dir = Path(log_dir) if log_dir else None
        # Unregistered logger: each sink owns its handlers outright
        self._logger = logging.Logger(AUDIT_LOGGER_NAME)
        self._logger.setLevel(logging.INFO)
        self._logger.propagate = False
        self._handler: Optional[logging.Handler] = None
        self._records: deque[AuditRecord] = deque(maxlen=tail_size)
        self._listeners: list[Callable[[AuditRecord], None]] = []
        self._mutex = threading.Lock()

        if self.log_dir is not None:
            self.log_dir.mkdir(parents=True, exist_ok=True, mode=0o700)
            self._handler = RotatingFileHandler(
                self.log_path,
                maxBytes=10 * 1024 * 1024,  # 10MB
                backupCount=10,
                encoding="utf-8",
            )
            self._handler.setFormatter(logging.Formatter("%(message)s"))
            self._logger.addHandler(self._handler)
        else:
            self._logger.addHandler(logging.NullHandler())

    @property
    def log_path(self) -> Optional[Path]:
        return self.log_dir / AUDIT_FILE_NAME if self.log_dir else None

    @property
    def records(self) -> list[AuditRecord]:
        with self._mutex:
            return list(self._records)

    def add_listener(self, callback: Callable[[AuditRecord], None]) -> None:
        self._listeners.append(callback)

    def remove_listener(self, callback: Callable[[AuditRecord], None]) -> None:
        if callback in self._listeners:
            self._listeners.remove(callback)

    def emit(self, action: str, outcome: str, level: int = logging.INFO, **fields: Any) -> AuditRecord:
        """
        Emit one audit record.

        Args:
            action: What was attempted (apply, export, bundle, rotate_keys...)
            outcome: How it ended (start, success, failure, rollback, ready...)
            level: Log level; fatal outcomes use CRITICAL
            **fields: Extra context, redacted before emission

        Returns:
            The redacted AuditRecord
        """
        record = AuditRecord(
            timestamp=datetime.now(timezone.utc).isoformat(),
            action=action,
            outcome=outcome,
            fields=redact(fields),
        )

        with self._mutex:
            self._records.append(record)

        self._logger.log(level, record.to_json())

        for listener in list(self._listeners):
            listener(record)

        return record

    def find(self, action: Optional[str] = None, outcome: Optional[str] = None) -> list[AuditRecord]:
        """Filter the in-memory tail."""
        return [
            r for r in self.records
            if (action is None or r.action == action)
            and (outcome is None or r.outcome == outcome)
        ]

    def close(self) -> None:
        if self._handler is not None:
            self._logger.removeHandler(self._handler)
            self._handler.close()
            self._handler = None


def read_audit_log(
    log_file: Path,
    action: Optional[str] = None,
    limit: int = 100,
) -> list[AuditRecord]:
    """Read recent records from an audit log, most recent first.

    Args:
        log_file: Path to audit.log
        action: Filter by action
        limit: Maximum number of records to return
    """
    log_file = Path(log_file)
    if not log_file.exists():
        return []

    records = []
    with open(log_file, "r", encoding="utf-8") as f:
        for line in f:
            line = line.strip()
            if not line:
                continue
            try:
                record = AuditRecord.from_json(line)
            except (json.JSONDecodeError, KeyError, TypeError):
                continue  # Skip malformed lines

            if action and record.action != action:
                continue
            records.append(record)

    return list(reversed(records[-limit:]))
