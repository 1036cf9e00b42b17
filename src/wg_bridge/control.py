"""Control plane service.

Owns the keyring, apply engine and both exchange pipelines, and exposes
the operations the front end may request:

- list_interfaces: Interfaces with a live configuration file
- read_config: Raw text and parsed summary of one interface
- validate_config: Parse and validate candidate text
- apply_changes: Atomically apply text to an interface
- export_bundle: Package a live configuration for a recipient
- list_inbox_bundles: Verification report on inbox bundles
- list_pending: Bundles staged and awaiting promotion
- promote_pending: Apply a pending configuration and clear it
- get_exchange_key: This node's public exchange key
- get_signing_fingerprint: This node's signing key fingerprint
- rotate_keys: Replace key material, re-encrypt inbox bundles
- trust_signing_key: Accept bundles signed by a peer key
- write_config: Apply text to an interface, status only
- reload_interface: Re-sync the live file into the running interface
- up_interface, down_interface, restart_interface: wg-quick unit control
- get_interface_status: Unit state and recent journal lines

`call(method, params)` is the request/response entry point; it returns
{"result": ...} or {"error": {"code", "message", "details"}}.
"""
import json
import logging
import shutil
from typing import Any, Optional

from .apply import AtomicApplyEngine, Reconciler, ServiceManager, WireGuardTool
from .config_model import ConfigParser, ConfigValidator, ManifestValidator, validate_interface_name
from .errors import BridgeError, ExternalToolError, StorageError, ValidationError, error_response
from .exchange import ExchangeExportPipeline, ExchangeIngestPipeline
from .exchange.ingest import PENDING_CONFIG, PENDING_MANIFEST, PENDING_META
from .keyring import KeyringManager
from .settings import SIGNATURE_SUFFIX, BridgeSettings
from .utils.audit_log import AuditSink
from .utils.logging_config import timed_section

logger = logging.getLogger(__name__)


class ControlPlane:
    """Dependency-injected control surface for one host."""

    def __init__(
        self,
        settings: BridgeSettings,
        reconciler: Optional[Reconciler] = None,
        audit: Optional[AuditSink] = None,
        watch_inbox: bool = True,
        service: Optional[ServiceManager] = None,
    ):
        """
        Initialize the service. Nothing touches disk until start().

        Args:
            settings: Paths and tunables
            reconciler: Live-interface reconciler (default: `wg` utility)
            audit: Audit sink (default: one writing under settings.log_dir)
            watch_inbox: Start the inbox watcher on start()
            service: wg-quick unit control (default: systemctl)
        """
        self.settings = settings
        self._owns_audit = audit is None
        self.audit = audit or AuditSink(settings.log_dir)
        self.reconciler = reconciler or WireGuardTool(timeout=settings.tool_timeout)
        self.service = service or ServiceManager(timeout=settings.tool_timeout)
        self.keyring = KeyringManager(settings, self.audit)
        self.engine = AtomicApplyEngine(settings, self.reconciler, self.audit)
        self.ingest = ExchangeIngestPipeline(settings, self.keyring, self.audit)
        self.export = ExchangeExportPipeline(settings, self.keyring, self.audit)
        self.watch_inbox = watch_inbox
        self._started = False

    async def start(self) -> None:
        if self._started:
            return
        self.settings.ensure_directories()
        self.keyring.ensure_keys()
        if self.watch_inbox:
            await self.ingest.start()
        self._started = True
        logger.info("Control plane started")

    async def stop(self) -> None:
        if not self._started:
            return
        await self.ingest.stop()
        if self._owns_audit:
            self.audit.close()
        self._started = False
        logger.info("Control plane stopped")

    async def __aenter__(self) -> "ControlPlane":
        await self.start()
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb) -> None:
        await self.stop()

    # === OPERATIONS ===

    def list_interfaces(self) -> dict:
        config_dir = self.settings.config_dir
        if not config_dir.is_dir():
            return {"interfaces": []}
        names = []
        for path in config_dir.glob("*.conf"):
            if not path.is_file():
                continue
            try:
                validate_interface_name(path.stem)
            except ValidationError:
                continue
            names.append(path.stem)
        return {"interfaces": sorted(names)}

    def read_config(self, name: str) -> dict:
        validate_interface_name(name)
        path = self.settings.live_config_path(name)
        try:
            text = path.read_text()
        except FileNotFoundError:
            raise ValidationError(f"no configuration for {name}")
        except OSError as e:
            raise StorageError(f"cannot read {path.name}: {e}")
        summary = ConfigParser(strict=False).parse(text)
        return {"raw": text, "summary": summary.to_dict()}

    def validate_config(self, text: str) -> dict:
        summary = ConfigParser(strict=self.settings.strict).parse(text)
        ConfigValidator(strict=self.settings.strict).validate(summary)
        return {"summary": summary.to_dict()}

    async def apply_changes(self, name: str, text: str) -> dict:
        result = await self.engine.apply(name, text)
        return result.to_dict()

    def export_bundle(self, name: str, recipient: str, metadata: Optional[dict[str, str]] = None) -> dict:
        meta = {k: v.encode() for k, v in (metadata or {}).items()}
        path = self.export.export_bundle(name, recipient, meta or None)
        return {"bundle": str(path), "signature": f"{path}{SIGNATURE_SUFFIX}"}

    def list_inbox_bundles(self) -> dict:
        return {"bundles": self.ingest.list_inbox_bundles()}

    def list_pending(self) -> dict:
        pending_dir = self.settings.pending_dir
        if not pending_dir.is_dir():
            return {"pending": []}

        validator = ManifestValidator(strict=False)
        entries = []
        for directory in sorted(p for p in pending_dir.iterdir() if p.is_dir()):
            entry: dict[str, Any] = {"interface": directory.name}
            config = directory / PENDING_CONFIG
            entry["ready"] = config.is_file()
            try:
                manifest = validator.parse((directory / PENDING_MANIFEST).read_bytes())
                entry["manifest"] = manifest.to_dict()
                if entry["ready"]:
                    validator.verify_checksum(manifest, config.read_bytes())
                    entry["checksum"] = True
            except FileNotFoundError:
                entry["manifest"] = None
            except BridgeError as e:
                entry["checksum"] = False
                entry["error"] = str(e)
            meta_dir = directory / PENDING_META
            entry["meta"] = sorted(
                str(p.relative_to(meta_dir)) for p in meta_dir.rglob("*") if p.is_file()
            ) if meta_dir.is_dir() else []
            entries.append(entry)
        return {"pending": entries}

    async def promote_pending(self, name: str) -> dict:
        """Apply pending/<name>/config.conf and clear the pending entry on success."""
        validate_interface_name(name)
        directory = self.settings.pending_dir / name
        try:
            text = (directory / PENDING_CONFIG).read_text()
        except FileNotFoundError:
            raise ValidationError(f"nothing pending for {name}")
        except OSError as e:
            raise StorageError(f"cannot read pending configuration for {name}: {e}")

        result = await self.engine.apply(name, text)
        try:
            shutil.rmtree(directory)
        except OSError as e:
            logger.warning(f"Applied {name} but could not clear pending entry: {e}")
        self.audit.emit("promote", "success", iface=name)
        return result.to_dict()

    def get_exchange_key(self) -> dict:
        return {"public_key": self.keyring.get_exchange_key()}

    def get_signing_fingerprint(self) -> dict:
        return {
            "fingerprint": self.keyring.get_signing_fingerprint(),
            "public_key": self.keyring.get_signing_public(),
        }

    def rotate_keys(self) -> dict:
        return {"public_key": self.keyring.rotate_keys()}

    def trust_signing_key(self, name: str, public_key: str) -> dict:
        return {"name": name, "fingerprint": self.keyring.trust_signing_key(name, public_key)}

    # === INTERFACE LIFECYCLE ===

    async def write_config(self, name: str, text: str) -> dict:
        await self.engine.apply(name, text)
        return {"status": "ok"}

    async def reload_interface(self, name: str) -> dict:
        """
        Push the live file into the running interface.

        Falls back to `systemctl reload wg-quick@<name>` when `wg syncconf`
        fails.
        """
        validate_interface_name(name)
        async with self.engine.locks.acquire(name):
            path = self.settings.live_config_path(name)
            try:
                text = path.read_text()
            except FileNotFoundError:
                raise ValidationError(f"no configuration for {name}")
            except OSError as e:
                raise StorageError(f"cannot read {path.name}: {e}")

            summary = ConfigParser(strict=False).parse(text)
            try:
                await self.reconciler.syncconf(name, summary)
            except ExternalToolError as e:
                logger.warning(f"syncconf of {name} failed ({e}), reloading unit instead")
                await self.service.reload(name)
        return {"status": "ok"}

    async def up_interface(self, name: str) -> dict:
        validate_interface_name(name)
        async with self.engine.locks.acquire(name):
            await self.service.start(name)
        return {"status": "ok"}

    async def down_interface(self, name: str) -> dict:
        validate_interface_name(name)
        async with self.engine.locks.acquire(name):
            await self.service.stop(name)
        return {"status": "ok"}

    async def restart_interface(self, name: str) -> dict:
        validate_interface_name(name)
        async with self.engine.locks.acquire(name):
            await self.service.restart(name)
        return {"status": "ok"}

    async def get_interface_status(self, name: str) -> dict:
        validate_interface_name(name)
        return await self.service.status(name)

    # === DISPATCH ===

    async def call(self, method: str, params: Optional[dict] = None) -> dict:
        """
        Dispatch one request.

        Every input is re-validated here regardless of upstream checks.
        Exactly one redacted audit record is emitted per call.
        """
        params = params or {}
        iface = params.get("name") if isinstance(params, dict) else None

        async with timed_section(f"call:{method}", interface=iface if isinstance(iface, str) else None):
            try:
                if not isinstance(params, dict):
                    raise ValidationError("params must be an object")
                result = await self._dispatch(method, params)
            except Exception as e:
                error = error_response(e)
                if not isinstance(e, (BridgeError, PermissionError)):
                    logger.exception(f"Unexpected error in {method}")
                self.audit.emit(
                    "control", "error",
                    method=method,
                    error=error["details"],
                    code=error["code"],
                    **_audit_params(params),
                )
                return {"error": error}

        self.audit.emit("control", "success", method=method, **_audit_params(params))
        return {"result": result}

    async def _dispatch(self, method: str, params: dict) -> Any:
        if method == "list_interfaces":
            return self.list_interfaces()

        elif method == "read_config":
            return self.read_config(_param(params, "name"))

        elif method == "validate_config":
            return self.validate_config(_param(params, "text"))

        elif method == "apply_changes":
            return await self.apply_changes(_param(params, "name"), _param(params, "text"))

        elif method == "export_bundle":
            metadata = params.get("metadata")
            if metadata is not None and not (
                isinstance(metadata, dict)
                and all(isinstance(k, str) and isinstance(v, str) for k, v in metadata.items())
            ):
                raise ValidationError("metadata must map names to text")
            return self.export_bundle(_param(params, "name"), _param(params, "recipient"), metadata)

        elif method == "list_inbox_bundles":
            return self.list_inbox_bundles()

        elif method == "list_pending":
            return self.list_pending()

        elif method == "promote_pending":
            return await self.promote_pending(_param(params, "name"))

        elif method == "get_exchange_key":
            return self.get_exchange_key()

        elif method == "get_signing_fingerprint":
            return self.get_signing_fingerprint()

        elif method == "rotate_keys":
            return self.rotate_keys()

        elif method == "trust_signing_key":
            return self.trust_signing_key(_param(params, "name"), _param(params, "public_key"))

        elif method == "write_config":
            return await self.write_config(_param(params, "name"), _param(params, "text"))

        elif method == "reload_interface":
            return await self.reload_interface(_param(params, "name"))

        elif method == "up_interface":
            return await self.up_interface(_param(params, "name"))

        elif method == "down_interface":
            return await self.down_interface(_param(params, "name"))

        elif method == "restart_interface":
            return await self.restart_interface(_param(params, "name"))

        elif method == "get_interface_status":
            return await self.get_interface_status(_param(params, "name"))

        raise ValidationError(f"unknown method: {method}")


def _param(params: dict, name: str) -> str:
    value = params.get(name)
    if not isinstance(value, str):
        raise ValidationError(f"missing or non-string parameter: {name}")
    return value


def _audit_params(params: Any) -> dict:
    if not isinstance(params, dict):
        return {}
    # keep the record flat and JSON-safe; redaction happens in the sink
    reserved = {"method", "outcome", "action", "level", "timestamp", "error", "code"}
    return {
        k: v if isinstance(v, (str, int, float, bool, type(None), list, dict)) else json.dumps(v, default=str)
        for k, v in params.items()
        if isinstance(k, str) and k not in reserved
    }
