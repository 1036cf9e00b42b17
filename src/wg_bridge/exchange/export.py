"""Export pipeline: live configuration -> signed, encrypted bundle."""
import logging
import os
import time
from pathlib import Path
from typing import Optional

from ..config_model import Manifest, compute_checksum, validate_interface_name
from ..errors import BridgeError, StorageError
from ..keyring import KeyringManager, decode_public_key, make_signature, seal
from ..settings import BUNDLE_SUFFIX, SIGNATURE_SUFFIX, BridgeSettings
from ..utils.audit_log import AuditSink
from ..utils.files import fsync_dir, remove_quietly, write_atomic
from ..utils.logging_config import timed
from . import bundle as archive

logger = logging.getLogger(__name__)

PARTIAL_SUFFIX = ".part"
MANIFEST_VERSION = 2


class ExchangeExportPipeline:
    """Packages a live configuration for one recipient."""

    def __init__(self, settings: BridgeSettings, keyring: KeyringManager, audit: AuditSink):
        self.settings = settings
        self.outbox_dir = settings.outbox_dir
        self.node_name = settings.node_name
        self.keyring = keyring
        self.audit = audit

    def _output_name(self, interface: str) -> str:
        return f"{interface}-{time.time_ns()}{BUNDLE_SUFFIX}"

    @timed("export")
    def export_bundle(
        self,
        interface: str,
        recipient: str,
        metadata: Optional[dict[str, bytes]] = None,
    ) -> Path:
        """
        Build <outbox>/<interface>-<ns>.wgx and its .sig.

        Args:
            interface: Interface whose live configuration is exported
            recipient: Recipient's base64 exchange key
            metadata: Optional auxiliary files archived under meta/

        Returns:
            Path to the bundle; the signature sits next to it

        Raises:
            ValidationError: Bad interface name, recipient key or metadata name
            StorageError: Live configuration unreadable or outbox unwritable
        """
        checksum = ""
        bundle_part: Optional[Path] = None
        sig_part: Optional[Path] = None
        try:
            validate_interface_name(interface)
            recipient_raw = decode_public_key(recipient)

            live = self.settings.live_config_path(interface)
            try:
                config = live.read_bytes()
            except OSError as e:
                raise StorageError(f"cannot read live configuration for {interface}: {e}")

            checksum = compute_checksum(config)
            manifest = Manifest(
                interface=interface,
                version=MANIFEST_VERSION,
                checksum=checksum,
                timestamp=int(time.time()),
                source=self.node_name,
            )
            sealed = seal(archive.pack(manifest, config, metadata), recipient_raw)
            signature = make_signature(self.keyring.signing_private(), sealed)

            output = self.outbox_dir / self._output_name(interface)
            sig_output = output.with_name(output.name + SIGNATURE_SUFFIX)
            bundle_part = output.with_name(output.name + PARTIAL_SUFFIX)
            sig_part = sig_output.with_name(sig_output.name + PARTIAL_SUFFIX)

            try:
                self.outbox_dir.mkdir(parents=True, exist_ok=True, mode=0o700)
                write_atomic(bundle_part, sealed)
                write_atomic(sig_part, signature)
                # Signature first so a watcher never sees an unsigned bundle
                os.replace(sig_part, sig_output)
                os.replace(bundle_part, output)
                fsync_dir(self.outbox_dir)
            except OSError as e:
                remove_quietly(sig_output, output)
                raise StorageError(f"cannot write bundle for {interface}: {e}")

        except BridgeError as e:
            if bundle_part is not None:
                remove_quietly(bundle_part, sig_part)
            self.audit.emit("export", "error", iface=interface, checksum=checksum, error=str(e))
            raise

        self.audit.emit(
            "export", "success",
            iface=interface,
            checksum=checksum,
            bundle=output.name,
            signer=self.keyring.get_signing_fingerprint(),
        )
        logger.info(f"Exported {interface} to {output}")
        return output
