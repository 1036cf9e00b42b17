"""Inbox ingest pipeline.

Watches the inbox for arriving bundles and processes each through:
1. SIGNATURE - sibling <bundle>.sig must exist
2. VERIFY    - signature checks out against a trusted signing key
3. DECRYPT   - open with the local exchange key
4. UNPACK    - manifest, payload and meta/ files
5. CHECKSUM  - sha256(payload) matches the manifest
6. STAGE     - write into pending/<interface>/
7. CLEANUP   - remove bundle, signature and decrypted archive

Any failure is audited and the bundle is left in place. Nothing is
returned to the watcher; outcomes are observable through the audit sink.
"""
import asyncio
import logging
from enum import Enum
from pathlib import Path
from typing import Optional

from watchdog.events import FileSystemEvent, FileSystemEventHandler
from watchdog.observers import Observer

from ..config_model import ManifestValidator
from ..errors import BridgeError, ValidationError, VerificationError
from ..keyring import KeyringManager, open_sealed, verify_signature
from ..settings import BUNDLE_SUFFIX, SIGNATURE_SUFFIX, BridgeSettings
from ..utils.audit_log import AuditSink
from ..utils.files import remove_quietly, write_atomic
from . import bundle as archive

logger = logging.getLogger(__name__)

DECRYPTED_SUFFIX = ".tar"
PENDING_CONFIG = "config.conf"
PENDING_MANIFEST = "manifest.json"
PENDING_META = "meta"


class IngestStage(str, Enum):
    SIGNATURE = "signature"
    VERIFY = "verify"
    DECRYPT = "decrypt"
    UNPACK = "unpack"
    CHECKSUM = "checksum"
    STAGE = "stage"
    CLEANUP = "cleanup"


def signature_path(bundle_path: Path) -> Path:
    return bundle_path.with_name(bundle_path.name + SIGNATURE_SUFFIX)


class InboxEventHandler(FileSystemEventHandler):
    """Routes inbox filesystem events onto the event loop."""

    def __init__(self, loop: asyncio.AbstractEventLoop, dispatch):
        super().__init__()
        self.loop = loop
        self.dispatch = dispatch

    def on_created(self, event: FileSystemEvent) -> None:
        if not event.is_directory:
            self._route(event.src_path)

    def on_moved(self, event: FileSystemEvent) -> None:
        if not event.is_directory:
            self._route(event.dest_path)

    def on_closed(self, event: FileSystemEvent) -> None:
        if not event.is_directory:
            self._route(event.src_path)

    def _route(self, raw_path) -> None:
        path = Path(str(raw_path))
        if path.name.startswith("."):
            return
        if path.name.endswith(BUNDLE_SUFFIX):
            target = path
        elif path.name.endswith(BUNDLE_SUFFIX + SIGNATURE_SUFFIX):
            # Signature landed after its bundle
            target = path.with_name(path.name[:-len(SIGNATURE_SUFFIX)])
            if not target.exists():
                return
        else:
            return
        self.loop.call_soon_threadsafe(self.dispatch, target)


class ExchangeIngestPipeline:
    """Verifies inbox bundles and stages them into the pending area."""

    def __init__(self, settings: BridgeSettings, keyring: KeyringManager, audit: AuditSink):
        """
        Initialize the pipeline.

        Args:
            settings: Inbox/pending paths, worker count, strictness
            keyring: Source of the exchange key and trusted signing keys
            audit: Receives one record per bundle outcome
        """
        self.inbox_dir = settings.inbox_dir
        self.pending_dir = settings.pending_dir
        self.workers = settings.ingest_workers
        self.keyring = keyring
        self.audit = audit
        self.manifest_validator = ManifestValidator(strict=settings.strict)

        self._queue: Optional[asyncio.Queue] = None
        self._tasks: list[asyncio.Task] = []
        self._observer: Optional[Observer] = None
        self._queued: set[Path] = set()
        self._in_flight: set[Path] = set()
        self._rerun: set[Path] = set()

    @property
    def running(self) -> bool:
        return bool(self._tasks)

    async def start(self) -> None:
        """Start workers, watch the inbox and pick up resident bundles."""
        await self.watch_inbox()
        self.ingest_existing()

    async def watch_inbox(self) -> None:
        """Ensure the inbox exists and dispatch bundles as they arrive."""
        if self.running:
            logger.warning("Inbox watcher already running")
            return

        self.inbox_dir.mkdir(parents=True, exist_ok=True, mode=0o700)
        self._queue = asyncio.Queue()
        self._tasks = [
            asyncio.create_task(self._worker(i), name=f"ingest-{i}")
            for i in range(self.workers)
        ]

        loop = asyncio.get_running_loop()
        self._observer = Observer()
        self._observer.schedule(InboxEventHandler(loop, self.enqueue), str(self.inbox_dir), recursive=False)
        self._observer.start()
        logger.info(f"Watching inbox {self.inbox_dir} with {self.workers} workers")

    async def stop(self) -> None:
        if self._observer is not None:
            self._observer.stop()
            await asyncio.to_thread(self._observer.join)
            self._observer = None

        for task in self._tasks:
            task.cancel()
        await asyncio.gather(*self._tasks, return_exceptions=True)
        self._tasks = []
        self._queue = None
        self._queued.clear()
        self._rerun.clear()
        logger.info("Inbox watcher stopped")

    def ingest_existing(self) -> int:
        """Queue bundles already sitting in the inbox. Returns how many."""
        count = 0
        for path in sorted(self.inbox_dir.glob(f"*{BUNDLE_SUFFIX}")):
            if path.is_file():
                self.enqueue(path)
                count += 1
        return count

    def enqueue(self, path: Path) -> None:
        if self._queue is None:
            logger.debug(f"Pipeline not running, ignoring {path.name}")
            return
        if path in self._in_flight:
            self._rerun.add(path)
            return
        if path in self._queued:
            return
        self._queued.add(path)
        self._queue.put_nowait(path)

    async def wait_idle(self) -> None:
        """Block until every queued bundle has been processed."""
        if self._queue is not None:
            await self._queue.join()

    async def _worker(self, index: int) -> None:
        assert self._queue is not None
        queue = self._queue
        while True:
            path = await queue.get()
            self._queued.discard(path)
            self._in_flight.add(path)
            try:
                await self.handle_bundle(path)
            except Exception:
                logger.exception(f"Ingest worker {index} crashed on {path.name}")
            finally:
                self._in_flight.discard(path)
                if path in self._rerun:
                    self._rerun.discard(path)
                    if path.exists():
                        self.enqueue(path)
                queue.task_done()

    async def handle_bundle(self, path: Path) -> Optional[str]:
        """
        Run one bundle through the pipeline.

        Returns:
            Interface name staged into pending, or None on failure
        """
        return await asyncio.to_thread(self._process, Path(path))

    def _process(self, path: Path) -> Optional[str]:
        if not path.exists():
            logger.debug(f"Bundle {path.name} already gone")
            return None

        sig_path = signature_path(path)
        decrypted = path.with_name(path.name + DECRYPTED_SUFFIX)
        stage = IngestStage.SIGNATURE
        try:
            if not sig_path.exists():
                raise VerificationError("missing signature")

            stage = IngestStage.VERIFY
            blob = path.read_bytes()
            signer = verify_signature(sig_path.read_bytes(), blob, self.keyring.trusted_signing_keys())

            stage = IngestStage.DECRYPT
            write_atomic(decrypted, open_sealed(blob, self.keyring.exchange_private()))

            stage = IngestStage.UNPACK
            contents = archive.unpack(decrypted, self.manifest_validator)

            stage = IngestStage.CHECKSUM
            self.manifest_validator.verify_checksum(contents.manifest, contents.config)

            stage = IngestStage.STAGE
            dest = self._stage_pending(contents)

            stage = IngestStage.CLEANUP
            remove_quietly(path, sig_path)

        except (BridgeError, OSError) as e:
            logger.warning(f"Bundle {path.name} rejected at {stage.value}: {e}")
            self.audit.emit(
                "bundle", "error",
                level=logging.WARNING,
                bundle=path.name,
                stage=stage.value,
                error=str(e),
            )
            return None
        finally:
            remove_quietly(decrypted)

        interface = contents.manifest.interface
        self.audit.emit(
            "bundle", "ready",
            bundle=path.name,
            iface=interface,
            checksum=contents.manifest.checksum.lower(),
            signer=signer,
            source=contents.manifest.source,
        )
        logger.info(f"Bundle {path.name} staged into {dest}")
        return interface

    def _stage_pending(self, contents: archive.BundleContents) -> Path:
        dest = self.pending_dir / contents.manifest.interface
        dest.mkdir(parents=True, exist_ok=True, mode=0o700)
        root = dest.resolve()

        targets = []
        for name, data in contents.meta.items():
            target = dest / PENDING_META / archive.sanitize_meta_name(name)
            if root not in target.resolve().parents:
                raise ValidationError(f"metadata path escapes pending directory: {name!r}")
            targets.append((target, data))

        write_atomic(dest / PENDING_CONFIG, contents.config)
        write_atomic(dest / PENDING_MANIFEST, contents.manifest.to_json())
        for target, data in targets:
            target.parent.mkdir(parents=True, exist_ok=True, mode=0o700)
            write_atomic(target, data)
        return dest

    def list_inbox_bundles(self) -> list[dict]:
        """
        Report on resident bundles without changing anything.

        Each entry: file, signature (bool), recipient (decryptable by this
        node), checksum (bool), and interface when decryptable.
        """
        if not self.inbox_dir.is_dir():
            return []

        trusted = self.keyring.trusted_signing_keys()
        try:
            private = self.keyring.exchange_private()
        except BridgeError:
            private = None

        results = []
        for path in sorted(self.inbox_dir.glob(f"*{BUNDLE_SUFFIX}")):
            if not path.is_file():
                continue
            info: dict = {"file": path.name, "signature": False, "recipient": False, "checksum": False}
            try:
                blob = path.read_bytes()
            except OSError as e:
                info["error"] = str(e)
                results.append(info)
                continue

            sig_path = signature_path(path)
            if sig_path.exists():
                try:
                    verify_signature(sig_path.read_bytes(), blob, trusted)
                    info["signature"] = True
                except (VerificationError, OSError):
                    pass

            if private is not None:
                try:
                    contents = archive.unpack(open_sealed(blob, private), self.manifest_validator)
                except VerificationError:
                    pass
                except ValidationError:
                    info["recipient"] = True
                else:
                    info["recipient"] = True
                    info["interface"] = contents.manifest.interface
                    try:
                        self.manifest_validator.verify_checksum(contents.manifest, contents.config)
                        info["checksum"] = True
                    except BridgeError:
                        pass
            results.append(info)
        return results
