"""Atomic apply engine - validated, locked, verified config swaps.

Transaction:
1. VALIDATE - parse and semantic checks, no side effects
2. LOCK     - exclusive per-interface lease
3. STAGE    - candidate written and fsynced next to the live file
4. SWAP     - live -> .bak, staged -> live
5. SYNC     - push into the running interface
6. VERIFY   - read back listen port and peer set
7. COMMIT   - drop the backup

A failure in SYNC or VERIFY restores the backup and re-syncs it so disk
and kernel agree again. Without a previous file, a config that reached
the interface is replaced by an empty one. A failure while rolling back is escalated as
RollbackError.
"""
import logging
import os
import time
from contextlib import AsyncExitStack, contextmanager
from pathlib import Path
from typing import Iterator, Optional

from ..config_model import ConfigParser, ConfigSummary, ConfigValidator, validate_interface_name
from ..errors import (
    BridgeError,
    ExternalToolError,
    RollbackError,
    StorageError,
    VerificationError,
)
from ..settings import BridgeSettings
from ..utils.audit_log import AuditSink
from ..utils.files import fsync_dir, remove_quietly, stage_file
from ..utils.logging_config import timed, timed_section
from .locks import InterfaceLockManager
from .schema import ApplyResult, ApplyStage, StageResult
from .wireguard import LiveState, Reconciler

logger = logging.getLogger(__name__)

BACKUP_SUFFIX = ".bak"


class AtomicApplyEngine:
    """Apply configuration text to a live interface, all or nothing."""

    def __init__(
        self,
        settings: BridgeSettings,
        reconciler: Reconciler,
        audit: AuditSink,
        locks: Optional[InterfaceLockManager] = None,
    ):
        """
        Initialize the engine.

        Args:
            settings: Paths and strictness
            reconciler: Pushes config into the interface and reads it back
            audit: Audit sink for start/failure/rollback/success records
            locks: Lock manager (default: file locks under settings.lock_dir)
        """
        self.config_dir = settings.config_dir
        self.reconciler = reconciler
        self.audit = audit
        self.parser = ConfigParser(strict=settings.strict)
        self.validator = ConfigValidator(strict=settings.strict)
        self.locks = locks or InterfaceLockManager(settings.lock_dir, settings.lock_timeout)

    def live_path(self, interface: str) -> Path:
        return self.config_dir / f"{interface}.conf"

    def backup_path(self, interface: str) -> Path:
        return self.config_dir / f"{interface}.conf{BACKUP_SUFFIX}"

    def validate(self, interface: str, text: str) -> ConfigSummary:
        """Parse and validate a candidate. Raises ValidationError/ConflictError."""
        validate_interface_name(interface)
        summary = self.parser.parse(text)
        self.validator.validate(summary)
        return summary

    @timed("apply")
    async def apply(self, interface: str, text: str) -> ApplyResult:
        """
        Apply configuration text to an interface.

        Args:
            interface: Interface name (also the config file stem)
            text: Complete configuration text

        Returns:
            ApplyResult with per-stage timings

        Raises:
            ValidationError, ConflictError: Invalid candidate, nothing touched
            LockError: Interface busy past the lock timeout
            StorageError: Staging or swap failed (live file untouched/restored)
            ExternalToolError, VerificationError: Sync or verify failed,
                previous configuration restored
            RollbackError: Restoring the previous configuration failed
        """
        result = ApplyResult(interface=interface)
        self.audit.emit("apply", "start", iface=interface)

        try:
            with self._stage(result, ApplyStage.VALIDATE):
                summary = self.validate(interface, text)

            async with AsyncExitStack() as stack:
                with self._stage(result, ApplyStage.LOCK):
                    await stack.enter_async_context(self.locks.acquire(interface))
                await self._transaction(interface, text, summary, result)

        except BridgeError as e:
            result.error = str(e)
            if isinstance(e, RollbackError):
                if not any(s.stage == ApplyStage.ROLLBACK for s in result.stages):
                    self.audit.emit(
                        "apply", "fatal",
                        level=logging.CRITICAL,
                        iface=interface,
                        step=self._step_name(result),
                        error=str(e),
                    )
            elif not result.rolled_back:
                self.audit.emit(
                    "apply", "failure",
                    iface=interface,
                    step=self._step_name(result),
                    error=str(e),
                )
            raise

        result.success = True
        self.audit.emit("apply", "success", iface=interface)
        logger.info(f"Applied configuration to {interface}")
        return result

    async def _transaction(
        self,
        interface: str,
        text: str,
        summary: ConfigSummary,
        result: ApplyResult,
    ) -> None:
        live = self.live_path(interface)
        backup = self.backup_path(interface)
        staged: Optional[Path] = None

        try:
            with self._stage(result, ApplyStage.STAGE):
                try:
                    self.config_dir.mkdir(parents=True, exist_ok=True, mode=0o700)
                    staged = stage_file(self.config_dir, f".{interface}.", text.encode())
                except OSError as e:
                    raise StorageError(f"failed to stage {interface}: {e}")

            with self._stage(result, ApplyStage.SWAP):
                result.had_previous = self._swap(live, backup, staged)
                staged = None

            try:
                with self._stage(result, ApplyStage.SYNC):
                    async with timed_section("syncconf", interface=interface):
                        await self.reconciler.syncconf(interface, summary)

                with self._stage(result, ApplyStage.VERIFY):
                    state = await self.reconciler.show(interface)
                    self._verify(summary, state)
            except (ExternalToolError, VerificationError) as e:
                await self._rollback(interface, result, e)
                raise

            with self._stage(result, ApplyStage.COMMIT):
                remove_quietly(backup)
        finally:
            if staged is not None:
                remove_quietly(staged)

    def _swap(self, live: Path, backup: Path, staged: Path) -> bool:
        """
        Move live aside and the staged file into place.

        Returns:
            Whether a previous live file existed (and is now the backup)
        """
        had_previous = True
        try:
            os.replace(live, backup)
        except FileNotFoundError:
            had_previous = False
        except OSError as e:
            raise StorageError(f"failed to back up {live.name}: {e}")

        try:
            os.replace(staged, live)
        except OSError as e:
            if had_previous:
                try:
                    os.replace(backup, live)
                except OSError as restore_error:
                    raise RollbackError(
                        f"failed to restore {live.name} after swap failure: {restore_error}"
                    ) from e
            raise StorageError(f"failed to install {live.name}: {e}")

        try:
            fsync_dir(live.parent)
        except OSError as e:
            logger.warning(f"fsync of {live.parent} failed: {e}")
        return had_previous

    def _verify(self, summary: ConfigSummary, state: LiveState) -> None:
        port = summary.listen_port
        if port:
            expected = int(port)
            if state.listen_port != expected:
                raise VerificationError(
                    f"listen port {state.listen_port} != expected {expected}"
                )

        expected_peers = set(summary.peer_keys)
        missing = expected_peers - state.peers
        extra = state.peers - expected_peers
        if missing or extra:
            raise VerificationError(
                f"peer set mismatch: {len(missing)} missing, {len(extra)} unexpected"
            )

    async def _rollback(self, interface: str, result: ApplyResult, cause: BridgeError) -> None:
        """Restore the backup and re-sync it; escalate if that fails."""
        step = self._step_name(result)
        self.audit.emit("apply", "failure", iface=interface, step=step, error=str(cause))
        logger.warning(f"Rolling back {interface} after {step} failure: {cause}")

        live = self.live_path(interface)
        backup = self.backup_path(interface)
        started = time.perf_counter()

        try:
            remove_quietly(live)
            if result.had_previous:
                os.replace(backup, live)
                fsync_dir(live.parent)
                restored = ConfigParser(strict=False).parse(live.read_text())
                await self.reconciler.syncconf(interface, restored)
            else:
                fsync_dir(live.parent)
                if self._stage_passed(result, ApplyStage.SYNC):
                    # No previous file: leave the interface without peers
                    await self.reconciler.syncconf(interface, ConfigSummary())
        except (OSError, BridgeError) as e:
            result.stages.append(StageResult(
                stage=ApplyStage.ROLLBACK,
                success=False,
                duration_ms=(time.perf_counter() - started) * 1000,
                error=str(e),
            ))
            logger.critical(f"Rollback of {interface} FAILED, disk and live state may differ: {e}")
            self.audit.emit(
                "apply", "fatal",
                level=logging.CRITICAL,
                iface=interface,
                step=step,
                error=str(cause),
                rollback_error=str(e),
            )
            raise RollbackError(
                f"rollback of {interface} failed after {step} failure: {e}",
                details=str(cause),
            ) from e

        result.stages.append(StageResult(
            stage=ApplyStage.ROLLBACK,
            success=True,
            duration_ms=(time.perf_counter() - started) * 1000,
        ))
        result.rolled_back = True
        self.audit.emit(
            "apply", "rollback",
            iface=interface,
            step=step,
            error=str(cause),
            restored=result.had_previous,
        )

    @staticmethod
    def _stage_passed(result: ApplyResult, stage: ApplyStage) -> bool:
        return any(s.stage == stage and s.success for s in result.stages)

    @staticmethod
    def _step_name(result: ApplyResult) -> str:
        stage = result.failed_stage
        return stage.value if stage else "unknown"

    @contextmanager
    def _stage(self, result: ApplyResult, stage: ApplyStage) -> Iterator[None]:
        started = time.perf_counter()
        try:
            yield
        except Exception as e:
            result.stages.append(StageResult(
                stage=stage,
                success=False,
                duration_ms=(time.perf_counter() - started) * 1000,
                error=str(e),
            ))
            raise
        result.stages.append(StageResult(
            stage=stage,
            success=True,
            duration_ms=(time.perf_counter() - started) * 1000,
        ))
