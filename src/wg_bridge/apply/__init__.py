"""Apply - atomic, locked, verified configuration swaps with rollback.

Usage:
    from wg_bridge.apply import AtomicApplyEngine, WireGuardTool

    engine = AtomicApplyEngine(settings, WireGuardTool(), audit)
    result = await engine.apply("wg0", text)
"""

from .engine import AtomicApplyEngine
from .locks import InterfaceLockManager
from .schema import ApplyResult, ApplyStage, StageResult
from .service import ServiceManager
from .wireguard import LiveState, Reconciler, WireGuardTool

__all__ = [
    "AtomicApplyEngine",
    "InterfaceLockManager",
    "ApplyResult",
    "ApplyStage",
    "StageResult",
    "ServiceManager",
    "LiveState",
    "Reconciler",
    "WireGuardTool",
]
