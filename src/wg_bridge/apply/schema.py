"""Stage and result types for the apply transaction."""
from dataclasses import dataclass, field
from enum import Enum
from typing import Optional


class ApplyStage(str, Enum):
    """Apply transaction stages, in execution order."""
    VALIDATE = "validate"
    LOCK = "lock"
    STAGE = "stage"
    SWAP = "swap"
    SYNC = "sync"
    VERIFY = "verify"
    COMMIT = "commit"
    ROLLBACK = "rollback"


@dataclass
class StageResult:
    """Outcome of a single stage."""
    stage: ApplyStage
    success: bool
    duration_ms: float = 0
    error: Optional[str] = None


@dataclass
class ApplyResult:
    """Outcome of one apply call."""
    interface: str
    success: bool = False
    rolled_back: bool = False
    had_previous: bool = False
    stages: list[StageResult] = field(default_factory=list)
    error: Optional[str] = None

    @property
    def failed_stage(self) -> Optional[ApplyStage]:
        for stage in self.stages:
            if not stage.success and stage.stage != ApplyStage.ROLLBACK:
                return stage.stage
        return None

    def to_dict(self) -> dict:
        """Convert to dictionary for JSON serialization."""
        return {
            "status": "ok" if self.success else "failed",
            "interface": self.interface,
            "rolled_back": self.rolled_back,
            "stages": [
                {
                    "stage": s.stage.value,
                    "success": s.success,
                    "duration_ms": round(s.duration_ms, 2),
                    "error": s.error,
                }
                for s in self.stages
            ],
            "error": self.error,
        }
