"""Error taxonomy shared by every component.

Each error carries a stable numeric code and a kind tag so the control
surface can report typed failures without inspecting messages.
"""
from typing import Any, Optional


class BridgeError(Exception):
    """Base class for all wg-bridge failures."""

    code = -1
    kind = "error"

    def __init__(self, message: str, details: Optional[str] = None):
        super().__init__(message)
        self.message = message
        self.details = details


class ValidationError(BridgeError):
    """Malformed or unsafe input. Raised before any mutation."""

    code = 1002
    kind = "validation"


class ConflictError(ValidationError):
    """Overlapping or duplicate peer addressing."""

    code = 1005
    kind = "conflict"


class LockError(BridgeError):
    """Interface lock could not be acquired."""

    code = 1006
    kind = "lock"


class StorageError(BridgeError):
    """Filesystem failure while staging, swapping or backing up."""

    code = 1007
    kind = "io"


class ExternalToolError(BridgeError):
    """A subprocess step failed or returned non-zero."""

    code = 1008
    kind = "external_tool"


class ToolTimeoutError(ExternalToolError):
    """A subprocess step exceeded its time budget."""

    code = 1009
    kind = "timeout"


class VerificationError(BridgeError):
    """Signature, checksum or live-state mismatch."""

    code = 1010
    kind = "verification"


class RollbackError(BridgeError):
    """Rollback itself failed; disk and live state may disagree."""

    code = 1011
    kind = "rollback_failed"


class PermissionDeniedError(BridgeError):
    code = 1003
    kind = "permission"


ERROR_MESSAGES = {
    "validation": "validation failed",
    "conflict": "address conflict",
    "lock": "interface busy",
    "io": "storage failure",
    "external_tool": "external tool failed",
    "timeout": "external tool timed out",
    "verification": "verification failed",
    "rollback_failed": "rollback failed",
    "permission": "permission denied",
}


def error_response(exc: BaseException) -> dict[str, Any]:
    """Map an exception to the wire error shape."""
    if isinstance(exc, BridgeError):
        return {
            "code": exc.code,
            "message": ERROR_MESSAGES.get(exc.kind, exc.message),
            "details": exc.details or exc.message,
        }
    if isinstance(exc, PermissionError):
        return {
            "code": PermissionDeniedError.code,
            "message": ERROR_MESSAGES["permission"],
            "details": str(exc),
        }
    return {"code": -1, "message": str(exc), "details": str(exc)}
