"""
Error taxonomy for the WBS task manager.

Every failure raised by the service layer is a WbsError subclass carrying the
JSON-RPC error code, a short machine-readable kind, and whether the caller may
safely retry (nothing was changed) or not (state unknown).
"""

from typing import Any, Dict, Optional


class WbsError(Exception):
    """Base class for all domain errors."""

    code = -32603
    kind = "internal"
    retryable = False

    def __init__(self, message: str, **details: Any):
        super().__init__(message)
        self.message = message
        self.details = details

    def to_error_data(self) -> Dict[str, Any]:
        data = {"kind": self.kind, "retryable": self.retryable}
        data.update(self.details)
        return data


class NotFoundError(WbsError):
    """Referenced task, artifact or dependency does not exist."""

    code = -32004
    kind = "not_found"
    retryable = True

    def __init__(self, entity: str, entity_id: Optional[str], message: Optional[str] = None):
        super().__init__(
            message or f"{entity} not found: {entity_id}",
            entity=entity,
            id=entity_id,
        )
        self.entity = entity
        self.entity_id = entity_id


class ArtifactNotFoundError(NotFoundError):
    """An association referenced an artifact that does not exist."""

    kind = "integrity"

    def __init__(self, artifact_id: str):
        super().__init__("artifact", artifact_id, f"Artifact not found: {artifact_id}")


class VersionConflictError(WbsError):
    """Caller's expected version does not match the stored version."""

    code = -32009
    kind = "version_conflict"
    retryable = True

    def __init__(self, entity_id: str, expected: Optional[int], actual: Optional[int]):
        super().__init__(
            f"Version mismatch for {entity_id}: expected {expected}, found {actual}",
            id=entity_id,
            expected=expected,
            actual=actual,
        )
        self.expected = expected
        self.actual = actual


class ValidationError(WbsError):
    """Input rejected before any mutation."""

    code = -32602
    kind = "validation"
    retryable = True

    def __init__(self, message: str, reason: str = "invalid", **details: Any):
        super().__init__(message, reason=reason, **details)
        self.reason = reason


class StoreError(WbsError):
    """Underlying database failure. State may be inconsistent."""

    code = -32603
    kind = "internal"
    retryable = False
