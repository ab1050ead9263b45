from __future__ import annotations

from typing import TYPE_CHECKING, Any, Optional

if TYPE_CHECKING:
    from routeaudit.config import ConfigIssue
    from routeaudit.orchestrator.context import AuditContext, Phase


class AuditError(Exception):
    """Base class for routeaudit errors.

    `context` carries extra debug values; it is logged, never rendered into reports.
    """

    def __init__(self, message: str = "Audit failed", context: Optional[dict[str, Any]] = None):
        self.message = message
        self.context = context or {}
        super().__init__(message)


class PhaseError(AuditError):
    """A fatal phase failed. The original exception is chained as __cause__."""

    def __init__(self, phase: "Phase", error: BaseException, audit_context: "AuditContext"):
        super().__init__(f"{phase.value} phase failed: {error}", {"phase": phase.value})
        self.phase = phase
        self.error = error
        self.audit_context = audit_context


class AuditCancelledError(AuditError):
    def __init__(self, phase: "Phase"):
        super().__init__(f"Audit cancelled before {phase.value} phase", {"phase": phase.value})
        self.phase = phase


class ConfigValidationError(AuditError):
    def __init__(self, message: str, issues: list["ConfigIssue"]):
        super().__init__(message, {"issues": [i.field for i in issues]})
        self.issues = issues


class CacheError(AuditError):
    pass
