# ABOUTME: Safety checks for mutating operations in the interactive session
# ABOUTME: Read-only guard, exact-name confirmation and impact descriptions

"""Safety utilities for gating mutating operations."""

from __future__ import annotations

from dataclasses import dataclass

import structlog

logger = structlog.get_logger(__name__)

# Operations that change server state. Opening any of their flows is
# refused in read-only mode.
WRITE_OPERATIONS = frozenset(
    [
        "sync_application",
        "rollback_application",
        "terminate_operation",
        "delete_application",
        "create_application",
        "update_application",
    ]
)

_IMPACTS = {
    "sync_application": "Live resources will be changed to match the desired state in Git",
    "rollback_application": "Application will revert to a previous revision, may cause service disruption",
    "terminate_operation": "The running operation will stop and may leave resources partially applied",
    "delete_application": "Application will be deleted; with cascade, all managed resources are PERMANENTLY DELETED",
    "delete_application_orphan": "Application will be deleted; managed resources stay in the cluster unmanaged",
    "create_application": "A new application will be registered and may start deploying",
    "update_application": "Application source or destination will change on the next sync",
}


@dataclass
class OperationBlocked:
    """Result indicating an operation is blocked by session settings."""

    operation: str
    reason: str
    setting: str

    def format_message(self) -> str:
        """One-line status hint."""
        return f"{self.operation} blocked: {self.reason} (set {self.setting}=false to enable)"


def check_write_operation(read_only: bool, operation: str) -> OperationBlocked | None:
    """Check if a mutating operation is allowed.

    Args:
        read_only: Session read-only flag
        operation: Operation name

    Returns:
        OperationBlocked if blocked, None if allowed
    """
    if read_only and operation in WRITE_OPERATIONS:
        logger.info("Write operation blocked", operation=operation)
        return OperationBlocked(
            operation=operation,
            reason="session is read-only",
            setting="LAZYARGO_UI__READ_ONLY",
        )
    return None


def names_match(target: str, typed: str) -> bool:
    """Exact, case-sensitive comparison used by type-to-confirm prompts."""
    return bool(target) and typed == target


def impact_description(operation: str) -> str:
    """Get human-readable impact description for operation."""
    return _IMPACTS.get(operation, "This operation may have significant impact")
