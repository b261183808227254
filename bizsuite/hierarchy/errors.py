from __future__ import annotations

from collections.abc import Hashable


class HierarchyError(Exception):
    """Base error for parent/child hierarchy validation failures."""


class CycleError(HierarchyError):
    """Raised when re-parenting a node would make it its own ancestor."""

    def __init__(self, node_id: Hashable, candidate_parent_id: Hashable) -> None:
        self.node_id = node_id
        self.candidate_parent_id = candidate_parent_id
        self.is_self_reference = node_id == candidate_parent_id
        if self.is_self_reference:
            message = f"Node '{node_id}' cannot be its own parent"
        else:
            message = f"Setting parent of '{node_id}' to '{candidate_parent_id}' would create a cycle"
        super().__init__(message)


class CorruptHierarchyError(HierarchyError):
    """Raised when stored parent links do not terminate at a root.

    This points at pre-existing data corruption, not at the caller's input.
    """

    def __init__(self, node_id: Hashable, steps: int, reason: str) -> None:
        self.node_id = node_id
        self.steps = steps
        self.reason = reason
        super().__init__(f"Hierarchy above '{node_id}' is corrupt after {steps} steps: {reason}")
