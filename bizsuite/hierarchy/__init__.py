from bizsuite.hierarchy.errors import CorruptHierarchyError, CycleError, HierarchyError
from bizsuite.hierarchy.guard import (
    DEFAULT_MAX_DEPTH,
    ancestors,
    dependency_path,
    descendants,
    set_parent,
    would_create_cycle,
    would_create_dependency_cycle,
)

__all__ = [
    "DEFAULT_MAX_DEPTH",
    "HierarchyError",
    "CycleError",
    "CorruptHierarchyError",
    "would_create_cycle",
    "set_parent",
    "ancestors",
    "descendants",
    "dependency_path",
    "would_create_dependency_cycle",
]
