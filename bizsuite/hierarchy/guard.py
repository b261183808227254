"""Cycle-safe traversal of single-parent hierarchies.

Every function here is stateless and talks to storage only through the
collaborator callables it is given:

* ``lookup_parent(node_id)`` returns the current parent id, or ``None`` for a
  root or an unknown node.
* ``lookup_children(node_id)`` returns the ids of the direct children.
* ``apply_parent(node_id, parent_id)`` persists a new parent link.

Each traversal step performs at most one collaborator call. Callers that need
check-then-apply to be atomic must wrap the calls in their own transaction.
"""

from __future__ import annotations

from collections import deque
from collections.abc import Callable, Hashable, Iterable, Iterator
from typing import TypeVar

from bizsuite.hierarchy.errors import CorruptHierarchyError, CycleError

NodeId = TypeVar("NodeId", bound=Hashable)

DEFAULT_MAX_DEPTH = 1000


def would_create_cycle(
    node_id: NodeId,
    candidate_parent_id: NodeId | None,
    lookup_parent: Callable[[NodeId], NodeId | None],
) -> bool:
    """Return True when making ``candidate_parent_id`` the parent of ``node_id`` is unsafe.

    Walks from the candidate towards its root. Meeting ``node_id`` on the way
    means the node would become its own ancestor. A revisited node means the
    stored chain above the candidate is already cyclic, which is treated as
    unsafe as well.
    """
    if candidate_parent_id is None:
        return False
    if candidate_parent_id == node_id:
        return True

    visited: set[NodeId] = set()
    current: NodeId | None = candidate_parent_id
    while current is not None:
        if current == node_id:
            return True
        if current in visited:
            return True
        visited.add(current)
        current = lookup_parent(current)
    return False


def set_parent(
    node_id: NodeId,
    candidate_parent_id: NodeId | None,
    lookup_parent: Callable[[NodeId], NodeId | None],
    apply_parent: Callable[[NodeId, NodeId | None], None],
) -> None:
    if would_create_cycle(node_id, candidate_parent_id, lookup_parent):
        raise CycleError(node_id, candidate_parent_id)
    apply_parent(node_id, candidate_parent_id)


def ancestors(
    node_id: NodeId,
    lookup_parent: Callable[[NodeId], NodeId | None],
    max_depth: int | None = None,
) -> Iterator[NodeId]:
    """Yield the parent of ``node_id``, then the grandparent, up to the root.

    Raises CorruptHierarchyError instead of yielding a node twice, and when
    ``max_depth`` links are followed without reaching a root.
    """
    bound = DEFAULT_MAX_DEPTH if max_depth is None else max_depth
    seen: set[NodeId] = {node_id}
    steps = 0
    current = lookup_parent(node_id)
    while current is not None:
        if current in seen:
            raise CorruptHierarchyError(node_id, steps, f"'{current}' appears twice in the ancestor chain")
        if steps >= bound:
            raise CorruptHierarchyError(node_id, steps, f"no root within {bound} levels")
        seen.add(current)
        steps += 1
        yield current
        current = lookup_parent(current)


def descendants(
    node_id: NodeId,
    lookup_children: Callable[[NodeId], Iterable[NodeId]],
) -> Iterator[NodeId]:
    """Yield every node below ``node_id`` in breadth-first order, each once."""
    visited: set[NodeId] = {node_id}
    queue: deque[NodeId] = deque([node_id])
    while queue:
        current = queue.popleft()
        for child in lookup_children(current):
            if child in visited:
                continue
            visited.add(child)
            yield child
            queue.append(child)


def dependency_path(
    node_id: NodeId,
    candidate_id: NodeId,
    lookup_dependencies: Callable[[NodeId], Iterable[NodeId]],
) -> list[NodeId]:
    """Return the path ``candidate_id -> ... -> node_id`` through existing edges.

    Used for many-to-many relations such as task dependencies, where a node may
    point at several others. An empty list means no path exists, so adding the
    edge ``node_id -> candidate_id`` keeps the graph acyclic.
    """
    if candidate_id == node_id:
        return [node_id]

    came_from: dict[NodeId, NodeId | None] = {candidate_id: None}
    queue: deque[NodeId] = deque([candidate_id])
    while queue:
        current = queue.popleft()
        if current == node_id:
            path: list[NodeId] = []
            step: NodeId | None = current
            while step is not None:
                path.append(step)
                step = came_from[step]
            path.reverse()
            return path
        for neighbour in lookup_dependencies(current):
            if neighbour in came_from:
                continue
            came_from[neighbour] = current
            queue.append(neighbour)
    return []


def would_create_dependency_cycle(
    node_id: NodeId,
    candidate_id: NodeId,
    lookup_dependencies: Callable[[NodeId], Iterable[NodeId]],
) -> bool:
    return bool(dependency_path(node_id, candidate_id, lookup_dependencies))
