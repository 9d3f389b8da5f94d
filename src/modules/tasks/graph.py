"""Relationship graph maintenance for parent/child and trigger edges.

Both directions of a relationship are read from the same ``task_edges`` row,
so reconciliation only ever adds or removes edges; the reverse view of each
change follows automatically.
"""

import logging
from collections import defaultdict, deque
from collections.abc import Iterable

from src.core import db_client
from src.core.errors import CircularRelationshipError
from src.core.logging import span
from src.domain.create_models import RelationshipRequest
from src.domain.task import EdgeKind, TaskEdge
from src.models.service_models import EdgeChange, ReconcileReport
from src.modules.tasks import store


logger = logging.getLogger(__name__)


class RelationshipGraph:
    """In-memory adjacency of task edges keyed by task id."""

    def __init__(self, edges: Iterable[TaskEdge] = ()) -> None:
        self._out: dict[EdgeKind, defaultdict[str, set[str]]] = {kind: defaultdict(set) for kind in EdgeKind}
        self._in: dict[EdgeKind, defaultdict[str, set[str]]] = {kind: defaultdict(set) for kind in EdgeKind}
        for edge in edges:
            self.add(edge)

    def add(self, edge: TaskEdge) -> None:
        self._out[edge.kind][edge.source_id].add(edge.target_id)
        self._in[edge.kind][edge.target_id].add(edge.source_id)

    def discard(self, edge: TaskEdge) -> None:
        self._out[edge.kind][edge.source_id].discard(edge.target_id)
        self._in[edge.kind][edge.target_id].discard(edge.source_id)

    def __contains__(self, edge: object) -> bool:
        return isinstance(edge, TaskEdge) and edge.target_id in self._out[edge.kind].get(edge.source_id, ())

    def edges_of(self, task_id: str) -> set[TaskEdge]:
        """Every edge with ``task_id`` at either end."""
        edges = set()
        for kind in EdgeKind:
            edges.update(TaskEdge(kind=kind, source_id=task_id, target_id=t) for t in self._out[kind].get(task_id, ()))
            edges.update(TaskEdge(kind=kind, source_id=s, target_id=task_id) for s in self._in[kind].get(task_id, ()))
        return edges

    def parents_of(self, task_id: str) -> frozenset[str]:
        return frozenset(self._in[EdgeKind.PARENT].get(task_id, ()))

    def children_of(self, task_id: str) -> frozenset[str]:
        return frozenset(self._out[EdgeKind.PARENT].get(task_id, ()))

    def triggers_of(self, task_id: str) -> frozenset[str]:
        """Tasks activated when ``task_id`` is completed."""
        return frozenset(self._out[EdgeKind.TRIGGER].get(task_id, ()))

    def triggered_by(self, task_id: str) -> frozenset[str]:
        """Tasks whose completion activates ``task_id``."""
        return frozenset(self._in[EdgeKind.TRIGGER].get(task_id, ()))

    def reaches(self, kind: EdgeKind, start: str, goal: str) -> bool:
        """Breadth-first reachability along edges of one kind."""
        seen = {start}
        queue = deque([start])
        while queue:
            node = queue.popleft()
            if node == goal:
                return True
            for nxt in self._out[kind].get(node, ()):
                if nxt not in seen:
                    seen.add(nxt)
                    queue.append(nxt)
        return False

    def would_create_cycle(self, edge: TaskEdge) -> bool:
        """Return True if adding ``edge`` closes a loop within its kind."""
        if edge.source_id == edge.target_id:
            return True
        return self.reaches(edge.kind, edge.target_id, edge.source_id)


def requested_edges(task_id: str, request: RelationshipRequest) -> set[TaskEdge]:
    """Every edge implied by a task's requested relationship sets."""
    edges = set()
    for parent_id in request.parent_task_ids:
        edges.add(TaskEdge(kind=EdgeKind.PARENT, source_id=parent_id, target_id=task_id))
    for child_id in request.child_task_ids:
        edges.add(TaskEdge(kind=EdgeKind.PARENT, source_id=task_id, target_id=child_id))
    for trigger_id in request.triggered_by_task_ids:
        edges.add(TaskEdge(kind=EdgeKind.TRIGGER, source_id=trigger_id, target_id=task_id))
    for target_id in request.triggers_task_ids:
        edges.add(TaskEdge(kind=EdgeKind.TRIGGER, source_id=task_id, target_id=target_id))
    return edges


def check_request(task_id: str | None, request: RelationshipRequest) -> None:
    """Reject self-references and parent/child overlap without touching the store."""
    both = request.parent_task_ids & request.child_task_ids
    if both:
        msg = "A task cannot be both a parent and child"
        raise CircularRelationshipError(msg, field="child_task_ids")

    if task_id is None:
        return

    if task_id in request.parent_task_ids:
        msg = "Task cannot be its own parent"
        raise CircularRelationshipError(msg, field="parent_task_ids")
    if task_id in request.child_task_ids:
        msg = "Task cannot be its own child"
        raise CircularRelationshipError(msg, field="child_task_ids")
    if task_id in request.triggered_by_task_ids or task_id in request.triggers_task_ids:
        msg = "Task cannot trigger itself"
        raise CircularRelationshipError(msg, field="triggers_task_ids")


def validate_relationships(
    task_id: str,
    request: RelationshipRequest,
    graph: RelationshipGraph,
) -> tuple[set[TaskEdge], set[TaskEdge]]:
    """Work out which edges to add and remove, rejecting any that would close a cycle.

    The graph is checked with the task's current edges already swapped for
    the requested ones, so a save that moves a task within a hierarchy is
    judged against the hierarchy it will produce.

    Returns:
        (edges to add, edges to remove)

    Raises:
        CircularRelationshipError: On self-reference, overlap, or a cycle
    """
    check_request(task_id, request)

    wanted = requested_edges(task_id, request)
    current = graph.edges_of(task_id)
    to_add = wanted - current
    to_remove = current - wanted

    for edge in to_remove:
        graph.discard(edge)
    for edge in sorted(to_add, key=lambda e: e.edge_id):
        if graph.would_create_cycle(edge):
            noun = "hierarchy" if edge.kind == EdgeKind.PARENT else "trigger chain"
            msg = f"Relationship would create a circular {noun} between {edge.source_id} and {edge.target_id}"
            raise CircularRelationshipError(msg, field="relationships")
        graph.add(edge)

    return to_add, to_remove


async def load_relationship_graph() -> RelationshipGraph:
    """Build the adjacency from every stored edge."""
    return RelationshipGraph(await store.load_graph())


async def reconcile_relationships(*, task_id: str, request: RelationshipRequest) -> ReconcileReport:
    """Make the stored edges of ``task_id`` match the requested relationship sets.

    The graph is loaded and validated in the same transaction that writes the edges.
    Referenced tasks that do not exist are skipped and reported.

    Args:
        task_id: Task whose relationships are being saved
        request: Requested parent, child, triggered-by and triggers sets

    Returns:
        ReconcileReport listing every edge change and each missing task id

    Raises:
        CircularRelationshipError: If the request is self-referential or cyclic
    """
    with span("graph.reconcile_relationships", task_id=task_id):
        report = ReconcileReport(task_id=task_id)
        missing: set[str] = set()

        async with db_client.transaction():
            graph = await load_relationship_graph()
            to_add, to_remove = validate_relationships(task_id, request, graph)

            for edge in sorted(to_remove, key=lambda e: e.edge_id):
                await store.remove_edge(edge)
                report.changes.append(
                    EdgeChange(kind=edge.kind, source_id=edge.source_id, target_id=edge.target_id, added=False)
                )

            for edge in sorted(to_add, key=lambda e: e.edge_id):
                other_id = edge.target_id if edge.source_id == task_id else edge.source_id
                if other_id in missing or await store.get_by_id(other_id) is None:
                    missing.add(other_id)
                    logger.warning(
                        "Skipping relationship to missing task",
                        extra={"task_id": task_id, "related_task_id": other_id, "kind": edge.kind},
                    )
                    continue
                await store.add_edge(edge)
                report.changes.append(
                    EdgeChange(kind=edge.kind, source_id=edge.source_id, target_id=edge.target_id, added=True)
                )

        report.missing_task_ids = sorted(missing)
        logger.info(
            "Reconciled relationships",
            extra={"task_id": task_id, "changes": len(report.changes), "missing": report.missing_task_ids},
        )
        return report
