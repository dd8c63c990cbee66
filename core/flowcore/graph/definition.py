"""
Workflow Definition - the graph a run executes.

A definition is a flat list of nodes and edges. Nodes tagged with a
``parentId`` belong to the private sub-graph of a loop/iteration node and
are invisible to the outer walk; container nodes may alternatively carry
their sub-graph inline as ``data.subNodes`` / ``data.subEdges``.

Edges may carry a ``sourceHandle``. Condition nodes route through
"true"/"false" handles, classifier nodes through category keys.
"""

from collections import deque
from enum import StrEnum
from typing import Any

from pydantic import BaseModel, Field, PrivateAttr, model_validator


class NodeType(StrEnum):
    """Closed set of node kinds the engine dispatches on."""

    # Triggers
    START = "start"
    CRON_TRIGGER = "cron_trigger"
    WEBHOOK = "webhook"

    # Model calls
    LLM = "llm"
    PROCESS = "process"
    AGENT = "agent"
    QUESTION_CLASSIFIER = "question_classifier"

    # Control flow
    CONDITION = "condition"
    ITERATION = "iteration"
    LOOP = "loop"
    EXIT_LOOP = "exit_loop"

    # Side effects
    CODE = "code"
    HTTP_REQUEST = "http_request"
    NOTIFICATION = "notification"
    KNOWLEDGE_RETRIEVAL = "knowledge_retrieval"

    # Data shaping
    VARIABLE_ASSIGNMENT = "variable_assignment"
    VARIABLE_AGGREGATOR = "variable_aggregator"
    TEMPLATE_TRANSFORM = "template_transform"
    TEXT_TEMPLATE = "text_template"
    MESSAGE = "message"
    OUTPUT = "output"


TRIGGER_TYPES = frozenset({NodeType.START, NodeType.CRON_TRIGGER, NodeType.WEBHOOK})
CONTAINER_TYPES = frozenset({NodeType.ITERATION, NodeType.LOOP})


class NodeSpec(BaseModel):
    """A single typed step. ``data`` is the type-specific configuration."""

    id: str
    type: str
    data: dict[str, Any] = Field(default_factory=dict)
    parent_id: str | None = Field(default=None, alias="parentId")

    model_config = {"extra": "allow", "populate_by_name": True}

    @property
    def label(self) -> str:
        return self.data.get("label") or self.type


class EdgeSpec(BaseModel):
    """Directed connection between two nodes of the same scope."""

    id: str = ""
    source: str = Field(description="Source node ID")
    target: str = Field(description="Target node ID")
    source_handle: str | None = Field(default=None, alias="sourceHandle")

    model_config = {"extra": "allow", "populate_by_name": True}

    @model_validator(mode="after")
    def _default_id(self) -> "EdgeSpec":
        if not self.id:
            handle = f":{self.source_handle}" if self.source_handle else ""
            self.id = f"{self.source}{handle}->{self.target}"
        return self


class WorkflowDefinition(BaseModel):
    """
    Complete graph of one workflow (or of one nested scope).

    Example:
        WorkflowDefinition(
            nodes=[
                NodeSpec(id="start", type="start"),
                NodeSpec(id="check", type="condition", data={...}),
                NodeSpec(id="yes", type="output"),
            ],
            edges=[
                EdgeSpec(source="start", target="check"),
                EdgeSpec(source="check", target="yes", source_handle="true"),
            ],
        )
    """

    id: str = "workflow"
    nodes: list[NodeSpec] = Field(default_factory=list)
    edges: list[EdgeSpec] = Field(default_factory=list)

    model_config = {"extra": "allow", "populate_by_name": True}

    _reachable: frozenset[str] | None = PrivateAttr(default=None)

    # === LOOKUPS ===

    def get_node(self, node_id: str) -> NodeSpec | None:
        """Get a node by ID."""
        for node in self.nodes:
            if node.id == node_id:
                return node
        return None

    def top_level_nodes(self) -> list[NodeSpec]:
        """Nodes of this scope, excluding members of nested sub-graphs."""
        return [n for n in self.nodes if n.parent_id is None]

    def top_level_edges(self) -> list[EdgeSpec]:
        ids = {n.id for n in self.top_level_nodes()}
        return [e for e in self.edges if e.source in ids and e.target in ids]

    def get_incoming_edges(self, node_id: str) -> list[EdgeSpec]:
        return [e for e in self.edges if e.target == node_id]

    def trigger_nodes(self) -> list[NodeSpec]:
        return [n for n in self.top_level_nodes() if n.type in TRIGGER_TYPES]

    def entry_nodes(self) -> list[NodeSpec]:
        """
        Where a walk of this scope starts.

        Trigger nodes when present; otherwise (nested scopes) every
        top-level node without an inbound edge.
        """
        triggers = self.trigger_nodes()
        if triggers:
            return triggers
        targets = {e.target for e in self.top_level_edges()}
        return [n for n in self.top_level_nodes() if n.id not in targets]

    # === NESTED SCOPES ===

    def sub_graph(self, owner_id: str) -> "WorkflowDefinition | None":
        """
        Build the private definition owned by a loop/iteration node.

        Nodes tagged ``parentId == owner_id`` win over inline
        ``subNodes``/``subEdges``. Deeper descendants keep their parent
        tags so the child scope can nest again.
        """
        owner = self.get_node(owner_id)
        if owner is None:
            return None

        children = [n for n in self.nodes if n.parent_id == owner_id]
        if children:
            member_ids = {n.id for n in children}
            frontier = set(member_ids)
            while frontier:
                nested = {n.id for n in self.nodes if n.parent_id in frontier}
                frontier = nested - member_ids
                member_ids |= nested

            nodes = []
            for node in self.nodes:
                if node.id not in member_ids:
                    continue
                if node.parent_id == owner_id:
                    node = node.model_copy(update={"parent_id": None})
                nodes.append(node)
            edges = [e for e in self.edges if e.source in member_ids and e.target in member_ids]
            return WorkflowDefinition(id=f"{self.id}/{owner_id}", nodes=nodes, edges=edges)

        sub_nodes = owner.data.get("subNodes") or []
        if not sub_nodes:
            return None
        return WorkflowDefinition.model_validate(
            {
                "id": f"{self.id}/{owner_id}",
                "nodes": sub_nodes,
                "edges": owner.data.get("subEdges") or [],
            }
        )

    # === ANALYSIS ===

    def reachable_nodes(self) -> frozenset[str]:
        """
        Ids reachable from the entry nodes of this scope.

        The definition is treated as immutable once built, so the result
        is memoised on the instance.
        """
        if self._reachable is None:
            adjacency: dict[str, list[str]] = {}
            for edge in self.top_level_edges():
                adjacency.setdefault(edge.source, []).append(edge.target)

            seen: set[str] = set()
            queue = deque(n.id for n in self.entry_nodes())
            while queue:
                current = queue.popleft()
                if current in seen:
                    continue
                seen.add(current)
                queue.extend(adjacency.get(current, []))
            self._reachable = frozenset(seen)
        return self._reachable

    def unreachable_nodes(self) -> list[str]:
        reachable = self.reachable_nodes()
        return [n.id for n in self.top_level_nodes() if n.id not in reachable]

    def find_cycle(self) -> list[str] | None:
        """Return one cycle among top-level nodes as a list of ids, or None."""
        adjacency: dict[str, list[str]] = {}
        for edge in self.top_level_edges():
            adjacency.setdefault(edge.source, []).append(edge.target)

        visiting: list[str] = []
        on_stack: set[str] = set()
        done: set[str] = set()

        def visit(node_id: str) -> list[str] | None:
            visiting.append(node_id)
            on_stack.add(node_id)
            for target in adjacency.get(node_id, []):
                if target in on_stack:
                    return visiting[visiting.index(target) :] + [target]
                if target not in done:
                    cycle = visit(target)
                    if cycle:
                        return cycle
            visiting.pop()
            on_stack.discard(node_id)
            done.add(node_id)
            return None

        for node in self.top_level_nodes():
            if node.id not in done:
                cycle = visit(node.id)
                if cycle:
                    return cycle
        return None

    def validate(self, require_trigger: bool = True) -> list[str]:
        """Validate the graph structure. Returns error strings, empty when valid."""
        errors = []

        seen_ids: set[str] = set()
        for node in self.nodes:
            if node.id in seen_ids:
                errors.append(f"Duplicate node ID: '{node.id}'")
            seen_ids.add(node.id)

        valid_types = {t.value for t in NodeType}
        for node in self.nodes:
            if node.type not in valid_types:
                errors.append(f"Node '{node.id}' has unknown type '{node.type}'")

        for node in self.nodes:
            if node.parent_id is None:
                continue
            parent = self.get_node(node.parent_id)
            if parent is None:
                errors.append(f"Node '{node.id}' references missing parent '{node.parent_id}'")
            elif parent.type not in CONTAINER_TYPES:
                errors.append(
                    f"Node '{node.id}' has parent '{node.parent_id}' of type "
                    f"'{parent.type}', which cannot own a sub-graph"
                )

        scopes = {n.id: n.parent_id for n in self.nodes}
        for edge in self.edges:
            if edge.source not in scopes:
                errors.append(f"Edge '{edge.id}' references missing source '{edge.source}'")
            if edge.target not in scopes:
                errors.append(f"Edge '{edge.id}' references missing target '{edge.target}'")
            if (
                edge.source in scopes
                and edge.target in scopes
                and scopes[edge.source] != scopes[edge.target]
            ):
                errors.append(
                    f"Edge '{edge.id}' crosses sub-graph boundary "
                    f"('{edge.source}' -> '{edge.target}')"
                )

        if require_trigger and not self.trigger_nodes():
            errors.append("Workflow has no trigger node (start, cron_trigger or webhook)")

        cycle = self.find_cycle()
        if cycle:
            errors.append(f"Cycle detected: {' -> '.join(cycle)}")

        return errors
