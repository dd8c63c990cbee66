"""
Tests for WorkflowDefinition parsing, validation and reachability.
"""

import pytest

from flowcore.errors import WorkflowError
from flowcore.graph.context import ExecutionContext, NodeResult, NodeStatus
from flowcore.graph.definition import EdgeSpec, NodeSpec, WorkflowDefinition


def _definition(nodes, edges=()):
    return WorkflowDefinition.model_validate({"nodes": list(nodes), "edges": list(edges)})


class TestParsing:
    def test_camel_case_aliases(self):
        definition = _definition(
            [
                {"id": "start", "type": "start"},
                {"id": "loop", "type": "loop"},
                {"id": "body", "type": "message", "parentId": "loop"},
            ],
            [{"source": "start", "target": "loop", "sourceHandle": "true"}],
        )
        assert definition.get_node("body").parent_id == "loop"
        assert definition.edges[0].source_handle == "true"

    def test_edge_id_defaults_from_endpoints(self):
        edge = EdgeSpec(source="a", target="b", source_handle="false")
        assert edge.id == "a:false->b"

    def test_label_falls_back_to_type(self):
        assert NodeSpec(id="n", type="llm").label == "llm"
        assert NodeSpec(id="n", type="llm", data={"label": "Summarise"}).label == "Summarise"


class TestValidation:
    def test_valid_graph_has_no_errors(self):
        definition = _definition(
            [{"id": "start", "type": "start"}, {"id": "out", "type": "output"}],
            [{"source": "start", "target": "out"}],
        )
        assert definition.validate() == []

    def test_duplicate_ids(self):
        definition = _definition([{"id": "start", "type": "start"}, {"id": "start", "type": "llm"}])
        assert any("Duplicate node ID" in e for e in definition.validate())

    def test_missing_trigger(self):
        definition = _definition([{"id": "a", "type": "llm"}])
        assert any("no trigger" in e for e in definition.validate())
        assert definition.validate(require_trigger=False) == []

    def test_dangling_edge(self):
        definition = _definition(
            [{"id": "start", "type": "start"}],
            [{"source": "start", "target": "nowhere"}],
        )
        assert any("missing target 'nowhere'" in e for e in definition.validate())

    def test_unknown_type(self):
        definition = _definition([{"id": "start", "type": "start"}, {"id": "x", "type": "magic"}])
        assert any("unknown type 'magic'" in e for e in definition.validate())

    def test_cycle(self):
        definition = _definition(
            [
                {"id": "start", "type": "start"},
                {"id": "a", "type": "llm"},
                {"id": "b", "type": "llm"},
            ],
            [
                {"source": "start", "target": "a"},
                {"source": "a", "target": "b"},
                {"source": "b", "target": "a"},
            ],
        )
        errors = definition.validate()
        assert any(e.startswith("Cycle detected") for e in errors)

    def test_edge_crossing_scope(self):
        definition = _definition(
            [
                {"id": "start", "type": "start"},
                {"id": "loop", "type": "loop"},
                {"id": "inner", "type": "message", "parentId": "loop"},
            ],
            [{"source": "start", "target": "inner"}],
        )
        assert any("crosses sub-graph boundary" in e for e in definition.validate())

    def test_parent_must_be_container(self):
        definition = _definition(
            [
                {"id": "start", "type": "start"},
                {"id": "child", "type": "message", "parentId": "start"},
            ]
        )
        assert any("cannot own a sub-graph" in e for e in definition.validate())


class TestReachability:
    def test_nodes_without_path_from_trigger_are_unreachable(self):
        definition = _definition(
            [
                {"id": "start", "type": "start"},
                {"id": "a", "type": "llm"},
                {"id": "island", "type": "llm"},
                {"id": "after_island", "type": "output"},
            ],
            [
                {"source": "start", "target": "a"},
                {"source": "island", "target": "after_island"},
            ],
        )
        assert definition.reachable_nodes() == frozenset({"start", "a"})
        assert definition.unreachable_nodes() == ["island", "after_island"]

    def test_reachability_ignores_sub_graph_members(self):
        definition = _definition(
            [
                {"id": "start", "type": "start"},
                {"id": "it", "type": "iteration"},
                {"id": "body", "type": "message", "parentId": "it"},
            ],
            [{"source": "start", "target": "it"}],
        )
        assert "body" not in definition.reachable_nodes()
        assert definition.unreachable_nodes() == []

    def test_reachability_is_memoised(self):
        definition = _definition([{"id": "start", "type": "start"}])
        assert definition.reachable_nodes() is definition.reachable_nodes()


class TestSubGraph:
    def test_children_by_parent_id(self):
        definition = _definition(
            [
                {"id": "start", "type": "start"},
                {"id": "loop", "type": "loop"},
                {"id": "a", "type": "message", "parentId": "loop"},
                {"id": "b", "type": "output", "parentId": "loop"},
                {"id": "outside", "type": "output"},
            ],
            [
                {"source": "start", "target": "loop"},
                {"source": "a", "target": "b"},
                {"source": "loop", "target": "outside"},
            ],
        )
        sub = definition.sub_graph("loop")
        assert [n.id for n in sub.nodes] == ["a", "b"]
        assert all(n.parent_id is None for n in sub.nodes)
        assert [(e.source, e.target) for e in sub.edges] == [("a", "b")]
        assert [n.id for n in sub.entry_nodes()] == ["a"]

    def test_inline_sub_nodes(self):
        definition = _definition(
            [
                {"id": "start", "type": "start"},
                {
                    "id": "it",
                    "type": "iteration",
                    "data": {
                        "subNodes": [{"id": "x", "type": "message"}],
                        "subEdges": [],
                    },
                },
            ]
        )
        sub = definition.sub_graph("it")
        assert [n.id for n in sub.nodes] == ["x"]

    def test_no_children_means_no_sub_graph(self):
        definition = _definition(
            [{"id": "start", "type": "start"}, {"id": "it", "type": "iteration"}]
        )
        assert definition.sub_graph("it") is None


class TestExecutionContext:
    def test_results_are_write_once(self):
        context = ExecutionContext()
        result = NodeResult(node_id="n1", type="llm", label="n1")
        result.finish(NodeStatus.COMPLETED, "x")
        context.record(result)

        again = NodeResult(node_id="n1", type="llm", label="n1")
        again.finish(NodeStatus.COMPLETED, "y")
        with pytest.raises(WorkflowError):
            context.record(again)
        assert context.completed_output("n1") == "x"

    def test_non_terminal_status_rejected(self):
        context = ExecutionContext()
        with pytest.raises(WorkflowError):
            context.record(NodeResult(node_id="n1", type="llm", label="n1"))

    def test_wire_shape_is_camel_case(self):
        result = NodeResult(node_id="n1", type="llm", label="Summarise")
        result.finish(NodeStatus.FAILED, error="boom")
        data = result.to_dict()
        assert data["nodeId"] == "n1"
        assert data["status"] == "failed"
        assert data["error"] == "boom"
        assert data["duration"] >= 0
