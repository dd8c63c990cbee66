"""
Tests for variable resolution against an ExecutionContext.
"""

from flowcore.graph.context import ExecutionContext, NodeResult, NodeStatus
from flowcore.graph.variables import (
    decode_json,
    get_path,
    interpolate,
    resolve_reference,
    resolve_value,
    resolve_variable,
    stringify,
)


def _context_with(outputs: dict, input_data=None, status=NodeStatus.COMPLETED) -> ExecutionContext:
    context = ExecutionContext(input_data=input_data)
    for node_id, output in outputs.items():
        result = NodeResult(node_id=node_id, type="llm", label=node_id)
        result.finish(status, output)
        context.record(result)
    return context


class TestResolveReference:
    def test_input_aliases(self):
        context = _context_with({}, input_data={"ticket": "printer"})
        assert resolve_reference("input", context) == {"ticket": "printer"}
        assert resolve_reference("__input__", context) == {"ticket": "printer"}
        assert resolve_reference("input.ticket", context) == "printer"

    def test_whole_node_output(self):
        context = _context_with({"llm1": "summary text"})
        assert resolve_reference("llm1", context) == "summary text"

    def test_nested_field_and_list_index(self):
        context = _context_with({"fetch": {"data": {"items": [{"name": "a"}, {"name": "b"}]}}})
        assert resolve_reference("fetch.data.items.1.name", context) == "b"

    def test_dives_through_wrapper_key(self):
        context = _context_with({"agent": {"output": {"priority": "high"}}})
        assert resolve_reference("agent.priority", context) == "high"

    def test_json_text_output_is_walked(self):
        context = _context_with({"code": '{"score": 7}'})
        assert resolve_reference("code.score", context) == 7

    def test_missing_node_resolves_to_none(self):
        context = _context_with({})
        assert resolve_reference("ghost.field", context) is None

    def test_missing_field_resolves_to_none(self):
        context = _context_with({"n1": {"a": 1}})
        assert resolve_reference("n1.b", context) is None

    def test_failed_node_resolves_to_none(self):
        context = _context_with({"n1": {"a": 1}}, status=NodeStatus.FAILED)
        assert resolve_reference("n1", context) is None

    def test_dotted_node_id_wins_longest_prefix(self):
        context = _context_with({"step.one": {"value": 3}})
        assert resolve_reference("step.one.value", context) == 3

    def test_named_variable(self):
        context = _context_with({})
        context.bind_variable("customer", {"name": "Ada"})
        assert resolve_reference("customer", context) == {"name": "Ada"}
        assert resolve_reference("customer.name", context) == "Ada"

    def test_resolution_is_read_only(self):
        context = _context_with({"n1": {"a": [1, 2]}})
        first = resolve_reference("n1.a", context)
        second = resolve_reference("n1.a", context)
        assert first == second == [1, 2]
        assert len(context.results) == 1


class TestInterpolate:
    def test_replaces_every_reference(self):
        context = _context_with({"n1": {"name": "Ada"}}, input_data="hi")
        assert interpolate("{{input}}, {{ n1.name }}!", context) == "hi, Ada!"

    def test_gaps_become_empty(self):
        context = _context_with({})
        assert interpolate("[{{missing}}]", context) == "[]"

    def test_objects_are_json_encoded(self):
        context = _context_with({"n1": {"a": 1}})
        assert interpolate("data={{n1}}", context) == 'data={"a": 1}'

    def test_system_timestamp(self):
        context = _context_with({})
        assert interpolate("{{sys.timestamp}}", context).isdigit()


class TestResolveValue:
    def test_single_reference_keeps_type(self):
        context = _context_with({"n1": {"items": [1, 2, 3]}})
        assert resolve_value("{{n1.items}}", context) == [1, 2, 3]

    def test_containers_resolve_elementwise(self):
        context = _context_with({"n1": "x"}, input_data=5)
        value = {"a": "{{n1}}", "b": ["{{input}}", "lit"], "c": 3}
        assert resolve_value(value, context) == {"a": "x", "b": [5, "lit"], "c": 3}

    def test_resolve_variable_accepts_bare_and_braced(self):
        context = _context_with({"n1": {"text": "ok"}})
        assert resolve_variable("n1.text", context) == "ok"
        assert resolve_variable("{{n1.text}}", context) == "ok"
        assert resolve_variable(None, context) is None


def test_helpers():
    assert decode_json('{"a": 1}') == {"a": 1}
    assert decode_json("plain") == "plain"
    assert decode_json("{broken") == "{broken"
    assert get_path({"result": {"x": 1}}, ["x"]) == 1
    assert stringify(None) == ""
    assert stringify(True) == "true"
    assert stringify({"a": "é"}) == '{"a": "é"}'
