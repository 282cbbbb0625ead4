"""Tests for flow graph analysis."""

from waveflow.graph import (
    FlowGraph,
    incoming_connectors,
    outgoing_connectors,
    topological_order,
    upstream_node_ids,
    validate_flow,
)


class TestTopologicalOrder:
    def test_every_connector_goes_forward(self, make_flow) -> None:
        flow = make_flow(
            [("d", "r", "d"), ("c", "r", "c"), ("b", "r", "b"), ("a", "r", "a")],
            [("1", "a", "b"), ("2", "b", "c"), ("3", "a", "d"), ("4", "d", "c")],
        )
        order = [n.id for n in topological_order(flow)]
        position = {node_id: i for i, node_id in enumerate(order)}
        for connector in flow.connectors:
            assert position[connector.source_node_id] < position[connector.target_node_id]
        assert sorted(order) == ["a", "b", "c", "d"]

    def test_independent_nodes_keep_flow_order(self, make_flow) -> None:
        flow = make_flow([("x", "r", "x"), ("y", "r", "y"), ("z", "r", "z")])
        assert [n.id for n in topological_order(flow)] == ["x", "y", "z"]

    def test_cycle_returns_none(self, make_flow) -> None:
        flow = make_flow(
            [("a", "r", "a"), ("b", "r", "b"), ("c", "r", "c")],
            [("1", "a", "b"), ("2", "b", "c"), ("3", "c", "a")],
        )
        assert topological_order(flow) is None


class TestAdjacency:
    def test_incoming_and_outgoing(self, make_flow) -> None:
        flow = make_flow(
            [("a", "r", "a"), ("b", "r", "b"), ("c", "r", "c")],
            [("1", "a", "c"), ("2", "b", "c")],
        )
        assert [c.id for c in incoming_connectors(flow, "c")] == ["1", "2"]
        assert [c.id for c in outgoing_connectors(flow, "a")] == ["1"]
        assert incoming_connectors(flow, "a") == []

    def test_upstream_is_transitive_and_excludes_self(self, make_flow) -> None:
        flow = make_flow(
            [("a", "r", "a"), ("b", "r", "b"), ("c", "r", "c"), ("x", "r", "x")],
            [("1", "a", "b"), ("2", "b", "c")],
        )
        assert upstream_node_ids(flow, "c") == {"a", "b"}
        assert upstream_node_ids(flow, "a") == frozenset()
        assert upstream_node_ids(flow, "x") == frozenset()

    def test_upstream_aliases(self, make_flow) -> None:
        flow = make_flow(
            [("a", "r", "Auth"), ("b", "r", "user")], [("1", "a", "b")]
        )
        assert FlowGraph(flow).upstream_aliases("b") == {"Auth"}

    def test_starting_nodes(self, make_flow) -> None:
        flow = make_flow(
            [("a", "r", "a"), ("b", "r", "b"), ("c", "r", "c")], [("1", "a", "b")]
        )
        assert [n.id for n in FlowGraph(flow).starting_nodes()] == ["a", "c"]


class TestValidateFlow:
    def test_valid_flow(self, make_flow) -> None:
        flow = make_flow([("a", "r", "a"), ("b", "r", "b")], [("1", "a", "b")])
        assert validate_flow(flow) == []

    def test_empty_flow(self, make_flow) -> None:
        assert validate_flow(make_flow([])) == ["Flow must have at least one node"]

    def test_duplicate_alias_case_insensitive(self, make_flow) -> None:
        flow = make_flow([("a", "r", "User"), ("b", "r", "user")])
        assert validate_flow(flow) == ["Duplicate alias: user"]

    def test_dangling_and_self_connectors(self, make_flow) -> None:
        flow = make_flow(
            [("a", "r", "a")],
            [("1", "a", "ghost"), ("2", "a", "a")],
        )
        errors = validate_flow(flow)
        assert "Connector references non-existent target node: ghost" in errors
        assert "Connector cannot reference the same node" in errors
        assert "Flow contains a cycle (circular dependency)" in errors

    def test_duplicate_connector(self, make_flow) -> None:
        flow = make_flow(
            [("a", "r", "a"), ("b", "r", "b")], [("1", "a", "b"), ("2", "a", "b")]
        )
        assert validate_flow(flow) == ["Duplicate connector between same nodes"]

    def test_cycle_detected(self, make_flow) -> None:
        flow = make_flow(
            [("a", "r", "a"), ("b", "r", "b")], [("1", "a", "b"), ("2", "b", "a")]
        )
        assert validate_flow(flow) == ["Flow contains a cycle (circular dependency)"]
