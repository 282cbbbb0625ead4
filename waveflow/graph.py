"""Graph analysis for flows: ordering, adjacency, reachability, validation."""

from __future__ import annotations

from collections import deque

from waveflow.models import Flow, FlowConnector, FlowNode


class FlowGraph:
    """Adjacency index over a flow, built once per run.

    Lookups of incoming and outgoing connectors are O(1). Upstream sets are
    computed lazily and cached per node.
    """

    def __init__(self, flow: Flow) -> None:
        self.flow = flow
        self.nodes: dict[str, FlowNode] = {node.id: node for node in flow.nodes}
        self._incoming: dict[str, list[FlowConnector]] = {n: [] for n in self.nodes}
        self._outgoing: dict[str, list[FlowConnector]] = {n: [] for n in self.nodes}
        for connector in flow.connectors:
            self._incoming.setdefault(connector.target_node_id, []).append(connector)
            self._outgoing.setdefault(connector.source_node_id, []).append(connector)
        self._upstream: dict[str, frozenset[str]] = {}

    def incoming_connectors(self, node_id: str) -> list[FlowConnector]:
        return self._incoming.get(node_id, [])

    def outgoing_connectors(self, node_id: str) -> list[FlowConnector]:
        return self._outgoing.get(node_id, [])

    def starting_nodes(self) -> list[FlowNode]:
        """Nodes with no incoming connectors, in flow order."""
        return [n for n in self.flow.nodes if not self._incoming.get(n.id)]

    def upstream_node_ids(self, node_id: str) -> frozenset[str]:
        """All nodes with a path to ``node_id``, excluding the node itself."""
        cached = self._upstream.get(node_id)
        if cached is not None:
            return cached
        visited: set[str] = set()
        stack = [c.source_node_id for c in self.incoming_connectors(node_id)]
        while stack:
            current = stack.pop()
            if current in visited or current == node_id:
                continue
            visited.add(current)
            stack.extend(c.source_node_id for c in self.incoming_connectors(current))
        result = frozenset(visited)
        self._upstream[node_id] = result
        return result

    def upstream_aliases(self, node_id: str) -> frozenset[str]:
        return frozenset(
            self.nodes[n].alias for n in self.upstream_node_ids(node_id) if n in self.nodes
        )

    def topological_order(self) -> list[FlowNode] | None:
        """Kahn's algorithm. Returns None when the graph has a cycle."""
        in_degree = {node_id: 0 for node_id in self.nodes}
        for connector in self.flow.connectors:
            if (
                connector.target_node_id in in_degree
                and connector.source_node_id in self.nodes
            ):
                in_degree[connector.target_node_id] += 1

        queue = deque(n for n in self.nodes if in_degree[n] == 0)
        order: list[FlowNode] = []
        while queue:
            node_id = queue.popleft()
            order.append(self.nodes[node_id])
            for connector in self.outgoing_connectors(node_id):
                target = connector.target_node_id
                if target not in in_degree:
                    continue
                in_degree[target] -= 1
                if in_degree[target] == 0:
                    queue.append(target)

        if len(order) != len(self.nodes):
            return None
        return order

    def has_cycle(self) -> bool:
        return self.topological_order() is None


def validate_flow(flow: Flow) -> list[str]:
    """Return structural errors; an empty list means the flow can run."""
    errors: list[str] = []
    if not flow.nodes:
        errors.append("Flow must have at least one node")
        return errors

    seen_ids: set[str] = set()
    for node in flow.nodes:
        if node.id in seen_ids:
            errors.append(f"Duplicate node id: {node.id}")
        seen_ids.add(node.id)

    seen_aliases: dict[str, str] = {}
    for node in flow.nodes:
        key = node.alias.lower()
        if key in seen_aliases:
            errors.append(f"Duplicate alias: {node.alias}")
        else:
            seen_aliases[key] = node.id

    node_ids = {node.id for node in flow.nodes}
    seen_edges: set[tuple[str, str]] = set()
    for connector in flow.connectors:
        edge = (connector.source_node_id, connector.target_node_id)
        if edge in seen_edges:
            errors.append("Duplicate connector between same nodes")
        seen_edges.add(edge)
        if connector.source_node_id == connector.target_node_id:
            errors.append("Connector cannot reference the same node")
        if connector.source_node_id not in node_ids:
            errors.append(
                f"Connector references non-existent source node: {connector.source_node_id}"
            )
        if connector.target_node_id not in node_ids:
            errors.append(
                f"Connector references non-existent target node: {connector.target_node_id}"
            )

    if FlowGraph(flow).has_cycle():
        errors.append("Flow contains a cycle (circular dependency)")
    return errors


# --- Module-level shortcuts ---


def topological_order(flow: Flow) -> list[FlowNode] | None:
    return FlowGraph(flow).topological_order()


def incoming_connectors(flow: Flow, node_id: str) -> list[FlowConnector]:
    return FlowGraph(flow).incoming_connectors(node_id)


def outgoing_connectors(flow: Flow, node_id: str) -> list[FlowConnector]:
    return FlowGraph(flow).outgoing_connectors(node_id)


def upstream_node_ids(flow: Flow, node_id: str) -> frozenset[str]:
    return FlowGraph(flow).upstream_node_ids(node_id)
