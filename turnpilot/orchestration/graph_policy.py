from __future__ import annotations

from ..schemas.graph import AgentGraph

MAX_NODE_LATENCY_MS = 5 * 60 * 1000
MAX_NODE_RETRIES = 3


def _find_cycle(adjacency: dict[str, list[str]]) -> list[str] | None:
    visiting: set[str] = set()
    visited: set[str] = set()
    path: list[str] = []

    def visit(node_id: str) -> list[str] | None:
        if node_id in visiting:
            start = path.index(node_id)
            return path[start:] + [node_id]
        if node_id in visited:
            return None
        visiting.add(node_id)
        path.append(node_id)
        for dependency in adjacency.get(node_id, []):
            cycle = visit(dependency)
            if cycle:
                return cycle
        path.pop()
        visiting.discard(node_id)
        visited.add(node_id)
        return None

    for node_id in adjacency:
        cycle = visit(node_id)
        if cycle:
            return cycle
    return None


def validate_agent_graph(graph: AgentGraph) -> list[str]:
    """Return human readable violations; an empty list means the graph is runnable."""
    violations: list[str] = []
    ids: set[str] = set()
    for node in graph.nodes:
        if node.id in ids:
            violations.append(f"duplicate node id: {node.id}")
        ids.add(node.id)

        budget = node.budget
        if budget.max_latency_ms <= 0 or budget.max_latency_ms > MAX_NODE_LATENCY_MS:
            violations.append(f"node {node.id} has invalid max_latency_ms {budget.max_latency_ms}")
        if budget.max_retries < 0 or budget.max_retries > MAX_NODE_RETRIES:
            violations.append(f"node {node.id} has invalid max_retries {budget.max_retries}")
        if budget.max_input_tokens <= 0 or budget.max_output_tokens <= 0:
            violations.append(f"node {node.id} has non-positive token budget")

    declared: set[tuple[str, str]] = set()
    adjacency: dict[str, list[str]] = {}
    for node in graph.nodes:
        adjacency.setdefault(node.id, [])
        for dependency in node.depends_on:
            if dependency == node.id:
                violations.append(f"node {node.id} depends on itself")
                continue
            if dependency not in ids:
                violations.append(f"node {node.id} depends on unknown node {dependency}")
                continue
            declared.add((dependency, node.id))
            adjacency[node.id].append(dependency)

    edges = {(edge.source, edge.target) for edge in graph.edges}
    for source, target in sorted(edges - declared):
        violations.append(f"edge {source}->{target} has no matching depends_on")
    for source, target in sorted(declared - edges):
        violations.append(f"dependency {source}->{target} has no matching edge")

    cycle = _find_cycle(adjacency)
    if cycle:
        violations.append("cycle detected: " + " -> ".join(cycle))
    return violations


__all__ = ["MAX_NODE_LATENCY_MS", "MAX_NODE_RETRIES", "validate_agent_graph"]
