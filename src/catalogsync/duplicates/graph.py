"""SimilarityGraph — undirected, threshold-gated similarity edges between points."""

from __future__ import annotations

import rustworkx


class SimilarityGraph:
    """Undirected graph over point ids with one similarity score per pair.

    Wraps a ``rustworkx.PyGraph`` with string-keyed nodes.  Each unordered
    pair keeps the first score measured for it; neighbor queries usually
    see a pair twice (A finds B, B finds A) and both must count as one
    edge.  Groups are connected components, so chains merge transitively.
    """

    def __init__(self) -> None:
        self._graph: rustworkx.PyGraph = rustworkx.PyGraph(multigraph=False)
        self._id_to_idx: dict[str, int] = {}
        self._idx_to_id: dict[int, str] = {}

    # ------------------------------------------------------------------
    # Nodes
    # ------------------------------------------------------------------

    def add_node(self, point_id: str) -> None:
        if point_id not in self._id_to_idx:
            idx = self._graph.add_node(point_id)
            self._id_to_idx[point_id] = idx
            self._idx_to_id[idx] = point_id

    def has_node(self, point_id: str) -> bool:
        return point_id in self._id_to_idx

    def nodes(self) -> list[str]:
        return list(self._id_to_idx)

    # ------------------------------------------------------------------
    # Edges
    # ------------------------------------------------------------------

    def add_edge(self, a: str, b: str, score: float) -> bool:
        """Connect *a* and *b*.  Returns ``False`` for self-loops and pairs already measured."""
        if a == b:
            return False
        self.add_node(a)
        self.add_node(b)
        a_idx, b_idx = self._id_to_idx[a], self._id_to_idx[b]
        if self._graph.has_edge(a_idx, b_idx):
            return False
        self._graph.add_edge(a_idx, b_idx, float(score))
        return True

    def has_edge(self, a: str, b: str) -> bool:
        if a not in self._id_to_idx or b not in self._id_to_idx:
            return False
        return self._graph.has_edge(self._id_to_idx[a], self._id_to_idx[b])

    def score(self, a: str, b: str) -> float:
        """Return the score of the pair.  Raises ``KeyError`` if it was never measured."""
        if not self.has_edge(a, b):
            msg = f"No edge between {a!r} and {b!r}"
            raise KeyError(msg)
        return float(self._graph.get_edge_data(self._id_to_idx[a], self._id_to_idx[b]))

    def edge_count(self) -> int:
        return self._graph.num_edges()

    def edges_within(self, members: set[str]) -> list[tuple[str, str, float]]:
        """Edges with both endpoints in *members*, as ``(a, b, score)`` with ``a < b``.

        Works on the induced subgraph, so the cost follows the members' own
        edges rather than the whole graph.  Unknown ids are ignored.
        """
        sub = self._graph.subgraph([self._id_to_idx[m] for m in members if m in self._id_to_idx])
        edges: list[tuple[str, str, float]] = []
        for a_idx, b_idx, weight in sub.weighted_edge_list():
            a, b = sub[a_idx], sub[b_idx]
            edges.append((min(a, b), max(a, b), float(weight)))
        edges.sort()
        return edges

    # ------------------------------------------------------------------
    # Components
    # ------------------------------------------------------------------

    def components(self, *, min_size: int = 2) -> list[set[str]]:
        """Connected components with at least *min_size* members."""
        return [
            {self._idx_to_id[idx] for idx in comp}
            for comp in rustworkx.connected_components(self._graph)
            if len(comp) >= min_size
        ]

    def __len__(self) -> int:
        return len(self._id_to_idx)
