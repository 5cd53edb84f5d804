"""Tests for SimilarityGraph."""

from __future__ import annotations

import pytest

from catalogsync.duplicates.graph import SimilarityGraph


class TestEdges:
    def test_add_edge_creates_nodes(self) -> None:
        g = SimilarityGraph()
        assert g.add_edge("a", "b", 0.9) is True
        assert len(g) == 2
        assert g.has_edge("a", "b")
        assert g.has_edge("b", "a")
        assert g.score("b", "a") == pytest.approx(0.9)

    def test_pair_keeps_first_score(self) -> None:
        g = SimilarityGraph()
        g.add_edge("a", "b", 0.9)
        assert g.add_edge("b", "a", 0.95) is False
        assert g.score("a", "b") == pytest.approx(0.9)
        assert g.edge_count() == 1

    def test_self_loop_ignored(self) -> None:
        g = SimilarityGraph()
        assert g.add_edge("a", "a", 1.0) is False
        assert g.edge_count() == 0

    def test_unknown_pair(self) -> None:
        g = SimilarityGraph()
        g.add_node("a")
        assert not g.has_edge("a", "z")
        with pytest.raises(KeyError):
            g.score("a", "z")

    def test_add_node_idempotent(self) -> None:
        g = SimilarityGraph()
        g.add_node("a")
        g.add_node("a")
        assert g.nodes() == ["a"]
        assert g.has_node("a")


class TestComponents:
    def test_chain_is_one_component(self) -> None:
        g = SimilarityGraph()
        g.add_edge("a", "b", 0.9)
        g.add_edge("b", "c", 0.88)
        g.add_edge("x", "y", 0.95)

        components = sorted(g.components(), key=min)
        assert components == [{"a", "b", "c"}, {"x", "y"}]

    def test_singletons_excluded(self) -> None:
        g = SimilarityGraph()
        g.add_node("lonely")
        g.add_edge("a", "b", 0.9)
        assert g.components() == [{"a", "b"}]
        assert len(g.components(min_size=1)) == 2

    def test_edges_within(self) -> None:
        g = SimilarityGraph()
        g.add_edge("c", "b", 0.8)
        g.add_edge("a", "b", 0.9)
        g.add_edge("x", "y", 0.95)

        assert g.edges_within({"a", "b", "c"}) == [
            ("a", "b", pytest.approx(0.9)),
            ("b", "c", pytest.approx(0.8)),
        ]

    def test_edges_within_subset(self) -> None:
        g = SimilarityGraph()
        g.add_edge("a", "b", 0.9)
        g.add_edge("b", "c", 0.8)
        g.add_edge("c", "d", 0.7)

        assert g.edges_within({"b", "c", "missing"}) == [("b", "c", pytest.approx(0.8))]
        assert g.edges_within({"a", "d"}) == []
        assert g.edges_within(set()) == []
