import pytest

from forcelayout import ConfigurationError, Graph, Link, Node
from tools.graphs import (
    GENERATORS, circle_graph, generate, grid_graph, line_graph, random_graph, tree_graph,
)


def test_graph_keeps_insertion_order():
    g = Graph()
    g.add_node("b")
    g.add_node("a", weight=2.5)
    g.add_link("a", "b")

    assert [n.id for n in g.nodes()] == ["b", "a"]
    assert g.nodes()[1] == Node("a", 2.5)
    assert g.links() == [Link("a", "b")]
    assert len(g) == 2
    assert "a" in g and "c" not in g


def test_from_edges_adds_endpoints():
    g = Graph.from_edges([("x", "y"), ("y", "z")], nodes=["w"])
    assert [n.id for n in g.nodes()] == ["w", "x", "y", "z"]
    assert len(g.links()) == 2


def test_graph_rejects_bad_input():
    g = Graph()
    g.add_node("a")
    with pytest.raises(ConfigurationError):
        g.add_node("a")
    with pytest.raises(ConfigurationError):
        g.add_link("a", "missing")


def test_links_returns_a_copy():
    g = line_graph(3)
    g.links().clear()
    assert len(g.links()) == 2


@pytest.mark.parametrize("builder, n, nodes, links", [
    (line_graph, 5, 5, 4),
    (circle_graph, 5, 5, 5),
    (circle_graph, 2, 2, 1),
    (tree_graph, 7, 7, 6),
    (grid_graph, 16, 16, 24),
    (grid_graph, 20, 16, 24),
])
def test_generator_shapes(builder, n, nodes, links):
    g = builder(n)
    assert len(g) == nodes
    assert len(g.links()) == links


def test_tree_graph_parents():
    g = tree_graph(7)
    assert g.links()[5] == Link("2", "6")


def test_random_graph_is_seeded_and_simple():
    a = random_graph(50, seed=3)
    b = random_graph(50, seed=3)
    assert a.links() == b.links()

    pairs = [(link.source, link.target) for link in a.links()]
    assert all(s != t for s, t in pairs)
    assert len({frozenset(p) for p in pairs}) == len(pairs)


def test_generate_by_name():
    for name in GENERATORS:
        assert len(generate(name, 9)) >= 1
    with pytest.raises(ValueError):
        generate("hexagon", 10)
    with pytest.raises(ValueError):
        generate("line", 0)
