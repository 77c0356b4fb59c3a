"""
Graph Generators
================

Small library of graph shapes used to exercise the layout engine from the
CLI and the tests. Node ids are the decimal strings "0".."n-1".
"""

import numpy as np
from typing import Callable, Dict

from forcelayout.graph import Graph


GENERATORS_HELP = {
    "line": "Path 0-1-2-...-(n-1)",
    "circle": "Closed ring",
    "tree": "Complete binary tree",
    "grid": "Square lattice (n rounded down to a square)",
    "random": "Erdos-Renyi style random graph, ~2 links per node",
}


def line_graph(n: int, seed: int = 0) -> Graph:
    return Graph.from_edges(
        [(str(i), str(i + 1)) for i in range(n - 1)],
        nodes=[str(i) for i in range(n)],
    )


def circle_graph(n: int, seed: int = 0) -> Graph:
    g = line_graph(n)
    if n > 2:
        g.add_link(str(n - 1), "0")
    return g


def tree_graph(n: int, seed: int = 0) -> Graph:
    return Graph.from_edges(
        [(str((i - 1) // 2), str(i)) for i in range(1, n)],
        nodes=[str(i) for i in range(n)],
    )


def grid_graph(n: int, seed: int = 0) -> Graph:
    side = max(1, int(np.sqrt(n)))
    edges = []
    for row in range(side):
        for col in range(side):
            i = row * side + col
            if col + 1 < side:
                edges.append((str(i), str(i + 1)))
            if row + 1 < side:
                edges.append((str(i), str(i + side)))
    return Graph.from_edges(edges, nodes=[str(i) for i in range(side * side)])


def random_graph(n: int, seed: int = 0) -> Graph:
    rng = np.random.default_rng(seed)
    g = Graph.from_edges([], nodes=[str(i) for i in range(n)])
    if n < 2:
        return g
    seen = set()
    for _ in range(2 * n):
        a, b = rng.integers(0, n, size=2)
        if a == b or (a, b) in seen or (b, a) in seen:
            continue
        seen.add((a, b))
        g.add_link(str(a), str(b))
    return g


GENERATORS: Dict[str, Callable[..., Graph]] = {
    "line": line_graph,
    "circle": circle_graph,
    "tree": tree_graph,
    "grid": grid_graph,
    "random": random_graph,
}


def generate(name: str, n: int, seed: int = 0) -> Graph:
    """Build graph `name` with (about) n nodes."""
    if name not in GENERATORS:
        raise ValueError(f"Unknown generator: {name} (choose from {', '.join(GENERATORS)})")
    if n < 1:
        raise ValueError(f"Node count must be >= 1, got {n}")
    return GENERATORS[name](n, seed=seed)
