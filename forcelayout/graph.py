"""Read-only graph collaborator consumed by the layout engine."""

from dataclasses import dataclass
from typing import Dict, Iterable, List, Optional, Tuple

from .errors import ConfigurationError


@dataclass(frozen=True)
class Node:
    """Graph node; `weight` becomes the body's mass (None or 0 means 1)."""
    id: str
    weight: Optional[float] = None


@dataclass(frozen=True)
class Link:
    """Directed pair of node ids."""
    source: str
    target: str


class Graph:
    """
    Minimal insertion-ordered graph.

    Any object exposing `nodes()` (items with an `id` attribute, or plain ids)
    and `links()` (items with `source`/`target`) can be laid out; this class
    is the default implementation used by the generators and the CLI.
    """

    def __init__(self):
        self._nodes: Dict[str, Node] = {}
        self._links: List[Link] = []

    @classmethod
    def from_edges(cls, edges: Iterable[Tuple[str, str]], nodes: Iterable[str] = ()) -> "Graph":
        """Build a graph from (source, target) pairs, adding endpoints on the fly."""
        g = cls()
        for node_id in nodes:
            g.add_node(node_id)
        for source, target in edges:
            for node_id in (source, target):
                if str(node_id) not in g._nodes:
                    g.add_node(node_id)
            g.add_link(source, target)
        return g

    def add_node(self, node_id, weight: Optional[float] = None) -> Node:
        node_id = str(node_id)
        if node_id in self._nodes:
            raise ConfigurationError(f"duplicate node id: {node_id!r}")
        node = Node(node_id, weight)
        self._nodes[node_id] = node
        return node

    def add_link(self, source, target) -> Link:
        source, target = str(source), str(target)
        for node_id in (source, target):
            if node_id not in self._nodes:
                raise ConfigurationError(f"link references unknown node: {node_id!r}")
        link = Link(source, target)
        self._links.append(link)
        return link

    def nodes(self) -> List[Node]:
        return list(self._nodes.values())

    def links(self) -> List[Link]:
        return list(self._links)

    def __len__(self):
        return len(self._nodes)

    def __contains__(self, node_id):
        return str(node_id) in self._nodes

    def __repr__(self):
        return f"Graph(nodes={len(self._nodes)}, links={len(self._links)})"
