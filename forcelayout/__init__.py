"""
Force-directed 3D graph layout.

Simulates one body per graph node under configurable forces (exact or
Barnes-Hut gravity, link springs, drag) until the motion settles.
"""

import numpy as np

from .bodies import Body, BodySet, spiral_positions
from .engine import EngineState, LayoutEngine, RunResult, RunStatus
from .errors import (
    ConfigurationError,
    DegenerateInputError,
    LayoutError,
    LeafNotFoundError,
    NonFiniteError,
    SimulationFault,
)
from .forces import Force, ForceKind, Scope, drag_force, gravity_force, spring_force
from .graph import Graph, Link, Node
from .octree import Octree, OctreeLeaf, OctreeNode


def warmup():
    """Pre-compile the numba kernels on a tiny problem."""
    graph = Graph.from_edges([("0", "1"), ("1", "2"), ("2", "3")])
    engine = LayoutEngine(
        graph,
        gravity_force(-1.0, Scope.EACH_ON_EACH),
        gravity_force(-1.0, Scope.BARNES_HUT),
        spring_force(0.01, 10.0),
        drag_force(0.5),
    )
    engine.step()

    tree = Octree()
    for i, p in enumerate(np.random.rand(8, 3)):
        tree.insert(str(i), *p)


__all__ = [
    "Body",
    "BodySet",
    "spiral_positions",
    "EngineState",
    "LayoutEngine",
    "RunResult",
    "RunStatus",
    "ConfigurationError",
    "DegenerateInputError",
    "LayoutError",
    "LeafNotFoundError",
    "NonFiniteError",
    "SimulationFault",
    "Force",
    "ForceKind",
    "Scope",
    "drag_force",
    "gravity_force",
    "spring_force",
    "Graph",
    "Link",
    "Node",
    "Octree",
    "OctreeLeaf",
    "OctreeNode",
    "warmup",
]
