"""
Barnes-Hut octree over a snapshot of body positions.

The tree is stored as a flat arena of numpy arrays indexed by node id
(no Python node objects), so numba kernels can build and traverse it:

- centers (cap, 3), half_sizes (cap,): cubic region of each node
- masses (cap,), com (cap, 3): aggregate mass and center of mass
- children (cap, 8): child node ids per octant (-1 if none)
- point (cap,): point index held by a leaf (-1 for internal nodes)
- is_leaf (cap,): node kind

A leaf always holds exactly one point. The id -> leaf lookup table is the
`point_leaf` array (point index -> node id) plus a lazily built id -> point
index dict; it is a secondary index only and never used for traversal.
"""

import math
from dataclasses import dataclass
from typing import Dict, Iterator, List, Optional, Sequence, Tuple

import numpy as np
from numba import njit

from config import layout as config

from .errors import ConfigurationError, DegenerateInputError, LeafNotFoundError


# Kernel status codes
INSERTED = 0
DEGENERATE = 1
FULL = 2


# ============================================================================
# ARENA KERNELS
# ============================================================================

@njit(cache=True)
def get_octant(px: float, py: float, pz: float,
               cx: float, cy: float, cz: float) -> int:
    """Octant of a point relative to a center; `>=` selects the upper half."""
    octant = 0
    if px >= cx:
        octant |= 1
    if py >= cy:
        octant |= 2
    if pz >= cz:
        octant |= 4
    return octant


@njit(cache=True)
def get_octant_center(octant: int, cx: float, cy: float, cz: float,
                      half_size: float) -> tuple:
    """Center of a child octant."""
    quarter = half_size * 0.5
    new_cx = cx + quarter if (octant & 1) else cx - quarter
    new_cy = cy + quarter if (octant & 2) else cy - quarter
    new_cz = cz + quarter if (octant & 4) else cz - quarter
    return new_cx, new_cy, new_cz


@njit(cache=True)
def region_contains(centers: np.ndarray, half_sizes: np.ndarray, node: int,
                    px: float, py: float, pz: float) -> bool:
    """Half-open containment: center - half <= p < center + half on every axis."""
    h = half_sizes[node]
    cx = centers[node, 0]
    cy = centers[node, 1]
    cz = centers[node, 2]
    return (cx - h <= px and px < cx + h and
            cy - h <= py and py < cy + h and
            cz - h <= pz and pz < cz + h)


@njit(cache=True)
def init_node(node: int, cx: float, cy: float, cz: float, half_size: float,
              centers: np.ndarray, half_sizes: np.ndarray, masses: np.ndarray,
              com: np.ndarray, children: np.ndarray, point: np.ndarray,
              is_leaf: np.ndarray):
    centers[node, 0] = cx
    centers[node, 1] = cy
    centers[node, 2] = cz
    half_sizes[node] = half_size
    masses[node] = 0.0
    com[node, 0] = 0.0
    com[node, 1] = 0.0
    com[node, 2] = 0.0
    for c in range(8):
        children[node, c] = -1
    point[node] = -1
    is_leaf[node] = True


@njit(cache=True)
def make_leaf(node: int, p: int, px: float, py: float, pz: float, m: float,
              cx: float, cy: float, cz: float, half_size: float,
              centers: np.ndarray, half_sizes: np.ndarray, masses: np.ndarray,
              com: np.ndarray, children: np.ndarray, point: np.ndarray,
              is_leaf: np.ndarray, point_leaf: np.ndarray):
    """Initialize `node` as a leaf holding point `p`; a leaf is its own center of mass."""
    init_node(node, cx, cy, cz, half_size, centers, half_sizes, masses, com,
              children, point, is_leaf)
    point[node] = p
    masses[node] = m
    com[node, 0] = px
    com[node, 1] = py
    com[node, 2] = pz
    point_leaf[p] = node


@njit(cache=True)
def recompute_aggregate(node: int, masses: np.ndarray, com: np.ndarray,
                        children: np.ndarray):
    """Mass and mass-weighted center of an internal node from its children."""
    total = 0.0
    sx = 0.0
    sy = 0.0
    sz = 0.0
    for c in range(8):
        child = children[node, c]
        if child >= 0:
            m = masses[child]
            total += m
            sx += com[child, 0] * m
            sy += com[child, 1] * m
            sz += com[child, 2] * m
    masses[node] = total
    if total > 0:
        com[node, 0] = sx / total
        com[node, 1] = sy / total
        com[node, 2] = sz / total


@njit(cache=True)
def grow_root(root: int, new_root: int, px: float, py: float, pz: float,
              centers: np.ndarray, half_sizes: np.ndarray, masses: np.ndarray,
              com: np.ndarray, children: np.ndarray, point: np.ndarray,
              is_leaf: np.ndarray):
    """
    Double the root region toward (px, py, pz).

    The new root is extended toward the point on each axis so the old root
    becomes exactly one of its octants; aggregates carry over unchanged.
    """
    h = half_sizes[root]
    cx = centers[root, 0]
    cy = centers[root, 1]
    cz = centers[root, 2]
    ncx = cx - h if px < cx - h else cx + h
    ncy = cy - h if py < cy - h else cy + h
    ncz = cz - h if pz < cz - h else cz + h

    init_node(new_root, ncx, ncy, ncz, 2.0 * h, centers, half_sizes, masses,
              com, children, point, is_leaf)
    is_leaf[new_root] = False
    children[new_root, get_octant(cx, cy, cz, ncx, ncy, ncz)] = root
    masses[new_root] = masses[root]
    com[new_root, 0] = com[root, 0]
    com[new_root, 1] = com[root, 1]
    com[new_root, 2] = com[root, 2]


@njit(cache=True)
def insert_point(p: int, px: float, py: float, pz: float, m: float,
                 root: int, num_nodes: int, max_depth: int,
                 centers: np.ndarray, half_sizes: np.ndarray, masses: np.ndarray,
                 com: np.ndarray, children: np.ndarray, point: np.ndarray,
                 is_leaf: np.ndarray, point_leaf: np.ndarray, path: np.ndarray):
    """
    Insert point `p` below `root`, whose region must already contain it.

    The caller guarantees room for max_depth + 2 new nodes. Degenerate input
    (coincident points, or points still sharing an octant at depth max_depth
    below `root`) is detected before anything is mutated.

    Returns (status, num_nodes, depth of the new leaf).
    """
    depth = 0
    current = root

    # Descend to an empty octant or an occupied leaf
    while True:
        path[depth] = current
        if is_leaf[current]:
            break

        cx = centers[current, 0]
        cy = centers[current, 1]
        cz = centers[current, 2]
        octant = get_octant(px, py, pz, cx, cy, cz)
        child = children[current, octant]

        if child == -1:
            # Empty octant - the point becomes a new leaf here
            new_cx, new_cy, new_cz = get_octant_center(octant, cx, cy, cz, half_sizes[current])
            leaf = num_nodes
            num_nodes += 1
            make_leaf(leaf, p, px, py, pz, m, new_cx, new_cy, new_cz,
                      half_sizes[current] * 0.5, centers, half_sizes, masses,
                      com, children, point, is_leaf, point_leaf)
            children[current, octant] = leaf
            for k in range(depth, -1, -1):
                recompute_aggregate(path[k], masses, com, children)
            return INSERTED, num_nodes, depth + 1

        current = child
        depth += 1

    # Occupied leaf - check the split terminates before touching the tree
    old = point[current]
    old_m = masses[current]
    ox = com[current, 0]
    oy = com[current, 1]
    oz = com[current, 2]
    if ox == px and oy == py and oz == pz:
        return DEGENERATE, num_nodes, depth

    cx = centers[current, 0]
    cy = centers[current, 1]
    cz = centers[current, 2]
    hs = half_sizes[current]
    shared = 0
    while True:
        o_old = get_octant(ox, oy, oz, cx, cy, cz)
        if o_old != get_octant(px, py, pz, cx, cy, cz):
            break
        shared += 1
        if depth + shared >= max_depth:
            return DEGENERATE, num_nodes, depth
        cx, cy, cz = get_octant_center(o_old, cx, cy, cz, hs)
        hs *= 0.5

    # Convert the leaf into an internal node and push both points down
    is_leaf[current] = False
    point[current] = -1
    node = current
    while True:
        cx = centers[node, 0]
        cy = centers[node, 1]
        cz = centers[node, 2]
        hs = half_sizes[node]
        o_old = get_octant(ox, oy, oz, cx, cy, cz)
        o_new = get_octant(px, py, pz, cx, cy, cz)

        if o_old != o_new:
            leaf = num_nodes
            num_nodes += 1
            new_cx, new_cy, new_cz = get_octant_center(o_old, cx, cy, cz, hs)
            make_leaf(leaf, old, ox, oy, oz, old_m, new_cx, new_cy, new_cz,
                      hs * 0.5, centers, half_sizes, masses, com, children,
                      point, is_leaf, point_leaf)
            children[node, o_old] = leaf

            leaf = num_nodes
            num_nodes += 1
            new_cx, new_cy, new_cz = get_octant_center(o_new, cx, cy, cz, hs)
            make_leaf(leaf, p, px, py, pz, m, new_cx, new_cy, new_cz,
                      hs * 0.5, centers, half_sizes, masses, com, children,
                      point, is_leaf, point_leaf)
            children[node, o_new] = leaf
            break

        # Both points share this octant - chain another internal node
        child = num_nodes
        num_nodes += 1
        new_cx, new_cy, new_cz = get_octant_center(o_old, cx, cy, cz, hs)
        init_node(child, new_cx, new_cy, new_cz, hs * 0.5, centers, half_sizes,
                  masses, com, children, point, is_leaf)
        is_leaf[child] = False
        children[node, o_old] = child
        depth += 1
        path[depth] = child
        node = child

    for k in range(depth, -1, -1):
        recompute_aggregate(path[k], masses, com, children)
    return INSERTED, num_nodes, depth + 1


@njit(cache=True)
def build_octree(positions: np.ndarray, point_masses: np.ndarray, start: int,
                 root: int, num_nodes: int, max_depth: int,
                 centers: np.ndarray, half_sizes: np.ndarray, masses: np.ndarray,
                 com: np.ndarray, children: np.ndarray, point: np.ndarray,
                 is_leaf: np.ndarray, point_leaf: np.ndarray, path: np.ndarray):
    """
    Insert points start..n-1 below a root whose region contains all of them.

    Stops early with FULL (before touching point i) when the arena may not
    have room for another insertion, or with DEGENERATE at the offending point.
    Returns (status, next point index, num_nodes, deepest leaf depth).
    """
    capacity = centers.shape[0]
    deepest = 0
    for i in range(start, positions.shape[0]):
        if num_nodes + max_depth + 2 > capacity:
            return FULL, i, num_nodes, deepest
        status, num_nodes, depth = insert_point(
            i, positions[i, 0], positions[i, 1], positions[i, 2], point_masses[i],
            root, num_nodes, max_depth, centers, half_sizes, masses, com,
            children, point, is_leaf, point_leaf, path
        )
        if status != INSERTED:
            return status, i, num_nodes, deepest
        if depth > deepest:
            deepest = depth
    return INSERTED, positions.shape[0], num_nodes, deepest


# ============================================================================
# READ-ONLY VIEWS
# ============================================================================

@dataclass(frozen=True)
class OctreeLeaf:
    """A leaf as returned by Octree.find_leaf()."""
    id: str
    position: Tuple[float, float, float]
    mass: float
    node: int


@dataclass(frozen=True)
class OctreeNode:
    """Snapshot of one arena node."""
    index: int
    center: Tuple[float, float, float]
    half_size: float
    mass: float
    center_of_mass: Tuple[float, float, float]
    children: Tuple[int, ...]
    point_id: Optional[str]

    @property
    def is_leaf(self) -> bool:
        return self.point_id is not None


# ============================================================================
# OCTREE
# ============================================================================

def _expand_region(center, half_size: float, p) -> Tuple[np.ndarray, float]:
    """Apply the root-growth rule to a bare region until it contains p."""
    c = np.array(center, dtype=np.float64)
    h = float(half_size)
    while not np.all((c - h <= p) & (p < c + h)):
        c = np.where(p < c - h, c - h, c + h)
        h *= 2.0
    return c, h


class Octree:
    """
    Octree with automatic root growth and an id -> leaf lookup table.

    Build a tree incrementally with insert(), or in one pass over a position
    snapshot with Octree.from_arrays() (used once per step by Barnes-Hut).
    """

    def __init__(self, center: Optional[Sequence[float]] = None,
                 half_size: Optional[float] = None,
                 max_depth: Optional[int] = None,
                 capacity: Optional[int] = None):
        cfg = config.OCTREE
        self.max_depth = int(max_depth if max_depth is not None else cfg["max_depth"])
        if self.max_depth < 1:
            raise ConfigurationError(f"max_depth must be >= 1, got {self.max_depth}")
        if half_size is not None and not (half_size > 0 and math.isfinite(half_size)):
            raise ConfigurationError(f"half_size must be positive and finite, got {half_size}")

        self._center = None if center is None else np.array(center, dtype=np.float64).reshape(3)
        self._half_size = float(half_size if half_size is not None else cfg["initial_half_size"])

        cap = max(int(capacity or cfg["initial_capacity"]), self.max_depth + 3)
        self.centers = np.zeros((cap, 3), dtype=np.float64)
        self.half_sizes = np.zeros(cap, dtype=np.float64)
        self.masses = np.zeros(cap, dtype=np.float64)
        self.com = np.zeros((cap, 3), dtype=np.float64)
        self.children = np.full((cap, 8), -1, dtype=np.int32)
        self.point = np.full(cap, -1, dtype=np.int32)
        self.is_leaf = np.ones(cap, dtype=np.bool_)
        self.point_leaf = np.full(max(cap // 2, 1), -1, dtype=np.int32)

        self.root = -1
        self.num_nodes = 0
        self.depth = 0
        self.ids: List[str] = []
        self._id_index: Optional[Dict[str, int]] = {}

    @classmethod
    def from_arrays(cls, positions: np.ndarray, masses: np.ndarray,
                    ids: Optional[Sequence[str]] = None,
                    max_depth: Optional[int] = None,
                    margin: Optional[float] = None) -> "Octree":
        """
        Build a tree over a position snapshot; point i is row i.

        The root region is the snapshot bounding box plus `margin`, so no
        growth happens during the build.
        """
        positions = np.ascontiguousarray(positions, dtype=np.float64)
        masses = np.ascontiguousarray(masses, dtype=np.float64)
        n = positions.shape[0]
        margin = float(margin if margin is not None else config.OCTREE["bounds_margin"])
        if not margin > 0:
            raise ConfigurationError(f"bounds margin must be positive, got {margin}")
        if not np.all(np.isfinite(positions)):
            raise DegenerateInputError("cannot build an octree over non-finite positions")

        if n == 0:
            return cls(max_depth=max_depth)

        lo = positions.min(axis=0)
        hi = positions.max(axis=0)
        center = (lo + hi) * 0.5
        half_size = float((hi - lo).max()) * 0.5 + margin

        max_depth = int(max_depth if max_depth is not None else config.OCTREE["max_depth"])
        tree = cls(center, half_size, max_depth=max_depth, capacity=2 * n + max_depth + 3)
        tree.ids = list(ids) if ids is not None else [str(i) for i in range(n)]
        tree._id_index = None
        tree._reserve_points(n)

        tree._reserve(1)
        make_leaf(0, 0, positions[0, 0], positions[0, 1], positions[0, 2], masses[0],
                  center[0], center[1], center[2], half_size,
                  tree.centers, tree.half_sizes, tree.masses, tree.com,
                  tree.children, tree.point, tree.is_leaf, tree.point_leaf)
        tree.root = 0
        tree.num_nodes = 1

        # No root growth here, so no leaf ends up deeper than max_depth
        path = np.zeros(tree.max_depth + 3, dtype=np.int64)
        start = 1
        while start < n:
            status, start_next, tree.num_nodes, deepest = build_octree(
                positions, masses, start, tree.root, tree.num_nodes, tree.max_depth,
                tree.centers, tree.half_sizes, tree.masses, tree.com,
                tree.children, tree.point, tree.is_leaf, tree.point_leaf, path
            )
            tree.depth = max(tree.depth, deepest)
            if status == DEGENERATE:
                raise DegenerateInputError(
                    f"cannot subdivide around point {tree.ids[start_next]!r} at "
                    f"{tuple(positions[start_next])}: coincident or near-duplicate position"
                )
            if status == FULL:
                tree._reserve(tree.max_depth + 2 + (n - start_next))
            start = start_next
        return tree

    # -------------------------------------------------------------------------
    # Arena management
    # -------------------------------------------------------------------------

    def _reserve(self, extra: int):
        """Make room for `extra` more nodes, doubling the arena as needed."""
        cap = self.centers.shape[0]
        needed = self.num_nodes + extra
        if needed <= cap:
            return
        new_cap = max(2 * cap, needed)
        grow = new_cap - cap
        self.centers = np.concatenate([self.centers, np.zeros((grow, 3))])
        self.half_sizes = np.concatenate([self.half_sizes, np.zeros(grow)])
        self.masses = np.concatenate([self.masses, np.zeros(grow)])
        self.com = np.concatenate([self.com, np.zeros((grow, 3))])
        self.children = np.concatenate([self.children, np.full((grow, 8), -1, dtype=np.int32)])
        self.point = np.concatenate([self.point, np.full(grow, -1, dtype=np.int32)])
        self.is_leaf = np.concatenate([self.is_leaf, np.ones(grow, dtype=np.bool_)])

    def _reserve_points(self, count: int):
        cap = self.point_leaf.shape[0]
        if count <= cap:
            return
        new_cap = max(2 * cap, count)
        self.point_leaf = np.concatenate(
            [self.point_leaf, np.full(new_cap - cap, -1, dtype=np.int32)]
        )

    # -------------------------------------------------------------------------
    # Insertion and lookup
    # -------------------------------------------------------------------------

    def insert(self, point_id: str, x: float, y: float, z: float, mass: float = 1.0):
        """
        Add a weighted point.

        Grows the root while the point lies outside it. Raises
        DegenerateInputError for non-finite or inseparable points, in which
        case no point is added and existing content is untouched.
        """
        point_id = str(point_id)
        x, y, z, mass = float(x), float(y), float(z), float(mass)
        if point_id in self._lookup():
            raise ConfigurationError(f"point already inserted: {point_id!r}")
        if not all(math.isfinite(v) for v in (x, y, z)):
            raise DegenerateInputError(f"non-finite position for {point_id!r}: {(x, y, z)}")
        if not (mass > 0 and math.isfinite(mass)):
            raise ConfigurationError(f"mass must be positive and finite, got {mass}")

        p = len(self.ids)
        self._reserve_points(p + 1)

        if self.root == -1:
            pos = np.array((x, y, z), dtype=np.float64)
            center = self._center if self._center is not None else pos
            center, half_size = _expand_region(center, self._half_size, pos)
            self._reserve(1)
            make_leaf(0, p, x, y, z, mass, center[0], center[1], center[2], half_size,
                      self.centers, self.half_sizes, self.masses, self.com,
                      self.children, self.point, self.is_leaf, self.point_leaf)
            self.root = 0
            self.num_nodes = 1
            self.depth = 0
        else:
            while not region_contains(self.centers, self.half_sizes, self.root, x, y, z):
                self._reserve(1)
                grow_root(self.root, self.num_nodes, x, y, z, self.centers,
                          self.half_sizes, self.masses, self.com, self.children,
                          self.point, self.is_leaf)
                self.root = self.num_nodes
                self.num_nodes += 1
                self.depth += 1

            self._reserve(self.max_depth + 2)
            path = np.zeros(self.depth + self.max_depth + 3, dtype=np.int64)
            status, self.num_nodes, depth = insert_point(
                p, x, y, z, mass, self.root, self.num_nodes, self.max_depth,
                self.centers, self.half_sizes, self.masses, self.com,
                self.children, self.point, self.is_leaf, self.point_leaf, path
            )
            if status == DEGENERATE:
                raise DegenerateInputError(
                    f"cannot subdivide around point {point_id!r} at {(x, y, z)}: "
                    "coincident or near-duplicate position"
                )
            self.depth = max(self.depth, depth)

        self.ids.append(point_id)
        self._lookup()[point_id] = p

    def _lookup(self) -> Dict[str, int]:
        if self._id_index is None:
            self._id_index = {point_id: i for i, point_id in enumerate(self.ids)}
        return self._id_index

    def find_leaf(self, point_id: str) -> OctreeLeaf:
        """O(1) lookup of the leaf currently holding `point_id`."""
        p = self._lookup().get(point_id)
        if p is None:
            raise LeafNotFoundError(point_id)
        node = int(self.point_leaf[p])
        x, y, z = self.com[node]
        return OctreeLeaf(point_id, (float(x), float(y), float(z)), float(self.masses[node]), node)

    # -------------------------------------------------------------------------
    # Inspection
    # -------------------------------------------------------------------------

    def node(self, index: int) -> OctreeNode:
        if not 0 <= index < self.num_nodes:
            raise IndexError(f"node {index} out of range")
        cx, cy, cz = self.centers[index]
        mx, my, mz = self.com[index]
        p = int(self.point[index])
        return OctreeNode(
            index=index,
            center=(float(cx), float(cy), float(cz)),
            half_size=float(self.half_sizes[index]),
            mass=float(self.masses[index]),
            center_of_mass=(float(mx), float(my), float(mz)),
            children=tuple(int(c) for c in self.children[index]),
            point_id=self.ids[p] if self.is_leaf[index] and p >= 0 else None,
        )

    def walk(self, index: Optional[int] = None) -> Iterator[OctreeNode]:
        """Depth-first iteration over the subtree rooted at `index` (default root)."""
        if self.root == -1:
            return
        stack = [self.root if index is None else index]
        while stack:
            node = self.node(stack.pop())
            yield node
            stack.extend(c for c in reversed(node.children) if c >= 0)

    def stack_size(self) -> int:
        """Traversal stack large enough for a depth-first walk of this tree."""
        return 8 * (self.depth + 2)

    def __len__(self) -> int:
        return len(self.ids)

    def __repr__(self) -> str:
        kind = "empty" if self.root == -1 else ("leaf" if self.is_leaf[self.root] else "internal")
        return (f"Octree(root={kind}, points={len(self.ids)}, "
                f"nodes={self.num_nodes}, depth={self.depth})")
