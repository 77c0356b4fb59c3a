"""
Forces acting on layout bodies.

A Force is a frozen configuration object tagged with its kind and scope. The
scope selects, at configuration time, the rule that evaluates it:

    rule(force, bodies, links) -> None

Rules only add contributions into `bodies.forces`; they read positions and
velocities from the step's frozen snapshot and never write them.

Force law between bodies i and j at distance d:
    gravity: coeff * m_i * m_j / d^2 along (p_j - p_i) / d   (coeff < 0 repels)
    spring:  stiffness * (d - length) along (p_b - p_a) / d, per link
    drag:    -coeff * v_i, v_i being the body's previous displacement
"""

import math
from dataclasses import dataclass
from enum import Enum
from typing import Callable, Optional, Union

import numpy as np
from numba import njit, prange

from config import layout as config

from .errors import ConfigurationError
from .octree import Octree, region_contains


class ForceKind(Enum):
    GRAVITY = "gravity"
    SPRING = "spring"
    DRAG = "drag"


class Scope(Enum):
    EACH_ON_EACH = "each_on_each"      # Exact pairwise gravity, O(n^2)
    BARNES_HUT = "barnes_hut"          # Octree-approximated gravity, O(n log n)
    FOR_EACH_LINK = "for_each_link"    # One interaction per graph link
    FOR_EACH_NODE = "for_each_node"    # Independent per-body rule


# Scopes each kind may be evaluated with
_KIND_SCOPES = {
    ForceKind.GRAVITY: (Scope.EACH_ON_EACH, Scope.BARNES_HUT),
    ForceKind.SPRING: (Scope.FOR_EACH_LINK,),
    ForceKind.DRAG: (Scope.FOR_EACH_NODE,),
}


# ============================================================================
# FORCE KERNELS
# ============================================================================

@njit(cache=True)
def pair_force(dx: float, dy: float, dz: float, m1: float, m2: float,
               coeff: float) -> tuple:
    """
    Gravity contribution on a body from a mass at displacement (dx, dy, dz).

    Swapping the two bodies negates the result exactly; coincident bodies
    contribute nothing.
    """
    dist_sq = dx * dx + dy * dy + dz * dz
    if dist_sq == 0.0:
        return 0.0, 0.0, 0.0
    dist = math.sqrt(dist_sq)
    magnitude = coeff * (m1 * m2) / dist_sq
    return magnitude * dx / dist, magnitude * dy / dist, magnitude * dz / dist


@njit(parallel=True, cache=True)
def each_on_each_forces(positions: np.ndarray, masses: np.ndarray,
                        forces: np.ndarray, coeff: float):
    """Exact gravity: every body against every other body."""
    n = positions.shape[0]
    for i in prange(n):
        px = positions[i, 0]
        py = positions[i, 1]
        pz = positions[i, 2]
        fx, fy, fz = 0.0, 0.0, 0.0
        for j in range(n):
            if j == i:
                continue
            cx, cy, cz = pair_force(positions[j, 0] - px, positions[j, 1] - py,
                                    positions[j, 2] - pz, masses[i], masses[j], coeff)
            fx += cx
            fy += cy
            fz += cz
        forces[i, 0] += fx
        forces[i, 1] += fy
        forces[i, 2] += fz


@njit(parallel=True, cache=True)
def barnes_hut_forces(positions: np.ndarray, masses: np.ndarray, forces: np.ndarray,
                      coeff: float, theta: float, root: int,
                      node_centers: np.ndarray, node_half_sizes: np.ndarray,
                      node_masses: np.ndarray, node_com: np.ndarray,
                      node_children: np.ndarray, node_point: np.ndarray,
                      node_is_leaf: np.ndarray, stack_size: int):
    """
    Gravity through Barnes-Hut tree traversal.

    Point i of the tree must be body i. Uses an explicit stack instead of
    recursion. An internal node whose size/distance ratio is below theta is
    treated as one mass at its center of mass, unless its region holds the
    body itself (its aggregate would then include the body's own mass).
    Leaves are applied directly unless they hold the body itself.
    """
    n = positions.shape[0]
    for i in prange(n):
        px = positions[i, 0]
        py = positions[i, 1]
        pz = positions[i, 2]
        fx, fy, fz = 0.0, 0.0, 0.0

        stack = np.empty(stack_size, dtype=np.int64)
        stack[0] = root
        stack_ptr = 1

        while stack_ptr > 0:
            stack_ptr -= 1
            node = stack[stack_ptr]

            dx = node_com[node, 0] - px
            dy = node_com[node, 1] - py
            dz = node_com[node, 2] - pz

            if node_is_leaf[node]:
                if node_point[node] != i:
                    cx, cy, cz = pair_force(dx, dy, dz, masses[i], node_masses[node], coeff)
                    fx += cx
                    fy += cy
                    fz += cz
                continue

            holds_body = region_contains(node_centers, node_half_sizes, node, px, py, pz)
            dist_sq = dx * dx + dy * dy + dz * dz
            if (not holds_body and dist_sq > 0.0 and
                    (node_half_sizes[node] * 2.0) / math.sqrt(dist_sq) < theta):
                cx, cy, cz = pair_force(dx, dy, dz, masses[i], node_masses[node], coeff)
                fx += cx
                fy += cy
                fz += cz
            else:
                for c in range(8):
                    child = node_children[node, c]
                    if child >= 0:
                        stack[stack_ptr] = child
                        stack_ptr += 1

        forces[i, 0] += fx
        forces[i, 1] += fy
        forces[i, 2] += fz


@njit(cache=True)
def spring_forces(positions: np.ndarray, forces: np.ndarray, pairs: np.ndarray,
                  stiffness: float, length: float):
    """Hooke's law along each link; serial because a link writes to both ends."""
    for k in range(pairs.shape[0]):
        a = pairs[k, 0]
        b = pairs[k, 1]
        if a == b:
            continue
        dx = positions[b, 0] - positions[a, 0]
        dy = positions[b, 1] - positions[a, 1]
        dz = positions[b, 2] - positions[a, 2]
        dist_sq = dx * dx + dy * dy + dz * dz
        if dist_sq == 0.0:
            continue
        dist = math.sqrt(dist_sq)
        scale = stiffness * (dist - length) / dist
        forces[a, 0] += scale * dx
        forces[a, 1] += scale * dy
        forces[a, 2] += scale * dz
        forces[b, 0] -= scale * dx
        forces[b, 1] -= scale * dy
        forces[b, 2] -= scale * dz


@njit(parallel=True, cache=True)
def drag_forces(velocities: np.ndarray, forces: np.ndarray, coeff: float):
    """Linear damping against each body's previous displacement."""
    for i in prange(velocities.shape[0]):
        forces[i, 0] -= coeff * velocities[i, 0]
        forces[i, 1] -= coeff * velocities[i, 1]
        forces[i, 2] -= coeff * velocities[i, 2]


# ============================================================================
# RULES
# ============================================================================

def _link_pairs(bodies, links) -> np.ndarray:
    if isinstance(links, np.ndarray):
        return links
    return bodies.link_pairs(links)


def each_on_each(force: "Force", bodies, links=None):
    each_on_each_forces(bodies.positions, bodies.masses, bodies.forces, force.coeff)


def barnes_hut(force: "Force", bodies, links=None):
    """Rebuild the octree from the current snapshot and traverse it per body."""
    if len(bodies) < 2:
        return
    tree = Octree.from_arrays(bodies.positions, bodies.masses, bodies.ids)
    barnes_hut_forces(
        bodies.positions, bodies.masses, bodies.forces,
        force.coeff, force.theta, tree.root,
        tree.centers, tree.half_sizes, tree.masses, tree.com, tree.children,
        tree.point, tree.is_leaf, tree.stack_size()
    )


def for_each_link(force: "Force", bodies, links=None):
    if links is None:
        return
    pairs = _link_pairs(bodies, links)
    if pairs.shape[0] == 0:
        return
    spring_forces(bodies.positions, bodies.forces, pairs, force.coeff, force.length)


def for_each_node(force: "Force", bodies, links=None):
    drag_forces(bodies.velocities, bodies.forces, force.coeff)


RULES = {
    Scope.EACH_ON_EACH: each_on_each,
    Scope.BARNES_HUT: barnes_hut,
    Scope.FOR_EACH_LINK: for_each_link,
    Scope.FOR_EACH_NODE: for_each_node,
}


# ============================================================================
# FORCE CONFIGURATION
# ============================================================================

@dataclass(frozen=True)
class Force:
    """
    Force configuration; stateless across steps.

    Attributes:
        kind: gravity, spring or drag
        scope: evaluation strategy, fixes the rule
        coeff: strength (gravity coefficient, spring stiffness, drag fraction)
        theta: Barnes-Hut opening angle (gravity only)
        length: spring rest length (spring only)
    """
    kind: ForceKind
    scope: Scope
    coeff: float
    theta: float = 0.5
    length: float = 0.0

    def __post_init__(self):
        if self.scope not in _KIND_SCOPES[self.kind]:
            raise ConfigurationError(
                f"{self.kind.value} force cannot use scope {self.scope.value!r}"
            )
        if not math.isfinite(self.coeff):
            raise ConfigurationError(f"coefficient must be finite, got {self.coeff}")
        if self.scope is Scope.BARNES_HUT and not (self.theta > 0 and math.isfinite(self.theta)):
            raise ConfigurationError(f"theta must be positive, got {self.theta}")
        if self.kind is ForceKind.DRAG and not 0 < self.coeff <= 1:
            raise ConfigurationError(f"drag coefficient must be in (0, 1], got {self.coeff}")
        if self.kind is ForceKind.SPRING and not (self.length >= 0 and math.isfinite(self.length)):
            raise ConfigurationError(f"spring length must be >= 0, got {self.length}")

    @property
    def rule(self) -> Callable:
        return RULES[self.scope]

    def apply(self, bodies, links=None):
        """Accumulate this force's contributions into `bodies.forces`."""
        self.rule(self, bodies, links)


def _scope(value: Union[str, Scope]) -> Scope:
    if isinstance(value, Scope):
        return value
    try:
        return Scope(value)
    except ValueError:
        raise ConfigurationError(f"unknown force scope: {value!r}") from None


def gravity_force(coeff: Optional[float] = None, mode: Union[str, Scope, None] = None,
                  theta: Optional[float] = None) -> Force:
    """Gravity with exact ("each_on_each") or Barnes-Hut ("barnes_hut") evaluation."""
    cfg = config.GRAVITY
    return Force(
        ForceKind.GRAVITY,
        _scope(mode if mode is not None else cfg["mode"]),
        float(coeff if coeff is not None else cfg["coeff"]),
        theta=float(theta if theta is not None else cfg["theta"]),
    )


def spring_force(stiffness: Optional[float] = None, length: Optional[float] = None) -> Force:
    """Link attraction toward a rest length."""
    cfg = config.SPRING
    return Force(
        ForceKind.SPRING,
        Scope.FOR_EACH_LINK,
        float(stiffness if stiffness is not None else cfg["stiffness"]),
        length=float(length if length is not None else cfg["length"]),
    )


def drag_force(coeff: Optional[float] = None,
               scope: Union[str, Scope] = Scope.FOR_EACH_NODE) -> Force:
    """Per-body damping of the motion carried over from the previous step."""
    return Force(
        ForceKind.DRAG,
        _scope(scope),
        float(coeff if coeff is not None else config.DRAG["coeff"]),
    )
