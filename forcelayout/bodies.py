"""
Bodies of the layout simulation.

All per-body state lives in contiguous float64 arrays owned by a BodySet so
the numba kernels can operate on whole arrays at once. A Body is a thin view
onto one row of those arrays, keyed by the graph node id.
"""

import math
from collections.abc import Mapping
from typing import Dict, Iterable, Iterator, List, Optional, Sequence, Tuple

import numpy as np

from .errors import ConfigurationError


GOLDEN_ANGLE = math.pi * (3.0 - math.sqrt(5.0))


def spiral_positions(count: int, radius: float = 10.0) -> np.ndarray:
    """
    Deterministic, pairwise-distinct seed positions for `count` bodies.

    Body i sits on a golden-angle spiral at xy-radius radius*cbrt(i), which is
    strictly increasing in i, so no two bodies start at the same point.
    """
    i = np.arange(count, dtype=np.float64)
    r = radius * np.cbrt(i)
    roll = i * GOLDEN_ANGLE
    yaw = i * math.pi / 24.0

    positions = np.zeros((count, 3), dtype=np.float64)
    positions[:, 0] = r * np.cos(roll)
    positions[:, 1] = r * np.sin(roll)
    positions[:, 2] = r * np.sin(yaw)
    return positions


class Body:
    """View onto a single body stored in a BodySet."""

    __slots__ = ("_bodies", "_index")

    def __init__(self, bodies: "BodySet", index: int):
        self._bodies = bodies
        self._index = index

    @property
    def id(self) -> str:
        return self._bodies.ids[self._index]

    @property
    def index(self) -> int:
        return self._index

    @property
    def x(self) -> float:
        return float(self._bodies.positions[self._index, 0])

    @property
    def y(self) -> float:
        return float(self._bodies.positions[self._index, 1])

    @property
    def z(self) -> float:
        return float(self._bodies.positions[self._index, 2])

    @property
    def position(self) -> Tuple[float, float, float]:
        x, y, z = self._bodies.positions[self._index]
        return float(x), float(y), float(z)

    def set_position(self, x: float, y: float, z: float):
        """Overwrite the position; the body forgets its previous motion."""
        self._bodies.positions[self._index] = (x, y, z)
        self._bodies.velocities[self._index] = 0.0

    @property
    def force(self) -> Tuple[float, float, float]:
        fx, fy, fz = self._bodies.forces[self._index]
        return float(fx), float(fy), float(fz)

    def add_force(self, fx: float, fy: float, fz: float):
        """Accumulate a contribution for the current step."""
        self._bodies.forces[self._index, 0] += fx
        self._bodies.forces[self._index, 1] += fy
        self._bodies.forces[self._index, 2] += fz

    @property
    def velocity(self) -> Tuple[float, float, float]:
        vx, vy, vz = self._bodies.velocities[self._index]
        return float(vx), float(vy), float(vz)

    @property
    def mass(self) -> float:
        return float(self._bodies.masses[self._index])

    def __repr__(self) -> str:
        x, y, z = self.position
        return f"Body(id={self.id!r}, x={x:.4f}, y={y:.4f}, z={z:.4f}, mass={self.mass})"


class BodySet(Mapping):
    """
    Mapping from node id to Body for one simulation run.

    Arrays:
        positions:  (n, 3) current positions
        forces:     (n, 3) per-step accumulator, cleared by reset_forces()
        velocities: (n, 3) displacement applied in the previous step
        masses:     (n,)   body masses
    """

    def __init__(self, ids: Sequence[str], positions: Optional[np.ndarray] = None,
                 masses: Optional[Sequence[float]] = None):
        self.ids: List[str] = [str(i) for i in ids]
        self._index: Dict[str, int] = {}
        for i, body_id in enumerate(self.ids):
            if body_id in self._index:
                raise ConfigurationError(f"duplicate body id: {body_id!r}")
            self._index[body_id] = i

        n = len(self.ids)
        if positions is None:
            self.positions = np.zeros((n, 3), dtype=np.float64)
        else:
            self.positions = np.array(positions, dtype=np.float64).reshape(n, 3)

        if masses is None:
            self.masses = np.ones(n, dtype=np.float64)
        else:
            self.masses = np.array(masses, dtype=np.float64).reshape(n)
            if not np.all(np.isfinite(self.masses)) or np.any(self.masses <= 0):
                raise ConfigurationError("body masses must be finite and positive")

        self.forces = np.zeros((n, 3), dtype=np.float64)
        self.velocities = np.zeros((n, 3), dtype=np.float64)

    # -------------------------------------------------------------------------
    # Mapping protocol
    # -------------------------------------------------------------------------

    def __getitem__(self, body_id: str) -> Body:
        return Body(self, self._index[body_id])

    def __iter__(self) -> Iterator[str]:
        return iter(self.ids)

    def __len__(self) -> int:
        return len(self.ids)

    def __contains__(self, body_id) -> bool:
        return body_id in self._index

    # -------------------------------------------------------------------------
    # Simulation helpers
    # -------------------------------------------------------------------------

    def index_of(self, body_id: str) -> int:
        return self._index[body_id]

    def reset_forces(self):
        """Clear every accumulator; called exactly once at the start of a step."""
        self.forces.fill(0.0)

    def link_pairs(self, links: Iterable) -> np.ndarray:
        """Resolve links into an (m, 2) array of body indices."""
        pairs = []
        for link in links:
            try:
                pairs.append((self._index[str(link.source)], self._index[str(link.target)]))
            except KeyError as e:
                raise ConfigurationError(f"link references unknown node: {e.args[0]!r}") from None
        if not pairs:
            return np.zeros((0, 2), dtype=np.int64)
        return np.array(pairs, dtype=np.int64)

    def positions_by_id(self) -> Dict[str, Tuple[float, float, float]]:
        return {body_id: tuple(float(v) for v in self.positions[i])
                for i, body_id in enumerate(self.ids)}

    def __repr__(self) -> str:
        return f"BodySet({len(self.ids)} bodies)"
