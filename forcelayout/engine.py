"""
Force-directed layout engine.

One step:
    1. clear every body's force accumulator
    2. apply each registered force against the frozen position snapshot
    3. integrate: displacement = previous displacement + accumulated force
    4. return the movement metric (sum of displacement magnitudes)

Every force kernel returns only after all of its bodies are done, so all
contributions are in place before the integrator writes the first position.
"""

import math
import time
from dataclasses import dataclass
from enum import Enum
from typing import Callable, List, Optional

import numpy as np
from numba import njit, prange

from config import layout as config

from .bodies import BodySet, spiral_positions
from .errors import ConfigurationError, NonFiniteError, SimulationFault
from .forces import Force


class EngineState(Enum):
    UNINITIALIZED = "uninitialized"
    INITIALIZED = "initialized"
    RUNNING = "running"
    STABLE = "stable"
    STOPPED_AT_BUDGET = "stopped_at_budget"
    FAULTED = "faulted"


class RunStatus(Enum):
    STABLE = "stable"                  # Movement diff dropped below the threshold
    NOT_CONVERGED = "not_converged"    # Step or time budget exhausted first
    CANCELLED = "cancelled"            # Stopped by the caller's cancel event
    COMPLETED = "completed"            # Fixed step count finished
    FAULT = "fault"                    # A SimulationFault stopped the run


@dataclass
class RunResult:
    """Outcome of run_until_stable() / run_for()."""
    status: RunStatus
    steps: int
    movement: float
    elapsed: float
    fault: Optional[SimulationFault] = None

    @property
    def converged(self) -> bool:
        return self.status is RunStatus.STABLE


# ============================================================================
# INTEGRATOR
# ============================================================================

@njit(parallel=True, cache=True)
def integrate(positions: np.ndarray, velocities: np.ndarray,
              forces: np.ndarray) -> float:
    """
    Apply each body's displacement and return the summed displacement magnitude.

    Norms are summed serially in body order so the metric does not depend on
    the thread count.
    """
    n = positions.shape[0]
    norms = np.empty(n, dtype=np.float64)
    for i in prange(n):
        dx = velocities[i, 0] + forces[i, 0]
        dy = velocities[i, 1] + forces[i, 1]
        dz = velocities[i, 2] + forces[i, 2]

        positions[i, 0] += dx
        positions[i, 1] += dy
        positions[i, 2] += dz

        velocities[i, 0] = dx
        velocities[i, 1] = dy
        velocities[i, 2] = dz

        norms[i] = math.sqrt(dx * dx + dy * dy + dz * dz)

    movement = 0.0
    for i in range(n):
        movement += norms[i]
    return movement


# ============================================================================
# LAYOUT ENGINE
# ============================================================================

def _node_id(node) -> str:
    return str(getattr(node, "id", node))


def _node_mass(node) -> float:
    weight = getattr(node, "weight", None)
    if not weight:
        return 1.0
    return float(weight)


class LayoutEngine:
    """
    3D force-directed layout of a graph.

    The graph is read once: one body per node (seeded on a deterministic
    spiral in node order) and the link list, kept for rendering.
    """

    def __init__(self, graph, *forces: Force,
                 stable_threshold: Optional[float] = None,
                 verbose: bool = False):
        self.state = EngineState.UNINITIALIZED
        cfg = config.LAYOUT

        self.stable_threshold = float(
            stable_threshold if stable_threshold is not None else cfg["stable_threshold"]
        )
        if not (self.stable_threshold > 0 and math.isfinite(self.stable_threshold)):
            raise ConfigurationError(
                f"stable_threshold must be positive, got {self.stable_threshold}"
            )
        self.verbose = verbose
        self.forces: List[Force] = []
        for force in forces:
            self.add_force(force)

        nodes = list(graph.nodes())
        self._links = list(graph.links())
        self.bodies = BodySet([_node_id(n) for n in nodes],
                              masses=[_node_mass(n) for n in nodes])
        self._link_pairs = self.bodies.link_pairs(self._links)

        self.steps = 0
        self.movement = 0.0
        self.reset()

    def reset(self):
        """Re-seed every body on the initial spiral and forget all motion."""
        self.bodies.positions[:] = spiral_positions(len(self.bodies), config.LAYOUT["seed_radius"])
        self.bodies.velocities.fill(0.0)
        self.bodies.reset_forces()
        self.steps = 0
        self.movement = 0.0
        self.state = EngineState.INITIALIZED

    # -------------------------------------------------------------------------
    # Collaborator interface
    # -------------------------------------------------------------------------

    def add_force(self, force: Force):
        if not isinstance(force, Force):
            raise ConfigurationError(f"expected a Force, got {type(force).__name__}")
        self.forces.append(force)

    def nodes(self) -> BodySet:
        return self.bodies

    def links(self) -> list:
        return self._links

    # -------------------------------------------------------------------------
    # Stepping
    # -------------------------------------------------------------------------

    def step(self) -> float:
        """
        Run one simulation step and return its movement metric.

        Raises a SimulationFault (positions untouched) when the octree cannot
        be built or a contribution is non-finite.
        """
        bodies = self.bodies
        bodies.reset_forces()

        for force in self.forces:
            force.rule(force, bodies, self._link_pairs)

        if not np.all(np.isfinite(bodies.forces)):
            bad = np.flatnonzero(~np.all(np.isfinite(bodies.forces), axis=1))
            raise NonFiniteError(
                f"non-finite force on {len(bad)} bodies (first: {bodies.ids[bad[0]]!r}) "
                f"at step {self.steps + 1}"
            )

        movement = integrate(bodies.positions, bodies.velocities, bodies.forces)
        self.steps += 1
        if not math.isfinite(movement):
            raise NonFiniteError(f"movement overflowed at step {self.steps}")
        self.movement = movement
        return movement

    def _begin(self, label: str):
        if self.state is EngineState.FAULTED:
            raise SimulationFault("engine faulted; call reset() before running again")
        self.state = EngineState.RUNNING
        if self.verbose:
            print(f"[Layout] {label}: {len(self.bodies):,} bodies, "
                  f"{len(self._links):,} links, {len(self.forces)} forces")

    def _fault(self, fault: SimulationFault, steps: int, started: float) -> RunResult:
        self.state = EngineState.FAULTED
        elapsed = time.perf_counter() - started
        if self.verbose:
            print(f"[Layout] Fault after {steps} steps: {fault}")
        return RunResult(RunStatus.FAULT, steps, self.movement, elapsed, fault)

    def run_until_stable(self, max_steps: Optional[int] = None,
                         time_budget: Optional[float] = None,
                         cancel=None,
                         progress: Optional[Callable[[int, float], None]] = None) -> RunResult:
        """
        Step while the movement metric still changes by at least
        stable_threshold between consecutive steps.

        Stops early (keeping the last computed state) when `max_steps` or
        `time_budget` seconds are exhausted, or when `cancel.is_set()`.
        """
        cfg = config.LAYOUT
        max_steps = int(max_steps if max_steps is not None else cfg["max_steps"])
        if max_steps < 0:
            raise ConfigurationError(f"max_steps must be >= 0, got {max_steps}")
        if time_budget is None:
            time_budget = cfg["time_budget"]
        log_every = cfg["log_every"]

        self._begin("Simulation started")
        started = time.perf_counter()
        previous = math.inf
        movement = math.inf
        steps = 0
        status = RunStatus.NOT_CONVERGED

        while True:
            if abs(movement - previous) < self.stable_threshold:
                status = RunStatus.STABLE
                break
            if steps >= max_steps:
                break
            if time_budget is not None and time.perf_counter() - started >= time_budget:
                break
            if cancel is not None and cancel.is_set():
                status = RunStatus.CANCELLED
                break

            previous = movement
            try:
                movement = self.step()
            except SimulationFault as e:
                return self._fault(e, steps, started)
            steps += 1

            if progress is not None:
                progress(steps, movement)
            if self.verbose and steps % log_every == 0:
                print(f"[Layout] Iterations: {steps}, movement: {movement:.4f}, "
                      f"time: {time.perf_counter() - started:.2f}s")

        elapsed = time.perf_counter() - started
        self.state = EngineState.STABLE if status is RunStatus.STABLE else EngineState.STOPPED_AT_BUDGET
        if self.verbose:
            print(f"[Layout] Simulation finished ({status.value}) in {elapsed:.2f}s, "
                  f"ran {steps} iterations")
        return RunResult(status, steps, self.movement, elapsed)

    def run_for(self, n: int,
                progress: Optional[Callable[[int, float], None]] = None) -> RunResult:
        """Run exactly `n` steps."""
        n = int(n)
        if n < 0:
            raise ConfigurationError(f"step count must be >= 0, got {n}")

        self._begin(f"Running {n} steps")
        started = time.perf_counter()
        for steps in range(1, n + 1):
            try:
                movement = self.step()
            except SimulationFault as e:
                return self._fault(e, steps - 1, started)
            if progress is not None:
                progress(steps, movement)

        elapsed = time.perf_counter() - started
        self.state = EngineState.STOPPED_AT_BUDGET
        if self.verbose:
            print(f"[Layout] Simulation finished in {elapsed:.2f}s")
        return RunResult(RunStatus.COMPLETED, n, self.movement, elapsed)
