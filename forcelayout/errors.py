"""Exceptions raised by the layout core."""


class LayoutError(Exception):
    """Base class for every error raised by forcelayout."""


class ConfigurationError(LayoutError, ValueError):
    """A force, graph or run parameter was rejected before simulating."""


class LeafNotFoundError(LayoutError, KeyError):
    """The requested id was never inserted into this octree."""

    def __init__(self, point_id):
        super().__init__(point_id)
        self.point_id = point_id

    def __str__(self):
        return f"leaf not found: {self.point_id!r}"


class SimulationFault(LayoutError):
    """Numerical fault detected while stepping the simulation."""


class DegenerateInputError(SimulationFault):
    """Coincident, near-duplicate or non-finite points cannot be subdivided."""


class NonFiniteError(SimulationFault):
    """A force contribution blew up to inf/nan before integration."""
