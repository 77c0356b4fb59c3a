import numpy as np
import pytest

from forcelayout import (
    BodySet, ConfigurationError, Force, ForceKind, LayoutEngine, Link, Scope,
    drag_force, gravity_force, spring_force,
)
from tools.graphs import line_graph


TOLERANCE = 1e-4


def two_body_engine(*forces, left=(0, 0, 0), right=(100, 100, 100)):
    engine = LayoutEngine(line_graph(2), *forces)
    engine.nodes()["0"].set_position(*left)
    engine.nodes()["1"].set_position(*right)
    return engine


def check_distance(left, right, x0, x1):
    """Left and right must have moved equally far from x0 and x1, mirrored."""
    for axis in ("x", "y", "z"):
        d_left = x0 - getattr(left, axis)
        d_right = getattr(right, axis) - x1
        assert abs(d_left - d_right) <= TOLERANCE, (axis, d_left, d_right)


def test_two_bodies_each_on_each():
    engine = two_body_engine(gravity_force(-1.0, "each_on_each"))
    left, right = engine.nodes()["0"], engine.nodes()["1"]

    for _ in range(10000):
        engine.step()
        check_distance(left, right, 0, 100)

    # Repulsion pushed them apart
    assert left.x < 0 and right.x > 100


def test_two_bodies_barnes_hut():
    engine = two_body_engine(gravity_force(-1.0, "barnes_hut"))
    left, right = engine.nodes()["0"], engine.nodes()["1"]

    for _ in range(1000):
        engine.step()
        check_distance(left, right, 0, 100)


def test_two_bodies_barnes_hut_symmetric_boundary():
    engine = two_body_engine(
        gravity_force(-1.0, "barnes_hut"),
        left=(-541.38, -541.38, -541.38),
        right=(641.38, 641.38, 641.38),
    )
    left, right = engine.nodes()["0"], engine.nodes()["1"]

    movement = engine.step()

    check_distance(left, right, -541.38, 641.38)
    assert np.isfinite(movement)
    assert movement < 1e-3


def test_two_bodies_drag_reduces_displacement():
    gravity = gravity_force(-1.0, "each_on_each")
    free = two_body_engine(gravity, right=(10, 10, 10))
    dragged = two_body_engine(gravity, drag_force(1), right=(10, 10, 10))

    for _ in range(100):
        free.step()
        dragged.step()
        check_distance(free.nodes()["0"], free.nodes()["1"], 0, 10)
        check_distance(dragged.nodes()["0"], dragged.nodes()["1"], 0, 10)

    start = np.array([10.0, 10.0, 10.0])
    free_disp = np.linalg.norm(np.array(free.nodes()["1"].position) - start)
    dragged_disp = np.linalg.norm(np.array(dragged.nodes()["1"].position) - start)
    assert dragged_disp > 0
    assert dragged_disp < 0.5 * free_disp


def test_force_order_does_not_matter():
    gravity, drag = gravity_force(-1.0, "each_on_each"), drag_force(0.5)
    a = two_body_engine(gravity, drag, right=(10, 10, 10))
    b = two_body_engine(drag, gravity, right=(10, 10, 10))
    for _ in range(20):
        a.step()
        b.step()
    np.testing.assert_array_equal(a.bodies.positions, b.bodies.positions)


def test_each_on_each_three_bodies():
    bodies = BodySet(["1", "2", "3"], positions=[(1, 1, 1), (2, 2, 2), (3, 3, 3)])
    gravity_force(-10, "each_on_each").apply(bodies, [])

    # Momentum is conserved and the outer bodies are pushed outward
    np.testing.assert_allclose(bodies.forces.sum(axis=0), 0.0, atol=1e-12)
    assert np.all(bodies.forces[0] < 0)
    assert np.all(bodies.forces[2] > 0)
    np.testing.assert_allclose(bodies.forces[1], 0.0, atol=1e-12)


def test_gravity_attracts_with_positive_coefficient():
    bodies = BodySet(["a", "b"], positions=[(0, 0, 0), (3, 4, 0)])
    gravity_force(2.0, "each_on_each").apply(bodies)

    # |F| = coeff * m1 * m2 / d^2 toward the other body
    np.testing.assert_allclose(bodies.forces[0], [2.0 / 25 * 0.6, 2.0 / 25 * 0.8, 0.0])
    np.testing.assert_allclose(bodies.forces[1], -bodies.forces[0])


def test_gravity_skips_coincident_bodies():
    bodies = BodySet(["a", "b"], positions=[(5, 5, 5), (5, 5, 5)])
    gravity_force(-1.0, "each_on_each").apply(bodies)
    np.testing.assert_array_equal(bodies.forces, 0.0)


def gravity_both_ways(positions, masses=None, theta=0.5):
    ids = [str(i) for i in range(len(positions))]
    exact = BodySet(ids, positions, masses)
    gravity_force(-1.0, "each_on_each").apply(exact)
    approx = BodySet(ids, positions, masses)
    gravity_force(-1.0, "barnes_hut", theta=theta).apply(approx)
    return exact.forces, approx.forces


def pair_magnitude_sums(positions, masses):
    """Per body, the sum of |F_ij| over all other bodies (no cancellation)."""
    diffs = positions[:, None, :] - positions[None, :, :]
    dist_sq = (diffs ** 2).sum(axis=-1)
    np.fill_diagonal(dist_sq, np.inf)
    return (masses[:, None] * masses[None, :] / dist_sq).sum(axis=1)


@pytest.mark.parametrize("theta, global_tol, body_tol", [
    (0.5, 0.05, 0.1),
    (0.8, 0.1, 0.3),
    (1.0, 0.15, 0.5),
])
def test_barnes_hut_matches_exact_on_random_cloud(theta, global_tol, body_tol):
    rng = np.random.default_rng(7)
    n = 300
    positions = rng.uniform(0, 100, size=(n, 3))
    masses = rng.uniform(0.5, 2.0, size=n)

    exact, approx = gravity_both_ways(positions, masses, theta)

    rel = np.linalg.norm(approx - exact) / np.linalg.norm(exact)
    assert rel < global_tol

    per_body = np.linalg.norm(approx - exact, axis=1)
    assert np.all(per_body <= body_tol * pair_magnitude_sums(positions, masses))


def test_barnes_hut_isolated_body_against_cluster():
    rng = np.random.default_rng(11)
    cluster = 99.0 + rng.uniform(-1.0, 1.0, size=(10, 3))
    positions = np.vstack([[0.0, 0.0, 0.0], cluster])

    exact, approx = gravity_both_ways(positions, theta=0.9)

    # The cluster is far and tight: one aggregate stands in for it, and the
    # isolated body's own mass never enters that aggregate
    np.testing.assert_allclose(approx[0], exact[0], rtol=1e-3)


def test_barnes_hut_wide_theta_two_bodies_is_exact():
    positions = np.array([[0.0, 0.0, 0.0], [100.0, 100.0, 100.0]])
    exact, approx = gravity_both_ways(positions, theta=1.2)
    np.testing.assert_allclose(approx, exact, rtol=1e-12)


def test_barnes_hut_with_tiny_theta_is_exact():
    rng = np.random.default_rng(3)
    n = 64
    positions = rng.uniform(-50, 50, size=(n, 3))
    ids = [str(i) for i in range(n)]

    exact = BodySet(ids, positions)
    gravity_force(-1.0, "each_on_each").apply(exact)

    approx = BodySet(ids, positions)
    gravity_force(-1.0, "barnes_hut", theta=1e-9).apply(approx)

    np.testing.assert_allclose(approx.forces, exact.forces, rtol=1e-9, atol=1e-15)


def test_spring_pulls_toward_rest_length():
    bodies = BodySet(["a", "b"], positions=[(0, 0, 0), (10, 0, 0)])
    spring_force(0.1, 20.0).apply(bodies, [Link("a", "b")])

    # Shorter than the rest length: pushed apart, equal and opposite
    np.testing.assert_allclose(bodies.forces[0], [-1.0, 0.0, 0.0])
    np.testing.assert_allclose(bodies.forces[1], [1.0, 0.0, 0.0])

    bodies.reset_forces()
    spring_force(0.1, 5.0).apply(bodies, [Link("a", "b")])
    np.testing.assert_allclose(bodies.forces[0], [0.5, 0.0, 0.0])


def test_spring_ignores_self_links_and_missing_links():
    bodies = BodySet(["a", "b"], positions=[(0, 0, 0), (10, 0, 0)])
    spring = spring_force(0.1, 20.0)
    spring.apply(bodies, [Link("a", "a")])
    spring.apply(bodies, None)
    spring.apply(bodies, [])
    np.testing.assert_array_equal(bodies.forces, 0.0)


def test_spring_rejects_unknown_link():
    bodies = BodySet(["a", "b"])
    with pytest.raises(ConfigurationError):
        spring_force(0.1, 1.0).apply(bodies, [Link("a", "nope")])


def test_drag_opposes_previous_displacement():
    bodies = BodySet(["a", "b"])
    bodies.velocities[:] = [(1.0, -2.0, 0.5), (0.0, 0.0, 0.0)]
    drag_force(0.5).apply(bodies)
    np.testing.assert_allclose(bodies.forces, [(-0.5, 1.0, -0.25), (0.0, 0.0, 0.0)])


def test_force_selects_rule_from_scope():
    assert gravity_force(-1, "each_on_each").rule.__name__ == "each_on_each"
    assert gravity_force(-1, Scope.BARNES_HUT).rule.__name__ == "barnes_hut"
    assert spring_force().rule.__name__ == "for_each_link"
    assert drag_force().rule.__name__ == "for_each_node"
    assert gravity_force(-1).kind is ForceKind.GRAVITY


@pytest.mark.parametrize("theta", [0.0, -0.5, float("nan")])
def test_barnes_hut_rejects_non_positive_theta(theta):
    with pytest.raises(ConfigurationError):
        gravity_force(-1.0, "barnes_hut", theta=theta)


@pytest.mark.parametrize("coeff", [0.0, -1.0, 1.5])
def test_drag_rejects_coefficient_outside_unit_interval(coeff):
    with pytest.raises(ConfigurationError):
        drag_force(coeff)


def test_rejects_bad_configuration():
    with pytest.raises(ConfigurationError):
        gravity_force(-1.0, "sideways")
    with pytest.raises(ConfigurationError):
        gravity_force(float("inf"), "each_on_each")
    with pytest.raises(ConfigurationError):
        drag_force(0.5, scope="each_on_each")
    with pytest.raises(ConfigurationError):
        Force(ForceKind.SPRING, Scope.FOR_EACH_NODE, 1.0)
    with pytest.raises(ConfigurationError):
        spring_force(0.1, -1.0)
