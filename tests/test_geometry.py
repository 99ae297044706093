import math

import numpy as np
import pytest

from blunav.errors import DegenerateGeometry, InsufficientBeacons, NumericalError
from blunav.geometry import GeometrySolver, circle_intersections


def ranges_to(centers, point):
    return [(c, math.dist(c[: len(point)], point)) for c in centers]


def test_exact_three_beacons():
    solver = GeometrySolver()
    solution = solver.solve(ranges_to([(0, 0), (10, 0), (0, 10)], (3, 4)))
    assert solution.position.x == pytest.approx(3.0, abs=1e-9)
    assert solution.position.y == pytest.approx(4.0, abs=1e-9)
    assert solution.residual == pytest.approx(0.0, abs=1e-9)
    assert solution.condition_number < 10


def test_overdetermined_noisy_beacons():
    rng = np.random.default_rng(7)
    centers = [(0, 0), (10, 0), (10, 10), (0, 10), (5, -3), (-2, 6)]
    ranges = [(c, d + rng.normal(0, 0.05)) for c, d in ranges_to(centers, (4, 6))]
    solution = GeometrySolver().solve(ranges)
    assert solution.position.x == pytest.approx(4.0, abs=0.2)
    assert solution.position.y == pytest.approx(6.0, abs=0.2)
    assert solution.residual > 0


def test_three_dimensional_solve():
    centers = [(0, 0, 0), (10, 0, 0), (0, 10, 0), (0, 0, 3), (10, 10, 3)]
    solution = GeometrySolver().solve(ranges_to(centers, (2, 3, 1.2)), dims=3)
    assert solution.position.as_tuple() == pytest.approx((2.0, 3.0, 1.2), abs=1e-6)


@pytest.mark.parametrize("distances", [(1.0, 2.0, 3.0), (5.0, 5.0, 5.0), (0.0, 4.0, 9.0)])
def test_collinear_beacons_rejected(distances):
    centers = [(0, 0), (5, 0), (10, 0)]
    with pytest.raises(DegenerateGeometry):
        GeometrySolver().solve(list(zip(centers, distances)))


def test_nearly_collinear_beacons_rejected():
    centers = [(0, 0), (5, 1e-4), (10, 0)]
    with pytest.raises(DegenerateGeometry):
        GeometrySolver().solve(list(zip(centers, (5.0, 1.0, 5.0))))


def test_condition_threshold_is_configurable():
    centers = [(0, 0), (5, 0.2), (10, 0)]
    ranges = list(zip(centers, (5.0, 0.5, 5.0)))
    with pytest.raises(DegenerateGeometry):
        GeometrySolver(max_condition_number=10).solve(ranges)
    GeometrySolver(max_condition_number=1e6).solve(ranges)


def test_coplanar_beacons_rejected_in_3d():
    centers = [(0, 0, 2), (10, 0, 2), (0, 10, 2), (10, 10, 2)]
    with pytest.raises(DegenerateGeometry):
        GeometrySolver().solve(list(zip(centers, (5.0, 6.0, 7.0, 8.0))), dims=3)


def test_too_few_ranges():
    with pytest.raises(InsufficientBeacons):
        GeometrySolver().solve([((0, 0), 1.0), ((1, 0), 1.0)])
    with pytest.raises(InsufficientBeacons):
        GeometrySolver().solve([((0, 0, 0), 1.0), ((1, 0, 0), 1.0), ((0, 1, 0), 1.0)], dims=3)


def test_non_finite_input():
    with pytest.raises(NumericalError):
        GeometrySolver().solve([((0, 0), 1.0), ((10, 0), math.inf), ((0, 10), 1.0)])


def test_invalid_threshold():
    with pytest.raises(ValueError):
        GeometrySolver(max_condition_number=1.0)


def test_circle_intersections_two_points():
    points = circle_intersections((0, 0), 5.0, (10, 0), math.sqrt(65))
    assert len(points) == 2
    assert points[0] == pytest.approx((3.0, -4.0))
    assert points[1] == pytest.approx((3.0, 4.0))


def test_circle_intersections_tangent():
    points = circle_intersections((0, 0), 2.0, (5, 0), 3.0)
    assert len(points) == 1
    assert points[0] == pytest.approx((2.0, 0.0))


@pytest.mark.parametrize("c2, r2", [((10, 0), 2.0), ((0.5, 0), 1.0), ((0, 0), 3.0)])
def test_circle_intersections_none(c2, r2):
    # 相离、内含、同心
    assert circle_intersections((0, 0), 3.0, c2, r2) == ()
