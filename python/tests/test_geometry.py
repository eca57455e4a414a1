"""Tests for geometry primitives."""
import math
import sys
from pathlib import Path

import numpy as np
import pytest

PROJECT_ROOT = Path(__file__).resolve().parents[1]
sys.path.append(str(PROJECT_ROOT))
from crownmodes import geometry  # noqa: E402
from crownmodes.errors import InvalidArgumentError  # noqa: E402


def test_distance_helpers() -> None:
    a = geometry.Point3D(0.0, 0.0, 0.0)
    b = geometry.Point3D(3.0, 4.0, 12.0)
    assert geometry.squared_distance(a, b) == 169.0
    assert geometry.distance(a, b) == 13.0
    assert geometry.squared_xy_distance(a, b) == 25.0


def test_xy_of_drops_z() -> None:
    assert geometry.xy_of((1.0, 2.0, 3.0)) == geometry.Point2D(1.0, 2.0)


@pytest.mark.parametrize(
    "point",
    [
        (math.nan, 0.0, 0.0),
        (0.0, math.inf, 0.0),
        (0.0, 0.0, -math.inf),
    ],
)
def test_non_finite_points_detected(point) -> None:
    assert not geometry.is_finite(point)
    assert geometry.has_non_finite_coordinate(point)


def test_nan_point_has_only_nan_coordinates() -> None:
    p = geometry.nan_point()
    assert all(math.isnan(c) for c in p)
    assert not geometry.is_finite(p)


def test_weighted_mean() -> None:
    points = np.array([[0.0, 0.0, 0.0], [2.0, 4.0, 8.0]])
    mean = geometry.weighted_mean(points, [1.0, 3.0])
    np.testing.assert_allclose(mean, [1.5, 3.0, 6.0])
    assert isinstance(mean, geometry.Point3D)


def test_weighted_mean_ignores_zero_weights() -> None:
    points = np.array([[1.0, 1.0, 1.0], [100.0, 100.0, 100.0]])
    mean = geometry.weighted_mean(points, [2.0, 0.0])
    np.testing.assert_allclose(mean, [1.0, 1.0, 1.0])


def test_weighted_mean_zero_weight_sum_is_nan() -> None:
    mean = geometry.weighted_mean(np.ones((2, 3)), [0.0, 0.0])
    assert not geometry.is_finite(mean)


def test_weighted_mean_rejects_length_mismatch() -> None:
    with pytest.raises(InvalidArgumentError):
        geometry.weighted_mean(np.ones((3, 3)), [1.0, 1.0])


def test_as_point_array_shapes() -> None:
    assert geometry.as_point_array([]).shape == (0, 3)
    assert geometry.as_point_array([(1, 2, 3)]).dtype == float
    with pytest.raises(InvalidArgumentError):
        geometry.as_point_array([[1.0, 2.0]])


def test_box_of_points_and_contains() -> None:
    box = geometry.Box.of_points(np.array([[0.0, 1.0, 2.0], [4.0, -1.0, 5.0]]))
    assert box.min_corner == geometry.Point3D(0.0, -1.0, 2.0)
    assert box.max_corner == geometry.Point3D(4.0, 1.0, 5.0)
    assert box.contains((4.0, 1.0, 5.0))
    assert not box.contains((4.1, 0.0, 3.0))
    assert geometry.Box.of_points(np.empty((0, 3))) is None
