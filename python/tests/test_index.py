"""Tests for filtered point sequences and the spatial index."""
import math
import sys
from pathlib import Path

import numpy as np
import pytest

PROJECT_ROOT = Path(__file__).resolve().parents[1]
sys.path.append(str(PROJECT_ROOT))
from crownmodes import index  # noqa: E402
from crownmodes.errors import InvalidArgumentError  # noqa: E402
from crownmodes.geometry import Point3D  # noqa: E402
from crownmodes.raster import ConstantField, GridField  # noqa: E402


@pytest.fixture
def ground() -> GridField:
    # left cell (x < 1) at height 0, right cell at height 10
    return GridField([0.0, 10.0], 1, 2, 0.0, 2.0, 0.0, 1.0)


# =============================================================================
# Filtered point sequences
# =============================================================================

class TestFilteredPoints:

    def test_skips_non_finite_and_low_points(self):
        points = [
            (0.0, 0.0, 5.0),
            (math.nan, 0.0, 5.0),
            (0.0, 0.0, 1.0),
            (1.0, 1.0, math.inf),
            (2.0, 2.0, 2.0),
        ]
        view = index.FilteredPoints(points, index.below_height(2.0))
        assert list(view) == [Point3D(0.0, 0.0, 5.0), Point3D(2.0, 2.0, 2.0)]

    def test_restartable(self):
        points = np.array([[0.0, 0.0, 3.0], [1.0, 1.0, 0.0], [2.0, 2.0, 4.0]])
        view = index.FilteredPoints(points, index.below_height(1.0))
        assert list(view) == list(view)
        assert len(list(view)) == 2

    def test_lazy(self):
        seen = []

        def skip(point):
            seen.append(point)
            return point.z < 1.0

        points = [(0.0, 0.0, 0.0), (1.0, 0.0, 2.0), (2.0, 0.0, 3.0)]
        it = iter(index.FilteredPoints(points, skip))
        assert next(it) == Point3D(1.0, 0.0, 2.0)
        assert len(seen) == 2

    def test_empty_source(self):
        assert list(index.FilteredPoints([], index.below_height(0.0))) == []


def test_below_height_above_ground(ground) -> None:
    skip = index.below_height_above_ground(2.0, ground)
    assert not skip(Point3D(0.5, 0.5, 5.0))   # 5 m above ground
    assert skip(Point3D(1.5, 0.5, 5.0))       # below ground
    assert not skip(Point3D(1.5, 0.5, 12.0))  # exactly at the minimum
    assert skip(Point3D(3.0, 0.5, 50.0))      # outside the ground raster


def test_below_height_above_ground_skips_nan_ground() -> None:
    ground = GridField([0.0, math.nan], 1, 2, 0.0, 2.0, 0.0, 1.0)
    skip = index.below_height_above_ground(0.0, ground)
    assert not skip(Point3D(0.5, 0.5, 1.0))
    assert skip(Point3D(1.5, 0.5, 1.0))


def test_below_height_field(ground) -> None:
    min_height = GridField([1.0, math.nan], 1, 2, 0.0, 2.0, 0.0, 1.0)
    skip = index.below_height_field(min_height, ground)
    assert not skip(Point3D(0.5, 0.5, 1.0))
    assert skip(Point3D(0.5, 0.5, 0.5))
    # NaN minimum height
    assert skip(Point3D(1.5, 0.5, 50.0))


# =============================================================================
# Spatial index
# =============================================================================

class TestSpatialIndex:

    def test_cylinder_boundaries_are_inclusive(self):
        idx = index.SpatialIndex(np.array([
            [1.0, 0.0, 0.0],   # on the cylinder wall
            [0.0, 0.0, 2.0],   # on the top
            [0.0, -1.0, -1.0],  # on the bottom rim
        ]))
        found = idx.points_in_cylinder((0.0, 0.0), 1.0, -1.0, 2.0)
        assert len(found) == 3

    def test_square_window_corners_are_excluded(self):
        idx = index.SpatialIndex(np.array([
            [0.8, 0.8, 0.0],
            [0.5, 0.5, 0.0],
        ]))
        found = idx.points_in_cylinder((0.0, 0.0), 1.0, -1.0, 1.0)
        np.testing.assert_allclose(found, [[0.5, 0.5, 0.0]])

    def test_height_range_filters_candidates(self):
        idx = index.SpatialIndex(np.array([
            [0.0, 0.0, 0.0],
            [0.0, 0.0, 5.0],
            [0.0, 0.0, 10.0],
        ]))
        found = idx.points_in_cylinder((0.0, 0.0), 1.0, 4.0, 6.0)
        np.testing.assert_allclose(found, [[0.0, 0.0, 5.0]])

    def test_matches_brute_force(self):
        rng = np.random.default_rng(3)
        pts = rng.uniform(0, 20, size=(500, 3))
        idx = index.SpatialIndex(pts)
        center, radius, bottom, top = (10.0, 9.0), 3.5, 5.0, 12.0
        found = idx.points_in_cylinder(center, radius, bottom, top)

        d2 = (pts[:, 0] - center[0]) ** 2 + (pts[:, 1] - center[1]) ** 2
        expected = pts[(d2 <= radius ** 2) & (pts[:, 2] >= bottom) & (pts[:, 2] <= top)]
        assert len(found) == len(expected)
        np.testing.assert_allclose(
            found[np.lexsort(found.T)], expected[np.lexsort(expected.T)]
        )

    def test_empty_index(self):
        idx = index.SpatialIndex(np.empty((0, 3)))
        assert len(idx) == 0
        assert idx.bounds is None
        assert idx.points_in_cylinder((0.0, 0.0), 10.0, -10.0, 10.0).shape == (0, 3)

    def test_rejects_non_finite_points(self):
        with pytest.raises(InvalidArgumentError):
            index.SpatialIndex(np.array([[0.0, 0.0, math.nan]]))

    def test_points_are_read_only(self):
        idx = index.SpatialIndex(np.zeros((2, 3)))
        with pytest.raises(ValueError):
            idx.points[0, 0] = 1.0

    def test_bulk_load_from_generator(self):
        idx = index.SpatialIndex.bulk_load(Point3D(float(i), 0.0, 1.0) for i in range(5))
        assert len(idx) == 5
        assert idx.bounds.max_corner == Point3D(4.0, 0.0, 1.0)


# =============================================================================
# Index builders
# =============================================================================

def test_create_index_of_finite() -> None:
    points = np.array([
        [0.0, 0.0, 3.0],
        [0.0, 0.0, 0.5],
        [np.nan, 0.0, 3.0],
        [1.0, 1.0, 1.0],
    ])
    idx = index.create_index_of_finite(points, 1.0)
    np.testing.assert_allclose(idx.points, [[0.0, 0.0, 3.0], [1.0, 1.0, 1.0]])


def test_create_index_of_above_ground(ground) -> None:
    points = np.array([
        [0.5, 0.5, 3.0],
        [1.5, 0.5, 3.0],
        [1.5, 0.5, 13.0],
        [5.0, 0.5, 13.0],
    ])
    idx = index.create_index_of_above_ground(points, 1.0, ground)
    np.testing.assert_allclose(idx.points, [[0.5, 0.5, 3.0], [1.5, 0.5, 13.0]])


def test_create_index_of_above_height_field() -> None:
    min_height = GridField([1.0, 5.0], 1, 2, 0.0, 2.0, 0.0, 1.0)
    points = np.array([
        [0.5, 0.5, 3.0],
        [1.5, 0.5, 3.0],
        [1.5, 0.5, 6.0],
    ])
    idx = index.create_index_of_above_height_field(points, min_height, ConstantField(0.0))
    np.testing.assert_allclose(idx.points, [[0.5, 0.5, 3.0], [1.5, 0.5, 6.0]])
