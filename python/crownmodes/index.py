"""
Spatial index over 3D points and the filtered point sequences used to build it.

Indexes are bulk-loaded once from a lazily filtered view of the raw point list
and only queried afterwards. Points with non-finite coordinates never enter an
index; the builders additionally drop points below a (possibly per-cell)
minimum height.
"""
from __future__ import annotations

import logging
import math
from typing import Callable, Iterable, Iterator, Optional, Sequence

import numpy as np
from scipy.spatial import cKDTree

from crownmodes.errors import InvalidArgumentError
from crownmodes.geometry import ArrayLike, Box, Point3D, as_point_array, is_finite
from crownmodes.raster import ParameterField

SkipPredicate = Callable[[Point3D], bool]

logger = logging.getLogger(__name__)

# Maximum number of points per leaf node of the KD-tree
LEAF_SIZE = 8


# =============================================================================
# Filtered point sequences
# =============================================================================

class FilteredPoints:
    """
    Lazy, restartable view of a point sequence that skips points with
    non-finite coordinates and points for which ``skip`` returns True.

    Every call to ``iter()`` starts a fresh single pass over ``source``, so the
    same view can be consumed more than once.
    """

    def __init__(self, source: Sequence[Sequence[float]], skip: SkipPredicate):
        self._source = source
        self._skip = skip

    def __iter__(self) -> Iterator[Point3D]:
        skip = self._skip
        for raw in self._source:
            point = Point3D(float(raw[0]), float(raw[1]), float(raw[2]))
            if not is_finite(point) or skip(point):
                continue
            yield point


def below_height(min_height: float) -> SkipPredicate:
    """Skip points whose z value lies below ``min_height``."""
    def skip(point: Point3D) -> bool:
        return point.z < min_height
    return skip


def below_height_above_ground(
    min_height_above_ground: float,
    ground_height: ParameterField,
) -> SkipPredicate:
    """
    Skip points outside the ground raster, points at non-finite ground heights
    and points lying less than ``min_height_above_ground`` above the ground.
    """
    def skip(point: Point3D) -> bool:
        if not ground_height.has_value_at(point.x, point.y):
            return True
        height_above_ground = point.z - ground_height.value_at_unchecked(point.x, point.y)
        return (
            not math.isfinite(height_above_ground)
            or height_above_ground < min_height_above_ground
        )
    return skip


def below_height_field(
    min_height_above_ground: ParameterField,
    ground_height: ParameterField,
) -> SkipPredicate:
    """
    Same as below_height_above_ground but with a per-cell minimum height.
    Points where the minimum height is unknown or non-finite are skipped too.
    """
    def skip(point: Point3D) -> bool:
        if not (
            ground_height.has_value_at(point.x, point.y)
            and min_height_above_ground.has_value_at(point.x, point.y)
        ):
            return True
        height_above_ground = point.z - ground_height.value_at_unchecked(point.x, point.y)
        min_height = min_height_above_ground.value_at_unchecked(point.x, point.y)
        return (
            not math.isfinite(height_above_ground)
            or not math.isfinite(min_height)
            or height_above_ground < min_height
        )
    return skip


# =============================================================================
# Spatial index
# =============================================================================

class SpatialIndex:
    """
    Immutable index of finite 3D points supporting vertical cylinder queries.

    Horizontal lookups go through a KD-tree over the x-y coordinates; the z
    range is applied to the candidates afterwards.
    """

    def __init__(self, points: ArrayLike):
        points = np.array(as_point_array(points), dtype=float)
        if len(points) and not np.isfinite(points).all():
            raise InvalidArgumentError("SpatialIndex only accepts finite points")
        points.setflags(write=False)
        self._points = points
        self._tree: Optional[cKDTree] = None
        if len(points):
            self._tree = cKDTree(points[:, :2], leafsize=LEAF_SIZE, balanced_tree=True)

    @classmethod
    def bulk_load(cls, points: Iterable[Sequence[float]]) -> "SpatialIndex":
        """Build an index from an iterable of points in a single pass."""
        flat = np.fromiter(
            (c for point in points for c in point[:3]),
            dtype=float,
        )
        return cls(flat.reshape(-1, 3))

    def __len__(self) -> int:
        return len(self._points)

    @property
    def points(self) -> ArrayLike:
        """Read-only (N, 3) array of the indexed points."""
        return self._points

    @property
    def bounds(self) -> Optional[Box]:
        return Box.of_points(self._points)

    def points_in_cylinder(
        self,
        xy_center: Sequence[float],
        radius: float,
        bottom_z: float,
        top_z: float,
    ) -> ArrayLike:
        """
        Points inside a vertical cylinder, boundaries included.

        Parameters
        ----------
        xy_center : (x, y)
            Horizontal center of the cylinder
        radius : float
            Cylinder radius
        bottom_z, top_z : float
            Absolute heights of the cylinder's bottom and top

        Returns
        -------
        array (M, 3)
            Points with horizontal distance <= radius and bottom_z <= z <= top_z
        """
        if self._tree is None or not radius >= 0:
            return np.empty((0, 3), dtype=float)

        cx, cy = float(xy_center[0]), float(xy_center[1])
        # square window around the center, slightly widened; the exact test
        # below decides points on the boundary
        window = radius * (1 + 1e-9) + 1e-12
        candidates = self._tree.query_ball_point([cx, cy], r=window, p=np.inf)
        if not candidates:
            return np.empty((0, 3), dtype=float)

        pts = self._points[np.sort(np.asarray(candidates, dtype=np.intp))]
        dx = pts[:, 0] - cx
        dy = pts[:, 1] - cy
        z = pts[:, 2]
        inside = (dx * dx + dy * dy <= radius * radius) & (z >= bottom_z) & (z <= top_z)
        return pts[inside]


# =============================================================================
# Index builders
# =============================================================================

def create_index_of_finite(
    points: Sequence[Sequence[float]],
    min_height: float,
) -> SpatialIndex:
    """Index all finite points with z >= ``min_height``."""
    index = SpatialIndex.bulk_load(FilteredPoints(points, below_height(min_height)))
    logger.debug("Indexed %d of %d points (min height %.3f)", len(index), len(points), min_height)
    return index


def create_index_of_above_ground(
    points: Sequence[Sequence[float]],
    min_height_above_ground: float,
    ground_height: ParameterField,
) -> SpatialIndex:
    """
    Index all finite points that lie at least ``min_height_above_ground``
    above the ground height at their location.
    """
    index = SpatialIndex.bulk_load(
        FilteredPoints(points, below_height_above_ground(min_height_above_ground, ground_height))
    )
    logger.debug(
        "Indexed %d of %d points (min height above ground %.3f)",
        len(index), len(points), min_height_above_ground,
    )
    return index


def create_index_of_above_height_field(
    points: Sequence[Sequence[float]],
    min_height_above_ground: ParameterField,
    ground_height: ParameterField,
) -> SpatialIndex:
    """
    Index all finite points that lie at least as high above ground as the
    minimum height field demands at their location.
    """
    index = SpatialIndex.bulk_load(
        FilteredPoints(points, below_height_field(min_height_above_ground, ground_height))
    )
    logger.debug("Indexed %d of %d points (per-cell min height)", len(index), len(points))
    return index
