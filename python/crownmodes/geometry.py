"""
Geometry primitives: points, boxes and distance helpers.
Points are plain named tuples; bulk operations take (N, 3) numpy arrays.
"""
from __future__ import annotations

import math
from typing import NamedTuple, Optional, Sequence

import numpy as np

from crownmodes.errors import InvalidArgumentError

ArrayLike = np.ndarray


class Point2D(NamedTuple):
    x: float
    y: float


class Point3D(NamedTuple):
    x: float
    y: float
    z: float


class Box(NamedTuple):
    """Axis-aligned 3D box given by its minimum and maximum corners."""
    min_corner: Point3D
    max_corner: Point3D

    def contains(self, point: Sequence[float]) -> bool:
        """Inclusive containment test."""
        return all(
            lo <= c <= hi for lo, c, hi in zip(self.min_corner, point, self.max_corner)
        )

    @classmethod
    def of_points(cls, points: ArrayLike) -> Optional["Box"]:
        """Bounding box of an (N, 3) array, or None for an empty array."""
        points = as_point_array(points)
        if len(points) == 0:
            return None
        lo = points.min(axis=0)
        hi = points.max(axis=0)
        return cls(Point3D(*map(float, lo)), Point3D(*map(float, hi)))


def xy_of(point: Sequence[float]) -> Point2D:
    """The x and y value of a 3D point as a 2D point."""
    return Point2D(float(point[0]), float(point[1]))


def squared_distance(a: Sequence[float], b: Sequence[float]) -> float:
    return (a[0] - b[0]) ** 2 + (a[1] - b[1]) ** 2 + (a[2] - b[2]) ** 2


def distance(a: Sequence[float], b: Sequence[float]) -> float:
    """Euclidean distance between two 3D points."""
    return math.sqrt(squared_distance(a, b))


def squared_xy_distance(a: Sequence[float], b: Sequence[float]) -> float:
    """Squared distance between two points on the x-y-plane."""
    return (a[0] - b[0]) ** 2 + (a[1] - b[1]) ** 2


def is_finite(point: Sequence[float]) -> bool:
    # z first; it is the coordinate most likely to be non-finite
    return math.isfinite(point[2]) and math.isfinite(point[0]) and math.isfinite(point[1])


def has_non_finite_coordinate(point: Sequence[float]) -> bool:
    return not is_finite(point)


def nan_point() -> Point3D:
    """A 3D point with NaN coordinate values."""
    return Point3D(math.nan, math.nan, math.nan)


def as_point_array(points) -> ArrayLike:
    """
    Coerce a sequence of 3D points into a float array of shape (N, 3).
    """
    arr = np.asarray(points, dtype=float)
    if arr.size == 0:
        return np.empty((0, 3), dtype=float)
    if arr.ndim != 2 or arr.shape[1] != 3:
        raise InvalidArgumentError(f"points must have shape (N, 3), got {arr.shape}")
    return arr


def weighted_mean(points: ArrayLike, weights: ArrayLike) -> Point3D:
    """
    Weighted arithmetic mean of a set of points: sum(w_i * p_i) / sum(w_i).

    Parameters
    ----------
    points : array (N, 3)
    weights : array (N,)
        Non-negative weights. The caller guarantees at least one positive
        weight; a zero weight sum yields a NaN point.

    Returns
    -------
    Point3D
    """
    points = as_point_array(points)
    weights = np.asarray(weights, dtype=float)
    if weights.shape != (len(points),):
        raise InvalidArgumentError(
            f"Got {weights.shape[0] if weights.ndim else 0} weights for {len(points)} points"
        )
    weight_sum = weights.sum()
    if weight_sum == 0:
        return nan_point()
    mean = weights @ points / weight_sum
    return Point3D(float(mean[0]), float(mean[1]), float(mean[2]))
