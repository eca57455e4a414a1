"""
The asymmetric cylindrical kernel of the adaptive mean shift.

A kernel is built around a point from the point's height above ground and two
crown-to-tree-height ratios. Its radius follows from the crown diameter ratio
and its height from the crown height ratio. The kernel models the upper three
quarters of a vertical cylinder centered on the point: it reaches half its
height above the point but only a quarter of its height below it, and never
below the ground.

For a point at absolute height z, ground height g, height above ground
h = z - g, crown diameter ratio d and crown height ratio r:

    radius      = h * d / 2
    height      = h * r
    center      = z
    top         = z + h * r / 2
    bottom      = g + max(0, h - h * r / 4)

Points inside the kernel are weighted with an Epanechnikov profile on their
horizontal distance to the kernel's axis and a Gaussian profile on their
vertical distance to the kernel's center. Both profile functions take squared,
normalized distances directly so no square roots are computed.
"""
from __future__ import annotations

import math
from dataclasses import dataclass

import numpy as np

from crownmodes.geometry import ArrayLike, Point2D, Point3D, nan_point, weighted_mean, xy_of
from crownmodes.index import SpatialIndex
from crownmodes.raster import ParameterField

GAUSSIAN_GAMMA = -5.0
# Share of a symmetric kernel's height that is cut off at its lower end
TRUNCATED_SHARE = 0.25


def gauss_unsquared(x):
    """The Gaussian f(x) = exp(gamma * x^2), taking x^2 as its argument."""
    return np.exp(GAUSSIAN_GAMMA * x)


def epanechnikov_unsquared(x):
    """The Epanechnikov profile f(x) = 1 - x^2, taking x^2 as its argument."""
    return 1 - x


@dataclass(frozen=True)
class Kernel:
    """Vertical cylinder kernel with a truncated lower quarter."""
    xy_center: Point2D
    center_height: float
    radius: float
    height: float
    half_height: float
    top_height: float
    bottom_height: float

    @classmethod
    def around(
        cls,
        center: Point3D,
        crown_diameter_to_tree_height: float,
        crown_height_to_tree_height: float,
    ) -> "Kernel":
        """
        Kernel around a point whose z value already is its height above ground.
        """
        return cls.around_above_ground(
            center, 0.0, crown_diameter_to_tree_height, crown_height_to_tree_height
        )

    @classmethod
    def around_above_ground(
        cls,
        center: Point3D,
        ground_height: float,
        crown_diameter_to_tree_height: float,
        crown_height_to_tree_height: float,
    ) -> "Kernel":
        """
        Kernel around a point with an absolute z value, given the ground
        height at the point's xy-location. A NaN ground height produces a
        kernel with NaN geometry, which finds no points.
        """
        height_above_ground = center.z - ground_height
        height = height_above_ground * crown_height_to_tree_height
        half_height = height * 0.5
        bottom_above_ground = cls.bottom_height_above_ground_with(
            height_above_ground, crown_height_to_tree_height
        )
        return cls(
            xy_center=xy_of(center),
            center_height=center.z,
            radius=height_above_ground * crown_diameter_to_tree_height * 0.5,
            height=height,
            half_height=half_height,
            top_height=center.z + half_height,
            bottom_height=ground_height + bottom_above_ground,
        )

    @staticmethod
    def bottom_height_above_ground_with(
        point_height_above_ground: float,
        crown_height_to_tree_height: float,
    ) -> float:
        """
        Above-ground height of the bottom of a kernel constructed around a
        point at ``point_height_above_ground``. Never below zero.
        """
        bottom = (
            point_height_above_ground
            - point_height_above_ground * crown_height_to_tree_height * TRUNCATED_SHARE
        )
        return 0.0 if bottom < 0 else bottom

    @staticmethod
    def bottom_height_above_ground_field_with(
        point_height_above_ground: float,
        crown_height_to_tree_height: ParameterField,
    ) -> ParameterField:
        """
        Field of kernel bottom heights for a point at
        ``point_height_above_ground``, one per crown height ratio cell.
        """
        return crown_height_to_tree_height.copy_with_values([
            Kernel.bottom_height_above_ground_with(point_height_above_ground, ratio)
            for ratio in crown_height_to_tree_height.values
        ])

    @property
    def radius_squared(self) -> float:
        return self.radius * self.radius

    @property
    def half_height_squared(self) -> float:
        return self.half_height * self.half_height

    @property
    def is_degenerate(self) -> bool:
        """True if the kernel cannot contain any weighted point."""
        return not (
            math.isfinite(self.radius)
            and math.isfinite(self.half_height)
            and math.isfinite(self.bottom_height)
            and self.radius > 0
            and self.half_height > 0
        )

    def relative_horizontal_distances_sq(self, points: ArrayLike) -> ArrayLike:
        """Squared x-y distances to the kernel's axis over the squared radius."""
        dx = points[:, 0] - self.xy_center.x
        dy = points[:, 1] - self.xy_center.y
        return (dx * dx + dy * dy) / self.radius_squared

    def relative_vertical_distances_sq(self, points: ArrayLike) -> ArrayLike:
        """Squared z distances to the kernel's center over half its height squared."""
        dz = points[:, 2] - self.center_height
        return dz * dz / self.half_height_squared

    def weights_of(self, points: ArrayLike) -> ArrayLike:
        """Product of the horizontal and vertical profile weights per point."""
        return (
            epanechnikov_unsquared(self.relative_horizontal_distances_sq(points))
            * gauss_unsquared(self.relative_vertical_distances_sq(points))
        )

    def intersecting_points_in(self, index: SpatialIndex) -> ArrayLike:
        if self.is_degenerate:
            return np.empty((0, 3), dtype=float)
        return index.points_in_cylinder(
            self.xy_center, self.radius, self.bottom_height, self.top_height
        )

    def centroid_in(self, index: SpatialIndex) -> Point3D:
        """
        Weighted centroid of the indexed points inside the kernel, or a NaN
        point if the kernel contains no points with a positive weight.
        """
        points = self.intersecting_points_in(index)
        if len(points) == 0:
            return nan_point()
        return weighted_mean(points, self.weights_of(points))
