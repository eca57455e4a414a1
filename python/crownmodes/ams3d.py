"""
Adaptive 3D mean shift (AMS3D) mode finding for single points.

For a query point the driver builds a kernel around it, computes the kernel's
weighted centroid within the indexed point cloud, builds a new kernel around
that centroid and repeats until two consecutive centroids are closer than the
convergence distance or the maximum number of centroids is reached. The last
centroid is the mode. Modes of points from the same tree crown cluster a bit
below the crown apex.

Ground height and the crown ratios may be plain numbers or parameter fields;
fields are looked up again at every new centroid location.

Points with non-finite coordinates, points below the minimum height above
ground and points where a parameter lookup yields NaN get a NaN mode and an
empty centroid list. No exception is raised for these.
"""
from __future__ import annotations

import logging
import math
import numbers
from typing import List, NamedTuple, Optional, Sequence, Tuple, Union

from crownmodes.errors import InvalidArgumentError
from crownmodes.geometry import Point3D, distance, is_finite, nan_point
from crownmodes.index import SpatialIndex
from crownmodes.kernel import Kernel
from crownmodes.raster import ParameterField, as_field

logger = logging.getLogger(__name__)

FieldLike = Union[float, ParameterField]


class ModeResult(NamedTuple):
    """A mode and the centroids calculated on the way to it."""
    mode: Point3D
    centroids: List[Point3D]

    @property
    def is_rejected(self) -> bool:
        return not is_finite(self.mode)


def calculate_a_single_mode(
    point: Sequence[float],
    index: SpatialIndex,
    min_point_height_above_ground: float,
    crown_diameter_to_tree_height: FieldLike,
    crown_height_to_tree_height: FieldLike,
    centroid_convergence_distance: float,
    max_num_centroids_per_mode: int,
    ground_height: Optional[FieldLike] = None,
) -> Point3D:
    """
    Calculate the mode of ``point`` within ``index``.

    Parameters
    ----------
    point : (x, y, z)
        Query point. Its z value is an absolute height if ``ground_height`` is
        given, otherwise a height above ground.
    index : SpatialIndex
        Indexed point cloud
    min_point_height_above_ground : float
        Points lower than this above ground get a NaN mode
    crown_diameter_to_tree_height : float or ParameterField
        Ratio scaling the kernel radius
    crown_height_to_tree_height : float or ParameterField
        Ratio scaling the kernel height
    centroid_convergence_distance : float
        Iteration stops once consecutive centroids are closer than this
    max_num_centroids_per_mode : int
        Maximum number of centroids calculated per mode
    ground_height : float or ParameterField, optional
        Ground height below the points. None means heights are normalized.

    Returns
    -------
    Point3D
        The mode, or a point with NaN coordinates
    """
    return calculate_a_single_mode_plus_centroids(
        point,
        index,
        min_point_height_above_ground,
        crown_diameter_to_tree_height,
        crown_height_to_tree_height,
        centroid_convergence_distance,
        max_num_centroids_per_mode,
        ground_height=ground_height,
    ).mode


def calculate_a_single_mode_plus_centroids(
    point: Sequence[float],
    index: SpatialIndex,
    min_point_height_above_ground: float,
    crown_diameter_to_tree_height: FieldLike,
    crown_height_to_tree_height: FieldLike,
    centroid_convergence_distance: float,
    max_num_centroids_per_mode: int,
    ground_height: Optional[FieldLike] = None,
) -> ModeResult:
    """
    Same as calculate_a_single_mode but also returns the centroids.

    A centroid list as long as ``max_num_centroids_per_mode`` means the
    iteration was cut off before the centroids converged.
    """
    validate_iteration_parameters(centroid_convergence_distance, max_num_centroids_per_mode)

    ground = None if ground_height is None else as_field(ground_height)
    crown_diameter_field = as_field(crown_diameter_to_tree_height)
    crown_height_field = as_field(crown_height_to_tree_height)

    point = Point3D(float(point[0]), float(point[1]), float(point[2]))
    if not is_finite(point):
        return _rejected()

    parameters = _parameters_at(point, ground, crown_diameter_field, crown_height_field)
    if parameters is None:
        return _rejected()
    if point.z - parameters[0] < min_point_height_above_ground:
        return _rejected()

    centroid = Kernel.around_above_ground(point, *parameters).centroid_in(index)
    if not is_finite(centroid):
        logger.debug("Empty kernel around query point %s", point)
        return _rejected()
    centroids = [centroid]

    while len(centroids) < max_num_centroids_per_mode:
        parameters = _parameters_at(centroid, ground, crown_diameter_field, crown_height_field)
        if parameters is None:
            return _rejected()

        new_centroid = Kernel.around_above_ground(centroid, *parameters).centroid_in(index)
        if not is_finite(new_centroid):
            logger.debug("Empty kernel around centroid %s", centroid)
            return _rejected()
        centroids.append(new_centroid)

        if distance(new_centroid, centroid) < centroid_convergence_distance:
            return ModeResult(new_centroid, centroids)
        centroid = new_centroid

    logger.debug(
        "Mode of %s did not converge within %d centroids", point, max_num_centroids_per_mode
    )
    return ModeResult(centroids[-1], centroids)


def validate_iteration_parameters(
    centroid_convergence_distance: float,
    max_num_centroids_per_mode: int,
) -> None:
    if not centroid_convergence_distance > 0:
        raise InvalidArgumentError(
            f"centroid_convergence_distance must be positive, got {centroid_convergence_distance}"
        )
    if isinstance(max_num_centroids_per_mode, bool) or not isinstance(max_num_centroids_per_mode, numbers.Integral):
        raise InvalidArgumentError(
            f"max_num_centroids_per_mode must be an integer, got {max_num_centroids_per_mode!r}"
        )
    if max_num_centroids_per_mode < 1:
        raise InvalidArgumentError(
            f"max_num_centroids_per_mode must be at least 1, got {max_num_centroids_per_mode}"
        )


def _parameters_at(
    point: Point3D,
    ground: Optional[ParameterField],
    crown_diameter_field: ParameterField,
    crown_height_field: ParameterField,
) -> Optional[Tuple[float, float, float]]:
    """
    Ground height and crown ratios at the xy-location of ``point``, or None if
    any of them is NaN.
    """
    ground_value = 0.0 if ground is None else ground.value_at(point.x, point.y)
    crown_diameter = crown_diameter_field.value_at(point.x, point.y)
    crown_height = crown_height_field.value_at(point.x, point.y)
    if math.isnan(ground_value) or math.isnan(crown_diameter) or math.isnan(crown_height):
        return None
    return ground_value, crown_diameter, crown_height


def _rejected() -> ModeResult:
    return ModeResult(nan_point(), [])
