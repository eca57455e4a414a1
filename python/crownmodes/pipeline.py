"""
Batch driver: builds the spatial index once and computes a mode for every
point of a point cloud.

This keeps the per-point core in ams3d free of bookkeeping:
- Configuration loading and validation
- Index construction matching the ground and crown ratio parameters
- Progress bars, progress callbacks and cooperative cancellation
- Packaging of modes and centroids as arrays or DataFrames
- Logging configuration and the command-line interface
"""
from __future__ import annotations

import argparse
import json
import logging
import numbers
import sys
from dataclasses import dataclass, replace
from pathlib import Path
from typing import Any, Callable, Dict, List, Mapping, Optional, Union

import numpy as np
import pandas as pd
from tqdm import tqdm

from crownmodes import ams3d
from crownmodes.errors import (
    BatchCancelledError,
    ConfigurationError,
    CrownModesError,
    InvalidArgumentError,
)
from crownmodes.geometry import as_point_array
from crownmodes.index import (
    SpatialIndex,
    create_index_of_above_ground,
    create_index_of_above_height_field,
    create_index_of_finite,
)
from crownmodes.kernel import Kernel
from crownmodes.raster import ConstantField, GridField, ParameterField, as_field, field_from_mapping

logger = logging.getLogger(__name__)

# Number of modes between progress updates and cancellation checks. Polling
# much more often slows interactive front ends down noticeably.
NUM_MODES_PER_TICK = 2000

ProgressCallback = Callable[[int, int], None]
CancelCheck = Callable[[], bool]
FieldLike = Union[float, ParameterField]


# =============================================================================
# Configuration
# =============================================================================

@dataclass(frozen=True)
class ModeConfig:
    """Parameters of a mode calculation run."""
    min_point_height_above_ground: float
    crown_diameter_to_tree_height: FieldLike
    crown_height_to_tree_height: FieldLike
    centroid_convergence_distance: float = 0.01
    max_num_centroids_per_mode: int = 100
    also_return_centroids: bool = False
    # None: point heights are already normalized to heights above ground
    ground_height: Optional[FieldLike] = None

    def __post_init__(self):
        # index builders and the driver query ground heights as fields
        if isinstance(self.ground_height, numbers.Real):
            object.__setattr__(self, "ground_height", as_field(self.ground_height))

    def validate(self) -> "ModeConfig":
        """Raise ConfigurationError for invalid values; return self otherwise."""
        try:
            ams3d.validate_iteration_parameters(
                self.centroid_convergence_distance, self.max_num_centroids_per_mode
            )
        except InvalidArgumentError as e:
            raise ConfigurationError(str(e)) from e

        if not np.isfinite(self.min_point_height_above_ground):
            raise ConfigurationError(
                f"min_point_height_above_ground must be finite, got {self.min_point_height_above_ground}"
            )
        for name in ("crown_diameter_to_tree_height", "crown_height_to_tree_height"):
            value = getattr(self, name)
            if isinstance(value, (ConstantField, GridField)):
                continue
            if not value > 0:
                raise ConfigurationError(f"{name} must be positive, got {value}")
        if self.ground_height is not None and not isinstance(self.ground_height, (ConstantField, GridField)):
            raise ConfigurationError(
                f"ground_height must be a number or a raster, got {self.ground_height!r}"
            )
        return self


_REQUIRED_KEYS = [
    "minPointHeightAboveGround",
    "crownDiameterToTreeHeight",
    "crownHeightToTreeHeight",
    "centroidConvergenceDistance",
    "maxNumCentroidsPerMode",
]


def _field_or_number(value: Any, key: str) -> FieldLike:
    if isinstance(value, Mapping):
        try:
            return field_from_mapping(value)
        except InvalidArgumentError as e:
            raise ConfigurationError(f"Invalid raster for {key}: {e}") from e
    try:
        return float(value)
    except (TypeError, ValueError) as e:
        raise ConfigurationError(f"{key} must be a number or a raster, got {value!r}") from e


def config_from_dict(raw: Mapping[str, Any]) -> ModeConfig:
    """
    Build a ModeConfig from a mapping with camelCase keys.
    Required keys: minPointHeightAboveGround, crownDiameterToTreeHeight,
    crownHeightToTreeHeight, centroidConvergenceDistance, maxNumCentroidsPerMode.
    Optional keys: alsoReturnCentroids, groundHeight.
    """
    missing = [k for k in _REQUIRED_KEYS if k not in raw]
    if missing:
        raise ConfigurationError(f"Config missing keys: {', '.join(missing)}")

    ground = raw.get("groundHeight")
    if ground is not None:
        ground = _field_or_number(ground, "groundHeight")

    max_centroids = raw["maxNumCentroidsPerMode"]
    if isinstance(max_centroids, float) and max_centroids.is_integer():
        max_centroids = int(max_centroids)

    return ModeConfig(
        min_point_height_above_ground=float(raw["minPointHeightAboveGround"]),
        crown_diameter_to_tree_height=_field_or_number(
            raw["crownDiameterToTreeHeight"], "crownDiameterToTreeHeight"
        ),
        crown_height_to_tree_height=_field_or_number(
            raw["crownHeightToTreeHeight"], "crownHeightToTreeHeight"
        ),
        centroid_convergence_distance=float(raw["centroidConvergenceDistance"]),
        max_num_centroids_per_mode=max_centroids,
        also_return_centroids=bool(raw.get("alsoReturnCentroids", False)),
        ground_height=ground,
    ).validate()


def load_config(path: Path) -> ModeConfig:
    """Load a ModeConfig from a JSON file."""
    with open(path, "r", encoding="utf-8") as f:
        raw = json.load(f)
    if not isinstance(raw, dict):
        raise ConfigurationError(f"Config file {path} must contain a JSON object")
    return config_from_dict(raw)


# =============================================================================
# Logging Configuration
# =============================================================================

def configure_logging(
    verbose: bool = False,
    log_file: Optional[Path] = None,
    quiet: bool = False,
) -> None:
    """
    Configure logging for mode calculation runs.

    Parameters
    ----------
    verbose : bool
        Enable debug-level logging
    log_file : Path, optional
        Write logs to file in addition to console
    quiet : bool
        Suppress all console output except errors
    """
    level = logging.DEBUG if verbose else logging.INFO
    if quiet:
        level = logging.ERROR

    handlers = []

    console_handler = logging.StreamHandler(sys.stdout)
    console_handler.setLevel(level)
    console_handler.setFormatter(logging.Formatter(
        "%(asctime)s - %(levelname)s - %(message)s",
        datefmt="%H:%M:%S"
    ))
    handlers.append(console_handler)

    if log_file is not None:
        log_file.parent.mkdir(parents=True, exist_ok=True)
        file_handler = logging.FileHandler(log_file)
        file_handler.setLevel(logging.DEBUG)  # Always verbose in file
        file_handler.setFormatter(logging.Formatter(
            "%(asctime)s - %(name)s - %(levelname)s - %(message)s"
        ))
        handlers.append(file_handler)

    root_logger = logging.getLogger()
    root_logger.setLevel(logging.DEBUG)

    for handler in root_logger.handlers[:]:
        root_logger.removeHandler(handler)

    for handler in handlers:
        root_logger.addHandler(handler)


# =============================================================================
# Input and result conversion
# =============================================================================

def points_from_table(table: Union[pd.DataFrame, Mapping[str, Any]]) -> np.ndarray:
    """
    Extract an (N, 3) coordinate array from a table with X, Y and Z columns.
    Column names are matched case-insensitively.
    """
    if not isinstance(table, pd.DataFrame):
        table = pd.DataFrame(table)
    columns = {str(c).lower(): c for c in table.columns}
    missing = [c for c in ("x", "y", "z") if c not in columns]
    if missing:
        raise InvalidArgumentError(
            f"Coordinate table missing columns: {', '.join(c.upper() for c in missing)}"
        )
    return table[[columns["x"], columns["y"], columns["z"]]].to_numpy(dtype=float)


@dataclass
class ModeBatch:
    """Modes of a batch of points, optionally with their centroids."""
    modes: np.ndarray  # (N, 3), NaN rows for rejected points
    centroids: Optional[np.ndarray] = None  # (M, 3)
    centroid_point_indices: Optional[np.ndarray] = None  # (M,) index into modes
    num_rejected: int = 0
    num_truncated: int = 0

    def __len__(self) -> int:
        return len(self.modes)

    def centroids_of(self, point_index: int) -> np.ndarray:
        """Centroids calculated for a single point, in calculation order."""
        if self.centroids is None:
            raise InvalidArgumentError("Centroids were not requested for this batch")
        return self.centroids[self.centroid_point_indices == point_index]

    def to_dataframe(self) -> pd.DataFrame:
        """Modes as a DataFrame with mode_x, mode_y and mode_z columns."""
        return pd.DataFrame(self.modes, columns=["mode_x", "mode_y", "mode_z"])

    def centroids_to_dataframe(self) -> pd.DataFrame:
        """Centroids as a DataFrame with point_index, x, y and z columns."""
        if self.centroids is None:
            raise InvalidArgumentError("Centroids were not requested for this batch")
        df = pd.DataFrame(self.centroids, columns=["x", "y", "z"])
        df.insert(0, "point_index", self.centroid_point_indices)
        return df


# =============================================================================
# Batch processing
# =============================================================================

def build_index(points: np.ndarray, config: ModeConfig) -> SpatialIndex:
    """
    Index the points that can fall inside any kernel.

    A kernel around a point at the minimum height reaches down to its bottom
    height, so points below that bottom are never part of any centroid and
    are left out of the index.
    """
    min_height = config.min_point_height_above_ground
    crown_height = config.crown_height_to_tree_height

    if isinstance(crown_height, (ConstantField, GridField)):
        ground = config.ground_height if config.ground_height is not None else ConstantField(0.0)
        min_height_field = Kernel.bottom_height_above_ground_field_with(min_height, crown_height)
        return create_index_of_above_height_field(points, min_height_field, ground)

    min_bottom_height = Kernel.bottom_height_above_ground_with(min_height, crown_height)
    if config.ground_height is None:
        return create_index_of_finite(points, min_bottom_height)
    return create_index_of_above_ground(points, min_bottom_height, config.ground_height)


def calculate_modes(
    points: Union[np.ndarray, pd.DataFrame],
    config: ModeConfig,
    show_progress: bool = False,
    progress_callback: Optional[ProgressCallback] = None,
    cancel_check: Optional[CancelCheck] = None,
) -> ModeBatch:
    """
    Calculate the mode of every point in a point cloud.

    Parameters
    ----------
    points : array (N, 3) or DataFrame with X, Y, Z columns
        Point cloud. Also serves as the list of query points.
    config : ModeConfig
        Mode calculation parameters
    show_progress : bool
        Show a tqdm progress bar
    progress_callback : callable, optional
        Called as ``progress_callback(done, total)`` every NUM_MODES_PER_TICK
        points and once at the end
    cancel_check : callable, optional
        Polled every NUM_MODES_PER_TICK points; returning True stops the batch

    Returns
    -------
    ModeBatch
        One mode per input point in input order

    Raises
    ------
    BatchCancelledError
        If cancel_check asked to stop
    """
    config.validate()
    if isinstance(points, pd.DataFrame):
        points = points_from_table(points)
    points = as_point_array(points)
    total = len(points)

    index = build_index(points, config)
    logger.info("Indexed %d of %d points", len(index), total)

    modes = np.full((total, 3), np.nan)
    centroid_chunks: List[np.ndarray] = []
    index_chunks: List[np.ndarray] = []
    num_rejected = 0
    num_truncated = 0

    progress_bar = tqdm(total=total, desc="Calculating modes", unit="pt", disable=not show_progress)
    try:
        for i, point in enumerate(points):
            result = ams3d.calculate_a_single_mode_plus_centroids(
                point,
                index,
                config.min_point_height_above_ground,
                config.crown_diameter_to_tree_height,
                config.crown_height_to_tree_height,
                config.centroid_convergence_distance,
                config.max_num_centroids_per_mode,
                ground_height=config.ground_height,
            )
            modes[i] = result.mode
            if result.is_rejected:
                num_rejected += 1
            elif len(result.centroids) == config.max_num_centroids_per_mode:
                num_truncated += 1

            if config.also_return_centroids and result.centroids:
                centroid_chunks.append(np.asarray(result.centroids, dtype=float))
                index_chunks.append(np.full(len(result.centroids), i, dtype=np.int64))

            done = i + 1
            if done % NUM_MODES_PER_TICK == 0:
                progress_bar.update(NUM_MODES_PER_TICK)
                if progress_callback is not None:
                    progress_callback(done, total)
                if cancel_check is not None and cancel_check():
                    logger.warning("Mode calculation cancelled after %d of %d points", done, total)
                    raise BatchCancelledError(done, total)

        progress_bar.update(total - progress_bar.n)
    finally:
        progress_bar.close()

    if progress_callback is not None:
        progress_callback(total, total)

    centroids = None
    centroid_point_indices = None
    if config.also_return_centroids:
        if centroid_chunks:
            centroids = np.vstack(centroid_chunks)
            centroid_point_indices = np.concatenate(index_chunks)
        else:
            centroids = np.empty((0, 3), dtype=float)
            centroid_point_indices = np.empty(0, dtype=np.int64)

    logger.info(
        "Calculated %d modes (%d rejected, %d not converged)",
        total - num_rejected, num_rejected, num_truncated,
    )
    return ModeBatch(
        modes=modes,
        centroids=centroids,
        centroid_point_indices=centroid_point_indices,
        num_rejected=num_rejected,
        num_truncated=num_truncated,
    )


def summarize(batch: ModeBatch) -> Dict[str, Any]:
    """Counts describing a finished batch, e.g. for logging or reports."""
    total = len(batch)
    return {
        "n_points": total,
        "n_modes": total - batch.num_rejected,
        "n_rejected": batch.num_rejected,
        "n_truncated": batch.num_truncated,
        "n_centroids": 0 if batch.centroids is None else len(batch.centroids),
    }


# =============================================================================
# Command-line interface
# =============================================================================

def main(argv: Optional[List[str]] = None) -> int:
    """Command-line interface for batch mode calculation."""
    parser = argparse.ArgumentParser(
        description="Calculate AMS3D modes for every point of a point cloud",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  # Modes of a normalized point cloud stored as CSV with X, Y, Z columns
  crownmodes config.json points.csv -o modes.csv

  # Also write the centroids calculated on the way to each mode
  crownmodes config.json points.csv -o modes.csv --centroids centroids.csv
        """,
    )
    parser.add_argument("config", type=Path, help="Path to config JSON")
    parser.add_argument("points", type=Path, help="CSV file with X, Y and Z columns")
    parser.add_argument("-o", "--output", type=Path, required=True, help="Output CSV path for the modes")
    parser.add_argument("--centroids", type=Path, help="Output CSV path for the centroids")
    parser.add_argument("-v", "--verbose", action="store_true", help="Enable verbose output")
    parser.add_argument("-q", "--quiet", action="store_true", help="Suppress non-error output")
    parser.add_argument("--log-file", type=Path, help="Write logs to file")
    parser.add_argument("--no-progress", action="store_true", help="Disable progress bars")

    args = parser.parse_args(argv)

    configure_logging(
        verbose=args.verbose,
        log_file=args.log_file,
        quiet=args.quiet,
    )

    try:
        config = load_config(args.config)
        if args.centroids is not None and not config.also_return_centroids:
            config = replace(config, also_return_centroids=True)

        points = points_from_table(pd.read_csv(args.points))
        batch = calculate_modes(points, config, show_progress=not args.no_progress)

        args.output.parent.mkdir(parents=True, exist_ok=True)
        batch.to_dataframe().to_csv(args.output, index=False)
        logger.info("Saved %d modes to %s", len(batch), args.output)

        if args.centroids is not None:
            args.centroids.parent.mkdir(parents=True, exist_ok=True)
            batch.centroids_to_dataframe().to_csv(args.centroids, index=False)
            logger.info("Saved %d centroids to %s", len(batch.centroids), args.centroids)

    except KeyboardInterrupt:
        print("\nInterrupted by user")
        return 130
    except (CrownModesError, OSError) as e:
        logger.error("Processing error: %s", e)
        return 1

    return 0


if __name__ == "__main__":
    sys.exit(main())
