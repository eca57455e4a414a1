#!/usr/bin/env python3
"""
Example: Modes of a synthetic forest

Generates a few cone-shaped tree crowns over flat ground and calculates the
mode of every point. Points of the same crown end up with modes close to each
other, a bit below the crown apex.

Usage:
    python synthetic_crowns.py [/path/to/mode_config.json]
"""

import sys
from pathlib import Path

import numpy as np

# Add package directory to path
sys.path.insert(0, str(Path(__file__).parent.parent))

from crownmodes.pipeline import (
    ModeConfig,
    calculate_modes,
    configure_logging,
    load_config,
    summarize,
)


def make_crowns(seed: int = 7) -> np.ndarray:
    """Points on the surface of three cone-shaped crowns plus ground returns."""
    rng = np.random.default_rng(seed)
    apexes = [(5.0, 5.0, 20.0), (15.0, 6.0, 25.0), (9.0, 16.0, 18.0)]
    crowns = []
    for ax, ay, az in apexes:
        r = rng.uniform(0, 3.0, 400)
        angle = rng.uniform(0, 2 * np.pi, 400)
        z = az - 2.0 * r + rng.normal(0, 0.1, 400)
        crowns.append(np.column_stack([ax + r * np.cos(angle), ay + r * np.sin(angle), z]))
    ground = np.column_stack([rng.uniform(0, 20, 300), rng.uniform(0, 20, 300), rng.normal(0, 0.05, 300)])
    return np.vstack(crowns + [ground])


def main():
    configure_logging(verbose=False)

    if len(sys.argv) > 1:
        config = load_config(Path(sys.argv[1]))
    else:
        config = ModeConfig(
            min_point_height_above_ground=2.0,
            crown_diameter_to_tree_height=0.3,
            crown_height_to_tree_height=0.5,
            centroid_convergence_distance=0.01,
            max_num_centroids_per_mode=200,
            also_return_centroids=True,
        )

    points = make_crowns()
    batch = calculate_modes(points, config, show_progress=True)

    print("\nSummary:")
    for key, value in summarize(batch).items():
        print(f"  {key}: {value}")

    modes = batch.to_dataframe().dropna()
    print("\nMode heights:")
    print(modes["mode_z"].describe())


if __name__ == "__main__":
    main()
