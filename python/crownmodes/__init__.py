"""
Tree crown mode finding in LiDAR point clouds with an adaptive 3D mean shift.
"""
from crownmodes.ams3d import (
    ModeResult,
    calculate_a_single_mode,
    calculate_a_single_mode_plus_centroids,
)
from crownmodes.pipeline import ModeBatch, ModeConfig, calculate_modes, load_config

__version__ = "0.1.0"
