"""
Exceptions raised by statpeaks.

Only malformed inputs are errors. Conditions that depend on the data, such as
an empty suprathreshold set or a search that did not converge, are reported
through :class:`Diagnostic` values on the returned results instead.
"""
from enum import Enum


class StatPeaksError(Exception):
    """Base exception for all statpeaks errors."""

    pass


class InvalidVolume(StatPeaksError, ValueError):
    """Raised when a statistic volume is empty (all zeros or NaNs) or malformed."""

    pass


class InvalidAffine(StatPeaksError, ValueError):
    """Raised when the voxel-to-mm affine cannot be inverted."""

    pass


class InvalidParameter(StatPeaksError, ValueError):
    """Raised for out-of-range analysis parameters (alpha, df, separation, ...)."""

    pass


class Diagnostic(str, Enum):
    """Non-fatal conditions attached to analysis results."""

    MISSING_DEGREES_OF_FREEDOM = "missing_degrees_of_freedom"
    NO_SUPRATHRESHOLD_VOXELS = "no_suprathreshold_voxels"
    NO_CLUSTERS_SURVIVE_EXTENT = "no_clusters_survive_extent"
    SEARCH_NON_CONVERGENCE = "search_non_convergence"
    SEARCH_OUT_OF_RANGE = "search_out_of_range"
