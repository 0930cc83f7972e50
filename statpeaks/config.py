"""
Analysis options.

Options are plain keyword arguments collected in :class:`AnalysisOptions`. They
can also be read from a YAML file::

    connectivity: 18
    direction: pos/neg
    extent_threshold: 10
    separation: 8
    correction: cluster_fwe
"""
import dataclasses
from dataclasses import dataclass
from enum import Enum
from pathlib import Path
from typing import Optional, Sequence

import numpy as np
import yaml

from statpeaks.exceptions import InvalidParameter
from statpeaks.graph import CONNECTIVITIES


class Direction(str, Enum):
    POS = "pos"
    NEG = "neg"
    POS_NEG = "pos/neg"

    @classmethod
    def parse(cls, value):
        aliases = {"+": cls.POS, "-": cls.NEG, "+/-": cls.POS_NEG}
        if isinstance(value, str) and value in aliases:
            return aliases[value]
        return cls(value)

    @property
    def row(self):
        """Row of the signed cluster structure holding this direction."""
        return {Direction.POS: 0, Direction.NEG: 1, Direction.POS_NEG: 2}[self]


class Correction(str, Enum):
    NONE = "none"
    VOXEL_FWE = "voxel_fwe"
    CLUSTER_FWE = "cluster_fwe"


@dataclass(frozen=True)
class AnalysisOptions:
    """
    :param connectivity: neighbor rule used to label clusters (6, 18 or 26)
    :param direction: which signed cluster map peaks are drawn from
    :param spm_compatible: if True, peaks closer than `separation` are eliminated (as in SPM result tables),
    otherwise they are collapsed into a count-weighted center
    :param voxel_limit: maximum number of peaks detected in the image
    :param separation: minimum distance between reported peaks of a cluster in mm
    :param extent_threshold: minimum cluster size in voxels
    :param height_threshold: cluster-defining statistic threshold. If None, it is derived from `p_threshold`.
    :param p_threshold: uncorrected p-value used to derive the height threshold
    :param alpha: family-wise error rate for corrected thresholds
    :param correction: which corrected threshold to apply before reporting
    :param search_range: explicit cluster sizes for a brute force cluster-extent search, a single size to only report
    its corrected p-value. None searches automatically.
    :param max_iter: maximum Newton-Raphson iterations of the automatic cluster-extent search
    :param progress: show a progress bar while processing clusters
    """
    connectivity: int = 18
    direction: Direction = Direction.POS
    spm_compatible: bool = True
    voxel_limit: int = 1000
    separation: float = 20.0
    extent_threshold: int = 5
    height_threshold: Optional[float] = None
    p_threshold: float = 0.001
    alpha: float = 0.05
    correction: Correction = Correction.NONE
    search_range: Optional[Sequence[int]] = None
    max_iter: int = 100
    progress: bool = False

    def __post_init__(self):
        object.__setattr__(self, "direction", Direction.parse(self.direction))
        object.__setattr__(self, "correction", Correction(self.correction))
        if self.search_range is not None:
            search_range = tuple(int(k) for k in np.atleast_1d(self.search_range))
            if not search_range:
                raise InvalidParameter("search_range must list at least one cluster size")
            object.__setattr__(self, "search_range", search_range)

        if self.connectivity not in CONNECTIVITIES:
            raise InvalidParameter(f"connectivity must be one of {CONNECTIVITIES}, got {self.connectivity}")
        if self.separation < 0:
            raise InvalidParameter(f"separation must be non-negative, got {self.separation}")
        if self.extent_threshold < 0:
            raise InvalidParameter(f"extent_threshold must be non-negative, got {self.extent_threshold}")
        if self.voxel_limit < 1:
            raise InvalidParameter(f"voxel_limit must be at least 1, got {self.voxel_limit}")
        if not 0 < self.alpha < 1:
            raise InvalidParameter(f"alpha must be in (0, 1), got {self.alpha}")
        if not 0 < self.p_threshold < 1:
            raise InvalidParameter(f"p_threshold must be in (0, 1), got {self.p_threshold}")
        if self.max_iter < 1:
            raise InvalidParameter(f"max_iter must be at least 1, got {self.max_iter}")

    def replace(self, **changes):
        return dataclasses.replace(self, **changes)


def load_options(config_path, **overrides):
    """
    Read analysis options from a YAML file.
    :param config_path: path to a YAML mapping of option names to values
    :param overrides: options that take precedence over the file
    :return: AnalysisOptions
    """
    with open(Path(config_path), "r", encoding="utf-8") as f:
        cfg = yaml.safe_load(f) or {}
    if not isinstance(cfg, dict):
        raise InvalidParameter(f"Options file {config_path} must contain a mapping")
    cfg.update(overrides)
    known = {f.name for f in dataclasses.fields(AnalysisOptions)}
    unknown = sorted(set(cfg) - known)
    if unknown:
        raise InvalidParameter(f"Unknown options in {config_path}: {', '.join(unknown)}")
    return AnalysisOptions(**cfg)
