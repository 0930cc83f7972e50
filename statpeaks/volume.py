from dataclasses import dataclass, field
from enum import Enum

import numpy as np

from statpeaks.affine import check_affine, get_spacing_from_affine
from statpeaks.exceptions import InvalidParameter, InvalidVolume


class StatKind(str, Enum):
    T = "T"
    F = "F"
    Z = "Z"
    NONE = "none"

    @property
    def requires_df(self):
        return self in (StatKind.T, StatKind.F)


def _normalize_df(df, stat_kind):
    if df is None:
        return None
    values = np.atleast_1d(np.asarray(df, dtype=np.float64))
    if values.size == 0:
        return None
    if np.any(values <= 0) or np.any(np.isnan(values)):
        raise InvalidParameter(f"Degrees of freedom must be positive, got {df}")
    if stat_kind is StatKind.F:
        if values.size != 2:
            raise InvalidParameter(f"F statistics need (df1, df2), got {df}")
        return (float(values[0]), float(values[1]))
    # T maps are sometimes described as [1, df]; the error df is the last entry.
    return float(values[-1])


@dataclass(frozen=True, eq=False)
class VoxelField:
    """
    Read-only snapshot of a 3D statistic map.

    The data are copied on construction so that nothing downstream can mutate the
    caller's array; NaNs are replaced by zeros.
    :param data: 3D array of statistic values
    :param affine: 4x4 voxel-to-mm affine
    :param df: degrees of freedom (scalar for T, (df1, df2) for F) or None
    :param stat_kind: kind of statistic stored in data
    """
    data: np.ndarray
    affine: np.ndarray
    df: object = None
    stat_kind: StatKind = StatKind.T
    name: str = field(default="", compare=False)

    def __post_init__(self):
        data = np.array(self.data, dtype=np.float64)
        if data.ndim == 4 and data.shape[-1] == 1:
            data = data[..., 0]
        if data.ndim != 3:
            raise InvalidVolume(f"Statistic volume must be 3D, got shape {data.shape}")
        if data.size == 0 or np.nansum(np.abs(data)) == 0:
            raise InvalidVolume(f"Statistic volume {self.name!r} is all zeros or all NaNs")
        data[np.isnan(data)] = 0
        data.setflags(write=False)

        affine = check_affine(self.affine)
        affine.setflags(write=False)

        stat_kind = StatKind(self.stat_kind)
        object.__setattr__(self, "data", data)
        object.__setattr__(self, "affine", affine)
        object.__setattr__(self, "stat_kind", stat_kind)
        object.__setattr__(self, "df", _normalize_df(self.df, stat_kind))

    @property
    def shape(self):
        return self.data.shape

    @property
    def spacing(self):
        return get_spacing_from_affine(self.affine)

    @property
    def has_df(self):
        return self.df is not None
