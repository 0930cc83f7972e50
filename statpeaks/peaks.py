from dataclasses import dataclass
from typing import Optional, Tuple

import numpy as np

from statpeaks.affine import voxel_to_mm
from statpeaks.graph import neighbor_offsets
from statpeaks.utils import logger


@dataclass(frozen=True)
class Peak:
    """
    A local maximum of a cluster.
    :param voxel: (i, j, k) voxel indices
    :param mm: (x, y, z) coordinates in mm. Collapsed peaks hold the count-weighted center of the merged peaks.
    :param statistic: statistic value at the peak
    :param cluster_id: label of the cluster the peak belongs to
    :param cluster_size: extent of that cluster in voxels
    :param merged_count: number of detected peaks represented by this peak
    :param cluster_rank: rank of the cluster in the report (1 = cluster with the highest maximum)
    """
    voxel: Tuple[int, int, int]
    mm: Tuple[float, float, float]
    statistic: float
    cluster_id: int
    cluster_size: int = 0
    merged_count: int = 1
    cluster_rank: Optional[int] = None


def local_maxima_mask(stat_data, labels):
    """
    Find voxels that are the maximum of their 3x3x3 neighborhood among voxels of the same cluster.
    Voxels on the faces of the grid are never maxima. Equal neighbors are all maxima.
    :param stat_data: 3D statistic values
    :param labels: 3D cluster labels (0 = background)
    :return: 3D boolean array
    """
    stat_data = np.asarray(stat_data, dtype=np.float64)
    labels = np.asarray(labels)
    maxima = np.zeros(stat_data.shape, dtype=bool)
    if min(stat_data.shape) < 3:
        return maxima

    center = (slice(1, -1), slice(1, -1), slice(1, -1))
    center_stat = stat_data[center]
    center_labels = labels[center]
    neighborhood_max = center_stat.copy()
    for di, dj, dk in neighbor_offsets(26):
        shifted = tuple(slice(1 + d, stat_data.shape[axis] - 1 + d)
                        for axis, d in enumerate((di, dj, dk)))
        same_cluster = labels[shifted] == center_labels
        np.maximum(neighborhood_max, np.where(same_cluster, stat_data[shifted], -np.inf), out=neighborhood_max)

    maxima[center] = (center_labels > 0) & (center_stat == neighborhood_max)
    return maxima


def detect_peaks(stat_data, labels, affine, sizes=None, voxel_limit=None):
    """
    Detect the peaks of every cluster of a single-direction statistic map.
    :param stat_data: 3D statistic values, suprathreshold values positive
    :param labels: 3D cluster labels
    :param affine: voxel-to-mm affine
    :param sizes: optional 3D array with the cluster size at each voxel
    :param voxel_limit: maximum number of peaks to keep. The strongest peaks are kept.
    :return: list of Peak in scan order, or ordered by decreasing statistic if the list was truncated
    """
    stat_data = np.asarray(stat_data, dtype=np.float64)
    labels = np.asarray(labels)
    maxima = local_maxima_mask(stat_data, labels)
    ijk = np.argwhere(maxima)
    statistics = stat_data[maxima]

    xyz = voxel_to_mm(ijk, affine) if len(ijk) else np.zeros((0, 3))
    peaks = []
    for voxel, mm, statistic in zip(ijk, xyz, statistics):
        voxel = tuple(int(v) for v in voxel)
        peaks.append(Peak(voxel=voxel,
                          mm=tuple(float(c) for c in mm),
                          statistic=float(statistic),
                          cluster_id=int(labels[voxel]),
                          cluster_size=int(sizes[voxel]) if sizes is not None else 0))
    logger.debug(f"Detected {len(peaks)} peaks in {len(np.unique(labels[labels > 0]))} clusters")
    return limit_peaks(peaks, voxel_limit)


def limit_peaks(peaks, voxel_limit):
    """
    Keep the `voxel_limit` peaks with the largest statistic magnitude.
    :return: the peaks unchanged if there are few enough, otherwise the strongest ones, strongest first
    """
    if voxel_limit is None or len(peaks) <= voxel_limit:
        return list(peaks)
    logger.warning(f"Found {len(peaks)} peaks; keeping the {voxel_limit} with the highest statistic")
    return sorted(peaks, key=lambda peak: -abs(peak.statistic))[:voxel_limit]
