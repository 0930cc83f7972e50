from dataclasses import replace
from enum import Enum

import numpy as np
from scipy.spatial.distance import pdist, squareform
from tqdm import tqdm

from statpeaks.exceptions import InvalidParameter
from statpeaks.utils import logger


class CollapseMode(str, Enum):
    ELIMINATE = "eliminate"
    COLLAPSE = "collapse"

    @classmethod
    def from_spm_compatible(cls, spm_compatible):
        return cls.ELIMINATE if spm_compatible else cls.COLLAPSE


def peak_distances(peaks):
    """
    :param peaks: sequence of Peak
    :return: square matrix of Euclidean distances (mm) between the peaks
    """
    coords = np.asarray([peak.mm for peak in peaks], dtype=np.float64).reshape(-1, 3)
    return squareform(pdist(coords))


def collapse_cluster_peaks(peaks, separation, mode=CollapseMode.ELIMINATE):
    """
    Enforce a minimum separation between the peaks of one cluster.
    Peaks are processed in order of decreasing statistic magnitude. While the closest pair of peaks is nearer than
    `separation`, the weaker peak of the pair is either removed (eliminate) or merged into the stronger one
    (collapse), moving the stronger peak to the count-weighted center of both. When several pairs share the
    minimum distance, the first pair in row-major order of the distance matrix is resolved first.
    :param peaks: peaks of a single cluster
    :param separation: minimum distance in mm
    :param mode: CollapseMode
    :return: list of surviving peaks, strongest first
    """
    mode = CollapseMode(mode)
    remaining = sorted(peaks, key=lambda peak: -abs(peak.statistic))
    while len(remaining) > 1:
        distance = peak_distances(remaining)
        positive = distance[distance > 0]
        if positive.size == 0:
            break
        min_distance = positive.min()
        if min_distance >= separation:
            break
        i, j = np.argwhere(distance == min_distance)[0]
        strong, weak = remaining[i], remaining[j]
        if mode is CollapseMode.COLLAPSE:
            count = strong.merged_count + weak.merged_count
            center = (np.asarray(strong.mm) * strong.merged_count + np.asarray(weak.mm) * weak.merged_count) / count
            remaining[i] = replace(strong, mm=tuple(float(c) for c in center), merged_count=count)
        del remaining[j]
    return remaining


def collapse_peaks(peaks, separation, mode=CollapseMode.ELIMINATE, progress=False):
    """
    Apply collapse_cluster_peaks to the peaks of each cluster independently.
    :param peaks: peaks of any number of clusters
    :param separation: minimum distance in mm, must be non-negative
    :param mode: CollapseMode
    :param progress: show a progress bar over the clusters
    :return: surviving peaks grouped by cluster, clusters in order of first appearance
    """
    if separation < 0:
        raise InvalidParameter(f"separation must be non-negative, got {separation}")
    clusters = {}
    for peak in peaks:
        clusters.setdefault(peak.cluster_id, []).append(peak)

    collapsed = []
    for cluster_id in tqdm(clusters, desc="Separating peaks", unit="cluster", disable=not progress):
        collapsed.extend(collapse_cluster_peaks(clusters[cluster_id], separation, mode))
    logger.debug(f"{CollapseMode(mode).value}: {len(peaks)} peaks reduced to {len(collapsed)} "
                 f"at {separation} mm separation")
    return collapsed
