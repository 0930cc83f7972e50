from dataclasses import dataclass, replace
from typing import Optional, Tuple

import pandas as pd

from statpeaks.affine import mm_to_voxel
from statpeaks.exceptions import Diagnostic
from statpeaks.peaks import Peak

NO_LABEL = "No Label"
COLUMNS = ("Region Name", "Extent", "Stat", "X", "Y", "Z")


@dataclass(frozen=True)
class ClusterTable:
    """
    Ranked peak table.
    Peaks are ordered by cluster rank, then by decreasing statistic magnitude within a cluster.
    :param peaks: ranked peaks
    :param regions: region name of each peak
    :param diagnostic: reason why the table is empty, if it is
    """
    peaks: Tuple[Peak, ...] = ()
    regions: Tuple[str, ...] = ()
    diagnostic: Optional[Diagnostic] = None

    def __len__(self):
        return len(self.peaks)

    def __iter__(self):
        return iter(self.rows())

    @property
    def empty(self):
        return len(self.peaks) == 0

    @property
    def n_clusters(self):
        return len({peak.cluster_rank for peak in self.peaks})

    def rows(self):
        """Rows of [region, cluster extent, statistic, x, y, z]."""
        return [[region, peak.cluster_size, peak.statistic, *peak.mm]
                for peak, region in zip(self.peaks, self.regions)]

    def to_dataframe(self, details=False):
        df = pd.DataFrame(self.rows(), columns=list(COLUMNS))
        if details:
            df["Cluster"] = [peak.cluster_rank for peak in self.peaks]
            df["Merged Peaks"] = [peak.merged_count for peak in self.peaks]
            df["Voxel"] = [peak.voxel for peak in self.peaks]
        return df


def rank_peaks(peaks):
    """
    Rank clusters by their largest statistic magnitude and sort peaks within each cluster.
    Magnitude ranking lets negative clusters of a pos/neg map rank alongside positive ones.
    Ties keep the order in which clusters and peaks were given.
    :param peaks: peaks of any number of clusters
    :return: list of Peak with cluster_rank set, ordered by rank then decreasing statistic magnitude
    """
    clusters = {}
    for peak in peaks:
        clusters.setdefault(peak.cluster_id, []).append(peak)
    ordered_ids = sorted(clusters, key=lambda cid: -max(abs(p.statistic) for p in clusters[cid]))

    ranked = []
    for rank, cluster_id in enumerate(ordered_ids, start=1):
        cluster_peaks = sorted(clusters[cluster_id], key=lambda p: -abs(p.statistic))
        ranked.extend(replace(peak, cluster_rank=rank) for peak in cluster_peaks)
    return ranked


def assemble_report(peaks, labeler=None, affine=None, shape=None, diagnostic=None):
    """
    Build the final cluster table.
    :param peaks: separated peaks
    :param labeler: callable mapping an (i, j, k) voxel index to a region name. Falsy names become "No Label".
    :param affine: voxel-to-mm affine used to find the voxel nearest to each (possibly collapsed) peak.
    If None, the voxel where the peak was detected is labeled.
    :param shape: grid shape used to clip looked up voxels
    :param diagnostic: diagnostic attached to an empty table
    :return: ClusterTable
    """
    ranked = rank_peaks(peaks)
    regions = []
    for peak in ranked:
        region = None
        if labeler is not None:
            voxel = peak.voxel if affine is None else tuple(int(v) for v in mm_to_voxel(peak.mm, affine, shape))
            region = labeler(voxel)
        regions.append(region or NO_LABEL)
    return ClusterTable(peaks=tuple(ranked), regions=tuple(regions),
                        diagnostic=diagnostic if not ranked else None)
