"""
Analysis session: threshold, cluster, correct and report a statistic map.

The session owns the read-only VoxelField and the options of one analysis.
Nothing is stored globally; every result is returned to the caller.
"""
from dataclasses import dataclass, replace
from typing import Optional, Tuple

import numpy as np

from statpeaks.collapse import CollapseMode, collapse_peaks
from statpeaks.components import SignedClusterMaps, signed_cluster_maps
from statpeaks.config import AnalysisOptions, Correction, Direction
from statpeaks.correction import CorrectionResult, cluster_correct, statistic_threshold, voxel_correct
from statpeaks.exceptions import Diagnostic, InvalidParameter
from statpeaks.peaks import detect_peaks, limit_peaks
from statpeaks.report import ClusterTable, assemble_report
from statpeaks.utils import logger

# threshold and extent used when the data cannot be thresholded as requested
UNTHRESHOLDED = (0.01, 1)


@dataclass
class ClusterResult:
    """
    :param labels: cluster label image of the selected direction (0 = background)
    :param table: ranked peak table
    :param clusters: positive, negative and combined cluster maps
    :param height_threshold: cluster-defining threshold that was applied
    :param extent_threshold: minimum cluster size that was applied
    :param correction: corrected threshold used, if any
    :param diagnostics: non-fatal conditions met along the way
    """
    labels: np.ndarray
    table: ClusterTable
    clusters: SignedClusterMaps
    height_threshold: float
    extent_threshold: int
    correction: Optional[CorrectionResult] = None
    diagnostics: Tuple[Diagnostic, ...] = ()

    @property
    def cluster_sizes(self):
        """Cluster size at each voxel for the positive, negative and either direction."""
        return self.clusters.sizes


class AnalysisSession:
    """
    :param field: VoxelField to analyse
    :param options: AnalysisOptions, defaults if None
    :param oracle: RandomFieldProbability used for corrected thresholds
    :param labeler: callable mapping a voxel index to a region name
    """

    def __init__(self, field, options=None, oracle=None, labeler=None):
        self.field = field
        self.options = options if options is not None else AnalysisOptions()
        self.oracle = oracle
        self.labeler = labeler

    @property
    def missing_df(self):
        return self.field.stat_kind.requires_df and not self.field.has_df

    def uncorrected_thresholds(self, options=None):
        """
        Height and extent thresholds before any correction.
        :return: (height threshold, extent threshold, diagnostics)
        """
        options = options or self.options
        if options.height_threshold is not None:
            diagnostics = (Diagnostic.MISSING_DEGREES_OF_FREEDOM,) if self.missing_df else ()
            return float(options.height_threshold), options.extent_threshold, diagnostics
        if self.missing_df:
            logger.warning("Degrees of freedom not available. Showing unthresholded image.")
            u, k = UNTHRESHOLDED
            return u, k, (Diagnostic.MISSING_DEGREES_OF_FREEDOM,)
        u = statistic_threshold(options.p_threshold, self.field.stat_kind, self.field.df)
        return u, options.extent_threshold, ()

    def correct_threshold(self, method=Correction.CLUSTER_FWE, height_threshold=None, alpha=None,
                          search_range=None, max_iter=None):
        """
        Compute a corrected threshold.
        :param method: Correction.VOXEL_FWE for a height threshold, Correction.CLUSTER_FWE for an extent threshold
        :param height_threshold: cluster-defining threshold for cluster-level correction, from the options if None
        :param alpha: family-wise error rate, from the options if None
        :param search_range: explicit extents for cluster-level correction, from the options if None
        :param max_iter: iteration cap of the automatic extent search, from the options if None
        :return: CorrectionResult
        """
        method = Correction(method)
        if self.oracle is None:
            raise InvalidParameter("Corrected thresholds require a random field probability oracle")
        alpha = self.options.alpha if alpha is None else alpha
        if method is Correction.VOXEL_FWE:
            return voxel_correct(self.oracle, alpha)
        elif method is Correction.CLUSTER_FWE:
            if height_threshold is None:
                height_threshold = self.uncorrected_thresholds()[0]
            return cluster_correct(self.oracle, height_threshold, alpha,
                                   search_range=self.options.search_range if search_range is None else search_range,
                                   max_iter=self.options.max_iter if max_iter is None else max_iter)
        raise InvalidParameter(f"Unknown correction method: {method}")

    def cluster_maps(self, height_threshold, extent_threshold, connectivity=None):
        connectivity = connectivity or self.options.connectivity
        return signed_cluster_maps(self.field.data, height_threshold, extent_threshold, connectivity=connectivity)

    def largest_cluster_extent(self, height_threshold=None, direction=None):
        """Size of the largest cluster at a height threshold, in the given direction."""
        if height_threshold is None:
            height_threshold = self.uncorrected_thresholds()[0]
        direction = Direction.parse(direction or self.options.direction)
        maps = self.cluster_maps(height_threshold, 1)
        return max(clusters.largest_cluster for clusters in self._directions(maps, direction))

    @staticmethod
    def _directions(maps, direction):
        if direction is Direction.POS:
            return [maps.positive]
        elif direction is Direction.NEG:
            return [maps.negative]
        return [maps.positive, maps.negative]

    def compute_clusters(self, fallback=False, **overrides):
        """
        Run the analysis.
        :param fallback: if no voxel is suprathreshold, show the unthresholded map instead; if no cluster survives
        the extent threshold, lower it to the size of the largest cluster
        :param overrides: option values replacing those of the session for this call
        :return: ClusterResult
        """
        options = self.options.replace(**overrides) if overrides else self.options
        u, k, diagnostics = self.uncorrected_thresholds(options)
        diagnostics = list(diagnostics)

        correction = None
        if options.correction is not Correction.NONE:
            if Diagnostic.MISSING_DEGREES_OF_FREEDOM in diagnostics:
                logger.warning("Correction disabled without degrees of freedom; using uncorrected thresholds")
            else:
                correction = self.correct_threshold(options.correction, height_threshold=u, alpha=options.alpha,
                                                    search_range=options.search_range, max_iter=options.max_iter)
                if options.correction is Correction.VOXEL_FWE:
                    u = correction.value
                else:
                    k = int(correction.value)
                if correction.diagnostic is not None:
                    diagnostics.append(correction.diagnostic)

        logger.info(f"Thresholding {self.field.name or 'statistic map'} at {u:.4f} with extent {k} "
                    f"({options.connectivity}-connectivity, direction {options.direction.value})")
        maps = self.cluster_maps(u, k, options.connectivity)
        selected = self._directions(maps, options.direction)

        if sum(clusters.n_suprathreshold for clusters in selected) == 0:
            if fallback:
                logger.warning("No suprathreshold voxels. Showing unthresholded image.")
                u, k = 0.0, 1
                maps = self.cluster_maps(u, k, options.connectivity)
                selected = self._directions(maps, options.direction)
            diagnostics.append(Diagnostic.NO_SUPRATHRESHOLD_VOXELS)
        elif sum(clusters.n_surviving for clusters in selected) == 0:
            if fallback:
                k = max(clusters.largest_cluster for clusters in selected)
                logger.warning(f"No clusters larger than the extent threshold. Lowering it to {k} voxels.")
                maps = self.cluster_maps(u, k, options.connectivity)
                selected = self._directions(maps, options.direction)
            diagnostics.append(Diagnostic.NO_CLUSTERS_SURVIVE_EXTENT)

        peaks = self._detect(maps, options)
        peaks = collapse_peaks(peaks, options.separation,
                               mode=CollapseMode.from_spm_compatible(options.spm_compatible),
                               progress=options.progress)
        table_diagnostic = diagnostics[-1] if diagnostics else None
        table = assemble_report(peaks, labeler=self.labeler, affine=self.field.affine, shape=self.field.shape,
                                diagnostic=table_diagnostic)
        logger.info(f"Reporting {len(table)} peaks in {table.n_clusters} clusters")

        return ClusterResult(labels=maps.labels[options.direction.row],
                             table=table,
                             clusters=maps,
                             height_threshold=u,
                             extent_threshold=k,
                             correction=correction,
                             diagnostics=tuple(diagnostics))

    def _detect(self, maps, options):
        affine = self.field.affine
        peaks = []
        if options.direction in (Direction.POS, Direction.POS_NEG):
            peaks.extend(detect_peaks(maps.positive.stat, maps.positive.labels, affine,
                                      sizes=maps.positive.sizes, voxel_limit=options.voxel_limit))
        if options.direction in (Direction.NEG, Direction.POS_NEG):
            # negative clusters share the label space of the combined map
            offset = int(maps.positive.labels.max(initial=0)) if options.direction is Direction.POS_NEG else 0
            negative = detect_peaks(maps.negative.stat, maps.negative.labels, affine,
                                    sizes=maps.negative.sizes, voxel_limit=options.voxel_limit)
            peaks.extend(replace(peak, statistic=-peak.statistic, cluster_id=peak.cluster_id + offset)
                         for peak in negative)
        return limit_peaks(peaks, options.voxel_limit)


def compute_clusters(field, options=None, oracle=None, labeler=None, **overrides):
    """
    Convenience wrapper: cluster and report a VoxelField in a single call.
    :return: ClusterResult
    """
    return AnalysisSession(field, options=options, oracle=oracle, labeler=labeler).compute_clusters(**overrides)
