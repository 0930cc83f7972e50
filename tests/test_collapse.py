import numpy as np
import pytest

from statpeaks.collapse import CollapseMode, collapse_cluster_peaks, collapse_peaks, peak_distances
from statpeaks.exceptions import InvalidParameter
from statpeaks.peaks import Peak


def _peak(mm, statistic, cluster_id=1):
    return Peak(voxel=(0, 0, 0), mm=tuple(float(c) for c in mm), statistic=statistic, cluster_id=cluster_id)


def test_two_close_peaks_collapse_to_weighted_center():
    peaks = [_peak((0, 0, 0), 5.0), _peak((5, 0, 0), 5.0)]
    collapsed = collapse_cluster_peaks(peaks, 20, CollapseMode.COLLAPSE)
    assert len(collapsed) == 1
    assert collapsed[0].statistic == 5.0
    assert collapsed[0].mm == pytest.approx((2.5, 0.0, 0.0))
    assert collapsed[0].merged_count == 2


def test_two_close_peaks_eliminate_weaker():
    peaks = [_peak((5, 0, 0), 4.0), _peak((0, 0, 0), 5.0)]
    eliminated = collapse_cluster_peaks(peaks, 20, CollapseMode.ELIMINATE)
    assert len(eliminated) == 1
    assert eliminated[0].mm == (0.0, 0.0, 0.0)
    assert eliminated[0].statistic == 5.0
    assert eliminated[0].merged_count == 1


def test_distant_peaks_are_kept():
    peaks = [_peak((0, 0, 0), 5.0), _peak((30, 0, 0), 4.0)]
    assert len(collapse_cluster_peaks(peaks, 20)) == 2


def test_collapse_counts_are_weighted():
    # the 3-peak center is pulled towards the merged pair
    peaks = [_peak((0, 0, 0), 9.0), _peak((1, 0, 0), 8.0), _peak((4, 0, 0), 7.0)]
    collapsed = collapse_cluster_peaks(peaks, 10, CollapseMode.COLLAPSE)
    assert len(collapsed) == 1
    assert collapsed[0].merged_count == 3
    assert collapsed[0].mm[0] == pytest.approx(5 / 3)


def test_negative_peaks_keep_the_strongest():
    peaks = [_peak((0, 0, 0), -3.0), _peak((2, 0, 0), -7.0)]
    eliminated = collapse_cluster_peaks(peaks, 10)
    assert [p.statistic for p in eliminated] == [-7.0]


@pytest.mark.parametrize("mode", list(CollapseMode))
def test_separation_and_conservation(mode):
    rng = np.random.default_rng(3)
    peaks = [_peak(rng.uniform(0, 40, 3), float(s)) for s in rng.uniform(3, 9, 40)]
    separation = 8.0
    result = collapse_cluster_peaks(peaks, separation, mode)
    distance = peak_distances(result)
    off_diagonal = distance[~np.eye(len(result), dtype=bool)]
    assert np.all(off_diagonal >= separation)
    if mode is CollapseMode.COLLAPSE:
        assert sum(p.merged_count for p in result) == len(peaks)
    else:
        assert all(p.merged_count == 1 for p in result)
    # the strongest peak always survives
    assert max(p.statistic for p in result) == max(p.statistic for p in peaks)


def test_clusters_are_processed_independently():
    peaks = [_peak((0, 0, 0), 5.0, cluster_id=1), _peak((1, 0, 0), 4.0, cluster_id=2)]
    assert len(collapse_peaks(peaks, 20)) == 2


def test_zero_separation_keeps_everything():
    peaks = [_peak((0, 0, 0), 5.0), _peak((1, 0, 0), 4.0)]
    assert len(collapse_peaks(peaks, 0)) == 2


def test_negative_separation_is_rejected():
    with pytest.raises(InvalidParameter):
        collapse_peaks([_peak((0, 0, 0), 5.0)], -1)


def test_collapse_mode_from_spm_compatible():
    assert CollapseMode.from_spm_compatible(True) is CollapseMode.ELIMINATE
    assert CollapseMode.from_spm_compatible(False) is CollapseMode.COLLAPSE


def test_equal_distances_resolve_the_first_pair_in_scan_order():
    # A-B and B-C are both 3 mm apart; A-B comes first in the distance matrix
    peaks = [_peak((6, 0, 0), 7.0), _peak((3, 0, 0), 8.0), _peak((0, 0, 0), 9.0)]
    collapsed = collapse_cluster_peaks(peaks, 4, CollapseMode.COLLAPSE)
    assert [(p.statistic, p.merged_count) for p in collapsed] == [(9.0, 2), (7.0, 1)]
    assert collapsed[0].mm == pytest.approx((1.5, 0.0, 0.0))
    assert collapsed[1].mm == (6.0, 0.0, 0.0)

    eliminated = collapse_cluster_peaks(peaks, 4, CollapseMode.ELIMINATE)
    assert [p.mm for p in eliminated] == [(0.0, 0.0, 0.0), (6.0, 0.0, 0.0)]
