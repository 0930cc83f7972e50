import numpy as np
import pytest
from scipy import ndimage

from statpeaks.components import (
    cluster_sizes,
    filter_clusters_by_extent,
    identify_connected_components,
    signed_cluster_maps,
)
from statpeaks.config import Direction
from statpeaks.graph import mask2graph, neighbor_offsets

STRUCTURE_RANK = {6: 1, 18: 2, 26: 3}


def _same_partition(labels_a, labels_b):
    """Two labelings describe the same partition if their labels map one to one."""
    a = labels_a.ravel()
    b = labels_b.ravel()
    if not np.array_equal(a > 0, b > 0):
        return False
    pairs = set(zip(a[a > 0].tolist(), b[b > 0].tolist()))
    return len(pairs) == len({p[0] for p in pairs}) == len({p[1] for p in pairs})


@pytest.mark.parametrize("connectivity", [6, 18, 26])
def test_neighbor_offsets_counts(connectivity):
    offsets = neighbor_offsets(connectivity)
    assert offsets.shape == (connectivity, 3)
    assert not np.any(np.all(offsets == 0, axis=1))


def test_neighbor_offsets_rejects_unknown_connectivity():
    with pytest.raises(ValueError):
        neighbor_offsets(8)


def test_mask2graph_edges_are_symmetric():
    mask = np.zeros((3, 3, 3), dtype=bool)
    mask[1, 1, 1] = mask[1, 1, 2] = True
    src, dst = mask2graph(mask, connectivity=6)
    edges = set(zip(src.tolist(), dst.tolist()))
    a = np.ravel_multi_index((1, 1, 1), mask.shape)
    b = np.ravel_multi_index((1, 1, 2), mask.shape)
    assert edges == {(a, b), (b, a)}


@pytest.mark.parametrize("connectivity", [6, 18, 26])
def test_partition_matches_ndimage(connectivity):
    rng = np.random.default_rng(42)
    mask = rng.random((14, 12, 10)) > 0.6
    labels, n = identify_connected_components(mask, connectivity=connectivity)
    structure = ndimage.generate_binary_structure(3, STRUCTURE_RANK[connectivity])
    expected, n_expected = ndimage.label(mask, structure=structure)
    assert n == n_expected
    assert _same_partition(labels, expected)


def test_labels_numbered_in_scan_order():
    mask = np.zeros((5, 5, 5), dtype=bool)
    mask[4, 4, 4] = True
    mask[0, 0, 1] = True
    mask[2, 2, 2] = True
    labels, n = identify_connected_components(mask, connectivity=26)
    assert n == 3
    assert labels[0, 0, 1] == 1
    assert labels[2, 2, 2] == 2
    assert labels[4, 4, 4] == 3


def test_labeling_is_deterministic():
    rng = np.random.default_rng(0)
    mask = rng.random((10, 10, 10)) > 0.5
    labels_a, _ = identify_connected_components(mask, connectivity=18)
    labels_b, _ = identify_connected_components(mask.copy(), connectivity=18)
    assert np.array_equal(labels_a, labels_b)


def test_connectivity_rules_differ():
    # two voxels touching by an edge, and a third touching the second by a corner
    mask = np.zeros((4, 4, 4), dtype=bool)
    mask[0, 0, 0] = True
    mask[1, 1, 0] = True
    mask[2, 2, 1] = True
    assert identify_connected_components(mask, connectivity=6)[1] == 3
    assert identify_connected_components(mask, connectivity=18)[1] == 2
    assert identify_connected_components(mask, connectivity=26)[1] == 1


def test_empty_mask_has_no_components():
    labels, n = identify_connected_components(np.zeros((3, 3, 3), dtype=bool))
    assert n == 0
    assert not labels.any()


def test_cluster_size_filter():
    stat = np.zeros((6, 6, 6))
    stat[0:2, 0:2, 0:2] = 3.0  # 8 voxels
    stat[4, 4, 4] = 5.0  # 1 voxel
    labels, n = identify_connected_components(stat > 0, connectivity=18)
    sizes = cluster_sizes(labels, n)
    assert sizes.tolist() == [6 ** 3 - 9, 8, 1]

    filtered, size_map, filtered_labels = filter_clusters_by_extent(stat, labels, sizes, 2)
    assert filtered[4, 4, 4] == 0
    assert filtered[0, 0, 0] == 3.0
    assert np.all(size_map[stat == 3.0] == 8)
    assert size_map[4, 4, 4] == 0
    assert filtered_labels[4, 4, 4] == 0


def test_signed_cluster_maps_rows(two_blob_field):
    maps = signed_cluster_maps(two_blob_field.data, 3.0, 1, connectivity=18)
    assert maps.sizes.shape == (3,) + two_blob_field.shape
    assert maps.sizes[0][3, 3, 3] == 27
    assert maps.sizes[0][8, 8, 8] == 0
    assert maps.sizes[1][8, 8, 8] == 27
    assert maps.sizes[1][3, 3, 3] == 0
    assert np.array_equal(maps.sizes[2], maps.sizes[0] + maps.sizes[1])

    # labels of the either-direction row do not collide
    assert maps.labels[2][3, 3, 3] != maps.labels[2][8, 8, 8]
    sizes, labels = maps.select(Direction.NEG)
    assert sizes[8, 8, 8] == 27
    assert labels[8, 8, 8] == 1
    assert maps.negative.stat[8, 8, 8] == 8.0


def test_signed_cluster_maps_do_not_mutate_input():
    data = np.zeros((6, 6, 6))
    data[2, 2, 2] = 4.0
    data[3, 3, 4] = -4.0
    original = data.copy()
    signed_cluster_maps(data, 1.0, 1)
    assert np.array_equal(data, original)


def test_threshold_and_extent_monotonicity():
    rng = np.random.default_rng(7)
    data = ndimage.gaussian_filter(rng.standard_normal((16, 16, 16)), 1.5) * 10
    survivors = []
    for u, k in [(0.5, 1), (1.0, 1), (1.0, 5), (2.0, 5)]:
        maps = signed_cluster_maps(data, u, k)
        survivors.append(maps.sizes[2] > 0)
    for looser, stricter in zip(survivors[:-1], survivors[1:]):
        assert not np.any(stricter & ~looser)
