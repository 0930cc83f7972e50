from dataclasses import dataclass

import numpy as np
from scipy.sparse.csgraph import connected_components

from statpeaks.config import Direction
from statpeaks.graph import mask2graph
from statpeaks.matrix import create_adjacency_matrix
from statpeaks.utils import logger


def identify_connected_components(mask_array, connectivity=18):
    """
    Label the connected components of a binary volume.
    Labels are numbered 1..n in the order in which their first voxel is met in a C-order scan of the grid,
    so the same mask always gives the same labeling.
    :param mask_array: 3D binary numpy array
    :param connectivity: 6, 18 or 26
    :return: labels: integer array with the shape of the mask (0 = background),
             n_components: number of labels
    """
    mask_array = np.asarray(mask_array, dtype=bool)
    labels = np.zeros(mask_array.shape, dtype=np.int32)
    nodes = np.flatnonzero(mask_array)
    if len(nodes) == 0:
        return labels, 0

    edge_src, edge_dst = mask2graph(mask_array, connectivity=connectivity)
    adjacency_matrix, nodes = create_adjacency_matrix(edge_src, edge_dst, nodes=nodes)
    n_components, node_labels = connected_components(csgraph=adjacency_matrix, directed=False, return_labels=True)

    # renumber by first occurrence; nodes are sorted so the first index is the scan order
    _, first_index = np.unique(node_labels, return_index=True)
    order = np.argsort(first_index)
    renumber = np.empty(n_components, dtype=np.int32)
    renumber[order] = np.arange(1, n_components + 1, dtype=np.int32)
    labels.ravel()[nodes] = renumber[node_labels]
    return labels, n_components


def cluster_sizes(labels, n_components=None):
    """
    :param labels: label volume from identify_connected_components
    :param n_components: number of labels, inferred if None
    :return: array where entry i is the voxel count of label i (entry 0 is the background)
    """
    if n_components is None:
        n_components = int(labels.max(initial=0))
    return np.bincount(labels.ravel(), minlength=n_components + 1)


def filter_clusters_by_extent(stat_data, labels, sizes, min_extent):
    """
    Remove clusters smaller than the extent threshold.
    :param stat_data: statistic values (one direction, suprathreshold values positive)
    :param labels: label volume
    :param sizes: cluster sizes indexed by label
    :param min_extent: minimum number of voxels for a cluster to survive
    :return: filtered statistic map (zero outside surviving clusters),
             cluster size at each voxel (zero outside surviving clusters),
             label volume with removed clusters set to 0
    """
    size_map = np.asarray(sizes)[labels]
    size_map[labels == 0] = 0
    size_map[size_map < min_extent] = 0
    survivors = size_map > 0
    filtered = np.where(survivors, stat_data, 0.0)
    filtered_labels = np.where(survivors, labels, 0)
    return filtered, size_map, filtered_labels


def threshold_direction(signed_data, height_threshold, min_extent, connectivity=18):
    """
    Cluster one direction of a statistic map.
    Only voxels that are positive and at least `height_threshold` are suprathreshold.
    :return: DirectionClusters
    """
    mask = (signed_data >= height_threshold) & (signed_data > 0)
    labels, n_components = identify_connected_components(mask, connectivity=connectivity)
    sizes = cluster_sizes(labels, n_components)
    filtered, size_map, filtered_labels = filter_clusters_by_extent(signed_data, labels, sizes, min_extent)
    return DirectionClusters(stat=filtered,
                             labels=filtered_labels,
                             sizes=size_map,
                             n_suprathreshold=int(mask.sum()),
                             largest_cluster=int(sizes[1:].max(initial=0)))


@dataclass
class DirectionClusters:
    stat: np.ndarray
    labels: np.ndarray
    sizes: np.ndarray
    n_suprathreshold: int
    largest_cluster: int

    @property
    def n_surviving(self):
        return int(np.count_nonzero(self.labels))


@dataclass
class SignedClusterMaps:
    """
    Clusters of the positive and the negated statistic map.
    `sizes` and `labels` have three rows: positive, negative and either direction (positive + negative).
    Negative labels are offset by the highest positive label so the third row stays unambiguous.
    """
    positive: DirectionClusters
    negative: DirectionClusters
    sizes: np.ndarray
    labels: np.ndarray

    def select(self, direction):
        direction = Direction.parse(direction)
        return self.sizes[direction.row], self.labels[direction.row]


def signed_cluster_maps(stat_data, height_threshold, min_extent, connectivity=18):
    """
    Cluster the positive and the negative tails of a statistic map independently.
    The input array is never modified.
    :param stat_data: 3D statistic values
    :param height_threshold: cluster-defining threshold applied to each tail
    :param min_extent: minimum cluster size in voxels
    :param connectivity: 6, 18 or 26
    :return: SignedClusterMaps
    """
    positive = threshold_direction(np.array(stat_data, dtype=np.float64), height_threshold, min_extent,
                                   connectivity=connectivity)
    negative = threshold_direction(-np.asarray(stat_data, dtype=np.float64), height_threshold, min_extent,
                                   connectivity=connectivity)

    sizes = np.stack((positive.sizes, negative.sizes, positive.sizes + negative.sizes))
    offset = int(positive.labels.max(initial=0))
    negative_labels = np.where(negative.labels > 0, negative.labels + offset, 0)
    labels = np.stack((positive.labels, negative.labels, positive.labels + negative_labels))

    logger.debug(f"Threshold {height_threshold:.3f}, extent {min_extent}: "
                 f"{positive.n_surviving} positive and {negative.n_surviving} negative voxels survive")
    return SignedClusterMaps(positive=positive, negative=negative, sizes=sizes, labels=labels)
