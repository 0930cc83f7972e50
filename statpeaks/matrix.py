import numpy as np
from scipy.sparse import csr_matrix


def create_adjacency_matrix(edge_src, edge_dst, weights=None, nodes=None):
    """
    Build a sparse adjacency matrix from an edge list.
    :param edge_src: source node ids of the edges
    :param edge_dst: destination node ids of the edges
    :param weights: optional edge weights, ones by default
    :param nodes: optional sorted array of all node ids. Nodes without any edge (e.g. isolated voxels)
    are only part of the graph if they are listed here.
    :return: adjacency matrix indexed by position in the node array, and the node array
    """
    edge_src = np.asarray(edge_src, dtype=np.int64)
    edge_dst = np.asarray(edge_dst, dtype=np.int64)
    if nodes is None:
        nodes = np.unique(np.concatenate((edge_src, edge_dst)))
    else:
        nodes = np.asarray(nodes, dtype=np.int64)
    edge_src_short = np.searchsorted(nodes, edge_src)
    edge_dst_short = np.searchsorted(nodes, edge_dst)
    if weights is None:
        weights = np.ones(len(edge_src_short))
    adjacency_matrix = csr_matrix((weights, (edge_src_short, edge_dst_short)),
                                  shape=(len(nodes), len(nodes)))

    # check that the adjacency matrix is symmetric
    if abs((adjacency_matrix - adjacency_matrix.T)).sum() > 1e-6:
        raise ValueError("Adjacency matrix is not symmetric")

    return adjacency_matrix, nodes
