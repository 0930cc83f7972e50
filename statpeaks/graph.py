import numpy as np

CONNECTIVITIES = (6, 18, 26)


def neighbor_offsets(connectivity=26):
    """
    Offsets of the neighbors of a voxel under a 3D connectivity rule.
    :param connectivity: 6 (faces), 18 (faces and edges) or 26 (faces, edges and corners)
    :return: (connectivity, 3) array of (di, dj, dk) offsets
    """
    if connectivity not in CONNECTIVITIES:
        raise ValueError(f"Connectivity must be one of {CONNECTIVITIES}, got {connectivity}")
    # number of non-zero components: 1 -> face, 2 -> edge, 3 -> corner
    max_order = {6: 1, 18: 2, 26: 3}[connectivity]
    offsets = np.array([[di, dj, dk]
                        for di in [-1, 0, 1]
                        for dj in [-1, 0, 1]
                        for dk in [-1, 0, 1]
                        if 0 < abs(di) + abs(dj) + abs(dk) <= max_order])
    return offsets


def mask2graph(mask_array, connectivity=26):
    """
    Convert a 3D binary array to a graph representation.
    :param mask_array: 3D binary numpy array
    :param connectivity: neighbor rule, see neighbor_offsets
    :return: edge_src, edge_dst as linear (C-order) voxel indices. Every edge is listed in both directions.
    """
    mask_array = np.asarray(mask_array, dtype=bool)
    shape = np.asarray(mask_array.shape)
    voxels = np.argwhere(mask_array)
    offsets = neighbor_offsets(connectivity)
    # (n_voxels, n_offsets, 3) candidate neighbors
    candidates = voxels[:, None, :] + offsets[None, :, :]
    inside = np.all((candidates >= 0) & (candidates < shape), axis=-1)

    src_voxels = np.broadcast_to(voxels[:, None, :], candidates.shape)[inside]
    dst_voxels = candidates[inside]
    edge_src = np.ravel_multi_index(tuple(src_voxels.T), mask_array.shape)
    edge_dst = np.ravel_multi_index(tuple(dst_voxels.T), mask_array.shape)

    # drop edges leading out of the mask
    in_mask = mask_array.ravel()[edge_dst]
    return edge_src[in_mask], edge_dst[in_mask]
