import numpy as np

from statpeaks.affine import voxel_to_mm
from statpeaks.graph import mask2graph


def estimate_fwhm(signal_data, mask_array=None, affine=None):
    """
    Estimate the smoothness (FWHM in mm) of an image from the variance of differences between face neighbors.
    Use a residual or noise image; the statistic map itself overestimates the smoothness of the noise.
    :param signal_data: 3D image
    :param mask_array: optional 3D binary mask restricting the estimate, defaults to the non-zero voxels
    :param affine: voxel-to-mm affine, identity if None
    :return: isotropic FWHM estimate in mm
    """
    signal_data = np.asarray(signal_data, dtype=np.float64)
    if mask_array is None:
        mask_array = signal_data != 0
    if affine is None:
        affine = np.eye(4)
    edge_src, edge_dst = mask2graph(mask_array, connectivity=6)
    if len(edge_src) == 0:
        raise ValueError("Cannot estimate the FWHM of an image without neighboring voxels")

    shape = signal_data.shape
    edge_src_xyz = voxel_to_mm(np.asarray(np.unravel_index(edge_src, shape)).T, affine)
    edge_dst_xyz = voxel_to_mm(np.asarray(np.unravel_index(edge_dst, shape)).T, affine)
    # compute the average inter-neighbor distance
    dv = np.mean(np.linalg.norm(edge_src_xyz - edge_dst_xyz, axis=1))

    signal = signal_data.ravel()
    # variance of the differences in signal between neighbors
    var_ds = np.var(signal[edge_src] - signal[edge_dst])
    # variance of the signal
    var_s = np.var(signal[np.unique(np.concatenate((edge_src, edge_dst)))])

    tmp = 1 - var_ds / (2 * var_s)
    tmp = max(tmp, 1e-12)
    tmp = np.log(tmp)
    tmp = (-2 * np.log(2)) / tmp
    return dv * np.sqrt(tmp)
