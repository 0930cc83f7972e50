import numpy as np

from statpeaks.exceptions import InvalidAffine


def get_spacing_from_affine(affine):
    """
    Get the voxel spacing (mm) from the affine matrix.
    :param affine: 4x4 voxel-to-mm affine matrix
    :return: spacing along each voxel axis
    """
    RZS = np.asarray(affine)[:3, :3]
    return np.sqrt(np.sum(np.multiply(RZS, RZS), axis=0))


def check_affine(affine, tol=1e-12):
    """
    Validate a voxel-to-mm affine.
    :param affine: array-like 4x4 matrix
    :param tol: determinant magnitude below which the rotation/zoom block is considered singular
    :return: the affine as a float64 numpy array
    :raises InvalidAffine: if the affine is not 4x4 or cannot be inverted
    """
    affine = np.array(affine, dtype=np.float64)
    if affine.shape != (4, 4):
        raise InvalidAffine(f"Affine must be 4x4, got shape {affine.shape}")
    if not np.all(np.isfinite(affine)):
        raise InvalidAffine("Affine contains non-finite values")
    if abs(np.linalg.det(affine[:3, :3])) < tol:
        raise InvalidAffine("Affine is not invertible")
    return affine


def voxel_to_mm(ijk, affine):
    """
    Transform voxel indices to real world coordinates.
    :param ijk: (n, 3) or (3,) array of voxel indices
    :param affine: 4x4 voxel-to-mm affine
    :return: coordinates in mm with the same leading shape as ijk
    """
    ijk = np.asarray(ijk, dtype=np.float64)
    single = ijk.ndim == 1
    ijk = np.atleast_2d(ijk)
    xyz = np.concatenate((ijk, np.ones((ijk.shape[0], 1))), axis=1) @ np.asarray(affine).T
    xyz = xyz[:, :3]
    return xyz[0] if single else xyz


def mm_to_voxel(xyz, affine, shape=None):
    """
    Transform real world coordinates to the nearest voxel indices.
    :param xyz: (n, 3) or (3,) array of coordinates in mm
    :param affine: 4x4 voxel-to-mm affine
    :param shape: optional grid shape; indices are clipped into the grid if given
    :return: integer voxel indices
    """
    xyz = np.asarray(xyz, dtype=np.float64)
    single = xyz.ndim == 1
    xyz = np.atleast_2d(xyz)
    inverse = np.linalg.inv(np.asarray(affine, dtype=np.float64))
    ijk = np.concatenate((xyz, np.ones((xyz.shape[0], 1))), axis=1) @ inverse.T
    ijk = np.rint(ijk[:, :3]).astype(int)
    if shape is not None:
        ijk = np.clip(ijk, 0, np.asarray(shape[:3]) - 1)
    return ijk[0] if single else ijk
