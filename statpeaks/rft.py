"""
Random field theory probabilities.

The corrector only depends on the :class:`RandomFieldProbability` contract:
the family-wise corrected p-value of a cluster of a given extent (in resels) at a
cluster-defining threshold, the expected cluster extent, and the inverse of the
peak height distribution. :class:`GaussianRandomField` implements it for 3D
Gaussian (Z) fields using the expected Euler characteristic and the Poisson
clumping heuristic for cluster extents.
"""
from abc import ABC, abstractmethod
from dataclasses import dataclass

import numpy as np
from scipy.optimize import brentq
from scipy.special import gamma
from scipy.stats import norm

from statpeaks.affine import get_spacing_from_affine
from statpeaks.exceptions import InvalidParameter
from statpeaks.fwhm import estimate_fwhm


def resel_counts(mask_array, fwhm):
    """
    Resel counts R0..R3 of a search volume.
    Counts the voxels, edges, faces and cubes of the mask lattice and weights them by the voxel size in FWHM units.
    :param mask_array: 3D binary mask of the search volume
    :param fwhm: FWHM in voxels along each axis (scalar or length 3)
    :return: numpy array [R0, R1, R2, R3]
    """
    m = np.asarray(mask_array, dtype=bool)
    rx, ry, rz = 1 / np.broadcast_to(np.asarray(fwhm, dtype=np.float64), (3,))

    P = m.sum()
    Ex = (m[:-1, :, :] & m[1:, :, :]).sum()
    Ey = (m[:, :-1, :] & m[:, 1:, :]).sum()
    Ez = (m[:, :, :-1] & m[:, :, 1:]).sum()
    Fxy = (m[:-1, :-1, :] & m[1:, :-1, :] & m[:-1, 1:, :] & m[1:, 1:, :]).sum()
    Fxz = (m[:-1, :, :-1] & m[1:, :, :-1] & m[:-1, :, 1:] & m[1:, :, 1:]).sum()
    Fyz = (m[:, :-1, :-1] & m[:, 1:, :-1] & m[:, :-1, 1:] & m[:, 1:, 1:]).sum()
    C = (m[:-1, :-1, :-1] & m[1:, :-1, :-1] & m[:-1, 1:, :-1] & m[:-1, :-1, 1:] &
         m[1:, 1:, :-1] & m[1:, :-1, 1:] & m[:-1, 1:, 1:] & m[1:, 1:, 1:]).sum()

    R0 = P - (Ex + Ey + Ez) + (Fxy + Fxz + Fyz) - C
    R1 = (Ex - Fxy - Fxz + C) * rx + (Ey - Fxy - Fyz + C) * ry + (Ez - Fxz - Fyz + C) * rz
    R2 = (Fxy - C) * rx * ry + (Fxz - C) * rx * rz + (Fyz - C) * ry * rz
    R3 = C * rx * ry * rz
    return np.array([R0, R1, R2, R3], dtype=np.float64)


@dataclass(frozen=True)
class SearchVolume:
    """
    :param resels: resel counts [R0, R1, R2, R3]
    :param n_voxels: number of voxels in the search volume
    :param fwhm: smoothness in voxels along each axis
    """
    resels: tuple
    n_voxels: int
    fwhm: tuple

    @property
    def resels_per_voxel(self):
        fwhm = np.asarray(self.fwhm, dtype=np.float64)
        return float(1 / np.prod(fwhm[np.isfinite(fwhm)]))

    @classmethod
    def from_mask(cls, mask_array, affine, fwhm_mm=None, residuals=None):
        """
        Describe a search volume from its mask.
        :param mask_array: 3D binary mask
        :param affine: voxel-to-mm affine of the mask
        :param fwhm_mm: smoothness in mm (scalar or per axis). If None, it is estimated from `residuals`.
        :param residuals: residual/noise image used to estimate the smoothness when fwhm_mm is None
        """
        mask_array = np.asarray(mask_array, dtype=bool)
        if fwhm_mm is None:
            if residuals is None:
                raise InvalidParameter("Either fwhm_mm or residuals must be provided")
            fwhm_mm = estimate_fwhm(residuals, mask_array, affine)
        fwhm_mm = np.broadcast_to(np.asarray(fwhm_mm, dtype=np.float64), (3,))
        if np.any(fwhm_mm <= 0):
            raise InvalidParameter(f"FWHM must be positive, got {fwhm_mm}")
        fwhm_vox = fwhm_mm / get_spacing_from_affine(affine)
        return cls(resels=tuple(resel_counts(mask_array, fwhm_vox)),
                   n_voxels=int(mask_array.sum()),
                   fwhm=tuple(float(f) for f in fwhm_vox))


class RandomFieldProbability(ABC):
    """
    Family-wise corrected probabilities for a statistic field over a search volume.
    """

    def __init__(self, search_volume, df=None, stat_kind="Z", n_conjunctions=1):
        self.search_volume = search_volume
        self.df = df
        self.stat_kind = stat_kind
        self.n_conjunctions = n_conjunctions

    @property
    def resels_per_voxel(self):
        return self.search_volume.resels_per_voxel

    @abstractmethod
    def cluster_p(self, k, u):
        """
        :param k: cluster extent in resels
        :param u: cluster-defining threshold
        :return: (corrected p-value of a cluster of at least k resels, expected resels per cluster)
        """

    def peak_p(self, u):
        """Corrected p-value of a peak of height u."""
        return self.cluster_p(0, u)[0]

    @abstractmethod
    def height_threshold(self, alpha):
        """Threshold u such that peak_p(u) == alpha."""


class GaussianRandomField(RandomFieldProbability):
    """
    Three dimensional Gaussian random field.
    """

    def __init__(self, search_volume, n_conjunctions=1):
        if n_conjunctions != 1:
            raise InvalidParameter("Conjunctions are not supported for Gaussian fields")
        super().__init__(search_volume, df=None, stat_kind="Z", n_conjunctions=n_conjunctions)

    @staticmethod
    def ec_densities(u):
        """Euler characteristic densities of a unit variance Gaussian field, dimensions 0 to 3."""
        a = 4 * np.log(2)
        b = np.exp(-u ** 2 / 2)
        return np.array([norm.sf(u),
                         np.sqrt(a) / (2 * np.pi) * b,
                         a / (2 * np.pi) ** (3 / 2) * b * u,
                         a ** (3 / 2) / (2 * np.pi) ** 2 * b * (u ** 2 - 1)])

    def expected_clusters(self, u):
        """Expected Euler characteristic (number of clusters) above u and expected suprathreshold resels."""
        resels = np.asarray(self.search_volume.resels, dtype=np.float64)
        ec = self.ec_densities(u)
        Em = float(np.dot(resels, ec))
        EN = float(ec[0] * resels[3])
        return Em, EN

    def cluster_p(self, k, u):
        D = 3
        Em, EN = self.expected_clusters(u)
        En = EN / Em if Em > 0 else np.inf
        beta = (gamma(D / 2 + 1) / En) ** (2 / D)
        Pn = np.exp(-beta * np.power(k, 2 / D))
        P = 1 - np.exp(-Em * Pn)
        return float(P), float(En)

    def height_threshold(self, alpha, upper=40.0, step=0.5):
        if not 0 < alpha < 1:
            raise InvalidParameter(f"alpha must be in (0, 1), got {alpha}")
        while self.peak_p(upper) >= alpha:
            upper *= 2
        lower = upper
        while self.peak_p(lower) < alpha:
            lower -= step
            if lower <= 0:
                return 0.0
        return float(brentq(lambda u: self.peak_p(u) - alpha, lower, upper))
