import os
import sys

import numpy as np
import pytest
from scipy.special import gamma

ROOT = os.path.abspath(os.path.join(os.path.dirname(__file__), ".."))
if ROOT not in sys.path:
    sys.path.insert(0, ROOT)

from statpeaks.rft import RandomFieldProbability, SearchVolume  # noqa: E402
from statpeaks.volume import VoxelField  # noqa: E402


class PoissonClumpingOracle(RandomFieldProbability):
    """
    Random field probabilities with a fixed expected number of clusters and a fixed expected cluster extent,
    so that the cluster extent threshold has a closed form.
    """

    def __init__(self, expected_clusters=2.0, expected_resels=5.0, resels_per_voxel=0.1, height=4.5):
        super().__init__(SearchVolume(resels=(1.0, 0.0, 0.0, 100.0), n_voxels=1000, fwhm=(1.0, 1.0, 1.0)))
        self.expected_clusters = expected_clusters
        self.expected_resels = expected_resels
        self._resels_per_voxel = resels_per_voxel
        self.height = height
        self.calls = 0

    @property
    def resels_per_voxel(self):
        return self._resels_per_voxel

    @property
    def beta(self):
        return (gamma(2.5) / self.expected_resels) ** (2 / 3)

    def cluster_p(self, k, u):
        self.calls += 1
        Pn = np.exp(-self.beta * np.power(k, 2 / 3))
        return float(1 - np.exp(-self.expected_clusters * Pn)), self.expected_resels

    def height_threshold(self, alpha):
        return self.height

    def exact_extent(self, alpha):
        """Extent in voxels at which the corrected p-value equals alpha."""
        k_resels = (-np.log(-np.log(1 - alpha) / self.expected_clusters) / self.beta) ** 1.5
        return k_resels / self.resels_per_voxel


@pytest.fixture
def oracle():
    return PoissonClumpingOracle()


def make_field(data, spacing=2.0, df=20, stat_kind="T"):
    affine = np.diag([spacing, spacing, spacing, 1.0])
    affine[:3, 3] = -10.0
    return VoxelField(data=data, affine=affine, df=df, stat_kind=stat_kind)


@pytest.fixture
def two_blob_field():
    """A positive blob (max 6) and a negative blob (min -8) on a 2 mm grid."""
    data = np.zeros((12, 12, 12))
    data[2:5, 2:5, 2:5] = 4.0
    data[3, 3, 3] = 6.0
    data[7:10, 7:10, 7:10] = -5.0
    data[8, 8, 8] = -8.0
    return make_field(data)


@pytest.fixture
def oracle_factory():
    return PoissonClumpingOracle


@pytest.fixture
def field_factory():
    return make_field
