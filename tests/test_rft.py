import numpy as np
import pytest
from scipy import ndimage

from statpeaks.exceptions import InvalidParameter
from statpeaks.fwhm import estimate_fwhm
from statpeaks.rft import GaussianRandomField, SearchVolume, resel_counts


def test_resel_counts_single_voxel():
    mask = np.zeros((3, 3, 3), dtype=bool)
    mask[1, 1, 1] = True
    assert resel_counts(mask, 2.0).tolist() == [1.0, 0.0, 0.0, 0.0]


def test_resel_counts_cube():
    mask = np.zeros((4, 4, 4), dtype=bool)
    mask[1:3, 1:3, 1:3] = True
    # 8 points, 12 edges, 6 faces and 1 cube
    assert resel_counts(mask, 1.0) == pytest.approx([1.0, 3.0, 3.0, 1.0])
    assert resel_counts(mask, 2.0) == pytest.approx([1.0, 1.5, 0.75, 0.125])


def test_resel_counts_line():
    mask = np.zeros((5, 3, 3), dtype=bool)
    mask[0:4, 1, 1] = True
    assert resel_counts(mask, (0.5, 1.0, 1.0)) == pytest.approx([1.0, 6.0, 0.0, 0.0])


def test_search_volume_from_mask():
    mask = np.ones((10, 10, 10), dtype=bool)
    search_volume = SearchVolume.from_mask(mask, np.diag([2.0, 2.0, 2.0, 1.0]), fwhm_mm=(4.0, 4.0, 8.0))
    assert search_volume.fwhm == (2.0, 2.0, 4.0)
    assert search_volume.n_voxels == 1000
    assert search_volume.resels_per_voxel == pytest.approx(1 / 16)
    assert search_volume.resels[3] == pytest.approx(9 ** 3 / 16)


def test_search_volume_requires_smoothness():
    mask = np.ones((4, 4, 4), dtype=bool)
    with pytest.raises(InvalidParameter):
        SearchVolume.from_mask(mask, np.eye(4))
    with pytest.raises(InvalidParameter):
        SearchVolume.from_mask(mask, np.eye(4), fwhm_mm=0)


def _gaussian_field():
    search_volume = SearchVolume.from_mask(np.ones((20, 20, 20), dtype=bool), np.eye(4), fwhm_mm=4.0)
    return GaussianRandomField(search_volume)


def test_cluster_p_decreases_with_extent():
    field = _gaussian_field()
    p = [field.cluster_p(k, 3.0)[0] for k in (0, 0.5, 1, 2, 5)]
    assert all(a > b for a, b in zip(p[:-1], p[1:]))
    assert all(0 <= value <= 1 for value in p)


def test_peak_p_decreases_with_height():
    field = _gaussian_field()
    p = [field.peak_p(u) for u in (3.0, 4.0, 5.0)]
    assert p[0] > p[1] > p[2]


def test_height_threshold_inverts_peak_p():
    field = _gaussian_field()
    u = field.height_threshold(0.05)
    assert field.peak_p(u) == pytest.approx(0.05, abs=1e-6)
    assert field.height_threshold(0.01) > u


def test_gaussian_field_rejects_conjunctions():
    search_volume = SearchVolume(resels=(1.0, 0.0, 0.0, 10.0), n_voxels=10, fwhm=(1.0, 1.0, 1.0))
    with pytest.raises(InvalidParameter):
        GaussianRandomField(search_volume, n_conjunctions=2)


def test_estimate_fwhm_of_smoothed_noise():
    rng = np.random.default_rng(11)
    sigma = 2.0
    noise = ndimage.gaussian_filter(rng.standard_normal((40, 40, 40)), sigma)
    mask = np.zeros(noise.shape, dtype=bool)
    mask[8:-8, 8:-8, 8:-8] = True
    affine = np.diag([3.0, 3.0, 3.0, 1.0])
    fwhm = estimate_fwhm(noise, mask, affine)
    assert fwhm == pytest.approx(3.0 * sigma * np.sqrt(8 * np.log(2)), rel=0.15)


def test_search_volume_from_residuals():
    rng = np.random.default_rng(5)
    residuals = ndimage.gaussian_filter(rng.standard_normal((24, 24, 24)), 1.5)
    mask = np.ones(residuals.shape, dtype=bool)
    search_volume = SearchVolume.from_mask(mask, np.eye(4), residuals=residuals)
    assert all(f > 1 for f in search_volume.fwhm)


def test_height_threshold_with_low_starting_bound():
    field = _gaussian_field()
    assert field.peak_p(1.0) >= 0.05
    assert field.height_threshold(0.05, upper=1.0) == pytest.approx(field.height_threshold(0.05), abs=1e-6)
