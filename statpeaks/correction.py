"""
Corrected and uncorrected thresholds.

Voxel-level correction inverts the peak height distribution of the random field.
Cluster-level correction searches for the smallest cluster extent whose corrected
p-value does not exceed alpha. The automatic search works on the cube root of the
extent in resels (a "radius", proportional to the cluster diameter): it brackets
the answer by growing the radius and refines it with Newton-Raphson steps using a
finite-difference derivative.
"""
import math
from dataclasses import dataclass
from enum import Enum
from typing import Optional

import numpy as np
from scipy import stats

from statpeaks.exceptions import Diagnostic, InvalidParameter
from statpeaks.utils import logger
from statpeaks.volume import StatKind


class CorrectionStatus(str, Enum):
    OK = "OK"
    TOO_ROUGH = "TooRough"
    JUST_PVALUE = "JustPvalue"
    OUT_OF_RANGE = "OutOfRange"
    TOO_MANY_ITER = "TooManyIter"

    @property
    def diagnostic(self):
        return {CorrectionStatus.OUT_OF_RANGE: Diagnostic.SEARCH_OUT_OF_RANGE,
                CorrectionStatus.TOO_MANY_ITER: Diagnostic.SEARCH_NON_CONVERGENCE}.get(self)


@dataclass(frozen=True)
class CorrectionResult:
    """
    :param value: corrected height threshold (voxel-level) or extent threshold in voxels (cluster-level)
    :param status: outcome of the search
    :param p_value: corrected p-value at `value`
    :param alpha: requested family-wise error rate
    :param height_threshold: cluster-defining threshold the result refers to
    :param iterations: number of Newton-Raphson iterations used by the automatic search
    """
    value: float
    status: CorrectionStatus
    p_value: float
    alpha: float
    height_threshold: float
    iterations: int = 0

    @property
    def diagnostic(self) -> Optional[Diagnostic]:
        return self.status.diagnostic


def check_alpha(alpha):
    if not 0 < alpha < 1:
        raise InvalidParameter(f"alpha must be in (0, 1), got {alpha}")


def _check_df(stat_kind, df):
    if StatKind(stat_kind).requires_df and df is None:
        raise InvalidParameter(f"{StatKind(stat_kind).value} statistics require degrees of freedom")
    if df is not None and np.any(np.asarray(df, dtype=np.float64) <= 0):
        raise InvalidParameter(f"Degrees of freedom must be positive, got {df}")


def statistic_threshold(p_value, stat_kind="T", df=None):
    """
    Convert an uncorrected p-value to a statistic threshold.
    :param p_value: one-sided uncorrected p-value in (0, 1)
    :param stat_kind: T, F, Z or none (treated as Z)
    :param df: degrees of freedom, (df1, df2) for F
    :return: statistic value with upper tail probability p_value
    """
    if not 0 < p_value < 1:
        raise InvalidParameter(f"p-value must be in (0, 1), got {p_value}")
    stat_kind = StatKind(stat_kind)
    _check_df(stat_kind, df)
    if stat_kind is StatKind.T:
        return float(stats.t.isf(p_value, df))
    elif stat_kind is StatKind.F:
        df1, df2 = df
        return float(stats.f.isf(p_value, df1, df2))
    return float(stats.norm.isf(p_value))


def statistic_p_value(value, stat_kind="T", df=None):
    """
    Uncorrected upper tail p-value of a statistic value.
    """
    stat_kind = StatKind(stat_kind)
    _check_df(stat_kind, df)
    if stat_kind is StatKind.T:
        return float(stats.t.sf(value, df))
    elif stat_kind is StatKind.F:
        df1, df2 = df
        return float(stats.f.sf(value, df1, df2))
    return float(stats.norm.sf(value))


def voxel_correct(oracle, alpha=0.05):
    """
    FWE-corrected voxel-level height threshold.
    :param oracle: RandomFieldProbability
    :param alpha: family-wise error rate
    :return: CorrectionResult with the height threshold as value
    """
    check_alpha(alpha)
    u = oracle.height_threshold(alpha)
    p_value = oracle.peak_p(u)
    logger.info(f"Voxel-level FWE threshold at alpha={alpha:.3f}: u={u:.4f} (P={p_value:.4g})")
    return CorrectionResult(value=u, status=CorrectionStatus.OK, p_value=p_value, alpha=alpha,
                            height_threshold=u)


@dataclass
class RadiusSearch:
    """State of the automatic cluster radius search."""
    radius: float
    lower: float
    upper: float
    p_at_lower: float
    p_at_upper: float
    iterations: int = 0
    converged: bool = False


def bracket_radius(p_of_radius, alpha, initial_radius, max_steps=1000):
    """
    Grow the radius by 10% per step until its corrected p-value drops below alpha.
    :param p_of_radius: function radius -> corrected p-value of a cluster of radius**3 resels
    :return: RadiusSearch holding the bracket, or None if no bracket was found within max_steps
    """
    p_at_upper = 1.0
    upper = initial_radius
    p_at_lower = 0.0
    lower = np.inf
    steps = 0
    while p_at_upper > alpha:
        p_at_lower = p_at_upper
        lower = upper
        upper = upper * 1.1
        p_at_upper = p_of_radius(upper)
        steps += 1
        if steps > max_steps:
            return None
    return RadiusSearch(radius=upper, lower=lower, upper=upper, p_at_lower=p_at_lower, p_at_upper=p_at_upper)


def refine_radius(p_of_radius, alpha, search, max_iter=100, eps_p=1e-6):
    """
    Newton-Raphson refinement of a bracketed radius.
    :param p_of_radius: function radius -> corrected p-value
    :param alpha: target p-value
    :param search: RadiusSearch from bracket_radius, updated in place
    :param max_iter: iteration cap
    :param eps_p: convergence tolerance on the p-value and on the step size
    :return: search
    """
    lower, upper = search.lower, search.upper
    max_step = (upper - lower) / 10
    du = max_step / 100
    # linear interpolation for the initial guess
    span = search.p_at_lower - search.p_at_upper
    radius = lower * (alpha - search.p_at_upper) / span + upper * (search.p_at_lower - alpha) / span

    d = 1.0
    iteration = 1
    while abs(d) > eps_p:
        p = p_of_radius(radius)
        if abs(alpha - p) < eps_p:
            search.converged = True
            break
        p1 = p_of_radius(radius + du)
        if p1 == p:
            d = max_step if p > alpha else -max_step
        else:
            d = (alpha - p) / ((p1 - p) / du)
        logger.debug(f"Iteration {iteration}: radius {radius:.6f}, P {p:.6g}, step {d:.3g}")
        # truncate steps that are too big and keep inside the bracket
        if abs(d) > max_step:
            d = math.copysign(max_step, d)
        if radius + d > upper:
            d = (upper - radius) / 2
        if radius + d < lower:
            d = (radius - lower) / 2
        radius = radius + d
        iteration += 1
        if iteration >= max_iter:
            break
    else:
        search.converged = True

    search.radius = radius
    search.iterations = iteration
    return search


def cluster_correct(oracle, u, alpha=0.05, search_range=None, max_iter=100, eps_p=1e-6):
    """
    FWE-corrected cluster extent threshold.
    :param oracle: RandomFieldProbability
    :param u: cluster-defining height threshold
    :param alpha: family-wise error rate
    :param search_range: None for the automatic search, a single extent to just report its p-value,
    or a sequence of extents (voxels) to scan in order
    :param max_iter: maximum Newton-Raphson iterations
    :param eps_p: convergence criterion as a fraction of alpha
    :return: CorrectionResult with the extent threshold in voxels as value
    """
    check_alpha(alpha)
    v2r = oracle.resels_per_voxel
    eps_p = alpha * eps_p

    def p_of_extent(k):
        return oracle.cluster_p(k * v2r, u)[0]

    if search_range is not None and np.size(search_range) == 1:
        k = int(np.ravel(search_range)[0])
        result = CorrectionResult(value=k, status=CorrectionStatus.JUST_PVALUE, p_value=p_of_extent(k),
                                  alpha=alpha, height_threshold=u)
    elif p_of_extent(1) < alpha:
        logger.warning(f"Single voxel cluster is significant at u={u:.4f}")
        result = CorrectionResult(value=1, status=CorrectionStatus.TOO_ROUGH, p_value=p_of_extent(1),
                                  alpha=alpha, height_threshold=u)
    elif search_range is None:
        result = _automatic_extent_search(oracle, u, alpha, max_iter=max_iter, eps_p=eps_p)
    else:
        result = _brute_force_extent_search(p_of_extent, u, alpha, search_range)

    _log_correction(result)
    return result


def _automatic_extent_search(oracle, u, alpha, max_iter, eps_p):
    v2r = oracle.resels_per_voxel

    def p_of_radius(radius):
        return oracle.cluster_p(radius ** 3, u)[0]

    # the expected number of resels per cluster is the initial (lower bound) guess
    _, expected_resels = oracle.cluster_p(0, u)
    initial_radius = expected_resels ** (1 / 3)
    if not np.isfinite(initial_radius) or initial_radius <= 0:
        initial_radius = v2r ** (1 / 3)

    status = CorrectionStatus.OK
    search = bracket_radius(p_of_radius, alpha, initial_radius)
    if search is None:
        logger.warning("Could not bracket the cluster extent threshold")
        radius, iterations = initial_radius, 0
        status = CorrectionStatus.TOO_MANY_ITER
    else:
        logger.debug(f"Bracketed radius in [{search.lower:.4f}, {search.upper:.4f}]")
        refine_radius(p_of_radius, alpha, search, max_iter=max_iter, eps_p=eps_p)
        radius, iterations = search.radius, search.iterations
        if not search.converged:
            status = CorrectionStatus.TOO_MANY_ITER

    # convert back to voxels, rounding up
    k = math.ceil(radius ** 3 / v2r)
    return CorrectionResult(value=k, status=status, p_value=oracle.cluster_p(k * v2r, u)[0], alpha=alpha,
                            height_threshold=u, iterations=iterations)


def _brute_force_extent_search(p_of_extent, u, alpha, search_range):
    p_value = 1.0
    k = None
    for k in search_range:
        p_value = p_of_extent(k)
        if p_value <= alpha:
            break
    status = CorrectionStatus.OK if p_value <= alpha else CorrectionStatus.OUT_OF_RANGE
    return CorrectionResult(value=k, status=status, p_value=p_value, alpha=alpha, height_threshold=u)


def _log_correction(result):
    if result.status is CorrectionStatus.JUST_PVALUE:
        logger.info(f"For a cluster-defining threshold of {result.height_threshold:.4f} a cluster size threshold "
                    f"of {result.value} has corrected P-value {result.p_value:.4g}")
    elif result.status is CorrectionStatus.OK:
        logger.info(f"For a cluster-defining threshold of {result.height_threshold:.4f} the level "
                    f"{result.alpha:.3f} corrected cluster size threshold is {result.value} "
                    f"(corrected P-value {result.p_value:.4g})")
    elif result.status is CorrectionStatus.TOO_ROUGH:
        logger.warning(f"A k=1 voxel cluster size threshold has corrected P-value {result.p_value:.4g}")
    elif result.status is CorrectionStatus.TOO_MANY_ITER:
        logger.warning("Automated cluster extent search failed to converge. Try a systematic search range.")
    elif result.status is CorrectionStatus.OUT_OF_RANGE:
        logger.warning(f"No cluster size in the searched range reached corrected P <= {result.alpha} "
                       f"(smallest P: {result.p_value:.4g}). Try increasing the range or an automatic search.")
