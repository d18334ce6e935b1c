"""
P-value Calculators

Turn a nonconformity score into a p-value against a sorted array of
calibration scores, and invert a confidence level into the calibration
score that bounds a prediction interval.

The standard and interpolated calculators return p-values in
[1/(n+1), 1], the smoothed one in (0, 1]. A p-value is never 0.

"""

from typing import Dict

import numpy as np
from scipy.interpolate import PchipInterpolator

from ..exceptions import InvalidInputError

# Guards ceil(c * (n + 1)) against float noise such as 0.8 * 10 = 8.000000000000002
_CEIL_EPS = 1e-10


def _check_confidence(confidence: float) -> float:
    confidence = float(confidence)
    if not 0 <= confidence <= 1:
        raise InvalidInputError(f"confidence must be in [0,1], got {confidence}")
    return confidence


class PValueCalculator:
    """
    Base class for p-value calculators.

    Subclasses implement ``pvalues`` and ``ncs_at_confidence``. Both expect
    ``sorted_scores`` in ascending order (as stored by the predictors).
    """

    name = 'base'
    min_scores = 1

    def __repr__(self) -> str:
        return f"{type(self).__name__}()"

    def clone(self) -> 'PValueCalculator':
        return type(self)(**self.get_params())

    def get_params(self) -> Dict:
        return {}

    def _check_scores(self, sorted_scores: np.ndarray) -> np.ndarray:
        sorted_scores = np.asarray(sorted_scores, dtype=float)
        if len(sorted_scores) < self.min_scores:
            raise InvalidInputError(
                f"{type(self).__name__} needs at least {self.min_scores} "
                f"calibration score(s), got {len(sorted_scores)}"
            )
        return sorted_scores

    @staticmethod
    def _check_ncs(ncs) -> np.ndarray:
        ncs = np.atleast_1d(np.asarray(ncs, dtype=float))
        if np.isnan(ncs).any():
            raise InvalidInputError("Nonconformity scores must not be NaN")
        return ncs

    def pvalues(self, ncs, sorted_scores: np.ndarray) -> np.ndarray:
        raise NotImplementedError

    def ncs_at_confidence(self, confidence: float, sorted_scores: np.ndarray) -> float:
        raise NotImplementedError

    def max_confidence(self, n: int) -> float:
        """Largest confidence that still gives a finite interval."""
        return n / (n + 1.0)


class StandardPValue(PValueCalculator):
    """
    Conservative conformal p-value.

    p = (#{calibration scores >= ncs} + 1) / (n + 1)

    The matching interval bound at confidence c is the k-th smallest
    calibration score with k = ⌈c(n+1)⌉, or +inf when k > n.
    """

    name = 'standard'

    def pvalues(self, ncs, sorted_scores: np.ndarray) -> np.ndarray:
        sorted_scores = self._check_scores(sorted_scores)
        ncs = self._check_ncs(ncs)
        n = len(sorted_scores)
        n_geq = n - np.searchsorted(sorted_scores, ncs, side='left')
        return (n_geq + 1.0) / (n + 1.0)

    def ncs_at_confidence(self, confidence: float, sorted_scores: np.ndarray) -> float:
        sorted_scores = self._check_scores(sorted_scores)
        confidence = _check_confidence(confidence)
        n = len(sorted_scores)

        k = int(np.ceil(confidence * (n + 1) - _CEIL_EPS))
        if k > n:
            return np.inf
        return float(sorted_scores[max(k, 1) - 1])


class SmoothedPValue(StandardPValue):
    """
    Smoothed conformal p-value with seeded random tie-breaking.

    p = (#{scores > ncs} + u · (#{scores == ncs} + 1)) / (n + 1)

    with u drawn uniformly from (0, 1] by a generator owned by this
    calculator, so p is exact (not conservative) and never 0.

    Parameters
    ----------
    seed : int, optional (default=42)
        Seed of the tie-breaking generator
    """

    name = 'smoothed'

    def __init__(self, seed: int = 42):
        self.seed = seed
        self._rng = np.random.default_rng(seed)

    def __repr__(self) -> str:
        return f"SmoothedPValue(seed={self.seed})"

    def get_params(self) -> Dict:
        return {'seed': self.seed}

    def pvalues(self, ncs, sorted_scores: np.ndarray) -> np.ndarray:
        sorted_scores = self._check_scores(sorted_scores)
        ncs = self._check_ncs(ncs)
        n = len(sorted_scores)

        left = np.searchsorted(sorted_scores, ncs, side='left')
        right = np.searchsorted(sorted_scores, ncs, side='right')
        n_greater = n - right
        n_equal = right - left
        u = 1.0 - self._rng.random(len(ncs))
        return (n_greater + u * (n_equal + 1.0)) / (n + 1.0)


class LinearInterpolationPValue(PValueCalculator):
    """
    P-values linearly interpolated between the calibration scores.

    Agrees with the standard p-value at every calibration score and
    outside the calibration range; in between, it interpolates instead of
    stepping. Needs at least two calibration scores.
    """

    name = 'linear'
    min_scores = 2

    @staticmethod
    def _pvalue_knots(sorted_scores: np.ndarray):
        n = len(sorted_scores)
        knots = np.unique(sorted_scores)
        n_geq = n - np.searchsorted(sorted_scores, knots, side='left')
        return knots, (n_geq + 1.0) / (n + 1.0)

    @staticmethod
    def _confidence_knots(n: int) -> np.ndarray:
        return np.arange(1, n + 1) / (n + 1.0)

    def _interpolate_pvalues(self, ncs, knots, p_knots):
        return np.interp(ncs, knots, p_knots)

    def _interpolate_ncs(self, confidence, conf_knots, sorted_scores):
        return float(np.interp(confidence, conf_knots, sorted_scores))

    def pvalues(self, ncs, sorted_scores: np.ndarray) -> np.ndarray:
        sorted_scores = self._check_scores(sorted_scores)
        ncs = self._check_ncs(ncs)
        n = len(sorted_scores)
        knots, p_knots = self._pvalue_knots(sorted_scores)

        p = np.empty_like(ncs)
        below = ncs <= knots[0]
        above = ncs > knots[-1]
        inside = ~(below | above)
        p[below] = 1.0
        p[above] = 1.0 / (n + 1.0)
        if inside.any():
            p[inside] = self._interpolate_pvalues(ncs[inside], knots, p_knots)
        return np.clip(p, 1.0 / (n + 1.0), 1.0)

    def ncs_at_confidence(self, confidence: float, sorted_scores: np.ndarray) -> float:
        sorted_scores = self._check_scores(sorted_scores)
        confidence = _check_confidence(confidence)
        n = len(sorted_scores)

        if confidence > self.max_confidence(n) + _CEIL_EPS:
            return np.inf
        conf_knots = self._confidence_knots(n)
        if confidence <= conf_knots[0]:
            return float(sorted_scores[0])
        return self._interpolate_ncs(confidence, conf_knots, sorted_scores)


class SplineInterpolationPValue(LinearInterpolationPValue):
    """
    P-values interpolated with a monotone cubic spline (PCHIP).

    PCHIP keeps the interpolant monotone between knots, so p-values stay
    non-increasing in the nonconformity score. Needs at least three
    distinct calibration scores.
    """

    name = 'spline'
    min_scores = 3

    def _check_scores(self, sorted_scores: np.ndarray) -> np.ndarray:
        sorted_scores = super()._check_scores(sorted_scores)
        n_distinct = len(np.unique(sorted_scores))
        if n_distinct < 3:
            raise InvalidInputError(
                f"SplineInterpolationPValue needs at least 3 distinct calibration "
                f"scores, got {n_distinct}"
            )
        return sorted_scores

    def _interpolate_pvalues(self, ncs, knots, p_knots):
        return PchipInterpolator(knots, p_knots)(ncs)

    def _interpolate_ncs(self, confidence, conf_knots, sorted_scores):
        return float(PchipInterpolator(conf_knots, sorted_scores)(confidence))


PVALUE_CALCULATORS = {
    cls.name: cls
    for cls in (StandardPValue, SmoothedPValue, LinearInterpolationPValue, SplineInterpolationPValue)
}
