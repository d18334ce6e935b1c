"""
Regression Nonconformity Measures

Every measure predicts a midpoint ŷ and an interval scaling σ per record.
The nonconformity score of a labeled record is |y - ŷ| / σ, so the
prediction interval at calibration quantile q is ŷ ± σ·q.

Normalized measures train a second (error) model on the residuals of the
training set; σ then follows that model's prediction plus a smoothing
``beta``.

"""

from typing import Any, Dict, Optional, Tuple

import numpy as np

from ..algorithms import RegressorAlgorithm
from ..exceptions import InvalidInputError, UntrainedPredictorError
from .base import NonconformityMeasure

# Smallest scaling, keeps |y - ŷ| / σ finite
_MIN_SCALING = np.finfo(float).tiny

_ERROR_PREFIX = 'error_model__'


class RegressionNCM(NonconformityMeasure):
    """Base class for regression nonconformity measures."""

    def __init__(self, algorithm: RegressorAlgorithm):
        if not isinstance(algorithm, RegressorAlgorithm):
            raise InvalidInputError(
                f"{type(self).__name__} needs a RegressorAlgorithm, "
                f"got {type(algorithm).__name__}"
            )
        super().__init__(algorithm)

    def fit(self, X, y) -> 'RegressionNCM':
        self.algorithm.train(X, np.asarray(y, dtype=float))
        return self

    def predict(self, X) -> Tuple[np.ndarray, np.ndarray]:
        """
        Interval midpoints and scalings.

        Returns
        -------
        midpoints : np.ndarray, shape (n,)
        scalings : np.ndarray, shape (n,)
            Strictly positive
        """
        self._check_fitted()
        midpoints = self.algorithm.predict(X)
        return midpoints, self._scalings(X, midpoints)

    def score(self, X, y) -> np.ndarray:
        """Nonconformity scores |y - ŷ| / σ of labeled records."""
        midpoints, scalings = self.predict(X)
        return np.abs(np.asarray(y, dtype=float) - midpoints) / scalings

    def _scalings(self, X, midpoints: np.ndarray) -> np.ndarray:
        return np.ones_like(midpoints)


class AbsDiffNCM(RegressionNCM):
    """Score = |y - ŷ|; intervals have the same width for every record."""

    name = 'AbsDiff'


class NormalizedNCM(RegressionNCM):
    """
    Residual normalized by a trained error model.

    The error model learns |y - ŷ| on the training set; the scaling is
    |ê| + beta.

    Parameters
    ----------
    algorithm : RegressorAlgorithm
        Model for the midpoint
    error_model : RegressorAlgorithm, optional
        Model for the residual. Defaults to a clone of ``algorithm``.
    beta : float, optional (default=0.01)
        Added to the predicted error. Larger values make intervals more
        uniform in width.
    """

    name = 'Normalized'
    requires_error_model = True

    def __init__(
        self,
        algorithm: RegressorAlgorithm,
        error_model: Optional[RegressorAlgorithm] = None,
        beta: float = 0.01
    ):
        super().__init__(algorithm)
        if error_model is None:
            error_model = algorithm.clone()
        if not isinstance(error_model, RegressorAlgorithm):
            raise InvalidInputError(
                f"error_model must be a RegressorAlgorithm, got {type(error_model).__name__}"
            )
        if beta < 0:
            raise InvalidInputError(f"beta must be >= 0, got {beta}")
        self.error_model = error_model
        self.beta = float(beta)

    def __repr__(self) -> str:
        return (
            f"{type(self).__name__}({self.algorithm!r}, "
            f"error_model={self.error_model!r}, beta={self.beta})"
        )

    @property
    def is_fitted(self) -> bool:
        return self.algorithm.is_trained and self.error_model.is_trained

    def fit(self, X, y) -> 'NormalizedNCM':
        y = np.asarray(y, dtype=float)
        self.algorithm.train(X, y)
        residuals = y - self.algorithm.predict(X)
        self.error_model.train(X, self._error_target(residuals))
        return self

    def clone(self) -> 'NormalizedNCM':
        return type(self)(self.algorithm.clone(), self.error_model.clone(), self.beta)

    def get_params(self) -> Dict[str, Any]:
        params = dict(self.algorithm.get_params())
        params.update({_ERROR_PREFIX + k: v for k, v in self.error_model.get_params().items()})
        params['beta'] = self.beta
        return params

    def set_params(self, **params) -> 'NormalizedNCM':
        if 'beta' in params:
            beta = params.pop('beta')
            if beta < 0:
                raise InvalidInputError(f"beta must be >= 0, got {beta}")
            self.beta = float(beta)
        error_params = {
            k[len(_ERROR_PREFIX):]: params.pop(k)
            for k in list(params) if k.startswith(_ERROR_PREFIX)
        }
        if error_params:
            self.error_model.set_params(**error_params)
        if params:
            self.algorithm.set_params(**params)
        return self

    def set_seed(self, seed) -> None:
        self.algorithm.set_seed(seed)
        self.error_model.set_seed(seed)

    def _error_target(self, residuals: np.ndarray) -> np.ndarray:
        return np.abs(residuals)

    def _scalings(self, X, midpoints: np.ndarray) -> np.ndarray:
        if not self.error_model.is_trained:
            raise UntrainedPredictorError(
                f"{type(self).__name__} error model not fitted. Call .fit() first."
            )
        e_hat = self.error_model.predict(X)
        return np.maximum(self._scaling_from_error(e_hat), _MIN_SCALING)

    def _scaling_from_error(self, e_hat: np.ndarray) -> np.ndarray:
        return np.abs(e_hat) + self.beta


class LogNormalizedNCM(NormalizedNCM):
    """
    Normalized measure whose error model learns log|y - ŷ|.

    Scaling = exp(ê) + beta, always positive even when the error model
    predicts a negative value.
    """

    name = 'LogNormalized'

    def _error_target(self, residuals: np.ndarray) -> np.ndarray:
        return np.log(np.maximum(np.abs(residuals), _MIN_SCALING))

    def _scaling_from_error(self, e_hat: np.ndarray) -> np.ndarray:
        return np.exp(e_hat) + self.beta


class SignedNormalizedNCM(NormalizedNCM):
    """Normalized measure whose error model learns the signed residual y - ŷ."""

    name = 'SignedNormalized'

    def _error_target(self, residuals: np.ndarray) -> np.ndarray:
        return residuals


REGRESSION_NCMS = {
    cls.name: cls
    for cls in (AbsDiffNCM, NormalizedNCM, LogNormalizedNCM, SignedNormalizedNCM)
}
