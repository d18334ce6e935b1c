"""Common base for classification and regression nonconformity measures."""

from typing import Any, Dict

from ..algorithms import ScoringAlgorithm
from ..exceptions import InvalidInputError, UntrainedPredictorError


class NonconformityMeasure:
    """
    A nonconformity measure bound to one scoring algorithm.

    Lower scores mean a (record, label) pair conforms better to the
    training data. ``fit`` trains the underlying model(s); scoring before
    ``fit`` raises UntrainedPredictorError.

    Parameters
    ----------
    algorithm : ScoringAlgorithm
        Scoring model wrapped around a scikit-learn estimator
    """

    name = 'base'
    requires_error_model = False

    def __init__(self, algorithm: ScoringAlgorithm):
        if not isinstance(algorithm, ScoringAlgorithm):
            raise InvalidInputError(
                f"algorithm must be a ScoringAlgorithm, got {type(algorithm).__name__}"
            )
        self.algorithm = algorithm

    def __repr__(self) -> str:
        return f"{type(self).__name__}({self.algorithm!r})"

    @property
    def is_fitted(self) -> bool:
        return self.algorithm.is_trained

    def _check_fitted(self):
        if not self.is_fitted:
            raise UntrainedPredictorError(
                f"{type(self).__name__} not fitted. Call .fit() first."
            )

    def fit(self, X, y) -> 'NonconformityMeasure':
        raise NotImplementedError

    def clone(self) -> 'NonconformityMeasure':
        """Unfitted copy with identical parameters."""
        return type(self)(self.algorithm.clone())

    def get_params(self) -> Dict[str, Any]:
        return dict(self.algorithm.get_params())

    def set_params(self, **params) -> 'NonconformityMeasure':
        self.algorithm.set_params(**params)
        return self

    def set_seed(self, seed) -> None:
        self.algorithm.set_seed(seed)
