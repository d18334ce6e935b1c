"""
Scoring Algorithm Adapters

Thin wrappers that give any scikit-learn estimator the train / score /
clone contract the nonconformity measures rely on. The wrapped estimator
is a template: ``train`` fits a fresh ``sklearn.base.clone`` of it so the
template itself is never fitted.

"""

from typing import Any, Dict, Optional

import numpy as np
from sklearn.base import clone as sklearn_clone
from sklearn.linear_model import LogisticRegression, Ridge
from sklearn.svm import SVC, SVR, LinearSVC, LinearSVR

from .exceptions import InvalidInputError, UntrainedPredictorError


class ScoringAlgorithm:
    """
    Base adapter around a scikit-learn estimator.

    Parameters
    ----------
    estimator : sklearn estimator
        Unfitted template estimator

    Attributes
    ----------
    model_ : sklearn estimator
        Fitted clone of the template (None until ``train``)
    """

    def __init__(self, estimator):
        if not hasattr(estimator, 'fit') or not hasattr(estimator, 'get_params'):
            raise InvalidInputError(
                f"estimator must be a scikit-learn estimator, got {type(estimator).__name__}"
            )
        self.estimator = estimator
        self.model_ = None

    def __repr__(self) -> str:
        return f"{type(self).__name__}({self.estimator!r})"

    @property
    def name(self) -> str:
        return type(self.estimator).__name__

    @property
    def is_trained(self) -> bool:
        return self.model_ is not None

    def train(self, X, y: np.ndarray) -> 'ScoringAlgorithm':
        """Fit a clone of the template estimator. Estimator errors propagate."""
        model = sklearn_clone(self.estimator)
        model.fit(X, y)
        self.model_ = model
        return self

    def clone(self) -> 'ScoringAlgorithm':
        """Untrained copy with the same parameters."""
        return type(self)(sklearn_clone(self.estimator))

    def get_params(self) -> Dict[str, Any]:
        """Flat parameter map of the template estimator."""
        return self.estimator.get_params(deep=False)

    def set_params(self, **params) -> 'ScoringAlgorithm':
        unknown = set(params) - set(self.get_params())
        if unknown:
            raise InvalidInputError(
                f"Unknown parameter(s) for {self.name}: {sorted(unknown)}"
            )
        self.estimator.set_params(**params)
        self.model_ = None
        return self

    def set_seed(self, seed: Optional[int]) -> None:
        """Set ``random_state`` on estimators that have one."""
        if 'random_state' in self.get_params():
            self.estimator.set_params(random_state=seed)

    def _check_trained(self):
        if self.model_ is None:
            raise UntrainedPredictorError(
                f"{self.name} not trained. Call .train() first."
            )


class ClassifierAlgorithm(ScoringAlgorithm):
    """
    Adapter for scikit-learn classifiers.

    Examples
    --------
    >>> alg = ClassifierAlgorithm(LinearSVC(C=1.0))
    >>> alg.train(X, y).decision_scores(X_new).shape
    (n_new, n_classes)
    """

    @property
    def classes_(self) -> np.ndarray:
        self._check_trained()
        return self.model_.classes_

    @property
    def supports_probability(self) -> bool:
        return hasattr(self.estimator, 'predict_proba')

    def decision_scores(self, X) -> np.ndarray:
        """
        Signed per-class decision values, larger = more like the class.

        Binary estimators return a single column for ``classes_[1]``; it is
        expanded to ``[-d, d]`` so there is always one column per class.
        """
        self._check_trained()
        if not hasattr(self.model_, 'decision_function'):
            return self.predict_proba(X)

        d = np.asarray(self.model_.decision_function(X), dtype=float)
        if d.ndim == 1:
            d = np.column_stack([-d, d])
        return d

    def predict_proba(self, X) -> np.ndarray:
        """Class probabilities, columns ordered as ``classes_``."""
        self._check_trained()
        if not hasattr(self.model_, 'predict_proba'):
            raise InvalidInputError(
                f"{self.name} does not provide probabilities "
                f"(for SVC set probability=True)"
            )
        return np.asarray(self.model_.predict_proba(X), dtype=float)


class RegressorAlgorithm(ScoringAlgorithm):
    """Adapter for scikit-learn regressors."""

    def predict(self, X) -> np.ndarray:
        self._check_trained()
        return np.asarray(self.model_.predict(X), dtype=float).ravel()


# Estimator factories available by name (see confml.registry)
CLASSIFIERS = {
    'LinearSVC': lambda **kw: ClassifierAlgorithm(LinearSVC(**kw)),
    'SVC': lambda **kw: ClassifierAlgorithm(SVC(**kw)),
    'LogisticRegression': lambda **kw: ClassifierAlgorithm(LogisticRegression(**kw)),
}

REGRESSORS = {
    'LinearSVR': lambda **kw: RegressorAlgorithm(LinearSVR(**kw)),
    'SVR': lambda **kw: RegressorAlgorithm(SVR(**kw)),
    'Ridge': lambda **kw: RegressorAlgorithm(Ridge(**kw)),
}

# Powers of two for the SVM cost, used when GridSearch gets no explicit grid
DEFAULT_GRIDS = {
    'LinearSVC': {'C': [2.0 ** k for k in range(-4, 7, 2)]},
    'SVC': {'C': [2.0 ** k for k in range(-4, 7, 2)]},
    'LogisticRegression': {'C': [2.0 ** k for k in range(-4, 7, 2)]},
    'LinearSVR': {'C': [2.0 ** k for k in range(-4, 7, 2)]},
    'SVR': {'C': [2.0 ** k for k in range(-4, 7, 2)]},
    'Ridge': {'alpha': [10.0 ** k for k in range(-3, 4)]},
}
