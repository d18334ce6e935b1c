"""
Classification Nonconformity Measures

Mondrian measures: every record is scored once per class label, giving a
matrix with one column per label (ordered as ``labels_``). Predictors keep
a separate calibration-score array per column.

"""

import numpy as np

from ..algorithms import ClassifierAlgorithm
from ..exceptions import InvalidInputError
from .base import NonconformityMeasure


class ClassificationNCM(NonconformityMeasure):
    """
    Base class for classification nonconformity measures.

    Attributes
    ----------
    labels_ : np.ndarray
        Sorted class labels seen during ``fit``
    """

    def __init__(self, algorithm: ClassifierAlgorithm):
        if not isinstance(algorithm, ClassifierAlgorithm):
            raise InvalidInputError(
                f"{type(self).__name__} needs a ClassifierAlgorithm, "
                f"got {type(algorithm).__name__}"
            )
        super().__init__(algorithm)
        self.labels_ = None

    def fit(self, X, y) -> 'ClassificationNCM':
        """Train the classifier. Fails if y holds fewer than two classes."""
        n_classes = len(np.unique(y))
        if n_classes < 2:
            raise InvalidInputError(
                f"Classification needs >= 2 classes in the training set, got {n_classes}"
            )
        self.algorithm.train(X, y)
        self.labels_ = np.asarray(self.algorithm.classes_)
        return self

    def score_matrix(self, X) -> np.ndarray:
        """
        Nonconformity scores for every record under every label.

        Returns
        -------
        scores : np.ndarray, shape (n, n_labels)
        """
        self._check_fitted()
        return self._scores(X)

    def label_columns(self, y) -> np.ndarray:
        """Column index in ``score_matrix`` of each label in ``y``."""
        self._check_fitted()
        y = np.asarray(y)
        cols = np.searchsorted(self.labels_, y)
        cols = np.clip(cols, 0, len(self.labels_) - 1)
        unknown = self.labels_[cols] != y
        if unknown.any():
            raise InvalidInputError(
                f"Label(s) {sorted(set(y[unknown].tolist()))} were not seen during training"
            )
        return cols

    def score(self, X, y) -> np.ndarray:
        """Nonconformity score of each record under its own label."""
        matrix = self.score_matrix(X)
        return matrix[np.arange(matrix.shape[0]), self.label_columns(y)]

    def _scores(self, X) -> np.ndarray:
        raise NotImplementedError


class NegativeDistanceToHyperplaneNCM(ClassificationNCM):
    """
    Score = negative decision value of the label.

    Records far on the correct side of the separating hyperplane get
    strongly negative (very conforming) scores.
    """

    name = 'NegativeDistanceToHyperplane'

    def _scores(self, X) -> np.ndarray:
        return -self.algorithm.decision_scores(X)


class ProbabilityMarginNCM(ClassificationNCM):
    """
    Score = 0.5 - (p_label - max_{other} p) / 2, in [0, 1].

    Needs an estimator with ``predict_proba``.
    """

    name = 'ProbabilityMargin'

    def _scores(self, X) -> np.ndarray:
        proba = self.algorithm.predict_proba(X)
        order = np.sort(proba, axis=1)
        largest = order[:, -1][:, None]
        second = order[:, -2][:, None]
        # Highest other probability: the runner-up for the top label, the top otherwise
        max_other = np.where(proba >= largest, second, largest)
        return 0.5 - (proba - max_other) / 2.0


class InverseProbabilityNCM(ClassificationNCM):
    """Score = 1 - p_label. Needs an estimator with ``predict_proba``."""

    name = 'InverseProbability'

    def _scores(self, X) -> np.ndarray:
        return 1.0 - self.algorithm.predict_proba(X)


CLASSIFICATION_NCMS = {
    cls.name: cls
    for cls in (NegativeDistanceToHyperplaneNCM, ProbabilityMarginNCM, InverseProbabilityNCM)
}
