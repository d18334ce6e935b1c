"""
Evaluation Metrics

Each metric reduces the (true labels, predictions) of one test fold to a
single number and declares whether larger or smaller is better. The
prediction containers below are what TestRunner hands to the metrics.

"""

from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional, Tuple

import numpy as np
from sklearn.metrics import (
    balanced_accuracy_score,
    brier_score_loss,
    f1_score,
    log_loss,
    roc_auc_score,
)

from ..exceptions import InvalidInputError


# ============================================================================
# Prediction containers
# ============================================================================

def _label_columns(labels: List[Any], y_true: np.ndarray) -> np.ndarray:
    lookup = {label: col for col, label in enumerate(labels)}
    try:
        return np.array([lookup[y] for y in np.asarray(y_true).tolist()], dtype=int)
    except KeyError as exc:
        raise InvalidInputError(f"Test label {exc.args[0]} unknown to the predictor") from exc


@dataclass
class ClassificationPrediction:
    """P-values of a conformal classifier, columns ordered as ``labels``."""

    labels: List[Any]
    pvalues: np.ndarray

    def label_columns(self, y_true: np.ndarray) -> np.ndarray:
        return _label_columns(self.labels, y_true)

    def prediction_sets(self, confidence: float) -> np.ndarray:
        """Boolean membership matrix of the prediction sets."""
        return self.pvalues > 1 - confidence

    def point_predictions(self) -> np.ndarray:
        return np.asarray(self.labels)[np.argmax(self.pvalues, axis=1)]


@dataclass
class RegressionPrediction:
    """
    Intervals of a conformal regressor.

    Attributes
    ----------
    confidences : np.ndarray, shape (c,)
    intervals : np.ndarray, shape (n, c, 2)
    width_confidences : dict of {width: np.ndarray of shape (n,)}
        Confidence attained by intervals of the given width
    """

    confidences: np.ndarray
    intervals: np.ndarray
    width_confidences: Dict[float, np.ndarray] = field(default_factory=dict)

    def at(self, confidence: float) -> np.ndarray:
        """Intervals (n, 2) at one of the evaluated confidences."""
        matches = np.flatnonzero(np.isclose(self.confidences, confidence))
        if len(matches) == 0:
            raise InvalidInputError(
                f"No intervals computed for confidence {confidence}; "
                f"available: {self.confidences.tolist()}"
            )
        return self.intervals[:, matches[0], :]


@dataclass
class ProbabilityPrediction:
    """Calibrated probabilities (Venn-ABERS), columns ordered as ``labels``."""

    labels: List[Any]
    probabilities: np.ndarray
    interval_widths: Optional[np.ndarray] = None

    def label_columns(self, y_true: np.ndarray) -> np.ndarray:
        return _label_columns(self.labels, y_true)

    def point_predictions(self) -> np.ndarray:
        return np.asarray(self.labels)[np.argmax(self.probabilities, axis=1)]


# ============================================================================
# Metric base
# ============================================================================

class Metric:
    """
    Base class for metrics.

    Attributes
    ----------
    name : str
        Column name in evaluation tables
    higher_is_better : bool
        Optimization direction
    prediction_types : tuple of type
        Prediction containers the metric can score
    """

    name = 'metric'
    higher_is_better = True
    prediction_types: Tuple[type, ...] = ()

    def __repr__(self) -> str:
        return f"{type(self).__name__}()"

    def supports(self, prediction) -> bool:
        return isinstance(prediction, self.prediction_types)

    def compute(self, y_true: np.ndarray, prediction) -> float:
        if not self.supports(prediction):
            raise InvalidInputError(
                f"{self.name} cannot score a {type(prediction).__name__}"
            )
        return float(self._compute(np.asarray(y_true), prediction))

    def _compute(self, y_true: np.ndarray, prediction) -> float:
        raise NotImplementedError

    def sort_key(self, score: float) -> float:
        """Key that sorts better scores first."""
        return -score if self.higher_is_better else score

    def is_better(self, a: float, b: float) -> bool:
        return self.sort_key(a) < self.sort_key(b)

    def clone(self) -> 'Metric':
        return type(self)()


class ConfidenceMetric(Metric):
    """Metric evaluated at a fixed confidence level."""

    def __init__(self, confidence: float = 0.8):
        if not 0 <= confidence <= 1:
            raise InvalidInputError(f"confidence must be in [0,1], got {confidence}")
        self.confidence = float(confidence)

    def __repr__(self) -> str:
        return f"{type(self).__name__}(confidence={self.confidence})"

    @property
    def name(self) -> str:
        return f"{self.base_name}@{self.confidence:g}"

    def clone(self) -> 'ConfidenceMetric':
        return type(self)(self.confidence)


# ============================================================================
# Conformal classification and regression
# ============================================================================

class CPAccuracy(ConfidenceMetric):
    """
    Fraction of test records whose true label lies in the prediction set
    (classification) or inside the prediction interval (regression).
    """

    base_name = 'CPAccuracy'
    higher_is_better = True
    prediction_types = (ClassificationPrediction, RegressionPrediction)

    def _compute(self, y_true, prediction) -> float:
        if isinstance(prediction, RegressionPrediction):
            intervals = prediction.at(self.confidence)
            y = y_true.astype(float)
            return np.mean((intervals[:, 0] <= y) & (y <= intervals[:, 1]))
        cols = prediction.label_columns(y_true)
        in_set = prediction.prediction_sets(self.confidence)
        return np.mean(in_set[np.arange(len(cols)), cols])


class ProportionSingleLabelPredictions(ConfidenceMetric):
    """Fraction of prediction sets holding exactly one label."""

    base_name = 'ProportionSingleLabel'
    higher_is_better = True
    prediction_types = (ClassificationPrediction,)

    def _compute(self, y_true, prediction) -> float:
        return np.mean(prediction.prediction_sets(self.confidence).sum(axis=1) == 1)


class ProportionMultiLabelPredictions(ConfidenceMetric):
    """Fraction of prediction sets holding more than one label."""

    base_name = 'ProportionMultiLabel'
    higher_is_better = False
    prediction_types = (ClassificationPrediction,)

    def _compute(self, y_true, prediction) -> float:
        return np.mean(prediction.prediction_sets(self.confidence).sum(axis=1) > 1)


class ProportionEmptyPredictions(ConfidenceMetric):
    """Fraction of empty prediction sets."""

    base_name = 'ProportionEmpty'
    higher_is_better = False
    prediction_types = (ClassificationPrediction,)

    def _compute(self, y_true, prediction) -> float:
        return np.mean(prediction.prediction_sets(self.confidence).sum(axis=1) == 0)


class AverageC(ConfidenceMetric):
    """Average prediction set size."""

    base_name = 'AverageC'
    higher_is_better = False
    prediction_types = (ClassificationPrediction,)

    def _compute(self, y_true, prediction) -> float:
        return np.mean(prediction.prediction_sets(self.confidence).sum(axis=1))


class ObservedFuzziness(Metric):
    """Mean sum of the p-values of the false labels."""

    name = 'ObservedFuzziness'
    higher_is_better = False
    prediction_types = (ClassificationPrediction,)

    @staticmethod
    def _per_record(y_true, prediction) -> np.ndarray:
        cols = prediction.label_columns(y_true)
        total = prediction.pvalues.sum(axis=1)
        return total - prediction.pvalues[np.arange(len(cols)), cols]

    def _compute(self, y_true, prediction) -> float:
        return np.mean(self._per_record(y_true, prediction))


class BalancedObservedFuzziness(ObservedFuzziness):
    """Observed fuzziness averaged per class first, then over classes."""

    name = 'BalancedObservedFuzziness'

    def _compute(self, y_true, prediction) -> float:
        per_record = self._per_record(y_true, prediction)
        return np.mean([per_record[y_true == c].mean() for c in np.unique(y_true)])


class UnobservedConfidence(Metric):
    """Mean of 1 - (second largest p-value)."""

    name = 'UnobservedConfidence'
    higher_is_better = True
    prediction_types = (ClassificationPrediction,)

    def _compute(self, y_true, prediction) -> float:
        ordered = np.sort(prediction.pvalues, axis=1)
        return np.mean(1.0 - ordered[:, -2])


def _interval_widths(prediction: RegressionPrediction, confidence: float) -> np.ndarray:
    intervals = prediction.at(confidence)
    return intervals[:, 1] - intervals[:, 0]


class MeanPredictionIntervalWidth(ConfidenceMetric):
    """Mean interval width (infinite when any interval is unbounded)."""

    base_name = 'MeanPredictionWidth'
    higher_is_better = False
    prediction_types = (RegressionPrediction,)

    def _compute(self, y_true, prediction) -> float:
        return np.mean(_interval_widths(prediction, self.confidence))


class MedianPredictionIntervalWidth(ConfidenceMetric):
    """Median interval width."""

    base_name = 'MedianPredictionWidth'
    higher_is_better = False
    prediction_types = (RegressionPrediction,)

    def _compute(self, y_true, prediction) -> float:
        return np.median(_interval_widths(prediction, self.confidence))


class ConfidenceGivenPredictionIntervalWidth(Metric):
    """
    Mean confidence attained by intervals of a fixed width.

    Parameters
    ----------
    width : float
        Total interval width
    """

    higher_is_better = True
    prediction_types = (RegressionPrediction,)

    def __init__(self, width: float = 1.0):
        if width < 0:
            raise InvalidInputError(f"width must be >= 0, got {width}")
        self.width = float(width)

    def __repr__(self) -> str:
        return f"ConfidenceGivenPredictionIntervalWidth(width={self.width})"

    @property
    def name(self) -> str:
        return f"ConfidenceGivenWidth@{self.width:g}"

    def clone(self) -> 'ConfidenceGivenPredictionIntervalWidth':
        return type(self)(self.width)

    def _compute(self, y_true, prediction) -> float:
        if self.width not in prediction.width_confidences:
            raise InvalidInputError(f"No confidences computed for width {self.width}")
        return np.mean(prediction.width_confidences[self.width])


# ============================================================================
# Probabilistic and point-prediction metrics
# ============================================================================

def _binary_targets(y_true, prediction) -> np.ndarray:
    if len(prediction.labels) != 2:
        raise InvalidInputError(
            f"Binary metric needs 2 labels, got {len(prediction.labels)}"
        )
    return (y_true == prediction.labels[1]).astype(int)


class LogLoss(Metric):
    name = 'LogLoss'
    higher_is_better = False
    prediction_types = (ProbabilityPrediction,)

    def _compute(self, y_true, prediction) -> float:
        return log_loss(
            prediction.label_columns(y_true),
            prediction.probabilities,
            labels=list(range(len(prediction.labels)))
        )


class BrierScore(Metric):
    name = 'BrierScore'
    higher_is_better = False
    prediction_types = (ProbabilityPrediction,)

    def _compute(self, y_true, prediction) -> float:
        return brier_score_loss(_binary_targets(y_true, prediction), prediction.probabilities[:, 1])


class ROCAUC(Metric):
    name = 'ROC-AUC'
    higher_is_better = True
    prediction_types = (ProbabilityPrediction,)

    def _compute(self, y_true, prediction) -> float:
        return roc_auc_score(_binary_targets(y_true, prediction), prediction.probabilities[:, 1])


class MeanVAPIntervalWidth(Metric):
    """Mean width of the member [p0, p1] intervals."""

    name = 'MeanVAPIntervalWidth'
    higher_is_better = False
    prediction_types = (ProbabilityPrediction,)

    def _compute(self, y_true, prediction) -> float:
        if prediction.interval_widths is None:
            raise InvalidInputError("Prediction carries no Venn-ABERS interval widths")
        return np.mean(prediction.interval_widths)


class BalancedAccuracy(Metric):
    """Balanced accuracy of the most likely label (highest p-value or probability)."""

    name = 'BalancedAccuracy'
    higher_is_better = True
    prediction_types = (ClassificationPrediction, ProbabilityPrediction)

    def _compute(self, y_true, prediction) -> float:
        return balanced_accuracy_score(y_true, prediction.point_predictions())


class F1Score(Metric):
    """Macro-averaged F1 of the most likely label."""

    name = 'F1'
    higher_is_better = True
    prediction_types = (ClassificationPrediction, ProbabilityPrediction)

    def _compute(self, y_true, prediction) -> float:
        return f1_score(y_true, prediction.point_predictions(), average='macro')


METRICS = {
    'CPAccuracy': CPAccuracy,
    'ProportionSingleLabel': ProportionSingleLabelPredictions,
    'ProportionMultiLabel': ProportionMultiLabelPredictions,
    'ProportionEmpty': ProportionEmptyPredictions,
    'AverageC': AverageC,
    'ObservedFuzziness': ObservedFuzziness,
    'BalancedObservedFuzziness': BalancedObservedFuzziness,
    'UnobservedConfidence': UnobservedConfidence,
    'MeanPredictionWidth': MeanPredictionIntervalWidth,
    'MedianPredictionWidth': MedianPredictionIntervalWidth,
    'ConfidenceGivenWidth': ConfidenceGivenPredictionIntervalWidth,
    'LogLoss': LogLoss,
    'BrierScore': BrierScore,
    'ROC-AUC': ROCAUC,
    'MeanVAPIntervalWidth': MeanVAPIntervalWidth,
    'BalancedAccuracy': BalancedAccuracy,
    'F1': F1Score,
}
