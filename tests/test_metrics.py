"""
Unit Tests for Evaluation Metrics
=================================
"""

import numpy as np
import pytest

from confml import InvalidInputError
from confml.evaluation import (
    METRICS,
    AverageC,
    BalancedAccuracy,
    BalancedObservedFuzziness,
    BrierScore,
    ClassificationPrediction,
    ConfidenceGivenPredictionIntervalWidth,
    CPAccuracy,
    F1Score,
    LogLoss,
    MeanPredictionIntervalWidth,
    MeanVAPIntervalWidth,
    MedianPredictionIntervalWidth,
    ObservedFuzziness,
    ProbabilityPrediction,
    ProportionEmptyPredictions,
    ProportionMultiLabelPredictions,
    ProportionSingleLabelPredictions,
    RegressionPrediction,
    ROCAUC,
    UnobservedConfidence,
)


@pytest.fixture
def cp_prediction():
    # Sets at 0.8 (p > 0.2): {0}, {0, 1}, {}, {1}
    pvalues = np.array([
        [0.9, 0.1],
        [0.5, 0.3],
        [0.1, 0.15],
        [0.05, 0.7],
    ])
    return ClassificationPrediction([0, 1], pvalues)


@pytest.fixture
def y_cls():
    return np.array([0.0, 1.0, 0.0, 0.0])


@pytest.fixture
def reg_prediction():
    intervals = np.array([
        [[0.0, 2.0], [-1.0, 3.0]],
        [[1.0, 2.0], [0.5, 2.5]],
        [[5.0, 6.0], [4.0, 7.0]],
    ])
    return RegressionPrediction(np.array([0.5, 0.8]), intervals,
                                {1.0: np.array([0.3, 0.6, 0.9])})


# ============================================================================
# Test 1: Conformal classification
# ============================================================================

def test_cp_accuracy_classification(cp_prediction, y_cls):
    # True label in set: yes, yes, no, no
    assert CPAccuracy(0.8).compute(y_cls, cp_prediction) == pytest.approx(0.5)


def test_set_proportions(cp_prediction, y_cls):
    assert ProportionSingleLabelPredictions(0.8).compute(y_cls, cp_prediction) == 0.5
    assert ProportionMultiLabelPredictions(0.8).compute(y_cls, cp_prediction) == 0.25
    assert ProportionEmptyPredictions(0.8).compute(y_cls, cp_prediction) == 0.25
    assert AverageC(0.8).compute(y_cls, cp_prediction) == pytest.approx(1.0)


def test_observed_fuzziness(cp_prediction, y_cls):
    # p-values of the false labels: 0.1, 0.5, 0.15, 0.7
    assert ObservedFuzziness().compute(y_cls, cp_prediction) == pytest.approx(0.3625)
    # class 0: (0.1 + 0.15 + 0.7) / 3, class 1: 0.5
    expected = (0.95 / 3 + 0.5) / 2
    assert BalancedObservedFuzziness().compute(y_cls, cp_prediction) == pytest.approx(expected)


def test_unobserved_confidence(cp_prediction, y_cls):
    expected = np.mean([0.9, 0.7, 0.9, 0.95])
    assert UnobservedConfidence().compute(y_cls, cp_prediction) == pytest.approx(expected)


def test_point_metrics_on_pvalues(cp_prediction, y_cls):
    # argmax: 0, 0, 1, 1
    assert BalancedAccuracy().compute(y_cls, cp_prediction) == pytest.approx((1 / 3 + 0) / 2)
    assert 0 <= F1Score().compute(y_cls, cp_prediction) <= 1


def test_unknown_test_label(cp_prediction):
    with pytest.raises(InvalidInputError):
        CPAccuracy().compute(np.array([0, 1, 2, 0]), cp_prediction)


def test_metric_names():
    assert CPAccuracy(0.9).name == 'CPAccuracy@0.9'
    assert ObservedFuzziness().name == 'ObservedFuzziness'
    assert ConfidenceGivenPredictionIntervalWidth(2.0).name == 'ConfidenceGivenWidth@2'


def test_direction():
    assert CPAccuracy().higher_is_better
    assert not ObservedFuzziness().higher_is_better
    assert ObservedFuzziness().is_better(0.1, 0.2)
    assert CPAccuracy().is_better(0.9, 0.8)


def test_unsupported_prediction(cp_prediction, y_cls):
    with pytest.raises(InvalidInputError):
        MeanPredictionIntervalWidth().compute(y_cls, cp_prediction)


def test_invalid_confidence():
    with pytest.raises(InvalidInputError):
        CPAccuracy(1.5)


# ============================================================================
# Test 2: Conformal regression
# ============================================================================

def test_cp_accuracy_regression(reg_prediction):
    y = np.array([1.0, 2.2, 6.5])
    assert CPAccuracy(0.5).compute(y, reg_prediction) == pytest.approx(1 / 3)
    assert CPAccuracy(0.8).compute(y, reg_prediction) == pytest.approx(1.0)


def test_interval_widths(reg_prediction):
    y = np.zeros(3)
    assert MeanPredictionIntervalWidth(0.5).compute(y, reg_prediction) == pytest.approx(4 / 3)
    assert MedianPredictionIntervalWidth(0.8).compute(y, reg_prediction) == pytest.approx(3.0)


def test_missing_confidence(reg_prediction):
    with pytest.raises(InvalidInputError):
        MeanPredictionIntervalWidth(0.9).compute(np.zeros(3), reg_prediction)


def test_confidence_given_width(reg_prediction):
    metric = ConfidenceGivenPredictionIntervalWidth(1.0)
    assert metric.compute(np.zeros(3), reg_prediction) == pytest.approx(0.6)
    with pytest.raises(InvalidInputError):
        ConfidenceGivenPredictionIntervalWidth(3.0).compute(np.zeros(3), reg_prediction)


# ============================================================================
# Test 3: Probabilistic
# ============================================================================

@pytest.fixture
def proba_prediction():
    proba = np.array([[0.8, 0.2], [0.3, 0.7], [0.6, 0.4], [0.1, 0.9]])
    return ProbabilityPrediction([0, 1], proba, np.array([0.1, 0.2, 0.1, 0.2]))


def test_log_loss(proba_prediction):
    y = np.array([0.0, 1.0, 1.0, 1.0])
    expected = -np.mean(np.log([0.8, 0.7, 0.4, 0.9]))
    assert LogLoss().compute(y, proba_prediction) == pytest.approx(expected)


def test_brier_and_auc(proba_prediction):
    y = np.array([0.0, 1.0, 1.0, 1.0])
    expected = np.mean((np.array([0.2, 0.7, 0.4, 0.9]) - np.array([0, 1, 1, 1])) ** 2)
    assert BrierScore().compute(y, proba_prediction) == pytest.approx(expected)
    assert ROCAUC().compute(y, proba_prediction) == pytest.approx(1.0)


def test_vap_interval_width(proba_prediction):
    assert MeanVAPIntervalWidth().compute(np.zeros(4), proba_prediction) == pytest.approx(0.15)


def test_registry():
    assert 'CPAccuracy' in METRICS and 'ROC-AUC' in METRICS
    assert METRICS['ObservedFuzziness'] is ObservedFuzziness


# ============================================================================
# Run Tests
# ============================================================================

if __name__ == "__main__":
    pytest.main([__file__, "-v", "--tb=short"])
