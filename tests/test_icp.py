"""
Unit Tests for Inductive Conformal Predictors
=============================================

- Train-once state machine
- P-values, prediction sets and validity
- Regression intervals and the inverse confidence query
"""

import numpy as np
import pytest

from confml import (
    AlreadyTrainedError,
    ConformalError,
    Dataset,
    ICPClassifier,
    ICPRegressor,
    InvalidInputError,
    InverseProbabilityNCM,
    LinearInterpolationPValue,
    NegativeDistanceToHyperplaneNCM,
    NormalizedNCM,
    RandomSampler,
    Record,
    UntrainedPredictorError,
)
from confml.data import TrainSplit

from conftest import logreg_algorithm, make_classification, ridge_algorithm, svc_algorithm


@pytest.fixture
def split(classification_data):
    return RandomSampler(calibration_ratio=0.25).get_split(
        classification_data, 42, 0, classification=True
    )


@pytest.fixture
def regression_split(regression_data):
    return RandomSampler(calibration_ratio=0.25).get_split(regression_data, 42, 0)


# ============================================================================
# Test 1: State machine
# ============================================================================

def test_predict_before_train(icp_classifier, test_records):
    assert not icp_classifier.is_trained
    with pytest.raises(UntrainedPredictorError):
        icp_classifier.predict(test_records[0])


def test_untrained_error_is_runtime_error(icp_regressor, regression_test_records):
    with pytest.raises(RuntimeError):
        icp_regressor.predict_intervals(regression_test_records)


def test_train_twice_raises(icp_classifier, split):
    icp_classifier.train(split)
    with pytest.raises(AlreadyTrainedError) as info:
        icp_classifier.train(split)
    assert isinstance(info.value, ConformalError)
    assert isinstance(info.value, RuntimeError)


def test_train_requires_split(icp_classifier, classification_data):
    with pytest.raises(InvalidInputError):
        icp_classifier.train(classification_data)


def test_set_params_after_training(icp_classifier, split):
    icp_classifier.train(split)
    with pytest.raises(AlreadyTrainedError):
        icp_classifier.set_params(C=2.0)
    fresh = icp_classifier.clone()
    assert not fresh.is_trained
    fresh.set_params(C=2.0)
    assert fresh.get_params()['C'] == 2.0


def test_single_label_calibration_rejected(icp_classifier, classification_data):
    records = classification_data.records
    calib = [r for r in records if r.label == 0][:10]
    train = [r for r in records if r not in calib]
    with pytest.raises(InvalidInputError):
        icp_classifier.train(TrainSplit(train, calib))


# ============================================================================
# Test 2: Classification
# ============================================================================

def test_pvalues_shape_and_range(icp_classifier, split, test_records):
    icp_classifier.train(split)
    p = icp_classifier.predict_pvalues(test_records)
    assert p.shape == (len(test_records), 2)
    n_largest_class = max(len(s) for s in icp_classifier.calibration_scores_.values())
    assert np.all(p >= 1.0 / (n_largest_class + 1) - 1e-12)
    assert np.all(p <= 1.0)


def test_predict_single_and_list(icp_classifier, split, test_records):
    icp_classifier.train(split)
    single = icp_classifier.predict(test_records[0])
    assert set(single) == {0, 1}
    many = icp_classifier.predict(test_records[:3])
    assert isinstance(many, list) and len(many) == 3
    assert many[0] == single


def test_prediction_sets_grow_with_confidence(icp_classifier, split, test_records):
    icp_classifier.train(split)
    low = icp_classifier.predict_set(test_records, confidence=0.5)
    high = icp_classifier.predict_set(test_records, confidence=0.99)
    for a, b in zip(low, high):
        assert set(a) <= set(b)


def test_validity_on_held_out_data(classification_data, test_records):
    """Miscoverage at 0.8 stays near 1 - 0.8 over repeated calibration splits."""
    errors = []
    for seed in range(5):
        split = RandomSampler(calibration_ratio=0.3).get_split(
            classification_data, seed, 0, classification=True
        )
        icp = ICPClassifier(NegativeDistanceToHyperplaneNCM(svc_algorithm()))
        icp.train(split)
        sets = icp.predict_set(test_records, confidence=0.8)
        errors.append(np.mean([r.label not in s for r, s in zip(test_records, sets)]))
    assert np.mean(errors) <= 0.2 + 0.1


def _line_records(xs, label):
    return [Record.from_mapping({0: float(x)}, label) for x in xs]


def test_exclusions_on_fixed_hundred_record_split():
    """
    100 records (80 proper training, 20 calibration), 20 held-out records,
    confidence 0.8.

    With one feature and logistic regression, 1 - p(label) is monotone in x
    within each class, so a held-out record's p-value is fixed by how many
    calibration records of its class lie at least as close to the boundary:
    p = (#closer + 1) / 11. It is excluded when p <= 0.2, i.e. #closer <= 1.
    The two held-out records per class closest to the boundary are excluded.
    """
    proper = (_line_records(0.3 + 0.05 * np.arange(40), 1)
              + _line_records(-(0.3 + 0.05 * np.arange(40)), 0))
    calib_x = 0.5 + 0.2 * np.arange(10)              # 0.5, 0.7, ..., 2.3
    calib = _line_records(calib_x, 1) + _line_records(-calib_x, 0)
    test_x = np.array([0.4, 0.6, 0.8, 1.0, 1.2, 1.4, 1.6, 1.8, 2.0, 2.2])
    held_out = _line_records(test_x, 1) + _line_records(-test_x, 0)
    assert len(proper) + len(calib) == 100 and len(held_out) == 20

    icp = ICPClassifier(InverseProbabilityNCM(logreg_algorithm()))
    icp.train(TrainSplit(proper, calib, seed=42))
    sets = icp.predict_set(held_out, confidence=0.8)
    excluded = [r.values[0] for r, s in zip(held_out, sets) if r.label not in s]

    assert len(excluded) == 4
    np.testing.assert_allclose(sorted(excluded), [-0.6, -0.4, 0.4, 0.6])

    p = icp.predict_pvalues(held_out[:3])
    np.testing.assert_allclose(p[:, 1], [1 / 11, 2 / 11, 3 / 11])


def test_exclusion_count_is_seeded(test_records):
    """Same seed, same calibration split, same number of exclusions."""
    counts = []
    for _ in range(2):
        X_all, y_all = make_classification(n=100, seed=3)
        split = RandomSampler(calibration_ratio=0.2).get_split(
            Dataset.from_arrays(X_all, y_all), 42, 0, classification=True
        )
        assert len(split.calibration) == 20
        icp = ICPClassifier(NegativeDistanceToHyperplaneNCM(svc_algorithm()))
        icp.train(split)
        sets = icp.predict_set(test_records[:20], confidence=0.8)
        counts.append(sum(r.label not in s for r, s in zip(test_records[:20], sets)))
    assert counts[0] == counts[1]
    assert counts[0] <= 10


def test_feature_gradient(icp_classifier, split, test_records):
    icp_classifier.train(split)
    grad = icp_classifier.feature_gradient(test_records[0])
    assert set(grad) == set(test_records[0].indices)
    for per_label in grad.values():
        assert set(per_label) == {0, 1}
        # Binary hyperplane: the two label gradients mirror each other
        assert per_label[0] == pytest.approx(-per_label[1], abs=1e-6)


def test_invalid_confidence(icp_classifier, split, test_records):
    icp_classifier.train(split)
    with pytest.raises(InvalidInputError):
        icp_classifier.predict_set(test_records, confidence=1.2)


# ============================================================================
# Test 3: Regression
# ============================================================================

def test_interval_shape_and_coverage(icp_regressor, regression_split, regression_test_records):
    icp_regressor.train(regression_split)
    intervals = icp_regressor.predict_intervals(regression_test_records, [0.5, 0.8, 0.9])
    assert intervals.shape == (len(regression_test_records), 3, 2)
    y = np.array([r.label for r in regression_test_records])
    covered = (intervals[:, 1, 0] <= y) & (y <= intervals[:, 1, 1])
    assert covered.mean() >= 0.6


def test_interval_width_monotone_in_confidence(icp_regressor, regression_split,
                                               regression_test_records):
    icp_regressor.train(regression_split)
    confidences = np.linspace(0.05, 0.95, 19)
    intervals = icp_regressor.predict_intervals(regression_test_records, confidences)
    widths = intervals[..., 1] - intervals[..., 0]
    assert np.all(np.diff(widths, axis=1) >= 0)


def test_infinite_bounds_above_max_confidence(icp_regressor, regression_split,
                                              regression_test_records):
    icp_regressor.train(regression_split)
    n = icp_regressor.n_calibration_
    conf = (n + 0.5) / (n + 1.0)
    intervals = icp_regressor.predict_intervals(regression_test_records[:2], conf)
    assert np.all(np.isneginf(intervals[..., 0]))
    assert np.all(np.isposinf(intervals[..., 1]))


def test_capped_intervals(regression_split, regression_test_records):
    icp = ICPRegressor(NormalizedNCM(ridge_algorithm()), cap_intervals=True)
    icp.train(regression_split)
    intervals = icp.predict_intervals(regression_test_records, 0.999)
    assert np.all(intervals >= icp.min_label_)
    assert np.all(intervals <= icp.max_label_)


def test_predict_mapping(icp_regressor, regression_split, regression_test_records):
    icp_regressor.train(regression_split)
    result = icp_regressor.predict(regression_test_records[0], [0.8, 0.9])
    assert set(result) == {0.8, 0.9}
    lo, hi = result[0.8]
    assert lo <= hi


def test_confidence_given_width(icp_regressor, regression_split, regression_test_records):
    icp_regressor.train(regression_split)
    conf = icp_regressor.predict_confidence(regression_test_records, [0.0, 1.0, 100.0])
    assert conf.shape == (len(regression_test_records), 3)
    assert np.all(np.diff(conf, axis=1) >= 0)
    assert np.all(conf[:, 0] == 0.0)
    n = icp_regressor.n_calibration_
    np.testing.assert_allclose(conf[:, 2], n / (n + 1.0))


def test_interpolated_calculator(regression_split, regression_test_records):
    icp = ICPRegressor(NormalizedNCM(ridge_algorithm()), LinearInterpolationPValue())
    icp.train(regression_split)
    intervals = icp.predict_intervals(regression_test_records, 0.8)
    assert np.all(np.isfinite(intervals))


def test_regression_feature_gradient(icp_regressor, regression_split, regression_test_records):
    icp_regressor.train(regression_split)
    record = regression_test_records[0]
    grad = icp_regressor.feature_gradient(record)
    coef = icp_regressor.ncm.algorithm.model_.coef_
    for idx, value in grad.items():
        assert value == pytest.approx(coef[idx], rel=1e-3, abs=1e-6)


# ============================================================================
# Run Tests
# ============================================================================

if __name__ == "__main__":
    pytest.main([__file__, "-v", "--tb=short"])
