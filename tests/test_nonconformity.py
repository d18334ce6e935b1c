"""
Unit Tests for Scoring Algorithms and Nonconformity Measures
============================================================
"""

import numpy as np
import pytest
from sklearn.linear_model import LogisticRegression, Ridge
from sklearn.svm import LinearSVC

from confml import (
    AbsDiffNCM,
    ClassifierAlgorithm,
    InvalidInputError,
    InverseProbabilityNCM,
    LogNormalizedNCM,
    NegativeDistanceToHyperplaneNCM,
    NormalizedNCM,
    ProbabilityMarginNCM,
    RegressorAlgorithm,
    SignedNormalizedNCM,
    UntrainedPredictorError,
)

from conftest import make_classification, make_regression


@pytest.fixture
def binary_xy():
    return make_classification()


@pytest.fixture
def multiclass_xy():
    return make_classification(n=150, n_classes=3)


@pytest.fixture
def regression_xy():
    return make_regression()


# ============================================================================
# Test 1: Scoring algorithms
# ============================================================================

def test_train_does_not_fit_template(binary_xy):
    X, y = binary_xy
    estimator = LinearSVC()
    alg = ClassifierAlgorithm(estimator).train(X, y)
    assert alg.is_trained
    assert not hasattr(estimator, 'coef_')


def test_binary_decision_scores_have_one_column_per_class(binary_xy):
    X, y = binary_xy
    alg = ClassifierAlgorithm(LinearSVC()).train(X, y)
    d = alg.decision_scores(X[:5])
    assert d.shape == (5, 2)
    np.testing.assert_allclose(d[:, 0], -d[:, 1])


def test_set_params_rejects_unknown_names():
    alg = ClassifierAlgorithm(LinearSVC())
    alg.set_params(C=0.5)
    assert alg.get_params()['C'] == 0.5
    with pytest.raises(InvalidInputError):
        alg.set_params(gamma_typo=1.0)


def test_set_seed_only_where_supported():
    alg = ClassifierAlgorithm(LinearSVC())
    alg.set_seed(5)
    assert alg.get_params()['random_state'] == 5
    ridge = RegressorAlgorithm(Ridge())
    ridge.set_seed(5)
    assert ridge.get_params()['random_state'] == 5


def test_predict_before_train_raises():
    with pytest.raises(UntrainedPredictorError):
        RegressorAlgorithm(Ridge()).predict(np.zeros((1, 2)))


def test_rejects_non_estimator():
    with pytest.raises(InvalidInputError):
        ClassifierAlgorithm(object())


def test_predict_proba_missing():
    X, y = make_classification(n=40)
    alg = ClassifierAlgorithm(LinearSVC()).train(X, y)
    with pytest.raises(InvalidInputError):
        alg.predict_proba(X)


# ============================================================================
# Test 2: Classification measures
# ============================================================================

def test_negative_distance_scores(multiclass_xy):
    X, y = multiclass_xy
    ncm = NegativeDistanceToHyperplaneNCM(ClassifierAlgorithm(LinearSVC())).fit(X, y)
    matrix = ncm.score_matrix(X)
    assert matrix.shape == (len(y), 3)
    own = ncm.score(X, y)
    np.testing.assert_allclose(own, matrix[np.arange(len(y)), y])
    # Correct labels conform better on average
    assert own.mean() < matrix.mean()


def test_probability_margin_in_unit_interval(binary_xy):
    X, y = binary_xy
    ncm = ProbabilityMarginNCM(ClassifierAlgorithm(LogisticRegression())).fit(X, y)
    scores = ncm.score_matrix(X)
    assert np.all((scores >= 0) & (scores <= 1))
    # Binary: the two columns are mirror images around 0.5
    np.testing.assert_allclose(scores[:, 0] + scores[:, 1], 1.0)


def test_inverse_probability(binary_xy):
    X, y = binary_xy
    ncm = InverseProbabilityNCM(ClassifierAlgorithm(LogisticRegression())).fit(X, y)
    proba = ncm.algorithm.predict_proba(X)
    np.testing.assert_allclose(ncm.score_matrix(X), 1.0 - proba)


def test_single_class_rejected():
    X = np.ones((5, 2))
    with pytest.raises(InvalidInputError):
        NegativeDistanceToHyperplaneNCM(ClassifierAlgorithm(LinearSVC())).fit(X, np.zeros(5))


def test_unknown_label_rejected(binary_xy):
    X, y = binary_xy
    ncm = NegativeDistanceToHyperplaneNCM(ClassifierAlgorithm(LinearSVC())).fit(X, y)
    with pytest.raises(InvalidInputError):
        ncm.score(X[:2], np.array([0, 5]))


def test_score_before_fit():
    ncm = NegativeDistanceToHyperplaneNCM(ClassifierAlgorithm(LinearSVC()))
    with pytest.raises(UntrainedPredictorError):
        ncm.score_matrix(np.zeros((1, 2)))


def test_classification_ncm_needs_classifier():
    with pytest.raises(InvalidInputError):
        NegativeDistanceToHyperplaneNCM(RegressorAlgorithm(Ridge()))


# ============================================================================
# Test 3: Regression measures
# ============================================================================

def test_abs_diff(regression_xy):
    X, y = regression_xy
    ncm = AbsDiffNCM(RegressorAlgorithm(Ridge())).fit(X, y)
    midpoints, scalings = ncm.predict(X)
    np.testing.assert_allclose(scalings, 1.0)
    np.testing.assert_allclose(ncm.score(X, y), np.abs(y - midpoints))


@pytest.mark.parametrize('cls', [NormalizedNCM, LogNormalizedNCM, SignedNormalizedNCM])
def test_normalized_scalings_positive(cls, regression_xy):
    X, y = regression_xy
    ncm = cls(RegressorAlgorithm(Ridge()), beta=0.05).fit(X, y)
    _, scalings = ncm.predict(X)
    assert np.all(scalings > 0)
    assert ncm.requires_error_model


def test_normalized_params_prefix():
    ncm = NormalizedNCM(RegressorAlgorithm(Ridge(alpha=2.0)))
    params = ncm.get_params()
    assert params['alpha'] == 2.0
    assert params['error_model__alpha'] == 2.0
    assert params['beta'] == 0.01
    ncm.set_params(error_model__alpha=5.0, beta=0.5)
    assert ncm.error_model.get_params()['alpha'] == 5.0
    assert ncm.algorithm.get_params()['alpha'] == 2.0
    assert ncm.beta == 0.5


def test_negative_beta_rejected():
    with pytest.raises(InvalidInputError):
        NormalizedNCM(RegressorAlgorithm(Ridge()), beta=-1.0)
    ncm = NormalizedNCM(RegressorAlgorithm(Ridge()))
    with pytest.raises(InvalidInputError):
        ncm.set_params(beta=-0.1)


def test_clone_is_unfitted(regression_xy):
    X, y = regression_xy
    ncm = NormalizedNCM(RegressorAlgorithm(Ridge())).fit(X, y)
    copy = ncm.clone()
    assert ncm.is_fitted
    assert not copy.is_fitted
    assert copy.get_params() == ncm.get_params()


# ============================================================================
# Run Tests
# ============================================================================

if __name__ == "__main__":
    pytest.main([__file__, "-v", "--tb=short"])
