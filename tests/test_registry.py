"""
Unit Tests for the Component Registry
=====================================
"""

import copy

import pytest

from confml import InvalidInputError
from confml.algorithms import ClassifierAlgorithm, RegressorAlgorithm
from confml.evaluation import CPAccuracy, KFoldCV
from confml.nonconformity import NegativeDistanceToHyperplaneNCM, StandardPValue
from confml.registry import REGISTRY, available, create, register
from confml.sampling import FoldedSampler, RandomSampler


@pytest.fixture(autouse=True)
def restore_registry():
    saved = copy.deepcopy(REGISTRY)
    yield
    REGISTRY.clear()
    REGISTRY.update(saved)


def test_builtin_names():
    assert available('sampler') == ['Bootstrap', 'Folded', 'Random']
    assert available('pvalue') == ['linear', 'smoothed', 'spline', 'standard']
    assert 'NegativeDistanceToHyperplane' in available('classification_ncm')
    assert 'AbsDiff' in available('regression_ncm')
    assert 'KFoldCV' in available('testing')


def test_tables_exported_by_packages():
    from confml.nonconformity import CLASSIFICATION_NCMS, PVALUE_CALCULATORS, REGRESSION_NCMS
    assert REGISTRY['classification_ncm'] == CLASSIFICATION_NCMS
    assert REGISTRY['regression_ncm'] == REGRESSION_NCMS
    assert REGISTRY['pvalue'] == PVALUE_CALCULATORS


def test_create_components():
    alg = create('classifier', 'LinearSVC', C=0.5)
    assert isinstance(alg, ClassifierAlgorithm)
    assert alg.get_params()['C'] == 0.5
    assert isinstance(create('regressor', 'Ridge'), RegressorAlgorithm)

    ncm = create('classification_ncm', 'NegativeDistanceToHyperplane', alg)
    assert isinstance(ncm, NegativeDistanceToHyperplaneNCM)
    assert isinstance(create('pvalue', 'standard'), StandardPValue)
    assert isinstance(create('sampler', 'Folded', n_folds=5), FoldedSampler)
    assert isinstance(create('metric', 'CPAccuracy', 0.9), CPAccuracy)
    assert isinstance(create('testing', 'KFoldCV', n_folds=3), KFoldCV)


def test_unknown_name():
    with pytest.raises(InvalidInputError, match="Available"):
        create('sampler', 'Stratified')
    with pytest.raises(InvalidInputError):
        available('optimizer')


def test_register():
    register('sampler', 'Half', lambda: RandomSampler(calibration_ratio=0.5))
    assert 'Half' in available('sampler')
    assert create('sampler', 'Half').calibration_ratio == 0.5

    with pytest.raises(InvalidInputError):
        register('sampler', 'Half', RandomSampler)
    register('sampler', 'Half', RandomSampler, replace=True)
    assert create('sampler', 'Half').calibration_ratio == 0.2


def test_register_not_callable():
    with pytest.raises(InvalidInputError):
        register('metric', 'Broken', 42)


# ============================================================================
# Run Tests
# ============================================================================

if __name__ == "__main__":
    pytest.main([__file__, "-v", "--tb=short"])
