"""Nonconformity measures and p-value calculators"""

from .base import NonconformityMeasure
from .classification import (
    ClassificationNCM,
    NegativeDistanceToHyperplaneNCM,
    ProbabilityMarginNCM,
    InverseProbabilityNCM,
    CLASSIFICATION_NCMS,
)
from .regression import (
    RegressionNCM,
    AbsDiffNCM,
    NormalizedNCM,
    LogNormalizedNCM,
    SignedNormalizedNCM,
    REGRESSION_NCMS,
)
from .pvalues import (
    PValueCalculator,
    StandardPValue,
    SmoothedPValue,
    LinearInterpolationPValue,
    SplineInterpolationPValue,
    PVALUE_CALCULATORS,
)

__all__ = [
    'NonconformityMeasure',
    'ClassificationNCM',
    'NegativeDistanceToHyperplaneNCM',
    'ProbabilityMarginNCM',
    'InverseProbabilityNCM',
    'RegressionNCM',
    'AbsDiffNCM',
    'NormalizedNCM',
    'LogNormalizedNCM',
    'SignedNormalizedNCM',
    'PValueCalculator',
    'StandardPValue',
    'SmoothedPValue',
    'LinearInterpolationPValue',
    'SplineInterpolationPValue',
    'CLASSIFICATION_NCMS',
    'REGRESSION_NCMS',
    'PVALUE_CALCULATORS',
]
