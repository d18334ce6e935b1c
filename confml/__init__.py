"""
confml: Conformal Prediction with Calibrated Validity

Wrap any scikit-learn classifier or regressor in inductive, aggregated,
transductive or Venn-ABERS predictors whose prediction sets, intervals and
probabilities carry a statistical validity guarantee, and tune them with
cross-validated grid search.
"""

from .version import __version__, __author__, __description__
from .exceptions import (
    ConformalError,
    InvalidInputError,
    UntrainedPredictorError,
    AlreadyTrainedError,
    KeyMismatchError,
    AggregationMismatchError,
    EvaluationFailure,
    GridSearchFailure,
)
from .data import Record, Dataset, TrainSplit
from .algorithms import ClassifierAlgorithm, RegressorAlgorithm
from .nonconformity import (
    NegativeDistanceToHyperplaneNCM,
    ProbabilityMarginNCM,
    InverseProbabilityNCM,
    AbsDiffNCM,
    NormalizedNCM,
    LogNormalizedNCM,
    SignedNormalizedNCM,
    StandardPValue,
    SmoothedPValue,
    LinearInterpolationPValue,
    SplineInterpolationPValue,
)
from .sampling import RandomSampler, FoldedSampler, BootstrapSampler
from .predictors import (
    ICPClassifier,
    ICPRegressor,
    ACPClassifier,
    ACPRegressor,
    TCPClassifier,
    VAPClassifier,
)
from .evaluation import (
    KFoldCV,
    LOOCV,
    RandomTestSplit,
    FixedTestSet,
    TestRunner,
    GridSearch,
)
from .persistence import ModelBundle, EncryptionSpec, save, load, merge

__all__ = [
    '__version__',
    '__author__',
    '__description__',
    'ConformalError',
    'InvalidInputError',
    'UntrainedPredictorError',
    'AlreadyTrainedError',
    'KeyMismatchError',
    'AggregationMismatchError',
    'EvaluationFailure',
    'GridSearchFailure',
    'Record',
    'Dataset',
    'TrainSplit',
    'ClassifierAlgorithm',
    'RegressorAlgorithm',
    'NegativeDistanceToHyperplaneNCM',
    'ProbabilityMarginNCM',
    'InverseProbabilityNCM',
    'AbsDiffNCM',
    'NormalizedNCM',
    'LogNormalizedNCM',
    'SignedNormalizedNCM',
    'StandardPValue',
    'SmoothedPValue',
    'LinearInterpolationPValue',
    'SplineInterpolationPValue',
    'RandomSampler',
    'FoldedSampler',
    'BootstrapSampler',
    'ICPClassifier',
    'ICPRegressor',
    'ACPClassifier',
    'ACPRegressor',
    'TCPClassifier',
    'VAPClassifier',
    'KFoldCV',
    'LOOCV',
    'RandomTestSplit',
    'FixedTestSet',
    'TestRunner',
    'GridSearch',
    'save',
    'load',
    'merge',
    'ModelBundle',
    'EncryptionSpec',
]
