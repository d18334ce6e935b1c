"""Metrics, testing strategies and grid search"""

from .metrics import (
    METRICS,
    AverageC,
    BalancedAccuracy,
    BalancedObservedFuzziness,
    BrierScore,
    ClassificationPrediction,
    ConfidenceGivenPredictionIntervalWidth,
    ConfidenceMetric,
    CPAccuracy,
    F1Score,
    LogLoss,
    MeanPredictionIntervalWidth,
    MeanVAPIntervalWidth,
    MedianPredictionIntervalWidth,
    Metric,
    ObservedFuzziness,
    ProbabilityPrediction,
    ProportionEmptyPredictions,
    ProportionMultiLabelPredictions,
    ProportionSingleLabelPredictions,
    RegressionPrediction,
    ROCAUC,
    UnobservedConfidence,
)
from .testing import (
    TESTING_STRATEGIES,
    EvaluationResult,
    FixedTestSet,
    KFoldCV,
    LOOCV,
    RandomTestSplit,
    TestingStrategy,
    TestRunner,
    TestTrainSplit,
    predict_for_metrics,
)
from .gridsearch import (
    GridPointResult,
    GridPointStatus,
    GridSearch,
    GridSearchResult,
    default_grid,
)

__all__ = [
    'METRICS',
    'Metric',
    'ConfidenceMetric',
    'ClassificationPrediction',
    'RegressionPrediction',
    'ProbabilityPrediction',
    'CPAccuracy',
    'ProportionSingleLabelPredictions',
    'ProportionMultiLabelPredictions',
    'ProportionEmptyPredictions',
    'AverageC',
    'ObservedFuzziness',
    'BalancedObservedFuzziness',
    'UnobservedConfidence',
    'MeanPredictionIntervalWidth',
    'MedianPredictionIntervalWidth',
    'ConfidenceGivenPredictionIntervalWidth',
    'LogLoss',
    'BrierScore',
    'ROCAUC',
    'MeanVAPIntervalWidth',
    'BalancedAccuracy',
    'F1Score',
    'TESTING_STRATEGIES',
    'TestingStrategy',
    'TestTrainSplit',
    'KFoldCV',
    'LOOCV',
    'RandomTestSplit',
    'FixedTestSet',
    'TestRunner',
    'EvaluationResult',
    'predict_for_metrics',
    'GridSearch',
    'GridSearchResult',
    'GridPointResult',
    'GridPointStatus',
    'default_grid',
]
