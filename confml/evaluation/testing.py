"""
Testing Strategies and Test Runner

A TestingStrategy splits a Dataset into (train, test) pairs; the
TestRunner trains a fresh clone of a predictor on every train part,
predicts the test part and reduces the predictions with metrics. Fold
failures are tolerated up to ``allowed_failure_ratio``.

Only the normal records of a dataset are moved into test folds;
calibration- and modeling-exclusive records always stay in training.

"""

import time
import warnings
from dataclasses import dataclass, field
from typing import Dict, Iterator, List, Sequence, Tuple

import numpy as np
import pandas as pd
from sklearn.model_selection import (
    KFold,
    LeaveOneOut,
    RepeatedKFold,
    RepeatedStratifiedKFold,
    StratifiedKFold,
    train_test_split,
)

from ..data import Dataset, Record
from ..exceptions import EvaluationFailure, InvalidInputError
from ..predictors import ACPClassifier, ACPRegressor, TCPClassifier, VAPClassifier
from ..predictors.vap import merge_intervals
from ..sampling import derive_seed
from .metrics import (
    ClassificationPrediction,
    ConfidenceGivenPredictionIntervalWidth,
    ConfidenceMetric,
    Metric,
    ProbabilityPrediction,
    RegressionPrediction,
)

SUPPORTED_PREDICTORS = (ACPClassifier, ACPRegressor, TCPClassifier, VAPClassifier)

# Confidence used for regression intervals when no metric asks for one
DEFAULT_CONFIDENCE = 0.8


@dataclass
class TestTrainSplit:
    """One fold: a training Dataset and the held-out test records."""

    __test__ = False

    train: Dataset
    test: Tuple[Record, ...]
    index: int = 0


# ============================================================================
# Testing strategies
# ============================================================================

class TestingStrategy:
    """
    Base class for testing strategies.

    Parameters
    ----------
    seed : int, optional (default=42)
        Drives fold assignment and is passed on to the evaluated predictors
    """

    __test__ = False
    name = 'base'

    def __init__(self, seed: int = 42):
        self.seed = seed

    def __repr__(self) -> str:
        return f"{type(self).__name__}(seed={self.seed})"

    def n_splits(self, dataset: Dataset) -> int:
        raise NotImplementedError

    def splits(self, dataset: Dataset) -> Iterator[TestTrainSplit]:
        raise NotImplementedError

    @staticmethod
    def _make_split(dataset: Dataset, train_idx, test_idx, index: int) -> TestTrainSplit:
        return TestTrainSplit(
            train=dataset.subset(train_idx),
            test=tuple(dataset.records[i] for i in test_idx),
            index=index
        )


class KFoldCV(TestingStrategy):
    """
    (Repeated, optionally stratified) k-fold cross-validation.

    Parameters
    ----------
    n_folds : int, optional (default=10)
    seed : int, optional (default=42)
    stratified : bool, optional (default=False)
    shuffle : bool, optional (default=True)
    n_repeats : int, optional (default=1)
        Repeats with different shuffles; requires ``shuffle=True`` when > 1
    """

    name = 'KFoldCV'

    def __init__(
        self,
        n_folds: int = 10,
        seed: int = 42,
        stratified: bool = False,
        shuffle: bool = True,
        n_repeats: int = 1
    ):
        super().__init__(seed)
        if n_folds < 2:
            raise InvalidInputError(f"n_folds must be >= 2, got {n_folds}")
        if n_repeats < 1:
            raise InvalidInputError(f"n_repeats must be >= 1, got {n_repeats}")
        if n_repeats > 1 and not shuffle:
            raise InvalidInputError("Repeated k-fold CV requires shuffle=True")
        self.n_folds = n_folds
        self.stratified = stratified
        self.shuffle = shuffle
        self.n_repeats = n_repeats

    def __repr__(self) -> str:
        return (
            f"KFoldCV(n_folds={self.n_folds}, seed={self.seed}, stratified={self.stratified}, "
            f"shuffle={self.shuffle}, n_repeats={self.n_repeats})"
        )

    def n_splits(self, dataset: Dataset) -> int:
        return self.n_folds * self.n_repeats

    def _splitter(self):
        random_state = derive_seed(self.seed)
        if self.n_repeats > 1:
            cls = RepeatedStratifiedKFold if self.stratified else RepeatedKFold
            return cls(n_splits=self.n_folds, n_repeats=self.n_repeats, random_state=random_state)
        cls = StratifiedKFold if self.stratified else KFold
        if self.shuffle:
            return cls(n_splits=self.n_folds, shuffle=True, random_state=random_state)
        return cls(n_splits=self.n_folds)

    def splits(self, dataset: Dataset) -> Iterator[TestTrainSplit]:
        n = len(dataset.records)
        if n < self.n_folds:
            raise InvalidInputError(
                f"Cannot run {self.n_folds}-fold CV with {n} records"
            )
        labels = dataset.labels
        for index, (train_idx, test_idx) in enumerate(
            self._splitter().split(np.zeros((n, 1)), labels)
        ):
            yield self._make_split(dataset, train_idx, test_idx, index)


class LOOCV(TestingStrategy):
    """Leave-one-out cross-validation: one fold per record."""

    name = 'LOOCV'

    def n_splits(self, dataset: Dataset) -> int:
        return len(dataset.records)

    def splits(self, dataset: Dataset) -> Iterator[TestTrainSplit]:
        n = len(dataset.records)
        if n < 2:
            raise InvalidInputError(f"Leave-one-out needs >= 2 records, got {n}")
        for index, (train_idx, test_idx) in enumerate(LeaveOneOut().split(np.zeros((n, 1)))):
            yield self._make_split(dataset, train_idx, test_idx, index)


class RandomTestSplit(TestingStrategy):
    """
    Single random train/test split.

    Parameters
    ----------
    test_ratio : float, optional (default=0.2)
    seed : int, optional (default=42)
    stratified : bool, optional (default=False)
    """

    name = 'RandomSplit'

    def __init__(self, test_ratio: float = 0.2, seed: int = 42, stratified: bool = False):
        super().__init__(seed)
        if not 0 < test_ratio < 1:
            raise InvalidInputError(f"test_ratio must be in (0,1), got {test_ratio}")
        self.test_ratio = test_ratio
        self.stratified = stratified

    def __repr__(self) -> str:
        return (
            f"RandomTestSplit(test_ratio={self.test_ratio}, seed={self.seed}, "
            f"stratified={self.stratified})"
        )

    def n_splits(self, dataset: Dataset) -> int:
        return 1

    def splits(self, dataset: Dataset) -> Iterator[TestTrainSplit]:
        n = len(dataset.records)
        if n < 2:
            raise InvalidInputError(f"Need >= 2 records for a test split, got {n}")
        train_idx, test_idx = train_test_split(
            np.arange(n),
            test_size=self.test_ratio,
            random_state=derive_seed(self.seed),
            stratify=dataset.labels if self.stratified else None
        )
        yield self._make_split(dataset, train_idx, test_idx, 0)


class FixedTestSet(TestingStrategy):
    """
    Evaluate on an external test set; the whole dataset is used for training.

    Parameters
    ----------
    test_records : sequence of Record
    seed : int, optional (default=42)
        Seed for the shuffled order of the training records
    """

    name = 'FixedTestSet'

    def __init__(self, test_records: Sequence[Record], seed: int = 42):
        super().__init__(seed)
        self.test_records = tuple(test_records)
        if not self.test_records:
            raise InvalidInputError("test_records must not be empty")

    def __repr__(self) -> str:
        return f"FixedTestSet(n_test={len(self.test_records)}, seed={self.seed})"

    def n_splits(self, dataset: Dataset) -> int:
        return 1

    def splits(self, dataset: Dataset) -> Iterator[TestTrainSplit]:
        yield TestTrainSplit(dataset.shuffled(self.seed), self.test_records, 0)


TESTING_STRATEGIES = {
    cls.name: cls
    for cls in (KFoldCV, LOOCV, RandomTestSplit, FixedTestSet)
}


# ============================================================================
# Test runner
# ============================================================================

@dataclass
class EvaluationResult:
    """
    Outcome of a TestRunner evaluation.

    Attributes
    ----------
    fold_scores : pd.DataFrame
        One row per successful fold, one column per metric
    errors : list of str
        Messages of the failed folds
    runtime : float
        Wall-clock seconds
    """

    fold_scores: pd.DataFrame
    errors: List[str] = field(default_factory=list)
    runtime: float = 0.0

    @property
    def n_failed(self) -> int:
        return len(self.errors)

    @property
    def summary(self) -> pd.DataFrame:
        """Mean and (population) standard deviation per metric."""
        return pd.DataFrame({
            'mean': self.fold_scores.mean(axis=0),
            'std': self.fold_scores.std(axis=0, ddof=0),
        })

    def mean(self, metric_name: str) -> float:
        return float(self.fold_scores[metric_name].mean())

    def as_dict(self) -> Dict[str, float]:
        return {name: float(v) for name, v in self.fold_scores.mean(axis=0).items()}


def _prediction_type(predictor):
    if isinstance(predictor, (ACPClassifier, TCPClassifier)):
        return ClassificationPrediction
    if isinstance(predictor, ACPRegressor):
        return RegressionPrediction
    return ProbabilityPrediction


def predict_for_metrics(predictor, records: Sequence[Record], metrics: Sequence[Metric]):
    """
    Predict test records in the container form the metrics consume.

    Regression intervals are computed at every confidence any metric asks
    for (0.8 when none does).
    """
    if isinstance(predictor, (ACPClassifier, TCPClassifier)):
        return ClassificationPrediction(predictor.labels_, predictor.predict_pvalues(records))

    if isinstance(predictor, ACPRegressor):
        confidences = sorted({m.confidence for m in metrics if isinstance(m, ConfidenceMetric)})
        if not confidences:
            confidences = [DEFAULT_CONFIDENCE]
        confidences = np.array(confidences)
        widths = sorted({m.width for m in metrics if isinstance(m, ConfidenceGivenPredictionIntervalWidth)})
        width_confidences = {}
        if widths:
            attained = predictor.predict_confidence(records, widths)
            width_confidences = {w: attained[:, j] for j, w in enumerate(widths)}
        return RegressionPrediction(
            confidences, predictor.predict_intervals(records, confidences), width_confidences
        )

    if isinstance(predictor, VAPClassifier):
        intervals = predictor.predict_intervals(records)
        p = merge_intervals(intervals[..., 0], intervals[..., 1])
        widths = (intervals[..., 1] - intervals[..., 0]).mean(axis=0)
        return ProbabilityPrediction(predictor.labels_, np.column_stack([1.0 - p, p]), widths)

    raise InvalidInputError(f"Unsupported predictor type {type(predictor).__name__}")


class TestRunner:
    """
    Cross-validated evaluation of a predictor.

    Parameters
    ----------
    strategy : TestingStrategy
    allowed_failure_ratio : float, optional (default=0.05)
        Largest fraction of folds allowed to fail before the whole
        evaluation fails
    verbose : bool, optional (default=False)
        Print one line per fold

    Examples
    --------
    >>> runner = TestRunner(KFoldCV(n_folds=5, seed=1))
    >>> result = runner.evaluate(acp, dataset, [CPAccuracy(0.8), ObservedFuzziness()])
    >>> result.summary
    """

    __test__ = False

    def __init__(
        self,
        strategy: TestingStrategy,
        allowed_failure_ratio: float = 0.05,
        verbose: bool = False
    ):
        if not isinstance(strategy, TestingStrategy):
            raise InvalidInputError(
                f"strategy must be a TestingStrategy, got {type(strategy).__name__}"
            )
        if not 0 <= allowed_failure_ratio < 1:
            raise InvalidInputError(
                f"allowed_failure_ratio must be in [0,1), got {allowed_failure_ratio}"
            )
        self.strategy = strategy
        self.allowed_failure_ratio = allowed_failure_ratio
        self.verbose = verbose

    def check_compatible(self, predictor, metrics: Sequence[Metric]) -> None:
        """Raise InvalidInputError unless every metric can score this predictor."""
        if not isinstance(predictor, SUPPORTED_PREDICTORS):
            raise InvalidInputError(
                f"TestRunner cannot evaluate {type(predictor).__name__}; supported: "
                f"{', '.join(cls.__name__ for cls in SUPPORTED_PREDICTORS)} "
                f"(wrap an ICP in an ACP with a single RandomSampler split)"
            )
        if not metrics:
            raise InvalidInputError("At least one metric is required")
        pred_type = _prediction_type(predictor)
        for metric in metrics:
            if pred_type not in metric.prediction_types:
                raise InvalidInputError(
                    f"Metric {metric.name} cannot score {type(predictor).__name__} predictions"
                )

    def evaluate(self, predictor, dataset: Dataset, metrics: Sequence[Metric]) -> EvaluationResult:
        """
        Train and test a clone of ``predictor`` on every fold.

        Parameters
        ----------
        predictor : ACPClassifier, ACPRegressor, TCPClassifier or VAPClassifier
            Template; it is never trained itself
        dataset : Dataset
        metrics : sequence of Metric

        Returns
        -------
        result : EvaluationResult

        Raises
        ------
        EvaluationFailure
            If the fraction of failed folds exceeds ``allowed_failure_ratio``
        """
        self.check_compatible(predictor, metrics)
        start = time.perf_counter()
        rows = []
        errors = []
        n_folds = 0

        for split in self.strategy.splits(dataset):
            n_folds += 1
            try:
                model = predictor.clone()
                model.set_seed(self.strategy.seed)
                model.train(split.train, verbose=False)
                prediction = predict_for_metrics(model, split.test, metrics)
                y_true = np.array([r.label for r in split.test], dtype=float)
                row = {m.name: m.compute(y_true, prediction) for m in metrics}
            except Exception as exc:
                errors.append(f"fold {split.index}: {type(exc).__name__}: {exc}")
                if self.verbose:
                    print(f"  ✗ Fold {split.index} failed: {exc}")
                continue

            rows.append(row)
            if self.verbose:
                scores = ", ".join(f"{k}={v:.4f}" for k, v in row.items())
                print(f"  ✓ Fold {split.index}: {scores}")

        if n_folds == 0:
            raise EvaluationFailure("Testing strategy produced no folds")
        if not rows or len(errors) / n_folds > self.allowed_failure_ratio:
            raise EvaluationFailure(
                f"{len(errors)} of {n_folds} folds failed "
                f"(allowed ratio {self.allowed_failure_ratio}): " + "; ".join(errors)
            )
        if errors:
            warnings.warn(
                f"{len(errors)} of {n_folds} folds failed and were skipped: " + "; ".join(errors)
            )

        fold_scores = pd.DataFrame(rows, columns=[m.name for m in metrics])
        fold_scores.index.name = 'fold'
        return EvaluationResult(fold_scores, errors, time.perf_counter() - start)
