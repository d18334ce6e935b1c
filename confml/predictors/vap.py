"""
Venn-ABERS Predictors

Binary probability calibration. Each member (an inductive Venn-ABERS
predictor, IVAP) trains the scoring algorithm on its proper training set
and keeps the scores and 0/1 targets of its calibration set. For a new
score s it fits two isotonic regressions, one assuming the test target is
0 and one assuming it is 1, giving the probability interval [p0, p1].

Members are merged with the multi-probability rule

    p = G(p1) / (G(1 - p0) + G(p1))

where G is the geometric mean over members, which keeps the merged value
a proper probability instead of an arbitrary average.

References
----------
Vovk, V., Petej, I., Fedorova, V. (2015). Large-scale probabilistic
predictors with and without guarantees of validity. NeurIPS.
"""

from dataclasses import dataclass
from typing import Any, Dict, List, Optional, Sequence, Union

import numpy as np
from scipy.stats import gmean
from sklearn.isotonic import IsotonicRegression

from ..algorithms import ClassifierAlgorithm
from ..data import Dataset, Record, TrainSplit, as_class_labels, to_matrix
from ..exceptions import InvalidInputError
from ..sampling import CalibrationSampler, RandomSampler
from .base import AggregatedPredictor, as_record_list


@dataclass
class VAPPrediction:
    """
    Merged Venn-ABERS prediction for one record.

    Attributes
    ----------
    probabilities : dict of {label: float}
        Calibrated probability per label (sums to 1)
    member_intervals : np.ndarray, shape (n_members, 2)
        [p0, p1] for the positive label, one row per member
    mean_interval_width : float
        Mean of p1 - p0 over the members
    median_interval_width : float
        Median of p1 - p0 over the members
    """

    probabilities: Dict[Any, float]
    member_intervals: np.ndarray
    mean_interval_width: float
    median_interval_width: float


class IVAPMember:
    """
    One inductive Venn-ABERS predictor.

    Attributes
    ----------
    algorithm : ClassifierAlgorithm
        Trained scoring algorithm
    calibration_scores_ : np.ndarray
        Positive-class scores of the calibration records
    calibration_targets_ : np.ndarray
        1 for the positive label, 0 otherwise
    """

    def __init__(self, algorithm: ClassifierAlgorithm, n_features: int):
        self.algorithm = algorithm
        self.n_features = n_features
        self.calibration_scores_ = None
        self.calibration_targets_ = None

    def train(self, split: TrainSplit, positive_label) -> 'IVAPMember':
        X_train, y_train = to_matrix(split.proper_training, self.n_features)
        self.algorithm.train(X_train, y_train)
        X_cal, y_cal = to_matrix(split.calibration, self.n_features)
        self.calibration_scores_ = self.scores(X_cal)
        self.calibration_targets_ = (y_cal == positive_label).astype(float)
        return self

    def scores(self, X) -> np.ndarray:
        return self.algorithm.decision_scores(X)[:, 1]

    def intervals(self, test_scores: np.ndarray) -> np.ndarray:
        """
        [p0, p1] for each test score.

        Returns
        -------
        intervals : np.ndarray, shape (n, 2)
        """
        x = np.append(self.calibration_scores_, 0.0)
        out = np.empty((len(test_scores), 2))
        for i, s in enumerate(test_scores):
            x[-1] = s
            for col, target in enumerate((0.0, 1.0)):
                iso = IsotonicRegression(y_min=0.0, y_max=1.0, out_of_bounds='clip')
                iso.fit(x, np.append(self.calibration_targets_, target))
                out[i, col] = iso.predict([s])[0]
        return np.clip(out, 0.0, 1.0)


def merge_intervals(p0: np.ndarray, p1: np.ndarray) -> np.ndarray:
    """
    Merge member intervals into one probability per record.

    Parameters
    ----------
    p0, p1 : np.ndarray, shape (n_members, n)

    Returns
    -------
    p : np.ndarray, shape (n,)
        0.5 where both geometric means are 0
    """
    with np.errstate(divide='ignore'):
        g1 = gmean(p1, axis=0)
        g0 = gmean(1.0 - p0, axis=0)
    denominator = g0 + g1
    p = np.full(denominator.shape, 0.5)
    nonzero = denominator > 0
    p[nonzero] = g1[nonzero] / denominator[nonzero]
    return p


class VAPClassifier(AggregatedPredictor):
    """
    Aggregated Venn-ABERS classifier for binary problems.

    Parameters
    ----------
    algorithm : ClassifierAlgorithm
        Untrained scoring algorithm; members train clones of it
    sampler : CalibrationSampler, optional
        Defaults to RandomSampler(calibration_ratio=0.2, n_splits=10)
    seed : int, optional (default=42)
        Sampler seed

    Attributes
    ----------
    labels_ : list
        The two class labels; the second is the positive label
    members_ : dict of {int: IVAPMember}

    Examples
    --------
    >>> vap = VAPClassifier(ClassifierAlgorithm(LinearSVC()))
    >>> vap.train(dataset)
    >>> vap.predict(record).probabilities
    {0: 0.27, 1: 0.73}
    """

    classification = True

    def __init__(
        self,
        algorithm: ClassifierAlgorithm,
        sampler: Optional[CalibrationSampler] = None,
        seed: int = 42
    ):
        if not isinstance(algorithm, ClassifierAlgorithm):
            raise InvalidInputError(
                f"VAPClassifier needs a ClassifierAlgorithm, got {type(algorithm).__name__}"
            )
        if sampler is None:
            sampler = RandomSampler(calibration_ratio=0.2, n_splits=10)
        super().__init__(sampler, seed)
        self.algorithm = algorithm
        self.algorithm.set_seed(seed)
        self.labels_ = None
        self.n_features_ = None

    def __repr__(self) -> str:
        return f"VAPClassifier({self.algorithm!r}, {self.sampler!r}, seed={self.seed})"

    def clone(self) -> 'VAPClassifier':
        return VAPClassifier(self.algorithm.clone(), self.sampler.clone(), self.seed)

    def get_params(self) -> Dict[str, Any]:
        params = dict(self.algorithm.get_params())
        params.update(self.sampler.get_params())
        return params

    def set_params(self, **params) -> 'VAPClassifier':
        unknown = set(params) - set(self.get_params())
        if unknown:
            raise InvalidInputError(
                f"Unknown parameter(s) for VAPClassifier: {sorted(unknown)}"
            )
        sampler_params, alg_params = self._split_params(params)
        if sampler_params:
            self.sampler.set_params(**sampler_params)
        if alg_params:
            self.algorithm.set_params(**alg_params)
        self.members_ = {}
        return self

    def set_seed(self, seed: int) -> None:
        super().set_seed(seed)
        self.algorithm.set_seed(seed)

    def _prepare(self, dataset: Dataset) -> None:
        labels = as_class_labels(dataset.classes)
        if len(labels) != 2:
            raise InvalidInputError(
                f"Venn-ABERS prediction needs exactly 2 classes, got {len(labels)}"
            )
        if self.members_ and self.labels_ != labels:
            raise InvalidInputError(
                f"Dataset labels {labels} differ from the labels of the trained "
                f"members {self.labels_}"
            )
        self.labels_ = labels
        self.n_features_ = dataset.n_features

    def _train_member(self, split: TrainSplit) -> IVAPMember:
        split.validate(classification=True)
        if len({r.label for r in split.proper_training}) < 2:
            raise InvalidInputError(
                f"Split {split.index}: proper training set holds a single class"
            )
        member = IVAPMember(self.algorithm.clone(), self.n_features_)
        return member.train(split, self.labels_[1])

    def predict_intervals(self, records: Union[Record, Sequence[Record]]) -> np.ndarray:
        """
        Member intervals for the positive label.

        Returns
        -------
        intervals : np.ndarray, shape (n_members, n, 2)
        """
        members = self._ordered_members()
        records, _ = as_record_list(records)
        X, _ = to_matrix(records, self.n_features_)
        return np.stack([m.intervals(m.scores(X)) for m in members])

    def predict_proba(self, records: Union[Record, Sequence[Record]]) -> np.ndarray:
        """
        Merged probabilities.

        Returns
        -------
        proba : np.ndarray, shape (n, 2)
            Columns ordered as ``labels_``
        """
        intervals = self.predict_intervals(records)
        p = merge_intervals(intervals[..., 0], intervals[..., 1])
        return np.column_stack([1.0 - p, p])

    def predict(
        self,
        records: Union[Record, Sequence[Record]]
    ) -> Union[VAPPrediction, List[VAPPrediction]]:
        """Merged prediction for one record, or a list of them."""
        records, single = as_record_list(records)
        intervals = self.predict_intervals(records)
        p = merge_intervals(intervals[..., 0], intervals[..., 1])
        widths = intervals[..., 1] - intervals[..., 0]

        result = [
            VAPPrediction(
                probabilities={self.labels_[0]: float(1.0 - p[i]), self.labels_[1]: float(p[i])},
                member_intervals=intervals[:, i, :],
                mean_interval_width=float(np.mean(widths[:, i])),
                median_interval_width=float(np.median(widths[:, i]))
            )
            for i in range(len(records))
        ]
        return result[0] if single else result
