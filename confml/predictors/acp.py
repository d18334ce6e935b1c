"""
Aggregated Conformal Predictors

An ACP trains one ICP per split of a CalibrationSampler and combines the
members with the median: p-values per label for classification, lower
and upper interval bounds per confidence for regression. The median is
insensitive to the order members were trained or merged in and to a
single misbehaving member.

"""

from typing import Any, Dict, List, Optional, Sequence, Union

import numpy as np

from ..data import Dataset, Record, TrainSplit, as_class_labels
from ..exceptions import InvalidInputError
from ..sampling import CalibrationSampler, RandomSampler
from .base import AggregatedPredictor, as_record_list
from .icp import ICPClassifier, ICPRegressor, _check_confidences


class _ACPBase(AggregatedPredictor):
    """Parameter routing shared by both ACP flavours."""

    icp_class = None

    def __init__(self, icp, sampler: Optional[CalibrationSampler] = None, seed: int = 42):
        if not isinstance(icp, self.icp_class):
            raise InvalidInputError(
                f"{type(self).__name__} needs an {self.icp_class.__name__} template, "
                f"got {type(icp).__name__}"
            )
        if icp.is_trained:
            raise InvalidInputError("The ICP template must be untrained")
        if sampler is None:
            sampler = RandomSampler(calibration_ratio=0.2, n_splits=10)
        super().__init__(sampler, seed)
        self.icp = icp
        self.icp.set_seed(seed)

    def __repr__(self) -> str:
        return f"{type(self).__name__}({self.icp!r}, {self.sampler!r}, seed={self.seed})"

    def clone(self):
        return type(self)(self.icp.clone(), self.sampler.clone(), self.seed)

    def get_params(self) -> Dict[str, Any]:
        params = dict(self.icp.get_params())
        params.update(self.sampler.get_params())
        return params

    def set_params(self, **params):
        unknown = set(params) - set(self.get_params())
        if unknown:
            raise InvalidInputError(
                f"Unknown parameter(s) for {type(self).__name__}: {sorted(unknown)}"
            )
        sampler_params, icp_params = self._split_params(params)
        if sampler_params:
            self.sampler.set_params(**sampler_params)
        if icp_params:
            self.icp.set_params(**icp_params)
        self.members_ = {}
        return self

    def set_seed(self, seed: int) -> None:
        super().set_seed(seed)
        self.icp.set_seed(seed)

    def _train_member(self, split: TrainSplit):
        member = self.icp.clone()
        return member.train(split)

    def feature_gradient(self, record: Record, step: float = 1e-4):
        """Member feature gradients averaged over the trained members."""
        members = self._ordered_members()
        grads = [m.feature_gradient(record, step) for m in members]
        return self._average_gradients(grads)

    @staticmethod
    def _average_gradients(grads):
        raise NotImplementedError


class ACPClassifier(_ACPBase):
    """
    Aggregated (Mondrian) conformal classifier.

    Parameters
    ----------
    icp : ICPClassifier
        Untrained template; every member is a clone of it
    sampler : CalibrationSampler, optional
        Defaults to RandomSampler(calibration_ratio=0.2, n_splits=10)
    seed : int, optional (default=42)
        Sampler seed

    Attributes
    ----------
    labels_ : list
        Class labels of the training data
    members_ : dict of {int: ICPClassifier}

    Examples
    --------
    >>> acp = ACPClassifier(icp, FoldedSampler(n_folds=5), seed=7)
    >>> acp.train(dataset)
    >>> acp.predict(record)
    {0: 0.12, 1: 0.71}
    """

    classification = True
    icp_class = ICPClassifier

    def __init__(self, icp: ICPClassifier, sampler: Optional[CalibrationSampler] = None, seed: int = 42):
        super().__init__(icp, sampler, seed)
        self.labels_ = None

    def _prepare(self, dataset: Dataset) -> None:
        labels = as_class_labels(dataset.classes)
        if len(labels) < 2:
            raise InvalidInputError(
                f"Classification needs >= 2 classes, got {len(labels)}"
            )
        if self.members_ and self.labels_ != labels:
            raise InvalidInputError(
                f"Dataset labels {labels} differ from the labels of the trained "
                f"members {self.labels_}"
            )
        self.labels_ = labels

    def _train_member(self, split: TrainSplit) -> ICPClassifier:
        member = super()._train_member(split)
        if member.labels_ != self.labels_:
            raise InvalidInputError(
                f"Split {split.index}: proper training set holds labels {member.labels_}, "
                f"expected all of {self.labels_}"
            )
        return member

    def predict_pvalues(self, records: Union[Record, Sequence[Record]]) -> np.ndarray:
        """
        Median p-value over the members.

        Returns
        -------
        pvalues : np.ndarray, shape (n, n_labels)
        """
        members = self._ordered_members()
        records, _ = as_record_list(records)
        stacked = np.stack([m.predict_pvalues(records) for m in members])
        return np.median(stacked, axis=0)

    def predict(self, records: Union[Record, Sequence[Record]]):
        """Label -> p-value mapping for one record, or a list of them."""
        records, single = as_record_list(records)
        pvalues = self.predict_pvalues(records)
        result = [dict(zip(self.labels_, row.tolist())) for row in pvalues]
        return result[0] if single else result

    def predict_set(self, records: Union[Record, Sequence[Record]], confidence: float = 0.8):
        """Labels whose aggregated p-value exceeds 1 - confidence."""
        confidence = float(_check_confidences(confidence)[0])
        records, single = as_record_list(records)
        pvalues = self.predict_pvalues(records)
        sets = [
            [label for label, p in zip(self.labels_, row) if p > 1 - confidence]
            for row in pvalues
        ]
        return sets[0] if single else sets

    @staticmethod
    def _average_gradients(grads: List[Dict[int, Dict[Any, float]]]):
        averaged = {}
        for feature in grads[0]:
            averaged[feature] = {
                label: float(np.mean([g[feature][label] for g in grads]))
                for label in grads[0][feature]
            }
        return averaged


class ACPRegressor(_ACPBase):
    """
    Aggregated conformal regressor.

    Intervals are the median of the member lower bounds and the median of
    the member upper bounds; infinite member bounds are kept as such.

    Parameters
    ----------
    icp : ICPRegressor
        Untrained template
    sampler : CalibrationSampler, optional
        Defaults to RandomSampler(calibration_ratio=0.2, n_splits=10)
    seed : int, optional (default=42)
    """

    classification = False
    icp_class = ICPRegressor

    def predict_midpoints(self, records: Union[Record, Sequence[Record]]):
        """Median midpoints and scalings over the members."""
        members = self._ordered_members()
        records, _ = as_record_list(records)
        results = [m.predict_midpoints(records) for m in members]
        midpoints = np.median(np.stack([r[0] for r in results]), axis=0)
        scalings = np.median(np.stack([r[1] for r in results]), axis=0)
        return midpoints, scalings

    def predict_intervals(
        self,
        records: Union[Record, Sequence[Record]],
        confidences: Union[float, Sequence[float]] = (0.8,)
    ) -> np.ndarray:
        """
        Median member intervals.

        Returns
        -------
        intervals : np.ndarray, shape (n, n_confidences, 2)
        """
        members = self._ordered_members()
        records, _ = as_record_list(records)
        stacked = np.stack([m.predict_intervals(records, confidences) for m in members])
        return np.median(stacked, axis=0)

    def predict(
        self,
        records: Union[Record, Sequence[Record]],
        confidences: Union[float, Sequence[float]] = (0.8,)
    ):
        """Confidence -> (lower, upper) mapping for one record, or a list of them."""
        confidences = _check_confidences(confidences)
        records, single = as_record_list(records)
        intervals = self.predict_intervals(records, confidences)
        result = [
            {float(c): (float(lo), float(hi)) for c, (lo, hi) in zip(confidences, rec_int)}
            for rec_int in intervals
        ]
        return result[0] if single else result

    def predict_confidence(
        self,
        records: Union[Record, Sequence[Record]],
        widths: Union[float, Sequence[float]]
    ) -> np.ndarray:
        """Median over the members of the confidence attained by each width."""
        members = self._ordered_members()
        records, _ = as_record_list(records)
        stacked = np.stack([m.predict_confidence(records, widths) for m in members])
        return np.median(stacked, axis=0)

    @staticmethod
    def _average_gradients(grads: List[Dict[int, float]]):
        return {
            feature: float(np.mean([g[feature] for g in grads]))
            for feature in grads[0]
        }
