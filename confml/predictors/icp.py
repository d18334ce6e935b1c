"""
Inductive Conformal Predictors

An ICP fits a nonconformity measure on the proper training set, scores
the calibration set once, and then answers p-value (classification) or
interval (regression) queries for new records by binary search in the
sorted calibration scores.

An ICP instance is trained exactly once; retraining means building a new
instance (``clone``).

"""

from typing import Any, Dict, List, Optional, Sequence, Union

import numpy as np

from ..data import Record, TrainSplit, as_class_labels, to_matrix
from ..exceptions import AlreadyTrainedError, InvalidInputError
from ..nonconformity.classification import ClassificationNCM
from ..nonconformity.pvalues import PValueCalculator, StandardPValue
from ..nonconformity.regression import RegressionNCM
from .base import Predictor, as_record_list


def _check_confidences(confidences) -> np.ndarray:
    confidences = np.atleast_1d(np.asarray(confidences, dtype=float))
    if np.any((confidences < 0) | (confidences > 1)):
        raise InvalidInputError(f"confidences must be in [0,1], got {confidences.tolist()}")
    return confidences


def _perturbed_matrix(record: Record, n_features: int, step: float):
    """Base row followed by one row per present feature, shifted by ``step``."""
    features = [i for i in record.indices if i < n_features]
    base = record.as_dict()
    rows = [record]
    for idx in features:
        shifted = dict(base)
        shifted[idx] = shifted[idx] + step
        rows.append(Record.from_mapping(shifted, record.label))
    X, _ = to_matrix(rows, n_features)
    return X, features


class _ICPBase(Predictor):
    """Shared state handling of the inductive predictors."""

    def __init__(self, ncm, pvalue_calculator: Optional[PValueCalculator] = None):
        super().__init__(seed=None)
        if pvalue_calculator is None:
            pvalue_calculator = StandardPValue()
        if not isinstance(pvalue_calculator, PValueCalculator):
            raise InvalidInputError(
                f"pvalue_calculator must be a PValueCalculator, "
                f"got {type(pvalue_calculator).__name__}"
            )
        self.ncm = ncm
        self.pvalue_calculator = pvalue_calculator
        self.n_features_ = None
        self.n_calibration_ = None

    def __repr__(self) -> str:
        return f"{type(self).__name__}({self.ncm!r}, {self.pvalue_calculator!r})"

    @property
    def is_trained(self) -> bool:
        return self.n_calibration_ is not None

    def clone(self):
        return type(self)(self.ncm.clone(), self.pvalue_calculator.clone())

    def get_params(self) -> Dict[str, Any]:
        return self.ncm.get_params()

    def set_params(self, **params):
        if self.is_trained:
            raise AlreadyTrainedError(
                f"{type(self).__name__} already trained; set parameters on a clone()"
            )
        self.ncm.set_params(**params)
        return self

    def set_seed(self, seed: int) -> None:
        self.seed = seed
        self.ncm.set_seed(seed)

    def _start_training(self, split: TrainSplit):
        if self.is_trained:
            raise AlreadyTrainedError(
                f"{type(self).__name__} already trained. Use .clone() to train a new instance."
            )
        if not isinstance(split, TrainSplit):
            raise InvalidInputError(
                f"{type(self).__name__}.train() expects a TrainSplit, got "
                f"{type(split).__name__}; use an ACP with a RandomSampler to train on a Dataset"
            )
        split.validate(classification=self.classification)
        self.n_features_ = split.n_features
        X_train, y_train = to_matrix(split.proper_training, self.n_features_)
        self.ncm.fit(X_train, y_train)
        return to_matrix(split.calibration, self.n_features_)

    def _matrix(self, records: List[Record]):
        X, _ = to_matrix(records, self.n_features_)
        return X


class ICPClassifier(_ICPBase):
    """
    Mondrian inductive conformal classifier.

    Keeps one sorted calibration-score array per class label; the p-value
    of label L is computed against class L's calibration scores only.

    Parameters
    ----------
    ncm : ClassificationNCM
        Nonconformity measure (with its scoring algorithm)
    pvalue_calculator : PValueCalculator, optional
        Defaults to StandardPValue: p = (#{scores >= ncs} + 1) / (n_L + 1)

    Attributes
    ----------
    labels_ : list
        Class labels, in column order of ``predict_pvalues``
    calibration_scores_ : dict of {label: np.ndarray}
        Sorted calibration scores per class
    n_calibration_ : int
        Number of calibration records

    Examples
    --------
    >>> icp = ICPClassifier(NegativeDistanceToHyperplaneNCM(
    ...     ClassifierAlgorithm(LinearSVC())))
    >>> icp.train(split)
    >>> icp.predict(record)
    {0: 0.083, 1: 0.667}
    >>> icp.predict_set(record, confidence=0.8)
    [1]
    """

    classification = True

    def __init__(self, ncm: ClassificationNCM, pvalue_calculator: Optional[PValueCalculator] = None):
        if not isinstance(ncm, ClassificationNCM):
            raise InvalidInputError(
                f"ICPClassifier needs a ClassificationNCM, got {type(ncm).__name__}"
            )
        super().__init__(ncm, pvalue_calculator)
        self.labels_ = None
        self.calibration_scores_ = None

    def train(self, split: TrainSplit) -> 'ICPClassifier':
        """
        Fit the NCM on the proper training set and calibrate.

        Raises
        ------
        InvalidInputError
            If the calibration set is empty, holds fewer than two labels,
            holds labels not seen in training, or a class has no
            calibration records.
        AlreadyTrainedError
            If this instance is already trained.
        """
        X_cal, y_cal = self._start_training(split)
        scores = self.ncm.score(X_cal, y_cal)
        if np.isnan(scores).any():
            raise InvalidInputError("Nonconformity measure produced NaN calibration scores")

        labels = as_class_labels(self.ncm.labels_)
        calibration = {}
        for label in labels:
            class_scores = np.sort(scores[y_cal == label])
            if len(class_scores) == 0:
                raise InvalidInputError(
                    f"No calibration records for class {label}; every class seen "
                    f"in training needs calibration records"
                )
            calibration[label] = class_scores

        self.labels_ = labels
        self.calibration_scores_ = calibration
        self.n_calibration_ = len(y_cal)
        return self

    def predict_pvalues(self, records: Union[Record, Sequence[Record]]) -> np.ndarray:
        """
        P-values for every record and label.

        Returns
        -------
        pvalues : np.ndarray, shape (n, n_labels)
            Columns ordered as ``labels_``
        """
        self._check_trained()
        records, _ = as_record_list(records)
        ncs = self.ncm.score_matrix(self._matrix(records))
        pvalues = np.empty_like(ncs)
        for col, label in enumerate(self.labels_):
            pvalues[:, col] = self.pvalue_calculator.pvalues(
                ncs[:, col], self.calibration_scores_[label]
            )
        return pvalues

    def predict(
        self,
        records: Union[Record, Sequence[Record]]
    ) -> Union[Dict[Any, float], List[Dict[Any, float]]]:
        """
        Label -> p-value mapping for one record, or a list of them.
        """
        records, single = as_record_list(records)
        pvalues = self.predict_pvalues(records)
        result = [dict(zip(self.labels_, row.tolist())) for row in pvalues]
        return result[0] if single else result

    def predict_set(
        self,
        records: Union[Record, Sequence[Record]],
        confidence: float = 0.8
    ) -> Union[List[Any], List[List[Any]]]:
        """
        Prediction sets: labels whose p-value exceeds 1 - confidence.

        Parameters
        ----------
        records : Record or sequence of Record
        confidence : float, optional (default=0.8)

        Returns
        -------
        prediction_sets : list
            One list of labels per record (a single list for a single record)
        """
        confidence = float(_check_confidences(confidence)[0])
        records, single = as_record_list(records)
        pvalues = self.predict_pvalues(records)
        sets = [
            [label for label, p in zip(self.labels_, row) if p > 1 - confidence]
            for row in pvalues
        ]
        return sets[0] if single else sets

    def feature_gradient(self, record: Record, step: float = 1e-4) -> Dict[int, Dict[Any, float]]:
        """
        Finite-difference sensitivity of the nonconformity scores.

        Parameters
        ----------
        record : Record
        step : float, optional (default=1e-4)
            Shift applied to one present feature at a time

        Returns
        -------
        gradient : dict of {feature index: {label: d ncs / d x}}
        """
        self._check_trained()
        if step <= 0:
            raise InvalidInputError(f"step must be > 0, got {step}")
        X, features = _perturbed_matrix(record, self.n_features_, step)
        ncs = self.ncm.score_matrix(X)
        grad = (ncs[1:] - ncs[0]) / step
        return {
            idx: dict(zip(self.labels_, grad[row].tolist()))
            for row, idx in enumerate(features)
        }


class ICPRegressor(_ICPBase):
    """
    Inductive conformal regressor.

    The interval at confidence c is ŷ ± σ·q, where q is the calibration
    score returned by the p-value calculator for c (the ⌈c(n+1)⌉-th
    smallest score for the standard calculator) and σ the NCM scaling.

    Parameters
    ----------
    ncm : RegressionNCM
    pvalue_calculator : PValueCalculator, optional
        Defaults to StandardPValue
    cap_intervals : bool, optional (default=False)
        Clip interval bounds to the range of labels seen in training

    Attributes
    ----------
    calibration_scores_ : np.ndarray
        Sorted calibration scores
    min_label_, max_label_ : float
        Smallest and largest label of the training split
    """

    classification = False

    def __init__(
        self,
        ncm: RegressionNCM,
        pvalue_calculator: Optional[PValueCalculator] = None,
        cap_intervals: bool = False
    ):
        if not isinstance(ncm, RegressionNCM):
            raise InvalidInputError(
                f"ICPRegressor needs a RegressionNCM, got {type(ncm).__name__}"
            )
        super().__init__(ncm, pvalue_calculator)
        self.cap_intervals = cap_intervals
        self.calibration_scores_ = None
        self.min_label_ = None
        self.max_label_ = None

    def clone(self) -> 'ICPRegressor':
        return type(self)(self.ncm.clone(), self.pvalue_calculator.clone(), self.cap_intervals)

    def train(self, split: TrainSplit) -> 'ICPRegressor':
        """Fit the NCM on the proper training set and calibrate."""
        X_cal, y_cal = self._start_training(split)
        scores = self.ncm.score(X_cal, y_cal)
        if np.isnan(scores).any():
            raise InvalidInputError("Nonconformity measure produced NaN calibration scores")

        self.calibration_scores_ = np.sort(scores)
        self.min_label_ = float(split.min_label)
        self.max_label_ = float(split.max_label)
        self.n_calibration_ = len(y_cal)
        return self

    def predict_midpoints(self, records: Union[Record, Sequence[Record]]):
        """Midpoints and scalings of the intervals."""
        self._check_trained()
        records, _ = as_record_list(records)
        return self.ncm.predict(self._matrix(records))

    def predict_intervals(
        self,
        records: Union[Record, Sequence[Record]],
        confidences: Union[float, Sequence[float]] = (0.8,)
    ) -> np.ndarray:
        """
        Prediction intervals for every record and confidence.

        Returns
        -------
        intervals : np.ndarray, shape (n, n_confidences, 2)
            Lower and upper bounds. Bounds are infinite when the confidence
            exceeds n/(n+1) (and capping is off).
        """
        confidences = _check_confidences(confidences)
        midpoints, scalings = self.predict_midpoints(records)
        quantiles = np.array([
            self.pvalue_calculator.ncs_at_confidence(c, self.calibration_scores_)
            for c in confidences
        ])
        half_widths = scalings[:, None] * quantiles[None, :]
        intervals = np.stack(
            [midpoints[:, None] - half_widths, midpoints[:, None] + half_widths],
            axis=-1
        )
        if self.cap_intervals:
            intervals = np.clip(intervals, self.min_label_, self.max_label_)
        return intervals

    def predict(
        self,
        records: Union[Record, Sequence[Record]],
        confidences: Union[float, Sequence[float]] = (0.8,)
    ):
        """
        Confidence -> (lower, upper) mapping for one record, or a list of them.
        """
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
        """
        Confidence attained by an interval of a given total width.

        Inverse of ``predict_intervals``: for width w and scaling σ the
        confidence is 1 - p(w / 2σ).

        Returns
        -------
        confidences : np.ndarray, shape (n, n_widths)
        """
        widths = np.atleast_1d(np.asarray(widths, dtype=float))
        if np.any(widths < 0):
            raise InvalidInputError("widths must be >= 0")
        _, scalings = self.predict_midpoints(records)
        ncs = widths[None, :] / (2.0 * scalings[:, None])
        pvalues = self.pvalue_calculator.pvalues(ncs.ravel(), self.calibration_scores_)
        return np.clip(1.0 - pvalues.reshape(ncs.shape), 0.0, 1.0)

    def feature_gradient(self, record: Record, step: float = 1e-4) -> Dict[int, float]:
        """
        Finite-difference sensitivity of the predicted midpoint.

        Returns
        -------
        gradient : dict of {feature index: d ŷ / d x}
        """
        self._check_trained()
        if step <= 0:
            raise InvalidInputError(f"step must be > 0, got {step}")
        X, features = _perturbed_matrix(record, self.n_features_, step)
        midpoints, _ = self.ncm.predict(X)
        grad = (midpoints[1:] - midpoints[0]) / step
        return dict(zip(features, grad.tolist()))
