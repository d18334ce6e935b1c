"""
Records, Datasets and Calibration Splits

Data containers shared by every predictor. Records hold a sparse feature
vector and a label; a Dataset is an immutable ordered collection of records
plus two optional exclusive partitions that always land in a fixed part of
a calibration split. Conversion to scipy CSR matrices happens here so the
rest of the library can hand matrices straight to scikit-learn.

"""

from dataclasses import dataclass, field
from typing import Dict, Iterable, List, Mapping, Optional, Sequence, Tuple, Union

import numpy as np
import pandas as pd
from scipy import sparse

from .exceptions import InvalidInputError


@dataclass(frozen=True)
class Record:
    """
    One labeled example with a sparse feature vector.

    Parameters
    ----------
    indices : tuple of int
        Feature indices, non-negative, unique and strictly ascending
    values : tuple of float
        Feature values, same length as ``indices``
    label : int or float
        Class id (classification) or real-valued target (regression)

    Examples
    --------
    >>> r = Record.from_mapping({0: 1.5, 3: -2.0}, label=1)
    >>> r.indices, r.values
    ((0, 3), (1.5, -2.0))
    """

    indices: Tuple[int, ...]
    values: Tuple[float, ...]
    label: Union[int, float] = 0

    def __post_init__(self):
        indices = tuple(int(i) for i in self.indices)
        values = tuple(float(v) for v in self.values)

        if len(indices) != len(values):
            raise InvalidInputError(
                f"Length mismatch: indices ({len(indices)}) vs values ({len(values)})"
            )
        if indices and indices[0] < 0:
            raise InvalidInputError(f"Feature indices must be >= 0, got {indices[0]}")
        if any(b <= a for a, b in zip(indices, indices[1:])):
            raise InvalidInputError(
                "Feature indices must be unique and strictly ascending"
            )
        if not np.all(np.isfinite(values)):
            raise InvalidInputError("Feature values must be finite")
        if not np.isfinite(self.label):
            raise InvalidInputError(f"Label must be finite, got {self.label}")

        object.__setattr__(self, 'indices', indices)
        object.__setattr__(self, 'values', values)

    @classmethod
    def from_mapping(cls, features: Mapping[int, float], label: Union[int, float] = 0) -> 'Record':
        """Build a record from an index -> value mapping (any order)."""
        items = sorted(features.items())
        return cls(tuple(i for i, _ in items), tuple(v for _, v in items), label)

    @classmethod
    def from_dense(cls, row: Sequence[float], label: Union[int, float] = 0) -> 'Record':
        """Build a record from a dense row, dropping zero entries."""
        row = np.asarray(row, dtype=float).ravel()
        nz = np.flatnonzero(row)
        return cls(tuple(nz.tolist()), tuple(row[nz].tolist()), label)

    @property
    def n_features(self) -> int:
        """Smallest feature dimension that can hold this record."""
        return self.indices[-1] + 1 if self.indices else 0

    def as_dict(self) -> Dict[int, float]:
        return dict(zip(self.indices, self.values))

    def with_label(self, label: Union[int, float]) -> 'Record':
        """Copy of this record carrying another label."""
        return Record(self.indices, self.values, label)


def to_matrix(
    records: Sequence[Record],
    n_features: int
) -> Tuple[sparse.csr_matrix, np.ndarray]:
    """
    Convert records into a CSR feature matrix and a label vector.

    Features with an index >= ``n_features`` are dropped: a model trained
    on ``n_features`` columns has no weight for them.

    Parameters
    ----------
    records : sequence of Record
    n_features : int
        Number of matrix columns

    Returns
    -------
    X : scipy.sparse.csr_matrix, shape (n, n_features)
    y : np.ndarray, shape (n,)
    """
    indptr = [0]
    indices: List[int] = []
    data: List[float] = []
    labels = np.empty(len(records), dtype=float)

    for i, rec in enumerate(records):
        for idx, val in zip(rec.indices, rec.values):
            if idx < n_features:
                indices.append(idx)
                data.append(val)
        indptr.append(len(indices))
        labels[i] = rec.label

    X = sparse.csr_matrix(
        (np.asarray(data, dtype=float), np.asarray(indices, dtype=np.int64), np.asarray(indptr)),
        shape=(len(records), n_features)
    )
    return X, labels


class Dataset:
    """
    Immutable ordered collection of records.

    Parameters
    ----------
    records : iterable of Record
        Records that the calibration samplers may place anywhere
    calibration_exclusive : iterable of Record, optional
        Records that always end up in the calibration set
    modeling_exclusive : iterable of Record, optional
        Records that always end up in the proper training set
    n_features : int, optional
        Feature dimension. Inferred from the largest index when omitted.

    Notes
    -----
    The three partitions are pairwise disjoint (checked by identity, so two
    equal records in different partitions are allowed as long as they are
    separate objects). Nothing in the library mutates a Dataset; operations
    such as ``shuffled`` or ``subset`` return new instances.
    """

    def __init__(
        self,
        records: Iterable[Record] = (),
        calibration_exclusive: Iterable[Record] = (),
        modeling_exclusive: Iterable[Record] = (),
        n_features: Optional[int] = None
    ):
        self.records = tuple(records)
        self.calibration_exclusive = tuple(calibration_exclusive)
        self.modeling_exclusive = tuple(modeling_exclusive)

        for part in (self.records, self.calibration_exclusive, self.modeling_exclusive):
            for rec in part:
                if not isinstance(rec, Record):
                    raise InvalidInputError(
                        f"Dataset entries must be Record instances, got {type(rec).__name__}"
                    )

        seen = set()
        for part in (self.records, self.calibration_exclusive, self.modeling_exclusive):
            part_ids = {id(rec) for rec in part}
            if seen & part_ids:
                raise InvalidInputError(
                    "Normal, calibration-exclusive and modeling-exclusive records must be disjoint"
                )
            seen |= part_ids

        inferred = max((r.n_features for r in self.all_records), default=0)
        if n_features is None:
            n_features = inferred
        elif n_features < inferred:
            raise InvalidInputError(
                f"n_features={n_features} is smaller than the largest feature index + 1 ({inferred})"
            )
        self.n_features = max(int(n_features), 1)

    @classmethod
    def from_arrays(
        cls,
        X: Union[np.ndarray, sparse.spmatrix, pd.DataFrame],
        y: Union[np.ndarray, pd.Series, Sequence[float]]
    ) -> 'Dataset':
        """
        Build a dataset from a feature matrix and a label vector.

        Parameters
        ----------
        X : array-like or sparse matrix, shape (n, n_features)
        y : array-like, shape (n,)
        """
        if isinstance(X, pd.DataFrame):
            X = X.to_numpy(dtype=float)
        y = np.asarray(y)
        if X.shape[0] != len(y):
            raise InvalidInputError(
                f"Length mismatch: X ({X.shape[0]}) vs y ({len(y)})"
            )

        X = sparse.csr_matrix(X, dtype=float)
        X.sort_indices()
        X.eliminate_zeros()
        labels = y.tolist()
        records = [
            Record(
                tuple(X.indices[X.indptr[i]:X.indptr[i + 1]].tolist()),
                tuple(X.data[X.indptr[i]:X.indptr[i + 1]].tolist()),
                labels[i]
            )
            for i in range(X.shape[0])
        ]
        return cls(records, n_features=X.shape[1])

    def __len__(self) -> int:
        return len(self.records) + len(self.calibration_exclusive) + len(self.modeling_exclusive)

    def __repr__(self) -> str:
        return (
            f"Dataset(records={len(self.records)}, "
            f"calibration_exclusive={len(self.calibration_exclusive)}, "
            f"modeling_exclusive={len(self.modeling_exclusive)}, "
            f"n_features={self.n_features})"
        )

    @property
    def all_records(self) -> Tuple[Record, ...]:
        return self.records + self.calibration_exclusive + self.modeling_exclusive

    @property
    def labels(self) -> np.ndarray:
        """Labels of the normal (non-exclusive) records."""
        return np.array([r.label for r in self.records], dtype=float)

    @property
    def classes(self) -> np.ndarray:
        """Sorted distinct labels over all partitions."""
        return np.unique([r.label for r in self.all_records])

    def to_matrix(
        self,
        records: Optional[Sequence[Record]] = None
    ) -> Tuple[sparse.csr_matrix, np.ndarray]:
        """CSR matrix and labels of ``records`` (default: all partitions)."""
        if records is None:
            records = self.all_records
        return to_matrix(records, self.n_features)

    def subset(self, indices: Sequence[int]) -> 'Dataset':
        """New dataset with the given normal records and the same exclusive sets."""
        return Dataset(
            [self.records[i] for i in indices],
            self.calibration_exclusive,
            self.modeling_exclusive,
            n_features=self.n_features
        )

    def shuffled(self, seed: int) -> 'Dataset':
        """New dataset with the normal records in a seeded random order."""
        order = np.random.default_rng(seed).permutation(len(self.records))
        return self.subset(order)

    def without_exclusive(self) -> 'Dataset':
        """All records as normal records, with no exclusive sets."""
        return Dataset(self.all_records, n_features=self.n_features)


@dataclass(frozen=True)
class TrainSplit:
    """
    One (proper training, calibration) partition for an aggregation member.

    Attributes
    ----------
    proper_training : tuple of Record
        Records used to fit the nonconformity measure
    calibration : tuple of Record
        Records used to compute calibration scores
    index : int
        Member index this split was generated for
    seed : int
        Sampler seed the split was generated with
    """

    proper_training: Tuple[Record, ...]
    calibration: Tuple[Record, ...]
    index: int = 0
    seed: Optional[int] = None
    n_features: int = field(default=0, compare=False)

    def __post_init__(self):
        object.__setattr__(self, 'proper_training', tuple(self.proper_training))
        object.__setattr__(self, 'calibration', tuple(self.calibration))
        if self.n_features <= 0:
            inferred = max(
                (r.n_features for r in self.proper_training + self.calibration),
                default=0
            )
            object.__setattr__(self, 'n_features', max(inferred, 1))

    @property
    def n_training_records(self) -> int:
        """Total number of records in both parts."""
        return len(self.proper_training) + len(self.calibration)

    @property
    def min_label(self) -> float:
        return min(r.label for r in self.proper_training + self.calibration)

    @property
    def max_label(self) -> float:
        return max(r.label for r in self.proper_training + self.calibration)

    def validate(self, classification: bool = False) -> None:
        """
        Check that the split can calibrate a predictor.

        Raises
        ------
        InvalidInputError
            If either part is empty, or (classification) the calibration
            set holds fewer than two distinct labels.
        """
        if not self.proper_training:
            raise InvalidInputError(f"Split {self.index}: proper training set is empty")
        if not self.calibration:
            raise InvalidInputError(f"Split {self.index}: calibration set is empty")
        if classification:
            n_labels = len({r.label for r in self.calibration})
            if n_labels < 2:
                raise InvalidInputError(
                    f"Split {self.index}: calibration set must contain >= 2 distinct "
                    f"labels, got {n_labels}"
                )


def as_class_labels(values) -> list:
    """Python labels for class ids: integral values become ints."""
    return [
        int(v) if float(v).is_integer() else float(v)
        for v in np.asarray(values, dtype=float).tolist()
    ]
