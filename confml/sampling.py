"""
Calibration Set Samplers

Strategies that partition a Dataset into (proper training, calibration)
pairs, one per aggregation member. Every split is a pure function of
(dataset, seed, member index): ``get_split`` can rebuild member 3 of 10 on
another machine and get exactly the records a local run would use.

Calibration-exclusive records always go to the calibration set and
modeling-exclusive records always to the proper training set.

"""

from itertools import islice
from typing import Any, Dict, Iterator, Sequence

import numpy as np
from sklearn.model_selection import KFold, StratifiedKFold, train_test_split

from .data import Dataset, TrainSplit
from .exceptions import InvalidInputError


def derive_seed(seed: int, *keys: int) -> int:
    """
    Deterministic 32-bit seed from a base seed and integer keys.

    Used wherever scikit-learn or numpy need their own ``random_state``;
    no global random state is touched.
    """
    entropy = [int(seed) & 0xFFFFFFFF] + [int(k) for k in keys]
    return int(np.random.SeedSequence(entropy).generate_state(1)[0])


class CalibrationSampler:
    """
    Base class for calibration samplers.

    Parameters
    ----------
    n_splits : int
        Number of splits (aggregation members) this sampler yields
    stratified : bool, optional (default=False)
        Keep class proportions in every split (classification only)
    """

    name = 'base'

    def __init__(self, n_splits: int = 1, stratified: bool = False):
        if n_splits < 1:
            raise InvalidInputError(f"n_splits must be >= 1, got {n_splits}")
        self.n_splits = int(n_splits)
        self.stratified = bool(stratified)

    def __repr__(self) -> str:
        params = ", ".join(f"{k}={v!r}" for k, v in self.get_params().items())
        return f"{type(self).__name__}({params})"

    def get_params(self) -> Dict[str, Any]:
        return {'n_splits': self.n_splits, 'stratified': self.stratified}

    def set_params(self, **params) -> 'CalibrationSampler':
        unknown = set(params) - set(self.get_params())
        if unknown:
            raise InvalidInputError(
                f"Unknown parameter(s) for {type(self).__name__}: {sorted(unknown)}"
            )
        updated = dict(self.get_params(), **params)
        self.__init__(**updated)
        return self

    def clone(self) -> 'CalibrationSampler':
        return type(self)(**self.get_params())

    def splits(
        self,
        dataset: Dataset,
        seed: int,
        classification: bool = False
    ) -> Iterator[TrainSplit]:
        """
        Lazily yield all ``n_splits`` splits in member order.

        Calling it again with the same arguments yields the same splits.
        """
        for index in range(self.n_splits):
            yield self.get_split(dataset, seed, index, classification=classification)

    def get_split(
        self,
        dataset: Dataset,
        seed: int,
        index: int,
        classification: bool = False
    ) -> TrainSplit:
        """
        Split for aggregation member ``index``.

        Parameters
        ----------
        dataset : Dataset
        seed : int
            Sampler seed, shared by all members of one aggregated model
        index : int
            Member index in [0, n_splits)
        classification : bool, optional (default=False)
            Labels are class ids; enables stratification and class checks

        Raises
        ------
        InvalidInputError
            If the index is out of range or the dataset cannot be split
        """
        if not 0 <= index < self.n_splits:
            raise InvalidInputError(
                f"Split index must be in [0, {self.n_splits}), got {index}"
            )
        if self.stratified and not classification:
            raise InvalidInputError("Stratified sampling is only available for classification")
        if len(dataset.records) < 2:
            raise InvalidInputError(
                f"Need >= 2 records to split, got {len(dataset.records)}"
            )
        return self._split(dataset, seed, index, classification)

    def _split(self, dataset, seed, index, classification) -> TrainSplit:
        raise NotImplementedError

    @staticmethod
    def _assemble(
        dataset: Dataset,
        train_idx: Sequence[int],
        calib_idx: Sequence[int],
        seed: int,
        index: int
    ) -> TrainSplit:
        records = dataset.records
        return TrainSplit(
            proper_training=tuple(records[i] for i in train_idx) + dataset.modeling_exclusive,
            calibration=tuple(records[i] for i in calib_idx) + dataset.calibration_exclusive,
            index=index,
            seed=seed,
            n_features=dataset.n_features
        )

    @staticmethod
    def _check_class_counts(labels: np.ndarray, minimum: int, what: str) -> None:
        classes, counts = np.unique(labels, return_counts=True)
        too_small = counts < minimum
        if too_small.any():
            detail = ", ".join(
                f"{c:g} ({n} records)" for c, n in zip(classes[too_small], counts[too_small])
            )
            raise InvalidInputError(
                f"Every class needs >= {minimum} records for {what}; too few in: {detail}"
            )


class RandomSampler(CalibrationSampler):
    """
    Random calibration split(s).

    Each member draws its own random calibration set of
    ``calibration_ratio`` of the records. With ``n_splits=1`` this is the
    single split of a plain ICP.

    Parameters
    ----------
    calibration_ratio : float, optional (default=0.2)
        Fraction of the (non-exclusive) records used for calibration
    n_splits : int, optional (default=1)
    stratified : bool, optional (default=False)
    """

    name = 'Random'

    def __init__(self, calibration_ratio: float = 0.2, n_splits: int = 1, stratified: bool = False):
        if not 0 < calibration_ratio < 1:
            raise InvalidInputError(
                f"calibration_ratio must be in (0,1), got {calibration_ratio}"
            )
        super().__init__(n_splits, stratified)
        self.calibration_ratio = float(calibration_ratio)

    def get_params(self) -> Dict[str, Any]:
        return dict(super().get_params(), calibration_ratio=self.calibration_ratio)

    def _split(self, dataset, seed, index, classification) -> TrainSplit:
        n = len(dataset.records)
        n_calib = int(np.ceil(self.calibration_ratio * n))
        if not 1 <= n_calib <= n - 1:
            raise InvalidInputError(
                f"calibration_ratio={self.calibration_ratio} leaves an empty part "
                f"with {n} records"
            )

        stratify = None
        if self.stratified:
            stratify = dataset.labels
            self._check_class_counts(stratify, 2, "a stratified random split")

        train_idx, calib_idx = train_test_split(
            np.arange(n),
            test_size=n_calib,
            random_state=derive_seed(seed, index),
            stratify=stratify
        )
        return self._assemble(dataset, train_idx, calib_idx, seed, index)


class FoldedSampler(CalibrationSampler):
    """
    Disjoint calibration folds.

    The records are shuffled once per seed and cut into ``n_folds`` folds;
    member i calibrates on fold i and trains on the rest, so every record
    is a calibration record exactly once across the members.

    Parameters
    ----------
    n_folds : int, optional (default=10)
    stratified : bool, optional (default=False)

    Notes
    -----
    For classification, every class must have at least ``n_folds``
    records; otherwise some fold would miss a class and the sampler fails
    immediately instead.
    """

    name = 'Folded'

    def __init__(self, n_folds: int = 10, stratified: bool = False):
        if n_folds < 2:
            raise InvalidInputError(f"n_folds must be >= 2, got {n_folds}")
        super().__init__(n_folds, stratified)

    @property
    def n_folds(self) -> int:
        return self.n_splits

    def get_params(self) -> Dict[str, Any]:
        return {'n_folds': self.n_folds, 'stratified': self.stratified}

    def _split(self, dataset, seed, index, classification) -> TrainSplit:
        n = len(dataset.records)
        if n < self.n_folds:
            raise InvalidInputError(
                f"Cannot make {self.n_folds} calibration folds from {n} records"
            )
        labels = dataset.labels
        if classification:
            self._check_class_counts(labels, self.n_folds, f"{self.n_folds} calibration folds")

        if self.stratified:
            splitter = StratifiedKFold(self.n_folds, shuffle=True, random_state=derive_seed(seed))
        else:
            splitter = KFold(self.n_folds, shuffle=True, random_state=derive_seed(seed))

        train_idx, calib_idx = next(islice(splitter.split(np.zeros((n, 1)), labels), index, None))
        return self._assemble(dataset, train_idx, calib_idx, seed, index)


class BootstrapSampler(CalibrationSampler):
    """
    Bootstrap splits.

    Each member draws n records with replacement; the distinct drawn
    records form the proper training set and the out-of-bag records form
    the calibration set. Both parts together hold every record exactly
    once.

    Parameters
    ----------
    n_splits : int, optional (default=10)
    stratified : bool, optional (default=False)
        Bootstrap within each class separately
    """

    name = 'Bootstrap'

    def __init__(self, n_splits: int = 10, stratified: bool = False):
        super().__init__(n_splits, stratified)

    def _split(self, dataset, seed, index, classification) -> TrainSplit:
        n = len(dataset.records)
        rng = np.random.default_rng(derive_seed(seed, index))

        if self.stratified:
            labels = dataset.labels
            self._check_class_counts(labels, 2, "a stratified bootstrap")
            drawn = np.concatenate([
                rng.choice(members, size=len(members), replace=True)
                for members in (np.flatnonzero(labels == c) for c in np.unique(labels))
            ])
        else:
            drawn = rng.integers(0, n, size=n)

        in_bag = np.unique(drawn)
        out_of_bag = np.setdiff1d(np.arange(n), in_bag)
        if len(out_of_bag) == 0:
            raise InvalidInputError(
                f"Bootstrap sample {index} left no out-of-bag records for calibration"
            )
        # Unique order of first appearance keeps the draw order
        _, first = np.unique(drawn, return_index=True)
        train_idx = drawn[np.sort(first)]
        return self._assemble(dataset, train_idx, rng.permutation(out_of_bag), seed, index)


SAMPLERS = {
    cls.name: cls
    for cls in (RandomSampler, FoldedSampler, BootstrapSampler)
}
