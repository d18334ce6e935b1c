"""
Predictor Contract and Aggregation Scaffolding

Every predictor exposes the same small surface so that TestRunner and
GridSearch can drive any of them: ``clone``, ``train(dataset)``,
``get_params`` / ``set_params``, ``set_seed`` and ``is_trained``.

"""

import warnings
from typing import Any, Dict, List, Optional, Sequence, Tuple, Union

from ..data import Dataset, Record, TrainSplit
from ..exceptions import InvalidInputError, UntrainedPredictorError
from ..sampling import CalibrationSampler


def as_record_list(records: Union[Record, Sequence[Record]]) -> Tuple[List[Record], bool]:
    """Normalize a single record or a sequence of records; flag single input."""
    if isinstance(records, Record):
        return [records], True
    if isinstance(records, Dataset):
        return list(records.all_records), False
    records = list(records)
    for rec in records:
        if not isinstance(rec, Record):
            raise InvalidInputError(
                f"Expected Record instances, got {type(rec).__name__}"
            )
    return records, False


class Predictor:
    """
    Base class of all predictors.

    Attributes
    ----------
    seed : int
        Seed for every randomized step of training
    classification : bool
        Whether labels are class ids
    """

    classification = True

    def __init__(self, seed: int = 42):
        self.seed = seed

    @property
    def is_trained(self) -> bool:
        raise NotImplementedError

    def train(self, dataset: Dataset, **kwargs) -> 'Predictor':
        raise NotImplementedError

    def clone(self) -> 'Predictor':
        """Untrained copy with identical parameters and seed."""
        raise NotImplementedError

    def get_params(self) -> Dict[str, Any]:
        raise NotImplementedError

    def set_params(self, **params) -> 'Predictor':
        raise NotImplementedError

    def set_seed(self, seed: int) -> None:
        self.seed = seed

    def _check_trained(self):
        if not self.is_trained:
            raise UntrainedPredictorError(
                f"{type(self).__name__} not trained. Call .train() first."
            )


class AggregatedPredictor(Predictor):
    """
    Ensemble of members, one per split of a CalibrationSampler.

    Members can be trained all at once or one at a time (``member_index``),
    which allows training them on separate machines and merging the saved
    bundles afterwards. Members are always combined in index order.

    Parameters
    ----------
    sampler : CalibrationSampler
        Produces one TrainSplit per member
    seed : int, optional (default=42)
        Sampler seed, persisted with the model

    Attributes
    ----------
    members_ : dict of {int: member}
        Trained members by split index
    """

    def __init__(self, sampler: CalibrationSampler, seed: int = 42):
        super().__init__(seed)
        if not isinstance(sampler, CalibrationSampler):
            raise InvalidInputError(
                f"sampler must be a CalibrationSampler, got {type(sampler).__name__}"
            )
        self.sampler = sampler
        self.members_: Dict[int, Any] = {}

    @property
    def n_members(self) -> int:
        """Number of members of the fully trained model."""
        return self.sampler.n_splits

    @property
    def trained_member_indices(self) -> List[int]:
        return sorted(self.members_)

    @property
    def is_trained(self) -> bool:
        return len(self.members_) == self.n_members

    @property
    def is_partially_trained(self) -> bool:
        return 0 < len(self.members_) < self.n_members

    def train(
        self,
        dataset: Dataset,
        member_index: Optional[int] = None,
        verbose: bool = True
    ) -> 'AggregatedPredictor':
        """
        Train all members, or only the member with index ``member_index``.

        Training all members discards previously trained ones. Training a
        single member replaces that member only.

        Parameters
        ----------
        dataset : Dataset
            Full training data (split internally by the sampler)
        member_index : int, optional
            Train only this member
        verbose : bool, optional (default=True)
            Print training progress

        Returns
        -------
        self
        """
        if member_index is None:
            indices = list(range(self.n_members))
            self.members_ = {}
        else:
            if not 0 <= member_index < self.n_members:
                raise InvalidInputError(
                    f"member_index must be in [0, {self.n_members}), got {member_index}"
                )
            indices = [member_index]
        self._prepare(dataset)

        if verbose:
            print(f"\n{'='*60}")
            print(f"TRAINING {type(self).__name__.upper()}")
            print(f"{'='*60}")
            print(f"Records: {len(dataset)}")
            print(f"Sampler: {self.sampler!r} (seed={self.seed})")
            print(f"Members to train: {len(indices)} of {self.n_members}")

        trained = {}
        for index in indices:
            split = self.sampler.get_split(
                dataset, self.seed, index, classification=self.classification
            )
            trained[index] = self._train_member(split)
            if verbose:
                print(f"  ✓ Member {index}: {len(split.proper_training)} training, "
                      f"{len(split.calibration)} calibration records")

        self.members_.update(trained)

        if verbose:
            print(f"  ✓ {len(self.members_)}/{self.n_members} members trained")
        return self

    def _prepare(self, dataset: Dataset) -> None:
        """Hook run before member training (e.g. to record label sets)."""

    def _train_member(self, split: TrainSplit):
        raise NotImplementedError

    def _ordered_members(self) -> List[Any]:
        """Trained members in index order; warns when some are missing."""
        if not self.members_:
            raise UntrainedPredictorError(
                f"{type(self).__name__} not trained. Call .train() first."
            )
        if self.is_partially_trained:
            warnings.warn(
                f"{type(self).__name__} is partially trained "
                f"({len(self.members_)}/{self.n_members} members); predictions "
                f"aggregate the trained members only."
            )
        return [self.members_[i] for i in sorted(self.members_)]

    def set_seed(self, seed: int) -> None:
        if seed != self.seed:
            self.members_ = {}
        self.seed = seed

    def _sampler_param_names(self) -> List[str]:
        return list(self.sampler.get_params())

    def _split_params(self, params: Dict[str, Any]):
        sampler_names = set(self._sampler_param_names())
        sampler_params = {k: v for k, v in params.items() if k in sampler_names}
        other = {k: v for k, v in params.items() if k not in sampler_names}
        return sampler_params, other
