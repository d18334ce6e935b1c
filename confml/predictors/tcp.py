"""
Transductive Conformal Classifier

No calibration set: to test the hypothesis "record x has label L", the
nonconformity measure is refit on the training data plus (x, L), and the
score of (x, L) is ranked among the scores of the training records that
carry label L, all computed under that same refit model.

Every prediction costs one full refit per candidate label and record;
``retrains_per_prediction`` and ``estimated_retrains`` state this up front.

"""

from typing import Any, Dict, Optional, Sequence, Union

import numpy as np
from scipy import sparse

from ..data import Dataset, Record, as_class_labels, to_matrix
from ..exceptions import InvalidInputError
from ..nonconformity.classification import ClassificationNCM
from ..nonconformity.pvalues import PValueCalculator, StandardPValue
from .base import Predictor, as_record_list
from .icp import _check_confidences


class TCPClassifier(Predictor):
    """
    Mondrian transductive conformal classifier.

    Parameters
    ----------
    ncm : ClassificationNCM
        Template measure, cloned for every refit
    pvalue_calculator : PValueCalculator, optional
        Defaults to StandardPValue
    seed : int, optional (default=42)
        Passed to the scoring algorithm's ``random_state`` where it has one

    Attributes
    ----------
    labels_ : list
        Candidate labels (classes of the training data)
    n_train_ : int
        Number of training records

    Notes
    -----
    Predicting n records costs n × len(labels_) refits of the scoring
    algorithm on n_train_ + 1 records.
    """

    classification = True

    def __init__(
        self,
        ncm: ClassificationNCM,
        pvalue_calculator: Optional[PValueCalculator] = None,
        seed: int = 42
    ):
        if not isinstance(ncm, ClassificationNCM):
            raise InvalidInputError(
                f"TCPClassifier needs a ClassificationNCM, got {type(ncm).__name__}"
            )
        super().__init__(seed)
        self.ncm = ncm
        self.pvalue_calculator = pvalue_calculator if pvalue_calculator is not None else StandardPValue()
        self.ncm.set_seed(seed)
        self.labels_ = None
        self.n_train_ = None
        self._X = None
        self._y = None
        self._n_features = None

    def __repr__(self) -> str:
        return f"TCPClassifier({self.ncm!r}, {self.pvalue_calculator!r}, seed={self.seed})"

    @property
    def is_trained(self) -> bool:
        return self._X is not None

    @property
    def retrains_per_prediction(self) -> int:
        """Refits needed to predict one record (one per candidate label)."""
        self._check_trained()
        return len(self.labels_)

    def estimated_retrains(self, n_records: int) -> int:
        """Refits needed to predict ``n_records`` records."""
        return n_records * self.retrains_per_prediction

    def clone(self) -> 'TCPClassifier':
        return TCPClassifier(self.ncm.clone(), self.pvalue_calculator.clone(), self.seed)

    def get_params(self) -> Dict[str, Any]:
        return self.ncm.get_params()

    def set_params(self, **params) -> 'TCPClassifier':
        self.ncm.set_params(**params)
        return self

    def set_seed(self, seed: int) -> None:
        self.seed = seed
        self.ncm.set_seed(seed)

    def train(self, dataset: Dataset, verbose: bool = True) -> 'TCPClassifier':
        """
        Store the training data. No model is fitted until prediction.

        Raises
        ------
        InvalidInputError
            If the data holds fewer than two classes.
        """
        labels = as_class_labels(dataset.classes)
        if len(labels) < 2:
            raise InvalidInputError(
                f"Classification needs >= 2 classes, got {len(labels)}"
            )
        X, y = dataset.to_matrix()
        self._X, self._y = X, y
        self._n_features = dataset.n_features
        self.labels_ = labels
        self.n_train_ = len(y)

        if verbose:
            print(f"✓ TCPClassifier stored {self.n_train_} training records "
                  f"({len(labels)} labels, {len(labels)} refits per prediction)")
        return self

    def _pvalue(self, x, label) -> float:
        ncm = self.ncm.clone()
        X_aug = sparse.vstack([self._X, x], format='csr')
        y_aug = np.append(self._y, float(label))
        ncm.fit(X_aug, y_aug)

        scores = ncm.score(X_aug, y_aug)
        same_label = np.sort(scores[:-1][self._y == label])
        return float(self.pvalue_calculator.pvalues(scores[-1], same_label)[0])

    def predict_pvalues(self, records: Union[Record, Sequence[Record]], verbose: bool = False) -> np.ndarray:
        """
        P-values for every record and label (one refit per pair).

        Returns
        -------
        pvalues : np.ndarray, shape (n, n_labels)
        """
        self._check_trained()
        records, _ = as_record_list(records)
        X_test, _ = to_matrix(records, self._n_features)

        if verbose:
            print(f"TCP: {self.estimated_retrains(len(records))} refits "
                  f"for {len(records)} record(s)")

        pvalues = np.empty((len(records), len(self.labels_)))
        for i in range(len(records)):
            for col, label in enumerate(self.labels_):
                pvalues[i, col] = self._pvalue(X_test[i], label)
        return pvalues

    def predict(self, records: Union[Record, Sequence[Record]]):
        """Label -> p-value mapping for one record, or a list of them."""
        records, single = as_record_list(records)
        pvalues = self.predict_pvalues(records)
        result = [dict(zip(self.labels_, row.tolist())) for row in pvalues]
        return result[0] if single else result

    def predict_set(self, records: Union[Record, Sequence[Record]], confidence: float = 0.8):
        """Labels whose p-value exceeds 1 - confidence."""
        confidence = float(_check_confidences(confidence)[0])
        records, single = as_record_list(records)
        pvalues = self.predict_pvalues(records)
        sets = [
            [label for label, p in zip(self.labels_, row) if p > 1 - confidence]
            for row in pvalues
        ]
        return sets[0] if single else sets
