"""
Unit Tests for Records, Datasets and Splits
===========================================

- Record validation and constructors
- Dataset partitions and conversions
- TrainSplit validation
"""

import numpy as np
import pandas as pd
import pytest
from scipy import sparse

from confml import Dataset, InvalidInputError, Record, TrainSplit
from confml.data import as_class_labels, to_matrix


# ============================================================================
# Test 1: Record
# ============================================================================

def test_record_from_mapping_sorts_indices():
    r = Record.from_mapping({3: -2.0, 0: 1.5}, label=1)
    assert r.indices == (0, 3)
    assert r.values == (1.5, -2.0)
    assert r.n_features == 4


def test_record_from_dense_drops_zeros():
    r = Record.from_dense([0.0, 2.0, 0.0, 1.0], label=0)
    assert r.indices == (1, 3)
    assert r.as_dict() == {1: 2.0, 3: 1.0}


def test_record_rejects_unsorted_indices():
    with pytest.raises(InvalidInputError):
        Record((2, 1), (1.0, 1.0), 0)


def test_record_rejects_duplicate_and_negative_indices():
    with pytest.raises(InvalidInputError):
        Record((1, 1), (1.0, 2.0), 0)
    with pytest.raises(InvalidInputError):
        Record((-1,), (1.0,), 0)


def test_record_rejects_non_finite_values():
    with pytest.raises(InvalidInputError):
        Record((0,), (np.nan,), 0)
    with pytest.raises(InvalidInputError):
        Record((0,), (1.0,), np.inf)


def test_invalid_input_is_value_error():
    with pytest.raises(ValueError):
        Record((0, 1), (1.0,), 0)


def test_with_label_copies():
    r = Record.from_mapping({0: 1.0}, 0)
    r2 = r.with_label(1)
    assert r2.label == 1 and r.label == 0
    assert r2.indices == r.indices


# ============================================================================
# Test 2: Dataset
# ============================================================================

def test_from_arrays_accepts_dataframe_and_sparse():
    X = np.array([[1.0, 0.0], [0.0, 2.0], [3.0, 4.0]])
    y = [0, 1, 0]
    d1 = Dataset.from_arrays(pd.DataFrame(X, columns=['a', 'b']), pd.Series(y))
    d2 = Dataset.from_arrays(sparse.csr_matrix(X), y)
    assert len(d1) == len(d2) == 3
    assert d1.n_features == 2
    assert d1.records == d2.records


def test_from_arrays_length_mismatch():
    with pytest.raises(InvalidInputError):
        Dataset.from_arrays(np.ones((3, 2)), [0, 1])


def test_partitions_must_be_disjoint():
    r = Record.from_mapping({0: 1.0}, 0)
    with pytest.raises(InvalidInputError):
        Dataset([r], calibration_exclusive=[r])


def test_length_counts_all_partitions(classification_data):
    extra = [Record.from_mapping({0: 1.0}, 0), Record.from_mapping({1: 1.0}, 1)]
    d = Dataset(classification_data.records, calibration_exclusive=extra[:1],
                modeling_exclusive=extra[1:])
    assert len(d) == len(classification_data) + 2
    assert len(d.without_exclusive().records) == len(d)
    assert d.without_exclusive().calibration_exclusive == ()


def test_n_features_too_small():
    r = Record.from_mapping({5: 1.0}, 0)
    with pytest.raises(InvalidInputError):
        Dataset([r], n_features=3)


def test_to_matrix_shape(classification_data):
    X, y = classification_data.to_matrix()
    assert X.shape == (120, 4)
    assert len(y) == 120
    assert sparse.issparse(X)


def test_to_matrix_drops_unknown_features():
    r = Record.from_mapping({0: 1.0, 7: 5.0}, 1)
    X, y = to_matrix([r], 3)
    assert X.shape == (1, 3)
    assert X.toarray().tolist() == [[1.0, 0.0, 0.0]]


def test_shuffled_is_deterministic(classification_data):
    a = classification_data.shuffled(3)
    b = classification_data.shuffled(3)
    c = classification_data.shuffled(4)
    assert a.records == b.records
    assert a.records != c.records
    assert set(map(id, a.records)) == set(map(id, classification_data.records))


def test_classes(multiclass_data):
    assert as_class_labels(multiclass_data.classes) == [0, 1, 2]


# ============================================================================
# Test 3: TrainSplit
# ============================================================================

def test_split_validate_requires_two_calibration_labels():
    train = [Record.from_mapping({0: 1.0}, 0), Record.from_mapping({0: 2.0}, 1)]
    calib = [Record.from_mapping({0: 1.5}, 0)]
    split = TrainSplit(train, calib)
    split.validate(classification=False)
    with pytest.raises(InvalidInputError):
        split.validate(classification=True)


def test_split_validate_empty_calibration():
    split = TrainSplit([Record.from_mapping({0: 1.0}, 0)], [])
    with pytest.raises(InvalidInputError):
        split.validate()


def test_split_label_range():
    split = TrainSplit(
        [Record.from_mapping({0: 1.0}, -2.5)],
        [Record.from_mapping({0: 1.0}, 4.0)]
    )
    assert split.min_label == -2.5
    assert split.max_label == 4.0
    assert split.n_training_records == 2


# ============================================================================
# Run Tests
# ============================================================================

if __name__ == "__main__":
    pytest.main([__file__, "-v", "--tb=short"])
