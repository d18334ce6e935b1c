"""
Shared Test Fixtures
====================

Seeded synthetic datasets, predictor factories and a toy cipher for the
encryption contract of the persistence layer.
"""

import hashlib

import numpy as np
import pytest
from sklearn.linear_model import LogisticRegression, Ridge
from sklearn.svm import LinearSVC

from confml import (
    ACPClassifier,
    ACPRegressor,
    AbsDiffNCM,
    ClassifierAlgorithm,
    Dataset,
    EncryptionSpec,
    ICPClassifier,
    ICPRegressor,
    NegativeDistanceToHyperplaneNCM,
    RandomSampler,
    RegressorAlgorithm,
)


# ============================================================================
# Synthetic data
# ============================================================================

def make_classification(n=120, n_features=4, n_classes=2, seed=42, spread=1.0):
    """Gaussian blobs, one per class, centred on the diagonal."""
    rng = np.random.default_rng(seed)
    y = np.arange(n) % n_classes
    centres = 2.0 * y[:, None] * np.ones((1, n_features))
    X = centres + spread * rng.normal(size=(n, n_features))
    return X, y


def make_regression(n=120, n_features=4, seed=42, noise=0.3):
    """Linear target with Gaussian noise."""
    rng = np.random.default_rng(seed)
    X = rng.normal(size=(n, n_features))
    w = np.arange(1, n_features + 1, dtype=float)
    y = X @ w + noise * rng.normal(size=n)
    return X, y


@pytest.fixture
def classification_data():
    """Binary problem, 120 records, 4 features."""
    X, y = make_classification()
    return Dataset.from_arrays(X, y)


@pytest.fixture
def multiclass_data():
    """Three-class problem, 150 records."""
    X, y = make_classification(n=150, n_classes=3)
    return Dataset.from_arrays(X, y)


@pytest.fixture
def regression_data():
    X, y = make_regression()
    return Dataset.from_arrays(X, y)


@pytest.fixture
def test_records():
    """Held-out binary records from the same distribution."""
    X, y = make_classification(n=40, seed=7)
    return Dataset.from_arrays(X, y).records


@pytest.fixture
def regression_test_records():
    X, y = make_regression(n=40, seed=7)
    return Dataset.from_arrays(X, y).records


# ============================================================================
# Predictor factories
# ============================================================================

def svc_algorithm(C=1.0):
    return ClassifierAlgorithm(LinearSVC(C=C))


def logreg_algorithm(C=1.0):
    return ClassifierAlgorithm(LogisticRegression(C=C))


def ridge_algorithm(alpha=1.0):
    return RegressorAlgorithm(Ridge(alpha=alpha))


@pytest.fixture
def icp_classifier():
    return ICPClassifier(NegativeDistanceToHyperplaneNCM(svc_algorithm()))


@pytest.fixture
def icp_regressor():
    return ICPRegressor(AbsDiffNCM(ridge_algorithm()))


@pytest.fixture
def acp_classifier():
    icp = ICPClassifier(NegativeDistanceToHyperplaneNCM(svc_algorithm()))
    return ACPClassifier(icp, RandomSampler(calibration_ratio=0.25, n_splits=3), seed=11)


@pytest.fixture
def acp_regressor():
    icp = ICPRegressor(AbsDiffNCM(ridge_algorithm()))
    return ACPRegressor(icp, RandomSampler(calibration_ratio=0.25, n_splits=3), seed=11)


# ============================================================================
# Toy cipher
# ============================================================================

def _keystream(key, length):
    blocks = []
    counter = 0
    while sum(len(b) for b in blocks) < length:
        blocks.append(hashlib.sha256(f"{key}:{counter}".encode()).digest())
        counter += 1
    return b"".join(blocks)[:length]


def xor_cipher(data, key):
    """Symmetric XOR stream; a wrong key silently yields garbage."""
    stream = _keystream(key, len(data))
    return bytes(a ^ b for a, b in zip(data, stream))


def tagged_encrypt(data, key):
    return hashlib.sha256(str(key).encode()).digest()[:8] + xor_cipher(data, key)


def tagged_decrypt(data, key):
    """Raises on a wrong key, like an authenticated cipher would."""
    if data[:8] != hashlib.sha256(str(key).encode()).digest()[:8]:
        raise ValueError("authentication tag mismatch")
    return xor_cipher(data[8:], key)


@pytest.fixture
def encryption():
    return EncryptionSpec(xor_cipher, xor_cipher, key='correct horse')


@pytest.fixture
def wrong_encryption():
    return EncryptionSpec(xor_cipher, xor_cipher, key='battery staple')
