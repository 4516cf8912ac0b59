import sys
from pathlib import Path

import numpy as np
import pytest

# Flat layout: make the root modules importable from tests/.
ROOT = Path(__file__).resolve().parent
if str(ROOT) not in sys.path:
    sys.path.insert(0, str(ROOT))

from dataset import Dataset


def make_threshold_data(n_samples, n_features, seed):
    rng = np.random.default_rng(seed)
    X = rng.uniform(size=(n_samples, n_features))
    y = (X[:, 0] > 0.5).astype(np.int8)
    return X, y


@pytest.fixture
def threshold_dataset():
    X, y = make_threshold_data(300, 4, seed=0)
    return Dataset.from_arrays(X, y)


@pytest.fixture
def noisy_dataset():
    rng = np.random.default_rng(1)
    X = rng.normal(size=(200, 3))
    logits = 2.0 * X[:, 0] - 1.0 * X[:, 1]
    y = (rng.uniform(size=200) < 1.0 / (1.0 + np.exp(-logits))).astype(np.int8)
    return Dataset.from_arrays(X, y)
