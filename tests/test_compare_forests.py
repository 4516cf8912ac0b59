import inspect

import numpy as np

from experiments.compare_forests import _train_test_split


def test_split_is_stratified_and_disjoint():
    X = np.arange(200, dtype=np.float64).reshape(100, 2)
    y = np.array([1] * 20 + [0] * 80, dtype=np.int8)

    X_train, X_test, y_train, y_test = _train_test_split(X, y, test_size=0.25, random_state=0)

    assert y_test.sum() == 5
    assert (y_test == 0).sum() == 20
    assert y_train.sum() == 15
    assert X_train.shape[0] + X_test.shape[0] == 100
    assert not set(X_train[:, 0]) & set(X_test[:, 0])


def test_rare_class_reaches_test_side():
    X = np.zeros((50, 1))
    y = np.zeros(50, dtype=np.int8)
    y[:2] = 1

    _, _, y_train, y_test = _train_test_split(X, y, test_size=0.1, random_state=3)

    assert y_test.sum() == 1
    assert y_train.sum() == 1


def test_split_has_no_unused_mode_switch():
    params = inspect.signature(_train_test_split).parameters

    assert list(params) == ["X", "y", "test_size", "random_state"]
