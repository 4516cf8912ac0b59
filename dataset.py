from __future__ import annotations

from dataclasses import dataclass

import numpy as np

from errors import InvalidArgument


def _readonly(arr: np.ndarray) -> np.ndarray:
    arr = np.ascontiguousarray(arr).copy()
    arr.setflags(write=False)
    return arr


def as_feature_matrix(X, n_features: int) -> np.ndarray:
    """Coerce a prediction matrix (or a single row) and verify its width."""
    X = np.asarray(X, dtype=np.float64)
    if X.ndim == 1:
        X = X.reshape(1, -1)
    if X.ndim != 2 or X.shape[1] != n_features:
        raise InvalidArgument(f"expected {n_features} features, got shape {X.shape}")
    if not np.all(np.isfinite(X)):
        raise InvalidArgument("X must contain only finite values")
    return X


@dataclass(frozen=True, eq=False)
class Dataset:
    """Numeric feature matrix plus binary labels, shared read-only by the engine.

    Build instances with :meth:`from_arrays`, which coerces and copies its
    inputs. Direct construction only accepts arrays already in that form:
    a read-only 2D float64 ``X`` and a read-only 1D int8 ``y`` of 0/1 labels.
    """

    X: np.ndarray
    y: np.ndarray

    def __post_init__(self) -> None:
        if not isinstance(self.X, np.ndarray) or not isinstance(self.y, np.ndarray):
            raise InvalidArgument("X and y must be numpy arrays; use Dataset.from_arrays")
        if self.X.ndim != 2 or self.X.dtype != np.float64:
            raise InvalidArgument("X must be a 2D float64 array; use Dataset.from_arrays")
        if self.y.ndim != 1 or self.y.dtype != np.int8 or self.y.shape[0] != self.X.shape[0]:
            raise InvalidArgument(
                "y must be a 1D int8 array with the same number of rows as X; "
                "use Dataset.from_arrays"
            )
        if self.X.flags.writeable or self.y.flags.writeable:
            raise InvalidArgument("X and y must be read-only; use Dataset.from_arrays")
        if not np.all(np.isfinite(self.X)):
            raise InvalidArgument("X must contain only finite values")
        if self.y.size and not np.all((self.y == 0) | (self.y == 1)):
            raise InvalidArgument("y must contain only 0/1 labels")

    @classmethod
    def from_arrays(cls, X, y) -> "Dataset":
        X = np.asarray(X, dtype=np.float64)
        y_raw = np.asarray(y)
        if X.ndim != 2:
            raise InvalidArgument("X must be a 2D array")
        if y_raw.ndim != 1 or y_raw.shape[0] != X.shape[0]:
            raise InvalidArgument("y must be a 1D array with the same number of rows as X")
        # Checked before the int8 cast, which would truncate 0.5 to 0.
        if y_raw.size and not np.all((y_raw == 0) | (y_raw == 1)):
            raise InvalidArgument("y must contain only 0/1 labels")

        return cls(X=_readonly(X), y=_readonly(y_raw.astype(np.int8)))

    @property
    def n_samples(self) -> int:
        return int(self.X.shape[0])

    @property
    def n_features(self) -> int:
        return int(self.X.shape[1])

    @property
    def n_positive(self) -> int:
        return int(np.sum(self.y))

    @property
    def n_negative(self) -> int:
        return self.n_samples - self.n_positive

    @property
    def is_single_class(self) -> bool:
        return self.n_positive == 0 or self.n_negative == 0

    def observation(self, i: int) -> np.ndarray:
        return self.X[i]

    def check_width(self, X) -> np.ndarray:
        return as_feature_matrix(X, self.n_features)

    def feature_cardinality(self) -> np.ndarray:
        # More distinct values means more candidate thresholds for the builder.
        return np.array(
            [np.unique(self.X[:, f]).size for f in range(self.n_features)],
            dtype=np.int64,
        )
