from __future__ import annotations

from dataclasses import dataclass

import numpy as np

from dataset import Dataset, as_feature_matrix
from errors import InvalidArgument


def sigmoid(z: np.ndarray) -> np.ndarray:
    return 1.0 / (1.0 + np.exp(-np.clip(z, -35.0, 35.0)))


@dataclass
class LogisticConfig:
    l2: float = 1.0
    max_iter: int = 50
    tol: float = 1e-8
    h_epsilon: float = 1e-12

    def __post_init__(self) -> None:
        if self.l2 < 0.0:
            raise InvalidArgument("l2 must be >= 0")
        if self.max_iter <= 0:
            raise InvalidArgument("max_iter must be positive")
        if self.tol <= 0.0:
            raise InvalidArgument("tol must be positive")


class LogisticGradHess:
    """Gradient and hessian of the logistic loss at the current raw scores."""

    def __init__(self, y: np.ndarray, raw: np.ndarray, h_epsilon: float = 1e-12) -> None:
        self.y = np.asarray(y, dtype=np.float64)
        self.raw = np.asarray(raw, dtype=np.float64)
        if self.y.shape != self.raw.shape:
            raise InvalidArgument("y and raw scores must have the same shape")

        p = sigmoid(self.raw)
        self.g = p - self.y
        self.h = np.maximum(p * (1.0 - p), h_epsilon)


class MajorityBaseline:
    """Predicts the training positive rate for every observation."""

    def __init__(self) -> None:
        self.positive_rate: float | None = None
        self.n_features: int | None = None

    def fit(self, dataset: Dataset) -> "MajorityBaseline":
        if dataset.n_samples == 0:
            raise InvalidArgument("cannot fit on an empty dataset")
        self.positive_rate = dataset.n_positive / dataset.n_samples
        self.n_features = dataset.n_features
        return self

    def predict_probability(self, X) -> np.ndarray:
        if self.positive_rate is None:
            raise RuntimeError("Model must be fitted before prediction")
        X = as_feature_matrix(X, self.n_features)
        return np.full(X.shape[0], self.positive_rate, dtype=np.float64)

    def predict_label(self, X, threshold: float = 0.5) -> np.ndarray:
        return (self.predict_probability(X) >= threshold).astype(np.int8)


class LogisticBaseline:
    """L2-regularised logistic regression fitted with Newton (IRLS) steps.

    Features are standardised with the training mean and scale. Only the
    slopes carry the ``l2`` penalty.
    """

    def __init__(self, config: LogisticConfig | None = None) -> None:
        self.config = config or LogisticConfig()
        self.coef_: np.ndarray | None = None
        self.intercept_: float = 0.0
        self.n_iter_: int = 0
        self._mean: np.ndarray | None = None
        self._scale: np.ndarray | None = None

    def _design(self, X: np.ndarray) -> np.ndarray:
        Z = (X - self._mean) / self._scale
        return np.hstack([np.ones((Z.shape[0], 1)), Z])

    def fit(self, dataset: Dataset) -> "LogisticBaseline":
        if dataset.n_samples == 0:
            raise InvalidArgument("cannot fit on an empty dataset")
        X = dataset.X
        self._mean = X.mean(axis=0)
        scale = X.std(axis=0)
        self._scale = np.where(scale > 0.0, scale, 1.0)

        Z = self._design(X)
        n_params = Z.shape[1]
        penalty = np.full(n_params, self.config.l2)
        # Tiny ridge on the intercept keeps the system solvable for one-class labels.
        penalty[0] = self.config.h_epsilon

        w = np.zeros(n_params, dtype=np.float64)
        for iteration in range(1, self.config.max_iter + 1):
            provider = LogisticGradHess(dataset.y, Z @ w, h_epsilon=self.config.h_epsilon)
            grad = Z.T @ provider.g + penalty * w
            hess = (Z * provider.h[:, None]).T @ Z + np.diag(penalty)
            step = np.linalg.solve(hess, grad)
            w -= step
            self.n_iter_ = iteration
            if np.max(np.abs(step)) < self.config.tol:
                break

        self.intercept_ = float(w[0])
        self.coef_ = w[1:] / self._scale
        self.intercept_ -= float(np.dot(self.coef_, self._mean))
        return self

    def predict_raw(self, X) -> np.ndarray:
        if self.coef_ is None:
            raise RuntimeError("Model must be fitted before prediction")
        X = as_feature_matrix(X, self.coef_.size)
        return X @ self.coef_ + self.intercept_

    def predict_probability(self, X) -> np.ndarray:
        return sigmoid(self.predict_raw(X))

    def predict_label(self, X, threshold: float = 0.5) -> np.ndarray:
        return (self.predict_probability(X) >= threshold).astype(np.int8)
