from __future__ import annotations

import logging
from dataclasses import dataclass

import numpy as np

from errors import InvalidArgument

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class ConfusionMatrix:
    tp: int
    fp: int
    tn: int
    fn: int

    @property
    def total(self) -> int:
        return self.tp + self.fp + self.tn + self.fn

    @property
    def accuracy(self) -> float:
        return (self.tp + self.tn) / self.total

    @property
    def true_positive_rate(self) -> float | None:
        positives = self.tp + self.fn
        return self.tp / positives if positives else None

    @property
    def false_positive_rate(self) -> float | None:
        negatives = self.fp + self.tn
        return self.fp / negatives if negatives else None

    @property
    def precision(self) -> float | None:
        predicted = self.tp + self.fp
        return self.tp / predicted if predicted else None

    def as_array(self) -> np.ndarray:
        # Rows are truth (0, 1), columns are prediction (0, 1).
        return np.array([[self.tn, self.fp], [self.fn, self.tp]], dtype=np.int64)


@dataclass(frozen=True, eq=False)
class ROCCurve:
    fpr: np.ndarray
    tpr: np.ndarray
    thresholds: np.ndarray
    undefined_reason: str | None = None

    @property
    def is_defined(self) -> bool:
        return self.undefined_reason is None

    @property
    def points(self) -> list[tuple[float, float]]:
        return list(zip(self.fpr.tolist(), self.tpr.tolist()))


def _binary_vector(values, name: str) -> np.ndarray:
    arr = np.asarray(values)
    if arr.ndim != 1:
        raise InvalidArgument(f"{name} must be a 1D array")
    if arr.size == 0:
        raise InvalidArgument(f"{name} must not be empty")
    if not np.all((arr == 0) | (arr == 1)):
        raise InvalidArgument(f"{name} must contain only 0/1 values")
    return arr.astype(np.int8)


def _check_same_length(a: np.ndarray, b: np.ndarray) -> None:
    if a.shape[0] != b.shape[0]:
        raise InvalidArgument(f"length mismatch: {a.shape[0]} predictions vs {b.shape[0]} labels")


def _score_vector(values) -> np.ndarray:
    arr = np.asarray(values, dtype=np.float64)
    if arr.ndim != 1:
        raise InvalidArgument("probabilities must be a 1D array")
    if arr.size == 0:
        raise InvalidArgument("probabilities must not be empty")
    if not np.all(np.isfinite(arr)):
        raise InvalidArgument("probabilities must be finite")
    return arr


def confusion_matrix(predicted_labels, true_labels) -> ConfusionMatrix:
    pred = _binary_vector(predicted_labels, "predicted_labels")
    truth = _binary_vector(true_labels, "true_labels")
    _check_same_length(pred, truth)

    return ConfusionMatrix(
        tp=int(np.sum((pred == 1) & (truth == 1))),
        fp=int(np.sum((pred == 1) & (truth == 0))),
        tn=int(np.sum((pred == 0) & (truth == 0))),
        fn=int(np.sum((pred == 0) & (truth == 1))),
    )


def confusion_matrix_at(probabilities, true_labels, threshold: float = 0.5) -> ConfusionMatrix:
    proba = _score_vector(probabilities)
    if not (0.0 <= threshold <= 1.0):
        raise InvalidArgument("threshold must be in [0, 1]")
    return confusion_matrix((proba >= threshold).astype(np.int8), true_labels)


def roc_curve(probabilities, true_labels) -> ROCCurve:
    """ROC points from sweeping the threshold down through every distinct score.

    The first point is (0, 0) at threshold +inf. Each later point predicts
    positive for ``score >= threshold``; the last threshold is the minimum
    score, so the curve always ends at (1, 1). If the truth holds a single
    class, the rate on the missing side is NaN and ``undefined_reason`` is set.
    """
    proba = _score_vector(probabilities)
    truth = _binary_vector(true_labels, "true_labels")
    _check_same_length(proba, truth)

    order = np.argsort(-proba, kind="stable")
    sorted_scores = proba[order]
    sorted_truth = truth[order].astype(np.int64)

    # Keep the last row of each run of equal scores.
    group_end = np.r_[sorted_scores[1:] != sorted_scores[:-1], True]
    tps = np.cumsum(sorted_truth)[group_end]
    fps = np.cumsum(1 - sorted_truth)[group_end]
    thresholds = sorted_scores[group_end]

    n_pos = int(tps[-1])
    n_neg = int(fps[-1])
    undefined_reason = None
    if n_pos == 0 or n_neg == 0:
        undefined_reason = "true labels hold a single class"

    tpr = tps / n_pos if n_pos else np.full(tps.shape, np.nan)
    fpr = fps / n_neg if n_neg else np.full(fps.shape, np.nan)

    return ROCCurve(
        fpr=np.r_[0.0, fpr],
        tpr=np.r_[0.0, tpr],
        thresholds=np.r_[np.inf, thresholds],
        undefined_reason=undefined_reason,
    )


def auc(curve: ROCCurve) -> float | None:
    """Trapezoidal area under the curve, or None when the curve is undefined."""
    if not curve.is_defined:
        logger.warning("AUC is undefined: %s", curve.undefined_reason)
        return None
    widths = np.diff(curve.fpr)
    heights = 0.5 * (curve.tpr[1:] + curve.tpr[:-1])
    return float(np.clip(np.sum(widths * heights), 0.0, 1.0))


def roc_auc(probabilities, true_labels) -> float | None:
    return auc(roc_curve(probabilities, true_labels))
