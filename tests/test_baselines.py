import numpy as np
import pytest

from baselines import LogisticBaseline, LogisticConfig, LogisticGradHess, MajorityBaseline
from errors import InvalidArgument
from metrics import roc_auc


def test_majority_baseline_predicts_positive_rate(noisy_dataset):
    model = MajorityBaseline().fit(noisy_dataset)
    proba = model.predict_probability(noisy_dataset.X)

    assert np.allclose(proba, noisy_dataset.n_positive / noisy_dataset.n_samples)
    assert roc_auc(proba, noisy_dataset.y) == pytest.approx(0.5)


def test_logistic_baseline_recovers_signs(noisy_dataset):
    model = LogisticBaseline(LogisticConfig(l2=0.1)).fit(noisy_dataset)

    assert model.coef_[0] > 0.0
    assert model.coef_[1] < 0.0
    assert roc_auc(model.predict_probability(noisy_dataset.X), noisy_dataset.y) > 0.75
    assert model.n_iter_ < model.config.max_iter


def test_logistic_raw_score_matches_coefficients(noisy_dataset):
    model = LogisticBaseline().fit(noisy_dataset)
    X = noisy_dataset.X[:5]

    assert np.allclose(model.predict_raw(X), X @ model.coef_ + model.intercept_)
    assert np.array_equal(
        model.predict_label(X, threshold=0.5),
        (model.predict_probability(X) >= 0.5).astype(np.int8),
    )


def test_grad_hess_of_logistic_loss():
    provider = LogisticGradHess(y=np.array([1.0, 0.0]), raw=np.array([0.0, 0.0]))

    assert np.allclose(provider.g, [-0.5, 0.5])
    assert np.allclose(provider.h, [0.25, 0.25])


def test_baselines_require_fit_and_matching_width(noisy_dataset):
    with pytest.raises(RuntimeError):
        LogisticBaseline().predict_probability(noisy_dataset.X)
    with pytest.raises(RuntimeError):
        MajorityBaseline().predict_probability(noisy_dataset.X)

    model = LogisticBaseline().fit(noisy_dataset)
    with pytest.raises(InvalidArgument):
        model.predict_probability(np.zeros((2, noisy_dataset.n_features + 2)))


def test_invalid_logistic_config():
    with pytest.raises(InvalidArgument):
        LogisticConfig(l2=-1.0)
    with pytest.raises(InvalidArgument):
        LogisticConfig(max_iter=0)
