import argparse
import logging
import sys
import time
from pathlib import Path

import numpy as np
import pandas as pd

# Allow running as: python experiments/compare_forests.py
ROOT = Path(__file__).resolve().parents[1]
if str(ROOT) not in sys.path:
    sys.path.insert(0, str(ROOT))

from baselines import LogisticBaseline, MajorityBaseline
from dataset import Dataset
from ensemble import ForestParams, TreeEnsemble
from importance import permutation_importance
from metrics import confusion_matrix, roc_auc


def make_threshold_dataset(n_samples, n_noise, rng, cardinality_features=False):
    """Label is 1 iff feature 0 > 0.5; the remaining columns are uniform noise."""
    X = rng.uniform(size=(n_samples, 1 + n_noise))
    names = ["signal"] + [f"noise_{i}" for i in range(n_noise)]
    if cardinality_features:
        low = rng.integers(0, 3, size=(n_samples, 1)).astype(np.float64)
        high = rng.normal(size=(n_samples, 1))
        X = np.hstack([X, low, high])
        names += ["noise_3_levels", "noise_continuous"]
    y = (X[:, 0] > 0.5).astype(np.int8)
    return X, y, names


def _train_test_split(X, y, test_size, random_state):
    """Stratified split, so both classes reach the train and test sides."""
    rng = np.random.default_rng(random_state)
    train_parts = []
    test_parts = []
    for c in np.unique(y):
        idx = np.where(y == c)[0]
        rng.shuffle(idx)
        n_test = max(1, int(round(idx.size * test_size)))
        test_parts.append(idx[:n_test])
        train_parts.append(idx[n_test:])
    train_idx = np.concatenate(train_parts)
    test_idx = np.concatenate(test_parts)
    rng.shuffle(train_idx)
    rng.shuffle(test_idx)

    return X[train_idx], X[test_idx], y[train_idx], y[test_idx]


def evaluate_model(name, proba, y_test, fit_time=0.0):
    cm = confusion_matrix((proba >= 0.5).astype(np.int8), y_test)
    return {
        "model": name,
        "auc": roc_auc(proba, y_test),
        "accuracy": cm.accuracy,
        "tp": cm.tp,
        "fp": cm.fp,
        "tn": cm.tn,
        "fn": cm.fn,
        "fit_time_sec": fit_time,
    }


def fit_forest(train, mtry, args):
    params = ForestParams(
        num_trees=args.num_trees,
        mtry=mtry,
        max_depth=args.max_depth,
        min_samples_leaf=args.min_samples_leaf,
        seed=args.seed,
        n_jobs=args.n_jobs,
    )
    t0 = time.perf_counter()
    ensemble = TreeEnsemble.train(train, params)
    return ensemble, time.perf_counter() - t0


def main():
    parser = argparse.ArgumentParser(
        description="Compare bagging and random forest against trivial and linear baselines"
    )
    parser.add_argument("--n-samples", type=int, default=1000)
    parser.add_argument("--n-noise", type=int, default=4)
    parser.add_argument(
        "--cardinality-features",
        action="store_true",
        help="Add a 3-level and a continuous noise feature to show cardinality bias.",
    )
    parser.add_argument("--test-size", type=float, default=0.3)
    parser.add_argument("--num-trees", type=int, default=50)
    parser.add_argument("--mtry", type=str, default="sqrt", help="Integer, 'sqrt' or 'all'")
    parser.add_argument("--max-depth", type=int, default=None)
    parser.add_argument("--min-samples-leaf", type=int, default=1)
    parser.add_argument("--n-jobs", type=int, default=1)
    parser.add_argument("--seed", type=int, default=123)
    parser.add_argument("--log-level", type=str, default="INFO")

    args = parser.parse_args()

    logging.basicConfig(
        level=getattr(logging, args.log_level.upper(), logging.INFO),
        format="%(asctime)s | %(levelname)-8s | %(name)s | %(message)s",
        datefmt="%Y-%m-%d %H:%M:%S",
    )

    rng = np.random.default_rng(args.seed)
    X, y, names = make_threshold_dataset(
        args.n_samples, args.n_noise, rng, cardinality_features=args.cardinality_features
    )
    X_train, X_test, y_train, y_test = _train_test_split(
        X, y, test_size=args.test_size, random_state=args.seed
    )
    train = Dataset.from_arrays(X_train, y_train)
    print(f"n_train={train.n_samples} n_test={X_test.shape[0]} p={train.n_features}")

    rows = []
    majority = MajorityBaseline().fit(train)
    rows.append(evaluate_model("majority", majority.predict_probability(X_test), y_test))

    t0 = time.perf_counter()
    logistic = LogisticBaseline().fit(train)
    rows.append(
        evaluate_model(
            "logistic", logistic.predict_probability(X_test), y_test, time.perf_counter() - t0
        )
    )

    forest_mtry = int(args.mtry) if args.mtry.isdigit() else args.mtry
    forests = {}
    for name, mtry in (("bagging", "all"), ("random_forest", forest_mtry)):
        ensemble, fit_time = fit_forest(train, mtry, args)
        forests[name] = ensemble
        row = evaluate_model(name, ensemble.predict_probability(X_test), y_test, fit_time)
        row["oob_error"] = ensemble.out_of_bag_error(train).error
        rows.append(row)

    summary = pd.DataFrame(rows).set_index("model")
    print("\nTest-set comparison")
    print(summary.to_string(float_format=lambda v: f"{v:.4f}"))

    for name, ensemble in forests.items():
        scores = permutation_importance(ensemble, train, n_jobs=args.n_jobs)
        print(f"\nPermutation importance ({name}, mtry={ensemble.mtry})")
        if not scores.is_defined:
            print(f"  undefined: {scores.undefined_reason}")
            continue
        frame = scores.to_frame()
        frame.insert(1, "name", [names[f] for f in frame["feature"]])
        frame["cardinality"] = train.feature_cardinality()[frame["feature"].to_numpy()]
        splits = np.sum([tree.feature_split_counts() for tree in ensemble.trees], axis=0)
        frame["splits"] = splits[frame["feature"].to_numpy()]
        print(frame.sort_values("mean", ascending=False).to_string(index=False))


if __name__ == "__main__":
    main()
