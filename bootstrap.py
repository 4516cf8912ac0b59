from __future__ import annotations

from dataclasses import dataclass

import numpy as np

from dataset import Dataset
from errors import InvalidArgument
from random_source import RandomSource


@dataclass(frozen=True, eq=False)
class BootstrapSample:
    indices: np.ndarray
    oob_indices: np.ndarray
    n_samples: int

    @property
    def oob_mask(self) -> np.ndarray:
        mask = np.zeros(self.n_samples, dtype=bool)
        mask[self.oob_indices] = True
        return mask

    @property
    def oob_fraction(self) -> float:
        return self.oob_indices.size / self.n_samples

    @property
    def in_bag_counts(self) -> np.ndarray:
        return np.bincount(self.indices, minlength=self.n_samples)


def sample_bootstrap(dataset: Dataset, random_source: RandomSource) -> BootstrapSample:
    """Draw n row indices with replacement; rows never drawn are out-of-bag.

    About e^-1 (36.8%) of rows are expected out-of-bag, with no guarantee on
    the exact count.
    """
    n = dataset.n_samples
    if n == 0:
        raise InvalidArgument("cannot bootstrap an empty dataset")

    indices = random_source.integers(n, size=n)
    drawn = np.zeros(n, dtype=bool)
    drawn[indices] = True
    oob_indices = np.flatnonzero(~drawn)

    indices.setflags(write=False)
    oob_indices.setflags(write=False)
    return BootstrapSample(indices=indices, oob_indices=oob_indices, n_samples=n)
