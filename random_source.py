from __future__ import annotations

import copy

import numpy as np

from errors import InvalidArgument

SEED_UPPER_BOUND = 2**64


def check_seed(seed: int) -> int:
    if isinstance(seed, bool) or not isinstance(seed, (int, np.integer)):
        raise InvalidArgument("seed must be an integer")
    seed = int(seed)
    if not (0 <= seed < SEED_UPPER_BOUND):
        raise InvalidArgument("seed must fit in an unsigned 64-bit integer")
    return seed


class RandomSource:
    """Explicitly threaded, seedable stream over a PCG64 generator.

    Same seed and same call sequence give bit-identical draws. Nothing in
    the engine touches numpy's global random state.
    """

    def __init__(self, seed: int = 0, *, _seed_sequence: np.random.SeedSequence | None = None) -> None:
        if _seed_sequence is None:
            _seed_sequence = np.random.SeedSequence(check_seed(seed))
        self._rng = np.random.Generator(np.random.PCG64(_seed_sequence))

    @classmethod
    def for_tree(cls, seed: int, tree_index: int) -> "RandomSource":
        """Independent stream for one tree, fixed by (seed, tree_index) alone."""
        if tree_index < 0:
            raise InvalidArgument("tree_index must be non-negative")
        sequence = np.random.SeedSequence(check_seed(seed), spawn_key=(int(tree_index),))
        return cls(_seed_sequence=sequence)

    @classmethod
    def restore(cls, state: dict) -> "RandomSource":
        source = cls(0)
        source._rng.bit_generator.state = copy.deepcopy(state)
        return source

    def snapshot(self) -> dict:
        return copy.deepcopy(self._rng.bit_generator.state)

    def integers(self, n: int, size: int) -> np.ndarray:
        """Draw `size` integers uniformly from [0, n)."""
        if n <= 0:
            raise InvalidArgument("n must be positive")
        if size < 0:
            raise InvalidArgument("size must be non-negative")
        return self._rng.integers(0, n, size=size, dtype=np.int64)

    def subset(self, k: int, p: int) -> np.ndarray:
        """Draw k distinct indices from range(p), sorted ascending."""
        if k < 0 or k > p:
            raise InvalidArgument(f"cannot draw {k} distinct features out of {p}")
        chosen = self._rng.choice(p, size=k, replace=False)
        return np.sort(chosen).astype(np.int64)

    def permutation(self, n: int) -> np.ndarray:
        if n < 0:
            raise InvalidArgument("n must be non-negative")
        return self._rng.permutation(n)
