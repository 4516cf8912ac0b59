import numpy as np


class ForestError(Exception):
    """Base class for errors raised by the ensemble engine."""


class InvalidArgument(ForestError, ValueError):
    """Bad configuration or input that does not match the trained model."""


class DegenerateInput(ForestError, ValueError):
    """Input too small to train or evaluate on."""


class TrainingCancelled(ForestError):
    """The caller abandoned a training run between tree completions."""

    def __init__(self, trees_completed: int) -> None:
        super().__init__(f"training cancelled after {trees_completed} tree(s)")
        self.trees_completed = trees_completed


def is_integer(value) -> bool:
    return isinstance(value, (int, np.integer)) and not isinstance(value, (bool, np.bool_))


def check_positive_int(value, name: str, allow_none: bool = False) -> None:
    if value is None and allow_none:
        return
    if not is_integer(value) or value < 1:
        suffix = " or None" if allow_none else ""
        raise InvalidArgument(f"{name} must be a positive integer{suffix}")
