from contextlib import AbstractContextManager
from typing import Optional


def handle_n_jobs(value: Optional[int]) -> int:
    r"""Handles the n_jobs parameter consistently so that a positive number is returned.
    In particular, if

      * value is None, use the number of cores available to this process
      * value is positive, use value

    Parameters
    ----------
    value : int or None
        The provided n_jobs argument

    Returns
    -------
    n_jobs : int
        A positive integer value describing how many threads can be started simultaneously.
    """
    if value is None:
        try:
            from os import sched_getaffinity
            count = len(sched_getaffinity(0))
        except ImportError:
            from os import cpu_count
            count = cpu_count()
        if count is None:
            raise ValueError("Could not determine number of cpus in system, please provide n_jobs manually.")
        value = count
    elif int(value) != value or value <= 0:
        raise ValueError(f"n_jobs can only be None (in which case it will be determined from hardware) "
                         f"or a positive integer, but was {value}.")
    return int(value)


def chunk_indices(n_items: int, n_chunks: int):
    r""" Splits the range `[0, n_items)` into at most `n_chunks` contiguous, disjoint, non-empty slices.

    >>> chunk_indices(5, 2)
    [slice(0, 2, None), slice(2, 5, None)]
    """
    n_chunks = max(1, min(n_chunks, n_items))
    bounds = [(n_items * k) // n_chunks for k in range(n_chunks + 1)]
    return [slice(lo, hi) for lo, hi in zip(bounds[:-1], bounds[1:]) if hi > lo]


class joining(AbstractContextManager):
    r""" Context manager for pools that will automatically close and join upon exit of scope. """

    def __init__(self, thing):
        self.thing = thing

    def __enter__(self):
        return self.thing

    def __exit__(self, *info):
        self.thing.close()
        self.thing.join()
