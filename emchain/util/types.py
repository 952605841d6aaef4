from typing import Optional, Tuple

import numpy as np
from scipy.sparse import issparse

from .exceptions import InvalidConfigurationError


def ensure_array(arr, shape: Optional[Tuple] = None, dtype=None) -> np.ndarray:
    r""" Converts the input into a dense ndarray and checks its shape and dtype.

    Sparse matrices are densified.

    Raises
    ------
    ValueError
        If any of the checks fails.
    """
    if issparse(arr):
        arr = arr.toarray()
    elif not isinstance(arr, np.ndarray):
        arr = np.asarray(arr)

    if shape is not None and arr.shape != shape:
        raise ValueError(f"Shape of provided array was {arr.shape} != {shape}")
    if dtype is not None and not np.issubdtype(arr.dtype, dtype):
        raise ValueError(f"Array got incompatible dtype: {arr.dtype} is not a subtype of {dtype}.")
    return arr


def is_transition_matrix(T, tol=1e-10) -> bool:
    """
    Tests whether T is a transition matrix

    Parameters
    ----------
    T : ndarray shape=(n, n)
        matrix to test
    tol : float
        tolerance to check with

    Returns
    -------
    Truth value : bool
        True, if all elements are in interval [0, 1]
            and each row of T sums up to 1.
        False, otherwise
    """
    T = np.asarray(T)
    if T.ndim != 2 or T.shape[0] != T.shape[1]:
        return False
    dim = T.shape[0]
    X = np.abs(T) - T
    x = np.sum(T, axis=1)
    return np.abs(x - np.ones(dim)).max() < dim * tol and X.max() < 2.0 * tol


def ensure_transition_matrix(T, n_states: int, tol=1e-8) -> np.ndarray:
    r""" Converts the input into a dense floating point copy and validates that it is a
    `(n_states, n_states)` row-stochastic matrix.

    Raises
    ------
    InvalidConfigurationError
        If the input is not a transition matrix of the expected size.
    """
    try:
        T = np.array(ensure_array(T, shape=(n_states, n_states), dtype=np.number), dtype=np.float64)
    except ValueError as e:
        raise InvalidConfigurationError(f"Invalid transition matrix: {e}") from e
    if not is_transition_matrix(T, tol=tol):
        raise InvalidConfigurationError("Provided matrix is not row-stochastic (non-negative with unit row sums).")
    return T
