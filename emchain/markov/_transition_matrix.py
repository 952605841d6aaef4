from typing import Optional, Tuple

import numpy as np

from ._observations import TransitionObservations

DEGENERATE_ROW_POLICIES = ('retain', 'uniform', 'zero')


def initial_transition_matrix(observations: TransitionObservations, n_states: Optional[int] = None) -> np.ndarray:
    r""" Naive transition matrix estimate which ignores the elapsed time between observations. It serves as
    starting point of the EM iteration.

    The weight of a transition :math:`i\to j` is the mean count over all gaps at which the transition was observed.
    Transitions that were never observed receive a weight of one so that every element of the resulting matrix is
    strictly positive. Each row is then normalized by its total weight.

    Parameters
    ----------
    observations : TransitionObservations
        The aggregated observations.
    n_states : int, optional, default=None
        Number of states, defaults to the size of the state space of the observations.

    Returns
    -------
    P : (n_states, n_states) ndarray
        A row-stochastic matrix with strictly positive elements.

    Examples
    --------
    >>> observations = TransitionObservations(u=[0, 0, 0], v=[0, 0, 1], gaps=[1, 2, 1], counts=[4, 2, 1])
    >>> initial_transition_matrix(observations, n_states=2)
    array([[0.75, 0.25],
           [0.5 , 0.5 ]])
    """
    n_states = observations._resolve_n_states(n_states)
    sums = np.zeros((n_states, n_states), dtype=np.float64)
    n_buckets = np.zeros((n_states, n_states), dtype=np.int64)
    np.add.at(sums, (observations.u, observations.v), observations.counts)
    np.add.at(n_buckets, (observations.u, observations.v), 1)

    weights = np.ones((n_states, n_states), dtype=np.float64)
    observed = n_buckets > 0
    weights[observed] = sums[observed] / n_buckets[observed]
    return weights / weights.sum(axis=1, keepdims=True)


def normalize_expected_counts(expected_counts: np.ndarray, transition_matrix: np.ndarray,
                              degenerate_row_policy: str = 'retain') -> Tuple[np.ndarray, float, np.ndarray]:
    r""" Maximization step. Normalizes the rows of an expected transition count matrix into a new transition matrix
    and measures the change with respect to the previous transition matrix.

    Parameters
    ----------
    expected_counts : (n, n) ndarray
        Expected single-step transition counts.
    transition_matrix : (n, n) ndarray
        The previous transition matrix.
    degenerate_row_policy : str, default='retain'
        How rows without any expected counts are treated. One of

        * 'retain': the row of the previous transition matrix is kept,
        * 'uniform': the row is set to a uniform distribution,
        * 'zero': the row is left all-zero, so that the result is not a transition matrix.

    Returns
    -------
    P : (n, n) ndarray
        The new transition matrix.
    max_delta : float
        Maximum absolute element-wise difference between new and previous matrix, taken over the rows which have
        expected counts. Zero if there are no such rows.
    degenerate_rows : ndarray
        Indices of rows without expected counts.
    """
    if degenerate_row_policy not in DEGENERATE_ROW_POLICIES:
        raise ValueError(f"Unknown degenerate row policy {degenerate_row_policy}, "
                         f"must be one of {DEGENERATE_ROW_POLICIES}.")
    row_sums = expected_counts.sum(axis=1)
    active = row_sums > 0

    P = np.zeros_like(transition_matrix, dtype=np.float64)
    P[active] = expected_counts[active] / row_sums[active, None]
    if degenerate_row_policy == 'retain':
        P[~active] = transition_matrix[~active]
    elif degenerate_row_policy == 'uniform':
        P[~active] = 1. / P.shape[1]

    max_delta = float(np.abs(P[active] - transition_matrix[active]).max()) if np.any(active) else 0.
    return P, max_delta, np.flatnonzero(~active)
