from typing import Optional, Sequence, Tuple, Union

import numpy as np

from ..util.types import ensure_transition_matrix


def _cumulative_rows(transition_matrix):
    cdf = np.cumsum(transition_matrix, axis=1)
    cdf[:, -1] = 1.
    return cdf


def simulate_chain(transition_matrix, n_steps: int, start: Optional[int] = None,
                   seed: Optional[int] = None) -> np.ndarray:
    r""" Generates a realization of a Markov chain with the given transition matrix.

    Parameters
    ----------
    transition_matrix : (n, n) array_like
        Row-stochastic matrix.
    n_steps : int
        Trajectory length, including the start state.
    start : int, optional, default=None
        Starting state index, drawn uniformly if None.
    seed : int, optional, default=None
        Random seed.

    Returns
    -------
    trajectory : (n_steps,) ndarray
        State indices.

    Examples
    --------
    >>> simulate_chain(np.array([[0., 1.], [1., 0.]]), n_steps=5, start=0)
    array([0, 1, 0, 1, 0])
    """
    P = np.asarray(transition_matrix, dtype=np.float64)
    P = ensure_transition_matrix(P, P.shape[0])
    rng = np.random.default_rng(seed)
    cdf = _cumulative_rows(P)
    trajectory = np.empty(n_steps, dtype=np.int64)
    if n_steps == 0:
        return trajectory
    trajectory[0] = rng.integers(P.shape[0]) if start is None else start
    draws = rng.random(n_steps - 1)
    for t in range(1, n_steps):
        trajectory[t] = np.searchsorted(cdf[trajectory[t - 1]], draws[t - 1], side='right')
    return trajectory


def irregular_observations(transition_matrix, n_observations: int, gaps: Union[int, Sequence[int]] = 2,
                           gap_probabilities: Optional[Sequence[float]] = None, start: Optional[int] = None,
                           days: float = 1., t0: float = 0., seed: Optional[int] = None,
                           states: Optional[Sequence] = None) -> Tuple[np.ndarray, np.ndarray]:
    r""" Simulates a Markov chain which is only observed every few steps.

    Between two consecutive observations the chain performs a number of steps that is drawn from `gaps`
    (with `gap_probabilities`, uniform by default). Observation times advance by `gap * days`.

    Parameters
    ----------
    transition_matrix : (n, n) array_like
        The ground truth single-step transition matrix.
    n_observations : int
        Number of observations.
    gaps : int or sequence of int, default=2
        Candidate numbers of steps between two observations. A single integer yields regular observations of
        every `gaps`-th step.
    gap_probabilities : sequence of float, optional, default=None
        Probabilities of the candidate gaps.
    start : int, optional, default=None
        Initial state index, drawn uniformly if None.
    days : float, default=1.
        Duration of one step.
    t0 : float, default=0.
        Time of the first observation.
    seed : int, optional, default=None
        Random seed.
    states : sequence, optional, default=None
        State labels. If given, observed states are reported as labels instead of indices.

    Returns
    -------
    timestamps : (n_observations,) ndarray
        Observation times.
    observed_states : (n_observations,) ndarray
        Observed states.

    Examples
    --------
    >>> P = np.array([[.9, .1], [.2, .8]])
    >>> timestamps, observed = irregular_observations(P, 4, gaps=2, seed=42)
    >>> timestamps
    array([0., 2., 4., 6.])
    """
    P = np.asarray(transition_matrix, dtype=np.float64)
    P = ensure_transition_matrix(P, P.shape[0])
    candidates = np.atleast_1d(np.asarray(gaps, dtype=np.int64))
    if np.any(candidates < 1):
        raise ValueError("Gaps must be positive integers.")
    rng = np.random.default_rng(seed)
    n_states = P.shape[0]

    cdfs = {int(g): _cumulative_rows(np.linalg.matrix_power(P, int(g))) for g in np.unique(candidates)}
    observation_gaps = rng.choice(candidates, size=max(n_observations - 1, 0), p=gap_probabilities)
    draws = rng.random(max(n_observations - 1, 0))

    observed = np.empty(n_observations, dtype=np.int64)
    if n_observations > 0:
        observed[0] = rng.integers(n_states) if start is None else start
    for k in range(1, n_observations):
        cdf = cdfs[int(observation_gaps[k - 1])]
        observed[k] = np.searchsorted(cdf[observed[k - 1]], draws[k - 1], side='right')

    timestamps = t0 + days * np.concatenate(([0], np.cumsum(observation_gaps))).astype(np.float64)
    timestamps = timestamps[:n_observations]
    if states is not None:
        labels = np.asarray(states)
        return timestamps, labels[observed]
    return timestamps, observed


def to_events(timestamps, observed_states) -> list:
    r""" Zips timestamps and states into a list of `(timestamp, state)` events.

    >>> to_events([0., 1.], ['a', 'b'])
    [(0.0, 'a'), (1.0, 'b')]
    """
    timestamps, observed_states = list(timestamps), list(observed_states)
    if len(timestamps) != len(observed_states):
        raise ValueError(f"Got {len(timestamps)} timestamps but {len(observed_states)} states.")
    return [(t.item() if hasattr(t, 'item') else t, s.item() if hasattr(s, 'item') else s)
            for t, s in zip(timestamps, observed_states)]
