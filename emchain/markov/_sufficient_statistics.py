from multiprocessing.pool import ThreadPool
from typing import Optional

import numpy as np
from threadpoolctl import threadpool_limits

from ._observations import TransitionObservations
from ..util.exceptions import NumericalError
from ..util.parallel import handle_n_jobs, chunk_indices, joining


def matrix_powers(transition_matrix: np.ndarray, max_power: int) -> np.ndarray:
    r""" Computes all matrix powers :math:`P^0, P^1, \ldots, P^{\mathrm{max\_power}}` of a square matrix.

    Parameters
    ----------
    transition_matrix : (n, n) ndarray
        The matrix :math:`P`.
    max_power : int
        The largest exponent, must be non-negative.

    Returns
    -------
    powers : (max_power + 1, n, n) ndarray
        The matrix powers indexed by exponent, `powers[0]` is the identity.

    Examples
    --------
    >>> powers = matrix_powers(np.array([[0., 1.], [1., 0.]]), 2)
    >>> powers[2]
    array([[1., 0.],
           [0., 1.]])
    """
    P = np.asarray(transition_matrix, dtype=np.float64)
    if P.ndim != 2 or P.shape[0] != P.shape[1]:
        raise ValueError(f"Expected a square matrix, got shape {P.shape}.")
    if max_power < 0:
        raise ValueError(f"Maximum power must be non-negative, but was {max_power}.")
    powers = np.empty((max_power + 1,) + P.shape, dtype=np.float64)
    powers[0] = np.eye(P.shape[0])
    try:
        with np.errstate(over='raise', invalid='raise'):
            for n in range(1, max_power + 1):
                np.matmul(powers[n - 1], P, out=powers[n])
    except FloatingPointError as e:
        raise NumericalError(f"Floating point error while computing matrix powers: {e}") from e
    return powers


def _accumulate(observations: TransitionObservations, transition_matrix, powers, selection=slice(None)):
    n_states = transition_matrix.shape[0]
    S = np.zeros((n_states, n_states), dtype=np.float64)
    items = zip(observations.u[selection], observations.v[selection],
                observations.gaps[selection], observations.counts[selection])
    try:
        with np.errstate(over='raise', invalid='raise', divide='raise'):
            for u, v, gap, count in items:
                likelihood = powers[gap, u, v]
                if likelihood <= 0:
                    # no path of this length under the current model, observation carries no information
                    continue
                forward = powers[:gap, u, :]  # forward[l] = (P^l)[u, :]
                backward = powers[gap - 1::-1, :, v]  # backward[l] = (P^(gap-l-1))[:, v]
                S += (count / likelihood) * (forward.T @ backward)
            S *= transition_matrix
    except FloatingPointError as e:
        raise NumericalError(f"Floating point error while computing expected transition counts: {e}") from e
    return S


def expected_transition_counts(observations: TransitionObservations, transition_matrix: np.ndarray,
                               powers: Optional[np.ndarray] = None, n_jobs: Optional[int] = 1) -> np.ndarray:
    r""" Expectation step. Computes the expected number of single-step transitions :math:`i\to j` given the
    observed multi-step transitions and the current transition matrix :math:`P`:

    .. math::

        S_{ij} = \sum_{(u, v, g, n)} \frac{n}{(P^g)_{uv}} \sum_{l=0}^{g-1} (P^l)_{ui} P_{ij} (P^{g-l-1})_{jv}.

    The inner sum is the probability that a path from :math:`u` to :math:`v` of length :math:`g` performs the
    step :math:`i\to j` at position :math:`l`; dividing by :math:`(P^g)_{uv}` conditions on the observation.
    Observations with :math:`(P^g)_{uv} = 0` are skipped.

    Parameters
    ----------
    observations : TransitionObservations
        The aggregated observations.
    transition_matrix : (n, n) ndarray
        The current transition matrix estimate.
    powers : ndarray, optional, default=None
        Precomputed matrix powers as returned by :meth:`matrix_powers`, must contain at least all powers up to
        the largest observed gap. Computed if not provided.
    n_jobs : int or None, default=1
        Number of threads. Observations are split into disjoint chunks whose expected counts are summed.
        If None, the number of available cores is used.

    Returns
    -------
    S : (n, n) ndarray
        Expected transition counts, not normalized.

    Raises
    ------
    NumericalError
        If a floating point error occurs or the result is not finite.
    """
    P = np.asarray(transition_matrix, dtype=np.float64)
    n_states = P.shape[0]
    if observations.is_empty:
        return np.zeros((n_states, n_states), dtype=np.float64)
    if powers is None:
        powers = matrix_powers(P, observations.max_gap)
    elif powers.shape[0] <= observations.max_gap or powers.shape[1:] != P.shape:
        raise ValueError(f"Precomputed powers of shape {powers.shape} do not cover the largest gap "
                         f"{observations.max_gap} for a {P.shape} matrix.")

    n_jobs = handle_n_jobs(n_jobs)
    if n_jobs == 1 or observations.n_observations == 1:
        S = _accumulate(observations, P, powers)
    else:
        chunks = chunk_indices(observations.n_observations, n_jobs)
        with threadpool_limits(limits=1, user_api='blas'), joining(ThreadPool(processes=len(chunks))) as pool:
            partial_counts = pool.starmap(_accumulate, [(observations, P, powers, chunk) for chunk in chunks])
        S = np.add.reduce(partial_counts)

    if not np.all(np.isfinite(S)):
        raise NumericalError("Expected transition counts contain non-finite values.")
    return S
