from typing import Optional, List

import numpy as np

from ._observations import TransitionObservations
from ._state_space import StateSpace
from ..base import Model


class IrregularMarkovModel(Model):
    r""" Markov chain model estimated from irregularly sampled observations.

    Parameters
    ----------
    transition_matrix : (n, n) array_like
        The single-step transition matrix.
    state_space : StateSpace, optional, default=None
        Labels of the states. If None, the states are labelled by their indices.
    observations : TransitionObservations, optional, default=None
        The aggregated observations the model was estimated from.
    initial_transition_matrix : (n, n) ndarray, optional, default=None
        The starting point of the EM iteration.
    n_iterations : int, default=0
        Number of performed EM iterations.
    converged : bool, default=True
        Whether the EM iteration reached its convergence tolerance.
    increments : list of float, optional, default=None
        Maximum absolute element-wise change of the transition matrix in each iteration.
    degenerate_rows : list of ndarray, optional, default=None
        For each iteration the indices of the rows which did not receive any expected transition counts.

    See Also
    --------
    EMTransitionMatrixEstimator
    """

    def __init__(self, transition_matrix, state_space: Optional[StateSpace] = None,
                 observations: Optional[TransitionObservations] = None,
                 initial_transition_matrix: Optional[np.ndarray] = None, n_iterations: int = 0,
                 converged: bool = True, increments: Optional[List[float]] = None,
                 degenerate_rows: Optional[List[np.ndarray]] = None):
        super().__init__()
        transition_matrix = np.asarray(transition_matrix, dtype=np.float64)
        if transition_matrix.ndim != 2 or transition_matrix.shape[0] != transition_matrix.shape[1]:
            raise ValueError(f"Transition matrix must be square, got shape {transition_matrix.shape}.")
        if state_space is None:
            state_space = StateSpace(range(transition_matrix.shape[0]))
        if state_space.n_states != transition_matrix.shape[0]:
            raise ValueError(f"State space has {state_space.n_states} states but the transition matrix "
                             f"is of shape {transition_matrix.shape}.")
        self._transition_matrix = transition_matrix
        self._state_space = state_space
        self._observations = observations
        self._initial_transition_matrix = initial_transition_matrix
        self._n_iterations = n_iterations
        self._converged = converged
        self._increments = [] if increments is None else list(increments)
        self._degenerate_rows = [] if degenerate_rows is None else list(degenerate_rows)

    @property
    def transition_matrix(self) -> np.ndarray:
        r""" The estimated single-step transition matrix. """
        return self._transition_matrix

    @property
    def state_space(self) -> StateSpace:
        r""" The state space. """
        return self._state_space

    @property
    def states(self) -> np.ndarray:
        r""" The state labels. """
        return self._state_space.states

    @property
    def n_states(self) -> int:
        r""" Number of states. """
        return self._transition_matrix.shape[0]

    @property
    def observations(self) -> Optional[TransitionObservations]:
        r""" The observations that were used for estimation, can be None. """
        return self._observations

    @property
    def initial_transition_matrix(self) -> Optional[np.ndarray]:
        r""" The transition matrix the EM iteration started from, can be None. """
        return self._initial_transition_matrix

    @property
    def n_iterations(self) -> int:
        r""" Number of EM iterations. """
        return self._n_iterations

    @property
    def converged(self) -> bool:
        r""" Whether the EM iteration converged. """
        return self._converged

    @property
    def convergence_status(self) -> str:
        r""" Either 'converged' or 'exhausted', the latter if the maximum number of iterations was reached without
        convergence. """
        return 'converged' if self._converged else 'exhausted'

    @property
    def increments(self) -> List[float]:
        r""" Maximum absolute element-wise change of the transition matrix per iteration. """
        return self._increments

    @property
    def degenerate_rows(self) -> List[np.ndarray]:
        r""" Per iteration, indices of states which did not receive any expected outgoing transitions. """
        return self._degenerate_rows

    def transition_matrix_power(self, n: int) -> np.ndarray:
        r""" The :math:`n`-step transition matrix :math:`P^n`. """
        if n < 0:
            raise ValueError(f"Power must be non-negative, but was {n}.")
        return np.linalg.matrix_power(self._transition_matrix, n)

    def propagate(self, p0, n_steps: int = 1) -> np.ndarray:
        r""" Propagates a distribution over states by `n_steps` steps, i.e., computes :math:`p_0^\top P^n`.

        Parameters
        ----------
        p0 : (n,) array_like
            Initial distribution.
        n_steps : int, default=1
            Number of steps.

        Returns
        -------
        pk : (n,) ndarray
            The propagated distribution.
        """
        p0 = np.asarray(p0, dtype=np.float64)
        if p0.shape != (self.n_states,):
            raise ValueError(f"Distribution must be of shape ({self.n_states},), got {p0.shape}.")
        return p0 @ self.transition_matrix_power(n_steps)

    def simulate(self, n_steps: int, start: Optional[int] = None, seed: Optional[int] = None) -> np.ndarray:
        r"""Generates a realization of the Markov chain.

        Parameters
        ----------
        n_steps : int
            Trajectory length.
        start : int, optional, default=None
            Starting state index. Drawn uniformly at random if None.
        seed : int, optional, default=None
            Seed of the random number generator.

        Returns
        -------
        (n_steps,) ndarray
            The state index trajectory, starting with `start`.
        """
        from ..data import simulate_chain
        return simulate_chain(self._transition_matrix, n_steps, start=start, seed=seed)
