import logging
import warnings
from typing import Optional

import numpy as np

from ._irregular_markov_model import IrregularMarkovModel
from ._observations import TransitionObservationEstimator
from ._state_space import StateSpace
from ._sufficient_statistics import matrix_powers, expected_transition_counts
from ._transition_matrix import initial_transition_matrix, normalize_expected_counts, DEGENERATE_ROW_POLICIES
from ..base import Estimator
from ..util import callbacks
from ..util.exceptions import InvalidConfigurationError, InsufficientDataWarning, NotConvergedWarning, \
    DidNotConvergeError
from ..util.parallel import handle_n_jobs
from ..util.types import ensure_transition_matrix

log = logging.getLogger(__name__)


class EMTransitionMatrixEstimator(Estimator):
    r""" Expectation-maximization estimator for the single-step transition matrix of a Markov chain which is
    only observed at irregular times :footcite:`sherlaw1995estimating`.

    Consecutive observations of the chain are aggregated into transition observations :math:`(u, v, g, n)`, see
    :class:`TransitionObservationEstimator`. Starting from :meth:`initial_transition_matrix`, the estimator
    alternates between

    * the expectation step :meth:`expected_transition_counts`, which distributes every observed
      :math:`g`-step transition over all single-step transitions that could have happened in between, and
    * the maximization step, which normalizes the rows of the expected counts into a new transition matrix,

    until the largest absolute element-wise change of the transition matrix is at most `epsilon`.

    Parameters
    ----------
    states : sequence of hashable or StateSpace
        The state space.
    epsilon : float, default=1e-3
        Convergence tolerance on the largest element-wise change of the transition matrix.
    days : float, default=1.
        Duration of one discrete step. If timestamps are dates or datetimes, durations are measured in days.
    maxiter : int, default=1000
        Maximum number of EM iterations.
    degenerate_row_policy : str, default='retain'
        Treatment of states which receive no expected outgoing transitions in an iteration. One of 'retain'
        (keep the previous row), 'uniform' (uniform row), or 'zero' (all-zero row, the resulting matrix is then
        not row-stochastic).
    n_jobs : int or None, default=1
        Number of threads used in the expectation step. If None, the number of available cores is used.
    progress : type, optional, default=None
        Progress bar type, tested for tqdm. The interface is checked via
        :meth:`supports_progress_interface <emchain.util.callbacks.supports_progress_interface>`.
    raise_on_not_converged : bool, default=False
        If True, a :class:`DidNotConvergeError` is raised when `maxiter` iterations did not suffice, otherwise a
        :class:`NotConvergedWarning` is issued and the model is flagged as not converged.

    Examples
    --------
    >>> events = [(0, 'a'), (1, 'b'), (3, 'a'), (4, 'a'), (6, 'b'), (7, 'a')]
    >>> estimator = EMTransitionMatrixEstimator(states=['a', 'b'], epsilon=1e-3, days=1.)
    >>> model = estimator.fit(events).fetch_model()
    >>> np.testing.assert_allclose(model.transition_matrix.sum(axis=1), 1.)

    References
    ----------
    .. footbibliography::
    """

    def __init__(self, states, epsilon: float = 1e-3, days: float = 1., maxiter: int = 1000,
                 degenerate_row_policy: str = 'retain', n_jobs: Optional[int] = 1, progress=None,
                 raise_on_not_converged: bool = False):
        super().__init__()
        self.states = states
        self.epsilon = epsilon
        self.days = days
        self.maxiter = maxiter
        self.degenerate_row_policy = degenerate_row_policy
        self.n_jobs = n_jobs
        self.progress = progress
        self.raise_on_not_converged = raise_on_not_converged

    @property
    def states(self) -> StateSpace:
        r""" The state space. """
        return self._states

    @states.setter
    def states(self, value):
        self._states = value if isinstance(value, StateSpace) else StateSpace(value)

    @property
    def n_states(self) -> int:
        r""" Number of states. """
        return self._states.n_states

    @property
    def epsilon(self) -> float:
        r""" Convergence tolerance. """
        return self._epsilon

    @epsilon.setter
    def epsilon(self, value: float):
        value = float(value)
        if not np.isfinite(value) or value <= 0:
            raise InvalidConfigurationError(f"Convergence tolerance epsilon must be positive, but was {value}.")
        self._epsilon = value

    @property
    def days(self) -> float:
        r""" Duration of one discrete step. """
        return self._days

    @days.setter
    def days(self, value: float):
        value = float(value)
        if not np.isfinite(value) or value <= 0:
            raise InvalidConfigurationError(f"The step duration `days` must be positive, but was {value}.")
        self._days = value

    @property
    def maxiter(self) -> int:
        r""" Maximum number of EM iterations. """
        return self._maxiter

    @maxiter.setter
    def maxiter(self, value: int):
        value = int(value)
        if value < 1:
            raise InvalidConfigurationError(f"maxiter must be at least 1, but was {value}.")
        self._maxiter = value

    @property
    def degenerate_row_policy(self) -> str:
        r""" Treatment of rows without expected counts, one of 'retain', 'uniform', 'zero'. """
        return self._degenerate_row_policy

    @degenerate_row_policy.setter
    def degenerate_row_policy(self, value: str):
        if value not in DEGENERATE_ROW_POLICIES:
            raise InvalidConfigurationError(f"Unknown degenerate row policy {value}, "
                                            f"must be one of {DEGENERATE_ROW_POLICIES}.")
        self._degenerate_row_policy = value

    @property
    def n_jobs(self) -> int:
        r""" Number of threads in the expectation step. """
        return self._n_jobs

    @n_jobs.setter
    def n_jobs(self, value: Optional[int]):
        try:
            self._n_jobs = handle_n_jobs(value)
        except ValueError as e:
            raise InvalidConfigurationError(str(e)) from e

    @property
    def raise_on_not_converged(self) -> bool:
        r""" Whether non-convergence raises an error instead of issuing a warning. """
        return self._raise_on_not_converged

    @raise_on_not_converged.setter
    def raise_on_not_converged(self, value: bool):
        self._raise_on_not_converged = bool(value)

    def fetch_model(self) -> Optional[IrregularMarkovModel]:
        r""" Yields the most recent model or None if :meth:`fit` was not called yet.

        Returns
        -------
        model : IrregularMarkovModel or None
            The model.
        """
        return self._model

    def fit(self, data, groups=None, initial_matrix=None, **kwargs):
        r""" Fits a transition matrix to timestamped state observations.

        Parameters
        ----------
        data : iterable of (timestamp, state) pairs
            The events, in any order.
        groups : array_like, optional, default=None
            Optional key per event, e.g., the identifier of the observed entity. Transitions are only formed
            between consecutive events of the same group.
        initial_matrix : (n, n) array_like, optional, default=None
            Starting point of the EM iteration. Defaults to :meth:`initial_transition_matrix`.
        **kwargs
            Ignored kwargs for scikit-learn compatibility.

        Returns
        -------
        self : EMTransitionMatrixEstimator
            Reference to self.
        """
        observations = TransitionObservationEstimator(self.states, days=self.days, progress=self.progress) \
            .fit(data, groups=groups).fetch_model()
        if observations.is_empty:
            warnings.warn("Data did not contain any transition between two events with increasing timestamps. "
                          "Estimation proceeds from a uniform transition matrix.", InsufficientDataWarning)

        if initial_matrix is None:
            P0 = initial_transition_matrix(observations, self.n_states)
        else:
            P0 = ensure_transition_matrix(initial_matrix, self.n_states)

        P = P0
        increments, degenerate_rows = [], []
        converged = False
        with EMCallback(self.progress, self.maxiter, increments) as callback:
            while len(increments) < self.maxiter:
                powers = matrix_powers(P, observations.max_gap)
                S = expected_transition_counts(observations, P, powers=powers, n_jobs=self.n_jobs)
                P, max_delta, degenerate = normalize_expected_counts(S, P, self.degenerate_row_policy)
                degenerate_rows.append(degenerate)
                if len(degenerate) > 0:
                    log.debug(f"Iteration {len(increments) + 1}: no expected outgoing transitions for state(s) "
                              f"{self.states.to_labels(degenerate)}.")
                callback(1, error=max_delta)
                if max_delta <= self.epsilon:
                    converged = True
                    break

        n_iterations = len(increments)
        if converged:
            log.info(f"EM iteration converged after {n_iterations} iteration(s).")
        else:
            if self.raise_on_not_converged:
                raise DidNotConvergeError(P, callback.last_increment, n_iterations)
            warnings.warn(f"EM iteration did not converge after {n_iterations} iteration(s). "
                          f"Last increment: {callback.last_increment:.5e}", NotConvergedWarning)

        self._model = IrregularMarkovModel(P, state_space=self.states, observations=observations,
                                           initial_transition_matrix=P0, n_iterations=n_iterations,
                                           converged=converged, increments=increments,
                                           degenerate_rows=degenerate_rows)
        return self


class EMCallback(callbacks.IterationErrorProgressCallback):
    r"""Callback for the EM iteration. Increments a progress bar and stores the increment of each iteration.

    Parameters
    ----------
    progress : type, optional
        Progress bar type.
    total : int
        Maximum number of iterations.
    increments : list, optional
        A list to append the increments to that are passed to :meth:`__call__`.
    """

    def __init__(self, progress, total, increments=None):
        super().__init__(progress, total=total, description="Running EM estimate")
        self.increments = increments
        self.last_increment = np.inf

    def __call__(self, inc=1, error=None, **kw):
        super().__call__(inc, error=error)
        log.debug(f"EM increment: {error:.5e}")
        if self.increments is not None:
            self.increments.append(error)
        self.last_increment = error


def estimate_transition_matrix(events, states, epsilon: float = 1e-3, days: float = 1., maxiter: int = 1000,
                               groups=None, degenerate_row_policy: str = 'retain', progress=None) -> np.ndarray:
    r""" Estimates the single-step transition matrix of a Markov chain from irregularly timed observations of its
    state. See :class:`EMTransitionMatrixEstimator` for details.

    Parameters
    ----------
    events : iterable of (timestamp, state) pairs
        The observations, in any order.
    states : sequence of hashable
        The state space, defines order of rows and columns of the result.
    epsilon : float, default=1e-3
        Convergence tolerance.
    days : float, default=1.
        Duration of one discrete step.
    maxiter : int, default=1000
        Maximum number of EM iterations.
    groups : array_like, optional, default=None
        Optional key per event, transitions are only formed within groups.
    degenerate_row_policy : str, default='retain'
        Treatment of states without expected outgoing transitions.
    progress : type, optional, default=None
        Progress bar type, tested for tqdm.

    Returns
    -------
    P : (n, n) ndarray
        The estimated transition matrix.

    Raises
    ------
    InvalidConfigurationError
        If `epsilon`, `days`, or `maxiter` are not positive or the state space is empty.
    InvalidStateError
        If events contain unknown state labels.
    DidNotConvergeError
        If the iteration did not converge within `maxiter` iterations.

    Examples
    --------
    >>> events = [(0, 1), (1, 1), (2, 2), (4, 1), (5, 2), (6, 2), (8, 1)]
    >>> P = estimate_transition_matrix(events, states=[1, 2], epsilon=1e-3)
    >>> P.shape
    (2, 2)
    """
    estimator = EMTransitionMatrixEstimator(states, epsilon=epsilon, days=days, maxiter=maxiter,
                                            degenerate_row_policy=degenerate_row_policy, progress=progress,
                                            raise_on_not_converged=True)
    return estimator.fit(events, groups=groups).fetch_model().transition_matrix
