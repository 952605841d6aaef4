import datetime
import logging
from typing import Optional, Dict, Tuple, Iterator

import numpy as np

from ._state_space import StateSpace
from ..base import Model, Estimator, InputFormatError
from ..util.callbacks import ProgressCallback
from ..util.exceptions import InvalidConfigurationError

log = logging.getLogger(__name__)


class TransitionObservations(Model):
    r""" Aggregated transition observations. Each distinct observation is a tuple :math:`(u, v, g, n)` consisting of
    the state index :math:`u` at one observation time, the state index :math:`v` at the next observation time,
    the number of discrete steps :math:`g\geq 1` that elapsed in between, and the number of times :math:`n\geq 1`
    this combination was observed.

    The observations are stored in four parallel, read-only arrays which are sorted lexicographically
    by :math:`(u, v, g)`.

    Parameters
    ----------
    u : (m,) array_like of int
        Start state indices.
    v : (m,) array_like of int
        End state indices.
    gaps : (m,) array_like of int
        Number of discrete steps between start and end.
    counts : (m,) array_like of int
        Number of times each combination was observed.
    state_space : StateSpace, optional, default=None
        The state space the indices refer to. If given, indices are checked to be within bounds.
    days : float, optional, default=None
        Duration of one discrete step that was used to discretize elapsed times.
    raw_counts : dict, optional, default=None
        Counts of `(u, v, elapsed_time)` combinations before the elapsed time was discretized.

    See Also
    --------
    TransitionObservationEstimator
    """

    def __init__(self, u, v, gaps, counts, state_space: Optional[StateSpace] = None, days: Optional[float] = None,
                 raw_counts: Optional[Dict[Tuple[int, int, float], int]] = None):
        super().__init__()
        u, v, gaps, counts = (np.asarray(x, dtype=np.int64).reshape(-1) for x in (u, v, gaps, counts))
        if not len(u) == len(v) == len(gaps) == len(counts):
            raise ValueError(f"Observation arrays must be of equal length, got lengths "
                             f"{[len(u), len(v), len(gaps), len(counts)]}.")
        if np.any(gaps < 1):
            raise ValueError("Gaps must be positive integers.")
        if np.any(counts < 1):
            raise ValueError("Observation counts must be positive integers.")
        if np.any(u < 0) or np.any(v < 0):
            raise ValueError("State indices must be non-negative.")
        if state_space is not None and len(u) > 0 and max(u.max(), v.max()) >= state_space.n_states:
            raise ValueError(f"State indices exceed the number of states ({state_space.n_states}).")

        order = np.lexsort((gaps, v, u))
        self._u, self._v, self._gaps, self._counts = (x[order] for x in (u, v, gaps, counts))
        for x in (self._u, self._v, self._gaps, self._counts):
            x.setflags(write=False)
        self._state_space = state_space
        self._days = days
        self._raw_counts = raw_counts

    @property
    def u(self) -> np.ndarray:
        r""" Start state indices. """
        return self._u

    @property
    def v(self) -> np.ndarray:
        r""" End state indices. """
        return self._v

    @property
    def gaps(self) -> np.ndarray:
        r""" Elapsed number of discrete steps. """
        return self._gaps

    @property
    def counts(self) -> np.ndarray:
        r""" Multiplicities of the observations. """
        return self._counts

    @property
    def state_space(self) -> Optional[StateSpace]:
        r""" The state space the observations refer to, can be None. """
        return self._state_space

    @property
    def days(self) -> Optional[float]:
        r""" Duration of one discrete step. """
        return self._days

    @property
    def raw_counts(self) -> Optional[Dict[Tuple[int, int, float], int]]:
        r""" Counts of `(u, v, elapsed_time)` before discretization of the elapsed time, can be None. """
        return self._raw_counts

    @property
    def n_observations(self) -> int:
        r""" Number of distinct `(u, v, gap)` combinations. """
        return len(self._u)

    @property
    def total_count(self) -> int:
        r""" Total number of observed transitions. """
        return int(self._counts.sum())

    @property
    def max_gap(self) -> int:
        r""" The largest observed gap, 0 if there are no observations. """
        return int(self._gaps.max()) if self.n_observations > 0 else 0

    @property
    def is_empty(self) -> bool:
        r""" Whether there are no observations at all. """
        return self.n_observations == 0

    def count_matrix(self, n_states: Optional[int] = None) -> np.ndarray:
        r""" Transition counts summed over all gaps.

        Parameters
        ----------
        n_states : int, optional, default=None
            Number of states, defaults to the size of the state space.

        Returns
        -------
        counts : (n_states, n_states) ndarray
        """
        n_states = self._resolve_n_states(n_states)
        C = np.zeros((n_states, n_states), dtype=np.int64)
        np.add.at(C, (self._u, self._v), self._counts)
        return C

    def as_dict(self, labels: bool = True) -> Dict[tuple, int]:
        r""" The observations as mapping from `(u, v, gap)` to count.

        Parameters
        ----------
        labels : bool, default=True
            Whether to key by state labels (requires a state space) or by state indices.

        Returns
        -------
        observations : dict
        """
        use_labels = labels and self._state_space is not None
        result = {}
        for u, v, gap, count in self:
            if use_labels:
                u, v = self._state_space.label_of(u), self._state_space.label_of(v)
            result[(u, v, gap)] = count
        return result

    def _resolve_n_states(self, n_states):
        if n_states is None:
            if self._state_space is None:
                raise ValueError("Number of states must be given if there is no state space.")
            n_states = self._state_space.n_states
        return n_states

    def __len__(self):
        return self.n_observations

    def __iter__(self) -> Iterator[Tuple[int, int, int, int]]:
        for u, v, gap, count in zip(self._u, self._v, self._gaps, self._counts):
            yield int(u), int(v), int(gap), int(count)


def _to_naive_utc(dates: list) -> list:
    aware = [isinstance(x, datetime.datetime) and x.utcoffset() is not None for x in dates]
    if not any(aware):
        return dates
    if not all(aware):
        raise InputFormatError("Timestamps mix timezone-aware and naive datetimes or dates.")
    return [x.astimezone(datetime.timezone.utc).replace(tzinfo=None) for x in dates]


def _elapsed_steps(elapsed, days: float, rtol: float = 1e-9) -> np.ndarray:
    r""" Number of discrete steps :math:`\lceil \Delta t / \mathrm{days}\rceil` per elapsed time. Ratios within a
    relative tolerance of an integer are snapped to it, so that exact multiples of `days` do not gain a step
    through floating point error.

    >>> _elapsed_steps([.3, 5. / 24., .25], days=.1), _elapsed_steps([5. / 24.], days=1. / 24.)
    (array([3, 3, 3]), array([5]))
    """
    ratio = np.asarray(elapsed, dtype=np.float64) / days
    nearest = np.rint(ratio)
    ratio = np.where(np.isclose(ratio, nearest, rtol=rtol, atol=0.), nearest, ratio)
    return np.ceil(ratio).astype(np.int64)


def _to_time_axis(timestamps) -> np.ndarray:
    r""" Converts timestamps into floats. Dates and datetimes are converted into days relative to the earliest
    timestamp. Timezone-aware datetimes are converted to UTC. """
    t = np.asarray(timestamps)
    if t.dtype == object and len(t) > 0 and all(isinstance(x, datetime.date) for x in t):
        t = np.array(_to_naive_utc(t.tolist()), dtype='datetime64[us]')
    if np.issubdtype(t.dtype, np.datetime64):
        return (t - t.min()) / np.timedelta64(1, 'D')
    if np.issubdtype(t.dtype, np.timedelta64):
        return t / np.timedelta64(1, 'D')
    if not np.issubdtype(t.dtype, np.number) or np.issubdtype(t.dtype, np.complexfloating):
        raise InputFormatError(f"Timestamps must be real numbers, dates, or datetimes, got dtype {t.dtype}.")
    return t.astype(np.float64)


def _split_events(events):
    timestamps, labels = [], []
    for i, event in enumerate(events):
        try:
            timestamp, label = event
        except (TypeError, ValueError):
            raise InputFormatError(f"Event in position {i} is not a (timestamp, state) pair: {event!r}.")
        timestamps.append(timestamp)
        labels.append(label)
    return timestamps, labels


class TransitionObservationEstimator(Estimator):
    r""" Aggregates timestamped state observations into transition observations, see
    :class:`TransitionObservations`.

    The events are sorted by time (stably, ties keep their input order). Every pair of consecutive
    events with strictly positive elapsed time :math:`\Delta t` yields a transition from the earlier state to the
    later state. Pairs are first counted per distinct elapsed time and subsequently re-bucketed by the number of
    discrete steps :math:`\lceil \Delta t / \mathrm{days}\rceil`.

    Parameters
    ----------
    states : sequence of hashable or StateSpace
        The state space.
    days : float, default=1.
        Duration of one discrete step. If timestamps are dates or datetimes, elapsed times are measured in days,
        otherwise in the unit of the timestamps.
    progress : type, optional, default=None
        Progress bar type, tested for tqdm. Incremented once per processed group of events.

    Examples
    --------
    >>> estimator = TransitionObservationEstimator(states=['A', 'B'], days=1.)
    >>> observations = estimator.fit([(0, 'A'), (1, 'B'), (3, 'A')]).fetch_model()
    >>> observations.as_dict()
    {('A', 'B', 1): 1, ('B', 'A', 2): 1}
    """

    def __init__(self, states, days: float = 1., progress=None):
        super().__init__()
        self.states = states
        self.days = days
        self.progress = progress

    @property
    def states(self) -> StateSpace:
        r""" The state space. """
        return self._states

    @states.setter
    def states(self, value):
        self._states = value if isinstance(value, StateSpace) else StateSpace(value)

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

    def fetch_model(self) -> Optional[TransitionObservations]:
        r""" Yields the latest aggregated observations.

        Returns
        -------
        observations : TransitionObservations or None
            The observations or None if :meth:`fit` was not called yet.
        """
        return self._model

    def fit(self, data, groups=None, **kwargs):
        r""" Aggregates events into transition observations.

        Parameters
        ----------
        data : iterable of (timestamp, state) pairs
            The events. State labels must be part of :attr:`states`.
        groups : array_like, optional, default=None
            Optional key per event, e.g., the identifier of the observed entity. Transitions are only formed
            between consecutive events of the same group.
        **kwargs
            Ignored kwargs for scikit-learn compatibility.

        Returns
        -------
        self : TransitionObservationEstimator
            Reference to self.
        """
        timestamps, labels = _split_events(data)
        states = self.states.to_indices(labels)
        t = _to_time_axis(timestamps)
        if groups is None:
            group_codes = np.zeros(len(t), dtype=np.int64)
        else:
            groups = np.asarray(groups)
            if groups.shape != (len(t),):
                raise InputFormatError(f"Expected one group key per event ({len(t)}), got shape {groups.shape}.")
            _, group_codes = np.unique(groups, return_inverse=True)
            group_codes = group_codes.reshape(-1)

        order = np.argsort(t, kind='stable')
        order = order[np.argsort(group_codes[order], kind='stable')]
        boundaries = np.flatnonzero(np.diff(group_codes[order])) + 1
        sequences = np.split(order, boundaries) if len(order) > 0 else []

        u, v, elapsed = [], [], []
        with ProgressCallback(self.progress, "Aggregating observations", len(sequences)) as callback:
            for sequence in sequences:
                dt = np.diff(t[sequence])
                keep = dt > 0
                u.append(states[sequence[:-1]][keep])
                v.append(states[sequence[1:]][keep])
                elapsed.append(dt[keep])
                callback()

        if u:
            u, v, elapsed = np.concatenate(u), np.concatenate(v), np.concatenate(elapsed)
        n_pairs = max(len(t) - len(sequences), 0)
        if len(u) < n_pairs:
            log.debug(f"Discarded {n_pairs - len(u)} event pair(s) with non-positive elapsed time.")

        self._model = self._aggregate(np.asarray(u, dtype=np.int64), np.asarray(v, dtype=np.int64),
                                      np.asarray(elapsed, dtype=np.float64))
        log.debug(f"Aggregated {self._model.total_count} transition(s) into "
                  f"{self._model.n_observations} observation(s), max gap = {self._model.max_gap}.")
        return self

    def _aggregate(self, u, v, elapsed) -> TransitionObservations:
        if len(u) == 0:
            empty = np.empty(0, dtype=np.int64)
            return TransitionObservations(empty, empty, empty, empty, state_space=self.states, days=self.days,
                                          raw_counts={})
        raw_keys, raw_counts = np.unique(np.column_stack((u, v, elapsed)), axis=0, return_counts=True)
        raw = {(int(ru), int(rv), float(re)): int(n) for (ru, rv, re), n in zip(raw_keys, raw_counts)}

        raw_gaps = _elapsed_steps(raw_keys[:, 2], self.days)
        keys, inverse = np.unique(np.column_stack((raw_keys[:, :2].astype(np.int64), raw_gaps)), axis=0,
                                  return_inverse=True)
        counts = np.bincount(inverse.reshape(-1), weights=raw_counts, minlength=len(keys))
        return TransitionObservations(keys[:, 0], keys[:, 1], keys[:, 2], np.rint(counts).astype(np.int64),
                                      state_space=self.states, days=self.days, raw_counts=raw)


def aggregate_observations(events, states, days: float = 1., groups=None, progress=None) -> TransitionObservations:
    r""" Aggregates timestamped state observations into transition observations. Shortcut for
    :class:`TransitionObservationEstimator`.

    Parameters
    ----------
    events : iterable of (timestamp, state) pairs
        The events.
    states : sequence of hashable or StateSpace
        The state space.
    days : float, default=1.
        Duration of one discrete step.
    groups : array_like, optional, default=None
        Optional key per event, transitions are only formed within groups.
    progress : type, optional, default=None
        Progress bar type, tested for tqdm.

    Returns
    -------
    observations : TransitionObservations
        The aggregated observations.
    """
    return TransitionObservationEstimator(states, days=days, progress=progress).fit(events, groups=groups) \
        .fetch_model()
