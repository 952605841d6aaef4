from typing import Hashable, Iterable, Sequence

import numpy as np

from ..util.exceptions import InvalidConfigurationError, InvalidStateError


class StateSpace:
    r""" Ordered, finite set of state labels together with the bidirectional mapping between labels and dense
    state indices :math:`0,\ldots,K-1`. The index of a label is its position in the sequence it was constructed from.

    Parameters
    ----------
    states : sequence of hashable
        The state labels, e.g., integers or strings. Must be non-empty and must not contain duplicates.

    Examples
    --------
    >>> space = StateSpace(['healthy', 'sick', 'dead'])
    >>> space.n_states
    3
    >>> space.to_indices(['sick', 'dead', 'sick'])
    array([1, 2, 1])
    >>> space.to_labels([2, 0])
    ['dead', 'healthy']
    """

    def __init__(self, states: Sequence[Hashable]):
        if isinstance(states, StateSpace):
            states = states.labels
        try:
            labels = tuple(states)
        except TypeError as e:
            raise InvalidConfigurationError(f"States must be a sequence of labels, got {type(states)}.") from e
        if len(labels) == 0:
            raise InvalidConfigurationError("The state space must contain at least one state.")
        try:
            index = {label: i for i, label in enumerate(labels)}
        except TypeError as e:
            raise InvalidConfigurationError("State labels must be hashable.") from e
        if len(index) != len(labels):
            duplicates = sorted({str(label) for label in labels if labels.count(label) > 1})
            raise InvalidConfigurationError(f"State labels must be unique, got duplicates {duplicates}.")
        self._labels = labels
        self._index = index

    @property
    def n_states(self) -> int:
        r""" Number of states :math:`K`. """
        return len(self._labels)

    @property
    def labels(self) -> tuple:
        r""" The state labels in index order. """
        return self._labels

    @property
    def states(self) -> np.ndarray:
        r""" The state labels as an array. Labels of mixed types are kept in an object array. """
        if len({type(label) for label in self._labels}) == 1:
            symbols = np.asarray(self._labels)
            if symbols.ndim == 1:
                return symbols
        symbols = np.empty(self.n_states, dtype=object)
        symbols[:] = self._labels
        return symbols

    def index_of(self, label) -> int:
        r""" The dense index of a state label.

        Raises
        ------
        InvalidStateError
            If the label is not part of this state space.
        """
        try:
            return self._index[label]
        except (KeyError, TypeError):
            raise InvalidStateError(f"Unknown state label {label!r}, known states are {list(self._labels)}.")

    def label_of(self, index: int):
        r""" The state label belonging to a dense index. """
        if not 0 <= index < self.n_states:
            raise IndexError(f"State index {index} out of range for {self.n_states} states.")
        return self._labels[index]

    def to_indices(self, labels: Iterable) -> np.ndarray:
        r""" Maps a sequence of state labels to their dense indices.

        Raises
        ------
        InvalidStateError
            If any of the labels is not part of this state space. All unknown labels are reported.
        """
        indices, unknown = [], set()
        for label in labels:
            try:
                indices.append(self._index[label])
            except (KeyError, TypeError):
                unknown.add(repr(label))
        if unknown:
            raise InvalidStateError(f"Unknown state label(s) {sorted(unknown)}, "
                                    f"known states are {list(self._labels)}.")
        return np.asarray(indices, dtype=np.int64)

    def to_labels(self, indices: Iterable[int]) -> list:
        r""" Maps a sequence of dense indices back to state labels. """
        return [self.label_of(int(i)) for i in indices]

    def __len__(self):
        return self.n_states

    def __iter__(self):
        return iter(self._labels)

    def __contains__(self, label):
        try:
            return label in self._index
        except TypeError:
            return False

    def __eq__(self, other):
        return isinstance(other, StateSpace) and self._labels == other._labels

    def __hash__(self):
        return hash(self._labels)

    def __repr__(self):
        return f"StateSpace({list(self._labels)!r})"
