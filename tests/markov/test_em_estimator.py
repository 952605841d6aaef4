import logging
import warnings

import numpy as np
import pytest
import scipy.sparse
from sklearn.exceptions import ConvergenceWarning
from numpy.testing import assert_equal, assert_array_almost_equal, assert_almost_equal, assert_

from emchain.data import irregular_observations, simulate_chain, to_events
from emchain.markov import EMTransitionMatrixEstimator, estimate_transition_matrix, IrregularMarkovModel, \
    expected_transition_counts, normalize_expected_counts, aggregate_observations, StateSpace
from emchain.util.exceptions import InvalidConfigurationError, InvalidStateError, InsufficientDataWarning, \
    NotConvergedWarning, DidNotConvergeError
from emchain.util.types import is_transition_matrix
from tests.testing_utilities import ProgressMock, progress_factory


@pytest.fixture
def mixed_gap_events(three_state_matrix):
    timestamps, states = irregular_observations(three_state_matrix, 20000, gaps=[1, 2], seed=7)
    return to_events(timestamps, states)


def test_recovers_ground_truth(three_state_matrix, mixed_gap_events):
    model = EMTransitionMatrixEstimator(states=range(3), epsilon=1e-5).fit(mixed_gap_events).fetch_model()
    assert_(model.converged)
    assert_equal(model.convergence_status, 'converged')
    assert_array_almost_equal(model.transition_matrix, three_state_matrix, decimal=1)
    assert np.abs(model.transition_matrix - three_state_matrix).max() < .05


def test_more_data_is_more_accurate(three_state_matrix):
    errors = []
    for n_observations in [300, 30000]:
        timestamps, states = irregular_observations(three_state_matrix, n_observations, gaps=[1, 2, 3], seed=13)
        P = estimate_transition_matrix(to_events(timestamps, states), states=range(3), epsilon=1e-5)
        errors.append(np.abs(P - three_state_matrix).max())
    assert errors[1] < .05
    assert errors[1] < errors[0]


def test_only_every_second_step_observed(three_state_matrix):
    timestamps, states = irregular_observations(three_state_matrix, 20000, gaps=2, seed=21)
    with warnings.catch_warnings():
        warnings.simplefilter('ignore', NotConvergedWarning)
        P = EMTransitionMatrixEstimator(states=range(3), epsilon=1e-6, maxiter=5000) \
            .fit(to_events(timestamps, states)).fetch_model().transition_matrix
    assert_(is_transition_matrix(P))
    # two-step observations determine the two-step matrix, the iteration picks the root close to its start
    assert np.abs(P @ P - three_state_matrix @ three_state_matrix).max() < .05
    assert np.abs(P - three_state_matrix).max() < .1


def test_estimate_is_row_stochastic(mixed_gap_events):
    P = estimate_transition_matrix(mixed_gap_events, states=[0, 1, 2])
    assert_equal(P.shape, (3, 3))
    assert np.all(P >= 0) and np.all(P <= 1)
    assert_almost_equal(P.sum(axis=1), np.ones(3))


def test_converged_estimate_is_fixed_point(mixed_gap_events):
    epsilon = 1e-4
    model = EMTransitionMatrixEstimator(states=range(3), epsilon=epsilon).fit_fetch(mixed_gap_events)
    S = expected_transition_counts(model.observations, model.transition_matrix)
    _, max_delta, _ = normalize_expected_counts(S, model.transition_matrix)
    assert max_delta <= epsilon


def test_iteration_count_is_bounded(mixed_gap_events):
    model = EMTransitionMatrixEstimator(states=range(3), epsilon=1e-3).fit_fetch(mixed_gap_events)
    assert_(model.converged)
    assert 1 <= model.n_iterations <= 200
    assert_equal(len(model.increments), model.n_iterations)
    assert model.increments[-1] <= 1e-3
    assert all(inc > 1e-3 for inc in model.increments[:-1])


def test_single_step_observations_give_count_estimate(three_state_matrix):
    trajectory = simulate_chain(three_state_matrix, 2000, start=0, seed=5)
    events = to_events(np.arange(len(trajectory)) * 2.5, trajectory)
    model = EMTransitionMatrixEstimator(states=range(3), days=2.5).fit(events).fetch_model()

    counts = np.zeros((3, 3))
    np.add.at(counts, (trajectory[:-1], trajectory[1:]), 1)
    assert_array_almost_equal(model.transition_matrix, counts / counts.sum(axis=1, keepdims=True))
    assert model.n_iterations <= 2
    assert model.increments[-1] <= 1e-3


def test_model_contents(mixed_gap_events):
    model = EMTransitionMatrixEstimator(states=['a', 'b', 'c'], epsilon=1e-2).fit_fetch(
        [(t, 'abc'[s]) for t, s in mixed_gap_events]
    )
    assert_(isinstance(model, IrregularMarkovModel))
    assert_equal(model.states, ['a', 'b', 'c'])
    assert_equal(model.n_states, 3)
    assert model.state_space == StateSpace('abc')
    assert_equal(model.observations.total_count, 19999)
    assert_equal(model.observations.max_gap, 2)
    assert_(is_transition_matrix(model.initial_transition_matrix))
    assert_equal(len(model.degenerate_rows), model.n_iterations)
    assert all(len(rows) == 0 for rows in model.degenerate_rows)


@pytest.mark.parametrize('policy, expected_row', [
    ('retain', [.2, .3, .5]),
    ('uniform', [1. / 3, 1. / 3, 1. / 3]),
    ('zero', [0., 0., 0.])
], ids=lambda x: str(x))
def test_state_without_outgoing_transitions(policy, expected_row):
    events = [(0, 'a'), (1, 'b'), (2, 'a'), (3, 'c')]
    initial_matrix = np.array([[.4, .4, .2], [.3, .3, .4], [.2, .3, .5]])
    model = EMTransitionMatrixEstimator(states='abc', degenerate_row_policy=policy) \
        .fit(events, initial_matrix=initial_matrix).fetch_model()
    assert_(model.converged)
    assert_array_almost_equal(model.transition_matrix[0], [0., .5, .5])
    assert_array_almost_equal(model.transition_matrix[1], [1., 0., 0.])
    assert_array_almost_equal(model.transition_matrix[2], expected_row)
    for rows in model.degenerate_rows:
        assert_equal(rows, [2])


def test_insufficient_data():
    with pytest.warns(InsufficientDataWarning):
        model = EMTransitionMatrixEstimator(states=[1, 2]).fit([(0., 1)]).fetch_model()
    assert_array_almost_equal(model.transition_matrix, np.full((2, 2), .5))
    assert_(model.converged)
    assert_equal(model.n_iterations, 1)
    assert_(model.observations.is_empty)


def test_same_timestamp_only():
    with pytest.warns(InsufficientDataWarning):
        P = estimate_transition_matrix([(3, 'x'), (3, 'y'), (3, 'x')], states=['x', 'y'])
    assert_array_almost_equal(P, np.full((2, 2), .5))


def test_not_converged_warning(mixed_gap_events):
    estimator = EMTransitionMatrixEstimator(states=range(3), epsilon=1e-12, maxiter=2)
    with pytest.warns(ConvergenceWarning):
        model = estimator.fit(mixed_gap_events).fetch_model()
    assert_(not model.converged)
    assert_equal(model.convergence_status, 'exhausted')
    assert_equal(model.n_iterations, 2)
    assert issubclass(NotConvergedWarning, ConvergenceWarning)
    assert_(is_transition_matrix(model.transition_matrix))


def test_not_converged_error(mixed_gap_events):
    estimator = EMTransitionMatrixEstimator(states=range(3), epsilon=1e-12, maxiter=2, raise_on_not_converged=True)
    with pytest.raises(DidNotConvergeError) as exc_info:
        estimator.fit(mixed_gap_events)
    assert_equal(exc_info.value.n_iterations, 2)
    assert exc_info.value.max_delta > 1e-12
    assert_(is_transition_matrix(exc_info.value.transition_matrix))

    with pytest.raises(DidNotConvergeError):
        estimate_transition_matrix(mixed_gap_events, states=range(3), epsilon=1e-12, maxiter=2)


@pytest.mark.parametrize('kwargs', [
    dict(epsilon=0.), dict(epsilon=-1e-3), dict(epsilon=np.nan), dict(days=0.), dict(days=-2.),
    dict(maxiter=0), dict(degenerate_row_policy='drop'), dict(n_jobs=0), dict(states=[])
], ids=lambda x: ','.join(x.keys()))
def test_invalid_configuration(kwargs):
    kwargs = dict(dict(states=[0, 1]), **kwargs)
    with pytest.raises(InvalidConfigurationError):
        EMTransitionMatrixEstimator(**kwargs)
    if 'n_jobs' not in kwargs:
        with pytest.raises(InvalidConfigurationError):
            estimate_transition_matrix([(0, 0), (1, 1)], **kwargs)


def test_unknown_state():
    with pytest.raises(InvalidStateError):
        estimate_transition_matrix([(0, 'a'), (1, 'z')], states=['a', 'b'])


def test_warm_start(three_state_matrix, mixed_gap_events):
    cold = EMTransitionMatrixEstimator(states=range(3), epsilon=1e-4).fit_fetch(mixed_gap_events)
    warm = EMTransitionMatrixEstimator(states=range(3), epsilon=1e-4) \
        .fit_fetch(mixed_gap_events, initial_matrix=cold.transition_matrix)
    assert_array_almost_equal(warm.initial_transition_matrix, cold.transition_matrix)
    assert warm.n_iterations <= cold.n_iterations
    assert_array_almost_equal(warm.transition_matrix, cold.transition_matrix, decimal=2)

    sparse = EMTransitionMatrixEstimator(states=range(3), epsilon=1e-4) \
        .fit_fetch(mixed_gap_events, initial_matrix=scipy.sparse.csr_matrix(three_state_matrix))
    assert_array_almost_equal(sparse.initial_transition_matrix, three_state_matrix)


@pytest.mark.parametrize('initial_matrix', [
    np.eye(2), np.full((3, 3), .5), -np.eye(3)
], ids=['wrong shape', 'not stochastic', 'negative'])
def test_invalid_initial_matrix(mixed_gap_events, initial_matrix):
    with pytest.raises(InvalidConfigurationError):
        EMTransitionMatrixEstimator(states=range(3)).fit(mixed_gap_events, initial_matrix=initial_matrix)


def test_groups(three_state_matrix):
    events, groups = [], []
    for entity in range(50):
        timestamps, states = irregular_observations(three_state_matrix, 200, gaps=[1, 2], seed=entity)
        events.extend(to_events(timestamps, states))
        groups.extend([entity] * len(timestamps))
    model = EMTransitionMatrixEstimator(states=range(3), epsilon=1e-4).fit(events, groups=groups).fetch_model()
    assert_equal(model.observations.total_count, 50 * 199)
    assert np.abs(model.transition_matrix - three_state_matrix).max() < .06


def test_parallel_estimate(mixed_gap_events, n_jobs):
    serial = EMTransitionMatrixEstimator(states=range(3), n_jobs=1).fit_fetch(mixed_gap_events)
    model = EMTransitionMatrixEstimator(states=range(3), n_jobs=n_jobs).fit_fetch(mixed_gap_events)
    assert_array_almost_equal(model.transition_matrix, serial.transition_matrix)
    assert_equal(model.n_iterations, serial.n_iterations)


def test_progress(mixed_gap_events):
    progress = ProgressMock()
    model = EMTransitionMatrixEstimator(states=range(3), progress=progress_factory(progress)) \
        .fit(mixed_gap_events).fetch_model()
    # one tick for the single group of events, one per iteration
    assert_equal(progress.n_update_calls, 1 + model.n_iterations)
    assert_equal(progress.n_close_calls, 2)
    assert_equal(progress.descriptions[0], "Aggregating observations")
    assert_equal(progress.descriptions[1], "Running EM estimate")
    assert progress.descriptions[-1].startswith("Running EM estimate - [inc: ")


def test_tqdm_progress(mixed_gap_events):
    tqdm = pytest.importorskip('tqdm')
    P = estimate_transition_matrix(mixed_gap_events, states=range(3), progress=tqdm.tqdm)
    assert_(is_transition_matrix(P))


def test_invalid_progress_bar():
    class NoProgress:
        def __init__(self, total=None):
            pass

    with pytest.raises(ValueError):
        estimate_transition_matrix([(0, 0), (1, 1)], states=[0, 1], progress=NoProgress)


def test_logging(mixed_gap_events, caplog):
    assert any(isinstance(handler, logging.NullHandler) for handler in logging.getLogger('emchain').handlers)
    with caplog.at_level(logging.INFO, logger='emchain'):
        model = EMTransitionMatrixEstimator(states=range(3)).fit_fetch(mixed_gap_events)
    assert f"converged after {model.n_iterations} iteration(s)" in caplog.text


def test_estimator_params():
    estimator = EMTransitionMatrixEstimator(states=['a', 'b'], epsilon=1e-4, maxiter=10)
    params = estimator.get_params()
    assert_equal(params['epsilon'], 1e-4)
    assert_equal(params['maxiter'], 10)
    assert_equal(params['degenerate_row_policy'], 'retain')
    assert params['states'] == StateSpace(['a', 'b'])
    estimator.set_params(epsilon=1e-2, degenerate_row_policy='uniform')
    assert_equal(estimator.epsilon, 1e-2)
    assert_equal(estimator.degenerate_row_policy, 'uniform')
    with pytest.raises(InvalidConfigurationError):
        estimator.set_params(days=-1.)
    assert 'EMTransitionMatrixEstimator' in repr(estimator)
    assert_(not estimator.has_model)


def test_fit_does_not_modify_input():
    timestamps = np.array([0., 1., 3., 4.])
    states = np.array([0, 1, 0, 0])
    events = list(zip(timestamps, states))
    groups = np.array([0, 0, 1, 1])
    EMTransitionMatrixEstimator(states=[0, 1]).fit(events, groups=groups)
    assert_equal(timestamps, [0., 1., 3., 4.])
    assert_(groups.flags.writeable)


class TestModel:

    @pytest.fixture
    def model(self, three_state_matrix):
        return IrregularMarkovModel(three_state_matrix, state_space=StateSpace(['x', 'y', 'z']))

    def test_powers(self, model, three_state_matrix):
        assert_array_almost_equal(model.transition_matrix_power(0), np.eye(3))
        assert_array_almost_equal(model.transition_matrix_power(3),
                                  three_state_matrix @ three_state_matrix @ three_state_matrix)
        with pytest.raises(ValueError):
            model.transition_matrix_power(-1)

    def test_propagate(self, model, three_state_matrix):
        p0 = np.array([1., 0., 0.])
        assert_array_almost_equal(model.propagate(p0), three_state_matrix[0])
        assert_almost_equal(model.propagate(p0, n_steps=50).sum(), 1.)
        with pytest.raises(ValueError):
            model.propagate(np.ones(2) / 2)

    def test_simulate(self, model):
        trajectory = model.simulate(100, start=1, seed=3)
        assert_equal(trajectory.shape, (100,))
        assert_equal(trajectory[0], 1)
        assert np.all((trajectory >= 0) & (trajectory < 3))
        assert_equal(trajectory, model.simulate(100, start=1, seed=3))

    def test_defaults(self):
        model = IrregularMarkovModel(np.eye(2))
        assert_equal(model.states, [0, 1])
        assert_(model.converged)
        assert_equal(model.n_iterations, 0)
        assert model.observations is None

    def test_shape_mismatch(self):
        with pytest.raises(ValueError):
            IrregularMarkovModel(np.eye(2), state_space=StateSpace('abc'))
        with pytest.raises(ValueError):
            IrregularMarkovModel(np.ones((2, 3)))
