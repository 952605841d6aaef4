import pickle
import unittest.mock as mock

import numpy as np
import pytest

from emchain.markov import EMTransitionMatrixEstimator


@pytest.fixture
def estimator():
    events = [(0, 'a'), (1, 'b'), (3, 'a'), (4, 'a'), (6, 'b'), (7, 'a'), (8, 'b')]
    return EMTransitionMatrixEstimator(states=['a', 'b'], epsilon=1e-4).fit(events)


def test_pickle_estimator(estimator):
    pickled = pickle.dumps(estimator)
    assert b"version" in pickled

    from numpy.testing import assert_no_warnings
    restored = assert_no_warnings(pickle.loads, pickled)

    model = estimator.fetch_model()
    model_restored = restored.fetch_model()
    np.testing.assert_equal(model_restored.transition_matrix, model.transition_matrix)
    np.testing.assert_equal(model_restored.observations.as_dict(), model.observations.as_dict())
    assert model_restored.state_space == model.state_space
    assert restored.epsilon == estimator.epsilon


def test_old_version_raise_warning(estimator):
    """ ensures that a user warning is displayed, when restoring an object stored with an old version. """
    pickled = pickle.dumps(estimator.fetch_model())
    # now simulate a newer version
    with mock.patch('emchain.__version__', '99+brand-new'), pytest.warns(UserWarning):
        pickle.loads(pickled)
