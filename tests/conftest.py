# pytest specific configuration file containing eg fixtures.
import numpy as np
import pytest


@pytest.fixture(params=[1, 3], ids=lambda x: f"n_jobs={x}")
def n_jobs(request):
    yield request.param


@pytest.fixture
def three_state_matrix():
    return np.array([
        [.80, .15, .05],
        [.10, .70, .20],
        [.05, .25, .70]
    ])
