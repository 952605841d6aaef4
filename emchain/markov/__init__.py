r"""
.. currentmodule: emchain.markov

===============================================================================
Estimation from irregularly sampled observations
===============================================================================

.. autosummary::
    :toctree: generated/
    :template: class_nomodule.rst

    EMTransitionMatrixEstimator
    IrregularMarkovModel
    estimate_transition_matrix

===============================================================================
Pipeline stages
===============================================================================

.. autosummary::
    :toctree: generated/
    :template: class_nomodule.rst

    StateSpace

    TransitionObservationEstimator
    TransitionObservations
    aggregate_observations

    initial_transition_matrix
    matrix_powers
    expected_transition_counts
    normalize_expected_counts
"""

from ._state_space import StateSpace
from ._observations import TransitionObservations, TransitionObservationEstimator, aggregate_observations
from ._transition_matrix import initial_transition_matrix, normalize_expected_counts
from ._sufficient_statistics import matrix_powers, expected_transition_counts
from ._irregular_markov_model import IrregularMarkovModel
from ._em_estimator import EMTransitionMatrixEstimator, estimate_transition_matrix
