r"""
.. currentmodule: emchain.data

===============================================================================
Synthetic data
===============================================================================

.. autosummary::
    :toctree: generated/
    :template: class_nomodule.rst

    simulate_chain
    irregular_observations
    to_events
"""

from ._irregular_sampling import simulate_chain, irregular_observations, to_events
