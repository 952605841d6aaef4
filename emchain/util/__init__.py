r"""
.. currentmodule: emchain.util

===============================================================================
Exceptions and warnings
===============================================================================

.. autosummary::
    :toctree: generated/
    :template: class_nomodule.rst

    exceptions.InvalidConfigurationError
    exceptions.InvalidStateError
    exceptions.InsufficientDataWarning
    exceptions.NumericalError
    exceptions.NotConvergedWarning
    exceptions.DidNotConvergeError

===============================================================================
Other utilities
===============================================================================
.. autosummary::
    :toctree: generated/
    :template: class_nomodule.rst

    types.ensure_array
    types.is_transition_matrix
    types.ensure_transition_matrix

    parallel.handle_n_jobs

    callbacks.supports_progress_interface
    callbacks.ProgressCallback
    callbacks.IterationErrorProgressCallback
"""

from . import exceptions
from . import types
from . import callbacks
from . import parallel
