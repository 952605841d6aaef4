import logging

from ._version import __version__

from . import util
from . import data
from . import markov

from .markov import estimate_transition_matrix

# set up null handler
logging.getLogger(__name__).addHandler(logging.NullHandler())
