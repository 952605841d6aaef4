from sklearn.exceptions import ConvergenceWarning


class InvalidConfigurationError(ValueError):
    r""" Raised when an estimator is configured with parameters outside of their domain, e.g., a non-positive
    step duration or convergence tolerance, or an empty state space. """


class InvalidStateError(ValueError):
    r""" Raised when observations refer to state labels which are not part of the state space. """


class InsufficientDataWarning(UserWarning):
    r"""
    This warning indicates that the data did not contain a single usable transition, i.e., fewer than two
    events with strictly increasing timestamps. Estimation proceeds from the uniform initial matrix.
    """


class NumericalError(ArithmeticError):
    r""" Raised when a floating point operation during estimation fails or yields non-finite values. """


class NotConvergedWarning(ConvergenceWarning):
    r"""
    This warning indicates that some iterative procedure has not
    converged or reached the maximum number of iterations implemented
    as a safe guard to prevent arbitrary many iterations in loops with
    a conditional termination criterion.
    It is a :class:`sklearn.exceptions.ConvergenceWarning`, so scikit-learn warning filters apply to it.
    """


class NotConvergedError(RuntimeError):
    pass


class DidNotConvergeError(NotConvergedError):
    r""" Raised when the EM iteration exhausted its maximum number of iterations.

    Parameters
    ----------
    transition_matrix : ndarray
        The last transition matrix estimate.
    max_delta : float
        Maximum absolute element-wise change of the last iteration.
    n_iterations : int
        Number of performed iterations.
    """

    def __init__(self, transition_matrix, max_delta, n_iterations):
        super().__init__(f"EM iteration did not converge after {n_iterations} iteration(s). "
                         f"Last increment: {max_delta:.5e}")
        self.transition_matrix = transition_matrix
        self.max_delta = max_delta
        self.n_iterations = n_iterations
