import abc
from inspect import signature
from typing import Optional

import numpy as np


def _format_params(params, offset=0, max_line_length=75):
    r""" Formats a parameter mapping as `key=value` pairs sorted by key, wrapping lines that would exceed
    `max_line_length` and abbreviating overly long values. """
    line_sep = ',\n' + (1 + offset // 2) * ' '
    parts, line_length = [], offset
    with np.printoptions(precision=5, threshold=64, edgeitems=2):
        for i, (key, value) in enumerate(sorted(params.items())):
            item = f'{key}={value}' if type(value) is float else f'{key}={value!r}'
            if len(item) > 500:
                item = item[:300] + '...' + item[-100:]
            if i > 0:
                if line_length + len(item) >= max_line_length or '\n' in item:
                    parts.append(line_sep)
                    line_length = len(line_sep)
                else:
                    parts.append(', ')
                    line_length += 2
            parts.append(item)
            line_length += len(item)
    return '\n'.join(line.rstrip(' ') for line in ''.join(parts).split('\n'))


class _BaseMethodsMixin(abc.ABC):
    """ Defines common methods used by both Estimator and Model classes. These are mostly static and low-level
    checking of conformity with respect to emchain conventions.
    """

    def __repr__(self):
        name = '{cls}-{id}:'.format(id=id(self), cls=self.__class__.__name__)
        return '{name}{params}]'.format(
            name=name, params=_format_params(self.get_params(), offset=len(name))
        )

    def get_params(self):
        r"""Get the parameters.

        Returns
        -------
        params : mapping of string to any
            Parameter names mapped to their values.
        """
        params = dict()

        # introspect the constructor arguments to find the model parameters to represent
        cls = self.__class__
        init_sign = signature(cls.__init__)
        args, varargs = [], []
        for parameter in init_sign.parameters.values():
            if (parameter.kind != parameter.VAR_KEYWORD and
                    parameter.name != 'self'):
                args.append(parameter.name)
            if parameter.kind == parameter.VAR_POSITIONAL:
                varargs.append(parameter.name)

        if len(varargs) != 0:
            raise RuntimeError("emchain estimators and models should always specify their parameters in the "
                               "signature of their __init__ (no varargs). %s doesn't follow this convention."
                               % (cls,))
        for arg in args:
            params[arg] = getattr(self, arg, None)
        return params

    def set_params(self, **params):
        """
        Set the parameters of this estimator.

        Parameters
        ----------
        **params : dict
            Estimator parameters.

        Returns
        -------
        self : object
            Estimator instance.
        """
        valid_params = self.get_params()
        for key, value in params.items():
            if key not in valid_params:
                raise ValueError('Invalid parameter %s for estimator %s. '
                                 'Check the list of available parameters '
                                 'with `estimator.get_params().keys()`.' %
                                 (key, self))
            setattr(self, key, value)
        return self

    def __getstate__(self):
        try:
            state = super().__getstate__()
        except AttributeError:
            state = self.__dict__
        if state is None:
            state = self.__dict__

        if type(self).__module__.startswith('emchain.'):
            from emchain import __version__
            return dict(state.items(), _emchain_version=__version__)
        else:
            return state

    def __setstate__(self, state):
        from emchain import __version__
        if type(self).__module__.startswith('emchain.'):
            pickle_version = state.pop("_emchain_version", None)
            if pickle_version != __version__:
                import warnings
                warnings.warn(
                    "Trying to unpickle {0} from version {1} when "
                    "using version {2}. This might lead to breaking code or "
                    "invalid results. Use at your own risk.".format(
                        self.__class__.__name__, pickle_version, __version__),
                    UserWarning)
        self.__dict__.update(state)


class Model(_BaseMethodsMixin):
    r""" The model superclass. """

    def copy(self) -> "Model":
        r""" Makes a deep copy of this model.

        Returns
        -------
        copy
            A new copy of this model.
        """
        import copy
        return copy.deepcopy(self)


class Estimator(_BaseMethodsMixin):
    r""" Base class of all estimators

    Parameters
    ----------
    model : Model, optional, default=None
        A model which can be used for initialization.
    """

    """ class wide flag to control whether input of fit should be checked for modifications """
    _MUTABLE_INPUT_DATA = False

    def __init__(self, model=None):
        self._model = model

    @abc.abstractmethod
    def fit(self, data, **kwargs):
        r""" Fits data to the estimator's internal :class:`Model` and overwrites it. This way, every call to
        :meth:`fetch_model` yields an autonomous model instance.

        Parameters
        ----------
        data : array_like
            Data that is used to fit a model.
        **kwargs
            Additional kwargs.

        Returns
        -------
        self : Estimator
            Reference to self.
        """

    def fetch_model(self) -> Optional[Model]:
        r""" Yields the estimated model. Can be None if :meth:`fit` was not called.

        Returns
        -------
        model : Model or None
            The estimated model or None.
        """
        return self._model

    def fit_fetch(self, data, **kwargs):
        r""" Fits the internal model on data and subsequently fetches it in one call.

        Parameters
        ----------
        data : array_like
            Data that is used to fit the model.
        **kwargs
            Additional arguments to :meth:`fit`.

        Returns
        -------
        model
            The estimated model.
        """
        self.fit(data, **kwargs)
        return self.fetch_model()

    @property
    def model(self):
        """ Shortcut to :meth:`fetch_model`. """
        return self.fetch_model()

    @property
    def has_model(self) -> bool:
        r""" Property reporting whether this estimator contains an estimated model. This assumes that the model
        is initialized with `None` otherwise.

        :type: bool
        """
        return self._model is not None

    def __getattribute__(self, item):
        if item == 'fit' and not self._MUTABLE_INPUT_DATA:
            fit = super(Estimator, self).__getattribute__(item)
            return _ImmutableInputData(fit)

        return super(_BaseMethodsMixin, self).__getattribute__(item)


class _ImmutableInputData:
    """A function decorator for Estimator.fit() to make input arrays immutable for the duration of the fit """

    def __init__(self, fit_method):
        self.fit_method = fit_method
        self._data = None
        self.old_writable_flags = []

    @property
    def data(self):
        return self._data

    @data.setter
    def data(self, value_):
        args, kwargs = value_
        self._data = []

        if len(args) == 0:
            if 'data' in kwargs:
                args = [kwargs['data']]
            elif len(kwargs) >= 1:
                args = [next(iter(kwargs.values()))]
            else:
                raise InputFormatError(f'No input at all for fit(). Input was {args}, kw={kwargs}')
        value = args[0]
        if isinstance(value, np.ndarray):
            self._data.append(value)
        elif isinstance(value, (list, tuple)):
            self._data.extend(x for x in value if isinstance(x, np.ndarray))
        elif value is None:
            raise InputFormatError('Input for fit() was None.')

    def __enter__(self):
        self.old_writable_flags = []
        for d in self.data:
            self.old_writable_flags.append(d.flags.writeable)
            d.setflags(write=False)

    def __exit__(self, exc_type, exc_val, exc_tb):
        # restore ndarray writable flags to old state
        for d, writable in zip(self.data, self.old_writable_flags):
            if writable:
                d.setflags(write=True)

    def __call__(self, *args, **kwargs):
        self.data = args, kwargs

        with self:
            return self.fit_method(*args, **kwargs)


class InputFormatError(ValueError):
    """Input data for Estimator is not allowed."""
