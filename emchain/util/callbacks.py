class _NoProgressBar:
    r""" Stand-in progress bar which is used when no progress bar implementation was provided. """

    def __init__(self, iterable=None, **_):
        self._iterable = iterable
        self.total = None
        self.n = 0

    def __iter__(self):
        yield from self._iterable

    def update(self, inc=1):
        self.n += inc

    def close(self):
        pass

    def set_description(self, *_):
        pass


def handle_progress_bar(progress):
    r"""Takes a (potential) progress bar type, if None, returns a type with the progress bar interface that
    does nothing.

    Parameters
    ----------
    progress : type or None
        The progress bar type, e.g., `tqdm.tqdm`.

    Returns
    -------
    progress_bar : type
        A progress bar type (or no-op progress bar if input was None).
    """
    return _NoProgressBar if progress is None else progress


def supports_progress_interface(bar):
    r""" Method to check if a progress bar supports the emchain interface, meaning that it
    has `update`, `close`, and `set_description` methods as well as an `n` attribute.

    Parameters
    ----------
    bar : object, optional
        The progress bar implementation to check, can be None.

    Returns
    -------
    supports : bool
        Whether the progress bar is supported.

    See Also
    --------
    ProgressCallback
    """
    has_methods = all(callable(getattr(bar, method, None)) for method in supports_progress_interface.required_methods)
    has_attributes = all(hasattr(bar, attribute) for attribute in supports_progress_interface.required_attributes)
    return has_methods and has_attributes


supports_progress_interface.required_methods = ['update', 'close', 'set_description']
supports_progress_interface.required_attributes = ['n']


class ProgressCallback:
    r"""Callback which indicates progress by incrementing a progress bar.

    Parameters
    ----------
    progress : type, optional
       Tested for a tqdm progress bar. Should implement `update()`, `set_description()`, and `close()`. Should
       also possess a `total` constructor keyword argument.
    description : str, optional
       Text to display in front of the progress bar.
    total : int, optional
       Number of increments to completion.

    See Also
    --------
    supports_progress_interface
    """

    def __init__(self, progress, description=None, total=None):
        self.progress_bar = handle_progress_bar(progress)(total=total)
        self.total = total

        if not supports_progress_interface(self.progress_bar):
            raise ValueError(f"Progress bar did not satisfy interface! It should at least have "
                             f"the method(s) {supports_progress_interface.required_methods} and "
                             f"the attribute(s) {supports_progress_interface.required_attributes}.")
        self.set_description(description)

    def __call__(self, inc=1, *args, **kw):
        self.progress_bar.update(inc)

    def __enter__(self):
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        if exc_type is None:
            self.progress_bar.total = self.progress_bar.n  # force finish
        self.progress_bar.close()

    def set_description(self, value):
        self.progress_bar.set_description(value)


class IterationErrorProgressCallback(ProgressCallback):
    r"""Callback which increments a progress bar and shows the iteration error on each iteration.

    Notes
    -----
    To display the iteration error, the error needs to be passed to `__call__()` as keyword argument `error`.

    See Also
    --------
    supports_progress_interface, ProgressCallback
    """

    def __init__(self, progress, description=None, total=None):
        super().__init__(progress, description, total)
        self.description = description

    def __call__(self, inc=1, *args, **kw):
        super().__call__(inc)
        if 'error' in kw:
            super().set_description("{} - [inc: {:.1e}]".format(self.description, kw.get('error')))
