"""
Documentation
-------------

Utilities for documenting Python functions.

All the default parameter values of the package live in :py:mod:`scmetrics.parameters`. To keep the documentation in
sync with them, docstrings refer to ``{name}`` placeholders which are replaced by the actual default values when the
module is loaded.
"""

from inspect import Parameter
from inspect import signature
from typing import Any
from typing import Callable
from typing import TypeVar
from warnings import warn

__all__ = [
    "expand_doc",
]


CALLABLE = TypeVar("CALLABLE")


def expand_doc(**kwargs: Any) -> Callable[[CALLABLE], CALLABLE]:
    """
    Expand the keyword arguments and the annotated function's default argument values inside the
    function's document string.

    That is, given something like:

    .. code:: python

        @expand_doc(what="counts")
        def total(adata, detection_limit=0):
            '''
            Total {what} above the detection limit (default: {detection_limit}).
            '''

    Then ``help(total)`` will print:

    .. code:: text

        Total counts above the detection limit (default: 0).

    Literal braces can't be used in the document string of an expanded function.
    """

    def documented(function: Callable) -> Callable:
        values = dict(kwargs)
        for parameter in signature(function).parameters.values():
            if parameter.default != Parameter.empty and parameter.name not in values:
                values[parameter.name] = parameter.default

        assert function.__doc__ is not None
        try:
            expanded_doc = function.__doc__.format_map(values)
        except (KeyError, IndexError, ValueError) as exception:
            raise RuntimeError(
                f"key {exception} in expand_doc documentation for the function "
                f"{function.__module__}.{function.__qualname__}"
            ) from exception

        if expanded_doc == function.__doc__:
            expand_doc_had_no_effect = (
                f"@expand_doc had no effect on the documentation of the function "
                f"{function.__module__}.{function.__qualname__}"
            )
            warn(expand_doc_had_no_effect)

        function.__doc__ = expanded_doc
        return function

    return documented  # type: ignore
