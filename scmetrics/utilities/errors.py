"""
Errors
------

The exceptions raised when the inputs of an operation can't be reconciled with each other.

All the operations of the package are deterministic computations over their inputs, so none of these errors is
retried or recovered from; they are raised as soon as the problem is detected, before any result is produced.
Internal consistency violations are still reported using ``assert``.
"""

from typing import Any
from typing import Optional

__all__ = [
    "DimensionMismatch",
    "SubsetsMustBeNamed",
    "EmptySubsetName",
    "InvalidWorkerCount",
    "UnresolvableSelector",
]


class DimensionMismatch(ValueError):
    """
    Raised when some per-entity data (a grouping key, a vector of size factors, an alternative experiment) does not
    have the same length as the matrix axis it annotates.
    """

    def __init__(self, what: str, actual: int, expected: int, axis: Optional[str] = None) -> None:
        self.what = what
        self.actual = actual
        self.expected = expected
        if axis is None:
            super().__init__(f"the {what} has {actual} entries instead of {expected}")
        else:
            super().__init__(f"the {what} has {actual} entries instead of the {expected} {axis}s")


class SubsetsMustBeNamed(ValueError):
    """
    Raised when the subsets given to a QC metrics computation are not a mapping of names to selectors.
    """

    def __init__(self, message: str = "the subsets must be named") -> None:
        super().__init__(message)


class EmptySubsetName(SubsetsMustBeNamed):
    """
    Raised when one of the subsets given to a QC metrics computation has an empty name.
    """

    def __init__(self) -> None:
        super().__init__("the subsets must have non-empty names")


class InvalidWorkerCount(ValueError):
    """
    Raised when asked to split work between less than one worker.
    """

    def __init__(self, processors: Any) -> None:
        self.processors = processors
        super().__init__(f"invalid number of processors: {processors} (must be at least 1)")


class UnresolvableSelector(KeyError):
    """
    Raised when a subset selector refers to an index out of range, an unknown name, or is a mask of the wrong size.
    """

    def __init__(self, subset: str, problem: str) -> None:
        self.subset = subset
        self.problem = problem
        super().__init__(f"can't resolve the selector of the subset: {subset} ({problem})")

    def __str__(self) -> str:
        return str(self.args[0])
