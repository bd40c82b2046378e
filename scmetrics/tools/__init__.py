"""
Functions for analysis tools.

Tools take as input some data (an annotated ``AnnData`` or just a matrix) and either return some computed results,
write the results as new annotations within the same data, or return a new annotated data object containing the
results. Tools work on the annotated data using the accessors of :py:mod:`scmetrics.utilities.annotation`, so that
the inputs are never modified in place and every read and write is logged.

All the functions included here are exported under ``scmetrics.tl``.
"""

from .aggregate import *
from .groups import *
from .named import *
from .normalize import *
from .quality import *
from .reduce import *
