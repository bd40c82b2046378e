"""
Single-cell quality control metrics and aggregation.
"""

__author__ = "The scmetrics developers"
__version__ = "0.1.0"

# pylint: disable=wrong-import-position

from . import tools as tl
from . import utilities as ut
