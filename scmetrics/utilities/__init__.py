"""
Generic utilities used by the scmetrics code.

All the functions included here are exported under ``scmetrics.ut``.
"""

from .annotation import *
from .computation import *
from .documentation import *
from .errors import *
from .logging import *
from .parallel import *
from .timing import *
from .typing import *
