"""
Timing
------

Aggregating large matrices is mostly a question of data layout and data size. The functions here allow collecting
timing information about the relevant functions or steps within functions, together with the sizes of the data they
were applied to, with low overhead. This is disabled by default.

Each collected step is written as a line to a CSV file (without headers), containing:

* The invocation context, a ``;``-separated path of the names of the nested steps.

* The ``elapsed_ns`` and ``cpu_ns`` spent in this context, not counting the nested steps.

* Any ``name,value`` pairs given by :py:func:`timed_parameters`, such as the number of groups, rows and columns
  involved.

Collection is enabled by setting the ``SCMETRICS_COLLECT_TIMING`` environment variable to ``true`` (with the path given
by ``SCMETRICS_TIMING_CSV``), or by calling :py:func:`collect_timing`.
"""

import os
from contextlib import contextmanager
from functools import wraps
from threading import local as thread_local
from time import perf_counter_ns
from time import process_time_ns
from typing import IO
from typing import Any
from typing import Callable
from typing import Iterator
from typing import List
from typing import Optional
from typing import TypeVar

import scmetrics.utilities.documentation as utd

__all__ = [
    "collect_timing",
    "flush_timing",
    "in_parallel_map",
    "timed_step",
    "timed_call",
    "timed_parameters",
]

COLLECT_TIMING = False

TIMING_PATH = "timing.csv"
TIMING_FILE: Optional[IO] = None

THREAD_LOCAL = thread_local()


@utd.expand_doc()
def collect_timing(collect: bool, path: str = TIMING_PATH) -> None:  # pylint: disable=used-prior-global-declaration
    """
    Specify whether and where to collect timing information.

    The data is appended to the ``path`` (default: {path}), which must end with ``.csv``. This flushes and closes the
    previous timing file, if any.
    """
    global COLLECT_TIMING
    global TIMING_PATH
    global TIMING_FILE

    if not path.endswith(".csv"):
        raise ValueError(f"the timing path: {path} does not end with: .csv")

    if TIMING_FILE is not None:
        TIMING_FILE.close()
        TIMING_FILE = None

    TIMING_PATH = path
    COLLECT_TIMING = collect


def flush_timing() -> None:
    """
    Flush the timing information, if we are collecting it.
    """
    if TIMING_FILE is not None:
        TIMING_FILE.flush()


def in_parallel_map(map_index: int, process_index: int) -> None:
    """
    Redirect the timing information of a sub-process of :py:func:`scmetrics.utilities.parallel.parallel_map` to
    ``<timing>.<map>.<process>.csv``, so sub-processes never write to the same file.
    """
    global TIMING_FILE
    if COLLECT_TIMING:
        # The inherited file object belongs to the parent process.
        TIMING_FILE = None
        collect_timing(True, f"{TIMING_PATH[:-4]}.{map_index}.{process_index}.csv")


class _Step:  # pylint: disable=too-few-public-methods
    def __init__(self, name: str, parent: Optional["_Step"]) -> None:
        self.context = name if parent is None else f"{parent.context};{name}"
        self.parameters: List[str] = []
        self.nested_elapsed_ns = 0
        self.nested_cpu_ns = 0


def _steps_stack() -> List[_Step]:
    steps_stack = getattr(THREAD_LOCAL, "steps_stack", None)
    if steps_stack is None:
        steps_stack = THREAD_LOCAL.steps_stack = []
    return steps_stack


@contextmanager
def timed_step(name: str) -> Iterator[None]:
    """
    Collect timing information for a computation step.

    Expected usage is:

    .. code:: python

        with ut.timed_step("sklearn.pca"):
            some_computation()

    If we are collecting timing information, every invocation appends a line to the timing file, nested under the
    surrounding steps (if any).
    """
    if not COLLECT_TIMING:
        yield None
        return

    steps_stack = _steps_stack()
    parent = steps_stack[-1] if steps_stack else None
    step = _Step(name, parent)
    steps_stack.append(step)

    start_elapsed_ns = perf_counter_ns()
    start_cpu_ns = process_time_ns()
    try:
        yield None
    finally:
        elapsed_ns = perf_counter_ns() - start_elapsed_ns
        cpu_ns = process_time_ns() - start_cpu_ns
        steps_stack.pop()

        if parent is not None:
            parent.nested_elapsed_ns += elapsed_ns
            parent.nested_cpu_ns += cpu_ns

        _write_step(step, elapsed_ns - step.nested_elapsed_ns, cpu_ns - step.nested_cpu_ns)


def _write_step(step: _Step, elapsed_ns: int, cpu_ns: int) -> None:
    global TIMING_FILE
    if TIMING_FILE is None:
        TIMING_FILE = open(TIMING_PATH, "a", buffering=1)  # pylint: disable=consider-using-with
    fields = [step.context, "elapsed_ns", str(elapsed_ns), "cpu_ns", str(cpu_ns)] + step.parameters
    TIMING_FILE.write(",".join(fields) + "\n")


def timed_parameters(**kwargs: Any) -> None:
    """
    Associate relevant timing parameters to the innermost :py:func:`timed_step`.

    For example, ``timed_parameters(groups=2, rows=3)`` adds ``groups,2,rows,3`` to the step's line.
    """
    if not COLLECT_TIMING:
        return
    steps_stack = _steps_stack()
    if steps_stack:
        for name, value in kwargs.items():
            steps_stack[-1].parameters.extend((name, str(value)))


CALLABLE = TypeVar("CALLABLE")


def timed_call(name: Optional[str] = None) -> Callable[[CALLABLE], CALLABLE]:
    """
    Wrap each invocation of the decorated function with :py:func:`timed_step` using the ``name`` (by default, the
    function's ``__qualname__``).

    Functions given to :py:func:`scmetrics.utilities.parallel.parallel_map` must be decorated this way.
    """

    def wrap(function: Callable) -> Callable:
        @wraps(function)
        def timed(*args: Any, **kwargs: Any) -> Any:
            if not COLLECT_TIMING:
                return function(*args, **kwargs)
            with timed_step(name or function.__qualname__):
                return function(*args, **kwargs)

        timed.__is_timed__ = True  # type: ignore
        return timed

    return wrap  # type: ignore


def _env_flag(name: str) -> bool:
    value = os.environ.get(name, "false").lower()
    if value not in ("true", "false"):
        raise ValueError(f"the environment variable {name} is: {value} instead of true or false")
    return value == "true"


if _env_flag("SCMETRICS_COLLECT_TIMING"):
    collect_timing(True, os.environ.get("SCMETRICS_TIMING_CSV", TIMING_PATH))
