"""
Parallel
--------

Due to the notorious GIL, using multiple Python threads is essentially useless for our computations. Instead, the
operations split their work between forked sub-processes using :py:func:`parallel_map`.

Work is always split deterministically: the axis being parallelized is cut into contiguous ranges using
:py:func:`split_ranges`, each range is processed by a separate invocation, and the results are combined in invocation
order. The results therefore do not depend on the number of processors used, only on the data.

There is no global "number of processors" setting. Each operation takes an explicit ``processors`` argument (the
number of ranges to split the work into). The actual number of forked processes is further capped by the number of
physical cores (obtained using ``psutil``), since hyper-threading is useless for heavy compute work. Numpy may use
multiple internal threads in each sub-process, so we limit each sub-process to its share of the physical cores using
``threadpoolctl``, to avoid the operating system seeing many more busy threads than there are processors.
"""

import ctypes
import os
from multiprocessing import Value
from multiprocessing import get_context
from threading import current_thread
from typing import Any
from typing import Callable
from typing import List
from typing import Optional
from typing import Tuple
from typing import TypeVar

import psutil  # type: ignore
from threadpoolctl import threadpool_limits  # type: ignore

import scmetrics.utilities.errors as ute
import scmetrics.utilities.logging as utl
import scmetrics.utilities.timing as utm

__all__ = [
    "get_cores_count",
    "split_ranges",
    "parallel_map",
]


MAIN_PROCESS_PID = os.getpid()

IS_MAIN_PROCESS: Optional[bool] = True

MAP_INDEX = 0
PROCESS_INDEX = 0

PROCESSES_COUNT = 0
NEXT_PROCESS_INDEX = Value(ctypes.c_int32, lock=True)
PARALLEL_FUNCTION: Optional[Callable[[int], Any]] = None


def get_cores_count() -> int:
    """
    Return the number of physical cores of the machine (or the number of logical ones if this is not known).
    """
    return psutil.cpu_count(logical=False) or psutil.cpu_count() or 1


def split_ranges(size: int, count: int) -> List[Tuple[int, int]]:
    """
    Split ``size`` elements into ``count`` contiguous ``(start, stop)`` ranges.

    Each range has ``size // count`` elements, except for the last one which also absorbs the remainder. If
    ``count`` is larger than ``size``, some of the ranges will be empty.

    Raises :py:class:`scmetrics.utilities.errors.InvalidWorkerCount` if ``count`` is less than one.
    """
    if count < 1:
        raise ute.InvalidWorkerCount(count)
    assert size >= 0

    base = size // count
    ranges = [(index * base, (index + 1) * base) for index in range(count)]
    ranges[-1] = (ranges[-1][0], size)
    return ranges


T = TypeVar("T")


def parallel_map(function: Callable[[int], T], invocations: int, *, processors: int = 1) -> List[T]:
    """
    Execute ``function``, in parallel, ``invocations`` times. Each invocation is given the invocation's index as its
    single argument. Returns the list of results, in invocation index order.

    This uses at most ``processors`` processes (which must be at least one), and no more than the number of
    ``invocations`` or the number of physical cores (see :py:func:`get_cores_count`).

    If this ends up using a single process, runs the function serially. Otherwise, fork new processes to execute the
    function invocations (using ``multiprocessing.get_context('fork').Pool``). Each of these processes starts with a
    copy-on-write copy of the full Python state, so all the inputs of the function are available "for free", but the
    results are pickled back to the main process.

    If any invocation raises an exception, it is propagated to the caller and no results are returned.

    Only the main process is allowed to execute functions in parallel processes, that is, nested ``parallel_map``
    calls are executed serially.
    """
    assert function.__is_timed__  # type: ignore

    global IS_MAIN_PROCESS
    global PARALLEL_FUNCTION
    global PROCESSES_COUNT
    global MAP_INDEX

    if processors < 1:
        raise ute.InvalidWorkerCount(processors)

    processes_count = min(processors, invocations, get_cores_count())

    if processes_count <= 1 or not IS_MAIN_PROCESS:
        return [function(index) for index in range(invocations)]

    assert PARALLEL_FUNCTION is None

    PROCESSES_COUNT = processes_count
    NEXT_PROCESS_INDEX.value = 0  # type: ignore
    MAP_INDEX += 1

    PARALLEL_FUNCTION = function
    IS_MAIN_PROCESS = None
    try:
        results: List[Optional[T]] = [None] * invocations
        utm.flush_timing()
        with utm.timed_step("parallel_map"):
            utm.timed_parameters(index=MAP_INDEX, processes=PROCESSES_COUNT, invocations=invocations)
            with get_context("fork").Pool(PROCESSES_COUNT) as pool:
                for index, result in pool.imap_unordered(_invocation, range(invocations)):
                    results[index] = result
        return results  # type: ignore
    finally:
        IS_MAIN_PROCESS = True
        PARALLEL_FUNCTION = None


def _invocation(index: int) -> Tuple[int, Any]:
    global IS_MAIN_PROCESS
    if IS_MAIN_PROCESS is None:
        IS_MAIN_PROCESS = os.getpid() == MAIN_PROCESS_PID
        assert not IS_MAIN_PROCESS

        global PROCESS_INDEX
        with NEXT_PROCESS_INDEX.get_lock():
            PROCESS_INDEX = NEXT_PROCESS_INDEX.value  # type: ignore
            NEXT_PROCESS_INDEX.value += 1  # type: ignore

        current_thread().name = f"#{MAP_INDEX}.{PROCESS_INDEX}"
        utm.in_parallel_map(MAP_INDEX, PROCESS_INDEX)

        cores_count = get_cores_count()
        start_core_index = int(round(cores_count * PROCESS_INDEX / PROCESSES_COUNT))
        stop_core_index = int(round(cores_count * (PROCESS_INDEX + 1) / PROCESSES_COUNT))
        threads_count = max(stop_core_index - start_core_index, 1)

        utl.logger().debug("THREADS: %s", threads_count)
        threadpool_limits(limits=threads_count)

    assert PARALLEL_FUNCTION is not None
    return index, PARALLEL_FUNCTION(index)
