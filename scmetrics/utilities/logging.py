"""
Logging
-------

This provides a formatter which includes high-resolution time and process names, and a set of utility functions for
logging operations on annotated data.

Collection of log messages is mostly automated by wrapping the operations with :py:func:`logged` and tracing the
setting and getting of data via the :py:mod:`scmetrics.utilities.annotation` accessors, with the occasional explicit
logging of a notable intermediate calculated value via :py:func:`log_calc`.

The log levels are:

* ``INFO`` will log only setting of the final results as annotations within the top-level ``AnnData`` object(s).

* ``STEP`` will also log the top-level operation(s) that were invoked.

* ``PARAM`` will also log the parameters of these operations (the grouping, the subsets, the number of processors).

* ``CALC`` will also log notable intermediate calculated results (e.g. the number of groups and their sizes).

* ``DEBUG`` logs all the above, not only for the top-level operations, but also for the nested ones.

To achieve this, we track for each ``AnnData`` whether it is a top-level (user visible) or a temporary data object,
and whether we are inside a top-level (user invoked) or a nested operation. Accessing top-level data and invoking
top-level operations is logged at the coarse logging levels, anything else is logged at the ``DEBUG`` level.

Each ``AnnData`` may have a name for logging (see :py:func:`scmetrics.utilities.annotation.set_name`). Aggregated
data gets the name of its source with a descriptive suffix, such as ``pbmc.by_cluster``.
"""

import logging
import sys
from contextlib import contextmanager
from datetime import datetime
from functools import wraps
from inspect import Parameter
from inspect import signature
from logging import DEBUG
from logging import INFO
from logging import Formatter
from logging import Logger
from logging import LogRecord
from logging import StreamHandler
from logging import getLogger
from logging import setLoggerClass
from multiprocessing import Lock
from threading import current_thread
from typing import IO
from typing import Any
from typing import Callable
from typing import Iterator
from typing import List
from typing import Mapping
from typing import Optional
from typing import Tuple
from typing import TypeVar

import numpy as np
import pandas as pd  # type: ignore
import scipy.sparse as sp  # type: ignore
from anndata import AnnData  # type: ignore

import scmetrics.utilities.documentation as utd
import scmetrics.utilities.typing as utt

__all__ = [
    "setup_logger",
    "logger",
    "CALC",
    "STEP",
    "PARAM",
    "logged",
    "top_level",
    "log_calc",
    "log_step",
    "log_set",
    "log_get",
    "sizes_description",
    "groups_description",
    "mask_description",
    "ratio_description",
    "fraction_description",
]


class SynchronizedLogger(Logger):
    """
    A logger that synchronizes between the sub-processes.

    This ensures logging does not get garbled when using multi-processing (e.g., using
    :py:func:`scmetrics.utilities.parallel.parallel_map`).
    """

    LOCK = Lock()

    def _log(self, *args: Any, **kwargs: Any) -> Any:  # pylint: disable=signature-differs
        with SynchronizedLogger.LOCK:
            super()._log(*args, **kwargs)


class LoggingFormatter(Formatter):
    """
    A formatter that uses a decimal point for milliseconds.
    """

    def formatTime(self, record: Any, datefmt: Optional[str] = None) -> str:
        """
        Format the time.
        """
        record_datetime = datetime.fromtimestamp(record.created)
        if datefmt is not None:
            return record_datetime.strftime(datefmt)

        seconds = record_datetime.strftime("%Y-%m-%d %H:%M:%S")
        msecs = min(round(record.msecs), 999)
        return f"{seconds}.{msecs:03d}"


#: The log level for tracing processing steps.
STEP = (1 * DEBUG + 3 * INFO) // 4

#: The log level for tracing parameters.
PARAM = (2 * DEBUG + 2 * INFO) // 4

#: The log level for tracing intermediate calculations.
CALC = (3 * DEBUG + 1 * INFO) // 4

logging.addLevelName(STEP, "STEP")
logging.addLevelName(PARAM, "PARAM")
logging.addLevelName(CALC, "CALC")


class ShortLoggingFormatter(LoggingFormatter):
    """
    Provide short level names.
    """

    #: Map the long level names to the fixed-width short level names.
    SHORT_LEVEL_NAMES = dict(
        CRITICAL="CRT",
        ERROR="ERR",
        WARNING="WRN",
        INFO="INF",
        STEP="STP",
        PARAM="PRM",
        CALC="CLC",
        DEBUG="DBG",
        NOTSET="NOT",
    )

    def format(self, record: LogRecord) -> Any:
        record.levelname = self.SHORT_LEVEL_NAMES.get(record.levelname, record.levelname)
        return LoggingFormatter.format(self, record)


# Global logger object.
LOG: Optional[Logger] = None


@utd.expand_doc()
def setup_logger(
    *,
    level: int = logging.INFO,
    to: IO = sys.stderr,
    time: bool = False,
    process: Optional[bool] = None,
    name: Optional[str] = None,
    long_level_names: Optional[bool] = None,
) -> Logger:
    """
    Setup the global :py:func:`logger`.

    .. note::

        A second call will fail as the logger will already be set up.

    If ``level`` is not specified, only ``INFO`` messages (setting values in the annotated data) will be logged.

    If ``to`` is not specified, the output is sent to ``sys.stderr``.

    If ``time`` (default: {time}), include a millisecond-resolution timestamp in each message.

    If ``name`` (default: {name}) is specified, it is added to each message.

    If ``process`` (default: {process}), include the (sub-)process name in each message. The name of the main process
    (thread) is replaced with ``#0`` to make it consistent with the sub-process names
    (``#<map-index>.<process-index>``).
    If it is ``None``, it is set when the logging level is below ``INFO``, as this is when we expect to see log
    messages from multiple sub-processes.

    If ``long_level_names`` (default: {long_level_names}), include the log level in each message. If it is ``False``,
    the log level names are shortened to three characters, for consistent formatting of indented (nested) log messages.
    If it is ``None``, no level names are logged at all.
    """
    global LOG
    assert LOG is None

    if long_level_names is not None:
        log_format = "%(levelname)s - %(message)s"
    else:
        log_format = "%(message)s"

    if process is None:
        process = level < logging.INFO

    if process:
        log_format = "%(threadName)s - " + log_format
        current_thread().name = "#0"

    if name is not None:
        log_format = name + " - " + log_format
    if time:
        log_format = "%(asctime)s - " + log_format

    handler = StreamHandler(to)
    if long_level_names is False:
        handler.setFormatter(ShortLoggingFormatter(log_format))
    else:
        handler.setFormatter(LoggingFormatter(log_format))
    setLoggerClass(SynchronizedLogger)
    LOG = getLogger("scmetrics")
    LOG.addHandler(handler)
    LOG.setLevel(level)
    return LOG


def logger() -> Logger:
    """
    Access the global logger.

    If :py:func:`setup_logger` has not been called yet, this will call it using the default flags. You should therefore
    call :py:func:`setup_logger` as early as possible to ensure you don't end up with a misconfigured logger.
    """
    global LOG
    if LOG is None:
        LOG = setup_logger()
    return LOG


CALLABLE = TypeVar("CALLABLE")

CALL_LEVEL = 0
INDENT_LEVEL = 0
INDENT_SPACES = "  " * 1000
IS_TOP_LEVEL = True


def logged(**kwargs: Callable[[Any], Any]) -> Callable[[CALLABLE], CALLABLE]:
    """
    Automatically wrap each invocation of the decorated function with logging it. Top-level calls are logged using the
    :py:const:`STEP` log level, with parameters logged at the :py:const:`PARAM` log level. Nested calls are logged at
    the ``DEBUG`` log level.

    By default parameters are logged by simply converting them to a string, with special cases for ``AnnData``, boolean
    masks, vectors, matrices and mappings (such as the QC subsets). You can override this by specifying
    ``parameter_name=convert_value_to_logged_value`` for the specific parameter.

    Expected usage is:

    .. code:: python

        @ut.logged()
        def some_function(...):
            ...
    """
    formatter_by_name = kwargs

    def wrap(function: Callable) -> Callable:
        parameters = signature(function).parameters
        for name in formatter_by_name:
            if name not in parameters.keys():
                raise RuntimeError(
                    f"formatter specified for the unknown parameter: {name} "
                    f"for the function: {function.__module__}.{function.__qualname__}"
                )
        ordered_parameters = list(parameters.values())

        @wraps(function)
        def wrapper(*args: Any, **kwargs: Any) -> Any:
            global CALL_LEVEL
            global INDENT_LEVEL
            global IS_TOP_LEVEL

            names, values = _collect_parameters(ordered_parameters, *args, **kwargs)
            adatas = [value for value in values if isinstance(value, AnnData)]
            new_adatas: List[AnnData] = []

            old_is_top_level = IS_TOP_LEVEL
            step_level = DEBUG
            try:
                for adata in adatas:
                    IS_TOP_LEVEL = False
                    if hasattr(adata, "__is_top_level__"):
                        IS_TOP_LEVEL = IS_TOP_LEVEL or getattr(adata, "__is_top_level__")
                    else:
                        IS_TOP_LEVEL = IS_TOP_LEVEL or CALL_LEVEL == 0
                        setattr(adata, "__is_top_level__", CALL_LEVEL == 0)
                        new_adatas.append(adata)

                if len(adatas) == 0:
                    IS_TOP_LEVEL = CALL_LEVEL == 0

                if IS_TOP_LEVEL:
                    step_level = STEP
                    param_level = PARAM
                else:
                    param_level = DEBUG

                name = function.__qualname__
                if name[0] == "_":
                    name = name[1:]
                if logger().isEnabledFor(step_level):
                    logger().log(step_level, "%scall %s:", INDENT_SPACES[: 2 * INDENT_LEVEL], name)
                    INDENT_LEVEL += 1
                CALL_LEVEL += 1

                if logger().isEnabledFor(param_level):
                    for name, value in zip(names, values):
                        log_value = _format_value(value, name, formatter_by_name.get(name))
                        if log_value is not None:
                            logger().log(
                                param_level, "%swith %s: %s", INDENT_SPACES[: 2 * INDENT_LEVEL], name, log_value
                            )

                return function(*args, **kwargs)

            finally:
                if logger().isEnabledFor(step_level):
                    INDENT_LEVEL = max(INDENT_LEVEL - 1, 0)
                CALL_LEVEL -= 1
                IS_TOP_LEVEL = old_is_top_level
                for adata in new_adatas:
                    delattr(adata, "__is_top_level__")

        return wrapper

    return wrap  # type: ignore


def _collect_parameters(parameters: List[Parameter], *args: Any, **kwargs: Any) -> Tuple[List[str], List[Any]]:
    names: List[str] = []
    values: List[Any] = []

    for value, parameter in zip(args, parameters):
        names.append(parameter.name)
        values.append(value)

    for parameter in parameters[len(args) :]:
        names.append(parameter.name)
        values.append(kwargs.get(parameter.name, parameter.default))

    return names, values


def _format_value(  # pylint: disable=too-many-return-statements,too-many-branches
    value: Any, name: str, formatter: Optional[Callable[[Any], Any]] = None
) -> Optional[str]:
    if value is Parameter.empty:
        return None

    if formatter is not None:
        value = formatter(value)
        if value is None:
            return None

    if isinstance(value, AnnData):
        adata_name = value.uns.get("__name__", "unnamed")
        dtype = getattr(value.X, "dtype", "unknown")
        return f"{adata_name} annotated data with {value.shape[0]} X {value.shape[1]} {dtype}s"

    if isinstance(value, (np.bool_, bool, str, type(None))):
        return str(value)

    if isinstance(value, (int, float, np.integer, np.floating)):
        value = float(value)
        if "random_seed" in name:
            return f"{value:g} (reproducible)"
        if "fraction" in name:
            return fraction_description(value)
        return f"{value:g}"

    if isinstance(value, pd.DataFrame):
        return f"frame {value.shape[0]} X {value.shape[1]} with columns: [ {', '.join(map(str, value.columns))} ]"

    if isinstance(value, Mapping):
        texts = [f"{key}: {_format_value(item, name) or 'None'}" for key, item in value.items()]
        return "{ " + ", ".join(texts) + " }"

    if callable(value) and hasattr(value, "__qualname__"):
        return getattr(value, "__qualname__")

    if isinstance(value, (pd.Series, np.ndarray)) and value.ndim == 1 and value.dtype == "bool":
        return mask_description(value)

    if sp.issparse(value) or (hasattr(value, "ndim") and getattr(value, "ndim") == 2):
        return f"{value.__class__.__name__} {value.shape[0]} X {value.shape[1]} {getattr(value, 'dtype', 'unknown')}s"

    if hasattr(value, "ndim") and getattr(value, "ndim") == 1:
        value = utt.to_numpy_vector(value)
        if len(value) > 100:
            return f"{len(value)} {value.dtype}s"
        value = list(value)

    if isinstance(value, (list, tuple)):
        if len(value) > 100:
            return f"{len(value)} {value[0].__class__.__name__}s"
        texts = [
            element.uns.get("__name__", "unnamed") if isinstance(element, AnnData) else str(element)
            for element in value
        ]
        return f'[ {", ".join(texts)} ]'

    return f"{value.__class__.__name__} {value}"


def top_level(adata: AnnData) -> None:
    """
    Indicate that the annotated data will be returned to the top-level caller, increasing its logging level.
    """
    setattr(adata, "__is_top_level__", True)


def log_calc(name: str, value: Any = None, *, formatter: Optional[Callable[[Any], Any]] = None) -> bool:
    """
    Log an intermediate calculated ``value`` computed from a function with some ``name``.

    If ``formatter`` is specified, use it to override the default logged value formatting.
    """
    return _log_value(name, value, "calc", None, CALC, formatter)


@contextmanager
def log_step(name: str, value: Any = None, *, formatter: Optional[Callable[[Any], Any]] = None) -> Iterator[None]:
    """
    Same as :py:func:`log_calc`, but also further indent all the log messages inside the ``with`` statement body.
    """
    global INDENT_LEVEL

    delta = 1 if log_calc(name, value, formatter=formatter) else 0

    INDENT_LEVEL += delta
    try:
        yield
    finally:
        INDENT_LEVEL -= delta


#: Convert ``per`` to the name of the ``AnnData`` data member holding it.
MEMBER_OF_PER = dict(m="uns", o="obs", v="var", oa="obsm", vo="layers", alt="uns[alt_experiments]")


def _is_top_level(adata: AnnData) -> bool:
    return bool(getattr(adata, "__is_top_level__", False))


def log_set(
    adata: AnnData, per: str, name: str, value: Any, *, formatter: Optional[Callable[[Any], Any]] = None
) -> bool:
    """
    Log setting some annotated data.
    """
    assert per in MEMBER_OF_PER

    adata_name = adata.uns.get("__name__", "unnamed")
    if name == "__x__":
        name = f"{adata_name}.X"
    else:
        name = f"{adata_name}.{MEMBER_OF_PER[per]}[{name}]"
    return _log_value(name, value, "set", _is_top_level(adata), INFO, formatter)


def log_get(
    adata: AnnData, per: str, name: Any, value: Any, *, formatter: Optional[Callable[[Any], Any]] = None
) -> bool:
    """
    Log getting some annotated data.
    """
    assert per in MEMBER_OF_PER

    adata_name = adata.uns.get("__name__", "unnamed")
    if isinstance(name, str) and name == "__x__":
        name = f"{adata_name}.X"
    else:
        if not isinstance(name, str):
            name = "<data>"
        name = f"{adata_name}.{MEMBER_OF_PER[per]}[{name}]"

    return _log_value(name, value, "get", _is_top_level(adata), CALC, formatter)


def _log_value(
    name: str,
    value: Any,
    kind: str,
    is_top_level: Optional[bool],
    top_log_level: int,
    formatter: Optional[Callable[[Any], Any]] = None,
) -> bool:
    if is_top_level is None:
        is_top_level = IS_TOP_LEVEL

    level = top_log_level if is_top_level else DEBUG

    if not logger().isEnabledFor(level):
        return False

    if value is None:
        logger().log(level, "%s%s", INDENT_SPACES[: 2 * INDENT_LEVEL], name)
    else:
        log_value = _format_value(value, name, formatter)
        if name[0] == "-":
            logger().log(level, "%s%s: %s", INDENT_SPACES[: 2 * INDENT_LEVEL], name, log_value)
        else:
            logger().log(level, "%s%s %s: %s", INDENT_SPACES[: 2 * INDENT_LEVEL], kind, name, log_value)

    return True


def sizes_description(sizes: Any) -> str:
    """
    Return a string for logging an array of sizes.
    """
    if isinstance(sizes, str):
        return sizes

    sizes = utt.to_numpy_vector(sizes)
    if len(sizes) == 0:
        return f"0 {sizes.dtype}s"
    mean = np.mean(sizes)
    return f"{len(sizes)} {sizes.dtype}s with mean {mean:.4g}"


def groups_description(groups: Any) -> str:
    """
    Return a string for logging an array of group codes.

    .. note::

        This assumes that the codes are consecutive, with negative values indicating excluded (missing) entries.
    """
    if isinstance(groups, str):
        return groups

    groups = utt.to_numpy_vector(groups)
    if len(groups) == 0:
        return f"0 {groups.dtype} elements"

    groups_count = int(np.max(groups)) + 1
    missing_count = int(np.sum(groups < 0))

    if groups_count <= 0:
        return f"{len(groups)} {groups.dtype} elements with all missing (100%)"

    mean = (len(groups) - missing_count) / groups_count
    return (
        ratio_description(len(groups), f"{groups.dtype} element", missing_count, "missing")
        + f" with {groups_count} groups with mean size {mean:.4g}"
    )


def mask_description(mask: Any) -> str:
    """
    Return a string for logging a boolean mask.
    """
    if isinstance(mask, str):
        return mask

    mask = utt.to_numpy_vector(mask)
    if mask.size == 0:
        return f"0 {mask.dtype}s"
    if mask.dtype == "bool":
        return ratio_description(mask.size, "bool", np.sum(mask), "true")
    return ratio_description(mask.size, str(mask.dtype), np.sum(mask > 0), "positive")


def ratio_description(denominator: float, element: str, numerator: float, condition: str) -> str:
    """
    Return a string for describing a ratio (including a percent representation).
    """
    assert numerator >= 0
    assert denominator > 0

    if int(numerator) == numerator:
        numerator = int(numerator)
    if int(denominator) == denominator:
        denominator = int(denominator)

    percent = (numerator * 100) / denominator
    return f"{numerator} {condition} ({percent:.4g}%) out of {denominator} {element}s"


def fraction_description(fraction: Optional[float]) -> str:
    """
    Return a string for describing a fraction (including a percent representation).
    """
    if fraction is None:
        return "None"
    percent = fraction * 100
    return f"{fraction:.4g} ({percent:.4g}%)"
