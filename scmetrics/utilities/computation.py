"""
Computation
-----------

Most of the functions defined here are thin wrappers around builtin numpy or scipy functions.

The key distinction of the functions here is that they provide a uniform interface for all the supported
:py:const:`scmetrics.utilities.typing.Matrix` and :py:const:`scmetrics.utilities.typing.Vector` types, which makes
them safe to use in our code without worrying about the exact data type used. In particular, they work the same for
dense and compressed sparse data, and (for count data) give identical results for both.

All the functions here (optionally) also allow collecting timing information using
:py:mod:`scmetrics.utilities.timing`, to make it easier to locate the performance bottleneck of an analysis.
"""

from typing import Callable
from typing import Optional
from typing import Tuple
from typing import TypeVar
from warnings import warn

import numpy as np
import scipy.sparse as sp  # type: ignore

import scmetrics.utilities.documentation as utd
import scmetrics.utilities.errors as ute
import scmetrics.utilities.parallel as utp
import scmetrics.utilities.timing as utm
import scmetrics.utilities.typing as utt

__all__ = [
    "allow_inefficient_layout",
    "to_layout",
    "log_data",
    "count_above_per",
    "sum_per",
    "sum_squared_per",
    "variance_per",
    "scale_by",
    "sum_groups",
]


ALLOW_INEFFICIENT_LAYOUT: bool = True


def allow_inefficient_layout(allow: bool) -> bool:
    """
    Specify whether to allow processing using an inefficient layout.

    Returns the previous setting.

    This is ``True`` by default, which merely warns when an inefficient layout is used. Otherwise, processing an
    inefficient layout is treated as an error (raises an exception).
    """
    global ALLOW_INEFFICIENT_LAYOUT
    prev_allow = ALLOW_INEFFICIENT_LAYOUT
    ALLOW_INEFFICIENT_LAYOUT = allow
    return prev_allow


@utm.timed_call()
def to_layout(matrix: utt.Matrix, layout: str) -> utt.ProperMatrix:
    """
    Return the ``matrix`` in a specific ``layout`` for efficient processing.

    That is, if ``layout`` is ``column_major``, re-layout the matrix for efficient per-column (feature) slicing and
    processing. For sparse matrices, this is ``csc`` format; for dense matrices, this is Fortran (column-major) format.

    Similarly, if ``layout`` is ``row_major``, re-layout the matrix for efficient per-row (cell) slicing and
    processing. For sparse matrices, this is ``csr`` format; for dense matrices, this is C (row-major) format.

    If the matrix is already in the correct layout, it is returned as-is. Otherwise, a new copy is created in the
    proper layout. This is a costly operation, but it makes the following processing **much** more efficient.
    """
    assert layout in utt.LAYOUT_OF_AXIS

    proper, dense, compressed = utt.to_proper_matrices(matrix, default_layout=layout)

    utm.timed_parameters(rows=proper.shape[0], columns=proper.shape[1])

    if utt.is_layout(proper, layout):
        utm.timed_parameters(method="none")
        return proper

    result: utt.ProperMatrix
    if dense is not None:
        utm.timed_parameters(method="numpy")
        if layout == "row_major":
            result = np.ascontiguousarray(dense)
        else:
            result = np.asfortranarray(dense)

    else:
        assert compressed is not None
        utm.timed_parameters(method="scipy")
        if layout == "row_major":
            result = compressed.tocsr()
        else:
            result = compressed.tocsc()
        result.sort_indices()

    assert result.shape == matrix.shape
    return result


def _ensure_per(per: Optional[str]) -> str:
    assert per in utt.PER_OF_AXIS, f"invalid per: {per}"
    return per  # type: ignore


def _ensure_layout_for(operation: str, matrix: utt.Matrix, per: str) -> None:
    if utt.is_layout(matrix, f"{per}_major"):
        return

    layout = utt.matrix_layout(matrix)
    if layout is not None:
        operating_on_matrix_of_wrong_layout = f"{operation} of {per}s of a matrix with {layout} layout"
    else:
        operating_on_matrix_of_wrong_layout = f"{operation} of {per}s of a matrix with an inefficient format"

    if not ALLOW_INEFFICIENT_LAYOUT:
        raise NotImplementedError(operating_on_matrix_of_wrong_layout)
    warn(operating_on_matrix_of_wrong_layout)


def _ensure_per_for(operation: str, matrix: utt.Matrix, per: Optional[str]) -> str:
    per = _ensure_per(per)
    _ensure_layout_for(operation, matrix, per)
    return per


S = TypeVar("S", bound="utt.Shaped")


@utm.timed_call()
@utd.expand_doc()
def log_data(shaped: S, *, base: Optional[float] = None, normalization: float = 0) -> S:
    """
    Return the log of the values in the ``shaped`` data.

    If ``base`` is specified (default: {base}), use this base log. Otherwise, use the natural logarithm.

    The ``normalization`` (default: {normalization}) specifies how to deal with zeros in the data:

    * If it is zero, an input zero will become an output ``NaN``.

    * If it is positive, it is added to the input before computing the log.

    .. note::

        The result is dense, except for a compressed sparse matrix with a ``normalization`` of exactly one, as in
        this case zeros are mapped to zeros and the result has the same structure as the input.
    """
    assert normalization >= 0
    if base is not None:
        assert base > 0

    compressed = utt.maybe_compressed_matrix(shaped)
    if compressed is not None and normalization == 1:
        result = compressed.copy().astype("float64")
        np.log1p(result.data, out=result.data)
        if base is not None:
            result.data /= np.log(base)
        return result  # type: ignore

    dense: np.ndarray
    if shaped.ndim == 1:
        dense = utt.to_numpy_vector(shaped).astype("float64")
    else:
        dense = utt.to_numpy_matrix(shaped).astype("float64")  # type: ignore

    if normalization > 0:
        dense += normalization
        np.log(dense, out=dense)
    else:
        where = dense > 0
        np.log(dense, out=dense, where=where)
        dense[~where] = None

    if base is not None:
        dense /= np.log(base)

    return dense  # type: ignore


@utm.timed_call()
def count_above_per(matrix: utt.Matrix, threshold: float, *, per: Optional[str]) -> utt.NumpyVector:
    """
    Compute the number of values strictly above some ``threshold`` ``per`` (``row`` or ``column``) of some
    ``matrix``.

    For sparse data, the implicit (non-stored) zeros are counted as well if the ``threshold`` is negative, so the
    results are the same as for the equivalent dense data.
    """
    per = _ensure_per_for("count_above", matrix, per)
    axis = utt.PER_OF_AXIS.index(per)

    compressed = utt.maybe_compressed_matrix(matrix)
    if compressed is not None:

        def _count_compressed(compressed: utt.CompressedMatrix) -> utt.NumpyVector:
            above = compressed.copy()
            above.data = (compressed.data > threshold).astype("int64")
            counts = utt.to_numpy_vector(above.sum(axis=1 - axis)).astype("int64")
            if threshold < 0:
                counts += compressed.shape[1 - axis] - compressed.getnnz(axis=1 - axis)
            return counts

        return _reduce_matrix("count_above", compressed, per, _count_compressed)

    dense = utt.to_numpy_matrix(matrix)
    return _reduce_matrix("count_above", dense, per, lambda dense: np.count_nonzero(dense > threshold, axis=1 - axis))


@utm.timed_call()
def sum_per(matrix: utt.Matrix, *, per: Optional[str]) -> utt.NumpyVector:
    """
    Compute the total of the values ``per`` (``row`` or ``column``) of some ``matrix``.

    The matrix should be in the appropriate layout (``row_major`` for operating on rows, ``column_major`` for
    operating on columns).
    """
    per = _ensure_per_for("sum", matrix, per)
    axis = utt.PER_OF_AXIS.index(per)

    sparse = utt.maybe_sparse_matrix(matrix)
    if sparse is not None:
        return _reduce_matrix("sum", sparse, per, lambda sparse: sparse.sum(axis=1 - axis))

    dense = utt.to_numpy_matrix(matrix)
    return _reduce_matrix("sum", dense, per, lambda dense: np.sum(dense, axis=1 - axis))


@utm.timed_call()
def sum_squared_per(matrix: utt.Matrix, *, per: Optional[str]) -> utt.NumpyVector:
    """
    Compute the total of the squared values ``per`` (``row`` or ``column``) of some ``matrix``.

    The matrix should be in the appropriate layout (``row_major`` for operating on rows, ``column_major`` for
    operating on columns).
    """
    per = _ensure_per_for("sum_squared", matrix, per)
    axis = utt.PER_OF_AXIS.index(per)

    sparse = utt.maybe_sparse_matrix(matrix)
    if sparse is not None:
        return _reduce_matrix("sum_squared", sparse, per, lambda sparse: sparse.multiply(sparse).sum(axis=1 - axis))

    dense = utt.to_numpy_matrix(matrix)
    return _reduce_matrix("sum_squared", dense, per, lambda dense: np.square(dense).sum(axis=1 - axis))


@utm.timed_call()
def variance_per(matrix: utt.Matrix, *, per: Optional[str]) -> utt.NumpyVector:
    """
    Get the (population) variance ``per`` (``row`` or ``column``) of some ``matrix``.

    The matrix should be in the appropriate layout (``row_major`` for operating on rows, ``column_major`` for
    operating on columns).
    """
    per = _ensure_per_for("variance", matrix, per)
    sum_per_element = sum_per(matrix, per=per)
    sum_squared_per_element = sum_squared_per(matrix, per=per)
    axis = 1 - utt.PER_OF_AXIS.index(per)
    size = matrix.shape[axis]
    result = np.square(sum_per_element).astype("float64")
    result /= -size
    result += sum_squared_per_element
    result /= size
    return result


M = TypeVar("M", bound="utt.Matrix")


def _reduce_matrix(
    name: str,
    matrix: M,
    per: str,
    reducer: Callable[[M], utt.Shaped],
) -> utt.NumpyVector:
    assert matrix.ndim == 2
    axis = utt.PER_OF_AXIS.index(per)
    results_count = matrix.shape[axis]

    efficient = "efficient" if utt.is_layout(matrix, f"{per}_major") else "inefficient"
    kind = "compressed" if utt.maybe_sparse_matrix(matrix) is not None else "dense"

    with utm.timed_step(f"{name}.{kind}-{efficient}"):
        utm.timed_parameters(results=results_count, elements=matrix.shape[1 - axis])
        return utt.to_numpy_vector(reducer(matrix))


@utm.timed_call()
def scale_by(matrix: utt.Matrix, scale: utt.Vector, *, by: str) -> utt.ProperMatrix:
    """
    Return a ``matrix`` where each ``by`` (``row`` or ``column``) is scaled by the matching value of the ``scale``
    vector.

    The result is always a floating point matrix. A compressed matrix keeps its layout and structure.
    """
    axis = utt.PER_OF_AXIS.index(by)
    scale = utt.to_numpy_vector(scale).astype("float64")
    if len(scale) != matrix.shape[axis]:
        raise ute.DimensionMismatch("scale", len(scale), matrix.shape[axis], by)

    _, dense, compressed = utt.to_proper_matrices(matrix, default_layout=f"{by}_major")

    if compressed is not None:
        result = compressed.copy().astype("float64")
        if compressed.format == utt.SPARSE_FAST_FORMAT[f"{by}_major"]:
            result.data *= np.repeat(scale, np.diff(compressed.indptr))
        else:
            result.data *= scale[compressed.indices]
        return result

    assert dense is not None
    if by == "row":
        return dense * scale[:, None]
    return dense * scale[None, :]


@utm.timed_call()
@utd.expand_doc()
def sum_groups(  # pylint: disable=too-many-locals,too-many-statements
    matrix: utt.Matrix,
    groups: utt.Vector,
    *,
    per: str,
    groups_count: Optional[int] = None,
    average: bool = False,
    processors: int = 1,
) -> Tuple[utt.ProperMatrix, utt.NumpyVector]:
    """
    Given a ``matrix``, and a vector of ``groups`` ``per`` column or row, return a matrix with a column or row ``per``
    group, containing the sum of the group's columns or rows, and a vector of sizes (the number of summed columns or
    rows) ``per`` group.

    The ``groups`` are integer codes. Negative codes mark missing entries, whose data is not included in the result. If
    ``groups_count`` is not specified, it is one more than the largest code. If there are no groups, the result has
    zero rows or columns.

    If ``average`` (default: {average}), divide each group's sums by the number of its members, giving the mean
    instead of the sum.

    Compressed (sparse) data gives compressed results, and dense data gives dense results. For count data, both give
    the same values.

    The work is split between ``processors`` (default: {processors}) sub-processes, each summing a contiguous range of
    the other axis (see :py:func:`scmetrics.utilities.parallel.split_ranges`). Each result element is summed the same
    way regardless of the number of processors, so the results do not depend on it.

    Raises :py:class:`scmetrics.utilities.errors.InvalidWorkerCount` if ``processors`` is less than one, and
    :py:class:`scmetrics.utilities.errors.DimensionMismatch` if the number of ``groups`` is not the size of the
    grouped axis.
    """
    per = _ensure_per(per)
    if processors < 1:
        raise ute.InvalidWorkerCount(processors)

    axis = utt.PER_OF_AXIS.index(per)
    codes = utt.to_numpy_vector(groups).astype("int64")
    if len(codes) != matrix.shape[axis]:
        raise ute.DimensionMismatch("groups", len(codes), matrix.shape[axis], per)

    if groups_count is None:
        groups_count = int(np.max(codes)) + 1 if len(codes) > 0 else 0
    groups_count = max(groups_count, 0)
    assert np.all(codes < groups_count)

    valid_mask = codes >= 0
    group_sizes = np.bincount(codes[valid_mask], minlength=groups_count).astype("int64")

    _, dense, compressed = utt.to_proper_matrices(matrix, default_layout=f"{per}_major")
    proper: utt.ProperMatrix = dense if dense is not None else compressed  # type: ignore
    kind = "dense" if dense is not None else "compressed"
    efficient = "efficient" if utt.is_layout(proper, f"{per}_major") else "inefficient"

    if per == "column":
        proper = proper.transpose()

    entities_count, elements_count = proper.shape
    ranges = utp.split_ranges(elements_count, processors)

    if compressed is not None:
        valid_indices = np.where(valid_mask)[0]
        indicator = sp.csr_matrix(
            (np.ones(len(valid_indices), dtype=proper.dtype), (codes[valid_indices], valid_indices)),
            shape=(groups_count, entities_count),
        )

    @utm.timed_call(f"sum_groups.{kind}-{efficient}")
    def _sum_range(range_index: int) -> utt.ProperMatrix:
        start, stop = ranges[range_index]
        utm.timed_parameters(groups=groups_count, entities=entities_count, elements=stop - start)
        block = proper[:, start:stop]

        if compressed is not None:
            return sp.csr_matrix(indicator @ block)

        results = np.zeros((groups_count, stop - start), dtype=block.dtype)
        for group_index in range(groups_count):
            if group_sizes[group_index] == 0:
                continue
            group_mask = codes == group_index
            results[group_index, :] = np.sum(block[group_mask, :], axis=0)
        return results

    blocks = utp.parallel_map(_sum_range, len(ranges), processors=processors)

    summed: utt.ProperMatrix
    if len(blocks) == 1:
        summed = blocks[0]
    elif compressed is not None:
        summed = sp.hstack([block for block in blocks if block.shape[1] > 0] or blocks[-1:], format="csr")
    else:
        summed = np.concatenate(blocks, axis=1)

    if compressed is not None:
        summed = sp.csr_matrix(summed)
        summed.sum_duplicates()
        summed.sort_indices()

    if average:
        with np.errstate(divide="ignore", invalid="ignore"):
            if compressed is not None:
                summed = sp.csr_matrix(summed).astype("float64")
                summed.data /= np.repeat(group_sizes, np.diff(summed.indptr))
            else:
                summed = summed / group_sizes[:, None]

    if per == "column":
        summed = summed.transpose()

    assert summed.shape[axis] == groups_count
    assert summed.shape[1 - axis] == elements_count
    return summed, group_sizes
