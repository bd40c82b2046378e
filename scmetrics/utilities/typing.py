"""
Typing
------

Expression data comes in many shapes: dense numpy arrays, Scipy sparse matrices in various formats, pandas frames
and series (including categorical ones), and plain Python lists. Most of the operations here only care about two
things: whether the data is a 2D matrix or a 1D vector, and (for matrices) whether it is dense or compressed sparse.

The type aliases defined here are mostly for making the intent of the code explicit:

* :py:const:`Matrix` is any 2D data. A :py:const:`ProperMatrix` is either a dense 2D :py:const:`NumpyMatrix` or a
  CSR/CSC :py:const:`CompressedMatrix`, which we can operate on directly. Anything else (pandas frames, COO and other
  sparse formats) is converted using :py:func:`to_proper_matrix` before being processed.

* :py:const:`Vector` is any 1D data. This is converted to a plain :py:const:`NumpyVector` using
  :py:func:`to_numpy_vector` before being processed.

* The ``layout`` of a proper matrix is either ``row_major`` (C-contiguous dense or CSR sparse) or ``column_major``
  (Fortran-contiguous dense or CSC sparse). Reducing a matrix ``per`` row is efficient in ``row_major`` layout, and
  reducing it ``per`` column is efficient in ``column_major`` layout.
"""

from typing import Any
from typing import Collection
from typing import Optional
from typing import Tuple
from typing import Union

import numpy as np
import pandas as pd  # type: ignore
import scipy.sparse as sp  # type: ignore

import scmetrics.utilities.documentation as utd
import scmetrics.utilities.timing as utm

__all__ = [
    "Shaped",
    "Matrix",
    "ProperMatrix",
    "NumpyMatrix",
    "CompressedMatrix",
    "Vector",
    "NumpyVector",
    "maybe_sparse_matrix",
    "maybe_compressed_matrix",
    "maybe_pandas_frame",
    "to_proper_matrix",
    "to_proper_matrices",
    "to_numpy_matrix",
    "to_numpy_vector",
    "frozen",
    "freeze",
    "SPARSE_FAST_FORMAT",
    "LAYOUT_OF_AXIS",
    "PER_OF_AXIS",
    "matrix_layout",
    "is_layout",
    "mustbe_canonical",
]


#: Numpy 2-dimensional data.
NumpyMatrix = np.ndarray

#: Numpy 1-dimensional data.
NumpyVector = np.ndarray

#: Sparse CSR or CSC 2-dimensional data.
CompressedMatrix = Union[sp.csr_matrix, sp.csc_matrix]

#: 2-dimensional data we can directly operate on.
ProperMatrix = Union[NumpyMatrix, CompressedMatrix]

#: Any 2-dimensional data.
Matrix = Union[ProperMatrix, pd.DataFrame, sp.spmatrix]

#: Any 1-dimensional data.
Vector = Union[NumpyVector, pd.Series, Collection[Any]]

#: Shaped data of any of the types we can deal with.
Shaped = Union[Matrix, Vector]

#: Which flag indicates efficient 2D dense matrix layout.
DENSE_FAST_FLAG = dict(column_major="F_CONTIGUOUS", row_major="C_CONTIGUOUS")

#: Which format indicates efficient 2D sparse matrix layout.
SPARSE_FAST_FORMAT = dict(column_major="csc", row_major="csr")

#: The layout by the ``axis`` parameter.
LAYOUT_OF_AXIS = ("row_major", "column_major")

#: When reducing data, get results ``per`` row or column (by the ``axis`` parameter).
PER_OF_AXIS = ("row", "column")


def _maybe_numpy_matrix(shaped: Any) -> Optional[NumpyMatrix]:
    # A ``numpy.matrix`` behaves subtly different from a 2-dimensional ``numpy.ndarray``.
    if isinstance(shaped, np.ndarray) and shaped.ndim == 2 and not isinstance(shaped, np.matrix):
        return shaped
    return None


def maybe_sparse_matrix(shaped: Any) -> Optional[sp.spmatrix]:
    """
    Return ``shaped`` as a sparse matrix, if it is one (in any format).
    """
    if sp.issparse(shaped):
        return shaped
    return None


def maybe_compressed_matrix(shaped: Any) -> Optional[CompressedMatrix]:
    """
    Return ``shaped`` as a :py:const:`CompressedMatrix`, if it is one.
    """
    if sp.issparse(shaped) and shaped.format in ("csr", "csc"):
        return shaped
    return None


def maybe_pandas_frame(shaped: Any) -> Optional[pd.DataFrame]:
    """
    Return ``shaped`` as a pandas frame, if it is one.
    """
    if isinstance(shaped, pd.DataFrame):
        return shaped
    return None


@utd.expand_doc()
def to_proper_matrix(matrix: Matrix, *, default_layout: str = "row_major") -> ProperMatrix:
    """
    Given some 2D ``matrix``, return it in a :py:const:`ProperMatrix` format we can safely process.

    If the data is in some other sparse format (e.g. COO), use ``default_layout`` (default: {default_layout}) to
    decide whether to return it in ``row_major`` (CSR) or ``column_major`` (CSC) layout.
    """
    if matrix.ndim != 2:
        raise ValueError(f"data is {matrix.ndim}-dimensional, expected 2-dimensional")

    if default_layout not in LAYOUT_OF_AXIS:
        raise ValueError(f"invalid default layout: {default_layout}")

    frame = maybe_pandas_frame(matrix)
    if frame is not None:
        matrix = frame.to_numpy()

    compressed = maybe_compressed_matrix(matrix)
    if compressed is not None:
        return compressed

    sparse = maybe_sparse_matrix(matrix)
    if sparse is not None:
        sparse_format = SPARSE_FAST_FORMAT[default_layout]
        with utm.timed_step(f"matrix.to{sparse_format}"):
            utm.timed_parameters(rows=sparse.shape[0], columns=sparse.shape[1], nnz=sparse.nnz)
            return sparse.asformat(sparse_format)

    dense = _maybe_numpy_matrix(matrix)
    if dense is None:
        dense = np.asarray(matrix)

    return dense


def to_proper_matrices(
    matrix: Matrix, *, default_layout: str = "row_major"
) -> Tuple[ProperMatrix, Optional[NumpyMatrix], Optional[CompressedMatrix]]:
    """
    Similar to :py:func:`to_proper_matrix` but return a tuple with the proper matrix and also its
    :py:const:`NumpyMatrix` representation and its :py:const:`CompressedMatrix` representation. Exactly one of these
    two representations will be ``None``.
    """
    proper = to_proper_matrix(matrix, default_layout=default_layout)
    dense = _maybe_numpy_matrix(proper)
    compressed = maybe_compressed_matrix(proper)
    assert (dense is None) != (compressed is None)
    return (proper, dense, compressed)


def to_numpy_matrix(matrix: Matrix) -> NumpyMatrix:
    """
    Convert any :py:const:`Matrix` to a dense 2-dimensional :py:const:`NumpyMatrix`.

    Sparse data is densified keeping its layout (CSC data becomes a Fortran-contiguous array).
    """
    sparse = maybe_sparse_matrix(matrix)
    if sparse is None:
        dense = to_proper_matrix(matrix)
    else:
        with utm.timed_step("sparse.toarray"):
            utm.timed_parameters(rows=sparse.shape[0], columns=sparse.shape[1])
            dense = sparse.toarray(order="F" if sparse.format == "csc" else "C")

    assert _maybe_numpy_matrix(dense) is not None
    return dense


def to_numpy_vector(shaped: Any) -> NumpyVector:
    """
    Convert any :py:const:`Vector`, or a :py:const:`Matrix` where one of the dimensions has size one, to a
    :py:const:`NumpyVector`.

    A categorical pandas series is converted to an array of its values (not its codes).
    """
    ndim = getattr(shaped, "ndim", None)
    if ndim is None:
        dense = np.array(shaped)
    elif ndim == 1:
        if isinstance(shaped, (pd.Series, pd.Index)):
            shaped = shaped.values
        dense = np.asarray(shaped)
    else:
        assert ndim == 2 and (shaped.shape[0] == 1 or shaped.shape[1] == 1)
        dense = np.reshape(to_numpy_matrix(shaped), -1)

    assert dense.ndim == 1
    return dense


def frozen(shaped: Any) -> bool:
    """
    Test whether the ``shaped`` data is protected against future modification.
    """
    compressed = maybe_compressed_matrix(shaped)
    if compressed is not None:
        return not compressed.data.flags.writeable

    if isinstance(shaped, np.ndarray):
        return not shaped.flags.writeable

    raise NotImplementedError(f"frozen of {shaped.__class__}")


def freeze(shaped: Any) -> None:
    """
    Protect the ``shaped`` data against future modification.

    This is applied to data stored in (or cached for) the annotated data, so that modifying it by mistake fails
    instead of silently corrupting later results.
    """
    compressed = maybe_compressed_matrix(shaped)
    if compressed is not None:
        for array in (compressed.indices, compressed.indptr, compressed.data):
            array.setflags(write=False)
        return

    if isinstance(shaped, np.ndarray):
        shaped.setflags(write=False)
        return

    raise NotImplementedError(f"freeze of {shaped.__class__}")


def matrix_layout(matrix: Matrix) -> Optional[str]:
    """
    Return which layout the ``matrix`` is arranged by (``row_major`` or ``column_major``).

    If the data is in some other sparse format, or is a non-contiguous dense view, returns ``None``.
    """
    sparse = maybe_sparse_matrix(matrix)
    if sparse is not None:
        for layout, sparse_format in SPARSE_FAST_FORMAT.items():
            if sparse.format == sparse_format:
                return layout
        return None

    dense = to_numpy_matrix(matrix)
    for layout, flag in DENSE_FAST_FLAG.items():
        if dense.flags[flag]:
            return layout

    return None


def is_layout(matrix: Matrix, layout: Optional[str]) -> bool:
    """
    Test whether the ``matrix`` is arranged according to the ``layout``.

    This will always succeed if the ``layout`` is ``None``, or if the matrix has a single row or column.
    """
    if layout is None or matrix.shape[0] == 1 or matrix.shape[1] == 1:
        return True

    sparse = maybe_sparse_matrix(matrix)
    if sparse is not None:
        return sparse.format == SPARSE_FAST_FORMAT[layout]

    return bool(to_numpy_matrix(matrix).flags[DENSE_FAST_FLAG[layout]])


def mustbe_canonical(shaped: Any) -> None:
    """
    Assert that some data is in canonical format.

    For numpy matrices, this means the data is contiguous (in either row-major or column-major order). For sparse
    matrices, it means the data is compressed (CSC or CSR format), with sorted indices and no duplicates.
    """
    assert hasattr(shaped, "ndim"), "non-canonical shaped data: has no ndim attribute"

    if shaped.ndim == 1:
        return

    sparse = maybe_sparse_matrix(shaped)
    if sparse is None:
        assert matrix_layout(shaped) is not None, "non-canonical dense matrix: is neither row-major nor column-major"
        return

    assert sparse.format in ("csr", "csc"), "non-canonical sparse matrix: is not in CSR or CSC format"
    assert sparse.has_canonical_format, "non-canonical sparse matrix: might have duplicate indices"
    assert sparse.has_sorted_indices, "non-canonical sparse matrix: might have unsorted indices"
