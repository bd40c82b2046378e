"""
Normalize
---------

Remove the effect of the different sequencing depth of the cells by dividing each cell's counts by a size factor, and
optionally log-transform the results.
"""

from typing import Optional
from typing import Tuple
from typing import Union

import numpy as np
from anndata import AnnData  # type: ignore

import scmetrics.parameters as pr
import scmetrics.utilities as ut

__all__ = [
    "library_size_factors",
    "normalize_counts",
    "log_norm_counts",
]


@ut.logged()
@ut.timed_call()
@ut.expand_doc()
def library_size_factors(data: Union[AnnData, ut.Matrix], *, what: str = "__x__") -> ut.NumpyVector:
    """
    Compute the library size factor of each cell (row).

    **Input**

    Either an annotated ``data``, where the observations are cells and the variables are features, and ``what``
    (default: {what}) is the name of the assay to use, or just a matrix.

    **Returns**

    A numpy vector with the total counts of each cell, divided by the mean of the totals of all the cells (so the
    factors are centered at unity).
    """
    matrix = _get_matrix(data, what)
    return _library_size_factors(matrix)


@ut.logged()
@ut.timed_call()
@ut.expand_doc()
def normalize_counts(
    data: Union[AnnData, ut.Matrix],
    *,
    size_factors: Union[None, str, ut.Vector] = None,
    log: bool = True,
    pseudo_count: float = pr.pseudo_count,
    center_size_factors: bool = True,
    what: str = "__x__",
) -> ut.ProperMatrix:
    """
    Compute the normalized (and optionally log-transformed) values of the counts of each cell.

    **Input**

    Either an annotated ``data``, where the observations are cells and the variables are features, and ``what``
    (default: {what}) is the name of the assay to use, or just a matrix.

    The ``size_factors`` may be ``None`` (the default) to use the :py:func:`library_size_factors`, the name of a
    per-observation (cell) annotation (if ``data`` is annotated), or a vector with a factor per cell.

    **Returns**

    A matrix of the same shape as the input. This is sparse if the input is sparse, as long as zeros are mapped to
    zeros (that is, if not ``log``, or if the ``pseudo_count`` is exactly one).

    **Computation Parameters**

    1. If ``center_size_factors`` (default: {center_size_factors}), divide the size factors by their mean.

    2. Divide the counts of each cell by its size factor.

    3. If ``log`` (default: {log}), compute the log (base 2) of the normalized values plus the ``pseudo_count``
       (default: {pseudo_count}). A zero ``pseudo_count`` converts zeros to ``NaN``.

    Raises ``ValueError`` if any of the size factors is not positive and finite, and
    :py:class:`scmetrics.utilities.errors.DimensionMismatch` if there isn't one size factor per cell.
    """
    normalized, _ = _normalize(
        data,
        size_factors=size_factors,
        log=log,
        pseudo_count=pseudo_count,
        center_size_factors=center_size_factors,
        what=what,
    )
    return normalized


@ut.logged()
@ut.timed_call()
@ut.expand_doc()
def log_norm_counts(
    adata: AnnData,
    *,
    size_factors: Union[None, str, ut.Vector] = None,
    log: bool = True,
    pseudo_count: float = pr.pseudo_count,
    center_size_factors: bool = True,
    what: str = "__x__",
    name: Optional[str] = None,
) -> None:
    """
    Compute the normalized counts of ``adata`` (see :py:func:`normalize_counts`) and store them in it.

    **Returns**

    Sets the following in the data:

    Per-Variable Per-Observation (Feature-Cell) Data
        ``name``
            The normalized values. By default, this is ``logcounts`` if ``log`` (default: {log}), or ``normcounts``
            otherwise.

    Observation (Cell) Annotations
        ``size_factor``
            The size factor used for each cell (after centering, if ``center_size_factors``, default:
            {center_size_factors}).

    The ``pseudo_count`` (default: {pseudo_count}) and ``what`` (default: {what}) are as in :py:func:`normalize_counts`.
    """
    normalized, factors = _normalize(
        adata,
        size_factors=size_factors,
        log=log,
        pseudo_count=pseudo_count,
        center_size_factors=center_size_factors,
        what=what,
    )

    if name is None:
        name = "logcounts" if log else "normcounts"

    ut.set_vo_data(adata, name, normalized)
    ut.set_o_data(adata, "size_factor", factors)


def _get_matrix(data: Union[AnnData, ut.Matrix], what: str) -> ut.ProperMatrix:
    if isinstance(data, AnnData):
        return ut.get_vo_proper(data, what, layout="row_major")
    return ut.to_layout(ut.to_proper_matrix(data), "row_major")


def _library_size_factors(matrix: ut.ProperMatrix) -> ut.NumpyVector:
    totals = ut.sum_per(matrix, per="row").astype("float64")
    ut.log_calc("totals", totals, formatter=ut.sizes_description)
    with np.errstate(divide="ignore", invalid="ignore"):
        return totals / np.mean(totals)


def _normalize(
    data: Union[AnnData, ut.Matrix],
    *,
    size_factors: Union[None, str, ut.Vector],
    log: bool,
    pseudo_count: float,
    center_size_factors: bool,
    what: str,
) -> Tuple[ut.ProperMatrix, ut.NumpyVector]:
    matrix = _get_matrix(data, what)
    cells_count = matrix.shape[0]

    if size_factors is None:
        factors = _library_size_factors(matrix)
    elif isinstance(size_factors, str):
        if not isinstance(data, AnnData):
            raise KeyError(f"can't fetch the size factors: {size_factors} of a plain matrix")
        factors = ut.get_o_numpy(data, size_factors).astype("float64")
    else:
        factors = ut.to_numpy_vector(size_factors).astype("float64")

    if len(factors) != cells_count:
        raise ut.DimensionMismatch("size factors", len(factors), cells_count, "row")

    if not np.all(np.isfinite(factors) & (factors > 0)):
        raise ValueError("the size factors must be positive and finite")

    if center_size_factors:
        factors = factors / np.mean(factors)
    ut.log_calc("size_factors", factors, formatter=ut.sizes_description)

    normalized = ut.scale_by(matrix, 1.0 / factors, by="row")
    if log:
        if pseudo_count < 0:
            raise ValueError(f"negative pseudo-count: {pseudo_count}")
        normalized = ut.log_data(normalized, base=2, normalization=pseudo_count)

    return normalized, factors
