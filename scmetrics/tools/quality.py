"""
Quality
-------

Per-feature and per-cell quality control metrics.

These compute, in a single pass over the data, the total, mean and detection rate of each feature (over the cells)
or each cell (over the features), both for all the data and for any number of named subsets of it (for example,
the mitochondrial genes, or the cells of some batch).
"""

from typing import Any
from typing import Dict
from typing import List
from typing import Mapping
from typing import NamedTuple
from typing import Optional
from typing import Tuple
from typing import Union

import numpy as np
import pandas as pd  # type: ignore
from anndata import AnnData  # type: ignore

import scmetrics.parameters as pr
import scmetrics.utilities as ut

__all__ = [
    "QcMetrics",
    "per_feature_qc_metrics",
    "per_cell_qc_metrics",
    "add_per_feature_qc",
    "add_per_cell_qc",
    "resolve_selector",
]


class QcMetrics(NamedTuple):
    """
    Structured QC metrics, with one row per entity (feature or cell).
    """

    #: The ``sum``, ``mean`` and ``detected`` of each entity over all the data.
    main: pd.DataFrame

    #: For each named subset, the ``sum``, ``mean`` and ``detected`` of each entity over the subset, the ``ratio``
    #: between the subset mean and the overall mean, and the ``percent`` of the overall sum that is in the subset.
    subsets: Dict[str, pd.DataFrame]

    def flatten(self) -> pd.DataFrame:
        """
        Return a single frame with the main columns followed by a ``subsets_<name>_<field>`` column per field of each
        subset.
        """
        frame = self.main.copy()
        for name, subset_frame in self.subsets.items():
            for field in subset_frame.columns:
                frame[f"subsets_{name}_{field}"] = subset_frame[field].values
        return frame


@ut.logged()
@ut.timed_call()
@ut.expand_doc()
def per_feature_qc_metrics(
    data: Union[AnnData, ut.Matrix],
    *,
    subsets: Optional[Mapping[str, Any]] = None,
    detection_limit: float = pr.detection_limit,
    processors: int = pr.processors,
    what: str = "__x__",
    flatten: bool = True,
) -> Union[pd.DataFrame, QcMetrics]:
    """
    Compute QC metrics for each feature (column), over all the cells (rows).

    **Input**

    Either an annotated ``data``, where the observations are cells and the variables are features, and ``what``
    (default: {what}) is the name of the assay to use, or just a matrix (optionally a frame).

    The ``subsets`` (if any) must be a mapping from a non-empty subset name to a selector of cells. A selector may be
    a boolean mask, integer indices, or cell names. An empty collection is the same as no subsets.

    **Returns**

    If ``flatten`` (default: {flatten}), a frame indexed by the feature names, with the ``sum``, ``mean`` and
    ``detected`` columns, followed by ``subsets_<name>_sum``, ``subsets_<name>_mean``, ``subsets_<name>_detected``,
    ``subsets_<name>_ratio`` and ``subsets_<name>_percent`` for each subset. Otherwise, a :py:class:`QcMetrics` with
    the same values in a structured form.

    **Computation Parameters**

    1. A value is considered detected if it is above the ``detection_limit`` (default: {detection_limit}). The
       ``detected`` field is the percentage of the cells in which the feature is detected.

    2. The ``mean`` is the ``sum`` divided by the number of cells (in the subset, if any). The ``ratio`` of a subset is
       its mean divided by the overall mean, and its ``percent`` is its sum divided by the overall sum, times 100. A
       zero overall mean or sum gives ``NaN`` or infinite values.

    3. The cells are split between ``processors`` (default: {processors}) sub-processes, each computing all the sums
       for its range of cells, for all the data and for all the subsets, in a single pass.

    Raises :py:class:`scmetrics.utilities.errors.SubsetsMustBeNamed` if the ``subsets`` are not named,
    :py:class:`scmetrics.utilities.errors.EmptySubsetName` if a subset name is empty,
    :py:class:`scmetrics.utilities.errors.UnresolvableSelector` if a selector can't be applied to the cells, and
    :py:class:`scmetrics.utilities.errors.InvalidWorkerCount` if ``processors`` is less than one.
    """
    metrics = _qc_metrics(
        data, per="column", subsets=subsets, detection_limit=detection_limit, processors=processors, what=what
    )
    if flatten:
        return metrics.flatten()
    return metrics


@ut.logged()
@ut.timed_call()
@ut.expand_doc()
def per_cell_qc_metrics(
    data: Union[AnnData, ut.Matrix],
    *,
    subsets: Optional[Mapping[str, Any]] = None,
    detection_limit: float = pr.detection_limit,
    processors: int = pr.processors,
    what: str = "__x__",
    flatten: bool = True,
) -> Union[pd.DataFrame, QcMetrics]:
    """
    Compute QC metrics for each cell (row), over all the features (columns).

    This is the same as :py:func:`per_feature_qc_metrics` with the roles of the axes swapped: the results are indexed
    by the cell names, the ``subsets`` select features (for example, the mitochondrial genes), and the ``detected``
    field is the percentage of the features detected in the cell (above the ``detection_limit``, default:
    {detection_limit}).

    If ``flatten`` (default: {flatten}), return a single frame, otherwise a :py:class:`QcMetrics`.

    The features are split between ``processors`` (default: {processors}) sub-processes.
    """
    metrics = _qc_metrics(
        data, per="row", subsets=subsets, detection_limit=detection_limit, processors=processors, what=what
    )
    if flatten:
        return metrics.flatten()
    return metrics


@ut.logged()
@ut.timed_call()
def add_per_feature_qc(
    adata: AnnData,
    *,
    subsets: Optional[Mapping[str, Any]] = None,
    detection_limit: float = pr.detection_limit,
    processors: int = pr.processors,
    what: str = "__x__",
    prefix: str = "",
) -> None:
    """
    Compute the per-feature QC metrics of ``adata`` (see :py:func:`per_feature_qc_metrics`) and store them as
    per-variable (feature) annotations.

    **Returns**

    Variable (Feature) Annotations
        A ``<prefix><column>`` annotation for each column of the flattened metrics (by default, with no prefix).
        Existing annotations with the same names are replaced.
    """
    frame = per_feature_qc_metrics(
        adata, subsets=subsets, detection_limit=detection_limit, processors=processors, what=what, flatten=True
    )
    assert isinstance(frame, pd.DataFrame)
    for column in frame.columns:
        ut.set_v_data(adata, prefix + column, frame[column].values)


@ut.logged()
@ut.timed_call()
def add_per_cell_qc(
    adata: AnnData,
    *,
    subsets: Optional[Mapping[str, Any]] = None,
    detection_limit: float = pr.detection_limit,
    processors: int = pr.processors,
    what: str = "__x__",
    prefix: str = "",
) -> None:
    """
    Compute the per-cell QC metrics of ``adata`` (see :py:func:`per_cell_qc_metrics`) and store them as
    per-observation (cell) annotations.

    **Returns**

    Observation (Cell) Annotations
        A ``<prefix><column>`` annotation for each column of the flattened metrics (by default, with no prefix).
        Existing annotations with the same names are replaced.
    """
    frame = per_cell_qc_metrics(
        adata, subsets=subsets, detection_limit=detection_limit, processors=processors, what=what, flatten=True
    )
    assert isinstance(frame, pd.DataFrame)
    for column in frame.columns:
        ut.set_o_data(adata, prefix + column, frame[column].values)


def _qc_metrics(  # pylint: disable=too-many-locals
    data: Union[AnnData, ut.Matrix],
    *,
    per: str,
    subsets: Optional[Mapping[str, Any]],
    detection_limit: float,
    processors: int,
    what: str,
) -> QcMetrics:
    if processors < 1:
        raise ut.InvalidWorkerCount(processors)

    # The entities are made the rows of the processed matrix, so the reductions are per row of a row-major layout.
    layout = "row_major" if per == "row" else "column_major"
    entity_names, reduced_names, matrix = _entity_data(data, per=per, what=what, layout=layout)
    if per == "column":
        matrix = matrix.transpose()
    entities_count, reduced_count = matrix.shape

    resolved = _resolve_subsets(subsets, reduced_count, reduced_names)
    ut.log_calc("subsets", [name for name, _ in resolved])

    # A subset selecting an entry more than once counts it more than once.
    indicator = np.zeros((reduced_count, len(resolved)), dtype="float64")
    for subset_index, (_, indices) in enumerate(resolved):
        np.add.at(indicator[:, subset_index], indices, 1)

    ranges = ut.split_ranges(reduced_count, processors)

    @ut.timed_call("qc_metrics.range")
    def _compute_range(range_index: int) -> ut.NumpyMatrix:
        start, stop = ranges[range_index]
        ut.timed_parameters(entities=entities_count, reduced=stop - start, subsets=len(resolved))
        block = ut.to_layout(matrix[:, start:stop], layout="row_major")
        if block.dtype != "float64":
            block = block.astype("float64")

        partial = np.zeros((2, 1 + len(resolved), entities_count), dtype="float64")
        partial[0, 0, :] = ut.sum_per(block, per="row")
        partial[1, 0, :] = ut.count_above_per(block, detection_limit, per="row")
        if len(resolved) > 0:
            sums, counts = _subset_sums_and_counts(block, indicator[start:stop, :], detection_limit)
            partial[0, 1:, :] = sums.transpose()
            partial[1, 1:, :] = counts.transpose()

        return partial

    partials = ut.parallel_map(_compute_range, len(ranges), processors=processors)
    totals = partials[0].copy()
    for partial in partials[1:]:
        totals += partial

    sizes = np.array([reduced_count] + [len(indices) for _, indices in resolved], dtype="float64")
    with np.errstate(divide="ignore", invalid="ignore"):
        sums = totals[0, :, :]
        means = sums / sizes[:, None]
        detected = totals[1, :, :] / sizes[:, None] * 100

        main = pd.DataFrame(dict(sum=sums[0], mean=means[0], detected=detected[0]), index=entity_names)
        subset_frames: Dict[str, pd.DataFrame] = {}
        for selection_index, (name, _) in enumerate(resolved, start=1):
            subset_frames[name] = pd.DataFrame(
                dict(
                    sum=sums[selection_index],
                    mean=means[selection_index],
                    detected=detected[selection_index],
                    ratio=means[selection_index] / means[0],
                    percent=sums[selection_index] / sums[0] * 100,
                ),
                index=entity_names,
            )

    ut.log_calc("sum", main["sum"].values)
    return QcMetrics(main=main, subsets=subset_frames)


def _entity_data(
    data: Union[AnnData, ut.Matrix], *, per: str, what: str, layout: str
) -> Tuple[pd.Index, Optional[pd.Index], ut.ProperMatrix]:
    if isinstance(data, AnnData):
        matrix = ut.get_vo_proper(data, what, layout=layout)
        row_names: Optional[pd.Index] = data.obs_names
        column_names: Optional[pd.Index] = data.var_names
    else:
        frame = ut.maybe_pandas_frame(data)
        if frame is not None:
            row_names = frame.index
            column_names = frame.columns
        else:
            row_names = column_names = None
        matrix = ut.to_layout(ut.to_proper_matrix(data, default_layout=layout), layout)

    if per == "row":
        entity_names, reduced_names = row_names, column_names
    else:
        entity_names, reduced_names = column_names, row_names

    if entity_names is None:
        entity_names = pd.RangeIndex(matrix.shape[ut.PER_OF_AXIS.index(per)])

    return entity_names, reduced_names, matrix


def _resolve_subsets(
    subsets: Optional[Mapping[str, Any]], size: int, names: Optional[pd.Index]
) -> List[Tuple[str, ut.NumpyVector]]:
    if subsets is None:
        return []

    if not isinstance(subsets, Mapping):
        if hasattr(subsets, "__len__") and len(subsets) == 0:
            return []
        raise ut.SubsetsMustBeNamed()

    for name in subsets.keys():
        if not isinstance(name, str):
            raise ut.SubsetsMustBeNamed(f"the subsets must be named (got a subset named: {name!r})")
        if name == "":
            raise ut.EmptySubsetName()

    return [(name, resolve_selector(name, selector, size, names)) for name, selector in subsets.items()]


def resolve_selector(name: str, selector: Any, size: int, names: Optional[pd.Index]) -> ut.NumpyVector:
    """
    Resolve the ``selector`` of the subset ``name`` into the integer indices of the selected entities, out of ``size``
    entities which may have some ``names``.

    The ``selector`` may be a boolean mask (with an entry per entity), integer indices, or entity names (if an entity
    name appears more than once, the first occurrence is selected). The order of the indices follows the order of the
    ``selector``, except for a mask.

    Raises :py:class:`scmetrics.utilities.errors.UnresolvableSelector` if the selector can't be resolved.
    """
    if isinstance(selector, str):
        values = np.array([selector])
    elif isinstance(selector, (pd.Series, pd.Index)):
        values = selector.to_numpy()
    elif isinstance(selector, np.ndarray):
        values = selector
    else:
        values = np.asarray(list(selector))

    if values.ndim != 1:
        raise ut.UnresolvableSelector(name, f"the selector is {values.ndim}-dimensional")

    if len(values) == 0:
        return np.empty(0, dtype="int64")

    if values.dtype == "bool":
        if len(values) != size:
            raise ut.UnresolvableSelector(name, f"the mask has {len(values)} entries instead of {size}")
        return np.where(values)[0].astype("int64")

    if np.issubdtype(values.dtype, np.integer):
        indices = values.astype("int64")
        out_of_range = (indices < 0) | (indices >= size)
        if np.any(out_of_range):
            raise ut.UnresolvableSelector(
                name, f"the index: {indices[out_of_range][0]} is out of the range: 0 .. {size - 1}"
            )
        return indices

    if values.dtype.kind in "OUS":
        if names is None:
            raise ut.UnresolvableSelector(name, "there are no names to select by")
        names = pd.Index(names)
        positions = pd.Series(np.arange(size), index=names)[~names.duplicated(keep="first")]
        found = positions.reindex(values.astype("str"))
        if found.isna().any():
            raise ut.UnresolvableSelector(name, f"unknown name: {found.index[found.isna()][0]}")
        return found.to_numpy().astype("int64")

    raise ut.UnresolvableSelector(name, f"unsupported selector type: {values.dtype}")


def _subset_sums_and_counts(
    block: ut.ProperMatrix, indicator: ut.NumpyMatrix, detection_limit: float
) -> Tuple[ut.NumpyMatrix, ut.NumpyMatrix]:
    compressed = ut.maybe_compressed_matrix(block)
    if compressed is None:
        dense = ut.to_numpy_matrix(block)
        sums = dense @ indicator
        counts = (dense > detection_limit).astype("float64") @ indicator
        return sums, counts

    sums = np.asarray(compressed @ indicator)

    above = compressed.copy()
    above.data = (compressed.data > detection_limit).astype("float64")
    counts = np.asarray(above @ indicator)

    if detection_limit < 0:
        present = compressed.copy()
        present.data = np.ones(len(compressed.data), dtype="float64")
        counts += np.sum(indicator, axis=0)[np.newaxis, :] - np.asarray(present @ indicator)

    return sums, counts
