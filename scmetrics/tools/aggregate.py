"""
Aggregate
---------

Sum (or average) the data of groups of cells or groups of features.

The core computation is :py:func:`scmetrics.utilities.computation.sum_groups`, which works on integer group codes. The
functions here resolve the grouping keys (see :py:func:`scmetrics.tools.groups.resolve_groups`), pick the data out of
an ``AnnData`` if needed, and label the results.
"""

from typing import Collection
from typing import Dict
from typing import List
from typing import NamedTuple
from typing import Optional
from typing import Tuple
from typing import Union

import pandas as pd  # type: ignore
from anndata import AnnData  # type: ignore

import scmetrics.parameters as pr
import scmetrics.utilities as ut

from .groups import GroupKey
from .groups import resolve_groups

__all__ = [
    "GroupSums",
    "aggregate_groups",
    "sum_counts_across_cells",
    "sum_counts_across_features",
    "aggregate_across_cells",
    "aggregate_across_features",
]


class GroupSums(NamedTuple):
    """
    The results of aggregating a matrix by groups.
    """

    #: The summed (or averaged) data, with a row (or column) per group.
    data: ut.ProperMatrix

    #: A frame with a row per group, indexed by the group names, with a column per grouping key.
    groups: pd.DataFrame

    #: The number of entities in each group.
    sizes: ut.NumpyVector


@ut.logged()
@ut.timed_call()
@ut.expand_doc()
def aggregate_groups(
    data: Union[AnnData, ut.Matrix],
    groups: Union[str, ut.Vector, pd.Categorical, pd.DataFrame],
    *,
    per: str,
    what: str = "__x__",
    average: bool = False,
    processors: int = pr.processors,
) -> GroupSums:
    """
    Sum the ``data`` of each group of rows (if ``per`` is ``row``) or columns (if ``per`` is ``column``).

    **Input**

    Either an annotated ``data``, where the observations are cells and the variables are features, and ``what``
    (default: {what}) is the name of the assay to aggregate, or just a matrix.

    The ``groups`` can be any of the forms accepted by :py:func:`scmetrics.tools.groups.resolve_groups`. If it is a
    string, it names a per-observation (cell) annotation when grouping rows, or a per-variable (feature) annotation when
    grouping columns.

    **Returns**

    A :py:class:`GroupSums` with the summed data (with a row or column per group, which is sparse if the input is
    sparse), a frame describing the groups, and the number of members of each group.

    **Computation Parameters**

    1. Resolve the ``groups`` to an integer code per entity, excluding entities with missing keys.

    2. Sum the data of each group. If ``average`` (default: {average}), divide the sums by the number of members of
       each group.

    3. The work is split between ``processors`` (default: {processors}) sub-processes, each handling a contiguous range
       of the other axis. The results do not depend on the number of processors.
    """
    assert per in ut.PER_OF_AXIS
    axis = ut.PER_OF_AXIS.index(per)

    frame: Optional[pd.DataFrame] = None
    if isinstance(data, AnnData):
        frame = data.obs if per == "row" else data.var
        matrix = ut.get_vo_proper(data, what, layout=f"{per}_major")
    else:
        matrix = ut.to_proper_matrix(data, default_layout=f"{per}_major")

    key = resolve_groups(groups, matrix.shape[axis], frame=frame)
    summed, sizes = _sum_key(matrix, key, per=per, average=average, processors=processors)
    return GroupSums(data=summed, groups=key.groups, sizes=sizes)


@ut.expand_doc()
def sum_counts_across_cells(
    data: Union[AnnData, ut.Matrix],
    groups: Union[str, ut.Vector, pd.Categorical, pd.DataFrame],
    *,
    what: str = "__x__",
    average: bool = False,
    processors: int = pr.processors,
) -> GroupSums:
    """
    Sum the ``what`` (default: {what}) counts of each group of cells (rows). The result has a row per group of cells
    and a column per feature.

    This is :py:func:`aggregate_groups` with ``per="row"``.
    """
    return aggregate_groups(data, groups, per="row", what=what, average=average, processors=processors)


@ut.expand_doc()
def sum_counts_across_features(
    data: Union[AnnData, ut.Matrix],
    groups: Union[str, ut.Vector, pd.Categorical, pd.DataFrame],
    *,
    what: str = "__x__",
    average: bool = False,
    processors: int = pr.processors,
) -> GroupSums:
    """
    Sum the ``what`` (default: {what}) counts of each group of features (columns). The result has a row per cell and a
    column per group of features.

    This is :py:func:`aggregate_groups` with ``per="column"``.
    """
    return aggregate_groups(data, groups, per="column", what=what, average=average, processors=processors)


@ut.logged()
@ut.timed_call()
@ut.expand_doc()
def aggregate_across_cells(
    adata: AnnData,
    groups: Union[str, ut.Vector, pd.Categorical, pd.DataFrame],
    *,
    what: Union[str, Collection[str]] = "__x__",
    average: bool = False,
    use_alt: bool = True,
    processors: int = pr.processors,
    name: Optional[str] = None,
) -> AnnData:
    """
    Compute new data where each observation is the sum of a group of observations (cells).

    For example, having clustered the cells, compute the "pseudo-bulk" profile of each cluster for further analysis.

    **Input**

    Annotated ``adata``, where the observations are cells and the variables are features, and ``what`` (default:
    {what}) is the name of an assay, or a collection of names of assays, to aggregate.

    The ``groups`` can be any of the forms accepted by :py:func:`scmetrics.tools.groups.resolve_groups`; a string names
    a per-observation annotation.

    **Returns**

    An annotated data with an observation per group, containing:

    * The aggregated assay(s), under the same name(s). If ``average`` (default: {average}), these contain the mean
      instead of the sum of the group members.

    * A per-observation annotation per grouping key, holding the key label(s) of each group, and a ``grouped``
      per-observation annotation which counts the number of cells in each group.

    * A copy of the per-variable (feature) annotations.

    * If ``use_alt`` (default: {use_alt}), the alternative experiments of ``adata`` aggregated using the same groups
      (all their assays are aggregated). Otherwise, the alternative experiments are dropped.

    If ``name`` is not specified, the data will have the same name as the input. Otherwise, if it starts with a ``.``,
    it will be appended to the current name (if any). Otherwise, ``name`` is the new name.

    The work is split between ``processors`` (default: {processors}) sub-processes.
    """
    whats = [what] if isinstance(what, str) else list(what)
    key = resolve_groups(groups, adata.n_obs, frame=adata.obs)
    ut.log_calc("groups", key.codes, formatter=ut.groups_description)

    gdata = _aggregate_cells_by_key(adata, key, whats, average=average, processors=processors)

    if use_alt:
        for alt_name in ut.get_alt_names(adata):
            with ut.log_step("- alt", alt_name):
                alt_adata = ut.get_alt_data(adata, alt_name)
                alt_whats = ["__x__"] + list(alt_adata.layers.keys())
                alt_gdata = _aggregate_cells_by_key(alt_adata, key, alt_whats, average=average, processors=processors)
                ut.set_alt_data(gdata, alt_name, alt_gdata)

    ut.set_name(gdata, ut.get_name(adata))
    if name is not None:
        ut.set_name(gdata, name)
    ut.top_level(gdata)
    return gdata


@ut.logged()
@ut.timed_call()
@ut.expand_doc()
def aggregate_across_features(
    adata: AnnData,
    groups: Union[str, ut.Vector, pd.Categorical, pd.DataFrame],
    *,
    what: Union[str, Collection[str]] = "__x__",
    average: bool = False,
    processors: int = pr.processors,
    name: Optional[str] = None,
) -> AnnData:
    """
    Compute new data where each variable is the sum of a group of variables (features).

    For example, compute the total expression of each gene set (e.g. pathway) in each cell.

    **Input**

    Annotated ``adata``, where the observations are cells and the variables are features, and ``what`` (default:
    {what}) is the name of an assay, or a collection of names of assays, to aggregate.

    The ``groups`` can be any of the forms accepted by :py:func:`scmetrics.tools.groups.resolve_groups`; a string names
    a per-variable annotation.

    **Returns**

    An annotated data with a variable per group, containing:

    * The aggregated assay(s), under the same name(s). If ``average`` (default: {average}), these contain the mean
      instead of the sum of the group members.

    * A per-variable annotation per grouping key, holding the key label(s) of each group, and a ``grouped``
      per-variable annotation which counts the number of features in each group.

    * A copy of the per-observation (cell) annotations, and the alternative experiments (which describe the same
      cells).

    If ``name`` is not specified, the data will have the same name as the input. Otherwise, if it starts with a ``.``,
    it will be appended to the current name (if any). Otherwise, ``name`` is the new name.

    The work is split between ``processors`` (default: {processors}) sub-processes.
    """
    whats = [what] if isinstance(what, str) else list(what)
    key = resolve_groups(groups, adata.n_vars, frame=adata.var)
    ut.log_calc("groups", key.codes, formatter=ut.groups_description)

    summed_by_what: Dict[str, ut.ProperMatrix] = {}
    sizes: Optional[ut.NumpyVector] = None
    for assay in whats:
        data = ut.get_vo_proper(adata, assay, layout="column_major")
        summed_by_what[assay], sizes = _sum_key(data, key, per="column", average=average, processors=processors)
    assert sizes is not None

    var = key.groups.copy()
    var["grouped"] = sizes
    gdata = AnnData(obs=adata.obs.copy(), var=var)
    for assay, summed in summed_by_what.items():
        ut.set_vo_data(gdata, assay, summed)

    for alt_name in ut.get_alt_names(adata):
        ut.set_alt_data(gdata, alt_name, ut.get_alt_data(adata, alt_name))

    ut.set_name(gdata, ut.get_name(adata))
    if name is not None:
        ut.set_name(gdata, name)
    ut.top_level(gdata)
    return gdata


def _aggregate_cells_by_key(
    adata: AnnData, key: GroupKey, whats: List[str], *, average: bool, processors: int
) -> AnnData:
    summed_by_what: Dict[str, ut.ProperMatrix] = {}
    sizes: Optional[ut.NumpyVector] = None
    for assay in whats:
        data = ut.get_vo_proper(adata, assay, layout="row_major")
        summed_by_what[assay], sizes = _sum_key(data, key, per="row", average=average, processors=processors)
    assert sizes is not None

    obs = key.groups.copy()
    obs["grouped"] = sizes
    gdata = AnnData(obs=obs, var=adata.var.copy())
    for assay, summed in summed_by_what.items():
        ut.set_vo_data(gdata, assay, summed)
    return gdata


def _sum_key(
    matrix: ut.ProperMatrix, key: GroupKey, *, per: str, average: bool, processors: int
) -> Tuple[ut.ProperMatrix, ut.NumpyVector]:
    summed, sizes = ut.sum_groups(
        matrix, key.codes, per=per, groups_count=len(key.groups), average=average, processors=processors
    )
    ut.log_calc("sizes", sizes, formatter=ut.sizes_description)
    return summed, sizes
