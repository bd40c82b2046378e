"""
Groups
------

Grouping keys come in several forms: the name of a per-cell (or per-feature) annotation, a plain sequence of labels,
a categorical sequence with an explicit order of levels, or a table of several keys whose combination identifies each
group. All of these are normalized here into the same :py:class:`GroupKey`, holding integer group codes for the
aggregation and a table describing the groups for labeling its results.
"""

from typing import Any
from typing import List
from typing import NamedTuple
from typing import Optional
from typing import Set
from typing import Union

import numpy as np
import pandas as pd  # type: ignore

import scmetrics.utilities as ut

__all__ = [
    "GroupKey",
    "resolve_groups",
]


class GroupKey(NamedTuple):
    """
    A grouping key normalized for aggregation.
    """

    #: The group index of each entity, where ``-1`` marks an entity with a missing key (which belongs to no group).
    codes: ut.NumpyVector

    #: A frame with a row per group (in output order), indexed by the group names, with a column per key holding the
    #: key's label for each group.
    groups: pd.DataFrame


@ut.timed_call()
def resolve_groups(
    groups: Union[str, ut.Vector, pd.Categorical, pd.DataFrame],
    size: int,
    *,
    frame: Optional[pd.DataFrame] = None,
) -> GroupKey:
    """
    Normalize the ``groups`` of ``size`` entities into a :py:class:`GroupKey`.

    **Input**

    The ``groups`` may be:

    * A string, which is the name of a column in the ``frame`` (typically the ``obs`` or ``var`` of an ``AnnData``).

    * A sequence of labels (list, numpy array, or non-categorical pandas series). The groups are the sorted unique
      non-missing labels (numerically or lexicographically, depending on the labels type).

    * A categorical sequence (``pandas.Categorical`` or a categorical pandas series). The groups follow the order of
      the levels, except that levels with no entities are dropped.

    * A key table (``pandas.DataFrame``) with a column per key. The groups are the distinct combinations of the keys,
      ordered by the first key, then by the next keys within ties. Each group is named by joining its labels with
      ``-`` (e.g. ``1-a``). If two groups end up with the same name, the later ones are renamed by appending
      ``.1``, ``.2`` and so on.
    Missing labels (``None``, ``NaN`` or ``pandas.NA``) exclude the entity from all the groups. In a key table, an
    entity is excluded if any of its keys is missing.

    **Returns**

    A :py:class:`GroupKey` with the code of each entity and a description of each group.

    Raises :py:class:`scmetrics.utilities.errors.DimensionMismatch` if the length of the ``groups`` is not ``size``.
    """
    if isinstance(groups, str):
        if frame is None or groups not in frame:
            raise KeyError(f"unknown grouping annotation: {groups}")
        groups = frame[groups]

    if len(groups) != size:
        raise ut.DimensionMismatch("groups", len(groups), size)

    if isinstance(groups, pd.DataFrame):
        return _resolve_key_table(groups, size)

    categorical = _as_categorical(groups)
    codes = np.asarray(categorical.codes, dtype="int64")
    key_name = str(groups.name) if isinstance(groups, pd.Series) and groups.name is not None else "group"
    labels = np.asarray(categorical.categories)
    names = _unique_names([str(label) for label in labels])
    return GroupKey(codes=codes, groups=pd.DataFrame({key_name: labels}, index=pd.Index(names, dtype="object")))


def _as_categorical(values: Any) -> pd.Categorical:
    if isinstance(values, pd.Series):
        values = values.array
    if isinstance(values, pd.Categorical):
        return values.remove_unused_categories()
    if isinstance(values, np.ndarray):
        return pd.Categorical(values)
    return pd.Categorical(list(values))


def _resolve_key_table(table: pd.DataFrame, size: int) -> GroupKey:
    if table.shape[1] == 0:
        raise ValueError("the grouping key table has no columns")

    categoricals = [_as_categorical(table[column]) for column in table.columns]
    codes_per_key = np.stack([np.asarray(categorical.codes, dtype="int64") for categorical in categoricals], axis=1)

    valid_mask = np.all(codes_per_key >= 0, axis=1)
    ut.log_calc("valid", valid_mask)

    codes = np.full(size, -1, dtype="int64")
    if np.any(valid_mask):
        unique_codes, inverse = np.unique(codes_per_key[valid_mask, :], axis=0, return_inverse=True)
        codes[valid_mask] = np.reshape(inverse, -1)
    else:
        unique_codes = np.empty((0, len(categoricals)), dtype="int64")

    labels: List[np.ndarray] = [
        np.asarray(categorical.categories)[unique_codes[:, key_index]]
        for key_index, categorical in enumerate(categoricals)
    ]
    names = [
        "-".join(str(key_labels[group_index]) for key_labels in labels) for group_index in range(len(unique_codes))
    ]
    names = _unique_names(names)

    groups = pd.DataFrame(
        {str(column): key_labels for column, key_labels in zip(table.columns, labels)},
        index=pd.Index(names, dtype="object"),
    )
    return GroupKey(codes=codes, groups=groups)


def _unique_names(names: List[str]) -> List[str]:
    taken = set(names)
    if len(taken) == len(names):
        return names

    seen: Set[str] = set()
    unique: List[str] = []
    for name in names:
        if name not in seen:
            seen.add(name)
            unique.append(name)
            continue
        counter = 1
        while f"{name}.{counter}" in taken:
            counter += 1
        unique_name = f"{name}.{counter}"
        taken.add(unique_name)
        unique.append(unique_name)

    ut.log_calc("renamed colliding group names", len(names) - len(seen))
    return unique
