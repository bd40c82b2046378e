"""
Named
-----
"""

from typing import Any

import numpy as np
import pandas as pd  # type: ignore

import scmetrics.utilities as ut

__all__ = [
    "uniquify_feature_names",
]


@ut.logged()
@ut.timed_call()
def uniquify_feature_names(ids: Any, names: Any) -> ut.NumpyVector:
    """
    Combine the unique feature ``ids`` (e.g. Ensembl identifiers) with their human-readable ``names`` (e.g. gene
    symbols) into unique and readable feature names.

    **Returns**

    A numpy array of strings, where each feature is named by:

    * Its id, if its name is missing (``None``, ``NaN`` or ``pandas.NA``).

    * Its name, if no other feature has the same (case-sensitive) name. Missing names are ignored when testing this.

    * Otherwise, its name followed by ``_`` and its id (e.g. ``Foo_ENSG01``).

    Categorical inputs are treated as their values. Raises :py:class:`scmetrics.utilities.errors.DimensionMismatch` if
    the ``ids`` and the ``names`` have a different length.
    """
    ids_series = _as_series(ids)
    names_series = _as_series(names)
    if len(names_series) != len(ids_series):
        raise ut.DimensionMismatch("names", len(names_series), len(ids_series))

    ids_strings = ids_series.astype("str").to_numpy()
    missing_mask = names_series.isna().to_numpy()
    present = names_series[~missing_mask].astype("str")

    duplicated_mask = np.zeros(len(names_series), dtype="bool")
    duplicated_mask[~missing_mask] = present.duplicated(keep=False).to_numpy()
    ut.log_calc("duplicated", duplicated_mask)

    results = ids_strings.astype("object")
    present_positions = np.where(~missing_mask)[0]
    results[present_positions] = present.to_numpy()
    for position in np.where(duplicated_mask)[0]:
        results[position] = f"{results[position]}_{ids_strings[position]}"

    return results.astype("str")


def _as_series(values: Any) -> pd.Series:
    if isinstance(values, pd.Series):
        values = values.array
    if isinstance(values, pd.Categorical):
        values = np.asarray(values, dtype="object")
    return pd.Series(list(values), dtype="object")
