"""
Annotation
----------

We use ``AnnData`` to hold the data being analyzed: rows (observations) are cells, columns (variables) are features
(genes). The functions here provide uniform, logged access to its members.

X as an Annotation
..................

For a uniform interface, we pretend the ``X`` member is a per-variable-per-observation annotation (assay) with the
special name ``__x__``. This allows us to have APIs that take an assay name and just pass them (typically by default)
the name ``__x__`` to force the code to run on the ``X`` data member. Any other name refers to one of the ``layers``.

Data Types and Layout
.....................

The accessors return deterministic usable data types (see :py:mod:`scmetrics.utilities.typing`). Accessors of 2D data
allow explicitly controlling the layout of the data they return, and cache the different layouts of the same data in a
hidden member of the ``AnnData``. A cached layout is only reused while the same data object is stored, and is
discarded when the data is replaced using the accessors. All data fetched or stored through the accessors is frozen
(made read-only), so no operation can modify its inputs in-place.

Alternative Experiments
.......................

An ``AnnData`` may carry named alternative experiments: other ``AnnData`` objects describing the same cells (e.g.
spike-ins or antibody-derived tags) using different features. These are kept in the ``alt_experiments`` unstructured
annotation and are accessed using :py:func:`set_alt_data`, :py:func:`get_alt_data` and :py:func:`get_alt_names`.

Data Logging
............

Using the accessors provided here automatically logs writing the final results of a computation at the ``INFO`` log
level, while lower logging levels also log the data being read (see :py:mod:`scmetrics.utilities.logging`).
"""

from typing import Any
from typing import Callable
from typing import Dict
from typing import List
from typing import MutableMapping
from typing import Optional
from typing import Tuple
from typing import Union

import numpy as np
import pandas as pd  # type: ignore
from anndata import AnnData  # type: ignore

import scmetrics.utilities.computation as utc
import scmetrics.utilities.errors as ute
import scmetrics.utilities.logging as utl
import scmetrics.utilities.typing as utt

__all__ = [
    "set_name",
    "get_name",
    "set_m_data",
    "set_o_data",
    "get_o_numpy",
    "set_v_data",
    "set_oa_data",
    "get_oa_proper",
    "set_vo_data",
    "get_vo_proper",
    "set_alt_data",
    "get_alt_data",
    "get_alt_names",
    "ALT_EXPERIMENTS",
]


#: The name of the unstructured annotation holding the alternative experiments.
ALT_EXPERIMENTS = "alt_experiments"


def set_name(adata: AnnData, name: Optional[str]) -> None:
    """
    Set the ``name`` of the data (for log messages).

    If the name starts with ``.`` it is appended to the current name, if any.
    """
    if name is None:
        if "__name__" in adata.uns:
            del adata.uns["__name__"]
        return

    if name[0] == ".":
        old_name = get_name(adata)
        if old_name is None:
            name = name[1:]
        else:
            name = old_name + name
    adata.uns["__name__"] = name


def get_name(adata: AnnData, default: Optional[str] = None) -> Optional[str]:
    """
    Return the name of the data (for log messages), if any.

    If no name was set, returns the ``default``.
    """
    return adata.uns.get("__name__", default)


def set_m_data(adata: AnnData, name: str, data: Any, *, formatter: Optional[Callable[[Any], Any]] = None) -> None:
    """
    Set unstructured data.

    If ``formatter`` is specified, its results is used when logging the operation.
    """
    utl.log_set(adata, "m", name, data, formatter=formatter)
    adata.uns[name] = data


def _get_o_data(
    adata: AnnData, name: Union[str, utt.Vector], *, formatter: Optional[Callable[[Any], Any]] = None
) -> Any:
    data = _get_shaped_data(adata, "o", adata.obs, shape=(adata.n_obs,), name=name)
    utl.log_get(adata, "o", name, data, formatter=formatter)
    return data


def get_o_numpy(
    adata: AnnData, name: Union[str, utt.Vector], *, formatter: Optional[Callable[[Any], Any]] = None
) -> utt.NumpyVector:
    """
    Get per-observation (cell) data in ``adata`` by its ``name`` as a numpy array.

    If ``name`` is a string, it is the name of a per-observation annotation to fetch. Otherwise, it should be some
    vector of data of the appropriate size.
    """
    data = _get_o_data(adata, name, formatter=formatter)
    return utt.to_numpy_vector(data)


def set_o_data(
    adata: AnnData, name: str, data: Any, *, formatter: Optional[Callable[[Any], Any]] = None
) -> None:
    """
    Set per-observation (cell) data.

    If ``formatter`` is specified, its results is used when logging the operation.
    """
    utl.log_set(adata, "o", name, data, formatter=formatter)

    if isinstance(data, np.ndarray):
        utt.mustbe_canonical(data)
        if not utt.frozen(data):
            utt.freeze(data)

    adata.obs[name] = data


def set_v_data(
    adata: AnnData, name: str, data: Any, *, formatter: Optional[Callable[[Any], Any]] = None
) -> None:
    """
    Set per-variable (feature) data.

    If ``formatter`` is specified, its results is used when logging the operation.
    """
    utl.log_set(adata, "v", name, data, formatter=formatter)

    if isinstance(data, np.ndarray):
        utt.mustbe_canonical(data)
        if not utt.frozen(data):
            utt.freeze(data)

    adata.var[name] = data


def get_oa_proper(
    adata: AnnData,
    name: Union[str, utt.Matrix],
    *,
    layout: Optional[str] = None,
    formatter: Optional[Callable[[Any], Any]] = None,
) -> utt.ProperMatrix:
    """
    Get per-observation-per-any (per-cell-per-any) data, such as a reduced-dimensions result, as a
    :py:const:`scmetrics.utilities.typing.ProperMatrix`.

    If ``name`` is a string, it is the name of a per-observation-per-any annotation to fetch. Otherwise, it should be
    some matrix of data with one row per observation.

    If ``layout`` is specified, it must be one of ``row_major`` or ``column_major``. If this requires relayout of the
    data, the result is cached in a hidden data member for future reuse.
    """
    if isinstance(name, str):
        if name not in adata.obsm:
            raise _unknown_data(adata, name, "oa")
        shape: Tuple[int, ...] = (adata.n_obs, np.asarray(adata.obsm[name]).shape[1])
    else:
        shape = (adata.n_obs, name.shape[1])
    data = _get_layout_data(adata, "oa", adata.obsm, shape=shape, name=name, layout=layout)
    utl.log_get(adata, "oa", name, data, formatter=formatter)
    return utt.to_proper_matrix(data, default_layout=layout or "row_major")


def set_oa_data(
    adata: AnnData, name: str, data: utt.ProperMatrix, *, formatter: Optional[Callable[[Any], Any]] = None
) -> None:
    """
    Set per-observation-per-any (per-cell-per-any) data, such as a reduced-dimensions result.

    If ``formatter`` is specified, its results is used when logging the operation.
    """
    utl.log_set(adata, "oa", name, data, formatter=formatter)

    utt.mustbe_canonical(data)
    if not utt.frozen(data):
        utt.freeze(data)

    _forget_derived(adata, "oa", name)
    adata.obsm[name] = data


def get_vo_proper(
    adata: AnnData,
    name: Union[str, utt.Matrix] = "__x__",
    *,
    layout: Optional[str] = None,
    formatter: Optional[Callable[[Any], Any]] = None,
) -> utt.ProperMatrix:
    """
    Get per-variable-per-observation (per-feature-per-cell) data (an assay) as a
    :py:const:`scmetrics.utilities.typing.ProperMatrix`.

    If ``name`` is a string, it is the name of the assay to fetch (``__x__`` for the ``X`` member, otherwise the name
    of a layer). Otherwise, it should be some matrix of data of the appropriate size.

    If ``layout`` is specified, it must be one of ``row_major`` or ``column_major``. If this requires relayout of the
    data, the result is cached in a hidden data member for future reuse.
    """
    data = _get_layout_data(adata, "vo", adata.layers, shape=(adata.n_obs, adata.n_vars), name=name, layout=layout)
    utl.log_get(adata, "vo", name, data, formatter=formatter)
    return utt.to_proper_matrix(data, default_layout=layout or "row_major")


def set_vo_data(
    adata: AnnData, name: str, data: utt.ProperMatrix, *, formatter: Optional[Callable[[Any], Any]] = None
) -> None:
    """
    Set per-variable-per-observation (per-feature-per-cell) data (an assay).

    If ``formatter`` is specified, its results is used when logging the operation.
    """
    utl.log_set(adata, "vo", name, data, formatter=formatter)

    utt.mustbe_canonical(data)
    if not utt.frozen(data):
        utt.freeze(data)

    _forget_derived(adata, "vo", name)
    if name == "__x__":
        adata.X = data
    else:
        adata.layers[name] = data


def get_alt_names(adata: AnnData) -> List[str]:
    """
    Return the names of the alternative experiments of ``adata`` (possibly empty).
    """
    return list(adata.uns.get(ALT_EXPERIMENTS, {}).keys())


def get_alt_data(adata: AnnData, name: str) -> AnnData:
    """
    Get the alternative experiment of ``adata`` by its ``name``.
    """
    alt_experiments = adata.uns.get(ALT_EXPERIMENTS, {})
    if name not in alt_experiments:
        raise _unknown_data(adata, name, "alt")
    alt_adata = alt_experiments[name]
    utl.log_get(adata, "alt", name, alt_adata)
    return alt_adata


def set_alt_data(adata: AnnData, name: str, alt_adata: AnnData) -> None:
    """
    Set an alternative experiment of ``adata``. This must describe the same observations (cells), that is, have the
    same number of rows.

    Raises :py:class:`scmetrics.utilities.errors.DimensionMismatch` if the number of cells differs.
    """
    if alt_adata.n_obs != adata.n_obs:
        raise ute.DimensionMismatch(f"alternative experiment: {name}", alt_adata.n_obs, adata.n_obs, "row")

    utl.log_set(adata, "alt", name, alt_adata)
    alt_experiments: Dict[str, AnnData] = dict(adata.uns.get(ALT_EXPERIMENTS, {}))
    alt_experiments[name] = alt_adata
    adata.uns[ALT_EXPERIMENTS] = alt_experiments


Annotations = Union[MutableMapping[Any, Any], pd.DataFrame]


def _get_layout_data(
    adata: AnnData,
    per: str,
    annotations: Annotations,
    *,
    shape: Tuple[int, ...],
    name: Union[str, utt.Matrix],
    layout: Optional[str],
) -> Any:
    data = _get_shaped_data(adata, per, annotations, shape=shape, name=name)
    if utt.is_layout(data, layout):
        return data

    assert layout in utt.LAYOUT_OF_AXIS
    if not isinstance(name, str):
        return utc.to_layout(data, layout=layout)

    layout_name = f"{per}:{name}:{layout}"
    source = adata.X if per == "vo" and name == "__x__" else annotations[name]

    derived: Dict[str, Tuple[Any, utt.ProperMatrix]] = getattr(adata, "__derived__", None) or {}
    setattr(adata, "__derived__", derived)

    cached = derived.get(layout_name)
    if cached is not None and cached[0] is source:
        layout_data = cached[1]
        assert layout_data.shape == shape
        assert utt.is_layout(layout_data, layout)
    else:
        layout_data = utc.to_layout(data, layout=layout)
        derived[layout_name] = (source, layout_data)

    if not utt.frozen(layout_data):
        utt.freeze(layout_data)

    return layout_data


def _forget_derived(adata: AnnData, per: str, name: str) -> None:
    derived: Optional[Dict[str, Any]] = getattr(adata, "__derived__", None)
    if derived:
        prefix = f"{per}:{name}:"
        for layout_name in [layout_name for layout_name in derived if layout_name.startswith(prefix)]:
            del derived[layout_name]


def _get_shaped_data(
    adata: AnnData,
    per: str,
    annotations: Annotations,
    *,
    shape: Tuple[int, ...],
    name: Union[str, utt.Shaped],
) -> Any:
    if isinstance(name, str):
        if per == "vo" and name == "__x__":
            data = adata.X
            if data is None:
                raise _unknown_data(adata, name, per)
        else:
            if name not in annotations:
                raise _unknown_data(adata, name, per)
            data = annotations[name]

        if len(shape) == 1:
            data = utt.to_numpy_vector(data)
        else:
            data = utt.to_proper_matrix(data)
            if not utt.frozen(data):
                utt.freeze(data)

    else:
        if len(shape) == 1:
            data = utt.to_numpy_vector(name)
        else:
            data = utt.to_proper_matrix(name)  # type: ignore

    if data.shape != shape:
        described = name if isinstance(name, str) else "<data>"
        raise ute.DimensionMismatch(f"{per} data: {described}", data.shape[0], shape[0])
    return data


def _unknown_data(adata: AnnData, name: str, per: Optional[str] = None) -> KeyError:
    texts = ["unknown"]

    if per is not None:
        texts.append(" ")
        texts.append(per)

    texts.append(" data")

    data_name = get_name(adata)
    if data_name is not None:
        texts.append(": ")
        texts.append(data_name)

    texts.append(" name: ")
    texts.append(name)
    return KeyError("".join(texts))
