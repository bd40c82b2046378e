"""
Reduce
------

Compute low-dimensional embeddings of the cells (PCA, t-SNE, UMAP).

These are thin wrappers: they pick the features to use (an explicit subset and/or the highest-variance features),
optionally standardize them, or instead use a previously computed reduced-dimensions result, and then hand the data
to the embedding implementation (``scikit-learn`` for PCA and t-SNE, ``umap-learn`` for UMAP).
"""

from typing import Any
from typing import NamedTuple
from typing import Optional
from typing import Tuple

import numpy as np
import umap  # type: ignore
from anndata import AnnData  # type: ignore
from sklearn.decomposition import PCA  # type: ignore
from sklearn.manifold import TSNE  # type: ignore

import scmetrics.parameters as pr
import scmetrics.utilities as ut

from .quality import resolve_selector

__all__ = [
    "PcaResults",
    "calculate_pca",
    "run_pca",
    "calculate_tsne",
    "run_tsne",
    "calculate_umap",
    "run_umap",
]


class PcaResults(NamedTuple):
    """
    The results of a principal components analysis.
    """

    #: The coordinates of each cell (row) in each principal component (column).
    coordinates: ut.NumpyMatrix

    #: The percentage of the total variance (of the used features) explained by each principal component.
    percent_variance: ut.NumpyVector


@ut.logged()
@ut.timed_call()
@ut.expand_doc()
def calculate_pca(
    adata: AnnData,
    *,
    what: str = "logcounts",
    components: int = pr.pca_components,
    top_features: int = pr.top_features,
    subset_features: Optional[Any] = None,
    scale: bool = False,
    reduced: Optional[str] = None,
    reduced_dims: Optional[int] = None,
    random_seed: int = pr.random_seed,
) -> PcaResults:
    """
    Compute the principal components of the cells of ``adata``.

    **Input**

    Annotated ``adata``, where the observations are cells and the variables are features, and ``what`` (default:
    {what}) is the name of the assay to use (typically log-normalized counts).

    If ``reduced`` is specified, the named reduced-dimensions result (per-observation-per-any annotation) is used
    instead of the assay, possibly restricted to its first ``reduced_dims`` columns, and no feature selection takes
    place.

    **Returns**

    A :py:class:`PcaResults` with the coordinates of each cell and the percent of variance explained by each component.

    **Computation Parameters**

    1. If ``subset_features`` is specified (a mask, indices or names of features), consider only these features.

    2. Use the ``top_features`` (default: {top_features}) features with the highest variance (out of the considered
       ones).

    3. If ``scale`` (default: {scale}), standardize each used feature to have unit variance.

    4. Compute up to ``components`` (default: {components}) principal components using ``random_seed`` (default:
       {random_seed}). The percent of variance is the variance of each component divided by the total variance of the
       used features, times 100.
    """
    data, total_variance = _reduction_input(
        adata,
        what=what,
        top_features=top_features,
        subset_features=subset_features,
        scale=scale,
        reduced=reduced,
        reduced_dims=reduced_dims,
    )
    components = min(components, data.shape[0], data.shape[1])
    ut.log_calc("components", components)

    with ut.timed_step("sklearn.pca"):
        ut.timed_parameters(cells=data.shape[0], features=data.shape[1], components=components)
        pca = PCA(n_components=components, random_state=random_seed)
        coordinates = pca.fit_transform(data)

    with np.errstate(divide="ignore", invalid="ignore"):
        percent_variance = pca.explained_variance_ / total_variance * 100

    return PcaResults(coordinates=np.ascontiguousarray(coordinates), percent_variance=percent_variance)


@ut.logged()
@ut.timed_call()
@ut.expand_doc()
def run_pca(
    adata: AnnData,
    *,
    name: str = "PCA",
    alt: Optional[str] = None,
    what: str = "logcounts",
    components: int = pr.pca_components,
    top_features: int = pr.top_features,
    subset_features: Optional[Any] = None,
    scale: bool = False,
    reduced: Optional[str] = None,
    reduced_dims: Optional[int] = None,
    random_seed: int = pr.random_seed,
) -> None:
    """
    Compute the principal components of the cells of ``adata`` (see :py:func:`calculate_pca`) and store them in it.

    If ``alt`` is specified, the computation uses the named alternative experiment of ``adata`` instead of its main
    data. The results are always stored in ``adata`` itself.

    **Returns**

    Sets the following in the data:

    Per-Observation-Per-Any (Cell) Annotations
        ``name`` (default: {name})
            The coordinates of each cell in each principal component.

    Unstructured Annotations
        ``<name>_percent_variance``
            The percent of variance explained by each principal component.
    """
    source = adata if alt is None else ut.get_alt_data(adata, alt)
    results = calculate_pca(
        source,
        what=what,
        components=components,
        top_features=top_features,
        subset_features=subset_features,
        scale=scale,
        reduced=reduced,
        reduced_dims=reduced_dims,
        random_seed=random_seed,
    )
    ut.set_oa_data(adata, name, results.coordinates)
    ut.set_m_data(adata, f"{name}_percent_variance", results.percent_variance)


@ut.logged()
@ut.timed_call()
@ut.expand_doc(
    tsne_perplexity_cells_fraction=pr.tsne_perplexity_cells_fraction, tsne_max_perplexity=pr.tsne_max_perplexity
)
def calculate_tsne(
    adata: AnnData,
    *,
    what: str = "logcounts",
    components: int = pr.tsne_components,
    top_features: int = pr.top_features,
    subset_features: Optional[Any] = None,
    scale: bool = False,
    reduced: Optional[str] = None,
    reduced_dims: Optional[int] = None,
    pca_components: int = pr.tsne_pca_components,
    perplexity: Optional[float] = None,
    normalize: bool = True,
    theta: float = pr.tsne_theta,
    random_seed: int = pr.random_seed,
) -> ut.NumpyMatrix:
    """
    Compute a t-SNE embedding of the cells of ``adata``.

    **Input**

    As for :py:func:`calculate_pca`, using the ``what`` (default: {what}) assay, or the ``reduced`` results.

    **Returns**

    A matrix with the coordinates of each cell in ``components`` (default: {components}) dimensions.

    **Computation Parameters**

    1. Select and optionally ``scale`` (default: {scale}) the features as in :py:func:`calculate_pca`, using the
       ``top_features`` (default: {top_features}) highest-variance features.

    2. If using an assay (rather than ``reduced`` results) and ``pca_components`` (default: {pca_components}) is not
       zero, first reduce the data to this number of principal components.

    3. If ``normalize`` (default: {normalize}), center each column and divide all the data by its maximal absolute
       value.

    4. Use a ``perplexity`` which by default is the number of cells times {tsne_perplexity_cells_fraction}, but no more
       than {tsne_max_perplexity} and no less than one, and the Barnes-Hut trade-off ``theta`` (default: {theta}),
       with the ``random_seed`` (default: {random_seed}).
    """
    data, _ = _reduction_input(
        adata,
        what=what,
        top_features=top_features,
        subset_features=subset_features,
        scale=scale,
        reduced=reduced,
        reduced_dims=reduced_dims,
    )
    if reduced is None:
        data = _initial_pca(data, pca_components, random_seed)

    if normalize:
        data = _normalize_input(data)

    if perplexity is None:
        perplexity = min(pr.tsne_max_perplexity, np.floor(data.shape[0] * pr.tsne_perplexity_cells_fraction))
        perplexity = max(perplexity, 1.0)
    ut.log_calc("perplexity", perplexity)

    with ut.timed_step("sklearn.tsne"):
        ut.timed_parameters(cells=data.shape[0], features=data.shape[1], components=components)
        coordinates = TSNE(
            n_components=components,
            perplexity=perplexity,
            angle=theta,
            init="pca",
            random_state=random_seed,
        ).fit_transform(data)

    return np.ascontiguousarray(coordinates, dtype="float64")


@ut.logged()
@ut.timed_call()
@ut.expand_doc()
def run_tsne(
    adata: AnnData,
    *,
    name: str = "TSNE",
    alt: Optional[str] = None,
    **kwargs: Any,
) -> None:
    """
    Compute a t-SNE embedding of the cells of ``adata`` (see :py:func:`calculate_tsne`, which is given all the
    ``kwargs``) and store it in the per-observation-per-any annotation ``name`` (default: {name}).

    If ``alt`` is specified, the computation uses the named alternative experiment of ``adata`` instead of its main
    data. The results are always stored in ``adata`` itself.
    """
    source = adata if alt is None else ut.get_alt_data(adata, alt)
    ut.set_oa_data(adata, name, calculate_tsne(source, **kwargs))


@ut.logged()
@ut.timed_call()
@ut.expand_doc()
def calculate_umap(
    adata: AnnData,
    *,
    what: str = "logcounts",
    components: int = pr.umap_components,
    top_features: int = pr.top_features,
    subset_features: Optional[Any] = None,
    scale: bool = False,
    reduced: Optional[str] = None,
    reduced_dims: Optional[int] = None,
    pca_components: int = pr.tsne_pca_components,
    k: int = pr.umap_k,
    min_dist: float = pr.umap_min_dist,
    spread: float = pr.umap_spread,
    random_seed: int = pr.random_seed,
) -> ut.NumpyMatrix:
    """
    Compute a UMAP embedding of the cells of ``adata``.

    **Input**

    As for :py:func:`calculate_pca`, using the ``what`` (default: {what}) assay, or the ``reduced`` results.

    **Returns**

    A matrix with the coordinates of each cell in ``components`` (default: {components}) dimensions.

    **Computation Parameters**

    1. Select and optionally ``scale`` (default: {scale}) the features as in :py:func:`calculate_pca`, using the
       ``top_features`` (default: {top_features}) highest-variance features.

    2. If using an assay (rather than ``reduced`` results) and ``pca_components`` (default: {pca_components}) is not
       zero, first reduce the data to this number of principal components.

    3. Invoke UMAP using ``k`` (default: {k}) nearest neighbors (reduced if there are too few cells), ``min_dist``
       (default: {min_dist}) and ``spread`` (default: {spread}). If the spread is lower than the minimal distance, it is
       raised. If ``random_seed`` (default: {random_seed}) is not zero, then it is passed to UMAP to force the
       computation to be reproducible. However, this means UMAP will use a single-threaded implementation that will be
       slower.
    """
    data, _ = _reduction_input(
        adata,
        what=what,
        top_features=top_features,
        subset_features=subset_features,
        scale=scale,
        reduced=reduced,
        reduced_dims=reduced_dims,
    )
    if reduced is None:
        data = _initial_pca(data, pca_components, random_seed)

    spread = max(min_dist, spread)  # UMAP insists.

    # UMAP implementation doesn't know to reduce K by itself.
    n_neighbors = max(min(k, data.shape[0] - 1), 2)
    ut.log_calc("n_neighbors", n_neighbors)

    random_state: Optional[int] = None
    if random_seed != 0:
        random_state = random_seed

    with ut.timed_step("umap"):
        ut.timed_parameters(cells=data.shape[0], features=data.shape[1], components=components)
        coordinates = umap.UMAP(
            n_neighbors=n_neighbors,
            spread=spread,
            min_dist=min_dist,
            n_components=components,
            random_state=random_state,
        ).fit_transform(data)

    return np.ascontiguousarray(coordinates, dtype="float64")


@ut.logged()
@ut.timed_call()
@ut.expand_doc()
def run_umap(
    adata: AnnData,
    *,
    name: str = "UMAP",
    alt: Optional[str] = None,
    **kwargs: Any,
) -> None:
    """
    Compute a UMAP embedding of the cells of ``adata`` (see :py:func:`calculate_umap`, which is given all the
    ``kwargs``) and store it in the per-observation-per-any annotation ``name`` (default: {name}).

    If ``alt`` is specified, the computation uses the named alternative experiment of ``adata`` instead of its main
    data. The results are always stored in ``adata`` itself.
    """
    source = adata if alt is None else ut.get_alt_data(adata, alt)
    ut.set_oa_data(adata, name, calculate_umap(source, **kwargs))


def _reduction_input(
    adata: AnnData,
    *,
    what: str,
    top_features: int,
    subset_features: Optional[Any],
    scale: bool,
    reduced: Optional[str],
    reduced_dims: Optional[int],
) -> Tuple[ut.NumpyMatrix, float]:
    if reduced is not None:
        data = ut.to_numpy_matrix(ut.get_oa_proper(adata, reduced)).astype("float64")
        if reduced_dims is not None:
            data = np.ascontiguousarray(data[:, :reduced_dims])
        variances = np.var(data, axis=0, ddof=1) if data.shape[0] > 1 else np.zeros(data.shape[1])
        return data, float(np.sum(variances))

    matrix = ut.get_vo_proper(adata, what, layout="column_major")
    cells_count, features_count = matrix.shape

    if subset_features is None:
        candidates = np.arange(features_count)
    else:
        candidates = resolve_selector("subset_features", subset_features, features_count, adata.var_names)

    variances = ut.variance_per(matrix, per="column")
    if cells_count > 1:
        variances = variances * (cells_count / (cells_count - 1))

    order = np.argsort(-variances[candidates], kind="stable")
    selected = candidates[order[:top_features]]
    ut.log_calc("selected features", len(selected))

    data = ut.to_numpy_matrix(matrix[:, selected]).astype("float64")
    selected_variances = variances[selected]

    if scale:
        data -= np.mean(data, axis=0)
        deviations = np.sqrt(selected_variances)
        positive_mask = deviations > 0
        data[:, positive_mask] /= deviations[positive_mask]
        selected_variances = positive_mask.astype("float64")

    return np.ascontiguousarray(data), float(np.sum(selected_variances))


def _initial_pca(data: ut.NumpyMatrix, pca_components: int, random_seed: int) -> ut.NumpyMatrix:
    if pca_components <= 0 or pca_components >= min(data.shape):
        return data
    with ut.timed_step("sklearn.pca"):
        ut.timed_parameters(cells=data.shape[0], features=data.shape[1], components=pca_components)
        return PCA(n_components=pca_components, random_state=random_seed).fit_transform(data)


def _normalize_input(data: ut.NumpyMatrix) -> ut.NumpyMatrix:
    data = data - np.mean(data, axis=0)
    max_abs = np.max(np.abs(data)) if data.size > 0 else 0
    if max_abs > 0:
        data = data / max_abs
    return data
