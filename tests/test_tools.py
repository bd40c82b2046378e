"""
Test the analysis tools.
"""

from typing import Any

import numpy as np
import pandas as pd  # type: ignore
import pytest
from anndata import AnnData  # type: ignore
from scipy import sparse  # type: ignore
from scipy import stats  # type: ignore

import scmetrics.tools as tl
import scmetrics.utilities as ut

# pylint: disable=missing-function-docstring

COUNTS = np.array([[1, 0, 2], [0, 3, 0], [4, 0, 0], [0, 0, 5]], dtype="float32")


def _counts_adata(matrix: Any = None) -> AnnData:
    adata = AnnData(COUNTS.copy() if matrix is None else matrix)
    adata.obs_names = [f"c{index}" for index in range(adata.n_obs)]
    adata.var_names = [f"g{index}" for index in range(adata.n_vars)]
    return adata


def _random_adata(cells: int = 60, genes: int = 40, random_state: int = 123456) -> AnnData:
    def rvs(count: int) -> Any:
        return stats.poisson(5, loc=1).rvs(count, random_state=random_state)

    matrix = sparse.random(
        cells, genes, density=0.5, format="csr", dtype="float32", random_state=random_state, data_rvs=rvs
    )
    adata = AnnData(matrix)
    adata.obs_names = [f"c{index}" for index in range(cells)]
    adata.var_names = [f"g{index}" for index in range(genes)]
    return adata


def test_resolve_groups_labels() -> None:
    key = tl.resolve_groups(["b", "a", "b", None], 4)
    assert list(key.codes) == [1, 0, 1, -1]
    assert list(key.groups.index) == ["a", "b"]
    assert list(key.groups["group"]) == ["a", "b"]

    key = tl.resolve_groups(np.array([10, 2, 10, 2]), 4)
    assert list(key.groups.index) == ["2", "10"]
    assert list(key.codes) == [1, 0, 1, 0]


def test_resolve_groups_categorical() -> None:
    categorical = pd.Categorical(["x", "y", "x", "y"], categories=["z", "y", "x"])
    key = tl.resolve_groups(categorical, 4)
    assert list(key.groups.index) == ["y", "x"]
    assert list(key.codes) == [1, 0, 1, 0]

    key = tl.resolve_groups(pd.Series(categorical, name="kind"), 4)
    assert list(key.groups.columns) == ["kind"]
    assert list(key.groups["kind"]) == ["y", "x"]


def test_resolve_groups_table() -> None:
    table = pd.DataFrame(dict(batch=["1", "1", "2", "1", None], type=["a", "b", "a", "a", "b"]))
    key = tl.resolve_groups(table, 5)
    assert list(key.groups.index) == ["1-a", "1-b", "2-a"]
    assert list(key.groups["batch"]) == ["1", "1", "2"]
    assert list(key.groups["type"]) == ["a", "b", "a"]
    assert list(key.codes) == [0, 1, 2, 0, -1]


def test_resolve_groups_errors() -> None:
    with pytest.raises(ut.DimensionMismatch):
        tl.resolve_groups(["a", "b"], 3)

    with pytest.raises(KeyError):
        tl.resolve_groups("unknown", 3, frame=pd.DataFrame(index=["x", "y", "z"]))


def test_resolve_groups_colliding_names() -> None:
    table = pd.DataFrame(dict(first=["1-a", "1"], second=["b", "a-b"]))
    results = tl.sum_counts_across_cells(np.ones((2, 2)), table)
    assert list(results.groups.index) == ["1-a-b", "1-a-b.1"]
    assert list(results.groups["first"]) == ["1", "1-a"]
    assert np.allclose(results.data, np.ones((2, 2)))

    adata = _counts_adata(np.ones((2, 3), dtype="float32"))
    gdata = tl.aggregate_across_cells(adata, table)
    assert gdata.obs_names.is_unique


def test_sum_counts_across_cells() -> None:
    results = tl.sum_counts_across_cells(COUNTS, ["b", "a", "b", None])
    assert list(results.groups.index) == ["a", "b"]
    assert list(results.sizes) == [1, 2]
    assert np.allclose(results.data, np.array([[0, 3, 0], [5, 0, 2]]))

    results = tl.sum_counts_across_cells(sparse.csr_matrix(COUNTS), ["b", "a", "b", None])
    assert sparse.issparse(results.data)
    assert np.allclose(results.data.toarray(), np.array([[0, 3, 0], [5, 0, 2]]))

    results = tl.sum_counts_across_cells(COUNTS, ["b", "a", "b", None], average=True)
    assert np.allclose(results.data, np.array([[0, 3, 0], [2.5, 0, 1]]))


def test_sum_counts_across_features() -> None:
    results = tl.sum_counts_across_features(COUNTS, pd.Categorical(["x", "x", "y"], categories=["y", "x"]))
    assert list(results.groups.index) == ["y", "x"]
    assert list(results.sizes) == [1, 2]
    assert np.allclose(results.data, np.array([[2, 1], [0, 3], [0, 4], [5, 0]]))


def test_sum_counts_processors() -> None:
    adata = _random_adata()
    groups = np.arange(adata.n_obs) % 5
    expected = tl.sum_counts_across_cells(adata, groups).data.toarray()
    for processors in (2, 3):
        actual = tl.sum_counts_across_cells(adata, groups, processors=processors).data.toarray()
        assert np.array_equal(actual, expected)


def test_sum_counts_key_table_as_labels() -> None:
    table = pd.DataFrame(dict(batch=["1", "1", "2", None], type=["a", "b", "a", "a"]))
    from_table = tl.sum_counts_across_cells(COUNTS, table)
    from_labels = tl.sum_counts_across_cells(COUNTS, ["1-a", "1-b", "2-a", None])

    assert list(from_table.groups.index) == list(from_labels.groups.index) == ["1-a", "1-b", "2-a"]
    assert np.array_equal(from_table.data, from_labels.data)
    assert np.array_equal(from_table.sizes, from_labels.sizes)


def test_sum_counts_missing_as_removed() -> None:
    missing = tl.sum_counts_across_cells(sparse.csr_matrix(COUNTS), ["b", "a", None, "a"])
    removed = tl.sum_counts_across_cells(sparse.csr_matrix(COUNTS[[0, 1, 3], :]), ["b", "a", "a"])
    assert list(missing.groups.index) == list(removed.groups.index)
    assert np.array_equal(missing.data.toarray(), removed.data.toarray())
    assert np.array_equal(missing.sizes, removed.sizes)

    missing = tl.sum_counts_across_features(COUNTS, ["x", None, "y"])
    removed = tl.sum_counts_across_features(COUNTS[:, [0, 2]], ["x", "y"])
    assert np.array_equal(missing.data, removed.data)
    assert np.array_equal(missing.sizes, removed.sizes)


def test_aggregate_across_cells() -> None:
    adata = _counts_adata(sparse.csr_matrix(COUNTS))
    adata.layers["double"] = sparse.csr_matrix(COUNTS * 2)
    adata.obs["cluster"] = ["b", "a", "b", "a"]
    ut.set_alt_data(adata, "spikes", AnnData(np.array([[1], [2], [3], [4]], dtype="float32")))
    ut.set_name(adata, "cells")

    gdata = tl.aggregate_across_cells(adata, "cluster", what=["__x__", "double"], name=".clusters")

    assert list(gdata.obs_names) == ["a", "b"]
    assert list(gdata.obs["cluster"]) == ["a", "b"]
    assert list(gdata.obs["grouped"]) == [2, 2]
    assert list(gdata.var_names) == ["g0", "g1", "g2"]
    assert np.allclose(gdata.X.toarray(), np.array([[0, 3, 5], [5, 0, 2]]))
    assert np.allclose(gdata.layers["double"].toarray(), np.array([[0, 6, 10], [10, 0, 4]]))
    assert ut.get_name(gdata) == "cells.clusters"

    spikes = ut.get_alt_data(gdata, "spikes")
    assert np.allclose(spikes.X, np.array([[6], [4]]))

    gdata = tl.aggregate_across_cells(adata, "cluster", use_alt=False)
    assert ut.get_alt_names(gdata) == []
    assert ut.get_name(gdata) == "cells"


def test_aggregate_across_features() -> None:
    adata = _counts_adata()
    adata.var["pathway"] = ["p", "q", "p"]

    gdata = tl.aggregate_across_features(adata, "pathway")

    assert list(gdata.var_names) == ["p", "q"]
    assert list(gdata.var["grouped"]) == [2, 1]
    assert list(gdata.obs_names) == ["c0", "c1", "c2", "c3"]
    assert np.allclose(gdata.X, np.array([[3, 0], [0, 3], [4, 0], [5, 0]]))


def test_aggregate_across_cells_key_table() -> None:
    adata = _counts_adata(sparse.csr_matrix(COUNTS))
    adata.obs["batch"] = ["1", "1", "2", "1"]
    adata.obs["type"] = ["a", "b", "a", "a"]
    ut.set_alt_data(adata, "spikes", AnnData(np.array([[1], [2], [3], [4]], dtype="float32")))

    gdata = tl.aggregate_across_cells(adata, adata.obs[["batch", "type"]])

    assert list(gdata.obs_names) == ["1-a", "1-b", "2-a"]
    assert list(gdata.obs["batch"]) == ["1", "1", "2"]
    assert list(gdata.obs["type"]) == ["a", "b", "a"]
    assert list(gdata.obs["grouped"]) == [2, 1, 1]
    assert np.allclose(gdata.X.toarray(), np.array([[1, 0, 7], [0, 3, 0], [4, 0, 0]]))
    assert np.allclose(ut.get_alt_data(gdata, "spikes").X, np.array([[5], [2], [3]]))


def test_aggregate_after_replacing_data() -> None:
    adata = _counts_adata()
    adata.var["pathway"] = ["p", "q", "p"]

    gdata = tl.aggregate_across_features(adata, "pathway")
    assert np.allclose(gdata.X[0, :], [3, 0])

    adata.X = COUNTS * 10
    gdata = tl.aggregate_across_features(adata, "pathway")
    assert np.allclose(gdata.X[0, :], [30, 0])


def test_per_feature_qc_metrics() -> None:
    adata = _counts_adata()
    frame = tl.per_feature_qc_metrics(adata, subsets=dict(first=[0, 1]))

    assert list(frame.index) == ["g0", "g1", "g2"]
    assert list(frame.columns) == [
        "sum",
        "mean",
        "detected",
        "subsets_first_sum",
        "subsets_first_mean",
        "subsets_first_detected",
        "subsets_first_ratio",
        "subsets_first_percent",
    ]
    assert np.allclose(frame["sum"], [5, 3, 7])
    assert np.allclose(frame["mean"], [1.25, 0.75, 1.75])
    assert np.allclose(frame["detected"], [50, 25, 50])
    assert np.allclose(frame["subsets_first_sum"], [1, 3, 2])
    assert np.allclose(frame["subsets_first_mean"], [0.5, 1.5, 1])
    assert np.allclose(frame["subsets_first_detected"], [50, 50, 50])
    assert np.allclose(frame["subsets_first_ratio"], [0.4, 2, 1 / 1.75])
    assert np.allclose(frame["subsets_first_percent"], [20, 100, 200 / 7])


def test_per_cell_qc_metrics() -> None:
    adata = _counts_adata()
    frame = tl.per_cell_qc_metrics(adata, subsets=dict(mito=["g2"]))

    assert list(frame.index) == ["c0", "c1", "c2", "c3"]
    assert np.allclose(frame["sum"], [3, 3, 4, 5])
    assert np.allclose(frame["detected"], [200 / 3, 100 / 3, 100 / 3, 100 / 3])
    assert np.allclose(frame["subsets_mito_sum"], [2, 0, 0, 5])
    assert np.allclose(frame["subsets_mito_detected"], [100, 0, 0, 100])
    assert np.allclose(frame["subsets_mito_ratio"], [2, 0, 0, 3])
    assert np.allclose(frame["subsets_mito_percent"], [200 / 3, 0, 0, 100])


def test_qc_metrics_structured() -> None:
    metrics = tl.per_feature_qc_metrics(
        COUNTS, subsets=dict(first=np.array([True, True, False, False]), last=[3]), flatten=False
    )
    assert isinstance(metrics, tl.QcMetrics)
    assert list(metrics.subsets.keys()) == ["first", "last"]
    assert list(metrics.main.index) == [0, 1, 2]

    flat = metrics.flatten()
    for name, frame in metrics.subsets.items():
        for field in ("sum", "mean", "detected", "ratio", "percent"):
            assert np.array_equal(flat[f"subsets_{name}_{field}"].values, frame[field].values)
    assert np.array_equal(flat["mean"].values, metrics.main["mean"].values)


def test_qc_metrics_all_zero() -> None:
    frame = tl.per_feature_qc_metrics(np.zeros((3, 2)), subsets=dict(some=[0, 2]))
    assert np.all(frame["mean"] == 0)
    assert np.all(frame["detected"] == 0)
    assert np.all(frame["subsets_some_mean"] == 0)
    assert np.all(frame["subsets_some_detected"] == 0)
    assert np.all(np.isnan(frame["subsets_some_ratio"]))


def test_qc_metrics_processors_and_sparse() -> None:
    adata = _random_adata()
    dense = adata.X.toarray()
    subsets = dict(half=np.arange(0, adata.n_obs, 2), one=[5])

    for per_cell in (False, True):
        compute = tl.per_cell_qc_metrics if per_cell else tl.per_feature_qc_metrics
        cell_subsets = dict(half=np.arange(0, adata.n_vars, 2), one=[5]) if per_cell else subsets
        expected = compute(adata, subsets=cell_subsets)

        for processors in (2, 3):
            actual = compute(adata, subsets=cell_subsets, processors=processors)
            assert np.array_equal(actual.values, expected.values, equal_nan=True)

        actual = compute(dense, subsets=cell_subsets)
        assert np.array_equal(actual.values, expected.values, equal_nan=True)


def test_qc_metrics_detection_limit() -> None:
    matrix = sparse.csr_matrix(COUNTS)
    frame = tl.per_feature_qc_metrics(matrix, detection_limit=-1)
    assert np.allclose(frame["detected"], 100)

    frame = tl.per_feature_qc_metrics(matrix, detection_limit=1)
    assert np.allclose(frame["detected"], [25, 25, 50])
    assert np.array_equal(frame.values, tl.per_feature_qc_metrics(COUNTS, detection_limit=1).values)


def test_qc_metrics_errors() -> None:
    with pytest.raises(ut.SubsetsMustBeNamed):
        tl.per_feature_qc_metrics(COUNTS, subsets=[[0, 1]])

    with pytest.raises(ut.SubsetsMustBeNamed):
        tl.per_feature_qc_metrics(COUNTS, subsets={"good": [0], None: [1]})

    with pytest.raises(ut.EmptySubsetName):
        tl.per_feature_qc_metrics(COUNTS, subsets={"": [0]})

    with pytest.raises(ut.UnresolvableSelector):
        tl.per_feature_qc_metrics(COUNTS, subsets=dict(bad=[10]))

    with pytest.raises(ut.UnresolvableSelector):
        tl.per_feature_qc_metrics(COUNTS, subsets=dict(bad=["c0"]))

    with pytest.raises(ut.UnresolvableSelector):
        tl.per_feature_qc_metrics(_counts_adata(), subsets=dict(bad=["c9"]))

    with pytest.raises(ut.UnresolvableSelector):
        tl.per_feature_qc_metrics(COUNTS, subsets=dict(bad=np.array([True, False])))

    with pytest.raises(ut.InvalidWorkerCount):
        tl.per_feature_qc_metrics(COUNTS, processors=0)


def test_resolve_selector() -> None:
    names = pd.Index(["g0", "g1", "g0", "g3"])

    assert list(tl.resolve_selector("s", np.array([True, False, False, True]), 4, names)) == [0, 3]
    assert list(tl.resolve_selector("s", [3, 1, 1], 4, names)) == [3, 1, 1]
    assert list(tl.resolve_selector("s", ["g3", "g0"], 4, names)) == [3, 0]
    assert list(tl.resolve_selector("s", "g1", 4, names)) == [1]
    assert list(tl.resolve_selector("s", pd.Index(["g0"]), 4, names)) == [0]
    assert len(tl.resolve_selector("s", [], 4, names)) == 0

    with pytest.raises(ut.UnresolvableSelector, match="out of the range"):
        tl.resolve_selector("s", [-1], 4, names)

    with pytest.raises(ut.UnresolvableSelector, match="no names"):
        tl.resolve_selector("s", ["g0"], 4, None)

    with pytest.raises(ut.UnresolvableSelector, match="unsupported"):
        tl.resolve_selector("s", [0.5], 4, names)


def test_qc_metrics_repeated_subset_entries() -> None:
    for matrix in (COUNTS, sparse.csr_matrix(COUNTS)):
        frame = tl.per_feature_qc_metrics(matrix, subsets=dict(twice=[0, 0, 2]), detection_limit=0)
        assert np.allclose(frame["subsets_twice_sum"], [6, 0, 4])
        assert np.allclose(frame["subsets_twice_mean"], [2, 0, 4 / 3])
        assert np.allclose(frame["subsets_twice_detected"], [100, 0, 200 / 3])

        frame = tl.per_feature_qc_metrics(matrix, subsets=dict(twice=[0, 0, 2]), detection_limit=-1)
        assert np.allclose(frame["subsets_twice_detected"], 100)

        frame = tl.per_cell_qc_metrics(matrix, subsets=dict(last=[2, 2]), detection_limit=-1)
        assert np.allclose(frame["subsets_last_sum"], [4, 0, 0, 10])
        assert np.allclose(frame["subsets_last_detected"], 100)


def test_qc_metrics_empty_subsets() -> None:
    expected = tl.per_feature_qc_metrics(COUNTS)
    for subsets in ([], (), {}):
        frame = tl.per_feature_qc_metrics(COUNTS, subsets=subsets)
        assert list(frame.columns) == ["sum", "mean", "detected"]
        assert np.array_equal(frame.values, expected.values)


def test_qc_metrics_after_replacing_data() -> None:
    adata = _counts_adata(sparse.csr_matrix(COUNTS))
    assert np.allclose(tl.per_feature_qc_metrics(adata)["sum"], [5, 3, 7])
    assert np.allclose(tl.per_cell_qc_metrics(adata)["sum"], [3, 3, 4, 5])

    ut.set_vo_data(adata, "__x__", sparse.csr_matrix(COUNTS * 2))
    assert np.allclose(tl.per_feature_qc_metrics(adata)["sum"], [10, 6, 14])
    assert np.allclose(tl.per_cell_qc_metrics(adata)["sum"], [6, 6, 8, 10])


def test_add_qc() -> None:
    adata = _counts_adata()
    tl.add_per_cell_qc(adata, subsets=dict(mito=["g2"]))
    tl.add_per_feature_qc(adata, prefix="qc_")

    assert np.allclose(ut.get_o_numpy(adata, "sum"), [3, 3, 4, 5])
    assert np.allclose(ut.get_o_numpy(adata, "subsets_mito_sum"), [2, 0, 0, 5])
    assert np.allclose(adata.var["qc_detected"], [50, 25, 50])


def test_uniquify_feature_names() -> None:
    ids = ["E1", "E2", "E3", "E4"]
    names = ["A", None, "A", "B"]
    assert list(tl.uniquify_feature_names(ids, names)) == ["A_E1", "E2", "A_E3", "B"]

    assert list(tl.uniquify_feature_names(["E1", "E2"], ["a", "A"])) == ["a", "A"]
    assert list(tl.uniquify_feature_names(["E1", "E2"], [np.nan, "X"])) == ["E1", "X"]
    assert list(tl.uniquify_feature_names(["E1", "E2"], pd.Categorical(["X", "X"]))) == ["X_E1", "X_E2"]

    with pytest.raises(ut.DimensionMismatch):
        tl.uniquify_feature_names(["E1", "E2"], ["A"])


def test_normalize_counts() -> None:
    counts = np.array([[1, 3], [2, 6]], dtype="float64")

    assert np.allclose(tl.library_size_factors(counts), [2 / 3, 4 / 3])

    normalized = tl.normalize_counts(counts, log=False)
    assert np.allclose(normalized, np.array([[1.5, 4.5], [1.5, 4.5]]))

    expected = np.log2(np.array([[2.5, 5.5], [2.5, 5.5]]))
    assert np.allclose(tl.normalize_counts(counts), expected)

    normalized = tl.normalize_counts(sparse.csr_matrix(counts))
    assert sparse.issparse(normalized)
    assert np.allclose(normalized.toarray(), expected)

    normalized = tl.normalize_counts(counts, size_factors=[1, 2], center_size_factors=False, log=False)
    assert np.allclose(normalized, np.array([[1, 3], [1, 3]]))

    with pytest.raises(ValueError):
        tl.normalize_counts(counts, size_factors=[1, 0])

    with pytest.raises(ut.DimensionMismatch):
        tl.normalize_counts(counts, size_factors=[1, 2, 3])


def test_log_norm_counts() -> None:
    adata = _counts_adata()
    tl.log_norm_counts(adata)
    assert "logcounts" in adata.layers
    assert np.allclose(ut.get_o_numpy(adata, "size_factor"), [0.8, 0.8, 16 / 15, 4 / 3])

    tl.log_norm_counts(adata, log=False)
    assert np.allclose(adata.layers["normcounts"][0, :], np.array([1, 0, 2]) / 0.8)


def test_run_pca() -> None:
    adata = _random_adata()
    tl.log_norm_counts(adata)
    tl.run_pca(adata, components=5, top_features=20)

    coordinates = adata.obsm["PCA"]
    assert coordinates.shape == (adata.n_obs, 5)

    percent_variance = adata.uns["PCA_percent_variance"]
    assert len(percent_variance) == 5
    assert np.all(np.diff(percent_variance) <= 0)
    assert np.sum(percent_variance) <= 100 + 1e-6

    results = tl.calculate_pca(adata, components=3, subset_features=["g0", "g1", "g2", "g3"], scale=True)
    assert results.coordinates.shape == (adata.n_obs, 3)
    assert np.sum(results.percent_variance) <= 100 + 1e-6


def test_pca_after_renormalizing() -> None:
    size_factors = np.linspace(0.5, 2, 60)

    adata = _random_adata()
    tl.log_norm_counts(adata)
    first = tl.calculate_pca(adata, components=3, top_features=20).coordinates

    tl.log_norm_counts(adata, size_factors=size_factors)
    second = tl.calculate_pca(adata, components=3, top_features=20).coordinates

    fresh = _random_adata()
    tl.log_norm_counts(fresh, size_factors=size_factors)
    expected = tl.calculate_pca(fresh, components=3, top_features=20).coordinates

    assert not np.allclose(first, second)
    assert np.allclose(second, expected)


def test_run_tsne_and_umap() -> None:
    adata = _random_adata()
    tl.log_norm_counts(adata)
    tl.run_pca(adata, components=10)

    tl.run_tsne(adata, pca_components=10)
    assert adata.obsm["TSNE"].shape == (adata.n_obs, 2)

    coordinates = tl.calculate_tsne(adata, reduced="PCA", reduced_dims=5)
    assert coordinates.shape == (adata.n_obs, 2)

    tl.run_umap(adata, reduced="PCA")
    assert adata.obsm["UMAP"].shape == (adata.n_obs, 2)


def test_run_pca_alt() -> None:
    adata = _random_adata()
    alt = _random_adata(genes=10, random_state=654321)
    tl.log_norm_counts(alt)
    ut.set_alt_data(adata, "proteins", alt)

    tl.run_pca(adata, alt="proteins", components=3, name="ALT_PCA")
    assert adata.obsm["ALT_PCA"].shape == (adata.n_obs, 3)
    assert len(adata.uns["ALT_PCA_percent_variance"]) == 3
