"""
Test the utility functions.
"""

from typing import Any

import numpy as np
import pytest
from anndata import AnnData  # type: ignore
from scipy import sparse  # type: ignore
from scipy import stats  # type: ignore

import scmetrics.utilities as ut

ut.allow_inefficient_layout(False)

# pylint: disable=missing-function-docstring


def _random_counts(rows: int, columns: int, *, density: float = 0.3, random_state: int = 123456) -> Any:
    rvs = stats.poisson(10, loc=1).rvs
    return sparse.random(
        rows, columns, density=density, format="csr", dtype="float64", random_state=random_state, data_rvs=rvs
    )


def test_expand_doc() -> None:
    @ut.expand_doc(foo=7)
    def bar(baz: Any, vaz: int = 5) -> None:  # pylint: disable=disallowed-name,unused-argument
        """
        Bar with {foo} foos and parameter vaz (default: {vaz}).
        """

    assert (
        bar.__doc__
        == """
        Bar with 7 foos and parameter vaz (default: 5).
        """
    )


def test_relayout_matrix() -> None:
    csr_matrix = _random_counts(20, 20)
    assert csr_matrix.format == "csr"

    scipy_csc_matrix = csr_matrix.tocsc()
    our_csc_matrix = ut.to_layout(csr_matrix, layout="column_major")

    assert our_csc_matrix.format == "csc"
    assert np.all(our_csc_matrix.indptr == scipy_csc_matrix.indptr)
    assert np.all(our_csc_matrix.toarray() == scipy_csc_matrix.toarray())

    our_csr_matrix = ut.to_layout(our_csc_matrix, layout="row_major")
    assert our_csr_matrix.format == "csr"
    assert np.all(our_csr_matrix.toarray() == csr_matrix.toarray())

    dense = ut.to_layout(csr_matrix.toarray(), layout="column_major")
    assert ut.matrix_layout(dense) == "column_major"


def test_freeze_dense() -> None:
    array = np.arange(10)

    assert not ut.frozen(array)
    array[0] = -1
    assert array[0] == -1

    ut.freeze(array)
    assert ut.frozen(array)
    with pytest.raises(ValueError, match="read-only"):
        array[0] = -2

    assert array[0] == -1


def test_freeze_sparse() -> None:
    matrix = _random_counts(10, 10)

    ut.freeze(matrix)
    assert ut.frozen(matrix)
    with pytest.raises(ValueError, match="read-only"):
        matrix.data[0] = -2

    with pytest.raises(ValueError, match="read-only"):
        matrix.indices[0] = 0


def test_split_ranges() -> None:
    assert ut.split_ranges(10, 1) == [(0, 10)]
    assert ut.split_ranges(10, 3) == [(0, 3), (3, 6), (6, 10)]
    assert ut.split_ranges(2, 3) == [(0, 0), (0, 0), (0, 2)]

    with pytest.raises(ut.InvalidWorkerCount):
        ut.split_ranges(10, 0)


def test_parallel_map() -> None:
    @ut.timed_call("invocation")
    def invocation(index: int) -> int:
        return index * index

    expected = [index * index for index in range(20)]
    assert ut.parallel_map(invocation, 20) == expected
    assert ut.parallel_map(invocation, 20, processors=3) == expected

    with pytest.raises(ut.InvalidWorkerCount):
        ut.parallel_map(invocation, 20, processors=0)


def test_sum_groups() -> None:
    expected_sums = np.array([[5, 7, 2], [10, 8, 13]])
    expected_sizes = np.array([2, 2])
    groups = np.array([0, 1, 0, 1])

    dense_rows = np.array([[0, 1, 2], [3, 0, 4], [5, 6, 0], [7, 8, 9]], dtype="float")

    summed, sizes = ut.sum_groups(dense_rows, groups, per="row")
    assert isinstance(summed, np.ndarray)
    assert np.allclose(summed, expected_sums)
    assert np.all(sizes == expected_sizes)

    summed, sizes = ut.sum_groups(dense_rows.transpose(), groups, per="column")
    assert np.allclose(summed, expected_sums.transpose())
    assert np.all(sizes == expected_sizes)

    sparse_rows = sparse.csr_matrix(dense_rows)

    summed, sizes = ut.sum_groups(sparse_rows, groups, per="row")
    assert sparse.issparse(summed)
    assert np.allclose(summed.toarray(), expected_sums)
    assert np.all(sizes == expected_sizes)

    summed, sizes = ut.sum_groups(sparse_rows.transpose(), groups, per="column")
    assert sparse.issparse(summed)
    assert np.allclose(summed.toarray(), expected_sums.transpose())
    assert np.all(sizes == expected_sizes)


def test_sum_groups_missing() -> None:
    dense_rows = np.array([[1, 2], [3, 4], [5, 6], [7, 8]], dtype="float")
    groups = np.array([0, -1, 1, 0])

    summed, sizes = ut.sum_groups(dense_rows, groups, per="row")
    assert np.allclose(summed, np.array([[8, 10], [5, 6]]))
    assert list(sizes) == [2, 1]

    summed, sizes = ut.sum_groups(dense_rows, groups, per="row", groups_count=3)
    assert summed.shape == (3, 2)
    assert np.allclose(summed[2, :], 0)
    assert list(sizes) == [2, 1, 0]

    summed, sizes = ut.sum_groups(dense_rows, np.full(4, -1), per="row")
    assert summed.shape == (0, 2)
    assert len(sizes) == 0


def test_sum_groups_average() -> None:
    dense_rows = np.array([[1, 2], [3, 4], [5, 6]], dtype="float")
    groups = np.array([0, 0, 1])
    expected = np.array([[2, 3], [5, 6]])

    summed, _ = ut.sum_groups(dense_rows, groups, per="row", average=True)
    assert np.allclose(summed, expected)

    summed, _ = ut.sum_groups(sparse.csr_matrix(dense_rows), groups, per="row", average=True)
    assert np.allclose(summed.toarray(), expected)


def test_sum_groups_processors() -> None:
    matrix = _random_counts(50, 37)
    groups = np.arange(50) % 7
    groups[3] = -1

    for per, data in (("row", matrix), ("column", matrix.transpose().tocsc())):
        expected_summed, expected_sizes = ut.sum_groups(data, groups, per=per, processors=1)
        dense_summed, dense_sizes = ut.sum_groups(data.toarray(), groups, per=per, processors=1)
        assert np.array_equal(expected_summed.toarray(), dense_summed)
        assert np.array_equal(expected_sizes, dense_sizes)

        for processors in (2, 3, 100):
            summed, sizes = ut.sum_groups(data, groups, per=per, processors=processors)
            assert np.array_equal(summed.toarray(), expected_summed.toarray())
            assert np.array_equal(sizes, expected_sizes)

            summed, sizes = ut.sum_groups(data.toarray(), groups, per=per, processors=processors)
            assert np.array_equal(summed, dense_summed)


def test_sum_groups_errors() -> None:
    dense_rows = np.zeros((4, 2))

    with pytest.raises(ut.DimensionMismatch):
        ut.sum_groups(dense_rows, np.array([0, 1, 0]), per="row")

    with pytest.raises(ut.InvalidWorkerCount):
        ut.sum_groups(dense_rows, np.array([0, 1, 0, 1]), per="row", processors=0)


def test_scale_by() -> None:
    dense_rows = np.array([[1, 2], [3, 4]], dtype="float")
    expected = np.array([[2, 4], [1.5, 2]])

    assert np.allclose(ut.scale_by(dense_rows, np.array([2, 0.5]), by="row"), expected)

    scaled = ut.scale_by(sparse.csr_matrix(dense_rows), np.array([2, 0.5]), by="row")
    assert scaled.format == "csr"
    assert np.allclose(scaled.toarray(), expected)

    scaled = ut.scale_by(sparse.csc_matrix(dense_rows), np.array([2, 0.5]), by="row")
    assert scaled.format == "csc"
    assert np.allclose(scaled.toarray(), expected)

    with pytest.raises(ut.DimensionMismatch):
        ut.scale_by(dense_rows, np.array([1, 2, 3]), by="row")


def test_log_data() -> None:
    dense = np.array([[0, 1], [3, 7]], dtype="float")

    logged = ut.log_data(dense, base=2, normalization=1)
    assert np.allclose(logged, np.array([[0, 1], [2, 3]]))

    logged = ut.log_data(sparse.csr_matrix(dense), base=2, normalization=1)
    assert sparse.issparse(logged)
    assert np.allclose(logged.toarray(), np.array([[0, 1], [2, 3]]))

    logged = ut.log_data(dense)
    assert np.isnan(logged[0, 0])
    assert logged[0, 1] == 0


def test_reductions() -> None:
    dense_rows = np.array([[0, 1, 2], [3, 0, 5]], dtype="float")
    csr = sparse.csr_matrix(dense_rows)

    assert np.allclose(ut.sum_per(dense_rows, per="row"), [3, 8])
    assert np.allclose(ut.sum_per(csr, per="row"), [3, 8])
    assert np.allclose(ut.count_above_per(csr, 1, per="row"), [1, 2])
    assert np.allclose(ut.count_above_per(csr, -1, per="row"), [3, 3])
    assert np.allclose(ut.variance_per(dense_rows, per="row"), [np.var([0, 1, 2]), np.var([3, 0, 5])])

    with pytest.raises(NotImplementedError):
        ut.sum_per(csr, per="column")


def test_annotation_accessors() -> None:
    adata = AnnData(np.arange(6, dtype="float32").reshape(3, 2))
    ut.set_name(adata, "test")
    assert ut.get_name(adata) == "test"
    ut.set_name(adata, ".more")
    assert ut.get_name(adata) == "test.more"

    ut.set_o_data(adata, "score", np.array([1.0, 2.0, 3.0]))
    assert list(ut.get_o_numpy(adata, "score")) == [1.0, 2.0, 3.0]

    column_major = ut.get_vo_proper(adata, layout="column_major")
    assert ut.matrix_layout(column_major) == "column_major"
    assert ut.frozen(column_major)
    assert np.all(column_major == adata.X)

    with pytest.raises(KeyError):
        ut.get_o_numpy(adata, "unknown")

    with pytest.raises(KeyError):
        ut.get_vo_proper(adata, "unknown")


def test_layout_cache_follows_data() -> None:
    counts = np.array([[1, 0, 2], [0, 3, 0], [4, 0, 0]], dtype="float32")
    adata = AnnData(sparse.csr_matrix(counts))

    cached = ut.get_vo_proper(adata, layout="column_major")
    assert ut.get_vo_proper(adata, layout="column_major") is cached

    ut.set_vo_data(adata, "__x__", sparse.csr_matrix(counts * 2))
    assert np.array_equal(ut.get_vo_proper(adata, layout="column_major").toarray(), counts * 2)

    adata.X = sparse.csr_matrix(counts * 10)
    assert np.array_equal(ut.get_vo_proper(adata, layout="column_major").toarray(), counts * 10)

    ut.set_vo_data(adata, "dense", counts.copy())
    assert np.array_equal(ut.get_vo_proper(adata, "dense", layout="column_major"), counts)

    adata.layers["dense"] = counts + 1
    assert np.array_equal(ut.get_vo_proper(adata, "dense", layout="column_major"), counts + 1)


def test_collect_timing(tmp_path: Any) -> None:
    path = str(tmp_path / "timing.csv")

    ut.collect_timing(True, path)
    try:
        ut.sum_groups(np.ones((4, 2)), np.array([0, 1, 0, 1]), per="row")
    finally:
        ut.collect_timing(False)

    with open(path, encoding="utf8") as file:
        lines = file.read().splitlines()

    assert any(line.startswith("sum_groups;sum_groups.dense-efficient,elapsed_ns,") for line in lines)
    assert any(",groups,2," in line for line in lines)

    with pytest.raises(ValueError):
        ut.collect_timing(True, str(tmp_path / "timing.txt"))


def test_alt_experiments() -> None:
    adata = AnnData(np.zeros((3, 2), dtype="float32"))
    assert ut.get_alt_names(adata) == []

    spikes = AnnData(np.ones((3, 1), dtype="float32"))
    ut.set_alt_data(adata, "spikes", spikes)
    assert ut.get_alt_names(adata) == ["spikes"]
    assert ut.get_alt_data(adata, "spikes") is spikes

    with pytest.raises(ut.DimensionMismatch):
        ut.set_alt_data(adata, "bad", AnnData(np.ones((2, 1), dtype="float32")))

    with pytest.raises(KeyError):
        ut.get_alt_data(adata, "unknown")


def test_errors() -> None:
    assert issubclass(ut.EmptySubsetName, ut.SubsetsMustBeNamed)
    assert issubclass(ut.SubsetsMustBeNamed, ValueError)
    assert issubclass(ut.DimensionMismatch, ValueError)
    assert issubclass(ut.UnresolvableSelector, KeyError)

    error = ut.UnresolvableSelector("mito", "unknown name: MT-1")
    assert str(error) == "can't resolve the selector of the subset: mito (unknown name: MT-1)"

    error = ut.DimensionMismatch("groups", 3, 4, "row")
    assert str(error) == "the groups has 3 entries instead of the 4 rows"
