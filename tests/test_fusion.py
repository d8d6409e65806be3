"""Tests for rank fusion."""

import pytest

from pvl.search import FusionStrategy, rrf_fuse, weighted_sum_fuse
from pvl.search.fusion import fuse, rrf_score


def test_rrf_worked_example():
    fused = rrf_fuse([["A", "B"], ["B", "C"]], k=60)
    assert [item_id for item_id, _ in fused] == ["B", "A", "C"]
    scores = dict(fused)
    assert scores["A"] == pytest.approx(1 / 61)
    assert scores["B"] == pytest.approx(1 / 62 + 1 / 61)
    assert scores["C"] == pytest.approx(1 / 62)


def test_rrf_ties_broken_by_id_string():
    fused = rrf_fuse([["b"], ["a"]])
    assert [item_id for item_id, _ in fused] == ["a", "b"]
    fused = rrf_fuse([[10], [9]])
    assert [item_id for item_id, _ in fused] == [10, 9]


def test_rrf_constant_is_configurable():
    assert rrf_score(1, k=0) == 1.0
    fused = rrf_fuse([["A"]], k=10)
    assert fused == [("A", pytest.approx(1 / 11))]


def test_rrf_empty_lists():
    assert rrf_fuse([[], []]) == []


def test_weighted_sum_normalizes_each_list():
    fused = weighted_sum_fuse(
        [[("A", 3.0), ("B", 1.0)], [("B", 0.9), ("C", 0.5)]],
        [0.5, 0.5],
    )
    assert fused == [("A", pytest.approx(0.5)), ("B", pytest.approx(0.5)), ("C", pytest.approx(0.0))]


def test_weighted_sum_equal_scores_normalize_to_one():
    fused = weighted_sum_fuse([[("A", 2.0), ("B", 2.0)]], [0.8])
    assert dict(fused) == {"A": pytest.approx(0.8), "B": pytest.approx(0.8)}


def test_weighted_sum_needs_matching_weights():
    with pytest.raises(ValueError):
        weighted_sum_fuse([[("A", 1.0)]], [0.5, 0.5])


def test_fuse_dispatches_on_strategy():
    keyword = [("A", 2.0), ("B", 1.0)]
    vector = [("B", 0.9), ("C", 0.8)]
    assert [i for i, _ in fuse(FusionStrategy.RRF, keyword, vector)] == ["B", "A", "C"]
    weighted = fuse("weighted_sum", keyword, vector, keyword_weight=1.0, vector_weight=0.0)
    assert weighted[0][0] == "A"
    with pytest.raises(ValueError):
        fuse("borda", keyword, vector)
