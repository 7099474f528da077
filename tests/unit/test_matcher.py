# Unit tests for:
#   - MatchResult
#   - match_one  (threshold, empty store, ties, per-descriptor max)
#   - rank_identities

from __future__ import annotations

import numpy as np
import pytest

from conftest import rand_vec
from core.recognizer.base_recognizer import FaceEmbedding
from core.recognizer.identity_store import FaceIdentity, IdentityStore
from core.recognizer.matcher import UNKNOWN, MatchResult, match_one, rank_identities


def _store(people: dict, version: int = 0) -> IdentityStore:
    return IdentityStore.from_identities(
        [
            FaceIdentity(name=name, descriptors=tuple(FaceEmbedding(vector=v) for v in vectors))
            for name, vectors in people.items()
        ],
        version=version,
    )


@pytest.fixture
def store() -> IdentityStore:
    return _store({
        "Alice": [rand_vec(1), rand_vec(11)],
        "Bob": [rand_vec(2)],
        "Carol": [rand_vec(3)],
    })


class TestMatchResult:

    def test_unknown_factory(self):
        r = MatchResult.unknown()
        assert r.name == UNKNOWN
        assert r.score == 0.0
        assert r.is_unknown

    def test_is_unknown_case_insensitive(self):
        assert MatchResult("Unknown", 0.2).is_unknown
        assert MatchResult("UNKNOWN", 0.2).is_unknown
        assert not MatchResult("Alice", 0.9).is_unknown

    def test_str_known(self):
        assert str(MatchResult("Alice", 0.8712)) == "Alice (0.87)"

    def test_str_unknown(self):
        assert str(MatchResult.unknown(0.3)) == "unknown"

    def test_frozen_and_comparable(self):
        assert MatchResult("Alice", 0.5) == MatchResult("Alice", 0.5)
        with pytest.raises(Exception):
            MatchResult("Alice", 0.5).name = "Bob"

    def test_to_dict(self):
        assert MatchResult("Bob", 0.5).to_dict() == {"name": "Bob", "score": 0.5}


class TestMatchOne:

    def test_exact_match(self, store):
        result = match_one(FaceEmbedding(vector=rand_vec(2)), store, threshold=0.4)
        assert result.name == "Bob"
        assert result.score == pytest.approx(1.0, abs=1e-5)

    def test_accepts_raw_array(self, store):
        assert match_one(rand_vec(3), store, threshold=0.4).name == "Carol"

    def test_second_descriptor_matches(self, store):
        result = match_one(rand_vec(11), store, threshold=0.4)
        assert result.name == "Alice"
        assert result.score == pytest.approx(1.0, abs=1e-5)

    def test_below_threshold_reports_best_score(self, store):
        query = rand_vec(500)
        expected = max(
            float(np.dot(query, rand_vec(s))) for s in (1, 11, 2, 3)
        )
        result = match_one(query, store, threshold=0.99)
        assert result.is_unknown
        assert result.score == pytest.approx(expected, abs=1e-5)

    def test_threshold_is_inclusive(self, store):
        result = match_one(rand_vec(1), store, threshold=1.0 - 1e-6)
        assert result.name == "Alice"

    def test_threshold_minus_one_always_accepts(self, store):
        assert not match_one(rand_vec(999), store, threshold=-1.0).is_unknown

    def test_empty_store(self):
        result = match_one(rand_vec(1), IdentityStore.empty(), threshold=0.0)
        assert result == MatchResult(UNKNOWN, 0.0)

    def test_empty_store_skips_validation(self):
        # Nothing to compare against, so a malformed query is not an error
        result = match_one(np.zeros(3, dtype=np.float32), IdentityStore.empty(), threshold=0.0)
        assert result.is_unknown

    def test_tie_goes_to_first_name(self):
        v = rand_vec(7)
        s = _store({"Zed": [v], "Amy": [v], "Mia": [v]})
        assert match_one(v, s, threshold=0.5).name == "Amy"

    def test_scale_invariant_query(self, store):
        assert match_one(rand_vec(3) * 42.0, store, threshold=0.4).name == "Carol"

    @pytest.mark.parametrize("threshold", [-1.0, 0.0, 0.4])
    def test_zero_query_is_unknown(self, store, threshold):
        result = match_one(np.zeros(128, dtype=np.float32), store, threshold=threshold)
        assert result == MatchResult(UNKNOWN, 0.0)

    @pytest.mark.parametrize("seed", [1, 2, 11, 500, 501, 502])
    def test_acceptance_is_monotonic_in_threshold(self, store, seed):
        query = rand_vec(seed)
        thresholds = np.linspace(-1.0, 1.0, 41)
        results = [match_one(query, store, threshold=float(t)) for t in thresholds]
        for i, low in enumerate(results):
            for high in results[i + 1:]:
                if not high.is_unknown:
                    assert low == high

    def test_dimension_mismatch_raises(self, store):
        with pytest.raises(ValueError, match="dimension"):
            match_one(rand_vec(1, dim=64), store, threshold=0.4)

    def test_non_finite_query_raises(self, store):
        bad = rand_vec(1).copy()
        bad[0] = np.nan
        with pytest.raises(ValueError):
            match_one(bad, store, threshold=0.4)

    def test_bad_query_type_raises(self, store):
        with pytest.raises(TypeError):
            match_one([0.1] * 128, store, threshold=0.4)  # type: ignore[arg-type]

    def test_store_unchanged(self, store):
        before = store.gallery.copy()
        match_one(rand_vec(1), store, threshold=0.4)
        np.testing.assert_array_equal(store.gallery, before)


class TestRankIdentities:

    def test_one_entry_per_identity(self, store):
        ranked = rank_identities(rand_vec(2), store)
        assert sorted(r.name for r in ranked) == ["Alice", "Bob", "Carol"]
        assert ranked[0].name == "Bob"

    def test_sorted_descending(self, store):
        scores = [r.score for r in rank_identities(rand_vec(42), store)]
        assert scores == sorted(scores, reverse=True)

    def test_identity_score_is_best_descriptor(self, store):
        ranked = {r.name: r.score for r in rank_identities(rand_vec(11), store)}
        assert ranked["Alice"] == pytest.approx(1.0, abs=1e-5)

    def test_ties_sorted_by_name(self):
        v = rand_vec(7)
        s = _store({"Zed": [v], "Amy": [v]})
        assert [r.name for r in rank_identities(v, s)] == ["Amy", "Zed"]

    def test_top_k(self, store):
        assert len(rank_identities(rand_vec(1), store, top_k=2)) == 2
        assert rank_identities(rand_vec(1), store, top_k=0) == []

    def test_agrees_with_match_one(self, store):
        q = rand_vec(77)
        assert rank_identities(q, store)[0].score == pytest.approx(
            match_one(q, store, threshold=-1.0).score, abs=1e-6
        )

    def test_empty_store(self):
        assert rank_identities(rand_vec(1), IdentityStore.empty()) == []

    def test_zero_query(self, store):
        assert rank_identities(np.zeros(128, dtype=np.float32), store) == []
