"""Unit tests for hybrid re-ranking and query expansion."""

import pytest

from container_search.models import LocationData, SearchResult
from container_search.query import expand_query, is_specific_item, singularize
from container_search.scoring import SearchConfig, bm25_scores, hybrid_rerank, tokenize


def result(x: int, score: float, content: str) -> SearchResult:
    return SearchResult(
        location=LocationData.of("overworld", x, 64, 0),
        score=score,
        preview=content[:100],
        full_content=content,
    )


@pytest.fixture
def candidates() -> list[SearchResult]:
    """Candidates in semantic order; the keyword match sits last."""
    return [
        result(0, 0.80, '{"name": "Oak Planks", "tags": ["wood"]}'),
        result(1, 0.78, '{"name": "Cobblestone"}'),
        result(2, 0.75, '{"name": "Diamond Sword", "tags": ["weapon", "sword"]}'),
    ]


class TestTokenize:
    def test_short_tokens_dropped(self):
        assert tokenize("A big Sword of OK steel") == ["big", "sword", "steel"]

    def test_empty(self):
        assert tokenize("  ") == []


class TestBm25Scores:
    """Tests for the normalized keyword score."""

    def test_matching_document_scores_higher(self, candidates):
        scores = bm25_scores(candidates, ["sword"])
        assert scores[0] == 0.0
        assert scores[1] == 0.0
        assert scores[2] > 0.0

    def test_monotonic_in_term_frequency(self):
        """Of two equally long contents, more query-term occurrences never score lower."""
        once = result(0, 0.6, "sword stone")
        twice = result(1, 0.6, "sword sword")

        low, high = bm25_scores([once, twice], ["sword"])
        assert high > low > 0.0

        reranked = hybrid_rerank([once, twice], "sword", keyword_boost_weight=1.0)
        assert [r.location.x for r in reranked] == [1, 0]
        assert reranked[0].score >= reranked[1].score

    def test_scores_bounded(self, candidates):
        for score in bm25_scores(candidates, ["sword", "diamond", "weapon"]):
            assert 0.0 <= score <= 1.0

    def test_no_tokens(self, candidates):
        assert bm25_scores(candidates, []) == [0.0, 0.0, 0.0]
        assert bm25_scores([], ["sword"]) == []

    def test_preview_used_without_full_content(self):
        candidate = SearchResult(
            location=LocationData.of("overworld", 0, 0, 0), score=0.5, preview="Iron Sword"
        )
        assert bm25_scores([candidate], ["sword"])[0] > 0.0


class TestHybridRerank:
    """Tests for combining semantic and keyword scores."""

    def test_zero_weight_preserves_semantic_order(self, candidates):
        reranked = hybrid_rerank(candidates, "sword", keyword_boost_weight=0.0)
        assert reranked == candidates

    def test_keyword_match_moves_up(self, candidates):
        reranked = hybrid_rerank(candidates, "sword", keyword_boost_weight=1.0)
        assert reranked[0].location.x == 2
        assert reranked[0].score > 0.75

    def test_scores_never_decrease(self, candidates):
        reranked = hybrid_rerank(candidates, "sword", keyword_boost_weight=0.5)
        before = {c.location: c.score for c in candidates}
        for r in reranked:
            assert r.score >= before[r.location]

    def test_score_capped_at_one(self):
        candidates = [result(0, 0.95, "diamond sword diamond sword")]
        reranked = hybrid_rerank(candidates, "diamond sword", keyword_boost_weight=100.0)
        assert reranked[0].score == 1.0

    def test_ties_keep_original_order(self):
        candidates = [result(i, 0.5, "cobblestone") for i in range(4)]
        reranked = hybrid_rerank(candidates, "sword", keyword_boost_weight=1.0)
        assert [r.location.x for r in reranked] == [0, 1, 2, 3]

    def test_expanded_query_tokens_used(self, candidates):
        reranked = hybrid_rerank(
            candidates, "weapon", expanded_query="weapon planks", keyword_boost_weight=1.0
        )
        boosted = {r.location.x for r in reranked if r.score > 0.80}
        assert 0 in boosted

    def test_query_without_tokens_returns_input(self, candidates):
        assert hybrid_rerank(candidates, "ab", keyword_boost_weight=1.0) is candidates

    def test_input_not_mutated(self, candidates):
        original_scores = [c.score for c in candidates]
        hybrid_rerank(candidates, "sword", keyword_boost_weight=1.0)
        assert [c.score for c in candidates] == original_scores


class TestSearchConfig:
    def test_defaults(self):
        config = SearchConfig()
        assert config.default_limit == 10
        assert config.max_limit == 50
        assert config.candidate_multiplier == 3
        assert config.keyword_boost_weight == 0.0

    def test_min_score_range(self):
        with pytest.raises(ValueError):
            SearchConfig(min_score=1.5)


class TestQueryExpansion:
    """Tests for single-word query expansion."""

    def test_synonym(self):
        assert expand_query("Pick") == "pick pickaxe"

    def test_plural_category(self):
        assert expand_query("tools") == "tools tool pickaxe axe shovel hoe sword"

    def test_plural_material(self):
        expanded = expand_query("diamonds").split(" ")
        assert expanded[:3] == ["diamonds", "diamond", "diamond"]
        assert "ore" in expanded

    def test_specific_item_not_expanded(self):
        assert expand_query("sword") == "sword"
        assert is_specific_item("iron ingot")

    def test_multi_word_not_expanded(self):
        assert expand_query("  Iron Sword ") == "iron sword"

    def test_unknown_word_unchanged(self):
        assert expand_query("cake") == "cake"

    def test_no_duplicate_terms(self):
        terms = expand_query("food").split(" ")
        assert terms[0] == "food"
        assert "bread" in terms
        assert len(expand_query("food")) == len(" ".join(dict.fromkeys(terms)))

    @pytest.mark.parametrize(
        "word,expected",
        [("berries", "berry"), ("boxes", "box"), ("swords", "sword"), ("glass", "glass")],
    )
    def test_singularize(self, word, expected):
        assert singularize(word) == expected
