"""Hybrid semantic + BM25 re-ranking of search candidates.

Candidates arrive ordered by semantic similarity. A keyword score computed
over each candidate's stored content is added on top, scaled by a tunable
weight, and the list is re-sorted. A weight of 0 keeps pure semantic order.
"""

import math

from pydantic import BaseModel, Field

from container_search.models import SearchResult

BM25_K1 = 1.5
BM25_B = 0.75

# Empirical upper bound of the per-token BM25 contribution
BM25_NORMALIZER = 5.0

MIN_TOKEN_LENGTH = 3


class SearchConfig(BaseModel):
    """Search configuration.

    Attributes:
        default_limit: Results returned when the caller gives no limit
        max_limit: Upper bound on the requested limit
        candidate_multiplier: Semantic candidates fetched per returned result
        keyword_boost_weight: Weight of the BM25 score (0 disables it)
        min_score: Results scoring below this are dropped
    """

    default_limit: int = Field(default=10, ge=1)
    max_limit: int = Field(default=50, ge=1)
    candidate_multiplier: int = Field(default=3, ge=1, le=20)
    keyword_boost_weight: float = Field(default=0.0, ge=0.0)
    min_score: float = Field(default=0.0, ge=0.0, le=1.0)


def tokenize(text: str) -> list[str]:
    """Lower-case, split on whitespace and drop tokens of two characters or fewer."""
    return [token for token in text.lower().split() if len(token) >= MIN_TOKEN_LENGTH]


def _content(result: SearchResult) -> str:
    return (result.full_content if result.full_content is not None else result.preview).lower()


def bm25_scores(results: list[SearchResult], tokens: list[str]) -> list[float]:
    """Normalized BM25 score of every candidate for the given query tokens.

    Scores are divided by `len(tokens) * 5.0` and capped at 1.0.
    """
    if not results or not tokens:
        return [0.0] * len(results)

    contents = [_content(result) for result in results]
    n = len(contents)
    avg_len = sum(len(c) for c in contents) / n

    idf = {}
    for token in set(tokens):
        df = sum(1 for content in contents if token in content)
        idf[token] = math.log((n - df + 0.5) / (df + 0.5) + 1)

    scores = []
    for content in contents:
        doc_len = len(content)
        length_ratio = doc_len / avg_len if avg_len > 0 else 0.0
        score = 0.0
        for token in tokens:
            tf = content.count(token)
            if tf == 0:
                continue
            score += (
                idf[token]
                * (tf * (BM25_K1 + 1))
                / (tf + BM25_K1 * (1 - BM25_B + BM25_B * length_ratio))
            )
        scores.append(min(1.0, score / (len(tokens) * BM25_NORMALIZER)))
    return scores


def hybrid_rerank(
    results: list[SearchResult],
    query: str,
    expanded_query: str | None = None,
    keyword_boost_weight: float = 0.0,
) -> list[SearchResult]:
    """Combine semantic and keyword relevance and re-sort the candidates.

    Args:
        results: Candidates in semantic order
        query: Original query text
        expanded_query: Query after expansion; tokens are taken from it when given
        keyword_boost_weight: Multiplier applied to the BM25 score

    Returns:
        Candidates with combined scores, sorted descending. Ties keep their
        original relative order.
    """
    tokens = tokenize(expanded_query if expanded_query is not None else query)
    if not tokens or not results:
        return results

    keyword = bm25_scores(results, tokens)
    rescored = [
        result.with_score(min(1.0, result.score + score * keyword_boost_weight))
        for result, score in zip(results, keyword, strict=True)
    ]
    # sorted() is stable, which keeps equal scores in semantic order
    return sorted(rescored, key=lambda r: r.score, reverse=True)
