"""
Fuzzy title similarity used to catch near-duplicate books at ingestion.

The score is a Dice coefficient over character bigrams:

    score = 2 * |common bigrams| / (|bigrams(a)| + |bigrams(b)|)

Common bigrams are counted one-for-one: every bigram of ``b`` can match at
most one bigram of ``a``, so repeated substrings are not double-counted.

Comparing one candidate against every title in the catalog is O(n*m) per
pair and linear in the catalog size. That is fine for a few thousand books;
a much larger catalog would need an index (e.g. trigram search in the
database) instead of a full scan.

Usage:
    bigram_similarity("night", "nacht")  # 0.25
    find_similar_titles("The Hobbit", [(1, "The Hobit")])
"""

from typing import Iterable, List, NamedTuple, Any, Tuple

DEFAULT_THRESHOLD = 0.8


class SimilarTitle(NamedTuple):
    key: Any
    title: str
    score: float


def bigrams(text: str) -> List[str]:
    """Overlapping two-character substrings, in order, duplicates kept."""
    return [text[i:i + 2] for i in range(len(text) - 1)]


def bigram_similarity(a: str, b: str) -> float:
    """Similarity of two strings in [0, 1]. Callers normalize case."""
    if a == b:
        return 1.0
    if len(a) < 2 or len(b) < 2:
        return 0.0

    pairs_a = bigrams(a)
    pairs_b = bigrams(b)
    total = len(pairs_a) + len(pairs_b)

    # consume matches from b so each bigram is used at most once
    remaining = list(pairs_b)
    intersection = 0
    for pair in pairs_a:
        try:
            remaining.remove(pair)
        except ValueError:
            continue
        intersection += 1

    return (2.0 * intersection) / total


def find_similar_titles(
    candidate: str,
    titles: Iterable[Tuple[Any, str]],
    threshold: float = DEFAULT_THRESHOLD
) -> List[SimilarTitle]:
    """
    Compare a candidate title against existing ones.

    Args:
        candidate: Title about to be added
        titles: (key, title) pairs, e.g. book id and title
        threshold: Scores strictly above this count as similar

    Returns:
        Every similar title in input order (empty list if none)
    """
    needle = (candidate or '').strip().lower()
    matches = []
    for key, title in titles:
        if not title:
            continue
        score = bigram_similarity(needle, title.strip().lower())
        if score > threshold:
            matches.append(SimilarTitle(key, title, score))
    return matches
