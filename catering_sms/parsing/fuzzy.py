"""
Edit-distance matching of free-text words against a small vocabulary.
"""

from typing import Hashable, Iterable, List, Tuple, TypeVar

from rapidfuzz.distance import Levenshtein

T = TypeVar("T", bound=Hashable)

DEFAULT_MAX_DISTANCE = 3


def distance(a: str, b: str) -> int:
    """Levenshtein distance between two strings, counted in code points."""
    return Levenshtein.distance(a, b)


def closest(
    word: str,
    vocabulary: Iterable[Tuple[str, T]],
    max_distance: int = DEFAULT_MAX_DISTANCE,
) -> List[T]:
    """
    Find the entries whose term is nearest to a word.

    Args:
        word: The word to resolve
        vocabulary: (term, value) pairs; a value listed under several terms
            counts once
        max_distance: Terms further away than this never match

    Returns:
        Values tied at the minimal distance, in vocabulary order. Empty when
        nothing is within max_distance.
    """
    best = max_distance + 1
    matches: List[T] = []

    for term, value in vocabulary:
        score = Levenshtein.distance(term, word, score_cutoff=max_distance)
        if score > max_distance or score > best:
            continue
        if score < best:
            best = score
            matches = []
        if value not in matches:
            matches.append(value)

    return matches
