"""Jaro-Winkler string similarity for duplicate bookmark detection.

Good for short strings such as titles. Scores are memoized per normalized
pair, and a cheap pre-filter answers obvious cases without running the full
algorithm. On its accept path the pre-filter returns the character-overlap
ratio, which approximates rather than equals the Jaro-Winkler score.
"""
from typing import Any, Dict, List, Optional, Sequence

from bookmarker.config import get_config
from bookmarker.lru import LRUCache

PREFIX_SCALE = 0.1
MAX_PREFIX = 4
DEFAULT_THRESHOLD = 0.75
CACHE_KEY_SEPARATOR = "||"


def jaro_similarity(s1: str, s2: str) -> float:
    """Jaro similarity between two strings, in [0, 1]."""
    if s1 == s2:
        return 1.0
    if not s1 or not s2:
        return 0.0

    match_window = max(len(s1), len(s2)) // 2 - 1
    s1_matches = [False] * len(s1)
    s2_matches = [False] * len(s2)

    matches = 0
    for i, char in enumerate(s1):
        start = max(0, i - match_window)
        end = min(i + match_window + 1, len(s2))
        for j in range(start, end):
            if s2_matches[j] or s2[j] != char:
                continue
            s1_matches[i] = True
            s2_matches[j] = True
            matches += 1
            break

    if matches == 0:
        return 0.0

    transpositions = 0
    k = 0
    for i, char in enumerate(s1):
        if not s1_matches[i]:
            continue
        while not s2_matches[k]:
            k += 1
        if char != s2[k]:
            transpositions += 1
        k += 1

    return (
        matches / len(s1)
        + matches / len(s2)
        + (matches - transpositions / 2) / matches
    ) / 3.0


def jaro_winkler_similarity(s1: str, s2: str, prefix_scale: float = PREFIX_SCALE) -> float:
    """Jaro similarity boosted for strings sharing a common prefix."""
    jaro_score = jaro_similarity(s1, s2)

    prefix_length = 0
    for a, b in zip(s1[:MAX_PREFIX], s2[:MAX_PREFIX]):
        if a != b:
            break
        prefix_length += 1

    return jaro_score + prefix_length * prefix_scale * (1 - jaro_score)


def fast_pre_filter(s1: str, s2: str, threshold: float = DEFAULT_THRESHOLD) -> Optional[float]:
    """Cheap estimate for clear-cut pairs.

    Returns:
        A score if the pair can be decided without Jaro-Winkler, else None
    """
    if s1 == s2:
        return 1.0

    if not s1 or not s2:
        return 0.0

    length_ratio = min(len(s1), len(s2)) / max(len(s1), len(s2))
    if length_ratio < 0.5:
        return 0.0

    chars1 = set(s1)
    chars2 = set(s2)
    char_overlap = len(chars1 & chars2) / max(len(chars1), len(chars2))

    if char_overlap < threshold * 0.6:
        return 0.0

    if char_overlap > 0.9 and length_ratio > 0.9:
        return char_overlap

    return None


def _check_str(name: str, value: Any) -> None:
    if not isinstance(value, str):
        raise TypeError(f"{name} must be a string. Received: {type(value).__name__}")


class SimilarityEngine:
    """Memoizing Jaro-Winkler scorer."""

    def __init__(self, cache_size: Optional[int] = None):
        if cache_size is None:
            cache_size = get_config().cache.similarity_cache_size
        self._cache = LRUCache(cache_size)

    @property
    def cache_size(self) -> int:
        """Number of memoized pairs."""
        return len(self._cache)

    def clear_cache(self) -> None:
        self._cache.clear()

    def calculate_similarity(
        self,
        str1: str,
        str2: str,
        case_sensitive: bool = False,
        trim: bool = True,
        threshold: float = 0.0,
    ) -> float:
        """Similarity between two strings.

        Args:
            str1: First string
            str2: Second string
            case_sensitive: Compare without case folding
            trim: Strip surrounding whitespace first
            threshold: Lets the pre-filter reject pairs that cannot reach it

        Returns:
            Score between 0 and 1

        Raises:
            TypeError: If either argument is not a string
        """
        if not isinstance(str1, str) or not isinstance(str2, str):
            raise TypeError(
                "Both arguments must be strings. "
                f"Received: str1={type(str1).__name__}, str2={type(str2).__name__}"
            )

        s1, s2 = str1, str2
        if trim:
            s1, s2 = s1.strip(), s2.strip()
        if not case_sensitive:
            s1, s2 = s1.lower(), s2.lower()

        # Jaro matching scans one side against the other, so fix the order
        if s2 < s1:
            s1, s2 = s2, s1

        cache_key = f"{s1}{CACHE_KEY_SEPARATOR}{s2}"
        cached = self._cache.get(cache_key)
        if cached is not None:
            return cached

        result = fast_pre_filter(s1, s2, threshold)
        if result is None:
            result = jaro_winkler_similarity(s1, s2)
        elif result == 0.0 and threshold > 0:
            # A rejection only holds for this threshold; keep it out of the cache
            return result

        self._cache.put(cache_key, result)
        return result

    def is_similar(
        self,
        str1: str,
        str2: str,
        threshold: float = DEFAULT_THRESHOLD,
        **options: Any,
    ) -> bool:
        """True if the two strings score at least ``threshold``."""
        options["threshold"] = threshold
        return self.calculate_similarity(str1, str2, **options) >= threshold

    def find_most_similar(
        self,
        target: str,
        candidates: Sequence[Any],
        threshold: float = DEFAULT_THRESHOLD,
        **options: Any,
    ) -> Optional[Dict[str, Any]]:
        """Best-scoring candidate above ``threshold``.

        The best score so far becomes the pre-filter threshold for the
        remaining candidates. Non-string candidates are skipped.

        Returns:
            {'value': candidate, 'score': score} or None
        """
        _check_str("Target", target)
        if not isinstance(candidates, (list, tuple)):
            raise TypeError(f"Candidates must be a list. Received: {type(candidates).__name__}")

        best_match = None
        best_score = threshold

        for candidate in candidates:
            if not isinstance(candidate, str):
                continue

            score = self.calculate_similarity(target, candidate, **{**options, "threshold": best_score})

            if score > best_score or (best_match is None and score == threshold):
                best_score = score
                best_match = {"value": candidate, "score": score}

                if score >= 0.98:
                    break

        return best_match

    def batch_similarity_check(
        self,
        target: str,
        candidates: Sequence[Any],
        threshold: float = DEFAULT_THRESHOLD,
        **options: Any,
    ) -> List[Dict[str, Any]]:
        """Candidates whose 'title' scores at least ``threshold``.

        Args:
            target: String to compare against
            candidates: Dicts with a 'title' key; others are skipped

        Returns:
            Copies of matching candidates with a 'similarity' key, best first
        """
        _check_str("Target", target)
        if not isinstance(candidates, (list, tuple)):
            raise TypeError(f"Candidates must be a list. Received: {type(candidates).__name__}")

        matches = []
        best_score = 0.0

        for candidate in candidates:
            title = candidate.get("title") if isinstance(candidate, dict) else None
            if not title or not isinstance(title, str):
                continue

            effective_threshold = max(threshold, best_score * 0.9)
            score = self.calculate_similarity(target, title, **{**options, "threshold": effective_threshold})

            if score >= threshold:
                matches.append({**candidate, "similarity": score})
                best_score = max(best_score, score)

                if score >= 0.99:
                    break

        matches.sort(key=lambda match: match["similarity"], reverse=True)
        return matches


# Global engine instance
_engine: Optional[SimilarityEngine] = None


def get_similarity_engine() -> SimilarityEngine:
    """Get or create the global similarity engine."""
    global _engine

    if _engine is None:
        _engine = SimilarityEngine()

    return _engine


def calculate_similarity(str1: str, str2: str, **options: Any) -> float:
    return get_similarity_engine().calculate_similarity(str1, str2, **options)


def is_similar(str1: str, str2: str, threshold: float = DEFAULT_THRESHOLD, **options: Any) -> bool:
    return get_similarity_engine().is_similar(str1, str2, threshold, **options)


def find_most_similar(
    target: str,
    candidates: Sequence[Any],
    threshold: float = DEFAULT_THRESHOLD,
    **options: Any,
) -> Optional[Dict[str, Any]]:
    return get_similarity_engine().find_most_similar(target, candidates, threshold, **options)


def batch_similarity_check(
    target: str,
    candidates: Sequence[Any],
    threshold: float = DEFAULT_THRESHOLD,
    **options: Any,
) -> List[Dict[str, Any]]:
    return get_similarity_engine().batch_similarity_check(target, candidates, threshold, **options)


def clear_similarity_cache() -> None:
    get_similarity_engine().clear_cache()
