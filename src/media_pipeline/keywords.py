"""Keyword extraction for transcribed media."""

from collections.abc import Iterable


def extract_keywords(transcript: str, vocabulary: Iterable[str]) -> list[str]:
    """Return the vocabulary terms that occur in the transcript.

    A term matches when any whitespace-separated transcript word contains it
    (so "grazing" matches "overgrazing"). Results keep vocabulary order and
    contain no duplicates.

    Args:
        transcript: Transcript text.
        vocabulary: Candidate keywords.

    Returns:
        Matched keywords.
    """
    words = transcript.lower().split()
    found: list[str] = []
    for keyword in vocabulary:
        term = keyword.lower()
        if term in found:
            continue
        if any(term in word for word in words):
            found.append(term)
    return found
