"""Keyword relevance scoring for un-embedded transcript text."""

MIN_QUERY_TOKEN_LENGTH = 3
MULTI_MATCH_BONUS = 0.5
TOKENS_PER_NORMALIZATION_UNIT = 50


def score_relevance(text: str, query: str) -> float:
    """Score how well a text matches a query, in [0, 1].

    Each query token of at least three characters earns one point when some
    text token contains it or is contained in it. Matching more than one
    query token adds a bonus of half a point per match. The total is divided
    by the text length in units of 50 tokens (at least 1) and clipped.

    Args:
        text: Candidate text.
        query: User query.

    Returns:
        Relevance score between 0 and 1.
    """
    text_tokens = text.lower().split()
    if not text_tokens:
        return 0.0

    score = 0.0
    matched = 0
    for query_token in query.lower().split():
        if len(query_token) < MIN_QUERY_TOKEN_LENGTH:
            continue
        if any(query_token in token or token in query_token for token in text_tokens):
            score += 1
            matched += 1

    if matched > 1:
        score += matched * MULTI_MATCH_BONUS

    normalizer = max(len(text_tokens) / TOKENS_PER_NORMALIZATION_UNIT, 1)
    return min(max(score / normalizer, 0.0), 1.0)
