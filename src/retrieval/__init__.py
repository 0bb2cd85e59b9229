"""Hybrid retrieval for the farming assistant.

Blends vector search over an embedded text corpus with keyword relevance
scoring over raw media transcripts, and selects a source-diverse top-K.
"""
