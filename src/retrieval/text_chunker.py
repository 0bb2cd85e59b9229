"""Sentence-based splitting of long text into overlapping chunks."""

import re

_SENTENCE_BOUNDARY = re.compile(r"[.!?]+")


class TextChunker:
    """Splits text on sentence boundaries into chunks of bounded length.

    Each new chunk begins with the last ``overlap`` characters of the
    previous one, so context carries across chunk boundaries.

    Args:
        chunk_size: Target maximum chunk length in characters.
        overlap: Characters carried over from the previous chunk.
    """

    def __init__(self, chunk_size: int = 500, overlap: int = 50):
        if chunk_size <= 0:
            raise ValueError("chunk_size must be positive")
        if overlap < 0:
            raise ValueError("overlap must not be negative")
        self.chunk_size = chunk_size
        self.overlap = overlap

    def split(self, text: str) -> list[str]:
        sentences = [
            sentence.strip() + "."
            for sentence in _SENTENCE_BOUNDARY.split(text)
            if sentence.strip()
        ]

        chunks: list[str] = []
        current = ""
        for sentence in sentences:
            if len(current) + len(sentence) > self.chunk_size:
                if current.strip():
                    chunks.append(current.strip())
                carry = current[-self.overlap :] if self.overlap else ""
                current = f"{carry} {sentence}"
            else:
                current = f"{current} {sentence}"

        if current.strip():
            chunks.append(current.strip())
        return chunks
