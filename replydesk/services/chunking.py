"""Text normalization and chunking service.

Token counts are approximated at four characters per token, so no tokenizer
dependency is needed.
"""

from __future__ import annotations

import math
import re
import unicodedata

CHARS_PER_TOKEN = 4
DEFAULT_CHUNK_SIZE_TOKENS = 500
DEFAULT_OVERLAP_TOKENS = 50

# Fraction of the window, counted from its end, searched for a clean cut
BOUNDARY_SEARCH_FRACTION = 0.2

# Separators ordered by preference: sentence end, paragraph, line, word
_SEPARATORS = [
    ". ",
    "! ",
    "? ",
    "\n\n",
    "\n",
    " ",
]


class ChunkingError(ValueError):
    """Invalid chunking parameters."""


def normalize_text(text: str) -> str:
    """Normalize unicode and collapse every whitespace run to one space."""
    text = unicodedata.normalize("NFC", text)
    return re.sub(r"\s+", " ", text).strip()


def estimate_tokens(text: str) -> int:
    return math.ceil(len(text) / CHARS_PER_TOKEN)


def validate_chunk_params(chunk_size_tokens: int, overlap_tokens: int) -> list[str]:
    """Return a list of problems with the parameters (empty when valid)."""
    errors: list[str] = []
    if chunk_size_tokens <= 0:
        errors.append("chunk_size_tokens must be positive")
    if overlap_tokens < 0:
        errors.append("overlap_tokens must not be negative")
    if overlap_tokens >= chunk_size_tokens:
        errors.append("overlap_tokens must be smaller than chunk_size_tokens")
    return errors


def chunk_text(
    text: str,
    chunk_size_tokens: int = DEFAULT_CHUNK_SIZE_TOKENS,
    overlap_tokens: int = DEFAULT_OVERLAP_TOKENS,
) -> list[str]:
    """Split text into overlapping chunks cut at natural boundaries.

    Args:
        text: Raw document text.
        chunk_size_tokens: Target maximum tokens per chunk.
        overlap_tokens: Tokens repeated at the start of the next chunk.

    Returns:
        Non-empty chunk strings in document order.

    Raises:
        ChunkingError: If the parameters are invalid.
    """
    errors = validate_chunk_params(chunk_size_tokens, overlap_tokens)
    if errors:
        raise ChunkingError("; ".join(errors))

    text = normalize_text(text)
    if not text:
        return []

    size = chunk_size_tokens * CHARS_PER_TOKEN
    overlap = overlap_tokens * CHARS_PER_TOKEN
    if len(text) <= size:
        return [text]

    chunks: list[str] = []
    start = 0
    while start < len(text):
        end = min(start + size, len(text))
        if end < len(text):
            end = _find_break(text, start, end)

        piece = text[start:end].strip()
        if piece:
            chunks.append(piece)

        if end >= len(text):
            break

        # Always move forward, even when the overlap would swallow the cut
        next_start = end - overlap
        start = next_start if next_start > start else end

    return chunks


def _find_break(text: str, start: int, end: int) -> int:
    """Best cut position in text[start:end], searching its last 20% backwards."""
    window = text[start:end]
    search_from = len(window) - int(len(window) * BOUNDARY_SEARCH_FRACTION)
    for sep in _SEPARATORS:
        pos = window.rfind(sep, search_from)
        if pos != -1:
            return start + pos + len(sep)
    return end


def chunk_stats(
    text: str,
    chunk_size_tokens: int = DEFAULT_CHUNK_SIZE_TOKENS,
    overlap_tokens: int = DEFAULT_OVERLAP_TOKENS,
) -> dict:
    """Summarize how a text would be chunked, for diagnostics."""
    chunks = chunk_text(text, chunk_size_tokens, overlap_tokens)
    lengths = [len(c) for c in chunks]
    return {
        "total_chunks": len(chunks),
        "total_characters": sum(lengths),
        "average_length": round(sum(lengths) / len(lengths), 1) if lengths else 0.0,
        "estimated_tokens": sum(estimate_tokens(c) for c in chunks),
        "chunks": [
            {"index": i, "length": len(c), "preview": c[:100]}
            for i, c in enumerate(chunks)
        ],
    }
