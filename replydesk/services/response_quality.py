"""Heuristic quality checks on generated replies."""

from __future__ import annotations

import re
from dataclasses import dataclass

from replydesk.services.prompt_builder import is_fallback_response

SENSITIVE_KEYWORDS = [
    "password",
    "credit card",
    "ssn",
    "social security",
    "bank account",
    "personal information",
    "confidential",
    "secret",
    "private",
    "financial",
    "medical",
    "health",
    "insurance",
]

LOW_CONFIDENCE_PHRASES = [
    "i don't know",
    "i'm not sure",
    "i cannot",
    "i'm sorry",
    "no information",
    "unable to",
    "not available",
]

HIGH_CONFIDENCE_INDICATORS = [
    "according to",
    "based on",
    "the information",
    "as stated",
    "our policy",
    "our service",
    "we provide",
]


@dataclass(frozen=True)
class ResponseAssessment:
    confidence: float
    sensitive: bool
    is_fallback: bool


def confidence_score(reply: str) -> float:
    """Score in [0, 1] from length, hedging phrases, specifics and punctuation."""
    text = reply.strip().lower()
    score = 0.5

    if len(text) < 10:
        score -= 0.3
    elif len(text) > 50:
        score += 0.2

    if any(phrase in text for phrase in LOW_CONFIDENCE_PHRASES):
        score -= 0.2

    score += 0.1 * sum(1 for indicator in HIGH_CONFIDENCE_INDICATORS if indicator in text)

    if re.search(r"\d", text):
        score += 0.1
    if any(ch in text for ch in ".!?"):
        score += 0.1

    return round(max(0.0, min(1.0, score)), 4)


def is_sensitive(reply: str) -> bool:
    text = reply.lower()
    return any(keyword in text for keyword in SENSITIVE_KEYWORDS)


def assess_response(reply: str) -> ResponseAssessment:
    return ResponseAssessment(
        confidence=confidence_score(reply),
        sensitive=is_sensitive(reply),
        is_fallback=is_fallback_response(reply),
    )
