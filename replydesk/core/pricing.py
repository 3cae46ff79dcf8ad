"""Centralized model pricing configuration.

Single source of truth for LLM token costs (USD per 1M tokens), used when
usage log entries are written.
"""

# Maps model identifiers to (prompt_cost, completion_cost) per 1M tokens.
# Unknown models fall back to a conservative estimate.
MODEL_PRICING: dict[str, tuple[float, float]] = {
    # Chat models
    "gpt-4o":              (2.50,  10.00),
    "gpt-4o-mini":         (0.15,   0.60),
    "gpt-4-turbo":         (10.00,  30.00),
    "gpt-3.5-turbo":       (0.50,   1.50),
    "o3-mini":             (1.10,   4.40),
    # Embedding models (input only)
    "text-embedding-3-small":  (0.02,   0.00),
    "text-embedding-3-large":  (0.13,   0.00),
    "text-embedding-ada-002":  (0.10,   0.00),
}

DEFAULT_PRICING: tuple[float, float] = (1.00, 3.00)


def get_pricing(model: str) -> tuple[float, float]:
    """Return (prompt_per_1M, completion_per_1M) for a model."""
    return MODEL_PRICING.get(model, DEFAULT_PRICING)


def calc_cost(model: str, prompt_tokens: int, completion_tokens: int) -> float:
    """Calculate USD cost for a given model and token counts."""
    prompt_rate, completion_rate = get_pricing(model)
    return (prompt_tokens * prompt_rate + completion_tokens * completion_rate) / 1_000_000
