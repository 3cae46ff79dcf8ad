"""Prompt assembly — answer only from the supplied knowledge."""

from __future__ import annotations

FALLBACK_RESPONSE = "I'll connect you with a human agent."

SYSTEM_INSTRUCTION = (
    "You are a customer support agent. Answer ONLY using the provided knowledge "
    f'context. If the answer is not in the context, say exactly: "{FALLBACK_RESPONSE}" '
    "Be helpful, accurate, and concise."
)

COMPACT_INSTRUCTION = (
    "Act as customer support agent. Answer ONLY using provided knowledge. "
    f'If unknown, say: "{FALLBACK_RESPONSE}"'
)


def build_prompt(user_message: str, knowledge: list[str]) -> str:
    """System instruction, numbered knowledge snippets, then the user message.

    Snippets are included verbatim in the order given.
    """
    if knowledge:
        lines = [f"{i}. {snippet}" for i, snippet in enumerate(knowledge, start=1)]
        knowledge_section = "Knowledge Context:\n" + "\n".join(lines)
    else:
        knowledge_section = "Knowledge Context: No relevant information available."

    return "\n\n".join([
        SYSTEM_INSTRUCTION,
        knowledge_section,
        f"User: {user_message.strip()}",
    ])


def build_compact_prompt(user_message: str, knowledge: list[str]) -> str:
    """Shorter variant of ``build_prompt`` for token-constrained models."""
    if knowledge:
        knowledge_section = "Knowledge: " + " | ".join(knowledge)
    else:
        knowledge_section = "Knowledge: None available."

    return "\n\n".join([
        COMPACT_INSTRUCTION,
        knowledge_section,
        f"User: {user_message.strip()}",
    ])


def is_fallback_response(reply: str) -> bool:
    """True when the model answered with the human-handoff sentence."""
    return FALLBACK_RESPONSE.lower().rstrip(".") in reply.strip().lower()
