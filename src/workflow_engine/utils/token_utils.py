"""
Shared token and cost estimation heuristics.

The simulator never calls a model; these approximations turn prompt text
into token and cost estimates so every component agrees on the numbers.
"""

from __future__ import annotations

import math

CHARS_PER_TOKEN = 4
# Tokens assumed for a model response on top of the prompt.
RESPONSE_TOKEN_ALLOWANCE = 500
# Prompt length assumed for nodes whose template is still empty.
DEFAULT_PROMPT_CHARS = 1000


def estimate_tokens_rough(text: str) -> int:
    """Approximate token count using a simple chars-per-token heuristic."""
    if not text:
        return 0
    return max(1, len(text) // CHARS_PER_TOKEN)


def estimate_node_tokens(prompt_template: str) -> int:
    """Prompt plus response tokens for one agent invocation."""
    chars = len(prompt_template) if prompt_template else DEFAULT_PROMPT_CHARS
    return math.ceil(chars / CHARS_PER_TOKEN) + RESPONSE_TOKEN_ALLOWANCE


def estimate_cost(tokens: int, cost_per_token: float) -> float:
    return tokens * cost_per_token


__all__ = [
    "CHARS_PER_TOKEN",
    "DEFAULT_PROMPT_CHARS",
    "RESPONSE_TOKEN_ALLOWANCE",
    "estimate_cost",
    "estimate_node_tokens",
    "estimate_tokens_rough",
]
