"""Utility helpers for Workflow Engine."""

from .token_utils import estimate_cost, estimate_node_tokens, estimate_tokens_rough

__all__ = ["estimate_cost", "estimate_node_tokens", "estimate_tokens_rough"]
