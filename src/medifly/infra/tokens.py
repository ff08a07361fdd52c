"""Lightweight token estimation and truncation.

Providers bill by tokens we cannot count locally, so estimates use a
chars-per-token ratio.  Usage metering pads the estimate by 10% so the
dashboard errs on the side of over-reporting spend.
"""

import math

CHARS_PER_TOKEN = 4
"""Average for English text with OpenAI tokenizers."""

USAGE_ESTIMATE_PADDING = 1.1


def estimate_tokens(text: str) -> int:
    """Return ``ceil(len(text) / 4)``, the raw estimate used for cost checks."""
    return math.ceil(len(text) / CHARS_PER_TOKEN)


def estimate_usage_tokens(text: str) -> int:
    """Return the padded estimate recorded for metered usage."""
    return math.ceil(estimate_tokens(text) * USAGE_ESTIMATE_PADDING)


def truncate_at_word(text: str, max_chars: int) -> str:
    """Cut *text* to at most *max_chars*, backing up to the last space.

    Falls back to a hard cut when the text has no space in range.
    """
    if len(text) <= max_chars:
        return text
    cut = text[:max_chars]
    space = cut.rfind(" ")
    if space > 0:
        cut = cut[:space]
    return cut.rstrip()
