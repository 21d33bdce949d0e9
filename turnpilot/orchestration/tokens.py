from __future__ import annotations

import math

DEFAULT_CHARS_PER_TOKEN = 4


def estimate_tokens(text: str | None, *, chars_per_token: int = DEFAULT_CHARS_PER_TOKEN) -> int:
    """Rough token count from character length."""
    if not text:
        return 0
    return math.ceil(len(text) / max(1, chars_per_token))
