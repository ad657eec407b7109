"""Token estimation heuristics shared by the context builder and processors."""

from __future__ import annotations

import json
import math
from typing import Any

CHARS_PER_TOKEN = 4


def estimate_tokens(text: str) -> int:
    """Estimate token count from text. Rough heuristic: chars / 4, rounded up."""
    if not text:
        return 0
    return math.ceil(len(text) / CHARS_PER_TOKEN)


def compact_json(value: Any) -> str:
    """Serialize *value* without whitespace, keeping non-ASCII characters as-is."""
    return json.dumps(value, separators=(",", ":"), ensure_ascii=False)
