from __future__ import annotations

import math
from typing import Optional

CHARS_PER_TOKEN = 4


def estimate_tokens(text: Optional[str]) -> int:
    """Approximate token count of *text* (English-text heuristic, ~4 chars/token).

    Only meant as a relative sizing signal; callers must tolerate ±30 % error.
    """
    if not text:
        return 0
    return math.ceil(len(text) / CHARS_PER_TOKEN)
