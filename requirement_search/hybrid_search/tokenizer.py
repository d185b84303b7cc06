from __future__ import annotations

import re
from typing import Callable, List, Optional

TokenizeFn = Callable[[str], List[str]]

_TOKEN_PATTERN = re.compile(r"[a-z0-9]+")


def tokenize(text: Optional[str]) -> List[str]:
    """Split ``text`` into lowercase alphanumeric terms longer than one character."""

    if not text or not text.strip():
        return []

    return [token for token in _TOKEN_PATTERN.findall(text.lower()) if len(token) > 1]


__all__ = ["TokenizeFn", "tokenize"]
