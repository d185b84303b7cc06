import sys
from pathlib import Path
from typing import Any, Callable, Sequence

import pytest

# Ensure repository root is on the import path for local package imports during tests.
ROOT = Path(__file__).resolve().parents[1]
if str(ROOT) not in sys.path:
    sys.path.insert(0, str(ROOT))

from requirement_search.models import Requirement  # noqa: E402


@pytest.fixture
def make_requirement() -> Callable[..., Requirement]:
    def _make(ref: str, text: str, **fields: Any) -> Requirement:
        payload = {
            "client_reference_id": ref,
            "normalized_text": text,
            "raw_text": text,
        }
        payload.update(fields)
        return Requirement.model_validate(payload)

    return _make


class StaticEmbedder:
    """Embedder stub mapping substrings of the text to fixed vectors."""

    def __init__(self, mapping: dict[str, Sequence[float]], default: Sequence[float]):
        self.mapping = mapping
        self.default = default
        self.batches: list[list[str]] = []

    def _lookup(self, text: str) -> list[float]:
        for key, vector in self.mapping.items():
            if key in text:
                return list(vector)
        return list(self.default)

    def embed_batch(self, texts: Sequence[str]) -> list[list[float]]:
        batch = list(texts)
        self.batches.append(batch)
        return [self._lookup(text) for text in batch]

    def embed(self, text: str) -> list[float]:
        return self._lookup(text)


@pytest.fixture
def static_embedder() -> Callable[..., StaticEmbedder]:
    return StaticEmbedder
