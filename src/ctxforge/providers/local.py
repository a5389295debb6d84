"""Local, dependency-light embedding provider.

Bag-of-words with the hashing trick: fast, deterministic and good enough
to drive the CLI without a model download. For production, you'd want
sentence-transformers or a hosted embedding API behind EmbeddingProvider.
"""

from __future__ import annotations

import hashlib
import re

import numpy as np

from ctxforge.providers.base import EmbeddingProvider


class HashingEmbeddingProvider(EmbeddingProvider):
    def __init__(self, dimensions: int = 384) -> None:
        super().__init__(dimensions)

    async def embed(self, text: str) -> list[float]:
        return self.embed_sync(text)

    def embed_sync(self, text: str) -> list[float]:
        vec = np.zeros(self.dimensions)
        for token in _tokenize(text):
            digest = hashlib.md5(token.encode("utf-8")).digest()
            vec[int.from_bytes(digest[:4], "little") % self.dimensions] += 1.0
        norm = np.linalg.norm(vec)
        if norm > 0:
            vec /= norm
        return vec.tolist()


def _tokenize(text: str) -> list[str]:
    """Simple tokenizer that splits on non-alphanumeric and camelCase."""
    # Split camelCase and snake_case
    text = re.sub(r"([a-z])([A-Z])", r"\1 \2", text)
    text = text.replace("_", " ").replace(".", " ")
    return re.findall(r"[a-zA-Z]{2,}", text.lower())
