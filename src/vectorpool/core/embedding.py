"""Vector packing helpers and the default LiteLLM embedder."""

from __future__ import annotations

import logging
import struct
import time
from typing import Any, Sequence

import litellm
import numpy as np

logger = logging.getLogger(__name__)


def embedding_to_bytes(embedding: Sequence[float]) -> bytes:
    """Convert embedding vector to bytes for database storage."""
    return np.array(embedding, dtype=np.float32).tobytes()


def bytes_to_embedding(embedding_bytes: bytes) -> list[float]:
    """Convert stored bytes back to embedding vector."""
    return list(struct.unpack(f"{len(embedding_bytes)//4}f", embedding_bytes))


def cosine_similarity(query: Sequence[float], matrix: np.ndarray) -> np.ndarray:
    """Cosine similarity of `query` against every row of `matrix`.

    Zero-norm rows score 0.0.
    """
    q = np.asarray(query, dtype=np.float32)
    if matrix.size == 0:
        return np.zeros(0, dtype=np.float32)
    norms = np.linalg.norm(matrix, axis=1) * np.linalg.norm(q)
    dots = matrix @ q
    with np.errstate(divide="ignore", invalid="ignore"):
        scores = np.where(norms > 0, dots / norms, 0.0)
    return scores


def _extract_usage_tokens(response: Any) -> int:
    usage = getattr(response, "usage", None)
    if isinstance(usage, dict):
        return int(usage.get("prompt_tokens") or usage.get("total_tokens") or 0)
    if usage is not None:
        return int(getattr(usage, "prompt_tokens", None) or getattr(usage, "total_tokens", 0) or 0)
    return 0


def generate_embeddings(
    texts: list[str],
    model: str,
    api_base: str | None = None,
    api_key: str | None = None,
) -> list[list[float]]:
    """
    Generate embeddings for a list of texts using LiteLLM.

    Args:
        texts: List of text strings to embed
        model: LiteLLM model name (e.g. "openai/text-embedding-3-small")
        api_base: API base URL for OpenAI-compatible servers (optional)
        api_key: API key (optional)

    Returns:
        List of embedding vectors, in input order
    """
    if not texts:
        return []

    start = time.time()

    kwargs: dict[str, Any] = {"model": model, "input": texts}
    if api_base:
        kwargs["api_base"] = api_base
    if api_key:
        kwargs["api_key"] = api_key

    response = litellm.embedding(**kwargs)
    duration_ms = int((time.time() - start) * 1000)

    result = [item["embedding"] for item in response.data]
    logger.debug(
        f"Generated {len(texts)} embeddings in {duration_ms}ms "
        f"(model={model}, tokens={_extract_usage_tokens(response)})"
    )
    return result


class LiteLLMEmbedder:
    """Realtime embed functions for a knowledge pool backed by LiteLLM.

    Example:
        embedder = LiteLLMEmbedder(model="openai/text-embedding-3-small")
        pool = KnowledgePool(..., embed_docs=embedder.embed_docs, embed_query=embedder.embed_query)
    """

    def __init__(
        self,
        model: str,
        *,
        api_base: str | None = None,
        api_key: str | None = None,
        max_chars: int | None = None,
    ):
        self.model = model
        self.api_base = api_base
        self.api_key = api_key
        self.max_chars = max_chars

    def _prepare(self, text: str) -> str:
        if self.max_chars and len(text) > self.max_chars:
            return text[: self.max_chars]
        return text

    def embed_docs(self, texts: list[str]) -> list[list[float]]:
        return generate_embeddings(
            [self._prepare(t) for t in texts],
            model=self.model,
            api_base=self.api_base,
            api_key=self.api_key,
        )

    def embed_query(self, text: str) -> list[float]:
        return self.embed_docs([text])[0]
