"""Embedding backends and text chunking for the entry index."""

from __future__ import annotations

import hashlib
import itertools
import math
import re
import struct
from dataclasses import dataclass, field
from typing import Any, Protocol

Vector = list[float]

HASHING_MODEL_PREFIX = "hashing"
_TOKEN_PATTERN = re.compile(r"\w+", re.UNICODE)


class Embedder(Protocol):
    """Embedding backend interface."""

    model_name: str

    def embed(self, texts: list[str]) -> list[Vector]:
        """Encode texts into normalized vectors."""
        raise NotImplementedError


@dataclass(slots=True)
class HashingEmbedder:
    """Offline embedder: signed feature hashing of words and word bigrams.

    Needs no model download, so it is the default for local indexes.
    """

    model_name: str
    dimensions: int = 384

    def embed(self, texts: list[str]) -> list[Vector]:
        return [self._embed_one(text) for text in texts]

    def _embed_one(self, text: str) -> Vector:
        vector = [0.0] * self.dimensions
        words = _TOKEN_PATTERN.findall((text or "").lower())
        features = words + [f"{left} {right}" for left, right in itertools.pairwise(words)]
        for feature in features:
            digest = hashlib.blake2b(feature.encode("utf-8"), digest_size=8).digest()
            bucket = int.from_bytes(digest[:4], "little") % self.dimensions
            vector[bucket] += -1.0 if digest[4] & 1 else 1.0

        norm = math.sqrt(sum(value * value for value in vector))
        if norm == 0:
            return vector
        return [value / norm for value in vector]


@dataclass(slots=True)
class SentenceTransformerEmbedder:
    """Sentence-transformers backend; imported only when selected."""

    model_name: str
    _model: Any = field(init=False, repr=False)

    def __post_init__(self) -> None:
        from sentence_transformers import SentenceTransformer  # type: ignore

        self._model = SentenceTransformer(self.model_name)

    def embed(self, texts: list[str]) -> list[Vector]:
        # E5 models are trained with role prefixes
        if "e5" in self.model_name.lower():
            texts = [f"passage: {text}" for text in texts]
        vectors = self._model.encode(texts, normalize_embeddings=True)
        return [vector.tolist() for vector in vectors]


def build_embedder(model_name: str) -> Embedder:
    """Build the configured embedder.

    ``hashing-<dim>`` names select :class:`HashingEmbedder`; anything else is a
    sentence-transformers model and requires the ``embeddings`` extra.
    """

    if model_name.startswith(HASHING_MODEL_PREFIX):
        _, _, suffix = model_name.partition("-")
        dimensions = int(suffix) if suffix.isdigit() else 384
        return HashingEmbedder(model_name=model_name, dimensions=dimensions)
    try:
        return SentenceTransformerEmbedder(model_name=model_name)
    except (ImportError, OSError, RuntimeError, ValueError) as error:
        raise RuntimeError(
            f"Failed to initialize embedding model {model_name}. "
            "Install knowledge-inbox[embeddings] or set "
            "KNOWLEDGE_INBOX_EMBEDDING_MODEL=hashing-384.",
        ) from error


def chunk_text(text: str, *, chunk_size: int = 3_000, overlap: int = 400) -> list[str]:
    """Split text into overlapping windows, preferring whitespace boundaries."""

    if overlap >= chunk_size:
        raise ValueError("overlap must be smaller than chunk_size")
    normalized = (text or "").strip()
    if not normalized:
        return []

    chunks: list[str] = []
    start = 0
    while start < len(normalized):
        end = min(len(normalized), start + chunk_size)
        if end < len(normalized):
            boundary = normalized.rfind(" ", start + overlap + 1, end)
            if boundary > start:
                end = boundary
        chunk = normalized[start:end].strip()
        if chunk:
            chunks.append(chunk)
        if end >= len(normalized):
            break
        start = max(start + 1, end - overlap)
    return chunks


def pack_vector(vector: Vector) -> bytes:
    """Little-endian float32 blob as stored in ``entry_chunks.embedding_blob``."""

    return struct.pack(f"<{len(vector)}f", *vector)
