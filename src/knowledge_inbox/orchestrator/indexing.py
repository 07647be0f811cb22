"""Chunk and embed finished entries into the entry index."""

from __future__ import annotations

import logging

from knowledge_inbox.capabilities.embedder import Embedder, chunk_text, pack_vector
from knowledge_inbox.entries.models import EntryChunkWrite, EntryType, EntryView
from knowledge_inbox.entries.repository import EntryRepository

logger = logging.getLogger(__name__)

_TEXT_FIELDS: dict[EntryType, str] = {
    EntryType.ARTICLE: "content",
    EntryType.COMPANY: "description",
    EntryType.NOTE: "text",
}


class EntryIndexer:
    """Replace the stored chunks of an entry with fresh embeddings."""

    def __init__(
        self,
        *,
        repository: EntryRepository,
        embedder: Embedder,
        chunk_size: int = 3_000,
        chunk_overlap: int = 400,
    ) -> None:
        self.repository = repository
        self.embedder = embedder
        self.chunk_size = chunk_size
        self.chunk_overlap = chunk_overlap

    def index_entry(self, entry: EntryView) -> int:
        if entry.processing_failed:
            return 0
        text = entry.metadata.get(_TEXT_FIELDS.get(entry.entry_type, ""))
        if not isinstance(text, str) or not text.strip():
            logger.debug("Entry %s has no indexable text", entry.entry_id)
            return 0

        chunks = chunk_text(text, chunk_size=self.chunk_size, overlap=self.chunk_overlap)
        vectors = self.embedder.embed(chunks)
        stored = self.repository.replace_chunks(
            entry.entry_id,
            [
                EntryChunkWrite(
                    chunk_order=order,
                    chunk_text=chunk,
                    model_name=self.embedder.model_name,
                    embedding_dim=len(vector),
                    embedding_blob=pack_vector(vector),
                )
                for order, (chunk, vector) in enumerate(zip(chunks, vectors, strict=True))
            ],
        )
        logger.info("Indexed entry %s into %d chunks", entry.entry_id, stored)
        return stored
