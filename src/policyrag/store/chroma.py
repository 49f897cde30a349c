"""ChromaDB vector store using PersistentClient.

Stores embedded chunks with flattened metadata in a cosine-space collection.
Uses file-based persistence; no server required.
"""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING, Any

import chromadb

from policyrag.exceptions import StoreError
from policyrag.store.base import BaseVectorStore, StoreMatch

if TYPE_CHECKING:
    from collections.abc import Mapping, Sequence
    from pathlib import Path

    from policyrag.types import EmbeddedChunk, QueryFilters

__all__ = ["ChromaStore"]

logger = logging.getLogger(__name__)

# Query filter name → stored metadata key.
_FILTER_KEYS = {"category": "category", "source": "source_url"}


def _where(filters: QueryFilters | None) -> dict[str, Any] | None:
    """Translate QueryFilters into a ChromaDB ``where`` clause."""
    if not filters:
        return None
    clauses = [{_FILTER_KEYS[k]: v} for k, v in filters.as_dict().items()]
    if len(clauses) == 1:
        return clauses[0]
    return {"$and": clauses}


def _flatten_metadata(item: EmbeddedChunk) -> dict[str, str | int | float | bool]:
    """ChromaDB metadata values must be scalars and never None."""
    chunk = item.chunk
    meta = chunk.metadata
    flat: dict[str, str | int | float | bool] = {
        "document_id": chunk.document_id,
        "insurer_id": chunk.insurer_id,
        "chunk_index": chunk.index,
        "token_count": chunk.token_count,
        "title": meta.title,
        "category": meta.category,
        "source_url": meta.source_url,
        "page": meta.page,
        "section": meta.section,
        "document_type": meta.document_type,
    }
    for key, value in meta.extra:
        if isinstance(value, str | int | float | bool) and key not in flat:
            flat[key] = value
    return flat


class ChromaStore(BaseVectorStore):
    """Vector store backed by ChromaDB with file-based persistence.

    Uses ``chromadb.PersistentClient`` so no external server is needed.
    All data lives in the ``persist_path`` directory. A single local
    index serves every search procedure, so ``procedure`` is ignored.

    Usage::

        store = ChromaStore(persist_path=Path(".policyrag/index"))
        store.add(embedded_chunks)
        matches = store.similarity_search(vector, QueryFilters(category="kfz"), 0.7, 5)
    """

    def __init__(self, persist_path: Path, collection_name: str = "policyrag") -> None:
        self._persist_path = persist_path
        self._collection_name = collection_name

        try:
            self._client = chromadb.PersistentClient(path=str(persist_path))
            self._collection = self._client.get_or_create_collection(
                name=collection_name,
                metadata={"hnsw:space": "cosine"},
            )
        except Exception as e:
            raise StoreError(f"Failed to initialize ChromaDB at {persist_path}: {e}") from e

        logger.info(
            "ChromaDB store initialized at %s (collection=%s)", persist_path, collection_name
        )

    def add(self, chunks: Sequence[EmbeddedChunk]) -> int:
        """Add embedded chunks to ChromaDB, replacing chunks with the same id.

        Raises:
            StoreError: If storage fails.
        """
        if not chunks:
            return 0

        try:
            self._collection.upsert(
                ids=[c.chunk.chunk_id for c in chunks],
                embeddings=[list(c.embedding) for c in chunks],  # type: ignore[arg-type]
                documents=[c.chunk.text for c in chunks],
                metadatas=[_flatten_metadata(c) for c in chunks],  # type: ignore[arg-type]
            )
        except Exception as e:
            raise StoreError(f"Failed to add {len(chunks)} chunks: {e}") from e

        logger.info("Added %d chunks to %s", len(chunks), self._collection_name)
        return len(chunks)

    def similarity_search(
        self,
        vector: Sequence[float],
        filters: QueryFilters | None = None,
        threshold: float | None = None,
        limit: int = 5,
        *,
        procedure: str | None = None,
    ) -> list[StoreMatch]:
        """Search for similar chunks by embedding.

        Similarity is ``1 - cosine distance``; matches below *threshold*
        are dropped after the query.

        Raises:
            StoreError: If search fails.
        """
        total = self.count()
        if total == 0 or limit < 1:
            return []

        where = _where(filters)
        # Clamp to collection size (ChromaDB raises if n_results > total count).
        actual_k = min(limit, total)

        try:
            results = self._query(vector, actual_k, where)
        except Exception as e:
            err_name = type(e).__name__
            if where is not None and "NotEnough" in err_name:
                # Some ChromaDB versions raise when n_results exceeds the
                # number of filtered matches; re-query with the filtered count.
                logger.debug("Filtered search (k=%d) failed, retrying: %s", actual_k, e)
                try:
                    matching = self._collection.get(
                        where=where,  # type: ignore[arg-type]
                        include=[],
                    )
                    match_count = len(matching["ids"])
                    if match_count == 0:
                        return []
                    results = self._query(vector, min(actual_k, match_count), where)
                except Exception as retry_err:
                    raise StoreError(f"Search failed: {retry_err}") from retry_err
            else:
                raise StoreError(f"Search failed: {e}") from e

        # Batched results; one query embedding
        raw_ids = results.get("ids")
        raw_docs = results.get("documents")
        raw_metas = results.get("metadatas")
        raw_dists = results.get("distances")

        if not raw_ids or not raw_docs or not raw_metas or not raw_dists:
            return []

        matches: list[StoreMatch] = []
        for chunk_id, doc, meta, dist in zip(
            raw_ids[0], raw_docs[0], raw_metas[0], raw_dists[0], strict=True
        ):
            similarity = 1.0 - float(dist)
            if threshold is not None and similarity < threshold:
                continue
            matches.append(
                StoreMatch(
                    id=chunk_id,
                    text=doc or "",
                    metadata=self._metadata(meta),
                    similarity=similarity,
                    dimension=len(vector),
                )
            )

        matches.sort(key=lambda m: m.similarity, reverse=True)
        return matches

    def _query(self, vector: Sequence[float], k: int, where: dict[str, Any] | None) -> Any:
        return self._collection.query(
            query_embeddings=[list(vector)],  # type: ignore[arg-type]
            n_results=k,
            where=where,  # type: ignore[arg-type]
            include=["documents", "metadatas", "distances"],
        )

    def keyword_search(
        self,
        term: str,
        limit: int = 5,
        filters: QueryFilters | None = None,
    ) -> list[StoreMatch]:
        """Return up to *limit* chunks whose text contains *term*.

        Raises:
            StoreError: If the query fails.
        """
        if not term or limit < 1:
            return []

        try:
            results = self._collection.get(
                where=_where(filters),  # type: ignore[arg-type]
                where_document={"$contains": term},
                limit=limit,
                include=["documents", "metadatas"],
            )
        except Exception as e:
            raise StoreError(f"Keyword search for {term!r} failed: {e}") from e

        ids = results.get("ids", [])
        documents = results.get("documents")
        metadatas = results.get("metadatas")

        return [
            StoreMatch(id=chunk_id, text=doc or "", metadata=self._metadata(meta))
            for chunk_id, doc, meta in zip(ids, documents or [], metadatas or [], strict=True)
        ]

    def delete(self, document_id: str) -> int:
        """Delete all chunks for a document.

        Raises:
            StoreError: If deletion fails.
        """
        try:
            existing = self._collection.get(
                where={"document_id": document_id},
                include=[],
            )
            count = len(existing["ids"])

            if count == 0:
                return 0

            self._collection.delete(where={"document_id": document_id})
        except Exception as e:
            raise StoreError(f"Failed to delete chunks for {document_id}: {e}") from e

        logger.info("Deleted %d chunks for document_id=%s", count, document_id)
        return count

    def prune(self, document_id: str, keep: int) -> int:
        """Delete chunks of *document_id* with ``chunk_index >= keep``.

        Raises:
            StoreError: If deletion fails.
        """
        where = {"$and": [{"document_id": document_id}, {"chunk_index": {"$gte": keep}}]}
        try:
            stale = self._collection.get(where=where, include=[])  # type: ignore[arg-type]
            ids = list(stale["ids"])
            if not ids:
                return 0
            self._collection.delete(ids=ids)
        except Exception as e:
            raise StoreError(f"Failed to prune chunks for {document_id}: {e}") from e

        logger.info("Pruned %d stale chunks for document_id=%s", len(ids), document_id)
        return len(ids)

    def count(self) -> int:
        """Return the total number of chunks in the store."""
        try:
            return self._collection.count()
        except Exception as e:
            raise StoreError(f"Failed to count chunks: {e}") from e

    @staticmethod
    def _metadata(meta: Mapping[str, object] | None) -> dict[str, Any]:
        """Copy stored metadata, dropping empty placeholder values."""
        if not meta:
            return {}
        return {k: v for k, v in meta.items() if v not in ("", None)}
