"""PostgREST / Supabase-style HTTP vector store.

Similarity search goes through server-side RPC procedures
(``POST /rest/v1/rpc/<procedure>``); keyword search, inserts and deletes
go through the chunk table endpoint.
"""

from __future__ import annotations

import json
import logging
import os
from typing import TYPE_CHECKING, Any
from urllib.error import HTTPError, URLError
from urllib.parse import quote, urlencode
from urllib.request import Request, urlopen

from policyrag.exceptions import StoreError
from policyrag.store.base import BaseVectorStore, StoreMatch

if TYPE_CHECKING:
    from collections.abc import Sequence

    from policyrag.config import PolicyRagConfig
    from policyrag.types import EmbeddedChunk, QueryFilters

__all__ = ["RestRpcStore"]

logger = logging.getLogger(__name__)

# Lowest possible cosine similarity: no cutoff.
_NO_THRESHOLD = -1.0


class RestRpcStore(BaseVectorStore):
    """Vector store reached over a PostgREST-compatible HTTP API.

    Config fields used::

        [store]
        provider = "rest"
        url = "https://<project>.supabase.co"
        api_key_env = "SUPABASE_KEY"
        primary_procedure = "match_documents"
        keyword_table = "document_chunks"
        timeout_s = 10.0
    """

    def __init__(
        self,
        url: str,
        *,
        api_key: str | None = None,
        table: str = "document_chunks",
        default_procedure: str = "match_documents",
        timeout_s: float = 10.0,
    ) -> None:
        if not url:
            raise StoreError("REST store requires a base URL ([store] url)")
        self._base_url = url.rstrip("/")
        self._api_key = api_key
        self._table = table
        self._default_procedure = default_procedure
        self._timeout_s = timeout_s

    @classmethod
    def from_config(cls, config: PolicyRagConfig) -> RestRpcStore:
        store = config.store
        api_key = os.environ.get(store.api_key_env) if store.api_key_env else None
        if store.api_key_env and not api_key:
            logger.warning("API key env var %s is not set; requests may fail", store.api_key_env)
        return cls(
            store.url,
            api_key=api_key,
            table=store.keyword_table,
            default_procedure=store.primary_procedure,
            timeout_s=store.timeout_s,
        )

    def _request(
        self,
        method: str,
        path: str,
        body: Any = None,
        *,
        prefer: str = "",
    ) -> tuple[Any, dict[str, str]]:
        """Send one request; returns the decoded JSON body (or None) and headers.

        Raises:
            StoreError: On HTTP, connection or JSON errors.
        """
        url = f"{self._base_url}/rest/v1/{path}"
        headers: dict[str, str] = {"Content-Type": "application/json"}
        if self._api_key:
            headers["apikey"] = self._api_key
            headers["Authorization"] = f"Bearer {self._api_key}"
        if prefer:
            headers["Prefer"] = prefer

        data = json.dumps(body).encode("utf-8") if body is not None else None
        req = Request(url, data=data, headers=headers, method=method)

        try:
            with urlopen(req, timeout=self._timeout_s) as resp:
                raw = resp.read()
                resp_headers = {k.lower(): v for k, v in resp.headers.items()}
            payload = json.loads(raw) if raw else None
        except json.JSONDecodeError as e:
            raise StoreError(f"Store returned invalid JSON from {url}") from e
        except HTTPError as e:
            raise StoreError(
                f"Store request {method} {path} failed (HTTP {e.code}): {e.reason}",
                status_code=e.code,
            ) from e
        except TimeoutError as e:
            raise StoreError(
                f"Store request {method} {path} timed out after {self._timeout_s}s",
                transient=True,
            ) from e
        except (ConnectionError, URLError) as e:
            raise StoreError(
                f"Store not reachable at {self._base_url}. Error: {e}", transient=True
            ) from e

        return payload, resp_headers

    @staticmethod
    def _rows(payload: Any, what: str) -> list[dict[str, Any]]:
        if payload is None:
            return []
        if not isinstance(payload, list) or not all(isinstance(r, dict) for r in payload):
            raise StoreError(f"Unexpected {what} response: expected a list of rows")
        return payload

    @staticmethod
    def _match(row: dict[str, Any], similarity: float | None = None) -> StoreMatch:
        metadata = row.get("metadata") if isinstance(row.get("metadata"), dict) else {}
        dimension = row.get("embedding_dimension")
        return StoreMatch(
            id=str(row.get("id", "")),
            text=str(row.get("chunk_text") or row.get("content") or ""),
            metadata=dict(metadata or {}),
            similarity=float(row.get("similarity", 0.0)) if similarity is None else similarity,
            dimension=int(dimension) if isinstance(dimension, int) else None,
        )

    def similarity_search(
        self,
        vector: Sequence[float],
        filters: QueryFilters | None = None,
        threshold: float | None = None,
        limit: int = 5,
        *,
        procedure: str | None = None,
    ) -> list[StoreMatch]:
        """Call the similarity RPC procedure.

        Raises:
            StoreError: On transport failure or a malformed response.
        """
        name = procedure or self._default_procedure
        body: dict[str, Any] = {
            "query_embedding": list(vector),
            "match_threshold": _NO_THRESHOLD if threshold is None else threshold,
            "match_count": limit,
        }
        if filters:
            body["filter_category"] = filters.category or None
            body["filter_source"] = filters.source or None

        payload, _ = self._request("POST", f"rpc/{quote(name)}", body)
        matches = [self._match(row) for row in self._rows(payload, f"rpc/{name}")]
        matches.sort(key=lambda m: m.similarity, reverse=True)
        logger.debug("rpc/%s returned %d matches", name, len(matches))
        return matches

    def keyword_search(
        self,
        term: str,
        limit: int = 5,
        filters: QueryFilters | None = None,
    ) -> list[StoreMatch]:
        """Case-insensitive substring search over chunk text.

        Raises:
            StoreError: On transport failure or a malformed response.
        """
        if not term or limit < 1:
            return []
        params = [
            ("select", "id,chunk_text,metadata"),
            ("chunk_text", f"ilike.*{term}*"),
            ("limit", str(limit)),
        ]
        if filters and filters.category:
            params.append(("metadata->>category", f"eq.{filters.category}"))
        if filters and filters.source:
            params.append(("metadata->>sourceUrl", f"eq.{filters.source}"))

        payload, _ = self._request("GET", f"{self._table}?{urlencode(params)}")
        return [self._match(row, 0.0) for row in self._rows(payload, self._table)]

    def add(self, chunks: Sequence[EmbeddedChunk]) -> int:
        """Upsert chunk rows, keyed by ``(document_id, chunk_index)``.

        Raises:
            StoreError: If the insert fails.
        """
        if not chunks:
            return 0
        rows = []
        for item in chunks:
            record = item.chunk.to_record()
            rows.append(
                {
                    "document_id": record["documentId"],
                    "insurer_id": record["insurerId"],
                    "chunk_text": record["chunkText"],
                    "chunk_index": record["chunkIndex"],
                    "token_count": record["tokenCount"],
                    "metadata": record["metadata"],
                    "embedding": list(item.embedding),
                }
            )
        self._request(
            "POST",
            f"{self._table}?on_conflict=document_id,chunk_index",
            rows,
            prefer="resolution=merge-duplicates,return=minimal",
        )
        logger.info("Upserted %d chunks into %s", len(rows), self._table)
        return len(rows)

    def prune(self, document_id: str, keep: int) -> int:
        """Delete a document's rows with ``chunk_index >= keep``.

        Raises:
            StoreError: If the delete fails.
        """
        query = urlencode([("document_id", f"eq.{document_id}"), ("chunk_index", f"gte.{keep}")])
        payload, _ = self._request(
            "DELETE", f"{self._table}?{query}", prefer="return=representation"
        )
        count = len(self._rows(payload, self._table))
        if count:
            logger.info("Pruned %d stale chunks for document_id=%s", count, document_id)
        return count

    def delete(self, document_id: str) -> int:
        """Delete all chunk rows of a document.

        Raises:
            StoreError: If the delete fails.
        """
        query = urlencode([("document_id", f"eq.{document_id}")])
        payload, _ = self._request(
            "DELETE", f"{self._table}?{query}", prefer="return=representation"
        )
        count = len(self._rows(payload, self._table))
        logger.info("Deleted %d chunks for document_id=%s", count, document_id)
        return count

    def count(self) -> int:
        """Return the row count reported in the ``Content-Range`` header."""
        _, headers = self._request(
            "HEAD", f"{self._table}?select=id", prefer="count=exact"
        )
        content_range = headers.get("content-range", "")
        total = content_range.rpartition("/")[2]
        if not total.isdigit():
            raise StoreError(
                f"Store did not report a row count (Content-Range: {content_range!r})"
            )
        return int(total)
