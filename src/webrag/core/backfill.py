"""Backfill pipeline: ingested pages -> documents -> passages -> embeddings.

Everything a call writes shares one transaction. If any step fails, including
an embedding batch after earlier batches succeeded, the whole call rolls back
and the selected pages stay unprocessed for the next run.
"""

import time
import logging
from typing import Dict, List, Optional, Tuple

import psycopg
from pydantic import BaseModel

from .chunk import chunk_runes
from .embed import EmbeddingClient
from .errors import (
    InvalidInput,
    ResponseMismatch,
    StorageFailure,
    WebragError,
    pipeline_step,
)
from .logging_config import (
    get_audit_logger,
    log_backfill_event,
    log_backfill_failure,
    log_embedding_batch,
)
from .store import PassageStore

logger = logging.getLogger(__name__)

DEFAULT_PAGE_BATCH = 10
MAX_PAGE_BATCH = 1000
PASSAGE_MAX_LEN = 1500
EMBED_BATCH_SIZE = 64


class BackfillSummary(BaseModel):
    """Counters for one backfill call."""
    pages_seen: int = 0
    docs_created: int = 0
    chunks_made: int = 0
    embedded: int = 0
    marked_done: int = 0


def normalize_page_batch(n) -> int:
    """Pages per call; out-of-range values fall back to the default."""
    if isinstance(n, bool) or not isinstance(n, int):
        raise InvalidInput(f"batch size must be an integer, got {n!r}")
    if n < 1 or n > MAX_PAGE_BATCH:
        return DEFAULT_PAGE_BATCH
    return n


def backfill(
    store: PassageStore,
    embedder: EmbeddingClient,
    n: int = DEFAULT_PAGE_BATCH,
    claim_pages: bool = False,
    embed_batch_size: int = EMBED_BATCH_SIZE,
) -> BackfillSummary:
    """
    Drain up to ``n`` unprocessed pages into embedded passages.

    Args:
        store: Store bound to an open connection
        embedder: Embedding provider client
        n: Pages to take, 1-1000 (anything else means 10)
        claim_pages: Lock selected rows and skip rows held by a concurrent run
        embed_batch_size: Passages per embedding request

    Returns:
        BackfillSummary for the committed run
    """
    n = normalize_page_batch(n)
    audit_logger = get_audit_logger("backfill")
    start_time = time.time()

    summary = BackfillSummary()
    try:
        try:
            with store.transaction():
                _run(store, embedder, n, claim_pages, embed_batch_size, summary)
        except psycopg.Error as e:
            # Errors from inside the block are already wrapped; this is COMMIT
            raise StorageFailure(str(e).strip() or type(e).__name__, step="commit") from e
    except WebragError as e:
        log_backfill_failure(
            audit_logger,
            requested=n,
            step=e.step,
            error=e.message,
            execution_time_ms=(time.time() - start_time) * 1000,
        )
        raise

    log_backfill_event(
        audit_logger,
        requested=n,
        summary=summary.model_dump(),
        execution_time_ms=(time.time() - start_time) * 1000,
        claim_pages=claim_pages,
    )
    logger.info(
        f"Backfill committed: {summary.pages_seen} pages, {summary.docs_created} new documents, "
        f"{summary.chunks_made} passages, {summary.embedded} embedded"
    )
    return summary


def _run(
    store: PassageStore,
    embedder: EmbeddingClient,
    n: int,
    claim_pages: bool,
    embed_batch_size: int,
    summary: BackfillSummary,
) -> None:
    with pipeline_step("selection"):
        pages = store.select_unprocessed(n, claim=claim_pages)

    summary.pages_seen = len(pages)
    if not pages:
        logger.info("No unprocessed pages to backfill")
        return

    pending: List[Tuple[int, str]] = []
    # url -> (document_id, company_id) for documents upserted by this call
    upserted: Dict[str, Tuple[int, Optional[int]]] = {}

    for page in pages:
        document_id = page.document_id
        document_text = page.body_text
        company_id = None

        if document_id is None and page.url in upserted:
            # an older copy of a URL already taken this run; keep the newer text
            document_id, company_id = upserted[page.url]
            with pipeline_step("document_upsert"):
                store.link_page(page.id, document_id)
        elif document_id is None:
            with pipeline_step("document_upsert"):
                document_id, company_id, inserted = store.upsert_document(page.url, page.body_text)
                store.link_page(page.id, document_id)
            upserted[page.url] = (document_id, company_id)
            if inserted:
                summary.docs_created += 1

        with pipeline_step("passage_check"):
            if store.has_passages(document_id):
                logger.debug(f"Document {document_id} already has passages, skipping page {page.id}")
                continue

        if page.document_id is not None:
            with pipeline_step("document_lookup"):
                document = store.get_document(document_id)
            if document is None:
                raise StorageFailure(
                    f"page {page.id} links to missing document {document_id}",
                    step="document_lookup",
                )
            document_text, company_id = document

        chunks = chunk_runes(document_text, PASSAGE_MAX_LEN)
        with pipeline_step("passage_insert"):
            for chunk in chunks:
                passage_id = store.insert_passage(document_id, company_id, chunk)
                pending.append((passage_id, chunk))
        summary.chunks_made += len(chunks)

    _embed_pending(store, embedder, pending, embed_batch_size, summary)

    with pipeline_step("mark_processed"):
        summary.marked_done = store.mark_processed([page.id for page in pages])


def _embed_pending(
    store: PassageStore,
    embedder: EmbeddingClient,
    pending: List[Tuple[int, str]],
    batch_size: int,
    summary: BackfillSummary,
) -> None:
    """Embed queued passages in sequential batches and write the vectors back."""
    audit_logger = get_audit_logger("embedding")

    for batch_number, offset in enumerate(range(0, len(pending), batch_size), start=1):
        batch = pending[offset:offset + batch_size]
        batch_start = time.time()

        with pipeline_step("embedding"):
            vectors = embedder.embed([text for _, text in batch])
        if len(vectors) != len(batch):
            raise ResponseMismatch(
                f"embedding size mismatch: got {len(vectors)} want {len(batch)}",
                step="embedding",
            )

        with pipeline_step("embedding_write"):
            for (passage_id, _), vector in zip(batch, vectors):
                store.set_embedding(passage_id, vector)
        summary.embedded += len(batch)

        log_embedding_batch(
            audit_logger,
            batch_number=batch_number,
            batch_size=len(batch),
            dimensions=int(len(vectors[0])),
            execution_time_ms=(time.time() - batch_start) * 1000,
        )
