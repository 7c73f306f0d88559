"""Shared fixtures: in-memory stand-ins for the store and the embedding provider."""

import copy
import itertools
from contextlib import contextmanager
from datetime import datetime, timedelta, timezone
from typing import Dict, List, Optional

import numpy as np
import pytest

from webrag.core.embed import EmbeddingClient, EmbeddingConfig
from webrag.core.errors import ProviderUnavailable
from webrag.core.store import IngestedPage, PassageRow

BASE_TIME = datetime(2025, 1, 1, tzinfo=timezone.utc)


class FakeStore:
    """Dict-backed PassageStore with snapshot/restore transactions."""

    def __init__(self):
        self.pages: Dict[int, dict] = {}
        self.documents: Dict[int, dict] = {}
        self.passages: Dict[int, dict] = {}
        self._page_ids = itertools.count(1)
        self._doc_ids = itertools.count(1)
        self._passage_ids = itertools.count(1)
        self.fail_on: Dict[str, Exception] = {}
        self.calls: List[tuple] = []
        self.commits = 0
        self.rollbacks = 0

    def _record(self, name, *args):
        self.calls.append((name,) + args)
        if name in self.fail_on:
            raise self.fail_on[name]

    @contextmanager
    def transaction(self):
        snapshot = copy.deepcopy((self.pages, self.documents, self.passages))
        try:
            yield
        except BaseException:
            self.pages, self.documents, self.passages = snapshot
            self.rollbacks += 1
            raise
        self.commits += 1

    def add_page(self, url, body_text, fetched_at=None, document_id=None):
        page_id = next(self._page_ids)
        self.pages[page_id] = {
            "id": page_id,
            "url": url,
            "body_text": body_text,
            "fetched_at": fetched_at or BASE_TIME + timedelta(minutes=page_id),
            "document_id": document_id,
            "processed": False,
        }
        return page_id

    def select_unprocessed(self, limit, claim=False):
        self._record("select_unprocessed", limit, claim)
        rows = sorted(
            (p for p in self.pages.values() if not p["processed"]),
            key=lambda p: (p["fetched_at"], p["id"]),
            reverse=True,
        )[:limit]
        return [IngestedPage(p["id"], p["url"], p["body_text"], p["document_id"]) for p in rows]

    def link_page(self, page_id, document_id):
        self._record("link_page", page_id, document_id)
        self.pages[page_id]["document_id"] = document_id

    def mark_processed(self, page_ids):
        self._record("mark_processed", list(page_ids))
        for page_id in page_ids:
            self.pages[page_id]["processed"] = True
        return len(page_ids)

    def upsert_document(self, url, text, doc_type="webpage"):
        self._record("upsert_document", url)
        for doc in self.documents.values():
            if doc["url"] == url:
                doc["text"] = text
                return doc["id"], doc["company_id"], False
        doc_id = next(self._doc_ids)
        self.documents[doc_id] = {
            "id": doc_id, "url": url, "text": text, "company_id": None, "doc_type": doc_type,
        }
        return doc_id, None, True

    def add_document(self, url, text, company_id=None):
        doc_id = next(self._doc_ids)
        self.documents[doc_id] = {
            "id": doc_id, "url": url, "text": text, "company_id": company_id, "doc_type": "webpage",
        }
        return doc_id

    def get_document(self, document_id):
        self._record("get_document", document_id)
        doc = self.documents.get(document_id)
        return (doc["text"], doc["company_id"]) if doc else None

    def has_passages(self, document_id):
        self._record("has_passages", document_id)
        return any(p["document_id"] == document_id for p in self.passages.values())

    def insert_passage(self, document_id, company_id, text):
        self._record("insert_passage", document_id)
        passage_id = next(self._passage_ids)
        self.passages[passage_id] = {
            "id": passage_id,
            "document_id": document_id,
            "company_id": company_id,
            "text": text,
            "embedding": None,
        }
        return passage_id

    def set_embedding(self, passage_id, vector):
        self._record("set_embedding", passage_id)
        self.passages[passage_id]["embedding"] = np.asarray(vector, dtype=np.float32)

    def nearest_passages(self, vector, limit, company_id=None):
        self._record("nearest_passages", limit, company_id)
        query = np.asarray(vector, dtype=np.float32)
        rows = []
        for p in self.passages.values():
            if p["embedding"] is None:
                continue
            if company_id is not None and p["company_id"] != company_id:
                continue
            emb = p["embedding"]
            distance = 1.0 - float(np.dot(query, emb) / (np.linalg.norm(query) * np.linalg.norm(emb)))
            rows.append(PassageRow(p["id"], p["document_id"], p["company_id"], p["text"], distance))
        rows.sort(key=lambda r: (r.distance, r.id))
        return rows[:limit]

    def passages_for(self, document_id):
        return [p for p in self.passages.values() if p["document_id"] == document_id]


def text_vector(text: str) -> List[float]:
    """Deterministic, never-zero 4-d vector for a text."""
    return [
        float(len(text) % 7 + 1),
        float(text.count("a") + 1),
        float(text.count("e") + 1),
        1.0,
    ]


class FakeEmbedder(EmbeddingClient):
    """Embedding client that answers locally.

    ``vectors`` maps exact texts to vectors; anything else goes through
    ``text_vector``. ``fail_on_call`` makes the n-th request (1-based) raise.
    """

    provider = "fake"

    def __init__(self, vectors: Optional[Dict[str, List[float]]] = None, fail_on_call: Optional[int] = None,
                 error: Optional[Exception] = None, drop_last: bool = False):
        super().__init__(EmbeddingConfig(provider="fake", base_url=None))
        self.vectors = vectors or {}
        self.fail_on_call = fail_on_call
        self.error = error or ProviderUnavailable("embedding service unreachable")
        self.drop_last = drop_last
        self.requests: List[List[str]] = []

    def _request(self, texts):
        self.requests.append(list(texts))
        if self.fail_on_call is not None and len(self.requests) == self.fail_on_call:
            raise self.error
        return [self.vectors.get(t, text_vector(t)) for t in texts]

    def embed(self, texts):
        vectors = super().embed(texts)
        if self.drop_last:
            return vectors[:-1]
        return vectors


@pytest.fixture
def store() -> FakeStore:
    return FakeStore()


@pytest.fixture
def embedder() -> FakeEmbedder:
    return FakeEmbedder()
