"""Error kinds raised by the backfill and search operations."""

from contextlib import contextmanager
from typing import Iterator, Optional

import psycopg


class WebragError(Exception):
    """Base error. ``step`` names the pipeline step that failed, if known."""

    def __init__(self, message: str, step: Optional[str] = None):
        super().__init__(message)
        self.message = message
        self.step = step

    def __str__(self) -> str:
        if self.step:
            return f"{self.step}: {self.message}"
        return self.message


class InvalidInput(WebragError):
    """Rejected before any side effect (bad batch size, empty query)."""


class StorageFailure(WebragError):
    """Any read/write/transaction error against the relational store."""


class EmbeddingProviderError(WebragError):
    """Base for embedding provider failures."""


class ProviderUnavailable(EmbeddingProviderError):
    """The network call to the provider could not complete."""


class ProviderError(EmbeddingProviderError):
    """The provider answered with a non-success status or an unusable body."""

    def __init__(self, message: str, step: Optional[str] = None, status_code: Optional[int] = None):
        super().__init__(message, step)
        self.status_code = status_code


class ResponseMismatch(EmbeddingProviderError):
    """Returned vectors do not line up with the request."""


@contextmanager
def pipeline_step(name: str) -> Iterator[None]:
    """
    Attribute failures inside the block to step ``name``.

    ``psycopg.Error`` becomes ``StorageFailure``; provider errors keep their
    kind and get the step attached if they do not carry one yet.
    """
    try:
        yield
    except psycopg.Error as e:
        raise StorageFailure(str(e).strip() or type(e).__name__, step=name) from e
    except EmbeddingProviderError as e:
        if e.step is None:
            e.step = name
        raise
