"""Embedding provider clients: batch text -> float32 vectors, order preserved.

The provider contract is picked by configuration (EMBED_PROVIDER):

- ``tei``: POST {EMBEDDINGS_URL}/embed with {"inputs": [...]}, answer
  {"embeddings": [[...], ...]}.
- ``openai``: an OpenAI-compatible /v1/embeddings endpoint via the SDK.

Vectors leave this module as ``numpy.float32`` arrays, the same width
pgvector stores, so written and queried vectors share one precision.
"""

import os
import logging
from typing import List, Optional, Sequence, Any
from dataclasses import dataclass

import httpx
import numpy as np
import openai
from dotenv import load_dotenv

from .errors import ProviderError, ProviderUnavailable, ResponseMismatch

# Load environment variables
load_dotenv()

logger = logging.getLogger(__name__)

PROVIDERS = ("tei", "openai")
DEFAULT_EMBEDDINGS_URL = "http://127.0.0.1:8000"
DEFAULT_OPENAI_MODEL = "text-embedding-3-small"
DEFAULT_TIMEOUT = 30.0


@dataclass
class EmbeddingConfig:
    """Configuration for the embedding provider."""
    provider: str = "tei"
    base_url: Optional[str] = DEFAULT_EMBEDDINGS_URL
    model: Optional[str] = None
    dimensions: Optional[int] = None  # enforced on every returned vector when set
    timeout: float = DEFAULT_TIMEOUT
    api_key: Optional[str] = None


def get_embedding_config() -> EmbeddingConfig:
    """Get embedding configuration from environment."""
    provider = os.getenv("EMBED_PROVIDER", "tei").strip().lower()
    if provider not in PROVIDERS:
        raise ValueError(f"Unknown EMBED_PROVIDER '{provider}', expected one of {PROVIDERS}")

    base_url = os.getenv("EMBEDDINGS_URL")
    if not base_url and provider == "tei":
        base_url = DEFAULT_EMBEDDINGS_URL

    dimensions = os.getenv("EMBED_DIMENSIONS")
    model = os.getenv("EMBED_MODEL")
    if provider == "openai" and not model:
        model = DEFAULT_OPENAI_MODEL

    return EmbeddingConfig(
        provider=provider,
        base_url=base_url,
        model=model,
        dimensions=int(dimensions) if dimensions else None,
        timeout=float(os.getenv("EMBED_TIMEOUT", str(DEFAULT_TIMEOUT))),
        api_key=os.getenv("OPENAI_API_KEY"),
    )


def to_vectors(raw: Sequence[Any], expected: int, dimensions: Optional[int] = None) -> List[np.ndarray]:
    """
    Convert a provider payload into float32 vectors.

    Args:
        raw: One sequence of numbers per input text
        expected: Number of texts that were sent
        dimensions: Required vector width, if known

    Returns:
        List of 1-d float32 arrays, same order as ``raw``
    """
    if len(raw) != expected:
        raise ResponseMismatch(f"embedding size mismatch: got {len(raw)} want {expected}")

    vectors = []
    for i, item in enumerate(raw):
        try:
            vec = np.asarray(item, dtype=np.float32)
        except (TypeError, ValueError) as e:
            raise ProviderError(f"embedding {i} is not a numeric vector") from e
        if vec.ndim != 1 or vec.size == 0:
            raise ProviderError(f"embedding {i} has shape {vec.shape}, expected a flat vector")
        if not np.any(vec):
            raise ProviderError(f"embedding {i} is a zero vector")
        vectors.append(vec)

    widths = {vec.shape[0] for vec in vectors}
    if len(widths) > 1:
        raise ResponseMismatch(f"embedding widths differ within one batch: {sorted(widths)}")
    if dimensions and widths and widths != {dimensions}:
        raise ResponseMismatch(f"embedding width {widths.pop()} does not match configured {dimensions}")

    return vectors


class EmbeddingClient:
    """Common batch/single interface; subclasses implement one wire contract."""

    provider = "base"

    def __init__(self, config: EmbeddingConfig):
        self.config = config

    def embed(self, texts: Sequence[str]) -> List[np.ndarray]:
        """Embed texts; ``result[i]`` is the vector for ``texts[i]``."""
        texts = list(texts)
        if not texts:
            return []

        raw = self._request(texts)
        vectors = to_vectors(raw, len(texts), self.config.dimensions)
        logger.debug(f"Embedded {len(vectors)} texts via {self.provider}")
        return vectors

    def embed_one(self, text: str) -> np.ndarray:
        """Embed a single text."""
        return self.embed([text])[0]

    def _request(self, texts: List[str]) -> Sequence[Any]:
        raise NotImplementedError

    def close(self) -> None:
        pass

    def __enter__(self):
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        self.close()


class HTTPEmbeddingClient(EmbeddingClient):
    """Text-embeddings-inference style ``/embed`` endpoint over httpx."""

    provider = "tei"

    def __init__(self, config: EmbeddingConfig, http_client: Optional[httpx.Client] = None):
        super().__init__(config)
        if not config.base_url:
            raise ValueError("EMBEDDINGS_URL is required for the tei provider")
        self.endpoint = config.base_url.rstrip("/") + "/embed"
        self._owns_client = http_client is None
        self._client = http_client or httpx.Client(timeout=config.timeout)

    def _request(self, texts: List[str]) -> Sequence[Any]:
        try:
            response = self._client.post(
                self.endpoint,
                json={"inputs": texts},
                timeout=self.config.timeout,
            )
        except httpx.TimeoutException as e:
            raise ProviderUnavailable(
                f"embedding request to {self.endpoint} timed out after {self.config.timeout}s"
            ) from e
        except httpx.TransportError as e:
            raise ProviderUnavailable(f"embedding request to {self.endpoint} failed: {e}") from e

        if not response.is_success:
            raise ProviderError(
                f"embeddings http {response.status_code}: {response.text[:200]}",
                status_code=response.status_code,
            )

        try:
            payload = response.json()
        except ValueError as e:
            raise ProviderError("embedding response is not valid JSON") from e

        if not isinstance(payload, dict) or not isinstance(payload.get("embeddings"), list):
            raise ProviderError("embedding response has no 'embeddings' list")
        return payload["embeddings"]

    def close(self) -> None:
        if self._owns_client:
            self._client.close()


class OpenAIEmbeddingClient(EmbeddingClient):
    """OpenAI-compatible ``/v1/embeddings`` endpoint via the openai SDK."""

    provider = "openai"

    def __init__(self, config: EmbeddingConfig, http_client: Optional[httpx.Client] = None):
        super().__init__(config)
        # Retries stay with the caller
        self._client = openai.OpenAI(
            api_key=config.api_key or "not-needed",
            base_url=config.base_url,
            timeout=config.timeout,
            max_retries=0,
            http_client=http_client,
        )

    def _request(self, texts: List[str]) -> Sequence[Any]:
        params = {
            "model": self.config.model or DEFAULT_OPENAI_MODEL,
            "input": texts,
            "encoding_format": "float",
        }
        if self.config.dimensions:
            params["dimensions"] = self.config.dimensions

        try:
            response = self._client.embeddings.create(**params)
        except openai.APIConnectionError as e:
            raise ProviderUnavailable(f"embedding request failed: {e}") from e
        except openai.APIStatusError as e:
            raise ProviderError(f"embeddings http {e.status_code}: {e.message}", status_code=e.status_code) from e
        except openai.APIError as e:
            raise ProviderError(f"embedding response could not be parsed: {e}") from e

        data = sorted(response.data, key=lambda item: item.index)
        return [item.embedding for item in data]

    def close(self) -> None:
        self._client.close()


def create_embedding_client(
    config: Optional[EmbeddingConfig] = None,
    http_client: Optional[httpx.Client] = None,
) -> EmbeddingClient:
    """Build the client for the configured provider."""
    if config is None:
        config = get_embedding_config()

    if config.provider == "tei":
        return HTTPEmbeddingClient(config, http_client=http_client)
    if config.provider == "openai":
        return OpenAIEmbeddingClient(config, http_client=http_client)
    raise ValueError(f"Unknown embedding provider '{config.provider}'")
