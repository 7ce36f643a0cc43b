"""
Embedding providers: the remote HTTP endpoint, a local sentence-transformers
model, and a deterministic feature-hashing embedding for offline use.
"""

import hashlib
import re
from abc import ABC, abstractmethod
from typing import List, Optional

import numpy as np
import requests

from ..core.errors import (
    AuthError,
    MalformedResponseError,
    ProviderRequestError,
    TransientProviderError,
)


class IEmbeddingProvider(ABC):
    """Abstract interface for embedding providers."""

    @abstractmethod
    def embed_texts(self, texts: List[str], timeout: Optional[float] = None) -> List[List[float]]:
        """Generate one embedding per text, aligned positionally with `texts`."""
        pass

    @abstractmethod
    def get_dimension(self) -> int:
        """Get the dimension of the embedding vectors."""
        pass

    def embed_text(self, text: str) -> List[float]:
        """Generate embedding vector for a single text."""
        return self.embed_texts([text])[0]


class DeterministicHashEmbedding(IEmbeddingProvider):
    """Deterministic feature-hashing embedding provider.

    Each word token is hashed to a signed bucket, so texts sharing most of
    their words end up with nearly parallel vectors. Reproducible and free
    of model downloads, which makes it the provider for tests and local runs.
    """

    _TOKEN_RE = re.compile(r"\w+", re.UNICODE)

    def __init__(self, dimension: int = 384):
        self.dimension = dimension

    def embed_texts(self, texts: List[str], timeout: Optional[float] = None) -> List[List[float]]:
        return [self._embed_one(text) for text in texts]

    def _embed_one(self, text: str) -> List[float]:
        vector = np.zeros(self.dimension, dtype=np.float32)
        for token in self._TOKEN_RE.findall(text.lower()):
            digest = hashlib.md5(token.encode()).digest()
            bucket = int.from_bytes(digest[:4], "big") % self.dimension
            sign = 1.0 if digest[4] & 1 else -1.0
            vector[bucket] += sign

        norm = np.linalg.norm(vector)
        if norm > 0:
            vector /= norm
        return vector.tolist()

    def get_dimension(self) -> int:
        return self.dimension


class SentenceTransformerEmbedding(IEmbeddingProvider):
    """Sentence transformers embedding provider using a local pre-trained model."""

    def __init__(self, model_name: str = "all-mpnet-base-v2", batch_size: int = 32):
        self.model_name = model_name
        self.batch_size = batch_size
        self._model = None
        self._dimension = None

    @property
    def model(self):
        if self._model is None:
            from sentence_transformers import SentenceTransformer
            self._model = SentenceTransformer(self.model_name)
        return self._model

    def embed_texts(self, texts: List[str], timeout: Optional[float] = None) -> List[List[float]]:
        embeddings = self.model.encode(
            texts,
            batch_size=self.batch_size,
            normalize_embeddings=True,
            show_progress_bar=False,
        )
        return [list(map(float, row)) for row in embeddings]

    def get_dimension(self) -> int:
        if self._dimension is None:
            self._dimension = int(self.model.get_sentence_embedding_dimension())
        return self._dimension


def parse_retry_after(value: Optional[str]) -> Optional[float]:
    """Parse a Retry-After header given in seconds. HTTP-date values are ignored."""
    if not value:
        return None
    try:
        seconds = float(value)
    except ValueError:
        return None
    return seconds if seconds >= 0 else None


class HttpEmbeddingProvider(IEmbeddingProvider):
    """Embedding provider speaking the common `/embeddings` HTTP contract.

    Request: ``{"model": ..., "input": [text, ...]}``.
    Response: ``{"data": [{"index": i, "embedding": [...]}, ...]}``.

    HTTP failures are mapped onto the error taxonomy; retrying is the
    EmbeddingClient's job, not this class's.
    """

    def __init__(self, url: str, model: str, api_key: Optional[str] = None,
                 dimension: int = 1536, timeout: float = 30.0, session: requests.Session = None):
        self.url = url
        self.model = model
        self.api_key = api_key
        self.dimension = dimension
        self.timeout = timeout
        self.session = session or requests.Session()

    def _headers(self):
        headers = {"Content-Type": "application/json"}
        if self.api_key:
            headers["Authorization"] = f"Bearer {self.api_key}"
        return headers

    def embed_texts(self, texts: List[str], timeout: Optional[float] = None) -> List[List[float]]:
        try:
            response = self.session.post(
                self.url,
                json={"model": self.model, "input": list(texts)},
                headers=self._headers(),
                timeout=self.timeout if timeout is None else min(timeout, self.timeout),
            )
        except requests.Timeout as e:
            raise TransientProviderError(f"Embedding provider timed out: {e}") from e
        except requests.ConnectionError as e:
            raise TransientProviderError(f"Embedding provider unreachable: {e}") from e

        status = response.status_code
        if status in (401, 403):
            raise AuthError(f"Embedding provider rejected credentials (HTTP {status})", status_code=status)
        if status == 429 or status >= 500:
            raise TransientProviderError(
                f"Embedding provider returned HTTP {status}",
                status_code=status,
                retry_after=parse_retry_after(response.headers.get("Retry-After")),
            )
        if status >= 400:
            raise ProviderRequestError(
                f"Embedding provider rejected request (HTTP {status}): {response.text[:200]}",
                status_code=status,
            )

        return self._parse_response(response, len(texts))

    def _parse_response(self, response, expected: int) -> List[List[float]]:
        try:
            payload = response.json()
            items = sorted(payload["data"], key=lambda item: item["index"])
            indices = [item["index"] for item in items]
            vectors = [item["embedding"] for item in items]
        except (ValueError, KeyError, TypeError) as e:
            raise MalformedResponseError(f"Unparseable embedding response: {e}") from e

        if len(vectors) != expected:
            raise MalformedResponseError(
                f"Embedding response has {len(vectors)} vectors for {expected} inputs"
            )
        if indices != list(range(expected)):
            raise MalformedResponseError(f"Embedding response indices {indices} do not match inputs 0..{expected - 1}")
        return vectors

    def get_dimension(self) -> int:
        return self.dimension
