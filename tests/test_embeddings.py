"""
Tests for embedding providers.
"""

import pytest
import numpy as np
import requests
from unittest.mock import MagicMock

from catalog_recommender.core.errors import (
    AuthError,
    MalformedResponseError,
    ProviderRequestError,
    TransientProviderError,
)
from catalog_recommender.vector.embeddings import (
    DeterministicHashEmbedding,
    HttpEmbeddingProvider,
    SentenceTransformerEmbedding,
    parse_retry_after,
)


def cosine(a, b):
    a, b = np.asarray(a), np.asarray(b)
    return float(a @ b / (np.linalg.norm(a) * np.linalg.norm(b)))


class TestDeterministicHashEmbedding:
    """Test the feature-hashing provider."""

    def test_dimension(self):
        provider = DeterministicHashEmbedding(dimension=128)
        vector = provider.embed_text("printer out of toner")

        assert len(vector) == 128
        assert provider.get_dimension() == 128

    def test_deterministic(self):
        provider = DeterministicHashEmbedding(dimension=128)
        assert provider.embed_text("vpn drops") == provider.embed_text("vpn drops")

    def test_unit_length(self):
        provider = DeterministicHashEmbedding(dimension=128)
        assert np.linalg.norm(provider.embed_text("reset my password")) == pytest.approx(1.0, abs=1e-5)

    def test_similar_texts_are_closer(self):
        provider = DeterministicHashEmbedding(dimension=512)
        base = provider.embed_text("printer paper jam in tray two")
        near = provider.embed_text("printer paper jam in tray one")
        far = provider.embed_text("vpn connection drops after login")

        assert cosine(base, near) > cosine(base, far)
        assert cosine(base, near) > 0.5

    def test_empty_text_is_zero_vector(self):
        provider = DeterministicHashEmbedding(dimension=16)
        assert not any(provider.embed_text(""))

    def test_batch_preserves_order(self):
        provider = DeterministicHashEmbedding(dimension=64)
        texts = ["alpha", "beta", "gamma"]
        assert provider.embed_texts(texts) == [provider.embed_text(t) for t in texts]


def make_response(status_code=200, payload=None, headers=None, text=""):
    response = MagicMock()
    response.status_code = status_code
    response.headers = headers or {}
    response.text = text
    response.json.return_value = payload
    return response


@pytest.fixture
def session():
    return MagicMock()


@pytest.fixture
def http_provider(session):
    return HttpEmbeddingProvider(
        url="https://embeddings.example/v1/embeddings",
        model="test-model",
        api_key="secret",
        dimension=3,
        timeout=30,
        session=session,
    )


class TestHttpEmbeddingProvider:
    """Test the HTTP contract and error mapping."""

    def test_request_shape(self, http_provider, session):
        session.post.return_value = make_response(payload={"data": [
            {"index": 0, "embedding": [1, 0, 0]},
        ]})

        http_provider.embed_texts(["hello"], timeout=5)

        args, kwargs = session.post.call_args
        assert args[0] == "https://embeddings.example/v1/embeddings"
        assert kwargs["json"] == {"model": "test-model", "input": ["hello"]}
        assert kwargs["headers"]["Authorization"] == "Bearer secret"
        assert kwargs["timeout"] == 5

    def test_timeout_capped_by_configured(self, http_provider, session):
        session.post.return_value = make_response(payload={"data": [{"index": 0, "embedding": [1, 0, 0]}]})

        http_provider.embed_texts(["hello"], timeout=120)

        assert session.post.call_args.kwargs["timeout"] == 30

    def test_response_reordered_by_index(self, http_provider, session):
        session.post.return_value = make_response(payload={"data": [
            {"index": 1, "embedding": [0, 1, 0]},
            {"index": 0, "embedding": [1, 0, 0]},
        ]})

        vectors = http_provider.embed_texts(["first", "second"])

        assert vectors == [[1, 0, 0], [0, 1, 0]]

    @pytest.mark.parametrize("status", [401, 403])
    def test_auth_errors(self, http_provider, session, status):
        session.post.return_value = make_response(status_code=status)

        with pytest.raises(AuthError) as exc_info:
            http_provider.embed_texts(["x"])

        assert exc_info.value.status_code == status

    @pytest.mark.parametrize("status", [429, 500, 502, 503])
    def test_transient_statuses(self, http_provider, session, status):
        session.post.return_value = make_response(status_code=status, headers={"Retry-After": "7"})

        with pytest.raises(TransientProviderError) as exc_info:
            http_provider.embed_texts(["x"])

        assert exc_info.value.status_code == status
        assert exc_info.value.retry_after == 7.0

    def test_other_client_error(self, http_provider, session):
        session.post.return_value = make_response(status_code=400, text="input too long")

        with pytest.raises(ProviderRequestError, match="input too long"):
            http_provider.embed_texts(["x"])

    @pytest.mark.parametrize("error", [requests.Timeout("slow"), requests.ConnectionError("refused")])
    def test_network_errors_are_transient(self, http_provider, session, error):
        session.post.side_effect = error

        with pytest.raises(TransientProviderError):
            http_provider.embed_texts(["x"])

    def test_malformed_payload(self, http_provider, session):
        session.post.return_value = make_response(payload={"unexpected": []})

        with pytest.raises(MalformedResponseError):
            http_provider.embed_texts(["x"])

    def test_count_mismatch(self, http_provider, session):
        session.post.return_value = make_response(payload={"data": [{"index": 0, "embedding": [1, 0, 0]}]})

        with pytest.raises(MalformedResponseError):
            http_provider.embed_texts(["x", "y"])

    @pytest.mark.parametrize("indices", [[0, 0, 2], [1, 2, 3]])
    def test_indices_must_match_inputs(self, http_provider, session, indices):
        session.post.return_value = make_response(payload={"data": [
            {"index": index, "embedding": [1, 0, 0]} for index in indices
        ]})

        with pytest.raises(MalformedResponseError, match="indices"):
            http_provider.embed_texts(["x", "y", "z"])


def test_parse_retry_after():
    assert parse_retry_after("12") == 12.0
    assert parse_retry_after(None) is None
    assert parse_retry_after("Wed, 21 Oct 2015 07:28:00 GMT") is None
    assert parse_retry_after("-1") is None


class TestSentenceTransformerEmbedding:
    """Test the local model provider with the model mocked out."""

    def test_encode_called_with_normalization(self):
        provider = SentenceTransformerEmbedding("test-model", batch_size=8)
        model = MagicMock()
        model.encode.return_value = np.array([[0.6, 0.8], [1.0, 0.0]], dtype=np.float32)
        provider._model = model

        vectors = provider.embed_texts(["a", "b"])

        assert vectors == [pytest.approx([0.6, 0.8]), [1.0, 0.0]]
        model.encode.assert_called_once_with(
            ["a", "b"], batch_size=8, normalize_embeddings=True, show_progress_bar=False
        )

    def test_dimension_from_model(self):
        provider = SentenceTransformerEmbedding("test-model")
        provider._model = MagicMock()
        provider._model.get_sentence_embedding_dimension.return_value = 768

        assert provider.get_dimension() == 768
