"""Unit tests for embedding generation."""

import pytest
from unittest.mock import AsyncMock, MagicMock, patch

from memory_hybrid.embeddings import Embedder, EmbeddingGenerator
from memory_hybrid.errors import EmbeddingDimensionError


def _response(*vectors):
    response = MagicMock()
    response.data = [MagicMock(embedding=v) for v in vectors]
    return response


class TestEmbeddingGenerator:
    """Unit tests for embedding generation."""

    async def test_generate_single_embedding(self):
        """Can generate embedding for single text."""
        with patch("memory_hybrid.embeddings.AsyncOpenAI") as mock_client:
            mock_client.return_value.embeddings.create = AsyncMock(
                return_value=_response([0.1] * 1536)
            )

            embedder = EmbeddingGenerator(api_key="sk-test")
            result = await embedder.generate("test content")

            assert len(result) == 1536
            assert all(isinstance(x, float) for x in result)

    async def test_uses_correct_model(self):
        """Uses text-embedding-3-small by default and pins the dimension."""
        with patch("memory_hybrid.embeddings.AsyncOpenAI") as mock_client:
            mock_create = AsyncMock(return_value=_response([0.1] * 1536))
            mock_client.return_value.embeddings.create = mock_create

            embedder = EmbeddingGenerator(api_key="sk-test")
            await embedder.generate("test")

            mock_create.assert_called_once()
            call_kwargs = mock_create.call_args[1]
            assert call_kwargs["model"] == "text-embedding-3-small"
            assert call_kwargs["dimensions"] == 1536

    async def test_legacy_model_gets_no_dimensions_argument(self):
        with patch("memory_hybrid.embeddings.AsyncOpenAI") as mock_client:
            mock_create = AsyncMock(return_value=_response([0.1] * 1536))
            mock_client.return_value.embeddings.create = mock_create

            embedder = EmbeddingGenerator(model="text-embedding-ada-002", api_key="sk-test")
            await embedder.generate("test")

            assert "dimensions" not in mock_create.call_args[1]

    def test_custom_model(self):
        """Can specify custom embedding model."""
        with patch("memory_hybrid.embeddings.AsyncOpenAI"):
            embedder = EmbeddingGenerator(model="text-embedding-3-large", api_key="sk-test")
            assert embedder.model == "text-embedding-3-large"

    def test_requires_api_key(self, monkeypatch):
        monkeypatch.delenv("OPENAI_API_KEY", raising=False)

        with pytest.raises(ValueError, match="API key required"):
            EmbeddingGenerator()

    async def test_content_length_limit(self):
        with patch("memory_hybrid.embeddings.AsyncOpenAI"):
            embedder = EmbeddingGenerator(api_key="sk-test")

            with pytest.raises(ValueError, match="Content too long"):
                await embedder.generate("x" * 100_001)

    async def test_dimension_mismatch_is_an_error(self):
        with patch("memory_hybrid.embeddings.AsyncOpenAI") as mock_client:
            mock_client.return_value.embeddings.create = AsyncMock(
                return_value=_response([0.1] * 8)
            )

            embedder = EmbeddingGenerator(api_key="sk-test", dimensions=16)

            with pytest.raises(EmbeddingDimensionError) as exc_info:
                await embedder.generate("test")
            assert exc_info.value.expected == 16
            assert exc_info.value.actual == 8

    async def test_api_errors_propagate(self):
        with patch("memory_hybrid.embeddings.AsyncOpenAI") as mock_client:
            mock_client.return_value.embeddings.create = AsyncMock(
                side_effect=RuntimeError("timeout")
            )

            embedder = EmbeddingGenerator(api_key="sk-test")

            with pytest.raises(RuntimeError, match="timeout"):
                await embedder.generate("test")

    def test_satisfies_embedder_protocol(self, fake_embedder):
        with patch("memory_hybrid.embeddings.AsyncOpenAI"):
            assert isinstance(EmbeddingGenerator(api_key="sk-test"), Embedder)
        assert isinstance(fake_embedder, Embedder)
