"""OpenAI embedding generation wrapper."""

import os
from typing import Optional, Protocol, runtime_checkable

from openai import AsyncOpenAI

from .errors import EmbeddingDimensionError

MAX_CONTENT_LENGTH = 100_000


@runtime_checkable
class Embedder(Protocol):
    """Anything that turns text into a fixed-length vector."""

    dimensions: int

    async def generate(self, content: str) -> list[float]: ...


class EmbeddingGenerator:
    """OpenAI embedding API wrapper for hybrid memory.

    Uses text-embedding-3-small by default:
    - 1536 dimensions (text-embedding-3 models accept a smaller size)
    - Timeouts and API failures propagate to the caller
    """

    def __init__(
        self,
        model: str = "text-embedding-3-small",
        api_key: Optional[str] = None,
        dimensions: int = 1536,
    ):
        self.model = model
        self.dimensions = dimensions

        # Validate API key is provided
        final_api_key = api_key or os.getenv("OPENAI_API_KEY")
        if not final_api_key:
            raise ValueError(
                "OpenAI API key required. Set OPENAI_API_KEY environment variable "
                "or pass api_key parameter."
            )

        self.client = AsyncOpenAI(api_key=final_api_key)

    def _request_kwargs(self) -> dict:
        kwargs = {"model": self.model}
        if self.model.startswith("text-embedding-3"):
            kwargs["dimensions"] = self.dimensions
        return kwargs

    def _check(self, embedding: list[float]) -> list[float]:
        if len(embedding) != self.dimensions:
            raise EmbeddingDimensionError(self.dimensions, len(embedding))
        return embedding

    async def generate(self, content: str) -> list[float]:
        """Generate embedding for single content.

        Args:
            content: Text to embed (max 100,000 chars)

        Returns:
            Vector of `dimensions` floats

        Raises:
            ValueError: If content exceeds size limit
            EmbeddingDimensionError: If the API returns another vector size
            openai.OpenAIError: If API call fails
        """
        if len(content) > MAX_CONTENT_LENGTH:
            raise ValueError(
                f"Content too long: {len(content)} chars (max {MAX_CONTENT_LENGTH})"
            )

        response = await self.client.embeddings.create(
            input=content, **self._request_kwargs()
        )
        return self._check(response.data[0].embedding)
