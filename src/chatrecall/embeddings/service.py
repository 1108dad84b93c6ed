"""OpenAI embedding client."""

import logging
from typing import Any, List, Optional, Sequence

from openai import (
    APIConnectionError,
    APIStatusError,
    AuthenticationError,
    OpenAI,
    RateLimitError,
)

from chatrecall.config import settings
from chatrecall.exceptions import (
    EmbeddingAuthError,
    EmbeddingNotConfiguredError,
    EmbeddingProtocolError,
    EmbeddingRateLimitError,
    EmbeddingServerError,
    EmptyTextError,
)

logger = logging.getLogger(__name__)


class EmbeddingService:
    """
    Turn text into embedding vectors via the OpenAI embeddings endpoint.

    Inputs are trimmed and truncated to a character budget before they are
    sent; blank inputs are rejected.  One vector is returned per input, in
    input order.
    """

    def __init__(
        self,
        api_key: Optional[str] = None,
        model: Optional[str] = None,
        dimensions: Optional[int] = None,
        base_url: Optional[str] = None,
        timeout: Optional[float] = None,
        max_chars: Optional[int] = None,
        client: Optional[Any] = None,
    ):
        """
        Initialize the embedding service.

        Args:
            api_key: OpenAI API key (defaults to settings)
            model: Embedding model name
            dimensions: Requested vector size for models that support it
            base_url: Alternate OpenAI-compatible endpoint
            timeout: Request timeout in seconds
            max_chars: Character budget per input
            client: Pre-built client exposing ``embeddings.create``
        """
        self.api_key = api_key if api_key is not None else settings.openai_api_key
        self.model = model or settings.embedding_model
        self.dimensions = dimensions or settings.embedding_dimensions
        self.base_url = base_url if base_url is not None else settings.openai_base_url
        self.timeout = timeout or settings.embedding_timeout_seconds
        self.max_chars = max_chars or settings.embedding_max_chars
        self._client = client

    @property
    def is_configured(self) -> bool:
        return self._client is not None or bool(self.api_key)

    def _get_client(self) -> Any:
        """Get or create the OpenAI client (lazy initialization)."""
        if self._client is None:
            if not self.api_key:
                raise EmbeddingNotConfiguredError()
            self._client = OpenAI(
                api_key=self.api_key,
                base_url=self.base_url or None,
                timeout=self.timeout,
            )
            logger.info(f"Initialized OpenAI embeddings with model: {self.model}")
        return self._client

    def prepare(self, text: str, index: Optional[int] = None) -> str:
        """Trim and truncate one input, rejecting blank text."""
        trimmed = text.strip()
        if not trimmed:
            raise EmptyTextError(index)
        if len(trimmed) > self.max_chars:
            logger.debug(
                f"Truncating embedding input from {len(trimmed)} to {self.max_chars} chars"
            )
            trimmed = trimmed[: self.max_chars]
        return trimmed

    def embed(self, text: str) -> List[float]:
        """Embed a single text."""
        return self.embed_batch([text])[0]

    def embed_batch(self, texts: Sequence[str]) -> List[List[float]]:
        """
        Embed several texts in one request.

        Raises:
            EmptyTextError: If any input is blank after trimming
            EmbeddingNotConfiguredError: If no API key is available
            EmbeddingAuthError: On a rejected key
            EmbeddingRateLimitError: When rate limited
            EmbeddingServerError: On any other failed request (including timeouts)
            EmbeddingProtocolError: If the response does not match the inputs
        """
        if not texts:
            return []

        inputs = [self.prepare(text, index) for index, text in enumerate(texts)]
        request: dict[str, Any] = {"model": self.model, "input": inputs}
        if self.model.startswith("text-embedding-3"):
            request["dimensions"] = self.dimensions

        client = self._get_client()
        try:
            response = client.embeddings.create(**request)
        except AuthenticationError as e:
            raise EmbeddingAuthError(f"Invalid API key: {e.message}") from e
        except RateLimitError as e:
            raise EmbeddingRateLimitError(f"Rate limited: {e.message}") from e
        except APIStatusError as e:
            raise EmbeddingServerError(e.status_code, e.message) from e
        except APIConnectionError as e:
            raise EmbeddingServerError(None, str(e)) from e

        data = list(getattr(response, "data", None) or [])
        if len(data) != len(inputs):
            raise EmbeddingProtocolError(
                f"Expected {len(inputs)} embeddings, got {len(data)}"
            )

        data.sort(key=lambda item: item.index)
        if [item.index for item in data] != list(range(len(inputs))):
            raise EmbeddingProtocolError("Embedding response indices do not match inputs")

        return [list(item.embedding) for item in data]
