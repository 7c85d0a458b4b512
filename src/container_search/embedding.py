"""Embedding service abstraction for container item text.

Supports a local sentence-transformers model (default), the OpenAI API and
the Google Gemini API. Remote calls include retry logic with exponential
backoff, and every provider can be wrapped in an LRU cache.
"""

import asyncio
import hashlib
import threading
from collections import OrderedDict
from dataclasses import dataclass
from enum import Enum
from typing import Any, Protocol

import httpx
from loguru import logger
from openai import APITimeoutError, AsyncOpenAI, RateLimitError
from pydantic import BaseModel, Field

from container_search.errors import EmbeddingError
from container_search.models import ProviderMetadata


class TaskType(str, Enum):
    """Purpose of the text being embedded."""

    RETRIEVAL_DOCUMENT = "RETRIEVAL_DOCUMENT"
    RETRIEVAL_QUERY = "RETRIEVAL_QUERY"


class EmbeddingConfig(BaseModel):
    """Configuration for embedding generation.

    Attributes:
        provider: "local", "openai" or "google"
        model: Model identifier for the selected provider
        dimensions: Expected dimensionality (None uses the model's default)
        batch_size: Number of texts to embed per API call
        max_retries: Maximum retry attempts for transient failures
        timeout_seconds: API request timeout
        api_key: API key for remote providers (set via env var)
        cache_size: LRU cache entries, 0 disables caching
    """

    provider: str = "local"
    model: str = "nomic-embed-text-v1.5"
    dimensions: int | None = Field(default=None, ge=1, le=4096)
    batch_size: int = Field(default=100, ge=1, le=500)
    max_retries: int = Field(default=3, ge=1, le=10)
    timeout_seconds: float = Field(default=30.0, ge=1.0, le=300.0)
    api_key: str | None = None
    cache_size: int = Field(default=10000, ge=0)


class EmbeddingService(Protocol):
    """Protocol for embedding service implementations."""

    @property
    def dimension(self) -> int: ...

    async def embed(self, text: str, task_type: TaskType) -> list[float]:
        """Generate an embedding for a single text.

        Args:
            text: Input text
            task_type: Whether the text is a stored document or a query

        Returns:
            Embedding vector

        Raises:
            EmbeddingError: If the provider fails after retries
        """
        ...

    async def embed_batch(self, texts: list[str], task_type: TaskType) -> list[list[float]]:
        """Generate embeddings for several texts, preserving input order."""
        ...

    async def close(self) -> None: ...


def _batches(texts: list[str], size: int) -> list[list[str]]:
    return [texts[i : i + size] for i in range(0, len(texts), size)]


@dataclass(frozen=True)
class LocalModelSpec:
    """Known local model and the task prefixes it expects."""

    repository: str
    dimension: int
    query_prefix: str = ""
    document_prefix: str = ""

    def apply_prefix(self, text: str, task_type: TaskType) -> str:
        if task_type is TaskType.RETRIEVAL_QUERY:
            return self.query_prefix + text
        return self.document_prefix + text


E5_INSTRUCT_QUERY_PREFIX = (
    "Instruct: Given a web search query, retrieve relevant passages that answer the query\n"
    "Query: "
)

LOCAL_MODELS = {
    "nomic-embed-text-v1.5": LocalModelSpec(
        repository="nomic-ai/nomic-embed-text-v1.5",
        dimension=768,
        query_prefix="search_query: ",
        document_prefix="search_document: ",
    ),
    "all-MiniLM-L6-v2": LocalModelSpec(
        repository="sentence-transformers/all-MiniLM-L6-v2", dimension=384
    ),
    "bge-m3": LocalModelSpec(repository="BAAI/bge-m3", dimension=1024),
    "multilingual-e5-large-instruct": LocalModelSpec(
        repository="intfloat/multilingual-e5-large-instruct",
        dimension=1024,
        query_prefix=E5_INSTRUCT_QUERY_PREFIX,
    ),
}

DEFAULT_LOCAL_MODEL = "nomic-embed-text-v1.5"


class LocalEmbedding:
    """In-process embeddings via sentence-transformers.

    The model is loaded lazily on first use and encoding runs in a worker
    thread so the event loop is never blocked.
    """

    provider_name = "local"

    def __init__(self, config: EmbeddingConfig):
        self.config = config
        spec = LOCAL_MODELS.get(config.model)
        if spec is None:
            logger.warning(f"Unknown local model {config.model!r}, using {DEFAULT_LOCAL_MODEL}")
            spec = LOCAL_MODELS[DEFAULT_LOCAL_MODEL]
        self.spec = spec
        self.model_name = spec.repository
        self._model: Any = None
        self._load_lock = threading.Lock()

    @property
    def dimension(self) -> int:
        return self.spec.dimension

    def _load_model(self) -> Any:
        with self._load_lock:
            if self._model is None:
                from sentence_transformers import SentenceTransformer

                logger.info(f"Loading local embedding model {self.spec.repository}")
                try:
                    self._model = SentenceTransformer(
                        self.spec.repository, trust_remote_code=True
                    )
                except Exception as e:
                    raise EmbeddingError(
                        f"Failed to load embedding model {self.spec.repository!r}: {e}"
                    ) from e
            return self._model

    def _encode(self, texts: list[str]) -> list[list[float]]:
        model = self._load_model()
        vectors = model.encode(texts, batch_size=self.config.batch_size, normalize_embeddings=True)
        return [[float(v) for v in vector] for vector in vectors]

    async def embed_batch(self, texts: list[str], task_type: TaskType) -> list[list[float]]:
        if not texts:
            return []
        prefixed = [self.spec.apply_prefix(text, task_type) for text in texts]
        return await asyncio.to_thread(self._encode, prefixed)

    async def embed(self, text: str, task_type: TaskType) -> list[float]:
        vectors = await self.embed_batch([text], task_type)
        return vectors[0]

    async def close(self) -> None:
        self._model = None


OPENAI_DIMENSIONS = {
    "text-embedding-3-small": 1536,
    "text-embedding-3-large": 3072,
    "text-embedding-ada-002": 1536,
}


class OpenAIEmbedding:
    """OpenAI embedding client with retry logic and batching."""

    provider_name = "openai"

    def __init__(self, config: EmbeddingConfig):
        """Initialize OpenAI client.

        Args:
            config: Embedding configuration with API key
        """
        self.config = config
        self.client = AsyncOpenAI(
            api_key=config.api_key, timeout=config.timeout_seconds, max_retries=0
        )
        self.model_name = config.model.removeprefix("openai/")

    @property
    def dimension(self) -> int:
        return self.config.dimensions or OPENAI_DIMENSIONS.get(self.model_name, 1536)

    async def _embed_request(self, texts: list[str]) -> list[list[float]]:
        for attempt in range(self.config.max_retries):
            try:
                response = await self.client.embeddings.create(model=self.model_name, input=texts)
                embeddings = [item.embedding for item in response.data]

                for i, emb in enumerate(embeddings):
                    if len(emb) != self.dimension:
                        raise EmbeddingError(
                            f"Expected {self.dimension} dimensions, got {len(emb)} for text {i}"
                        )

                logger.debug(
                    f"Embedded {len(texts)} texts with {self.model_name} "
                    f"(attempt {attempt + 1}/{self.config.max_retries})"
                )
                return embeddings

            except (httpx.TimeoutException, APITimeoutError) as e:
                logger.warning(
                    f"Timeout embedding batch "
                    f"(attempt {attempt + 1}/{self.config.max_retries}): {e}"
                )
                if attempt < self.config.max_retries - 1:
                    await asyncio.sleep(2**attempt)
                else:
                    raise

            except RateLimitError as e:
                logger.warning(
                    f"Rate limited (attempt {attempt + 1}/{self.config.max_retries}): {e}"
                )
                if attempt < self.config.max_retries - 1:
                    await asyncio.sleep(2 ** (attempt + 1))
                else:
                    raise

        raise EmbeddingError("Exhausted all retry attempts")

    async def embed_batch(self, texts: list[str], task_type: TaskType) -> list[list[float]]:
        # OpenAI models take no task hint
        vectors: list[list[float]] = []
        for batch in _batches(texts, self.config.batch_size):
            vectors.extend(await self._embed_request(batch))
        return vectors

    async def embed(self, text: str, task_type: TaskType) -> list[float]:
        vectors = await self.embed_batch([text], task_type)
        return vectors[0]

    async def close(self) -> None:
        await self.client.close()


GOOGLE_API_BASE = "https://generativelanguage.googleapis.com/v1beta"


class GoogleEmbedding:
    """Gemini embedding client over the REST API."""

    provider_name = "google"

    def __init__(self, config: EmbeddingConfig, client: httpx.AsyncClient | None = None):
        self.config = config
        self.model_name = config.model.removeprefix("google/").removeprefix("models/")
        self.client = client or httpx.AsyncClient(
            timeout=config.timeout_seconds,
            headers={"x-goog-api-key": config.api_key or ""},
        )

    @property
    def dimension(self) -> int:
        return self.config.dimensions or 768

    def _request_body(self, text: str, task_type: TaskType) -> dict[str, Any]:
        return {
            "model": f"models/{self.model_name}",
            "content": {"parts": [{"text": text}]},
            "taskType": task_type.value,
        }

    async def _post(self, url: str, body: dict[str, Any]) -> dict[str, Any]:
        for attempt in range(self.config.max_retries):
            try:
                response = await self.client.post(url, json=body)
                response.raise_for_status()
                return response.json()

            except httpx.TimeoutException as e:
                logger.warning(
                    f"Timeout calling Gemini embeddings "
                    f"(attempt {attempt + 1}/{self.config.max_retries}): {e}"
                )
                if attempt < self.config.max_retries - 1:
                    await asyncio.sleep(2**attempt)
                else:
                    raise

            except httpx.HTTPStatusError as e:
                if e.response.status_code != 429:
                    logger.error(f"HTTP error from Gemini embeddings: {e}")
                    raise
                logger.warning(
                    f"Rate limited by Gemini (attempt {attempt + 1}/{self.config.max_retries})"
                )
                if attempt < self.config.max_retries - 1:
                    await asyncio.sleep(2 ** (attempt + 1))
                else:
                    raise

        raise EmbeddingError("Exhausted all retry attempts")

    async def embed(self, text: str, task_type: TaskType) -> list[float]:
        url = f"{GOOGLE_API_BASE}/models/{self.model_name}:embedContent"
        data = await self._post(url, self._request_body(text, task_type))
        try:
            return [float(v) for v in data["embedding"]["values"]]
        except (KeyError, TypeError) as e:
            raise EmbeddingError(f"Malformed Gemini embedding response: {data!r}") from e

    async def embed_batch(self, texts: list[str], task_type: TaskType) -> list[list[float]]:
        url = f"{GOOGLE_API_BASE}/models/{self.model_name}:batchEmbedContents"
        vectors: list[list[float]] = []
        for batch in _batches(texts, self.config.batch_size):
            body = {"requests": [self._request_body(text, task_type) for text in batch]}
            data = await self._post(url, body)
            try:
                vectors.extend([float(v) for v in emb["values"]] for emb in data["embeddings"])
            except (KeyError, TypeError) as e:
                raise EmbeddingError(f"Malformed Gemini batch response: {data!r}") from e
        return vectors

    async def close(self) -> None:
        await self.client.aclose()


class CachedEmbeddingService:
    """LRU cache in front of another embedding service.

    Entries are keyed by a SHA-256 digest of the task type and text, so
    documents and queries with the same text are cached separately.
    """

    def __init__(self, delegate: EmbeddingService, max_size: int = 10000):
        if max_size < 1:
            raise ValueError(f"max_size must be positive, got {max_size}")
        self.delegate = delegate
        self.max_size = max_size
        self._cache: OrderedDict[str, list[float]] = OrderedDict()
        self.hits = 0
        self.misses = 0

    @property
    def provider_name(self) -> str:
        return getattr(self.delegate, "provider_name", type(self.delegate).__name__)

    @property
    def model_name(self) -> str:
        return getattr(self.delegate, "model_name", "unknown")

    @property
    def dimension(self) -> int:
        return self.delegate.dimension

    def __len__(self) -> int:
        return len(self._cache)

    @staticmethod
    def _key(text: str, task_type: TaskType) -> str:
        return hashlib.sha256(f"{task_type.value}\x00{text}".encode()).hexdigest()

    def _get(self, key: str) -> list[float] | None:
        vector = self._cache.get(key)
        if vector is None:
            self.misses += 1
            return None
        self.hits += 1
        self._cache.move_to_end(key)
        return vector

    def _put(self, key: str, vector: list[float]) -> None:
        self._cache[key] = vector
        self._cache.move_to_end(key)
        while len(self._cache) > self.max_size:
            self._cache.popitem(last=False)

    async def embed(self, text: str, task_type: TaskType) -> list[float]:
        key = self._key(text, task_type)
        cached = self._get(key)
        if cached is not None:
            return cached
        vector = await self.delegate.embed(text, task_type)
        self._put(key, vector)
        return vector

    async def embed_batch(self, texts: list[str], task_type: TaskType) -> list[list[float]]:
        keys = [self._key(text, task_type) for text in texts]
        results: list[list[float] | None] = [self._get(key) for key in keys]
        missing = [i for i, vector in enumerate(results) if vector is None]
        if missing:
            fresh = await self.delegate.embed_batch([texts[i] for i in missing], task_type)
            for i, vector in zip(missing, fresh, strict=True):
                self._put(keys[i], vector)
                results[i] = vector
        return [vector for vector in results if vector is not None]

    async def close(self) -> None:
        await self.delegate.close()


def create_embedding_service(config: EmbeddingConfig) -> EmbeddingService:
    """Factory function to create an embedding service from config.

    Remote providers without an API key, and unknown providers, fall back
    to the local model with a warning.

    Args:
        config: Embedding configuration

    Returns:
        Embedding service, wrapped in an LRU cache when `cache_size > 0`

    Example:
        >>> config = EmbeddingConfig(provider="openai", model="text-embedding-3-small",
        ...                          api_key="sk-...")
        >>> service = create_embedding_service(config)
    """
    provider = config.provider.lower()
    service: EmbeddingService
    if provider in ("openai", "google") and not config.api_key:
        logger.warning(f"No API key configured for {provider} embeddings, using local model")
        service = LocalEmbedding(
            config.model_copy(update={"model": DEFAULT_LOCAL_MODEL, "dimensions": None})
        )
    elif provider == "openai":
        service = OpenAIEmbedding(config)
    elif provider == "google":
        service = GoogleEmbedding(config)
    elif provider == "local":
        service = LocalEmbedding(config)
    else:
        logger.warning(f"Unknown embedding provider {config.provider!r}, using local model")
        service = LocalEmbedding(config.model_copy(update={"dimensions": None}))

    if config.cache_size > 0:
        return CachedEmbeddingService(service, max_size=config.cache_size)
    return service


def embedding_metadata(service: EmbeddingService) -> ProviderMetadata:
    """Describe the provider, model and dimension behind an embedding service.

    Services that do not declare `provider_name` or `model_name` are
    identified by their class name.
    """
    return ProviderMetadata(
        provider=getattr(service, "provider_name", type(service).__name__),
        model=getattr(service, "model_name", "unknown"),
        dimension=service.dimension,
    )
