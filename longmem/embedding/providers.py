"""
Embedding vendor integration for memory vectors
"""

import math
from abc import ABC, abstractmethod
from typing import Any, Dict, List, Optional, Type

import httpx

from ..config import EmbeddingConfig, EmbeddingVendor, vector_dims_for_model
from ..core.errors import DimensionMismatchError, EmptyInputError, VendorError
from ..logging import get_logger
from .cache import EmbeddingCache

# Vendors accept larger batches; 128 keeps request bodies small
BATCH_SIZE = 128


def normalize_base_url(url: str) -> str:
    """Trim whitespace, trailing slashes and a trailing /v1 from an API root"""
    u = url.strip().rstrip("/")
    if u.lower().endswith("/v1"):
        u = u[:-3]
    return u.rstrip("/")


class EmbeddingProvider(ABC):
    """
    Abstract base class for embedding vendors.

    Subclasses only describe the vendor wire format; caching, batching,
    validation and error mapping live here.
    """

    vendor: str = "generic"
    default_url: str = ""
    query_input_type: Optional[str] = "query"
    passage_input_type: Optional[str] = "passage"

    def __init__(
        self,
        api_key: str,
        model: str,
        dimensions: Optional[int] = None,
        base_url: Optional[str] = None,
        timeout_seconds: float = 10.0,
        cache: Optional[EmbeddingCache] = None,
        client: Optional[httpx.AsyncClient] = None
    ):
        self.api_key = api_key
        self._model = model
        self._dimensions = vector_dims_for_model(model, dimensions)
        self.url = f"{normalize_base_url(base_url)}/v1/embeddings" if base_url else self.default_url
        self.cache = cache or EmbeddingCache()
        self._owns_client = client is None
        self.client = client or httpx.AsyncClient(timeout=timeout_seconds)
        self.logger = get_logger(__name__)

    @property
    def dimensions(self) -> int:
        return self._dimensions

    @property
    def model(self) -> str:
        return self._model

    @property
    def cache_stats(self) -> Dict[str, Any]:
        return self.cache.stats

    @abstractmethod
    def _build_request_body(self, texts: List[str], input_type: Optional[str]) -> Dict[str, Any]:
        """Vendor-specific JSON body for a batch of texts"""
        pass

    # Public API

    async def embed(self, text: str) -> List[float]:
        return await self.embed_passage(text)

    async def embed_query(self, text: str) -> List[float]:
        return await self._embed_single(text, self.query_input_type)

    async def embed_passage(self, text: str) -> List[float]:
        return await self._embed_single(text, self.passage_input_type)

    async def embed_batch(self, texts: List[str]) -> List[List[float]]:
        return await self.embed_batch_passage(texts)

    async def embed_batch_query(self, texts: List[str]) -> List[List[float]]:
        return await self._embed_many(texts, self.query_input_type)

    async def embed_batch_passage(self, texts: List[str]) -> List[List[float]]:
        return await self._embed_many(texts, self.passage_input_type)

    async def test(self) -> Dict[str, Any]:
        """Embed a probe passage and report whether the vendor answers"""
        try:
            vector = await self.embed_passage("test")
            return {"success": True, "dimensions": len(vector)}
        except Exception as e:
            return {"success": False, "error": str(e)}

    async def close(self):
        """Close the HTTP client if this provider created it"""
        if self._owns_client:
            await self.client.aclose()

    # Internals

    def _validate_embedding(self, embedding: Any) -> List[float]:
        if not isinstance(embedding, list):
            raise VendorError(
                f"{self.vendor} returned a non-list embedding ({type(embedding).__name__})",
                vendor=self.vendor
            )
        if len(embedding) != self._dimensions:
            raise DimensionMismatchError(self._dimensions, len(embedding), context="Embedding")
        try:
            vector = [float(v) for v in embedding]
        except (TypeError, ValueError) as e:
            raise VendorError(f"{self.vendor} returned non-numeric embedding values", vendor=self.vendor) from e
        if not all(math.isfinite(v) for v in vector):
            raise VendorError(f"{self.vendor} returned non-finite embedding values", vendor=self.vendor)
        return vector

    async def _embed_single(self, text: str, input_type: Optional[str]) -> List[float]:
        if not text or not text.strip():
            raise EmptyInputError("Cannot embed empty text")

        cached = self.cache.get(text, input_type)
        if cached is not None:
            return cached

        embeddings = await self._call_api(self._build_request_body([text], input_type), expected=1)
        vector = self._validate_embedding(embeddings[0])
        self.cache.set(text, input_type, vector)
        return vector

    async def _embed_many(self, texts: List[str], input_type: Optional[str]) -> List[List[float]]:
        if not texts:
            return []

        results: List[Optional[List[float]]] = [None] * len(texts)
        pending: List[int] = []

        for index, text in enumerate(texts):
            if not text or not text.strip():
                results[index] = []
                continue
            cached = self.cache.get(text, input_type)
            if cached is not None:
                results[index] = cached
            else:
                pending.append(index)

        for start in range(0, len(pending), BATCH_SIZE):
            batch_indices = pending[start:start + BATCH_SIZE]
            batch_texts = [texts[i] for i in batch_indices]

            embeddings = await self._call_api(
                self._build_request_body(batch_texts, input_type),
                expected=len(batch_texts)
            )

            for original_index, text, embedding in zip(batch_indices, batch_texts, embeddings):
                vector = self._validate_embedding(embedding)
                self.cache.set(text, input_type, vector)
                results[original_index] = vector

        return [vector if vector is not None else [] for vector in results]

    async def _call_api(self, body: Dict[str, Any], expected: int) -> List[Any]:
        """POST to the vendor and return embeddings aligned to input order"""
        headers = {
            "Content-Type": "application/json",
            "Authorization": f"Bearer {self.api_key}",
        }

        try:
            response = await self.client.post(self.url, json=body, headers=headers)
        except httpx.TimeoutException as e:
            raise VendorError(f"{self.vendor} embedding request timed out", vendor=self.vendor) from e
        except httpx.HTTPError as e:
            raise VendorError(f"{self.vendor} embedding request failed: {e}", vendor=self.vendor) from e

        if not response.is_success:
            raise VendorError(
                f"{self.vendor} embedding API returned {response.status_code}: {response.text[:200]}",
                status=response.status_code,
                vendor=self.vendor
            )

        try:
            payload = response.json()
        except ValueError as e:
            raise VendorError(f"{self.vendor} returned a non-JSON body", status=response.status_code,
                              vendor=self.vendor) from e

        data = payload.get("data") if isinstance(payload, dict) else None
        if not isinstance(data, list) or len(data) != expected:
            raise VendorError(
                f"{self.vendor} returned {len(data) if isinstance(data, list) else 'no'} embeddings, expected {expected}",
                status=response.status_code,
                vendor=self.vendor
            )
        if not all(isinstance(item, dict) and "embedding" in item for item in data):
            raise VendorError(f"{self.vendor} returned malformed embedding items",
                              status=response.status_code, vendor=self.vendor)

        # Align by the vendor's index field when every item carries one
        if all(isinstance(item.get("index"), int) for item in data):
            data = sorted(data, key=lambda item: item["index"])

        return [item["embedding"] for item in data]


class VoyageEmbeddingProvider(EmbeddingProvider):
    """Voyage AI embeddings with query/document input types"""

    vendor = "voyage"
    default_url = "https://api.voyageai.com/v1/embeddings"
    passage_input_type = "document"

    def _build_request_body(self, texts: List[str], input_type: Optional[str]) -> Dict[str, Any]:
        body: Dict[str, Any] = {"model": self.model, "input": texts}
        if input_type:
            body["input_type"] = input_type
        return body


class OpenAIEmbeddingProvider(EmbeddingProvider):
    """OpenAI embeddings; no input types, optional dimensions truncation"""

    vendor = "openai"
    default_url = "https://api.openai.com/v1/embeddings"

    def __init__(self, *args, **kwargs):
        super().__init__(*args, **kwargs)
        # text-embedding-3-* models accept a dimensions parameter
        self._supports_dimensions_param = self.model.startswith("text-embedding-3-")

    def _build_request_body(self, texts: List[str], input_type: Optional[str]) -> Dict[str, Any]:
        # input_type only partitions the cache for this vendor
        body: Dict[str, Any] = {"model": self.model, "input": texts}
        if self._supports_dimensions_param:
            body["dimensions"] = self.dimensions
        return body


class JinaEmbeddingProvider(EmbeddingProvider):
    """Jina AI embeddings; v3 models take a retrieval task"""

    vendor = "jina"
    default_url = "https://api.jina.ai/v1/embeddings"
    query_input_type = "retrieval.query"
    passage_input_type = "retrieval.passage"

    def __init__(self, *args, **kwargs):
        super().__init__(*args, **kwargs)
        self._supports_task_param = "v3" in self.model

    def _build_request_body(self, texts: List[str], input_type: Optional[str]) -> Dict[str, Any]:
        body: Dict[str, Any] = {"model": self.model, "input": texts}
        if self._supports_task_param and input_type:
            body["task"] = input_type
        return body


PROVIDERS: Dict[EmbeddingVendor, Type[EmbeddingProvider]] = {
    EmbeddingVendor.VOYAGE: VoyageEmbeddingProvider,
    EmbeddingVendor.OPENAI: OpenAIEmbeddingProvider,
    EmbeddingVendor.JINA: JinaEmbeddingProvider,
}


def create_embedding_provider(
    config: EmbeddingConfig,
    client: Optional[httpx.AsyncClient] = None
) -> EmbeddingProvider:
    """
    Build the embedding provider selected by config.

    Args:
        config: Embedding section of the configuration
        client: Optional shared HTTP client (tests inject a mock transport)

    Returns:
        Vendor-specific EmbeddingProvider

    Raises:
        ValueError: Unknown vendor or missing API key
    """
    try:
        vendor = EmbeddingVendor(config.provider)
    except ValueError:
        supported = ", ".join(v.value for v in EmbeddingVendor)
        raise ValueError(f"Unknown embedding provider: {config.provider}. Supported providers: {supported}")

    if not config.api_key:
        raise ValueError(f"An API key is required for the {vendor.value} embedding provider")

    provider_cls = PROVIDERS[vendor]
    return provider_cls(
        api_key=config.api_key,
        model=config.model,
        dimensions=config.dimensions,
        base_url=config.base_url,
        timeout_seconds=config.timeout_seconds,
        cache=EmbeddingCache(config.cache_max_size, config.cache_ttl_minutes),
        client=client
    )
