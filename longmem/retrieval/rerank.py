"""
Cross-encoder reranking through an external rerank API
"""

import math
from typing import List, Optional, Tuple

import httpx

from ..config import RerankConfig
from ..core.errors import VendorError
from ..logging import get_logger


class CrossEncoderReranker:
    """
    Client for a Voyage-compatible rerank endpoint.

    Request body: {model, query, documents, top_k}. The response may list
    results under "data" or "results"; each item carries the document index
    and a relevance score.
    """

    vendor = "rerank"

    def __init__(
        self,
        config: RerankConfig,
        model: str = "rerank-2",
        client: Optional[httpx.AsyncClient] = None
    ):
        self.config = config
        self.model = model
        self._owns_client = client is None
        self.client = client or httpx.AsyncClient(timeout=config.timeout_seconds)
        self.logger = get_logger(__name__)

    @property
    def available(self) -> bool:
        """Whether a credential is configured"""
        return bool(self.config.api_key)

    async def rerank(
        self,
        query: str,
        documents: List[str],
        model: Optional[str] = None
    ) -> List[Tuple[int, float]]:
        """
        Score documents against the query, optionally overriding the model.

        Returns:
            (document index, relevance score) pairs in vendor order; indices
            outside the document list are dropped

        Raises:
            VendorError: Missing credential, transport failure, timeout,
                non-2xx status or malformed payload
        """
        if not documents:
            return []
        if not self.available:
            raise VendorError("No rerank API key configured", vendor=self.vendor)

        body = {
            "model": model or self.model,
            "query": query,
            "documents": documents,
            "top_k": len(documents),
        }
        headers = {
            "Content-Type": "application/json",
            "Authorization": f"Bearer {self.config.api_key}",
        }

        try:
            response = await self.client.post(
                self.config.endpoint, json=body, headers=headers,
                timeout=self.config.timeout_seconds
            )
        except httpx.TimeoutException as e:
            raise VendorError(f"Rerank request timed out after {self.config.timeout_seconds}s",
                              vendor=self.vendor) from e
        except httpx.HTTPError as e:
            raise VendorError(f"Rerank request failed: {e}", vendor=self.vendor) from e

        if not response.is_success:
            raise VendorError(f"Rerank API returned {response.status_code}",
                              status=response.status_code, vendor=self.vendor)

        try:
            payload = response.json()
        except ValueError as e:
            raise VendorError("Rerank API returned a non-JSON body",
                              status=response.status_code, vendor=self.vendor) from e

        items = None
        if isinstance(payload, dict):
            items = payload.get("data", payload.get("results"))
        if not isinstance(items, list):
            raise VendorError("Rerank API returned an invalid response shape",
                              status=response.status_code, vendor=self.vendor)

        scored: List[Tuple[int, float]] = []
        for item in items:
            if not isinstance(item, dict):
                raise VendorError("Rerank API returned a malformed result item",
                                  status=response.status_code, vendor=self.vendor)
            index = item.get("index")
            relevance = item.get("relevance_score")
            if (not isinstance(index, int) or isinstance(relevance, bool)
                    or not isinstance(relevance, (int, float)) or not math.isfinite(relevance)):
                raise VendorError("Rerank API returned a malformed result item",
                                  status=response.status_code, vendor=self.vendor)
            if 0 <= index < len(documents):
                scored.append((index, float(relevance)))

        return scored

    async def close(self):
        if self._owns_client:
            await self.client.aclose()
