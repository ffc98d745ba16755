"""Embedding/index refresh collaborator.

Called once at the end of a full sync as an opaque post-pass. The sync
layer does not know how embeddings are produced; it only needs a count
and a list of errors back.
"""
import logging
from typing import Any, Dict, Optional, Protocol

import httpx

logger = logging.getLogger(__name__)


class EmbeddingIndex(Protocol):
    async def update_all_embeddings(self) -> Dict[str, Any]:
        """Return ``{"updated": int, "errors": [str]}``."""
        ...


class NullEmbeddingIndex:
    """Used when no embedding service is configured."""

    async def update_all_embeddings(self) -> Dict[str, Any]:
        logger.info("No embedding service configured, skipping refresh")
        return {'updated': 0, 'errors': []}


class RemoteEmbeddingIndex:
    """Triggers a refresh on an external embedding service over HTTP."""

    def __init__(self, refresh_url: str, timeout: float = 30.0,
                 transport: Optional[httpx.AsyncBaseTransport] = None):
        self.refresh_url = refresh_url
        self.timeout = timeout
        self._transport = transport

    async def update_all_embeddings(self) -> Dict[str, Any]:
        try:
            async with httpx.AsyncClient(timeout=self.timeout, transport=self._transport) as client:
                response = await client.post(self.refresh_url)
                response.raise_for_status()
                body = response.json()
        except (httpx.HTTPError, ValueError) as e:
            logger.error(f"Embedding refresh failed: {e}")
            return {'updated': 0, 'errors': [f"Embedding refresh failed: {e}"]}

        return {
            'updated': int(body.get('updated', 0)),
            'errors': [str(error) for error in body.get('errors', [])],
        }


def build_embedding_index(refresh_url: Optional[str], timeout: float = 30.0) -> EmbeddingIndex:
    if refresh_url:
        return RemoteEmbeddingIndex(refresh_url, timeout=timeout)
    return NullEmbeddingIndex()
