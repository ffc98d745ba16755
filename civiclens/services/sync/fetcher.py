"""Raw-fetch collaborator used by every source adapter.

Adapters only see ``fetch(url)`` and ``parse(document)``. HTML, PDF and CSV
mechanics live behind injected parsers; the default fetcher understands JSON
and plain text only.
"""
import json
import logging
from dataclasses import dataclass
from typing import Any, Callable, Dict, Optional, Protocol, runtime_checkable

import httpx

from civiclens.services.sync.errors import TransportError, UnsupportedContentType

logger = logging.getLogger(__name__)

Parser = Callable[["FetchedDocument"], Any]


@dataclass
class FetchedDocument:
    url: str
    content: bytes
    content_type: str
    etag: Optional[str] = None
    last_modified: Optional[str] = None

    @property
    def media_type(self) -> str:
        """Content type without parameters, e.g. ``application/json``."""
        return (self.content_type or '').split(';', 1)[0].strip().lower()

    @property
    def text(self) -> str:
        return self.content.decode('utf-8', errors='replace')


@runtime_checkable
class SourceFetcher(Protocol):
    """Contract between adapters and whatever retrieves upstream documents."""

    async def fetch(self, url: str) -> FetchedDocument:
        """Retrieve ``url``; raise TransportError on network or HTTP failure."""
        ...

    def parse(self, document: FetchedDocument) -> Any:
        """Turn a fetched document into a payload of plain dicts and lists."""
        ...


def parse_json(document: FetchedDocument) -> Any:
    return json.loads(document.text)


def parse_text(document: FetchedDocument) -> Any:
    return {'text': document.text}


DEFAULT_PARSERS: Dict[str, Parser] = {
    'application/json': parse_json,
    'text/json': parse_json,
    'text/plain': parse_text,
}


class HttpSourceFetcher:
    """
    httpx-backed fetcher with a per-request timeout.

    The client is created lazily and reused until ``close()``.
    """

    def __init__(
        self,
        timeout: float = 30.0,
        parsers: Optional[Dict[str, Parser]] = None,
        user_agent: str = "CivicLens-Sync/1.0",
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        self.timeout = timeout
        self.parsers = dict(DEFAULT_PARSERS)
        if parsers:
            self.parsers.update(parsers)
        self.user_agent = user_agent
        self._transport = transport
        self._client: Optional[httpx.AsyncClient] = None

    async def _get_client(self) -> httpx.AsyncClient:
        if self._client is None:
            self._client = httpx.AsyncClient(
                timeout=httpx.Timeout(self.timeout),
                headers={"User-Agent": self.user_agent},
                follow_redirects=True,
                transport=self._transport,
            )
        return self._client

    async def fetch(self, url: str) -> FetchedDocument:
        client = await self._get_client()
        try:
            response = await client.get(url)
            response.raise_for_status()
        except httpx.HTTPStatusError as e:
            raise TransportError(
                f"HTTP {e.response.status_code} from {url}",
                status_code=e.response.status_code,
                url=url,
            ) from e
        except httpx.HTTPError as e:
            raise TransportError(f"Request to {url} failed: {e!r}", url=url) from e

        logger.debug(f"Fetched {url} ({len(response.content)} bytes)")
        return FetchedDocument(
            url=url,
            content=response.content,
            content_type=response.headers.get('content-type', 'application/octet-stream'),
            etag=response.headers.get('etag'),
            last_modified=response.headers.get('last-modified'),
        )

    def parse(self, document: FetchedDocument) -> Any:
        parser = self.parsers.get(document.media_type)
        if parser is None:
            raise UnsupportedContentType(
                f"No parser registered for '{document.media_type}' ({document.url})"
            )
        return parser(document)

    async def close(self):
        if self._client:
            await self._client.aclose()
            self._client = None
