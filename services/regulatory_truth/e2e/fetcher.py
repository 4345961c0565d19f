"""
HTTP Document Fetcher
=====================

Downloads monitored source documents for the live runner's fetch phase.

Retries and the per-request timeout are applied by the runner; this
client only raises on transport errors and non-2xx responses.

Version: 0.1.0
"""

from typing import Any

import httpx

from services.regulatory_truth.e2e.runner import FetchedDocument, SourceEndpoint
from shared.logging import get_logger


logger = get_logger(__name__)


DEFAULT_USER_AGENT = "regtruth-fetcher/0.1.0"


class HttpDocumentFetcher:
    """
    Source fetcher backed by ``httpx.AsyncClient``.

    Args:
        timeout: Request timeout in seconds
        user_agent: User-Agent header sent with every request
        transport: Optional transport override
    """

    def __init__(
        self,
        timeout: float = 30.0,
        user_agent: str = DEFAULT_USER_AGENT,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        self._client = httpx.AsyncClient(
            timeout=httpx.Timeout(timeout),
            headers={"User-Agent": user_agent},
            follow_redirects=True,
            transport=transport,
        )

    async def fetch(self, url: str) -> FetchedDocument:
        """
        Download a document.

        Raises:
            httpx.HTTPError: on transport failures and non-2xx responses
        """
        response = await self._client.get(url)
        response.raise_for_status()

        content_type = response.headers.get("content-type")
        if content_type:
            content_type = content_type.split(";", 1)[0].strip().lower()

        logger.debug(
            "document_fetched",
            url=url,
            status_code=response.status_code,
            content_type=content_type,
            size=len(response.content),
        )
        return FetchedDocument(url=str(response.url), content=response.text, content_type=content_type)

    async def close(self) -> None:
        await self._client.aclose()

    async def __aenter__(self) -> "HttpDocumentFetcher":
        return self

    async def __aexit__(self, *exc_info: Any) -> None:
        await self.close()


def parse_source(value: str) -> SourceEndpoint:
    """
    Parse ``endpoint_id=url`` or ``endpoint_id=url@hierarchy``.

    Raises:
        ValueError: if the endpoint ID or URL is missing
    """
    endpoint_id, sep, rest = value.partition("=")
    if not sep or not endpoint_id.strip() or not rest.strip():
        raise ValueError(f"Expected endpoint_id=url, got {value!r}")

    url, at, hierarchy = rest.rpartition("@")
    if at and hierarchy.isdigit():
        return SourceEndpoint(endpoint_id.strip(), url.strip(), int(hierarchy))
    return SourceEndpoint(endpoint_id.strip(), rest.strip())
