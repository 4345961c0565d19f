"""Tests for the HTTP document fetcher."""

import httpx
import pytest

from services.regulatory_truth.e2e.fetcher import HttpDocumentFetcher, parse_source
from services.regulatory_truth.e2e.runner import SourceEndpoint


def handler(request: httpx.Request) -> httpx.Response:
    if request.url.path == "/vat":
        return httpx.Response(
            200,
            text="<p>The standard VAT rate is 25%</p>",
            headers={"content-type": "text/html; charset=utf-8"},
        )
    return httpx.Response(404)


class TestHttpDocumentFetcher:
    """Tests for HttpDocumentFetcher.fetch."""

    @pytest.mark.asyncio
    async def test_fetches_document(self) -> None:
        async with HttpDocumentFetcher(transport=httpx.MockTransport(handler)) as fetcher:
            document = await fetcher.fetch("https://gov.example/vat")

        assert document.url == "https://gov.example/vat"
        assert document.content_type == "text/html"
        assert "25%" in document.content

    @pytest.mark.asyncio
    async def test_error_status_raises(self) -> None:
        async with HttpDocumentFetcher(transport=httpx.MockTransport(handler)) as fetcher:
            with pytest.raises(httpx.HTTPStatusError):
                await fetcher.fetch("https://gov.example/missing")


class TestParseSource:
    """Tests for parse_source."""

    def test_with_hierarchy(self) -> None:
        assert parse_source("vat=https://gov.example/vat@1") == SourceEndpoint("vat", "https://gov.example/vat", 1)

    def test_without_hierarchy(self) -> None:
        assert parse_source("vat=https://gov.example/vat") == SourceEndpoint("vat", "https://gov.example/vat")

    def test_at_sign_in_url_is_kept(self) -> None:
        source = parse_source("feed=https://user@gov.example/feed")
        assert source.url == "https://user@gov.example/feed"
        assert source.source_hierarchy is None

    @pytest.mark.parametrize("value", ["no-separator", "=https://gov.example", "vat="])
    def test_invalid(self, value: str) -> None:
        with pytest.raises(ValueError):
            parse_source(value)
