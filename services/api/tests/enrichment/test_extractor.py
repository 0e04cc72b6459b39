"""
Firecrawl extractor tests.

Covers:
- Wikipedia URL construction
- request shape sent to /v1/scrape
- structured extract, markdown fallback, ogImage
- provider failures: envelope errors, HTTP status, 404 page, disambiguation
- markdown cleanup and section parsing
"""

import json

import httpx
import pytest

from services.api.enrichment.errors import EnrichmentError, ErrorCode, classify_error
from services.api.enrichment.extractor import (
    CITY_EXTRACTION_SCHEMA,
    MAX_SECTION_LENGTHS,
    FirecrawlExtractor,
    clean_wikipedia_markdown,
    construct_wikipedia_url,
    parse_wikipedia_sections,
    truncate_text,
)

URL = "https://en.wikipedia.org/wiki/Kyoto,_Japan"

ARTICLE_MARKDOWN = """\
[Jump to content](#bodyContent)

From Wikipedia, the free encyclopedia

Kyoto is the capital city of Kyoto Prefecture in Japan.

![Skyline](https://upload.wikimedia.org/kyoto.jpg)

## History

Kyoto was the imperial capital for over a millennium.

## Geography

Kyoto lies in a valley surrounded by mountains.

## Climate

Humid subtropical climate with hot summers.

## Sister cities

Paris, Boston.

## Transportation

Kyoto Station is served by the Tokaido Shinkansen.

## History of the imperial palace

A second history section that must not replace the first.
"""


def _client(handler) -> httpx.AsyncClient:
    return httpx.AsyncClient(transport=httpx.MockTransport(handler))


def _ok(data: dict) -> httpx.Response:
    return httpx.Response(200, json={"success": True, "data": data})


# ===================================================================
# Helpers
# ===================================================================


class TestConstructWikipediaUrl:
    def test_city_and_country(self):
        assert construct_wikipedia_url("Kyoto", "Japan") == URL

    def test_spaces_become_underscores(self):
        assert (
            construct_wikipedia_url("New York City", "United States")
            == "https://en.wikipedia.org/wiki/New_York_City,_United_States"
        )

    def test_non_ascii_is_percent_encoded(self):
        url = construct_wikipedia_url("São Paulo", "Brazil")
        assert url == "https://en.wikipedia.org/wiki/S%C3%A3o_Paulo,_Brazil"


class TestTruncateText:
    def test_short_text_untouched(self):
        assert truncate_text("abc", 10) == "abc"

    def test_long_text_truncated_with_ellipsis(self):
        out = truncate_text("x" * 50, 10)
        assert out == "x" * 7 + "..."

    def test_empty_is_none(self):
        assert truncate_text("", 10) is None
        assert truncate_text(None, 10) is None


class TestMarkdownParsing:
    def test_clean_strips_chrome_and_images(self):
        cleaned = clean_wikipedia_markdown(ARTICLE_MARKDOWN)
        assert "Jump to content" not in cleaned
        assert "From Wikipedia" not in cleaned
        assert "![" not in cleaned
        assert cleaned.startswith("Kyoto is the capital city")

    def test_clean_empty(self):
        assert clean_wikipedia_markdown("") == ""

    def test_sections(self):
        sections = parse_wikipedia_sections(clean_wikipedia_markdown(ARTICLE_MARKDOWN))
        assert sections["description"] == "Kyoto is the capital city of Kyoto Prefecture in Japan."
        assert sections["history"] == "Kyoto was the imperial capital for over a millennium."
        assert sections["geography"].startswith("Kyoto lies in a valley")
        assert sections["climate"].startswith("Humid subtropical")
        assert sections["transportation"].startswith("Kyoto Station")

    def test_unknown_sections_skipped(self):
        sections = parse_wikipedia_sections(clean_wikipedia_markdown(ARTICLE_MARKDOWN))
        assert all("Paris, Boston" not in text for text in sections.values())

    def test_first_occurrence_wins(self):
        sections = parse_wikipedia_sections(clean_wikipedia_markdown(ARTICLE_MARKDOWN))
        assert "second history" not in sections["history"]

    def test_sections_truncated(self):
        markdown = "Intro.\n\n## History\n\n" + "h" * 10_000
        sections = parse_wikipedia_sections(markdown)
        assert len(sections["history"]) == MAX_SECTION_LENGTHS["history"]
        assert sections["history"].endswith("...")


# ===================================================================
# FirecrawlExtractor
# ===================================================================


class TestFirecrawlExtractor:
    @pytest.mark.asyncio
    async def test_request_shape(self):
        captured = {}

        def handler(request: httpx.Request) -> httpx.Response:
            captured["url"] = str(request.url)
            captured["auth"] = request.headers["authorization"]
            captured["body"] = json.loads(request.content)
            return _ok({"extract": {"description": "Kyoto."}})

        async with _client(handler) as client:
            extractor = FirecrawlExtractor("fc-key", client=client)
            await extractor.extract(URL, CITY_EXTRACTION_SCHEMA, timeout_s=30.0)

        assert captured["url"] == "https://api.firecrawl.dev/v1/scrape"
        assert captured["auth"] == "Bearer fc-key"
        assert captured["body"]["url"] == URL
        assert captured["body"]["formats"] == ["extract", "markdown"]
        assert captured["body"]["extract"]["schema"] == CITY_EXTRACTION_SCHEMA
        assert captured["body"]["timeout"] == 30_000

    @pytest.mark.asyncio
    async def test_structured_extract(self):
        def handler(request):
            return _ok({
                "extract": {"description": "Kyoto.", "history": "Old."},
                "metadata": {"statusCode": 200, "ogImage": "https://img/kyoto.jpg"},
            })

        async with _client(handler) as client:
            fields = await FirecrawlExtractor("k", client=client).extract(URL, {}, 5.0)

        assert fields == {
            "description": "Kyoto.",
            "history": "Old.",
            "image_url": "https://img/kyoto.jpg",
        }

    @pytest.mark.asyncio
    async def test_json_key_accepted(self):
        def handler(request):
            return _ok({"json": {"description": "Kyoto."}})

        async with _client(handler) as client:
            fields = await FirecrawlExtractor("k", client=client).extract(URL, {}, 5.0)
        assert fields["description"] == "Kyoto."

    @pytest.mark.asyncio
    async def test_markdown_fallback(self):
        def handler(request):
            return _ok({"markdown": ARTICLE_MARKDOWN, "metadata": {"statusCode": 200}})

        async with _client(handler) as client:
            fields = await FirecrawlExtractor("k", client=client).extract(URL, {}, 5.0)

        assert fields["description"].startswith("Kyoto is the capital city")
        assert "history" in fields

    @pytest.mark.asyncio
    async def test_page_404(self):
        def handler(request):
            return _ok({"markdown": "Wikipedia does not have an article", "metadata": {"statusCode": 404}})

        async with _client(handler) as client:
            with pytest.raises(EnrichmentError) as exc_info:
                await FirecrawlExtractor("k", client=client).extract(URL, {}, 5.0)
        assert exc_info.value.code == ErrorCode.WIKIPEDIA_NOT_FOUND

    @pytest.mark.asyncio
    async def test_disambiguation_page(self):
        def handler(request):
            return _ok({"markdown": "**Springfield** may refer to:\n\n* Springfield, Illinois"})

        async with _client(handler) as client:
            with pytest.raises(EnrichmentError) as exc_info:
                await FirecrawlExtractor("k", client=client).extract(URL, {}, 5.0)
        assert exc_info.value.code == ErrorCode.WIKIPEDIA_NOT_FOUND

    @pytest.mark.asyncio
    async def test_envelope_error_is_classified(self):
        def handler(request):
            return httpx.Response(200, json={"success": False, "error": "Rate limit exceeded"})

        async with _client(handler) as client:
            with pytest.raises(EnrichmentError) as exc_info:
                await FirecrawlExtractor("k", client=client).extract(URL, {}, 5.0)
        assert exc_info.value.code == ErrorCode.RATE_LIMITED

    @pytest.mark.asyncio
    async def test_http_status_error_propagates(self):
        def handler(request):
            return httpx.Response(401, json={"error": "Unauthorized"})

        async with _client(handler) as client:
            with pytest.raises(httpx.HTTPStatusError) as exc_info:
                await FirecrawlExtractor("k", client=client).extract(URL, {}, 5.0)
        assert classify_error(exc_info.value) == ErrorCode.AUTH_FAILED

    @pytest.mark.asyncio
    async def test_transport_error_propagates(self):
        def handler(request):
            raise httpx.ConnectError("connection refused", request=request)

        async with _client(handler) as client:
            with pytest.raises(httpx.ConnectError) as exc_info:
                await FirecrawlExtractor("k", client=client).extract(URL, {}, 5.0)
        assert classify_error(exc_info.value) == ErrorCode.NETWORK_ERROR

    @pytest.mark.asyncio
    async def test_missing_api_key(self):
        with pytest.raises(EnrichmentError) as exc_info:
            await FirecrawlExtractor("").extract(URL, {}, 5.0)
        assert exc_info.value.code == ErrorCode.AUTH_FAILED

    @pytest.mark.asyncio
    async def test_caller_owned_client_left_open(self):
        def handler(request):
            return _ok({"extract": {"description": "Kyoto."}})

        async with _client(handler) as client:
            await FirecrawlExtractor("k", client=client).extract(URL, {}, 5.0)
            assert client.is_closed is False
