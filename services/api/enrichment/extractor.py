"""
Content extraction from Wikipedia via the Firecrawl scrape API.

The provider is called with a JSON schema describing the city fields we want
and returns a structured field map. When the structured extract is missing
(schema extraction is best-effort on the provider side) the page markdown is
cleaned and split into sections instead.

Usage:
    extractor = FirecrawlExtractor(api_key=settings.firecrawl_api_key)
    url = construct_wikipedia_url("Porto", "Portugal")
    fields = await extractor.extract(url, CITY_EXTRACTION_SCHEMA, timeout_s=30.0)
"""

import logging
import re
from typing import Any, Optional, Protocol
from urllib.parse import quote

import httpx

from services.api.enrichment.errors import EnrichmentError, ErrorCode, classify_message

logger = logging.getLogger(__name__)

DEFAULT_BASE_URL = "https://api.firecrawl.dev"
WIKIPEDIA_BASE_URL = "https://en.wikipedia.org/wiki/"

MAX_SECTION_LENGTHS = {
    "description": 5000,
    "history": 3000,
    "geography": 2000,
    "climate": 2000,
    "transportation": 2000,
}

_POI_ITEMS = {
    "type": "object",
    "properties": {
        "name": {"type": "string"},
        "description": {"type": "string", "description": "1-2 sentences"},
    },
}

CITY_EXTRACTION_SCHEMA: dict[str, Any] = {
    "type": "object",
    "properties": {
        "name": {"type": "string", "description": "The official name of the city"},
        "description": {
            "type": "string",
            "description": "A comprehensive overview/introduction of the city (2-4 paragraphs)",
        },
        "history": {
            "type": "string",
            "description": "Historical background of the city, including major events and development",
        },
        "geography": {
            "type": "string",
            "description": "Geographic features, topography, location details",
        },
        "climate": {
            "type": "string",
            "description": "Weather patterns, seasons, and temperature ranges",
        },
        "transportation": {
            "type": "string",
            "description": "Public transit, airports, rail, and major roads",
        },
        "tourism": {
            "type": "object",
            "properties": {
                "overview": {"type": "string", "description": "General tourism highlights"},
                "landmarks": {"type": "array", "items": _POI_ITEMS},
                "museums": {"type": "array", "items": _POI_ITEMS},
                "attractions": {"type": "array", "items": _POI_ITEMS},
            },
        },
        "images": {
            "type": "array",
            "description": "Absolute URLs of representative images of the city",
            "items": {"type": "string"},
        },
    },
    "required": ["name", "description"],
}

_DISAMBIGUATION_MARKERS = ("may refer to:", "may also refer to:")

_SECTION_KEYWORDS: list[tuple[str, tuple[str, ...]]] = [
    ("history", ("history", "historical")),
    ("geography", ("geography", "topography")),
    ("climate", ("climate", "weather")),
    ("transportation", ("transport", "infrastructure", "transit")),
]

_HEADING_RE = re.compile(r"^#{1,3}\s+(.+)")

_CLEANUP_PATTERNS = [
    re.compile(r"\[Jump to content\][\s\S]*?\(#bodyContent\)"),
    re.compile(r"\[!\[Banner logo\][\s\S]*?\[Hide\]\([\s\S]*?\)"),
    re.compile(r"\[Coordinates\][\s\S]*?Geographic coordinate system[\s\S]*?\n"),
    re.compile(r"\(Redirected from \[.*?\]\(.*?\)\)"),
    re.compile(r"This article is about.*?For .*?, see \[.*?\]\(.*?\)\.?\n*"),
    re.compile(r"\".*?\" redirects here\..*?\n"),
    re.compile(r"\|[\s\S]*?\|\s*\n"),
    re.compile(r"\[!\[.*?\]\(.*?\)\]\(.*?\)"),
    re.compile(r"!\[.*?\]\(.*?\)"),
]


class ContentExtractor(Protocol):
    async def extract(self, url: str, schema: dict[str, Any], timeout_s: float) -> dict[str, Any]:
        ...


def construct_wikipedia_url(city_name: str, country: str) -> str:
    """Build the article URL as "<City>,_<Country>".

    First-match strategy: no lookup of redirects or disambiguation pages.
    """
    city = quote(city_name.strip().replace(" ", "_"), safe="")
    country_part = quote(country.strip().replace(" ", "_"), safe="")
    return f"{WIKIPEDIA_BASE_URL}{city},_{country_part}"


def truncate_text(text: Optional[str], max_length: int) -> Optional[str]:
    if not text:
        return None
    if len(text) <= max_length:
        return text
    return text[: max_length - 3] + "..."


def clean_wikipedia_markdown(markdown: str) -> str:
    """Strip page chrome (banners, coordinates, infobox tables, images)."""
    if not markdown:
        return ""

    cleaned = markdown
    marker = "From Wikipedia, the free encyclopedia"
    idx = cleaned.find(marker)
    if idx != -1:
        cleaned = cleaned[idx + len(marker):]

    for pattern in _CLEANUP_PATTERNS:
        cleaned = pattern.sub("", cleaned)

    cleaned = re.sub(r"\n{3,}", "\n\n", cleaned)
    return cleaned.strip()


def _section_for_heading(heading: str) -> Optional[str]:
    lowered = heading.lower().strip()
    for section, keywords in _SECTION_KEYWORDS:
        if any(k in lowered for k in keywords):
            return section
    return None


def parse_wikipedia_sections(markdown: str) -> dict[str, str]:
    """Split cleaned article markdown into the known prose sections.

    Text before the first heading is the description. Sections we do not
    recognise are skipped. Repeated sections keep the first occurrence.
    """
    sections: dict[str, str] = {}
    if not markdown:
        return sections

    current: Optional[str] = "description"
    buffer: list[str] = []

    def _flush() -> None:
        if current is None or current in sections:
            return
        content = "\n".join(buffer).strip()
        if content:
            sections[current] = truncate_text(content, MAX_SECTION_LENGTHS[current])

    for line in markdown.split("\n"):
        match = _HEADING_RE.match(line)
        if match:
            _flush()
            current = _section_for_heading(match.group(1))
            buffer = []
        elif current is not None:
            buffer.append(line)
    _flush()

    return sections


def _is_disambiguation(markdown: str) -> bool:
    head = markdown[:2000].lower()
    return any(marker in head for marker in _DISAMBIGUATION_MARKERS)


class FirecrawlExtractor:
    """Firecrawl /v1/scrape client returning a city field map."""

    def __init__(
        self,
        api_key: str,
        base_url: str = DEFAULT_BASE_URL,
        client: Optional[httpx.AsyncClient] = None,
    ):
        self.api_key = api_key
        self.base_url = base_url.rstrip("/")
        self._client = client

    async def extract(
        self,
        url: str,
        schema: dict[str, Any],
        timeout_s: float,
    ) -> dict[str, Any]:
        if not self.api_key:
            raise EnrichmentError(ErrorCode.AUTH_FAILED, "FIRECRAWL_API_KEY is not set")

        own_client = self._client is None
        client = httpx.AsyncClient() if own_client else self._client
        try:
            resp = await client.post(
                f"{self.base_url}/v1/scrape",
                json={
                    "url": url,
                    "formats": ["extract", "markdown"],
                    "extract": {"schema": schema},
                    "onlyMainContent": True,
                    "timeout": int(timeout_s * 1000),
                },
                headers={
                    "Authorization": f"Bearer {self.api_key}",
                    "Content-Type": "application/json",
                },
                timeout=timeout_s,
            )
            resp.raise_for_status()
            body = resp.json()
        finally:
            if own_client:
                await client.aclose()

        return self._parse_envelope(url, body)

    def _parse_envelope(self, url: str, body: Any) -> dict[str, Any]:
        if not isinstance(body, dict) or body.get("success") is False or body.get("error"):
            message = body.get("error") if isinstance(body, dict) else None
            message = str(message or "Unknown provider error")
            raise EnrichmentError(
                classify_message(message),
                f"Firecrawl scrape failed for {url}: {message}",
            )

        data = body.get("data") or {}
        metadata = data.get("metadata") or {}
        page_status = metadata.get("statusCode")
        if page_status == 404:
            raise EnrichmentError(ErrorCode.WIKIPEDIA_NOT_FOUND, f"Wikipedia page not found: {url}")

        markdown = data.get("markdown") or ""
        if markdown and _is_disambiguation(markdown):
            raise EnrichmentError(
                ErrorCode.WIKIPEDIA_NOT_FOUND,
                f"Wikipedia page is a disambiguation page: {url}",
            )

        fields = data.get("extract") or data.get("json") or {}
        if not fields and markdown:
            logger.info("No structured extract for %s, parsing markdown sections", url)
            fields = parse_wikipedia_sections(clean_wikipedia_markdown(markdown))

        fields = dict(fields)
        if not fields.get("image_url") and metadata.get("ogImage"):
            fields["image_url"] = metadata["ogImage"]
        return fields
