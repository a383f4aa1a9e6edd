from __future__ import annotations

import asyncio
import json
import re
from functools import lru_cache
from typing import Any, Awaitable, Callable

import httpx
from bs4 import BeautifulSoup, Tag
from loguru import logger

from balanced_research.config import settings
from balanced_research.exceptions import ExtractionError
from balanced_research.research_core.models.interfaces import ExtractionResult, ExtractMethod
from balanced_research.services.markdown_cleanup import strip_html
from balanced_research.tools.web_utils import is_valid_url, truncate_preserving_sentences

MIN_ARTICLE_CHARS = 300
MIN_TEXT_CHARS = 200
MIN_PARAGRAPH_CHARS = 20

BROWSER_HEADERS = {
    "User-Agent": (
        "Mozilla/5.0 (Windows NT 10.0; Win64; x64) AppleWebKit/537.36 "
        "(KHTML, like Gecko) Chrome/124.0 Safari/537.36"
    ),
    "Accept": "text/html,application/xhtml+xml,application/xml;q=0.9,image/webp,*/*;q=0.8",
    "Accept-Language": "en-US,en;q=0.5",
    "Cache-Control": "no-cache",
    "Pragma": "no-cache",
}

CONTENT_CLASS_PATTERN = re.compile(r"article|post|content|entry|blog", re.IGNORECASE)
CONTENT_ID_PATTERN = re.compile(r"article|post|content|main", re.IGNORECASE)
BOILERPLATE_TAGS = ("nav", "footer", "header", "aside", "svg", "iframe", "form")
NON_CONTENT_TAGS = ("script", "style", "noscript", "template")

FetchResult = tuple[int, str]
Fetcher = Callable[[str], Awaitable[FetchResult]]


@lru_cache(maxsize=1)
def readability_available() -> bool:
    try:
        from readability import Document  # noqa: F401
    except Exception:
        return False
    return True


@lru_cache(maxsize=1)
def trafilatura_available() -> bool:
    try:
        import trafilatura  # noqa: F401
    except Exception:
        return False
    return True


def _normalize_text(text: str) -> str:
    text = text.replace("\xa0", " ")
    text = re.sub(r"\r\n?", "\n", text)
    text = re.sub(r"[ \t]+", " ", text)
    text = re.sub(r" ?\n ?", "\n", text)
    text = re.sub(r"\n{3,}", "\n\n", text)
    return text.strip()


def _collapse(text: str) -> str:
    return re.sub(r"\s+", " ", text.replace("\xa0", " ")).strip()


def _element_text(element: Tag) -> str:
    return _collapse(element.get_text(" "))


def extract_title(soup: BeautifulSoup) -> str:
    """Page title: `<title>`, else the first `<h1>`, else empty."""
    if soup.title and soup.title.get_text(strip=True):
        return _collapse(soup.title.get_text())
    h1 = soup.find("h1")
    if isinstance(h1, Tag):
        return _element_text(h1)
    return ""


class ContentExtractor:
    """Fetches a page and pulls out its title and main text.

    Strategies run in order and the first one producing enough text wins:
    readability (and trafilatura) when available, JSON-LD structured data,
    semantic container patterns, and finally all visible text.
    """

    def __init__(
        self,
        *,
        max_chars: int | None = None,
        timeout_seconds: float | None = None,
        max_response_bytes: int | None = None,
        use_readability: bool | None = None,
        extract_in_thread: bool | None = None,
        fetcher: Fetcher | None = None,
        transport: httpx.AsyncBaseTransport | None = None,
    ):
        self.max_chars = int(max_chars if max_chars is not None else settings.extractor_max_content_chars)
        self.timeout_seconds = float(
            timeout_seconds if timeout_seconds is not None else settings.extractor_timeout_seconds
        )
        self.max_response_bytes = int(
            max_response_bytes if max_response_bytes is not None else settings.extractor_max_response_bytes
        )
        self.use_readability = bool(
            use_readability if use_readability is not None else settings.extractor_use_readability
        )
        self.extract_in_thread = bool(
            extract_in_thread if extract_in_thread is not None else settings.extract_in_thread
        )
        self._fetcher = fetcher
        self._transport = transport

    async def extract(self, url: str) -> ExtractionResult | None:
        """Fetch and extract one URL. Returns None instead of raising on failure."""
        try:
            if not is_valid_url(url):
                raise ExtractionError(f"Invalid URL scheme or host: {url}")

            fetcher = self._fetcher or self._fetch_with_httpx
            status_code, raw_html = await fetcher(url)
            if status_code != 200:
                raise ExtractionError(f"Unexpected status {status_code} for {url}")
            if not raw_html or not raw_html.strip():
                raise ExtractionError(f"Empty response body from {url}")

            logger.debug(f"Fetched {url} ({len(raw_html)} chars)")
            if self.extract_in_thread:
                result = await asyncio.to_thread(self.extract_from_html, url, raw_html)
            else:
                result = self.extract_from_html(url, raw_html)
        except ExtractionError as exc:
            logger.warning(f"Extraction failed for {url}: {exc}")
            return None
        except Exception as exc:
            logger.error(f"Unexpected extraction error for {url}: {type(exc).__name__}: {exc}")
            return None

        if result is None:
            logger.warning(f"No meaningful content could be extracted from {url}")
        else:
            logger.info(f"Extracted {len(result.content)} chars from {url} via {result.method}")
        return result

    def extract_from_html(self, url: str, raw_html: str) -> ExtractionResult | None:
        soup = BeautifulSoup(raw_html, "html.parser")
        page_title = extract_title(soup)

        if self.use_readability and readability_available():
            title, text = self._extract_readability(raw_html)
            if len(text) > MIN_ARTICLE_CHARS:
                return self._to_result(url, title or page_title, text, "readability")

        if self.use_readability and trafilatura_available():
            text = self._extract_trafilatura(raw_html)
            if len(text) > MIN_ARTICLE_CHARS:
                return self._to_result(url, page_title, text, "trafilatura")

        structured = self._extract_structured_data(soup)
        if structured is not None:
            title, text = structured
            return self._to_result(url, title, text, "structured_data")

        for tag in soup.find_all(NON_CONTENT_TAGS):
            tag.decompose()

        text = self._extract_main_content(soup)
        if len(text) > MIN_ARTICLE_CHARS:
            return self._to_result(url, page_title, text, "pattern")

        text = self._extract_all_text(soup)
        if len(text) > MIN_TEXT_CHARS:
            return self._to_result(url, page_title, text, "full_text")

        return None

    def _to_result(self, url: str, title: str, text: str, method: ExtractMethod) -> ExtractionResult:
        return ExtractionResult(
            title=(title or "").strip() or url,
            url=url,
            content=truncate_preserving_sentences(text.strip(), self.max_chars),
            method=method,
        )

    async def _fetch_with_httpx(self, url: str) -> FetchResult:
        try:
            async with httpx.AsyncClient(
                timeout=self.timeout_seconds,
                follow_redirects=True,
                headers=BROWSER_HEADERS,
                transport=self._transport,
            ) as client:
                async with client.stream("GET", url) as response:
                    if response.status_code != 200:
                        return response.status_code, ""

                    declared = response.headers.get("content-length", "")
                    if declared.isdigit() and int(declared) > self.max_response_bytes:
                        raise ExtractionError(f"Response too large ({declared} bytes) from {url}")

                    body = bytearray()
                    async for chunk in response.aiter_bytes():
                        body.extend(chunk)
                        if len(body) > self.max_response_bytes:
                            raise ExtractionError(
                                f"Response exceeded {self.max_response_bytes} bytes from {url}"
                            )
                    encoding = response.encoding or "utf-8"
        except httpx.TimeoutException as exc:
            raise ExtractionError(f"Timed out after {self.timeout_seconds}s fetching {url}") from exc
        except httpx.HTTPError as exc:
            raise ExtractionError(f"Network error fetching {url}: {exc}") from exc

        try:
            return 200, bytes(body).decode(encoding, errors="replace")
        except LookupError:
            return 200, bytes(body).decode("utf-8", errors="replace")

    def _extract_readability(self, raw_html: str) -> tuple[str, str]:
        from readability import Document

        try:
            doc = Document(raw_html)
            summary_html = doc.summary(html_partial=True)
            title = doc.short_title() or ""
        except Exception as exc:
            logger.debug(f"Readability extraction failed: {exc}")
            return "", ""
        text = BeautifulSoup(summary_html, "html.parser").get_text("\n")
        return _collapse(title), _normalize_text(text)

    def _extract_trafilatura(self, raw_html: str) -> str:
        import trafilatura

        try:
            extracted = trafilatura.extract(raw_html, output_format="txt")
        except Exception as exc:
            logger.debug(f"Trafilatura extraction failed: {exc}")
            return ""
        return _normalize_text(extracted) if isinstance(extracted, str) else ""

    def _extract_structured_data(self, soup: BeautifulSoup) -> tuple[str, str] | None:
        for script in soup.find_all("script", attrs={"type": re.compile(r"application/ld\+json", re.I)}):
            raw = script.string or script.get_text()
            if not raw or not raw.strip():
                continue
            try:
                data = json.loads(raw)
            except json.JSONDecodeError as exc:
                logger.debug(f"Skipping malformed JSON-LD block: {exc}")
                continue

            for node in _json_ld_nodes(data):
                title = _first_string(node, ("headline", "name", "title"))
                content = _first_string(node, ("articleBody", "description", "text"))
                content = strip_html(content) if "<" in content else content.strip()
                if title and len(content) > MIN_TEXT_CHARS:
                    return title.strip(), content
        return None

    def _extract_main_content(self, soup: BeautifulSoup) -> str:
        candidates = (
            soup.find("article"),
            soup.find("div", class_=CONTENT_CLASS_PATTERN),
            soup.find("main"),
            soup.find("div", id=CONTENT_ID_PATTERN),
        )
        for element in candidates:
            if isinstance(element, Tag):
                text = _element_text(element)
                if len(text) > MIN_ARTICLE_CHARS:
                    return text

        paragraphs = [
            text
            for text in (_element_text(p) for p in soup.find_all("p"))
            if len(text) > MIN_PARAGRAPH_CHARS
        ]
        if paragraphs:
            return "\n\n".join(paragraphs)

        if isinstance(soup.body, Tag):
            return _element_text(soup.body)
        return ""

    def _extract_all_text(self, soup: BeautifulSoup) -> str:
        for tag in soup.find_all(BOILERPLATE_TAGS):
            tag.decompose()
        root = soup.body if isinstance(soup.body, Tag) else soup
        return _collapse(root.get_text(" "))


def _json_ld_nodes(data: Any) -> list[dict[str, Any]]:
    if isinstance(data, list):
        return [item for item in data if isinstance(item, dict)]
    if isinstance(data, dict):
        graph = data.get("@graph")
        if isinstance(graph, list):
            return [data] + [item for item in graph if isinstance(item, dict)]
        return [data]
    return []


def _first_string(node: dict[str, Any], keys: tuple[str, ...]) -> str:
    for key in keys:
        value = node.get(key)
        if isinstance(value, str) and value.strip():
            return value
    return ""
