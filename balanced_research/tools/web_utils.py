from __future__ import annotations

import re
from dataclasses import replace
from urllib.parse import urlparse

from balanced_research.research_core.models.interfaces import SearchResult

URL_PATTERN = re.compile(r"https?://[^\s)\]>\"']+")
SENTENCE_END_PATTERN = re.compile(r"[.!?](?=\s|$)")
TRAILING_URL_PUNCTUATION = ".,;:!?*_"


def is_valid_url(url: str) -> bool:
    """Basic URL validation: http(s) scheme and a host."""
    try:
        result = urlparse(url)
        return all([result.scheme in ("http", "https"), result.netloc])
    except Exception:
        return False


def url_key(url: str) -> str:
    """Dedup key: scheme/host case-insensitive, trailing slash ignored."""
    return url.strip().rstrip("/").lower()


def extract_urls(text: str) -> list[str]:
    """Find http(s) URLs embedded in free text, in order of appearance, without duplicates."""
    urls: list[str] = []
    for match in URL_PATTERN.findall(text or ""):
        url = match.rstrip(TRAILING_URL_PUNCTUATION)
        if url and url not in urls:
            urls.append(url)
    return urls


def _humanize(value: str) -> str:
    words = re.sub(r"[-_]+", " ", value).split()
    return " ".join(word[:1].upper() + word[1:] for word in words)


def title_from_url(url: str) -> str:
    """Derive a readable title from the URL's last path segment or its domain."""
    try:
        parsed = urlparse(url)
    except Exception:
        return ""

    segments = [part for part in parsed.path.split("/") if part]
    if segments:
        last = re.sub(r"\.\w+$", "", segments[-1])
        title = _humanize(last)
        if title:
            return title

    host = (parsed.hostname or "").lower()
    if host.startswith("www."):
        host = host[4:]
    labels = host.split(".")
    if len(labels) > 1:
        labels = labels[:-1]
    return _humanize(".".join(labels))


def ensure_title(result: SearchResult) -> SearchResult:
    """Return the result with a non-empty title, synthesizing one if needed."""
    if result.title and result.title.strip():
        return result

    if result.url:
        title = title_from_url(result.url)
        if title:
            return replace(result, title=title)

    body = result.snippet or result.content
    if body and body.strip():
        return replace(result, title=f"Source: {body.strip()[:30]}...")
    return replace(result, title="Untitled Source")


def format_citation(result: SearchResult, index: int | None = None) -> str:
    """Format a source as `[n] "Title" (url)` for prompts and listings."""
    title = result.title or "Untitled Source"
    prefix = f"[{index + 1}] " if index is not None else ""
    if result.url:
        return f'{prefix}"{title}" ({result.url})'
    return f'{prefix}"{title}"'


def truncate_preserving_sentences(text: str, max_chars: int) -> str:
    """Cut text to max_chars, preferring a sentence or paragraph end in the latter half."""
    if max_chars <= 0 or len(text) <= max_chars:
        return text

    window = text[:max_chars]
    floor = max_chars * 0.5

    last_sentence_end = None
    for match in SENTENCE_END_PATTERN.finditer(window):
        last_sentence_end = match.start()
    if last_sentence_end is not None and last_sentence_end > floor:
        return window[: last_sentence_end + 1]

    last_paragraph = window.rfind("\n\n")
    if last_paragraph > floor:
        return window[:last_paragraph]

    return window + "..."


def make_snippet(content: str, max_length: int = 300) -> str:
    if len(content) <= max_length:
        return content
    return content[:max_length] + "..."


def format_snippet_for_readability(snippet: str) -> str:
    """Turn runs of short sentences into bullets, otherwise one sentence per paragraph."""
    if not snippet:
        return ""

    parts = re.split(r"\.\s+", snippet)
    if len(parts) >= 3 and all(len(part) < 100 for part in parts):
        bullets = []
        for part in parts:
            part = part.strip()
            if not part:
                continue
            bullets.append(f"* {part}" if part.endswith(".") else f"* {part}.")
        return "\n".join(bullets)

    formatted = re.sub(r"([.!?])\s+", r"\1\n\n", snippet)
    return re.sub(r"\n{3,}", "\n\n", formatted).strip()
