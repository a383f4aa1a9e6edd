"""HTML-to-markdown normalization as an ordered list of pure text rules.

Each rule is a named ``str -> str`` transform. ``normalize_markdown`` applies
them in order and repeats the cascade until the text stops changing, so the
result is idempotent and already-clean markdown passes through unchanged.
"""
from __future__ import annotations

import html
import re
from dataclasses import dataclass
from typing import Callable

_FLAGS = re.IGNORECASE | re.DOTALL

# An http(s) URL that may carry one level of balanced parentheses.
CITED_URL = r"https?://(?:[^()\s]|\([^()\s]*\))+"
MAX_PASSES = 5

BLOCK_TAGS = (
    "div|section|article|header|footer|nav|aside|figure|figcaption|ul|ol|dl|dt|dd|"
    "blockquote|main|table|thead|tbody|tfoot|html|body|head"
)


@dataclass(frozen=True, slots=True)
class CleanupRule:
    name: str
    transform: Callable[[str], str]

    def apply(self, text: str) -> str:
        return self.transform(text)


def _sub(pattern: str, replacement: str | Callable[[re.Match[str]], str], flags: int = 0) -> Callable[[str], str]:
    compiled = re.compile(pattern, flags)

    def transform(text: str) -> str:
        return compiled.sub(replacement, text)

    return transform


def _decode_entities(text: str) -> str:
    # Double-escaped input (&amp;lt;) needs several passes to settle.
    for _ in range(5):
        decoded = html.unescape(text)
        if decoded == text:
            break
        text = decoded
    return re.sub(r"&[a-zA-Z][a-zA-Z0-9]*;", " ", text)


def _heading(match: re.Match[str]) -> str:
    level = int(match.group(1))
    return f"\n\n{'#' * level} {match.group(2).strip()}\n\n"


def _code(match: re.Match[str]) -> str:
    return f"`{match.group(1)}`"


MARKDOWN_RULES: tuple[CleanupRule, ...] = (
    CleanupRule("decode_entities", _decode_entities),
    CleanupRule("drop_comments", _sub(r"<!--.*?-->", "", re.DOTALL)),
    CleanupRule(
        "drop_script_style",
        _sub(r"<(script|style|noscript)(?:\s[^>]*)?>.*?</\1\s*>", "", _FLAGS),
    ),
    CleanupRule("list_items", _sub(r"[ \t]*<li(?:\s[^>]*)?>[ \t]*", "\n* ", re.IGNORECASE)),
    CleanupRule("list_item_ends", _sub(r"</li\s*>", "\n", re.IGNORECASE)),
    CleanupRule("headings", _sub(r"<h([1-6])(?:\s[^>]*)?>(.*?)</h\1\s*>", _heading, _FLAGS)),
    CleanupRule("paragraphs", _sub(r"<p(?:\s[^>]*)?>(.*?)</p\s*>", r"\1\n\n", _FLAGS)),
    CleanupRule("table_rows", _sub(r"<tr(?:\s[^>]*)?>", "\n", re.IGNORECASE)),
    CleanupRule("table_headers", _sub(r"<th(?:\s[^>]*)?>(.*?)</th\s*>", r"| **\1** ", _FLAGS)),
    CleanupRule("table_cells", _sub(r"<td(?:\s[^>]*)?>(.*?)</td\s*>", r"| \1 ", _FLAGS)),
    CleanupRule("table_row_ends", _sub(r"</tr\s*>", "|", re.IGNORECASE)),
    CleanupRule("bold", _sub(r"<(strong|b)(?:\s[^>]*)?>(.*?)</\1\s*>", r"**\2**", _FLAGS)),
    CleanupRule("italic", _sub(r"<(em|i)(?:\s[^>]*)?>(.*?)</\1\s*>", r"*\2*", _FLAGS)),
    CleanupRule("inline_code", _sub(r"<code(?:\s[^>]*)?>(.*?)</code\s*>", _code, _FLAGS)),
    CleanupRule(
        "links",
        _sub(r"<a\s[^>]*?href=[\"']([^\"']*)[\"'][^>]*>(.*?)</a\s*>", r"[\2](\1)", _FLAGS),
    ),
    CleanupRule("line_breaks", _sub(r"<br\s*/?>", "\n", re.IGNORECASE)),
    CleanupRule("horizontal_rules", _sub(r"<hr\s*/?>", "\n\n---\n\n", re.IGNORECASE)),
    CleanupRule("block_tags", _sub(rf"</?(?:{BLOCK_TAGS})(?:\s[^>]*)?/?>", "\n", re.IGNORECASE)),
    CleanupRule("remaining_tags", _sub(r"</?[a-zA-Z][a-zA-Z0-9]*(?:\s[^<>]*)?/?>", "")),
    CleanupRule(
        "control_characters",
        _sub(r"[\u2028\u2029\x00-\x08\x0b\x0c\x0e-\x1f\x7f]", ""),
    ),
    CleanupRule("line_endings", _sub(r"\r\n?", "\n")),
    CleanupRule("non_breaking_spaces", _sub("\xa0", " ")),
    CleanupRule("inner_whitespace", _sub(r"(?<=\S)[ \t]+(?=\S)", " ")),
    CleanupRule("trailing_whitespace", _sub(r"[ \t]+$", "", re.MULTILINE)),
    CleanupRule("outer_whitespace", str.strip),
    CleanupRule("bullet_markers", _sub(r"^([ \t]*)[*•+][ \t]+(?=\S)", r"\1* ", re.MULTILINE)),
    CleanupRule("dash_markers", _sub(r"^([ \t]*)-[ \t]+(?=\S)", r"\1- ", re.MULTILINE)),
    CleanupRule("numbered_markers", _sub(r"^([ \t]*)(\d+)\.[ \t]+(?=\S)", r"\1\2. ", re.MULTILINE)),
    CleanupRule("empty_headings", _sub(r"^#{1,6}$", "", re.MULTILINE)),
    CleanupRule("heading_spacing", _sub(r"^(#{1,6})(?=[^#\s])", r"\1 ", re.MULTILINE)),
    CleanupRule(
        "sources_used_heading",
        _sub(
            r"^(?:#{1,6} )?(?:\*\*)?(SOURCES USED:?)(?:\*\*)?$",
            r"## \1",
            re.MULTILINE | re.IGNORECASE,
        ),
    ),
    CleanupRule(
        "sources_subheadings",
        _sub(
            r"^(?:#{1,6} )?(?:\*\*)?((?:AI Search|Perplexity|Web Search|Custom) Sources:?)(?:\*\*)?$",
            r"### \1",
            re.MULTILINE | re.IGNORECASE,
        ),
    ),
    CleanupRule("blank_line_before_heading", _sub(r"([^\n])\n(#{1,6} )", r"\1\n\n\2")),
    CleanupRule("blank_line_after_heading", _sub(r"^(#{1,6} [^\n]*)\n(?=[^\n])", r"\1\n\n", re.MULTILINE)),
    CleanupRule(
        "spaced_links",
        _sub(rf"\[([^\]\n]+)\][ \t]+\(({CITED_URL})\)", r"[\1](\2)"),
    ),
    CleanupRule("empty_table_cells", _sub(r"\|[ \t]+\|", "| |")),
    CleanupRule("blank_lines", _sub(r"\n{3,}", "\n\n")),
    CleanupRule("strip", str.strip),
)


def normalize_markdown(text: str, rules: tuple[CleanupRule, ...] = MARKDOWN_RULES) -> str:
    """Convert HTML remnants to markdown and tidy the result."""
    if not text:
        return text
    for _ in range(MAX_PASSES):
        previous = text
        for rule in rules:
            text = rule.apply(text)
        if text == previous:
            break
    return text


def strip_html(text: str) -> str:
    """Plain-text rendering of an HTML fragment: tags removed, whitespace collapsed."""
    cleaned = re.sub(r"<(script|style)(?:\s[^>]*)?>.*?</\1\s*>", " ", text, flags=_FLAGS)
    cleaned = re.sub(r"<[^>]*>", " ", cleaned)
    cleaned = html.unescape(cleaned)
    return re.sub(r"\s+", " ", cleaned).strip()
