"""Balanced Research - multi-source research tool

Simple CLI for running research queries.
"""

import argparse
import asyncio
import json
import sys

import balanced_research.services.logger  # noqa: F401  (configures sinks)
from balanced_research.agents.orchestrator import ResearchOrchestrator
from balanced_research.research_core.extract.service import ContentExtractor


async def run_research(query: str, urls: list[str], model: str | None = None, as_json: bool = False) -> int:
    """Run research on the given query."""
    orchestrator = ResearchOrchestrator(model=model)
    result = await orchestrator.research(query, urls)

    if as_json:
        print(json.dumps(result.to_dict(), indent=2, ensure_ascii=False))
        return 0

    print(f"Research query: {result.query}")
    print("-" * 50)
    print(result.answer)

    print(f"\n{'='*50}")
    print(f"SOURCES ({len(result.sources)}):")
    for i, source in enumerate(result.sources, 1):
        marker = "*" if source.used else " "
        print(f" {marker} {i}. [{source.source.label}] {source.title}")
        print(f"      {source.url}")

    if result.errors:
        print("\n[!] Issues:")
        for error in result.errors:
            print(f"  - {error}")
    return 0


async def run_extract(url: str, as_json: bool = False) -> int:
    """Fetch one URL and print what the extractor pulled out."""
    extracted = await ContentExtractor().extract(url)
    if extracted is None:
        print(f"[!] No content could be extracted from {url}", file=sys.stderr)
        return 1

    if as_json:
        payload = {
            "title": extracted.title,
            "url": extracted.url,
            "method": extracted.method,
            "content": extracted.content,
        }
        print(json.dumps(payload, indent=2, ensure_ascii=False))
        return 0

    print(f"Title: {extracted.title}")
    print(f"Method: {extracted.method} ({len(extracted.content)} chars)")
    print("-" * 50)
    print(extracted.content)
    return 0


def main():
    parser = argparse.ArgumentParser(description="Balanced multi-source research tool")
    parser.add_argument("--query", "-q", help="Research query")
    parser.add_argument("--url", "-u", action="append", default=[], help="Custom source URL (repeatable)")
    parser.add_argument("--model", "-m", help="Synthesis model to use (default: from config)")
    parser.add_argument("--json", action="store_true", help="Print the result as JSON")
    parser.add_argument("--extract", metavar="URL", help="Only extract content from a single URL")

    args = parser.parse_args()

    if args.extract:
        sys.exit(asyncio.run(run_extract(args.extract, args.json)))
    if not args.query:
        parser.error("--query is required unless --extract is given")

    sys.exit(asyncio.run(run_research(args.query, args.url, args.model, args.json)))


if __name__ == "__main__":
    main()
