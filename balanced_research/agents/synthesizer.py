"""Answer synthesis over the three source sections.

The model is asked to balance source types and to end with a "SOURCES USED"
section; that section is parsed afterwards to learn which sources were cited.
"""
from __future__ import annotations

import re
import time
from dataclasses import dataclass
from typing import Iterable

from loguru import logger

from balanced_research import llm_client
from balanced_research.config import settings
from balanced_research.exceptions import ConfigurationError, SynthesisError
from balanced_research.research_core.models.interfaces import SearchResult
from balanced_research.services.logger import log_llm_call
from balanced_research.services.markdown_cleanup import CITED_URL
from balanced_research.services.prompt_store import get_prompt, render_prompt
from balanced_research.tools.web_utils import format_citation, truncate_preserving_sentences, url_key

SOURCES_USED_PATTERN = re.compile(r"SOURCES\s*USED:?", re.IGNORECASE)
CITED_URL_PATTERN = re.compile(rf"\(({CITED_URL})\)")
HIGH_PRIORITY_LIMIT = 3
SAFETY_NET_AI_SOURCES = 2
CONTEXT_CHARS_PER_SOURCE = 4000

BALANCE_HINTS = {
    1: "100% from the single available source type",
    2: "50% from each of the two available source types",
    3: "33.3% from each of the three source types",
}


@dataclass(frozen=True)
class SynthesisOutput:
    answer: str
    used_source_urls: tuple[str, ...]
    notices: tuple[str, ...] = ()


def parse_used_source_urls(answer: str, supplied_urls: Iterable[str]) -> list[str]:
    """URLs cited in the answer's SOURCES USED section.

    When the model omitted the section every supplied URL counts as used.
    """
    match = SOURCES_USED_PATTERN.search(answer or "")
    if not match:
        logger.warning("No SOURCES USED section found; treating every supplied source as used")
        return list(dict.fromkeys(url for url in supplied_urls if url))
    section = answer[match.end() :]
    return list(dict.fromkeys(CITED_URL_PATTERN.findall(section)))


class Synthesizer:
    def __init__(
        self,
        *,
        llm: llm_client.ChatCompletionsAdapter | None = None,
        api_key: str | None = None,
        model: str | None = None,
        system_prompt: str | None = None,
        sources_used_instruction: str | None = None,
        temperature: float | None = None,
        max_tokens: int | None = None,
    ):
        self._llm = llm
        self._api_key = api_key
        self.model = model
        self.system_prompt = system_prompt if system_prompt is not None else get_prompt("synthesis.system_prompt")
        self.sources_used_instruction = (
            sources_used_instruction
            if sources_used_instruction is not None
            else get_prompt("synthesis.sources_used_instruction")
        )
        self.temperature = temperature if temperature is not None else settings.synthesis_temperature
        self.max_tokens = max_tokens or settings.synthesis_max_tokens

    def _client(self) -> llm_client.ChatCompletionsAdapter:
        if self._llm is not None:
            return self._llm
        api_key = self._api_key if self._api_key is not None else settings.openai_api_key
        if not api_key:
            raise ConfigurationError("OPENAI_API_KEY is not configured")
        return llm_client.client()

    async def synthesize(
        self,
        query: str,
        ai_results: list[SearchResult],
        web_results: list[SearchResult],
        custom_results: list[SearchResult],
        *,
        ai_answer: str | None = None,
        web_answer: str | None = None,
        model: str | None = None,
    ) -> SynthesisOutput:
        client = self._client()
        model = model or self.model or llm_client.get_model()

        system = f"{self.system_prompt}\n{self.sources_used_instruction}"
        user_message = self.build_user_message(
            query,
            ai_results,
            web_results,
            custom_results,
            ai_answer=ai_answer,
            web_answer=web_answer,
        )

        started = time.monotonic()
        try:
            response = await client.create(
                model=model,
                max_tokens=self.max_tokens,
                system=system,
                messages=[{"role": "user", "content": user_message}],
                temperature=self.temperature,
            )
        except Exception as exc:
            status_code = getattr(exc, "status_code", None)
            log_llm_call(
                model,
                "synthesizer",
                duration_ms=int((time.monotonic() - started) * 1000),
                status="error",
                error=f"{type(exc).__name__}: {exc}",
            )
            raise SynthesisError(f"Answer synthesis failed: {exc}", status_code=status_code) from exc

        log_llm_call(
            model,
            "synthesizer",
            input_tokens=response.usage.input_tokens,
            output_tokens=response.usage.output_tokens,
            duration_ms=int((time.monotonic() - started) * 1000),
        )

        answer = (response.text or "").strip()
        if not answer:
            raise SynthesisError("Answer synthesis returned no content")

        supplied = [r.url for r in (*ai_results, *web_results, *custom_results) if r.url]
        used_urls = parse_used_source_urls(answer, supplied)
        notices: list[str] = []

        used_keys = {url_key(url) for url in used_urls}
        ai_urls = [r.url for r in ai_results if r.url]
        if ai_urls and not any(url_key(url) in used_keys for url in ai_urls):
            forced = ai_urls[:SAFETY_NET_AI_SOURCES]
            logger.warning(f"Answer cited no AI search sources; marking {len(forced)} as used")
            used_urls.extend(forced)
            notice = get_prompt("synthesis.missing_ai_sources_warning")
            notices.append(notice)
            answer = f"{notice}\n\n{answer}"

        return SynthesisOutput(answer=answer, used_source_urls=tuple(used_urls), notices=tuple(notices))

    def build_user_message(
        self,
        query: str,
        ai_results: list[SearchResult],
        web_results: list[SearchResult],
        custom_results: list[SearchResult],
        *,
        ai_answer: str | None = None,
        web_answer: str | None = None,
    ) -> str:
        available = sum(
            1
            for present in (ai_results or ai_answer, web_results or web_answer, custom_results)
            if present
        )
        return render_prompt(
            "synthesis.user_message",
            query=query,
            ai_context=self._section(
                ai_results,
                header=get_prompt("synthesis.ai_section_header"),
                answer=ai_answer,
                answer_header=get_prompt("synthesis.ai_answer_header"),
                missing=get_prompt("synthesis.missing_ai"),
                flag_high_priority=True,
            ),
            web_context=self._section(
                web_results,
                header=get_prompt("synthesis.web_section_header"),
                answer=web_answer,
                answer_header=get_prompt("synthesis.web_answer_header"),
                missing=get_prompt("synthesis.missing_web"),
            ),
            custom_context=self._section(
                custom_results,
                header=get_prompt("synthesis.custom_section_header"),
                missing=get_prompt("synthesis.missing_custom"),
            ),
            balance_hint=BALANCE_HINTS.get(available, BALANCE_HINTS[3]),
        )

    @staticmethod
    def _section(
        results: list[SearchResult],
        *,
        header: str,
        missing: str,
        answer: str | None = None,
        answer_header: str | None = None,
        flag_high_priority: bool = False,
    ) -> str:
        if not results and not answer:
            return missing

        blocks: list[str] = []
        if answer and answer_header:
            blocks.append(f"{answer_header}\n{answer.strip()}")

        if results:
            lines = [header]
            for idx, result in enumerate(results):
                citation = format_citation(result, idx)
                if flag_high_priority and idx < HIGH_PRIORITY_LIMIT and result.priority == "high":
                    citation += " [HIGH PRIORITY]"
                body = truncate_preserving_sentences(result.body.strip(), CONTEXT_CHARS_PER_SOURCE)
                lines.append(f"{citation}\n{body}" if body else citation)
            blocks.append("\n\n".join(lines))

        return "\n\n".join(blocks)
