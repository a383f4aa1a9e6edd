"""Loguru sinks and structured log helpers for the research pipeline."""

import logging
import sys
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Optional

from loguru import logger

from balanced_research.config import settings

CONSOLE_FORMAT = (
    "<green>{time:YYYY-MM-DD HH:mm:ss}</green> | <level>{level: <8}</level> | "
    "<cyan>{name}</cyan>:<cyan>{function}</cyan>:<cyan>{line}</cyan> - <level>{message}</level>"
)
FILE_FORMAT = "{time:YYYY-MM-DD HH:mm:ss} | {level: <8} | {name}:{function}:{line} - {message}"

# Chatty third-party loggers routed through stdlib logging.
NOISY_LOGGERS = (
    "httpx",
    "httpcore",
    "hpack",
    "openai._base_client",
    "trafilatura",
    "readability.readability",
    "asyncio",
)


def configure_logging(log_dir: str | None = None) -> None:
    logger.remove()
    logger.add(sys.stderr, format=CONSOLE_FORMAT, level=settings.app_log_level.upper(), colorize=True)

    target = settings.log_dir if log_dir is None else log_dir
    if target:
        directory = Path(target)
        directory.mkdir(parents=True, exist_ok=True)
        logger.add(
            directory / "balanced_research_{time:YYYY-MM-DD}.log",
            format=FILE_FORMAT,
            level="DEBUG",
            rotation="00:00",
            retention="7 days",
            compression="zip",
        )

    for name in NOISY_LOGGERS:
        logging.getLogger(name).setLevel(settings.noisy_log_level.upper())


configure_logging()


def _record(**fields: Any) -> dict[str, Any]:
    return {"timestamp": datetime.now(timezone.utc).isoformat(), **fields}


def log_llm_call(
    model: str,
    caller: str,
    input_tokens: int = 0,
    output_tokens: int = 0,
    duration_ms: int = 0,
    status: str = "success",
    error: Optional[str] = None,
) -> None:
    """One completion request: token usage, latency and outcome."""
    record = _record(
        model=model,
        caller=caller,
        input_tokens=input_tokens,
        output_tokens=output_tokens,
        total_tokens=input_tokens + output_tokens,
        duration_ms=duration_ms,
        status=status,
        error=error,
    )
    if error:
        logger.error(f"LLM_CALL_FAILED: {record}")
    else:
        logger.info(f"LLM_CALL: {record}")


def log_research_step(query: str, step_type: str, status: str, data: Optional[dict] = None) -> None:
    logger.info(f"RESEARCH_STEP: {_record(query=query[:120], step_type=step_type, status=status, data=data)}")


def log_source_fetch(
    source: str,
    status: str,
    results: int = 0,
    duration_ms: int = 0,
    error: Optional[str] = None,
) -> None:
    """Outcome of one source adapter call."""
    record = _record(source=source, status=status, results=results, duration_ms=duration_ms, error=error)
    if error:
        logger.warning(f"SOURCE_FETCH_FAILED: {record}")
    else:
        logger.info(f"SOURCE_FETCH: {record}")
