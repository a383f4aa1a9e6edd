from __future__ import annotations

from pydantic import BaseModel, Field, field_validator


# --- Requests ---


class ResearchRequest(BaseModel):
    query: str
    custom_urls: list[str] = Field(default_factory=list)
    language: str = "english"
    model: str | None = None

    @field_validator("query")
    @classmethod
    def query_not_blank(cls, value: str) -> str:
        stripped = value.strip()
        if not stripped:
            raise ValueError("A valid query string is required")
        return stripped

    @field_validator("custom_urls")
    @classmethod
    def strip_custom_urls(cls, value: list[str]) -> list[str]:
        return [url.strip() for url in value if url and url.strip()]
