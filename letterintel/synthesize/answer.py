"""Citation-grounded answer synthesis."""

from __future__ import annotations

import logging
from datetime import datetime

from letterintel.config import get_search_config
from letterintel.errors import GenerationError
from letterintel.llm.base import BaseLLMProvider, LLMResponse
from letterintel.llm.prompts import SYNTHESIZE_ANSWER, SYSTEM_ANALYST
from letterintel.models import Citation, ExtractedFact, SearchHit

logger = logging.getLogger(__name__)

NO_INFORMATION_ANSWER = (
    "No information found in the newsletter archive that answers this query."
)


def format_date(dt: datetime | None) -> str:
    """Dates as 'Jan 5, 2025'."""
    if dt is None:
        return "Unknown date"
    return f"{dt:%b} {dt.day}, {dt.year}"


def format_citation(hit: SearchHit) -> str:
    return f"{hit.publisher} · {format_date(hit.sent_at)} · {hit.subject}"


def build_citations(
    facts: list[ExtractedFact], hits: list[SearchHit], limit: int = 5
) -> list[Citation]:
    """One citation per distinct cited chunk, in order of first use."""
    by_id = {h.chunk_id: h for h in hits}
    citations = []
    seen: set[str] = set()
    for fact in facts:
        if fact.chunk_id in seen or fact.chunk_id not in by_id:
            continue
        seen.add(fact.chunk_id)
        hit = by_id[fact.chunk_id]
        citations.append(Citation(
            chunk_id=hit.chunk_id,
            label=format_citation(hit),
            publisher=hit.publisher,
            subject=hit.subject,
            sent_at=hit.sent_at,
        ))
        if len(citations) >= limit:
            break
    return citations


class AnswerSynthesizer:
    """Stage two: compose an answer from extracted facts only."""

    def __init__(self, provider: BaseLLMProvider, config: dict):
        self.provider = provider
        self.settings = get_search_config(config)

    async def synthesize(
        self, query: str, facts: list[ExtractedFact], hits: list[SearchHit]
    ) -> LLMResponse:
        by_id = {h.chunk_id: h for h in hits}
        lines = []
        for fact in facts:
            hit = by_id.get(fact.chunk_id)
            label = format_citation(hit) if hit else fact.chunk_id
            lines.append(f"- {fact.fact} [{label}]")

        prompt = SYNTHESIZE_ANSWER.format(query=query, facts="\n".join(lines))
        try:
            return await self.provider.complete(
                prompt,
                system=SYSTEM_ANALYST,
                temperature=self.settings["temperature"],
                max_tokens=self.settings["max_tokens"],
                max_retries=0,
            )
        except Exception as exc:
            raise GenerationError("synthesis", str(exc)) from exc
