"""Evidence-bounded fact extraction from retrieved chunks."""

from __future__ import annotations

import logging

from letterintel.config import get_search_config
from letterintel.errors import GenerationError, MalformedResponseError
from letterintel.llm.base import BaseLLMProvider, LLMResponse
from letterintel.llm.parsing import parse_json_response
from letterintel.llm.prompts import EXTRACT_FACTS, SYSTEM_ANALYST
from letterintel.models import ExtractedFact, SearchHit
from letterintel.synthesize.answer import format_date

logger = logging.getLogger(__name__)


def _format_chunks(hits: list[SearchHit]) -> str:
    blocks = []
    for hit in hits:
        blocks.append(
            f"chunk_id: {hit.chunk_id}\n"
            f"publisher: {hit.publisher} | date: {format_date(hit.sent_at)} | subject: {hit.subject}\n"
            f"{hit.text}"
        )
    return "\n\n---\n\n".join(blocks)


def parse_facts(text: str, known_chunk_ids: set[str]) -> list[ExtractedFact]:
    """Parse the model's fact list; unparseable output yields no facts.

    Facts with empty text or a chunk id that was not supplied are dropped.
    """
    try:
        data = parse_json_response(text)
    except MalformedResponseError as exc:
        logger.warning("Fact extraction output unparseable, treating as no facts: %s", exc)
        return []

    items = data.get("facts", []) if isinstance(data, dict) else data
    if not isinstance(items, list):
        return []

    facts = []
    for item in items:
        if not isinstance(item, dict):
            continue
        fact = str(item.get("fact") or "").strip()
        chunk_id = str(item.get("chunk_id") or "").strip()
        if not fact:
            continue
        if chunk_id not in known_chunk_ids:
            logger.debug("Dropping fact citing unknown chunk %r", chunk_id)
            continue
        facts.append(ExtractedFact(fact=fact, chunk_id=chunk_id))
    return facts


class FactExtractor:
    """Stage one: pull discrete, attributed facts out of the evidence."""

    def __init__(self, provider: BaseLLMProvider, config: dict):
        self.provider = provider
        self.settings = get_search_config(config)

    async def extract(
        self, query: str, hits: list[SearchHit]
    ) -> tuple[list[ExtractedFact], LLMResponse | None]:
        if not hits:
            return [], None

        prompt = EXTRACT_FACTS.format(query=query, chunks=_format_chunks(hits))
        try:
            response = await self.provider.complete(
                prompt,
                system=SYSTEM_ANALYST,
                temperature=self.settings["temperature"],
                max_tokens=self.settings["max_tokens"],
                json_mode=True,
                max_retries=0,
            )
        except Exception as exc:
            raise GenerationError("extraction", str(exc)) from exc

        facts = parse_facts(response.text, {h.chunk_id for h in hits})
        logger.info("Extracted %d facts from %d chunks", len(facts), len(hits))
        return facts, response
