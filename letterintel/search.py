"""Question answering over the archive: retrieve, extract, synthesize."""

from __future__ import annotations

import logging

from letterintel.config import get_search_config
from letterintel.models import SearchResult
from letterintel.retrieve.hybrid import HybridRetriever
from letterintel.synthesize.answer import (
    NO_INFORMATION_ANSWER,
    AnswerSynthesizer,
    build_citations,
)
from letterintel.synthesize.extractor import FactExtractor

logger = logging.getLogger(__name__)


class SearchService:
    """Answers queries using only facts found in retrieved chunks."""

    def __init__(
        self,
        retriever: HybridRetriever,
        extractor: FactExtractor,
        synthesizer: AnswerSynthesizer,
        config: dict,
    ):
        self.retriever = retriever
        self.extractor = extractor
        self.synthesizer = synthesizer
        self.settings = get_search_config(config)

    async def search(self, query: str) -> SearchResult:
        query = (query or "").strip()
        if not query:
            raise ValueError("Query must not be empty")

        hits = await self.retriever.search(query)
        result = SearchResult(query=query, answer=NO_INFORMATION_ANSWER, chunks_used=len(hits))
        if not hits:
            logger.info("No chunks retrieved for query")
            return result

        facts, extraction = await self.extractor.extract(query, hits)
        if extraction is not None:
            result.input_tokens += extraction.input_tokens
            result.output_tokens += extraction.output_tokens
            result.cost_usd += extraction.cost_usd
        if not facts:
            logger.info("No facts extracted; returning no-information answer")
            return result

        answer = await self.synthesizer.synthesize(query, facts, hits)
        result.answer = answer.text.strip()
        result.input_tokens += answer.input_tokens
        result.output_tokens += answer.output_tokens
        result.cost_usd += answer.cost_usd
        result.facts_used = len(facts)
        result.citations = build_citations(facts, hits, self.settings["max_citations"])

        logger.info(
            "Answered with %d facts, %d citations, $%.4f",
            len(facts), len(result.citations), result.cost_usd,
        )
        return result
