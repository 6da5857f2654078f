"""Per-message insight extraction (the map phase of a briefing)."""

from __future__ import annotations

import asyncio
import logging

from letterintel.analyze.sentiment import normalize_sentiment
from letterintel.config import get_briefing_config, get_rate_limit_delay
from letterintel.errors import CallTimeoutError, MalformedResponseError
from letterintel.llm.base import BaseLLMProvider
from letterintel.llm.parsing import parse_json_response
from letterintel.llm.prompts import MESSAGE_INSIGHT, SYSTEM_ANALYST
from letterintel.models import BatchReport, MessageInsight, RawMessage
from letterintel.retry import with_timeout

logger = logging.getLogger(__name__)

SNIPPET_CHARS = 200
PROMPT_CONTENT_CHARS = 6000


def _message_text(message: RawMessage) -> str:
    return message.normalized_text or message.body_text or ""


def _publisher(message: RawMessage) -> str:
    return message.sender_name or message.sender_email


def _str_list(value, limit: int) -> list[str]:
    if not isinstance(value, list):
        return []
    return [str(v).strip() for v in value if str(v).strip()][:limit]


def default_insight(message: RawMessage) -> MessageInsight:
    """Neutral placeholder for a message whose extraction failed."""
    return MessageInsight(
        source_id=message.source_id,
        publisher=_publisher(message),
        subject=message.subject,
        summary=message.subject,
        snippet=_message_text(message)[:SNIPPET_CHARS],
        failed=True,
    )


def parse_insight(message: RawMessage, text: str) -> MessageInsight:
    data = parse_json_response(text)
    if not isinstance(data, dict):
        raise MalformedResponseError("Insight response is not a JSON object")
    return MessageInsight(
        source_id=message.source_id,
        publisher=_publisher(message),
        subject=message.subject,
        themes=_str_list(data.get("themes"), 4),
        entities=_str_list(data.get("entities"), 10),
        sentiment=normalize_sentiment(data.get("sentiment")) or "neutral",
        summary=str(data.get("summary") or "").strip(),
        key_claims=_str_list(data.get("key_claims"), 3),
        snippet=_message_text(message)[:SNIPPET_CHARS],
    )


class InsightExtractor:
    """Extracts one structured insight per message.

    Calls run one at a time with a fixed delay between them, each under a
    wall-clock timeout. A failed message gets a default insight and is
    counted in the batch report; it never stops the batch.
    """

    def __init__(self, provider: BaseLLMProvider, config: dict):
        self.provider = provider
        self.timeout = get_briefing_config(config)["classify_timeout_seconds"]
        self.delay = get_rate_limit_delay(config)

    async def extract_one(self, message: RawMessage) -> MessageInsight:
        prompt = MESSAGE_INSIGHT.format(
            publisher=_publisher(message),
            subject=message.subject,
            content=_message_text(message)[:PROMPT_CONTENT_CHARS],
        )
        response = await self.provider.complete(
            prompt, system=SYSTEM_ANALYST, temperature=0.1, max_tokens=800, json_mode=True,
        )
        return parse_insight(message, response.text)

    async def extract_all(
        self, messages: list[RawMessage]
    ) -> tuple[list[MessageInsight], BatchReport]:
        report = BatchReport()
        insights = []
        for i, message in enumerate(messages):
            if i and self.delay:
                await asyncio.sleep(self.delay)
            report.processed += 1
            try:
                insight = await with_timeout(
                    self.extract_one(message), self.timeout,
                    what=f"insight for {message.source_id}",
                )
                report.succeeded += 1
            except CallTimeoutError as exc:
                logger.warning("%s", exc)
                report.timeouts += 1
                insight = default_insight(message)
            except MalformedResponseError as exc:
                logger.warning("Malformed insight for %s: %s", message.source_id, exc)
                report.malformed += 1
                insight = default_insight(message)
            except Exception as exc:
                logger.warning("Insight extraction failed for %s: %s", message.source_id, exc)
                report.errors += 1
                insight = default_insight(message)
            insights.append(insight)

        logger.info(
            "Insights: %d processed, %d ok, %d timeouts, %d malformed, %d errors",
            report.processed, report.succeeded, report.timeouts,
            report.malformed, report.errors,
        )
        return insights, report
