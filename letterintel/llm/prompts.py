"""Prompt templates for all LLM tasks."""

SYSTEM_ANALYST = """You are a research analyst working from a private archive of newsletters.
Be concise and factual. Use only the material you are given.
Never fabricate information; if the material does not say it, do not say it."""

EXTRACT_FACTS = """\
Extract the facts from the newsletter excerpts below that help answer the question.

QUESTION: {query}

EXCERPTS:
{chunks}

Rules:
- Each fact must be stated in, or directly implied by, a single excerpt.
- Cite the chunk_id of the excerpt the fact comes from.
- If no excerpt helps answer the question, return an empty list.

Respond in EXACTLY this JSON format (no markdown, no extra text):
{{
    "facts": [
        {{"fact": "One self-contained factual statement", "chunk_id": "the excerpt's chunk_id"}}
    ]
}}"""

SYNTHESIZE_ANSWER = """\
Answer the question using ONLY the facts below. Each fact carries its citation.

QUESTION: {query}

FACTS:
{facts}

Rules:
- Use only these facts. Do not add outside knowledge.
- Put the citation in square brackets right after every claim, e.g. [Publisher · Jan 5, 2025 · Subject].
- If facts disagree, say so and cite both sides.
- Keep it to a few short paragraphs."""

MESSAGE_INSIGHT = """\
Read this newsletter issue and extract its key content.

PUBLISHER: {publisher}
SUBJECT: {subject}
CONTENT:
{content}

Respond in EXACTLY this JSON format (no markdown, no extra text):
{{
    "themes": ["2-4 short topic phrases"],
    "entities": ["companies, people, places named"],
    "sentiment": "positive|negative|neutral",
    "summary": "1-2 sentences on what this issue argues or reports",
    "key_claims": ["up to 3 specific claims"]
}}"""

LABEL_NARRATIVE = """\
These newsletter issues were grouped because they cover the same story.

SOURCES:
{sources}

Write a short narrative for the group.

Respond in EXACTLY this JSON format (no markdown, no extra text):
{{
    "title": "Short descriptive title (5-8 words)",
    "synthesis": "2-3 sentences combining what the sources say",
    "counter_point": "The strongest dissenting view among the sources, or null",
    "source_sentiments": {{"<source_id>": "positive|negative|neutral"}},
    "consensus_sentiment": "Positive|Negative|Mixed"
}}"""

EXECUTIVE_SUMMARY = """\
Write the executive summary for a newsletter briefing.

NARRATIVES:
{narratives}

OTHER NOTABLE ITEMS:
{others}

Respond in EXACTLY this JSON format (no markdown, no extra text):
{{
    "executive_summary": ["three one-sentence bullets, most important first"]
}}"""
