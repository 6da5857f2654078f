"""Abstract base class for analyzers."""

from __future__ import annotations

from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from typing import Any

from letterintel.models import MessageInsight, NarrativeCluster, Publisher, RawMessage


@dataclass
class AnalysisContext:
    """Everything gathered for one briefing window."""

    messages: list[RawMessage]
    insights: list[MessageInsight]
    clusters: list[NarrativeCluster] = field(default_factory=list)
    publishers: dict[str, Publisher] = field(default_factory=dict)
    previous_messages: list[RawMessage] = field(default_factory=list)


class BaseAnalyzer(ABC):
    """Base class for analysis steps."""

    def __init__(self, config: dict):
        self.config = config

    @abstractmethod
    async def analyze(self, context: AnalysisContext) -> list[Any]:
        """Run analysis and return results."""
        ...

    @property
    @abstractmethod
    def name(self) -> str:
        """Analyzer name."""
        ...
