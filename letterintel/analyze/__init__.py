"""Analyzer registry for briefing sections beyond the narrative clusters."""

from __future__ import annotations

from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from letterintel.analyze.base import BaseAnalyzer

ANALYZERS: dict[str, type[BaseAnalyzer]] = {}


def register_analyzer(name: str):
    """Decorator to register an analyzer."""

    def decorator(cls):
        ANALYZERS[name] = cls
        return cls

    return decorator


from letterintel.analyze.radar import RadarAnalyzer  # noqa: E402, F401
from letterintel.analyze.serendipity import SerendipityAnalyzer  # noqa: E402, F401
