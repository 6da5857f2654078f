"""Abstract base class for newsletter source adapters."""

from __future__ import annotations

from abc import ABC, abstractmethod
from datetime import datetime

from letterintel.models import RawMessage


class BaseSource(ABC):
    """Base class for anything that yields raw newsletter messages."""

    def __init__(self, config: dict):
        self.config = config

    @abstractmethod
    async def fetch_new_messages(self, since: datetime | None = None) -> list[RawMessage]:
        """Return messages sent after ``since`` (all messages when None)."""
        ...

    @property
    @abstractmethod
    def name(self) -> str:
        """Human-readable source name."""
        ...
