"""Abstract base class for batch processors."""

from __future__ import annotations

from abc import ABC, abstractmethod
from typing import Generic, TypeVar

T = TypeVar("T")


class BaseProcessor(ABC, Generic[T]):
    """A step that takes a batch of items and returns the kept ones.

    Dedup works on RawMessage batches before storage; clustering works on
    MessageInsight batches during a briefing.
    """

    def __init__(self, config: dict):
        self.config = config

    @abstractmethod
    async def process(self, items: list[T]) -> list[T]:
        """Return the items to keep, possibly annotated in place."""
        ...

    @property
    @abstractmethod
    def name(self) -> str:
        ...
