"""
Mastery Calculator for keyword badges.

A keyword groups several concepts; its mastery is the plain mean of the
members' BKT p_know. Members without a snapshot are left out of the
mean rather than counted as zero, and a keyword with no measured member
reports NO_DATA (gray).

Concept snapshots are loaded with a single batch call per learner and
then joined in memory, never fetched per concept.
"""

from __future__ import annotations

from collections.abc import Iterable, Sequence
from dataclasses import dataclass, field
from typing import TYPE_CHECKING

from loguru import logger

from src.core.mastery import (
    DEFAULT_MASTERY_CONFIG,
    NO_DATA,
    BktSnapshot,
    MasteryColor,
    MasteryConfig,
)

if TYPE_CHECKING:
    from src.core.gateway import PersistenceGateway


def keyword_mastery(states: Iterable[BktSnapshot | None]) -> float:
    """
    Mean p_know over the snapshots that exist.

    Returns:
        Mean in [0, 1], or NO_DATA when no snapshot remains
    """
    values = [state.p_know for state in states if state is not None]
    if not values:
        return NO_DATA
    return sum(values) / len(values)


def classify(mastery: float, config: MasteryConfig = DEFAULT_MASTERY_CONFIG) -> MasteryColor:
    """Color band for a keyword mastery value."""
    return MasteryColor.from_score(mastery, config)


@dataclass
class Keyword:
    """A named group of concepts within a study summary."""

    keyword_id: str
    name: str
    priority: int = 0
    concept_ids: list[str] = field(default_factory=list)

    def __post_init__(self):
        if self.priority not in (0, 1, 2, 3):
            raise ValueError(f"Keyword priority must be 0-3, got {self.priority}")


@dataclass
class KeywordMastery:
    """Derived, never persisted."""

    keyword: Keyword
    mastery: float
    color: MasteryColor
    measured_concepts: int

    @property
    def label(self) -> str:
        return self.color.label

    @property
    def has_data(self) -> bool:
        return self.mastery >= 0


class MasteryAggregator:
    """
    Keyword mastery over a cached set of concept snapshots.

    refresh() performs exactly one FetchConceptStates; keyword_report()
    only reads the cache.
    """

    def __init__(
        self,
        gateway: PersistenceGateway,
        config: MasteryConfig = DEFAULT_MASTERY_CONFIG,
    ):
        self.gateway = gateway
        self.config = config
        self._snapshots: dict[str, BktSnapshot] = {}
        self._loaded = False

    @property
    def loaded(self) -> bool:
        return self._loaded

    async def refresh(self) -> int:
        """
        Reload all concept snapshots for the current learner.

        Returns:
            Number of snapshots loaded
        """
        snapshots = await self.gateway.fetch_concept_states()
        self._snapshots = {s.concept_id: s for s in snapshots}
        self._loaded = True
        logger.debug(f"Loaded {len(self._snapshots)} concept snapshots")
        return len(self._snapshots)

    def snapshot(self, concept_id: str) -> BktSnapshot | None:
        return self._snapshots.get(concept_id)

    def mastery_for(self, keyword: Keyword) -> KeywordMastery:
        members = [self._snapshots.get(cid) for cid in keyword.concept_ids]
        mastery = keyword_mastery(members)
        return KeywordMastery(
            keyword=keyword,
            mastery=mastery,
            color=classify(mastery, self.config),
            measured_concepts=sum(1 for m in members if m is not None),
        )

    def keyword_report(self, keywords: Sequence[Keyword]) -> list[KeywordMastery]:
        """
        Mastery rows for the given keywords.

        Raises:
            RuntimeError: refresh() has not been awaited yet
        """
        if not self._loaded:
            raise RuntimeError("MasteryAggregator.refresh() must be awaited before reporting")
        return [self.mastery_for(keyword) for keyword in keywords]
