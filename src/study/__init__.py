"""
Study Module.

Provides:
- Retention scheduling (FSRS-4.5)
- Keyword mastery aggregation
"""

from src.study.mastery_calculator import (
    Keyword,
    KeywordMastery,
    MasteryAggregator,
    classify,
    keyword_mastery,
)
from src.study.retention_engine import (
    FSRSScheduler,
    FsrsParameters,
    ItemState,
    ReviewGrade,
    ScheduleState,
    initial_state,
    schedule_update,
)

__all__ = [
    "FSRSScheduler",
    "FsrsParameters",
    "ItemState",
    "ReviewGrade",
    "ScheduleState",
    "initial_state",
    "schedule_update",
    "Keyword",
    "KeywordMastery",
    "MasteryAggregator",
    "classify",
    "keyword_mastery",
]
