"""contextbound compaction components."""

from contextbound.compaction.engine import CompactionEngine, CompactionState
from contextbound.compaction.prompts import SUMMARY_PROMPT, render_summary_prompt

__all__ = [
    "CompactionEngine",
    "CompactionState",
    "SUMMARY_PROMPT",
    "render_summary_prompt",
]
