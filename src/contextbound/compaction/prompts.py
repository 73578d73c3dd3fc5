"""Prompt template for compaction summaries."""

from __future__ import annotations

from collections.abc import Sequence

from jinja2 import Template

from contextbound.models.turn import Turn, render_turns

SUMMARY_PROMPT = Template(
    """\
You are a context summarization assistant. Write a summary of the conversation \
below that will replace it, so the conversation can continue seamlessly from \
the summary and the most recent turns.

The summary must:
1. Preserve every key fact, decision, and technical specific (names, file paths, \
commands, code references, versions, constraints) that may be referenced later.
2. Follow the chronological order of the conversation.
3. Be roughly 30-40% of the original length (about {{ target_low }}-{{ target_high }} characters).
4. Contain only the summary itself. No preamble, no closing remarks, no commentary \
about the task.

An earlier summary, if present, is part of the conversation: fold its content \
into the new summary.

<conversation>
{{ transcript }}
</conversation>
""",
    keep_trailing_newline=True,
)

TARGET_RATIO_LOW = 0.30
TARGET_RATIO_HIGH = 0.40


def render_summary_prompt(turns: Sequence[Turn]) -> str:
    """Render the full summarization prompt for ``turns``."""
    transcript = render_turns(turns)
    return SUMMARY_PROMPT.render(
        transcript=transcript,
        target_low=int(len(transcript) * TARGET_RATIO_LOW),
        target_high=int(len(transcript) * TARGET_RATIO_HIGH),
    )
