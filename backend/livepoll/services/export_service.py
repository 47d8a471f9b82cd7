"""
Plain-text bodies for transcript and poll result downloads.
"""
from __future__ import annotations

from datetime import datetime
from typing import Iterable, Optional

from livepoll.schemas.live_session import PollResult, TranscriptEntry
from livepoll.services.poll_results import percentages


def transcript_filename(title: str, day: Optional[datetime] = None) -> str:
    day = day or datetime.now()
    return f"transcript-{title}-{day.strftime('%Y-%m-%d')}.txt"


def format_transcript(entries: Iterable[TranscriptEntry]) -> str:
    return "\n\n".join(f"[{entry.timestamp.strftime('%H:%M:%S')}] {entry.text}" for entry in entries)


def format_poll_result(result: PollResult, question: Optional[str] = None) -> str:
    lines = [
        f"Poll Question: {question or result.question_id}",
        f"Total Responses: {result.total_responses}",
        "",
        "Results:",
    ]
    for index, (option, pct) in enumerate(zip(result.options, percentages(result))):
        count = result.responses[index].count if index < len(result.responses) else 0
        lines.append(f'Option {index + 1}: "{option}" - {count} votes ({pct}%)')
    return "\n".join(lines)


def format_all_results(results: Iterable[PollResult], questions: Optional[dict] = None) -> str:
    questions = questions or {}
    blocks = [format_poll_result(r, questions.get(r.question_id)) for r in results]
    return "\n\n-----------------------\n\n".join(blocks)
