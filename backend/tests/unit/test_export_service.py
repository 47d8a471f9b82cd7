from datetime import datetime, timezone

from livepoll.schemas.live_session import OptionCount, PollResult, TranscriptEntry
from livepoll.services.export_service import (
    format_all_results,
    format_poll_result,
    format_transcript,
    transcript_filename,
)


def test_transcript_filename() -> None:
    assert transcript_filename("Physics", datetime(2026, 10, 18)) == "transcript-Physics-2026-10-18.txt"


def test_format_transcript() -> None:
    entries = [
        TranscriptEntry(id="1", text="hello", timestamp=datetime(2026, 1, 1, 9, 0, 5, tzinfo=timezone.utc)),
        TranscriptEntry(id="2", text="world", timestamp=datetime(2026, 1, 1, 9, 1, 0, tzinfo=timezone.utc)),
    ]

    assert format_transcript(entries) == "[09:00:05] hello\n\n[09:01:00] world"


def _result() -> PollResult:
    return PollResult(
        question_id="p1",
        options=["Yes", "No"],
        responses=[OptionCount(option=0, count=2), OptionCount(option=1, count=1)],
        total_responses=3,
    )


def test_format_poll_result() -> None:
    body = format_poll_result(_result(), "Ready?")

    assert body.splitlines() == [
        "Poll Question: Ready?",
        "Total Responses: 3",
        "",
        "Results:",
        'Option 1: "Yes" - 2 votes (67%)',
        'Option 2: "No" - 1 votes (33%)',
    ]


def test_format_all_results_separates_blocks() -> None:
    body = format_all_results([_result(), _result()], {"p1": "Ready?"})

    assert body.count("Poll Question: Ready?") == 2
    assert "\n\n-----------------------\n\n" in body
