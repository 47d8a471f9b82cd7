"""
Roster & result aggregation (pure derived views).
"""
from __future__ import annotations

import math
from typing import Dict, Iterable, List, Literal

from livepoll.schemas.live_session import (
    OptionCount,
    Participant,
    PollQuestion,
    PollResponse,
    PollResult,
)

DuplicateAnswerPolicy = Literal["count_all", "latest", "first"]


def _apply_duplicate_policy(
    responses: List[PollResponse],
    policy: DuplicateAnswerPolicy,
) -> List[PollResponse]:
    if policy == "count_all":
        return responses
    ordered = sorted(responses, key=lambda r: r.timestamp)
    kept: Dict[str, PollResponse] = {}
    for response in ordered:
        if policy == "first" and response.participant_id in kept:
            continue
        kept[response.participant_id] = response
    return list(kept.values())


def compute_poll_result(
    poll: PollQuestion,
    responses: Iterable[PollResponse],
    policy: DuplicateAnswerPolicy = "count_all",
) -> PollResult:
    """Group-by-count over one poll's responses, aligned to its options."""
    relevant = [r for r in responses if r.question_id == poll.id]
    relevant = _apply_duplicate_policy(relevant, policy)
    counts = [0] * len(poll.options)
    for response in relevant:
        if 0 <= response.selected_option < len(counts):
            counts[response.selected_option] += 1
    return PollResult(
        question_id=poll.id,
        options=list(poll.options),
        responses=[OptionCount(option=i, count=c) for i, c in enumerate(counts)],
        total_responses=len(relevant),
    )


def percentage(count: int, total: int) -> int:
    # round half up, matching what participants see in the widget
    if total <= 0:
        return 0
    return int(math.floor(count / total * 100 + 0.5))


def percentages(result: PollResult) -> List[int]:
    return [percentage(item.count, result.total_responses) for item in result.responses]


def roster_view(participants: Iterable[Participant]) -> List[Participant]:
    return sorted(participants, key=lambda p: p.joined_at)
