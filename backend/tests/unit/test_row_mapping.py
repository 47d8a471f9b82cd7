from datetime import datetime, timedelta, timezone

from livepoll.schemas.live_session import LiveSession, PollQuestion, PollResponse, SessionSettings
from livepoll.services.row_mapping import (
    format_ts,
    parse_answer,
    parse_ts,
    poll_from_row,
    poll_to_row,
    response_from_row,
    response_to_row,
    session_from_row,
    session_to_row,
)


def test_parse_ts_normalizes_to_utc() -> None:
    assert parse_ts("2024-03-01T10:00:00Z") == datetime(2024, 3, 1, 10, tzinfo=timezone.utc)
    assert parse_ts("2024-03-01T12:00:00+02:00") == datetime(2024, 3, 1, 10, tzinfo=timezone.utc)
    assert parse_ts(datetime(2024, 3, 1, 10)).tzinfo == timezone.utc
    assert parse_ts("garbage").tzinfo is not None


def test_format_ts_is_utc_iso() -> None:
    local = datetime(2024, 3, 1, 12, tzinfo=timezone(timedelta(hours=2)))

    assert format_ts(local) == "2024-03-01T10:00:00+00:00"


def test_session_row_carries_settings_and_status() -> None:
    session = LiveSession(
        id="s1",
        title="Physics",
        host_id="h1",
        access_code="012345",
        status="active",
        settings=SessionSettings(poll_frequency=3, participant_names=False),
    )

    row = session_to_row(session)
    back = session_from_row({**row, "active": False})

    assert row["session_code"] == "012345"
    assert row["quiz_interval"] == 3
    assert row["active"] is True
    assert back.status == "completed"
    assert back.settings.participant_names is False


def test_session_without_settings_uses_quiz_interval() -> None:
    session = session_from_row({"id": "s1", "title": "T", "session_code": "111111", "quiz_interval": 10})

    assert session.settings.poll_frequency == 10
    assert session.status == "active"


def test_poll_round_trip_keeps_published_flag() -> None:
    poll = PollQuestion(id="p1", question="Q?", options=["a", "b"], correct_option=1)

    back, published = poll_from_row(poll_to_row(poll, "s1", published=True))

    assert published is True
    assert back.options == ["a", "b"]
    assert back.correct_option == 1


def test_poll_from_row_decodes_string_options_and_drops_bad_correct_option() -> None:
    back, published = poll_from_row(
        {"id": "p1", "question": "Q?", "options": '["x", "y", "z"]', "correct_option": 7}
    )

    assert back.options == ["x", "y", "z"]
    assert back.correct_option is None
    assert published is False


def test_answer_stored_as_index_text() -> None:
    response = PollResponse(question_id="p1", participant_id="u1", selected_option=2)

    row = response_to_row(response, "s1", "r1")

    assert row["answer"] == "2"
    assert response_from_row(row) == response


def test_parse_answer_accepts_labels_when_options_known() -> None:
    assert parse_answer("Friction", ["Inertia", "Friction"]) == 1
    assert parse_answer("Friction") is None
    assert parse_answer(3) == 3
    assert parse_answer(True) is None
    assert parse_answer(-1) is None
    assert response_from_row({"poll_id": "p1", "participant_id": "u1", "answer": "Nope"}, ["a", "b"]) is None
