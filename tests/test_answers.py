import pytest

from quiztaker.attempt.answers import AnswerTracker
from quiztaker.utils.exceptions import ValidationError


@pytest.fixture
def tracker():
    return AnswerTracker(["q1", "q2", "q3", "q4"])


def test_progress_tracks_set_and_clear(tracker):
    assert tracker.progress() == 0.0
    tracker.set_answer("q1", 2)
    tracker.set_answer("q3", 1)
    tracker.set_answer("q3", 0)
    assert tracker.progress() == 0.5
    tracker.clear_answer("q1")
    tracker.clear_answer("q2")
    assert tracker.progress() == 0.25
    assert tracker.answered_count == 1


def test_option_zero_is_an_answer(tracker):
    tracker.set_answer("q2", 0)
    assert tracker.is_answered("q2")
    assert tracker.selected("q2") == 0


def test_cleared_question_is_absent_from_payload(tracker):
    tracker.set_answer("q2", 1)
    tracker.clear_answer("q2")
    assert tracker.to_submission_payload() == []


def test_payload_follows_question_order(tracker):
    tracker.set_answer("q4", 3)
    tracker.set_answer("q1", 0)
    payload = tracker.to_submission_payload()
    assert [(e.question_id, e.selected_option) for e in payload] == [("q1", 0), ("q4", 3)]
    assert payload[0].model_dump(by_alias=True) == {"questionId": "q1", "selectedOption": 0}


def test_unknown_question_is_rejected(tracker):
    with pytest.raises(ValidationError):
        tracker.set_answer("nope", 1)
    with pytest.raises(ValidationError):
        tracker.clear_answer("nope")


def test_duplicate_ids_are_rejected():
    with pytest.raises(ValueError):
        AnswerTracker(["a", "a"])


def test_empty_quiz_has_zero_progress():
    assert AnswerTracker([]).progress() == 0.0
