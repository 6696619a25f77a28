"""In-progress answers for one attempt."""

from __future__ import annotations

from typing import Dict, Iterable, List

from quiztaker.models import AnswerEntry
from quiztaker.utils.exceptions import ValidationError


class AnswerTracker:
    """Maps question id to the selected option index.

    A question with no entry is unanswered. Option 0 is a real answer.
    """

    def __init__(self, question_ids: Iterable[str]) -> None:
        self._order: List[str] = list(question_ids)
        if len(set(self._order)) != len(self._order):
            raise ValueError("Question ids must be unique")
        self._known = set(self._order)
        self._selected: Dict[str, int] = {}

    def set_answer(self, question_id: str, option_index: int) -> None:
        self._require_known(question_id)
        self._selected[question_id] = int(option_index)

    def clear_answer(self, question_id: str) -> None:
        self._require_known(question_id)
        self._selected.pop(question_id, None)

    def selected(self, question_id: str) -> int | None:
        return self._selected.get(question_id)

    def is_answered(self, question_id: str) -> bool:
        return question_id in self._selected

    @property
    def answered_count(self) -> int:
        return len(self._selected)

    @property
    def total(self) -> int:
        return len(self._order)

    def progress(self) -> float:
        """Answered fraction in [0, 1]."""
        if not self._order:
            return 0.0
        return self.answered_count / self.total

    def to_submission_payload(self) -> List[AnswerEntry]:
        """Answered questions only, in question order."""
        return [
            AnswerEntry(question_id=qid, selected_option=self._selected[qid])
            for qid in self._order
            if qid in self._selected
        ]

    def reset(self) -> None:
        self._selected.clear()

    def _require_known(self, question_id: str) -> None:
        if question_id not in self._known:
            raise ValidationError(f"Unknown question: {question_id}")
