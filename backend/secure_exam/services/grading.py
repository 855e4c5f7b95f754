"""
Auto-grading of objective questions.

Grading is a pure function of the answers and the question bank: it never
touches the database and never mutates its inputs. The attempt service
copies the result onto the stored answers.

Matching rules:

* ``multiple_choice`` / ``true_false``: case-insensitive, whitespace-trimmed
  exact equality with the question's correct answer.
* ``short_answer``: exact trimmed lowercase equality, or every
  space-separated token of the expected answer appears as a substring of
  the submission (keyword containment).

Marks are all-or-nothing. Answers that reference a question no longer in
the bank are skipped and contribute nothing.
"""
from dataclasses import dataclass, field
import math
from typing import Any, Iterable, List, Mapping, Optional

from ..models.exam import QuestionType


@dataclass(frozen=True)
class GradedAnswer:
    question_id: int
    is_correct: bool
    marks_awarded: float


@dataclass(frozen=True)
class GradingResult:
    answers: List[GradedAnswer] = field(default_factory=list)
    score: float = 0

    def for_question(self, question_id: int) -> Optional[GradedAnswer]:
        for graded in self.answers:
            if graded.question_id == question_id:
                return graded
        return None


def _normalize(value: Any) -> str:
    if value is None:
        return ""
    return str(value).strip().lower()


def is_exact_match(submitted: Any, expected: Any) -> bool:
    return _normalize(submitted) == _normalize(expected)


def is_keyword_match(submitted: Any, expected: Any) -> bool:
    student = _normalize(submitted)
    correct = _normalize(expected)
    if student == correct:
        return True
    return all(word in student for word in correct.split(" "))


def is_correct_answer(question_type: str, submitted: Any, expected: Any) -> Optional[bool]:
    """Return correctness, or None for a question type the engine does not grade."""
    if question_type in (QuestionType.MULTIPLE_CHOICE, QuestionType.TRUE_FALSE):
        return is_exact_match(submitted, expected)
    if question_type == QuestionType.SHORT_ANSWER:
        return is_keyword_match(submitted, expected)
    return None


def grade_answers(answers: Iterable[Any], questions: Iterable[Any]) -> GradingResult:
    """Grade ``answers`` (objects with ``question_id`` and ``answer``) against ``questions``."""
    bank: Mapping[int, Any] = {question.id: question for question in questions}

    graded: List[GradedAnswer] = []
    total = 0
    for ans in answers:
        question = bank.get(ans.question_id)
        if question is None:
            continue

        correct = is_correct_answer(question.question_type, ans.answer, question.correct_answer)
        if correct is None:
            continue

        marks = question.marks or 0
        awarded = marks if correct else 0
        graded.append(GradedAnswer(question_id=question.id, is_correct=correct, marks_awarded=awarded))
        total += awarded

    return GradingResult(answers=graded, score=total)


def compute_percentage(score: float, total_marks: Optional[float]) -> int:
    """round(score / total * 100) with halves rounded up; 0 when there are no marks."""
    if not total_marks or total_marks <= 0:
        return 0
    return int(math.floor(score / total_marks * 100 + 0.5))


def is_passed(score: float, passing_marks: Optional[float]) -> bool:
    return score >= (passing_marks or 0)
