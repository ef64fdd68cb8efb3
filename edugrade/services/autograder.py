"""
Auto-Grading Engine

Per-question scoring rules for the objectively checkable question types.
Every auto-graded question is all-or-nothing: the student gets the full
question points or zero.

The functions take any object exposing the ExamQuestion attributes, so they
work on mapped rows and on unsaved instances alike.
"""

import logging

from edugrade.models.exam import QuestionType

logger = logging.getLogger(__name__)

_TRUE_TOKENS = {"true", "1", "yes", "t", "y"}
_FALSE_TOKENS = {"false", "0", "no", "f", "n"}


def parse_boolean(value: str | None) -> bool:
    """
    Parse a true/false answer token. Anything unrecognized counts as False.
    """
    if value is None:
        return False
    token = value.strip().lower()
    if token in _TRUE_TOKENS:
        return True
    if token in _FALSE_TOKENS:
        return False
    return False


def _is_blank(value: str | None) -> bool:
    return value is None or not str(value).strip()


def can_question_be_auto_graded(question) -> bool:
    """
    Decide whether a question can be scored without an instructor.

    - multiple-choice: at least one option and a correct index
    - true/false: a non-blank correct answer
    - short-answer: at least one non-blank acceptable answer
    - essay and unrecognized types: never
    """
    question_type = QuestionType.parse(question.type)

    if question_type is QuestionType.MULTIPLE_CHOICE:
        return bool(question.options) and question.correct_answer_index is not None

    if question_type is QuestionType.TRUE_FALSE:
        return not _is_blank(question.correct_answer)

    if question_type is QuestionType.SHORT_ANSWER:
        return any(not _is_blank(a) for a in (question.acceptable_answers or []))

    return False


def _full_points(question) -> int:
    return question.points or 0


def _is_plain_integer(text: str) -> bool:
    # ASCII digits with at most one leading sign; int() also takes "1_0" and "١"
    digits = text[1:] if text[:1] in ("+", "-") else text
    return digits.isascii() and digits.isdigit()


def grade_multiple_choice(question, student_answer: str) -> int:
    options = question.options or []
    correct_index = question.correct_answer_index
    if correct_index is None or not options:
        logger.warning(f"Multiple choice question {question.id} has no answer key")
        return 0

    answer = student_answer.strip()
    if _is_plain_integer(answer):
        answer_index = int(answer)
    else:
        # not an index, look the text up among the options
        answer_index = next(
            (i for i, option in enumerate(options) if option is not None and option.strip() == answer),
            -1,
        )
        if answer_index == -1:
            logger.debug(f"Answer {answer!r} is not an option of question {question.id}")
            return 0

    return _full_points(question) if answer_index == correct_index else 0


def grade_true_false(question, student_answer: str) -> int:
    if question.correct_answer is None:
        logger.warning(f"True/false question {question.id} has no correct answer")
        return 0
    if parse_boolean(student_answer) == parse_boolean(question.correct_answer):
        return _full_points(question)
    return 0


def grade_short_answer(question, student_answer: str) -> int:
    acceptable_answers = question.acceptable_answers or []
    case_sensitive = bool(question.case_sensitive)

    answer = student_answer.strip()
    if not case_sensitive:
        answer = answer.lower()

    for acceptable in acceptable_answers:
        if _is_blank(acceptable):
            continue
        expected = acceptable.strip()
        if not case_sensitive:
            expected = expected.lower()
        if expected == answer:
            return _full_points(question)
    return 0


_GRADERS = {
    QuestionType.MULTIPLE_CHOICE: grade_multiple_choice,
    QuestionType.TRUE_FALSE: grade_true_false,
    QuestionType.SHORT_ANSWER: grade_short_answer,
}


def grade_question(question, student_answer: str | None) -> int:
    """
    Score one answer. Blank answers score 0 without looking at the question
    type, and a grading error on a single question also scores 0.
    """
    if _is_blank(student_answer):
        return 0

    grader = _GRADERS.get(QuestionType.parse(question.type))
    if grader is None:
        return 0

    try:
        return grader(question, str(student_answer))
    except Exception as e:
        logger.error(f"Error grading question {question.id}: {e}", exc_info=True)
        return 0
