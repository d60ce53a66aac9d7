import logging
from typing import Any, Optional, Sequence

from .models import QuestionType
from .normalizer import TRUE_FALSE_SYNONYMS, normalize_letters, normalize_text, normalize_true_false, unwrap

logger = logging.getLogger("uvicorn.error")


def letters_match(student_value: Any, accepted: Sequence[str], select_count: Optional[int] = None) -> bool:
    """Unordered set equality of chosen letters; no partial credit."""
    expected = set(accepted)
    received = normalize_letters(student_value)
    if not expected or not received:
        return False
    if select_count and len(received) != select_count:
        return False
    return len(received) == len(expected) and expected == set(received)


def judge(
    question_type: QuestionType,
    student_value: Any,
    accepted: Sequence[str],
    *,
    multi: bool = False,
    select_count: Optional[int] = None,
) -> bool:
    """
    Correctness of one answer unit against one accepted group.
    `accepted` holds already-normalized alternatives (or letters).
    """
    if not accepted:
        return False
    student_value = unwrap(student_value)

    if question_type == QuestionType.MULTI_SELECT or multi:
        return letters_match(student_value, accepted, select_count)

    if isinstance(student_value, (list, tuple, dict)):
        # shape mismatch: a scalar unit got a compound value
        logger.debug(f"Shape mismatch for {question_type.value}: got {type(student_value).__name__}")
        return False

    if question_type == QuestionType.MULTIPLE_CHOICE:
        if len(accepted) > 1:
            return letters_match(student_value, accepted)
        received = normalize_text(student_value)
        return bool(received) and received == accepted[0]

    if question_type == QuestionType.TRUE_FALSE:
        received = normalize_true_false(student_value)
        if not received:
            return False
        return any(TRUE_FALSE_SYNONYMS.get(a, a) == received for a in accepted)

    received = normalize_text(student_value)
    return bool(received) and received in accepted
