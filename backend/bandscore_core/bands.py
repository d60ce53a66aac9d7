"""IELTS raw-score to band conversion for the 40-item Listening and Reading papers."""
from typing import Optional, Sequence, Tuple

from .models import ExamVariant, SectionType

MIN_BAND = 2.0

# (minimum correct answers, band), highest threshold first
LISTENING_TABLE: Tuple[Tuple[int, float], ...] = (
    (39, 9.0), (37, 8.5), (35, 8.0), (32, 7.5), (30, 7.0),
    (26, 6.5), (23, 6.0), (18, 5.5), (16, 5.0), (13, 4.5),
    (10, 4.0), (7, 3.5), (5, 3.0), (3, 2.5),
)

ACADEMIC_READING_TABLE: Tuple[Tuple[int, float], ...] = (
    (39, 9.0), (37, 8.5), (35, 8.0), (33, 7.5), (30, 7.0),
    (27, 6.5), (23, 6.0), (19, 5.5), (15, 5.0), (13, 4.5),
    (10, 4.0), (8, 3.5), (6, 3.0), (4, 2.5),
)

GENERAL_READING_TABLE: Tuple[Tuple[int, float], ...] = (
    (40, 9.0), (39, 8.5), (37, 8.0), (36, 7.5), (34, 7.0),
    (32, 6.5), (30, 6.0), (27, 5.5), (23, 5.0), (19, 4.5),
    (15, 4.0), (12, 3.5), (9, 3.0), (6, 2.5),
)

BANDED_SECTIONS = frozenset({SectionType.LISTENING, SectionType.READING})


def _lookup(table: Sequence[Tuple[int, float]], correct: int) -> float:
    for threshold, band in table:
        if correct >= threshold:
            return band
    return MIN_BAND


def table_for(section_type: SectionType, exam_variant: Optional[ExamVariant] = None):
    section_type = SectionType(section_type)
    if section_type == SectionType.LISTENING:
        return LISTENING_TABLE
    if section_type == SectionType.READING:
        if ExamVariant(exam_variant or ExamVariant.ACADEMIC) == ExamVariant.GENERAL_TRAINING:
            return GENERAL_READING_TABLE
        return ACADEMIC_READING_TABLE
    raise ValueError(f"No band table for {section_type.value} sections")


def map_band(section_type: SectionType, correct_count: int, exam_variant: Optional[ExamVariant] = None) -> float:
    """Band (2.0-9.0, half steps) for a raw correct count. The variant only affects Reading."""
    if correct_count < 0:
        raise ValueError("correct_count must be non-negative")
    return _lookup(table_for(section_type, exam_variant), int(correct_count))
