from fractions import Fraction
from typing import Dict, Iterable, List, Optional

from .bands import BANDED_SECTIONS, map_band
from .models import ExamVariant, GradedLeaf, SectionScore, SectionType, SessionScore


def percentage_of(score: Fraction, max_score: Fraction) -> float:
    if max_score <= 0:
        return 0.0
    return float(score * 100 / max_score)


def aggregate(
    leaves: Iterable[GradedLeaf],
    exam_variant: Optional[ExamVariant] = None,
    pass_threshold: Optional[float] = None,
) -> SessionScore:
    """
    Sum leaves into per-section and overall scores.

    Sections are pooled by type in first-seen order, so a four-part
    listening paper lands on one 40-item band scale. Sums are exact and
    only converted to float at the end.
    """
    order: List[SectionType] = []
    totals: Dict[SectionType, Dict[str, Fraction]] = {}
    total_score = Fraction(0)
    max_score = Fraction(0)

    for leaf in leaves:
        bucket = totals.get(leaf.section_type)
        if bucket is None:
            bucket = totals[leaf.section_type] = {"leaves": 0, "correct": 0, "score": Fraction(0), "max": Fraction(0)}
            order.append(leaf.section_type)
        bucket["leaves"] += 1
        bucket["max"] += leaf.points
        max_score += leaf.points
        if leaf.is_correct:
            bucket["correct"] += 1
        bucket["score"] += leaf.points_earned
        total_score += leaf.points_earned

    per_section = []
    for section_type in order:
        bucket = totals[section_type]
        band = None
        if section_type in BANDED_SECTIONS and bucket["leaves"]:
            band = map_band(section_type, bucket["correct"], exam_variant)
        per_section.append(SectionScore(
            section_type=section_type,
            total_leaves=bucket["leaves"],
            correct_leaves=bucket["correct"],
            score=float(bucket["score"]),
            max_score=float(bucket["max"]),
            band=band,
        ))

    percentage = percentage_of(total_score, max_score)
    return SessionScore(
        total_score=float(total_score),
        max_score=float(max_score),
        percentage=percentage,
        is_passed=None if pass_threshold is None else percentage >= pass_threshold,
        per_section=per_section,
    )
