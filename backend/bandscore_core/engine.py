import logging
from typing import Any, Dict, List, Optional, Tuple

from .aggregator import aggregate
from .bands import map_band
from .expander import CompositeExpander
from .mcq_groups import McqKey, answer_key
from .models import (
    ExamSession,
    ExamVariant,
    GradedLeaf,
    ManualGrade,
    Question,
    SectionType,
    SessionScore,
)

logger = logging.getLogger("uvicorn.error")


class GradingEngine:
    def __init__(self, pass_threshold: Optional[float] = None,
                 default_variant: ExamVariant = ExamVariant.ACADEMIC):
        self.expander = CompositeExpander()

        # Config
        self.pass_threshold = pass_threshold
        self.default_variant = ExamVariant(default_variant)

    # ===================== HELPERS ===========================
    def resolve_answer(self, session: ExamSession, question: Question, mcq_key: Optional[McqKey]) -> Any:
        """Group members shown only through their anchor answer with the anchor's selection."""
        if question.id in session.answers:
            return session.answers[question.id]
        if mcq_key is not None and mcq_key.anchor_id != question.id:
            return session.answers.get(mcq_key.anchor_id)
        return None

    def apply_override(self, leaf: GradedLeaf, grade: ManualGrade) -> GradedLeaf:
        leaf.points_earned = grade.points_earned
        leaf.is_correct = grade.is_correct if grade.is_correct is not None else grade.points_earned > 0
        leaf.comments = grade.comments
        return leaf

    def variant_of(self, session: ExamSession) -> ExamVariant:
        return session.exam_variant or self.default_variant

    def threshold_of(self, session: ExamSession) -> Optional[float]:
        return session.pass_threshold if session.pass_threshold is not None else self.pass_threshold

    # ===================== GRADING ===========================
    def compute_grades(self, session: ExamSession) -> List[GradedLeaf]:
        """All graded leaves of a session, section by section in question-number order."""
        leaves: List[GradedLeaf] = []
        for section in session.sections:
            keys: Dict[str, McqKey] = answer_key(section.questions)
            for question in sorted(section.questions, key=lambda q: q.question_number):
                mcq_key = keys.get(question.id)
                raw = self.resolve_answer(session, question, mcq_key)
                produced = self.expander.expand(section, question, raw, mcq_key)
                grade = session.overrides.get(question.id)
                if grade is not None:
                    if question.is_manual:
                        produced = [self.apply_override(leaf, grade) for leaf in produced]
                    else:
                        logger.warning(f"Ignoring manual grade on auto-graded question {question.id}")
                leaves.extend(produced)
        return leaves

    def aggregate(self, leaves: List[GradedLeaf], exam_variant: Optional[ExamVariant] = None,
                  pass_threshold: Optional[float] = None) -> SessionScore:
        return aggregate(leaves, exam_variant or self.default_variant, pass_threshold)

    def grade_session(self, session: ExamSession) -> Tuple[List[GradedLeaf], SessionScore]:
        leaves = self.compute_grades(session)
        score = self.aggregate(leaves, self.variant_of(session), self.threshold_of(session))
        logger.debug(
            f"Graded session {session.id}: {len(leaves)} leaves, "
            f"{score.total_score}/{score.max_score} ({score.percentage:.1f}%)"
        )
        return leaves, score

    def map_band(self, section_type: SectionType, correct_count: int,
                 exam_variant: Optional[ExamVariant] = None) -> float:
        return map_band(section_type, correct_count, exam_variant or self.default_variant)
