"""
Turns one question + raw student answer into atomic graded leaves.

Single-unit questions give one leaf. Multi-blank fill-ins give one leaf per
blank and simple tables one leaf per gradable cell blank. A question's
points are split evenly over its leaves with exact fractions, so the leaf
points of a question always add up to the declared points.

A table cell has a fixed blank count taken from its metadata. Values a
student sends beyond that count are dropped (and logged), so padding an
answer never adds leaves.
"""
import logging
import re
from fractions import Fraction
from typing import Any, List, Optional

from .answer_spec import AcceptedGroups, decode_json_list, parse_alternatives, parse_blank_groups
from .matcher import judge
from .mcq_groups import McqKey
from .models import (
    GradedLeaf,
    MCQ_TYPES,
    OptionItem,
    Question,
    QuestionType,
    Section,
    TableAnswer,
    TableCell,
)
from .normalizer import normalize_text, unwrap

logger = logging.getLogger("uvicorn.error")

BLANK_TOKEN = re.compile(r"\{answer\d*\}", re.IGNORECASE)
UNDERSCORE_RUN = re.compile(r"_{3,}")

BLANK_TYPES = frozenset({QuestionType.FILL_BLANK, QuestionType.TABLE_FILL_BLANK})


def split_points(points: Fraction, count: int) -> Fraction:
    return points / count if count > 0 else Fraction(0)


def count_text_blanks(text: str) -> int:
    """Inline blanks in question text: {answerN} tokens win over ___ runs."""
    return len(BLANK_TOKEN.findall(text or "")) or len(UNDERSCORE_RUN.findall(text or ""))


def split_student_string(raw: str, expected: int) -> Optional[List[str]]:
    """Split one typed string into `expected` blanks on ';', then ',', then whitespace."""
    for tokens in (raw.split(";"), raw.split(","), raw.split()):
        tokens = [t.strip() for t in tokens if t.strip()]
        if len(tokens) == expected:
            return tokens
    return None


def _leaf(section: Section, question: Question, key: str, number: Optional[int], student: Any,
          correct: Optional[str], points: Fraction, is_correct: bool) -> GradedLeaf:
    return GradedLeaf(
        key=key,
        question_id=question.id,
        section_id=section.id,
        section_type=section.section_type,
        question_type=question.question_type,
        question_number=number,
        student_answer=student,
        correct_answer=correct or None,
        points=points,
        points_earned=points if is_correct else Fraction(0),
        is_correct=is_correct,
    )


class CompositeExpander:

    # ================= DISPATCH =================
    def expand(self, section: Section, question: Question, raw_answer: Any,
               mcq_key: Optional[McqKey] = None) -> List[GradedLeaf]:
        qtype = question.question_type
        if question.is_manual:
            return [self.manual_leaf(section, question, raw_answer)]
        if qtype == QuestionType.SIMPLE_TABLE:
            return self.expand_simple_table(section, question, raw_answer)
        if qtype in MCQ_TYPES:
            return [self.choice_leaf(section, question, raw_answer, mcq_key)]
        if qtype in BLANK_TYPES:
            return self.expand_blanks(section, question, raw_answer)
        if qtype == QuestionType.MATCHING:
            return [self.matching_leaf(section, question, raw_answer)]
        return [self.scalar_leaf(section, question, raw_answer)]

    # ================= SINGLE UNITS =================
    def manual_leaf(self, section: Section, question: Question, raw_answer: Any) -> GradedLeaf:
        leaf = _leaf(section, question, question.id, question.question_number, raw_answer,
                     None, question.points, False)
        leaf.manual = True
        return leaf

    def scalar_leaf(self, section: Section, question: Question, raw_answer: Any) -> GradedLeaf:
        accepted = parse_alternatives(question.correct_answer)
        if accepted.is_empty:
            logger.debug(f"Question {question.id} has no usable answer spec")
        is_correct = judge(question.question_type, raw_answer, accepted.group_for(0))
        return _leaf(section, question, question.id, question.question_number, raw_answer,
                     accepted.raw_for(0), question.points, is_correct)

    def choice_leaf(self, section: Section, question: Question, raw_answer: Any,
                    mcq_key: Optional[McqKey]) -> GradedLeaf:
        if mcq_key is None:
            accepted = parse_alternatives(question.correct_answer).group_for(0)
            multi, select_count = question.question_type == QuestionType.MULTI_SELECT, None
        else:
            accepted, multi, select_count = mcq_key.accepted, mcq_key.multi, mcq_key.select_count
        is_correct = judge(question.question_type, raw_answer, accepted, multi=multi, select_count=select_count)
        correct = "|".join(a.upper() for a in accepted) if accepted else None
        return _leaf(section, question, question.id, question.question_number, raw_answer,
                     correct, question.points, is_correct)

    def matching_leaf(self, section: Section, question: Question, raw_answer: Any) -> GradedLeaf:
        bank: List[OptionItem] = question.metadata.heading_bank or section.heading_bank
        value = unwrap(raw_answer)
        received = normalize_text(value)
        letters = [normalize_text(o.letter) for o in bank]
        # an option position letter (a, b, ...) stands for the bank's heading letter
        if bank and len(received) == 1 and "a" <= received <= "z" and received not in letters:
            index = ord(received) - ord("a")
            if index < len(bank):
                value = bank[index].letter
        accepted = parse_alternatives(question.correct_answer)
        is_correct = judge(question.question_type, value, accepted.group_for(0))
        return _leaf(section, question, question.id, question.question_number, raw_answer,
                     accepted.raw_for(0), question.points, is_correct)

    # ================= MULTI-BLANK =================
    def expand_blanks(self, section: Section, question: Question, raw_answer: Any) -> List[GradedLeaf]:
        spec = question.correct_answer
        groups = parse_blank_groups(spec)
        value = unwrap(raw_answer)
        text_blanks = count_text_blanks(question.question_text)

        if isinstance(value, (list, tuple)):
            values = list(value)
            declared = max(groups.explicit_count, text_blanks)
        else:
            # next to a scalar answer a JSON array spec lists alternatives, not blanks
            delimited = isinstance(spec, str) and ";" in spec and decode_json_list(spec) is None
            declared = max(groups.explicit_count if delimited else 0, text_blanks)
            if declared <= 1:
                return [self._single_blank(section, question, raw_answer)]
            values = []
            if isinstance(value, str):
                values = split_student_string(value, declared) or [value]

        count = max(len(values), declared)
        if count == 0:
            return [self._single_blank(section, question, None)]
        values = values + [None] * (count - len(values))

        if getattr(question.metadata, "combined", False):
            all_right = all(
                judge(QuestionType.FILL_BLANK, v, groups.group_for(i)) for i, v in enumerate(values)
            )
            return [_leaf(section, question, question.id, question.question_number, values,
                          ";".join(groups.raw_for(i) or "" for i in range(count)),
                          question.points, all_right)]

        points = split_points(question.points, count)
        leaves = []
        for i, v in enumerate(values):
            number = question.question_number + i if question.question_number else None
            leaves.append(_leaf(
                section, question, f"{question.id}:b{i}", number, v, groups.raw_for(i), points,
                judge(QuestionType.FILL_BLANK, v, groups.group_for(i)),
            ))
        return leaves

    def _single_blank(self, section: Section, question: Question, raw_answer: Any) -> GradedLeaf:
        accepted = parse_alternatives(question.correct_answer)
        is_correct = judge(QuestionType.FILL_BLANK, raw_answer, accepted.group_for(0))
        return _leaf(section, question, question.id, question.question_number, raw_answer,
                     accepted.raw_for(0), question.points, is_correct)

    # ================= SIMPLE TABLE =================
    def expand_simple_table(self, section: Section, question: Question, raw_answer: Any) -> List[GradedLeaf]:
        table = question.metadata.simple_table
        if table is None or not table.rows:
            logger.info(f"Simple table {question.id} has no rows metadata, no leaves produced")
            return []

        value = unwrap(raw_answer)
        answer = TableAnswer.model_validate(value) if isinstance(value, dict) else TableAnswer()
        if answer.graded:
            logger.debug(f"Ignoring stored graded entries on {question.id}, deriving from cells")

        drafts = []
        counter = table.sequence_start
        for r, row in enumerate(table.rows):
            for c, cell in enumerate(row):
                if cell is None or not cell.is_question:
                    continue
                base_key = f"{r}_{c}"
                groups = parse_blank_groups(cell.correct_answer)
                count = self._cell_blank_count(cell, table.numbering_mode, groups)
                base = cell.question_number if cell.question_number is not None else counter
                numbers = self._cell_numbers(cell, table.numbering_mode, base, count)
                if cell.question_number is None and counter is not None:
                    counter += 1 if table.numbering_mode == "cells" else count
                values = self._cell_values(answer.cells, base_key, count)
                for i in range(count):
                    key = f"{base_key}_b{i}" if count > 1 else base_key
                    drafts.append((key, numbers[i], values[i], cell, groups, i))

        points = split_points(question.points, len(drafts))
        leaves = []
        for key, number, student, cell, groups, i in drafts:
            cell_type = cell.question_type
            is_correct = judge(cell_type, student, groups.group_for(i))
            leaf = _leaf(section, question, f"{question.id}:{key}", number, student,
                         groups.raw_for(i), points, is_correct)
            leaf.question_type = cell_type
            leaves.append(leaf)
        return leaves

    def _cell_blank_count(self, cell: TableCell, mode: str, groups: AcceptedGroups) -> int:
        if mode == "blanks":
            detected = len(BLANK_TOKEN.findall(cell.content))
        elif mode == "underscores":
            detected = len(UNDERSCORE_RUN.findall(cell.content))
        else:
            detected = groups.explicit_count if groups.explicit_count > 1 else 1
        return max(detected, len(cell.multi_numbers), 1)

    def _cell_numbers(self, cell: TableCell, mode: str, base: Optional[int], count: int) -> List[Optional[int]]:
        if len(cell.multi_numbers) >= count:
            return list(cell.multi_numbers[:count])
        if base is None:
            return [None] * count
        if mode == "cells":
            return [base] * count
        return [base + i for i in range(count)]

    def _cell_values(self, cells: dict, base_key: str, count: int) -> List[Any]:
        raw = cells.get(base_key)
        if isinstance(raw, list):
            values = list(raw)
        elif raw is None:
            values = [cells.get(f"{base_key}_b{i}") for i in range(count)]
        elif count > 1:
            values = split_student_string(str(raw), count) or []
        else:
            values = [raw]
        if len(values) > count:
            logger.debug(f"Dropping {len(values) - count} extra value(s) for table cell {base_key}")
        values = values[:count]
        return values + [None] * (count - len(values))
