"""
Multiple-choice grouping.

Two views over a section's questions:

- shared-options blocks: contiguous runs of plain multiple_choice questions
  that display one option list (`compute_blocks`);
- anchor/member groups: an anchor carrying `groupRangeEnd` plus the members
  pointing at it through `groupMemberOf` (`resolve_groups`), flattened into a
  per-question answer key (`answer_key`) so the matcher can treat every
  choice question the same way.
"""
import logging
from typing import Dict, Iterable, List, Optional, Tuple

from pydantic import BaseModel, ConfigDict, Field

from .answer_spec import parse_letter_set
from .models import MCQ_TYPES, McqMetadata, Question, QuestionType

logger = logging.getLogger("uvicorn.error")


class SharedMcqBlock(BaseModel):
    anchor_id: str
    question_ids: List[str] = Field(default_factory=list)
    start: int
    end: int


class McqGroup(BaseModel):
    anchor_id: str
    member_ids: List[str] = Field(default_factory=list)
    range_end: int
    custom_options: bool = False
    multi_select: bool = False
    select_count: Optional[int] = None
    accepted: Tuple[str, ...] = ()

    @property
    def question_ids(self) -> List[str]:
        return [self.anchor_id] + self.member_ids


class McqKey(BaseModel):
    model_config = ConfigDict(frozen=True)

    question_id: str
    anchor_id: str
    accepted: Tuple[str, ...] = ()
    multi: bool = False
    select_count: Optional[int] = None


def question_number_of(question: Question) -> int:
    return question.question_number or 0


def _sorted(questions: Iterable[Question]) -> List[Question]:
    # sorted() is stable, equal numbers keep input order
    return sorted(questions, key=question_number_of)


def compute_blocks(questions: Iterable[Question]) -> List[SharedMcqBlock]:
    """Partition into shared-options blocks in one left-to-right scan."""
    blocks: List[SharedMcqBlock] = []
    current: Optional[SharedMcqBlock] = None
    for question in _sorted(questions):
        meta = question.metadata
        if question.question_type != QuestionType.MULTIPLE_CHOICE or meta.custom_options_group:
            current = None
            continue
        number = question_number_of(question)
        if current is None or meta.shared_options_anchor or number != current.end + 1:
            current = SharedMcqBlock(anchor_id=question.id, question_ids=[question.id], start=number, end=number)
            blocks.append(current)
            continue
        current.end = number
        current.question_ids.append(question.id)
    return blocks


def make_block_key(section_id: str, block: SharedMcqBlock) -> str:
    return f"{section_id}:{block.anchor_id}"


def find_block_for_question(questions: Iterable[Question], question_id: str) -> Optional[SharedMcqBlock]:
    for block in compute_blocks(questions):
        if question_id in block.question_ids:
            return block
    return None


def resolve_groups(questions: Iterable[Question]) -> Dict[str, McqGroup]:
    """Build anchor -> group entities out of the groupRangeEnd/groupMemberOf links."""
    choice = [q for q in _sorted(questions) if q.question_type in MCQ_TYPES]
    groups: Dict[str, McqGroup] = {}
    for anchor in choice:
        meta: McqMetadata = anchor.metadata
        if meta.group_range_end is None or meta.group_member_of:
            continue
        number = question_number_of(anchor)
        size = max(meta.group_range_end - number + 1, 1)
        multi = meta.allow_multi_select or size > 1 or anchor.question_type == QuestionType.MULTI_SELECT
        select_count = None
        if multi:
            select_count = meta.select_count or (size if size > 1 else None)
        groups[anchor.id] = McqGroup(
            anchor_id=anchor.id,
            range_end=meta.group_range_end,
            custom_options=meta.custom_options_group,
            multi_select=multi,
            select_count=select_count,
            accepted=parse_letter_set(anchor.correct_answer),
        )

    for member in choice:
        anchor_id = member.metadata.group_member_of
        if not anchor_id:
            continue
        group = groups.get(anchor_id)
        if group is None:
            logger.info(f"Question {member.id} points at unknown MCQ anchor {anchor_id}, grading it standalone")
            continue
        group.member_ids.append(member.id)
    return groups


def answer_key(questions: Iterable[Question]) -> Dict[str, McqKey]:
    """Flat question id -> accepted letters view for every choice question."""
    questions = list(questions)
    groups = resolve_groups(questions)
    owner: Dict[str, McqGroup] = {}
    for group in groups.values():
        for qid in group.question_ids:
            owner[qid] = group

    keys: Dict[str, McqKey] = {}
    for question in questions:
        if question.question_type not in MCQ_TYPES:
            continue
        meta: McqMetadata = question.metadata
        own = parse_letter_set(question.correct_answer)
        group = owner.get(question.id)
        if group is not None:
            accepted = own if (group.custom_options and own) else group.accepted
            keys[question.id] = McqKey(
                question_id=question.id,
                anchor_id=group.anchor_id,
                accepted=accepted,
                multi=group.multi_select,
                select_count=group.select_count,
            )
            continue
        multi = question.question_type == QuestionType.MULTI_SELECT or meta.allow_multi_select
        keys[question.id] = McqKey(
            question_id=question.id,
            anchor_id=question.id,
            accepted=own,
            multi=multi,
            select_count=meta.select_count if multi else None,
        )
    return keys
