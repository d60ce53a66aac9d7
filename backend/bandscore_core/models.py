import json
from enum import Enum
from fractions import Fraction
from typing import Annotated, Any, Dict, List, Literal, Optional, Union

from pydantic import (
    AliasChoices,
    BaseModel,
    ConfigDict,
    Field,
    PlainSerializer,
    PlainValidator,
    WithJsonSchema,
    field_validator,
    model_validator,
)
from pydantic.alias_generators import to_camel


class QuestionType(str, Enum):
    MULTIPLE_CHOICE = "multiple_choice"
    MULTI_SELECT = "multi_select"
    TRUE_FALSE = "true_false"
    FILL_BLANK = "fill_blank"
    SHORT_ANSWER = "short_answer"
    MATCHING = "matching"
    DRAG_DROP = "drag_drop"
    IMAGE_LABELING = "image_labeling"
    IMAGE_DND = "image_dnd"
    TABLE_FILL_BLANK = "table_fill_blank"
    TABLE_DRAG_DROP = "table_drag_drop"
    SIMPLE_TABLE = "simple_table"
    ESSAY = "essay"
    WRITING_TASK1 = "writing_task1"
    SPEAKING_TASK = "speaking_task"


# Scored by an examiner through a manual grade, never by the matcher
MANUAL_TYPES = frozenset({QuestionType.ESSAY, QuestionType.WRITING_TASK1, QuestionType.SPEAKING_TASK})
MCQ_TYPES = frozenset({QuestionType.MULTIPLE_CHOICE, QuestionType.MULTI_SELECT})


class SectionType(str, Enum):
    LISTENING = "listening"
    READING = "reading"
    WRITING = "writing"
    SPEAKING = "speaking"


class ExamVariant(str, Enum):
    ACADEMIC = "academic"
    GENERAL_TRAINING = "general_training"


def to_fraction(value: Any) -> Fraction:
    """Exact rational from a points value; floats go through their decimal text."""
    if isinstance(value, Fraction):
        return value
    if isinstance(value, bool) or value is None:
        raise ValueError("points must be a number")
    if isinstance(value, int):
        return Fraction(value)
    if isinstance(value, float):
        return Fraction(repr(value))
    if isinstance(value, str):
        try:
            return Fraction(value.strip())
        except (ValueError, ZeroDivisionError) as e:
            raise ValueError(f"invalid points value {value!r}") from e
    raise ValueError(f"invalid points value {value!r}")


Points = Annotated[
    Fraction,
    PlainValidator(to_fraction),
    PlainSerializer(float, return_type=float),
    WithJsonSchema({"type": "number"}),
]


def decode_json_object(raw: Any) -> Dict[str, Any]:
    if isinstance(raw, dict):
        return dict(raw)
    if isinstance(raw, str) and raw.strip():
        try:
            parsed = json.loads(raw)
        except ValueError:
            return {}
        return parsed if isinstance(parsed, dict) else {}
    return {}


# Metadata is author-entered JSON: junk values fall back to defaults instead of
# rejecting the whole question.
_TRUE_FLAGS = frozenset({"1", "true", "t", "yes", "y", "on"})


def lenient_int(value: Any) -> Optional[int]:
    if value is None or isinstance(value, bool):
        return None
    try:
        return int(value)
    except (TypeError, ValueError, OverflowError):
        pass
    try:
        return int(float(value))
    except (TypeError, ValueError, OverflowError):
        return None


def lenient_flag(value: Any) -> bool:
    if isinstance(value, str):
        return value.strip().lower() in _TRUE_FLAGS
    if isinstance(value, (bool, int, float)):
        return bool(value)
    return False


def option_list(value: Any) -> List[Dict[str, Any]]:
    """Option dicts that carry a letter; anything else is dropped."""
    if not isinstance(value, list):
        return []
    keys = ("letter", "optionLetter", "option_letter")
    return [item for item in value if isinstance(item, dict) and any(item.get(k) not in (None, "") for k in keys)]


class Record(BaseModel):
    model_config = ConfigDict(
        alias_generator=to_camel,
        populate_by_name=True,
        arbitrary_types_allowed=True,
    )


# ================= TYPE METADATA =================

class OptionItem(Record):
    letter: str = Field(validation_alias=AliasChoices("letter", "optionLetter", "option_letter"))
    text: str = Field("", validation_alias=AliasChoices("text", "optionText", "option_text"))

    @field_validator("letter", "text", mode="before")
    @classmethod
    def _as_text(cls, v):
        return "" if v is None else str(v)


class McqMetadata(Record):
    kind: Literal["multiple_choice", "multi_select"]
    group_range_end: Optional[int] = None
    group_member_of: Optional[str] = None
    custom_options_group: bool = False
    shared_options_anchor: bool = Field(
        False, validation_alias=AliasChoices("sharedOptionsAnchor", "shared_options_anchor")
    )
    allow_multi_select: bool = False
    select_count: Optional[int] = None
    options: List[OptionItem] = Field(default_factory=list)

    @field_validator("group_member_of", mode="before")
    @classmethod
    def _member_id(cls, v):
        if v is None or isinstance(v, (dict, list)) or v == "":
            return None
        return str(v)

    @field_validator("group_range_end", mode="before")
    @classmethod
    def _range_end(cls, v):
        return lenient_int(v)

    @field_validator("select_count", mode="before")
    @classmethod
    def _select_count(cls, v):
        count = lenient_int(v)
        return count if count and count > 0 else None

    @field_validator("custom_options_group", "shared_options_anchor", "allow_multi_select", mode="before")
    @classmethod
    def _flags(cls, v):
        return lenient_flag(v)

    @field_validator("options", mode="before")
    @classmethod
    def _options(cls, v):
        return option_list(v)


class FillBlankMetadata(Record):
    kind: Literal["fill_blank"]
    combine_blanks: bool = False
    single_number: bool = False
    conversation: bool = False

    @field_validator("combine_blanks", "single_number", "conversation", mode="before")
    @classmethod
    def _flags(cls, v):
        return lenient_flag(v)

    @property
    def combined(self) -> bool:
        return self.combine_blanks or self.single_number or self.conversation


class MatchingMetadata(Record):
    kind: Literal["matching"]
    heading_bank: List[OptionItem] = Field(default_factory=list)

    @field_validator("heading_bank", mode="before")
    @classmethod
    def _bank(cls, v):
        return option_list(v)


class TableCell(Record):
    type: str = "text"
    content: str = ""
    question_type: QuestionType = QuestionType.FILL_BLANK
    correct_answer: Any = ""
    question_number: Optional[int] = None
    multi_numbers: List[int] = Field(default_factory=list)

    @field_validator("type", mode="before")
    @classmethod
    def _cell_type(cls, v):
        return "text" if v is None else str(v)

    @field_validator("question_type", mode="before")
    @classmethod
    def _default_type(cls, v):
        if isinstance(v, QuestionType):
            return v
        try:
            return QuestionType(v)
        except (TypeError, ValueError):
            return QuestionType.FILL_BLANK

    @field_validator("question_number", mode="before")
    @classmethod
    def _number(cls, v):
        return lenient_int(v)

    @field_validator("content", mode="before")
    @classmethod
    def _content_text(cls, v):
        return "" if v is None else str(v)

    @field_validator("multi_numbers", mode="before")
    @classmethod
    def _finite_numbers(cls, v):
        if not isinstance(v, list):
            return []
        numbers = (lenient_int(item) for item in v)
        return [n for n in numbers if n is not None]

    @property
    def is_question(self) -> bool:
        return self.type == "question"


class SimpleTableSpec(Record):
    rows: Optional[List[List[Optional[TableCell]]]] = None
    sequence_start: Optional[int] = None
    numbering_mode: Literal["cells", "blanks", "underscores"] = "cells"

    @field_validator("sequence_start", mode="before")
    @classmethod
    def _start(cls, v):
        return lenient_int(v)

    @field_validator("rows", mode="before")
    @classmethod
    def _grid(cls, v):
        if not isinstance(v, list):
            return None
        # text/garbage cells become None so they are skipped, not rejected
        return [
            [cell if isinstance(cell, dict) else None for cell in row]
            for row in v
            if isinstance(row, list)
        ]

    @field_validator("numbering_mode", mode="before")
    @classmethod
    def _mode(cls, v):
        return v if v in ("cells", "blanks", "underscores") else "cells"


class SimpleTableMetadata(Record):
    kind: Literal["simple_table"]
    simple_table: Optional[SimpleTableSpec] = None

    @field_validator("simple_table", mode="before")
    @classmethod
    def _table(cls, v):
        if isinstance(v, (SimpleTableSpec, dict)):
            return v
        return decode_json_object(v) or None


class PlainMetadata(Record):
    kind: Literal[
        "true_false", "short_answer", "drag_drop", "image_labeling", "image_dnd",
        "table_fill_blank", "table_drag_drop", "essay", "writing_task1", "speaking_task",
    ]


TypeMetadata = Annotated[
    Union[McqMetadata, FillBlankMetadata, MatchingMetadata, SimpleTableMetadata, PlainMetadata],
    Field(discriminator="kind"),
]


# ================= EXAM CONTENT =================

class Question(Record):
    id: str
    question_type: QuestionType
    correct_answer: Any = Field(
        None, validation_alias=AliasChoices("correctAnswer", "correct_answer", "correctAnswerSpec")
    )
    points: Points = Fraction(1)
    question_number: int = 0
    question_text: str = ""
    metadata: TypeMetadata

    @model_validator(mode="before")
    @classmethod
    def _tag_metadata(cls, data):
        if not isinstance(data, dict):
            return data
        data = dict(data)
        raw = None
        for key in ("metadata", "typeMetadata", "type_metadata"):
            if key in data:
                raw = data.pop(key)
                break
        qtype = data.get("questionType", data.get("question_type"))
        if isinstance(qtype, Enum):
            qtype = qtype.value
        meta = decode_json_object(raw)
        meta["kind"] = qtype
        data["metadata"] = meta
        return data

    @field_validator("id", mode="before")
    @classmethod
    def _id_text(cls, v):
        return str(v)

    @field_validator("question_number", mode="before")
    @classmethod
    def _number(cls, v):
        number = lenient_int(v)
        return 0 if number is None else number

    @field_validator("question_text", mode="before")
    @classmethod
    def _text(cls, v):
        return "" if v is None else str(v)

    @field_validator("points")
    @classmethod
    def _positive(cls, v):
        if v <= 0:
            raise ValueError("points must be positive")
        return v

    @property
    def is_manual(self) -> bool:
        return self.question_type in MANUAL_TYPES


class Section(Record):
    id: str
    section_type: SectionType
    questions: List[Question] = Field(default_factory=list)
    heading_bank: List[OptionItem] = Field(default_factory=list)

    @field_validator("id", mode="before")
    @classmethod
    def _id_text(cls, v):
        return str(v)

    @field_validator("heading_bank", mode="before")
    @classmethod
    def _bank(cls, v):
        # stored either as a list or as {"options": [...]} JSON
        if isinstance(v, str):
            try:
                v = json.loads(v) if v.strip() else []
            except ValueError:
                return []
        if isinstance(v, dict):
            v = v.get("options", [])
        return option_list(v)


# ================= ANSWERS & GRADES =================

class TableAnswer(Record):
    type: Literal["simple_table"] = "simple_table"
    version: int = 2
    cells: Dict[str, Any] = Field(default_factory=dict)
    graded: Optional[List[Dict[str, Any]]] = None

    @field_validator("cells", mode="before")
    @classmethod
    def _cells(cls, v):
        return {str(k): value for k, value in v.items()} if isinstance(v, dict) else {}

    # stored answers come from old clients too: only `cells` is ever graded
    @field_validator("type", mode="before")
    @classmethod
    def _tag(cls, v):
        return "simple_table"

    @field_validator("version", mode="before")
    @classmethod
    def _version(cls, v):
        version = lenient_int(v)
        return 2 if version is None else version

    @field_validator("graded", mode="before")
    @classmethod
    def _graded(cls, v):
        if not isinstance(v, list):
            return None
        return [entry for entry in v if isinstance(entry, dict)]


class ManualGrade(Record):
    points_earned: Points
    is_correct: Optional[bool] = None
    comments: Optional[str] = None


class GradedLeaf(Record):
    key: str
    question_id: str
    section_id: str
    section_type: SectionType
    question_type: QuestionType
    question_number: Optional[int] = None
    student_answer: Any = None
    correct_answer: Optional[str] = None
    points: Points
    points_earned: Points = Fraction(0)
    is_correct: bool = False
    manual: bool = False
    comments: Optional[str] = None


class SectionScore(Record):
    section_type: SectionType
    total_leaves: int
    correct_leaves: int
    score: float = 0.0
    max_score: float = 0.0
    band: Optional[float] = None

    @model_validator(mode="after")
    def _counts(self):
        if self.correct_leaves > self.total_leaves:
            raise ValueError("correct_leaves cannot exceed total_leaves")
        return self


class SessionScore(Record):
    total_score: float
    max_score: float
    percentage: float
    is_passed: Optional[bool] = None
    per_section: List[SectionScore] = Field(default_factory=list)


class ExamSession(Record):
    id: str
    exam_variant: ExamVariant = ExamVariant.ACADEMIC
    pass_threshold: Optional[float] = None
    sections: List[Section] = Field(default_factory=list)
    answers: Dict[str, Any] = Field(default_factory=dict)
    overrides: Dict[str, ManualGrade] = Field(default_factory=dict)
    score: Optional[SessionScore] = None

    @field_validator("id", mode="before")
    @classmethod
    def _id_text(cls, v):
        return str(v)

    @field_validator("answers", mode="before")
    @classmethod
    def _answer_map(cls, v):
        # submit payloads arrive as [{"questionId": ..., "studentAnswer": ...}]
        if isinstance(v, list):
            out = {}
            for item in v:
                if not isinstance(item, dict):
                    continue
                qid = item.get("questionId", item.get("question_id"))
                if qid is not None:
                    out[str(qid)] = item.get("studentAnswer", item.get("student_answer"))
            return out
        return v

    def find_question(self, question_id: str):
        for section in self.sections:
            for question in section.questions:
                if question.id == question_id:
                    return section, question
        return None, None
