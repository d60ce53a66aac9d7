"""
Tests for bandscore_core.expander

Test Coverage:
- Multi-blank fill-ins: positional groups, string answers, combined blanks
- Simple tables: numbering modes, multiNumbers, cell question types
- Stored `graded` entries never change the derived leaves
- Missing table rows yield no leaves
- Stored table answers with junk fields or junk cell metadata still grade
- Matching heading-bank letters and manual placeholders
"""

import logging
from fractions import Fraction

import pytest

from bandscore_core.expander import CompositeExpander, count_text_blanks, split_student_string
from bandscore_core.engine import GradingEngine
from bandscore_core.models import ExamSession, QuestionType

from conftest import make_question, make_section


@pytest.fixture
def expander():
    return CompositeExpander()


def _table_question(rows, points=1, **table):
    return make_question("t1", "simple_table", points=points, metadata={"simpleTable": {"rows": rows, **table}})


def _cells(**cells):
    return {"type": "simple_table", "version": 2, "cells": cells}


# ================= MULTI-BLANK =================

def test_positional_blank_groups(expander):
    q = make_question("q1", "fill_blank", "red|crimson;white;blue|azure", number=5, points=3)
    leaves = expander.expand(make_section([]), q, ["crimson", "white", "navy"])

    assert [leaf.is_correct for leaf in leaves] == [True, True, False]
    assert [leaf.key for leaf in leaves] == ["q1:b0", "q1:b1", "q1:b2"]
    assert [leaf.question_number for leaf in leaves] == [5, 6, 7]
    assert all(leaf.points == 1 for leaf in leaves)
    assert sum(leaf.points_earned for leaf in leaves) == 2


def test_blank_points_split_exactly(expander):
    q = make_question("q1", "fill_blank", "a;b;c")
    leaves = expander.expand(make_section([]), q, ["a", "b", "c"])
    assert [leaf.points for leaf in leaves] == [Fraction(1, 3)] * 3
    assert sum(leaf.points for leaf in leaves) == q.points


def test_unanswered_blanks_still_count_toward_max(expander):
    q = make_question("q1", "fill_blank", "a;b;c")
    leaves = expander.expand(make_section([]), q, None)
    assert len(leaves) == 3
    assert not any(leaf.is_correct for leaf in leaves)


def test_short_student_array_is_padded(expander):
    q = make_question("q1", "fill_blank", "a;b;c")
    leaves = expander.expand(make_section([]), q, ["a"])
    assert [leaf.is_correct for leaf in leaves] == [True, False, False]
    assert leaves[2].student_answer is None


def test_typed_string_is_split_into_blanks(expander):
    q = make_question("q1", "fill_blank", "red;white")
    leaves = expander.expand(make_section([]), q, "Red;  white ")
    assert [leaf.is_correct for leaf in leaves] == [True, True]


def test_single_blank_with_alternatives(expander):
    q = make_question("q1", "fill_blank", "colour|color")
    leaves = expander.expand(make_section([]), q, "COLOR")
    assert len(leaves) == 1
    assert leaves[0].key == "q1"
    assert leaves[0].is_correct


def test_combined_blanks_are_all_or_nothing(expander):
    q = make_question("q1", "fill_blank", "red;white", metadata={"combineBlanks": True})
    right = expander.expand(make_section([]), q, ["red", "white"])
    wrong = expander.expand(make_section([]), q, ["red", "blue"])

    assert len(right) == 1 and right[0].is_correct
    assert len(wrong) == 1 and not wrong[0].is_correct
    assert right[0].key == "q1"


def test_text_blank_tokens_declare_blank_count(expander):
    q = make_question("q1", "fill_blank", "london", question_text="From {answer1} to {answer2}")
    leaves = expander.expand(make_section([]), q, ["London", "paris"])
    assert [leaf.is_correct for leaf in leaves] == [True, False]


def test_count_text_blanks():
    assert count_text_blanks("{answer1} and {ANSWER2}") == 2
    assert count_text_blanks("The ____ and the _____") == 2
    assert count_text_blanks("no blanks__") == 0
    assert count_text_blanks(None) == 0


def test_split_student_string():
    assert split_student_string("a; b", 2) == ["a", "b"]
    assert split_student_string("a, b, c", 3) == ["a", "b", "c"]
    assert split_student_string("a b", 2) == ["a", "b"]
    assert split_student_string("a", 2) is None


# ================= SIMPLE TABLE =================

def test_simple_table_cells_mode(expander):
    rows = [
        [{"type": "text", "content": "Name"}, {"type": "question", "correctAnswer": "Smith", "questionNumber": 1}],
        [{"type": "text", "content": "Age"}, {"type": "question", "correctAnswer": "25"}],
    ]
    q = _table_question(rows, points=2)
    leaves = expander.expand(make_section([]), q, _cells(**{"0_1": "smith", "1_1": "30"}))

    assert [leaf.key for leaf in leaves] == ["t1:0_1", "t1:1_1"]
    assert [leaf.is_correct for leaf in leaves] == [True, False]
    assert [leaf.question_number for leaf in leaves] == [1, None]
    assert [leaf.points for leaf in leaves] == [1, 1]


def test_simple_table_blanks_mode_numbers_each_blank(expander):
    rows = [[
        {"type": "question", "content": "{answer1} to {answer2}", "correctAnswer": "9;5"},
        {"type": "question", "content": "{answer}", "correctAnswer": "x"},
    ]]
    q = _table_question(rows, points=3, sequenceStart=10, numberingMode="blanks")
    leaves = expander.expand(make_section([]), q, _cells(**{"0_0": ["9", "6"], "0_1": "X"}))

    assert [leaf.key for leaf in leaves] == ["t1:0_0_b0", "t1:0_0_b1", "t1:0_1"]
    assert [leaf.question_number for leaf in leaves] == [10, 11, 12]
    assert [leaf.is_correct for leaf in leaves] == [True, False, True]


def test_simple_table_cells_mode_shares_number_per_cell(expander):
    rows = [[
        {"type": "question", "correctAnswer": "a;b"},
        {"type": "question", "correctAnswer": "c"},
    ]]
    q = _table_question(rows, sequenceStart=1)
    leaves = expander.expand(make_section([]), q, _cells(**{"0_0_b0": "a", "0_0_b1": "b", "0_1": "c"}))

    assert [leaf.question_number for leaf in leaves] == [1, 1, 2]
    assert all(leaf.is_correct for leaf in leaves)


def test_simple_table_multi_numbers(expander):
    rows = [[{"type": "question", "correctAnswer": "a;b", "multiNumbers": [7, 8]}]]
    q = _table_question(rows)
    leaves = expander.expand(make_section([]), q, _cells(**{"0_0": "a; b"}))
    assert [leaf.question_number for leaf in leaves] == [7, 8]
    assert all(leaf.is_correct for leaf in leaves)


def test_simple_table_cell_question_type(expander):
    rows = [[{"type": "question", "questionType": "true_false", "correctAnswer": "NG"}]]
    q = _table_question(rows)
    leaves = expander.expand(make_section([]), q, _cells(**{"0_0": "Not Given"}))
    assert leaves[0].question_type == QuestionType.TRUE_FALSE
    assert leaves[0].is_correct


def test_simple_table_ignores_stored_graded(expander):
    rows = [[{"type": "question", "correctAnswer": "yes"}, {"type": "question", "correctAnswer": "no"}]]
    q = _table_question(rows)
    plain = _cells(**{"0_0": "yes", "0_1": "maybe"})
    tampered = dict(plain, graded=[{"key": "0_0", "isCorrect": False}, {"key": "0_1", "isCorrect": True}])

    derived = expander.expand(make_section([]), q, plain)
    stored = expander.expand(make_section([]), q, tampered)
    assert [leaf.model_dump() for leaf in derived] == [leaf.model_dump() for leaf in stored]
    assert [leaf.is_correct for leaf in stored] == [True, False]


@pytest.mark.parametrize("metadata", [{}, {"simpleTable": {}}, {"simpleTable": {"rows": "garbage"}}])
def test_simple_table_without_rows_has_no_leaves(expander, metadata):
    q = make_question("t1", "simple_table", metadata=metadata)
    assert expander.expand(make_section([]), q, _cells(**{"0_0": "x"})) == []


def test_simple_table_skips_text_and_garbage_cells(expander):
    rows = [[None, "loose text", {"type": "text", "content": "x"}, {"type": "question", "correctAnswer": "y"}]]
    q = _table_question(rows)
    leaves = expander.expand(make_section([]), q, None)
    assert [leaf.key for leaf in leaves] == ["t1:0_3"]
    assert not leaves[0].is_correct


# ================= OTHER TYPES =================

def test_matching_position_letter_maps_to_bank(expander):
    bank = [{"letter": "i", "text": "Origins"}, {"letter": "ii", "text": "Decline"}, {"letter": "iii", "text": "Revival"}]
    section = make_section([], headingBank={"options": bank})
    q = make_question("m1", "matching", "ii")

    assert expander.expand(section, q, "b")[0].is_correct
    assert expander.expand(section, q, "II")[0].is_correct
    assert not expander.expand(section, q, "i")[0].is_correct


def test_matching_question_bank_wins_over_section(expander):
    section = make_section([], headingBank=[{"letter": "i"}, {"letter": "ii"}])
    q = make_question("m1", "matching", "y", metadata={"headingBank": [{"letter": "x"}, {"letter": "y"}]})
    assert expander.expand(section, q, "b")[0].is_correct


def test_choice_without_group_key(expander):
    q = make_question("c1", "multiple_choice", "b")
    leaf = expander.expand(make_section([]), q, "B")[0]
    assert leaf.is_correct
    assert leaf.correct_answer == "B"


def test_manual_types_produce_ungraded_placeholder(expander):
    q = make_question("e1", "essay", points=9)
    leaves = expander.expand(make_section([], section_type="writing"), q, "My essay...")
    assert len(leaves) == 1
    assert leaves[0].manual
    assert leaves[0].points == 9
    assert leaves[0].points_earned == 0


# ================= JUNK INPUT =================

@pytest.mark.parametrize("junk", [
    {"graded": "stale"},
    {"graded": {"bad": 1}},
    {"graded": ["x", {"key": "0_0"}]},
    {"version": "v2"},
    {"version": None},
    {"type": "table"},
])
def test_simple_table_answer_with_junk_fields_still_grades(expander, junk):
    rows = [[{"type": "question", "correctAnswer": "yes"}, {"type": "question", "correctAnswer": "no"}]]
    q = _table_question(rows)
    clean = expander.expand(make_section([]), q, _cells(**{"0_0": "yes", "0_1": "maybe"}))
    messy = expander.expand(make_section([]), q, {**_cells(**{"0_0": "yes", "0_1": "maybe"}), **junk})

    assert [leaf.model_dump() for leaf in messy] == [leaf.model_dump() for leaf in clean]
    assert [leaf.is_correct for leaf in messy] == [True, False]


def test_one_junk_table_answer_does_not_sink_the_session():
    session = ExamSession.model_validate({
        "id": "junk",
        "sections": [{"id": "R", "sectionType": "reading", "questions": [
            {"id": "t1", "questionType": "simple_table", "questionNumber": 1,
             "metadata": {"simpleTable": {"rows": [[{"type": "question", "correctAnswer": "yes"}]]}}},
            {"id": "q2", "questionType": "short_answer", "questionNumber": 2, "correctAnswer": "tea"},
        ]}],
        "answers": {
            "t1": {"type": "simple_table", "cells": {"0_0": "yes"}, "graded": {"bad": 1}},
            "q2": "tea",
        },
    })
    _, score = GradingEngine().grade_session(session)
    assert score.total_score == 2.0


def test_junk_cell_metadata_falls_back_to_defaults(expander):
    rows = [[
        {"type": "question", "correctAnswer": "yes", "questionNumber": ""},
        {"type": "question", "correctAnswer": "NG", "questionType": "crossword", "questionNumber": "4"},
        {"type": "question", "correctAnswer": "x", "multiNumbers": ["7", "n/a", None]},
    ]]
    q = _table_question(rows, sequenceStart="", numberingMode="weird")
    leaves = expander.expand(make_section([]), q, _cells(**{"0_0": "yes", "0_1": "ng", "0_2": "x"}))

    assert [leaf.question_number for leaf in leaves] == [None, 4, 7]
    assert leaves[1].question_type == QuestionType.FILL_BLANK
    assert all(leaf.is_correct for leaf in leaves)


def test_extra_cell_values_are_dropped_and_logged(expander, caplog):
    caplog.set_level(logging.DEBUG, logger="uvicorn.error")
    rows = [[{"type": "question", "correctAnswer": "yes"}]]
    q = _table_question(rows)
    leaves = expander.expand(make_section([]), q, _cells(**{"0_0": ["yes", "yes", "yes"]}))

    assert len(leaves) == 1
    assert leaves[0].student_answer == "yes"
    assert "Dropping 2 extra value(s) for table cell 0_0" in caplog.text


def test_bracketed_delimited_spec_with_typed_answer(expander):
    q = make_question("q1", "fill_blank", "[a] red;white")
    leaves = expander.expand(make_section([]), q, "[a] red; white")
    assert [leaf.is_correct for leaf in leaves] == [True, True]


def test_session_with_junk_metadata_values_validates():
    session = ExamSession.model_validate({
        "id": "junk-meta",
        "sections": [{"id": "L", "sectionType": "listening", "questions": [
            {"id": "t1", "questionType": "simple_table", "questionNumber": "",
             "metadata": {"simpleTable": {"rows": [[
                 {"type": "question", "correctAnswer": "yes", "questionNumber": "", "questionType": "crossword"},
             ]]}}},
            {"id": "m1", "questionType": "multi_select", "questionNumber": 2, "correctAnswer": "A|C",
             "metadata": {"selectCount": "", "allowMultiSelect": "no"}},
        ]}],
        "answers": {"t1": {"type": "simple_table", "cells": {"0_0": "yes"}}, "m1": ["A", "C"]},
    })
    question = session.sections[0].questions[1]
    assert question.metadata.select_count is None
    assert question.metadata.allow_multi_select is False

    _, score = GradingEngine().grade_session(session)
    assert score.total_score == 2.0
