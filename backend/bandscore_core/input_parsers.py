import io
import json
import logging
from typing import Any, Dict, List

import pandas as pd

from .models import Section

# Configure logger
logger = logging.getLogger("uvicorn.error")


def _read_csv(file_content: bytes) -> pd.DataFrame:
    # everything as text: ids like "007" and answers like "1.50" must survive untouched
    try:
        df = pd.read_csv(io.BytesIO(file_content), encoding='utf-8', dtype=str, keep_default_na=False)
    except UnicodeDecodeError:
        df = pd.read_csv(io.BytesIO(file_content), encoding='latin1', dtype=str, keep_default_na=False)
    df.columns = [c.lower().strip().replace(" ", "_") for c in df.columns]
    return df


def _pick(columns, *needles, exclude=()):
    # Heuristic column lookup, earlier needles win
    for needle in needles:
        col = next((c for c in columns if needle in c and not any(x in c for x in exclude)), None)
        if col:
            return col
    return None


def _maybe_json(value: str) -> Any:
    text = value.strip()
    if text[:1] in ("[", "{"):
        try:
            return json.loads(text)
        except ValueError:
            return value
    return value


def parse_question_csv(file_content: bytes) -> list:
    """
    Parses an answer-key CSV into question records.
    Expected columns: section_id, section_type, question_id, question_number,
    question_type, correct_answer, points (optional, defaults to 1), metadata (optional JSON),
    question_text (optional)
    """
    df = _read_csv(file_content)
    logger.info(f"Parsed Question CSV Columns: {list(df.columns)}")

    cols = list(df.columns)
    sid_col = _pick(cols, 'section_id')
    stype_col = _pick(cols, 'section_type', 'section')
    qid_col = _pick(cols, 'question_id') or ('id' if 'id' in cols else None)
    num_col = _pick(cols, 'number', 'qno')
    type_col = _pick(cols, 'question_type', 'type', exclude=('section',))
    ans_col = _pick(cols, 'answer', 'key')
    pts_col = _pick(cols, 'points', 'marks', 'score')
    meta_col = _pick(cols, 'metadata', 'meta')
    text_col = _pick(cols, 'question_text', 'text')

    if not (qid_col and type_col and ans_col):
        logger.info("Question CSV is missing id/type/answer columns, nothing imported")
        return []

    questions = []
    for _, row in df.iterrows():
        qid = row[qid_col].strip()
        if not qid:
            continue
        record = {
            "section_id": row[sid_col].strip() if sid_col else "",
            "section_type": (row[stype_col].strip().lower() if stype_col else "") or "reading",
            "id": qid,
            "question_type": row[type_col].strip(),
            "question_number": row[num_col].strip() if num_col else 0,
            "correct_answer": _maybe_json(row[ans_col]),
            "points": row[pts_col].strip() if pts_col and row[pts_col].strip() else "1",
            "metadata": row[meta_col] if meta_col else None,
            "question_text": row[text_col] if text_col else "",
        }
        if not record["section_id"]:
            record["section_id"] = record["section_type"]
        questions.append(record)

    return questions


def group_sections(records: list) -> List[Section]:
    """Question records -> sections, in first-seen section order."""
    sections: Dict[str, dict] = {}
    for record in records:
        record = dict(record)
        sid = record.pop("section_id")
        stype = record.pop("section_type")
        section = sections.setdefault(sid, {"id": sid, "section_type": stype, "questions": []})
        section["questions"].append(record)
    return [Section.model_validate(s) for s in sections.values()]


def parse_answer_csv(file_content: bytes) -> dict:
    """
    Parses submitted answers.
    Expected columns: question_id, student_answer (JSON for arrays / table answers)
    """
    df = _read_csv(file_content)

    cols = list(df.columns)
    qid_col = _pick(cols, 'question_id', 'qid') or ('id' if 'id' in cols else None)
    a_col = _pick(cols, 'answer', 'response')

    answers = {}
    if not (qid_col and a_col):
        logger.info("Answer CSV is missing question_id/student_answer columns, nothing imported")
        return answers

    for _, row in df.iterrows():
        qid = row[qid_col].strip()
        if qid:
            answers[qid] = _maybe_json(row[a_col])

    return answers
