import os
import sys
import logging
from dotenv import load_dotenv

load_dotenv() # Load environment variables from .env file

from typing import Optional
from pathlib import Path

# Add current directory to path
sys.path.append(str(Path(__file__).parent))

from fastapi import FastAPI, UploadFile, File, HTTPException
from fastapi.middleware.cors import CORSMiddleware
from pydantic import BaseModel, Field

from bandscore_core.engine import GradingEngine
from bandscore_core.errors import (
    GradingError,
    InvalidManualGrade,
    NotManuallyGradable,
    QuestionNotFound,
    RegradeConflict,
    SessionNotFound,
)
from bandscore_core.input_parsers import group_sections, parse_answer_csv, parse_question_csv
from bandscore_core.models import ExamSession, ExamVariant, SectionType, SessionScore
from bandscore_core.regrade import InMemorySessionStore, RegradeController

logger = logging.getLogger("uvicorn.error")

# ================= CONFIG =================
PASS_THRESHOLD = float(os.getenv("BANDSCORE_PASS_THRESHOLD", "60"))
LOCK_TIMEOUT = float(os.getenv("BANDSCORE_LOCK_TIMEOUT", "5"))
EXAM_VARIANT = ExamVariant(os.getenv("BANDSCORE_EXAM_VARIANT", ExamVariant.ACADEMIC.value))

app = FastAPI(title="BandScore Grading Service")

# CORS
app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

# ================= STATE MANAGEMENT =================
# In-memory "Database"
db = InMemorySessionStore()
engine = GradingEngine(pass_threshold=PASS_THRESHOLD, default_variant=EXAM_VARIANT)
controller = RegradeController(engine, db, lock_timeout=LOCK_TIMEOUT)

_STATUS = {
    SessionNotFound: 404,
    QuestionNotFound: 404,
    NotManuallyGradable: 422,
    InvalidManualGrade: 422,
    RegradeConflict: 409,
}


def http_error(e: GradingError) -> HTTPException:
    return HTTPException(status_code=_STATUS.get(type(e), 400), detail=str(e))


def get_session_or_404(session_id: str) -> ExamSession:
    session = db.get(session_id)
    if session is None:
        raise http_error(SessionNotFound(session_id))
    return session


# ================= MODELS =================
class ManualGradeRequest(BaseModel):
    pointsEarned: float
    isCorrect: Optional[bool] = None
    comments: Optional[str] = None


class BandResponse(BaseModel):
    sectionType: SectionType
    correctCount: int
    examVariant: ExamVariant
    band: float


class ResultsResponse(BaseModel):
    sessionId: str
    score: SessionScore
    leaves: list = Field(default_factory=list)


# ================= ROUTES =================

@app.get("/api/sessions")
def list_sessions():
    return [{"id": s.id, "examVariant": s.exam_variant, "score": s.score} for s in db.all()]


@app.post("/api/sessions")
def create_session(session: ExamSession):
    db.add(session)
    logger.info(f"Registered session {session.id} with {len(session.sections)} sections")
    return {"id": session.id}


@app.post("/api/sessions/{session_id}/upload/questions")
async def upload_questions(session_id: str, file: UploadFile = File(...)):
    get_session_or_404(session_id)
    contents = await file.read()
    try:
        records = parse_question_csv(contents)
        sections = group_sections(records)
    except ValueError as e:
        logger.info(f"Rejected question upload {file.filename}: {e}")
        raise HTTPException(status_code=422, detail=str(e))
    try:
        with controller.critical_section(session_id):
            db.replace_sections(session_id, sections)
    except GradingError as e:
        raise http_error(e)
    return {"message": f"Loaded {len(records)} questions in {len(sections)} sections"}


@app.post("/api/sessions/{session_id}/upload/answers")
async def upload_answers(session_id: str, file: UploadFile = File(...)):
    get_session_or_404(session_id)
    contents = await file.read()
    try:
        answers = parse_answer_csv(contents)
    except ValueError as e:
        raise HTTPException(status_code=422, detail=f"Failed to parse CSV: {str(e)}")
    try:
        with controller.critical_section(session_id):
            db.update_answers(session_id, answers)
    except GradingError as e:
        raise http_error(e)
    return {"message": f"Stored {len(answers)} answers"}


@app.get("/api/sessions/{session_id}/results")
def get_results(session_id: str):
    session = get_session_or_404(session_id)
    leaves, score = engine.grade_session(session)
    return ResultsResponse(
        sessionId=session_id,
        score=score,
        leaves=[leaf.model_dump(mode="json", by_alias=True) for leaf in leaves],
    ).model_dump(mode="json", by_alias=True)


@app.post("/api/sessions/{session_id}/recalculate")
def recalculate(session_id: str):
    try:
        score = controller.recalculate(session_id)
    except GradingError as e:
        raise http_error(e)
    return score.model_dump(mode="json", by_alias=True)


@app.patch("/api/sessions/{session_id}/answers/{question_id}/grade")
def set_manual_grade(session_id: str, question_id: str, req: ManualGradeRequest):
    try:
        score = controller.set_manual_grade(
            session_id, question_id, req.pointsEarned, is_correct=req.isCorrect, comments=req.comments
        )
    except GradingError as e:
        raise http_error(e)
    return score.model_dump(mode="json", by_alias=True)


@app.get("/api/bands/{section_type}", response_model=BandResponse)
def get_band(section_type: SectionType, correct: int, variant: ExamVariant = EXAM_VARIANT):
    try:
        band = engine.map_band(section_type, correct, variant)
    except ValueError as e:
        raise HTTPException(status_code=422, detail=str(e))
    return BandResponse(sectionType=section_type, correctCount=correct, examVariant=variant, band=band)
