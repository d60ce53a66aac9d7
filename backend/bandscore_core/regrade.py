"""
Recalculation and manual grading of exam sessions.

Every operation on a session runs inside that session's critical section,
so a stored score is always one complete derivation. A manual grade is
stored and the session recalculated under the same lock, which keeps
override-then-recalculate ordering.
"""
import logging
import threading
from contextlib import contextmanager
from fractions import Fraction
from typing import Dict, Iterator, Optional, Protocol

from .engine import GradingEngine
from .errors import (
    InvalidManualGrade,
    NotManuallyGradable,
    QuestionNotFound,
    RegradeConflict,
    SessionNotFound,
)
from .models import ExamSession, ManualGrade, SessionScore, to_fraction

logger = logging.getLogger("uvicorn.error")

HALF_POINT = Fraction(1, 2)


class SessionRepository(Protocol):
    def get(self, session_id: str) -> Optional[ExamSession]: ...

    def save_score(self, session_id: str, score: SessionScore) -> None: ...

    def save_override(self, session_id: str, question_id: str, grade: ManualGrade) -> None: ...


class InMemorySessionStore:
    def __init__(self):
        self.sessions: Dict[str, ExamSession] = {}
        self._lock = threading.Lock()

    def add(self, session: ExamSession) -> ExamSession:
        with self._lock:
            self.sessions[session.id] = session
        return session

    def get(self, session_id: str) -> Optional[ExamSession]:
        with self._lock:
            session = self.sessions.get(session_id)
            # callers get a snapshot, writes go through save_*
            return session.model_copy(deep=True) if session is not None else None

    def save_score(self, session_id: str, score: SessionScore) -> None:
        with self._lock:
            self.sessions[session_id].score = score

    def save_override(self, session_id: str, question_id: str, grade: ManualGrade) -> None:
        with self._lock:
            self.sessions[session_id].overrides[question_id] = grade

    def replace_sections(self, session_id: str, sections) -> None:
        with self._lock:
            self.sessions[session_id].sections = list(sections)

    def update_answers(self, session_id: str, answers: Dict) -> None:
        with self._lock:
            self.sessions[session_id].answers.update(answers)

    def all(self):
        with self._lock:
            return list(self.sessions.values())


class _SessionLock:
    __slots__ = ("lock", "users")

    def __init__(self):
        self.lock = threading.Lock()
        # holder plus waiters; the entry is dropped when this reaches zero
        self.users = 0


class RegradeController:
    def __init__(self, engine: GradingEngine, repository: SessionRepository, lock_timeout: float = 5.0):
        self.engine = engine
        self.repository = repository
        self.lock_timeout = lock_timeout
        self._locks: Dict[str, _SessionLock] = {}
        self._registry = threading.Lock()

    def _checkout(self, session_id: str) -> _SessionLock:
        with self._registry:
            entry = self._locks.get(session_id)
            if entry is None:
                entry = self._locks[session_id] = _SessionLock()
            entry.users += 1
            return entry

    def _checkin(self, session_id: str, entry: _SessionLock) -> None:
        with self._registry:
            entry.users -= 1
            if entry.users == 0:
                del self._locks[session_id]

    @contextmanager
    def critical_section(self, session_id: str) -> Iterator[None]:
        entry = self._checkout(session_id)
        try:
            if not entry.lock.acquire(timeout=self.lock_timeout):
                logger.warning(f"Regrade of session {session_id} timed out waiting for the session lock")
                raise RegradeConflict(session_id)
            try:
                yield
            finally:
                entry.lock.release()
        finally:
            self._checkin(session_id, entry)

    def _load(self, session_id: str) -> ExamSession:
        session = self.repository.get(session_id)
        if session is None:
            raise SessionNotFound(session_id)
        return session

    def _recalculate_locked(self, session_id: str) -> SessionScore:
        session = self._load(session_id)
        _, score = self.engine.grade_session(session)
        self.repository.save_score(session_id, score)
        return score

    def recalculate(self, session_id: str) -> SessionScore:
        with self.critical_section(session_id):
            score = self._recalculate_locked(session_id)
        logger.info(f"Recalculated session {session_id}: {score.total_score}/{score.max_score}")
        return score

    def set_manual_grade(self, session_id: str, question_id: str, points_earned,
                         is_correct: Optional[bool] = None, comments: Optional[str] = None) -> SessionScore:
        with self.critical_section(session_id):
            session = self._load(session_id)
            _, question = session.find_question(question_id)
            if question is None:
                raise QuestionNotFound(session_id, question_id)
            if not question.is_manual:
                raise NotManuallyGradable(question_id, question.question_type.value)

            try:
                earned = to_fraction(points_earned)
            except ValueError as e:
                raise InvalidManualGrade(str(e)) from e
            if earned < 0 or earned > question.points:
                raise InvalidManualGrade(f"pointsEarned must be between 0 and {float(question.points)}")
            if earned % HALF_POINT:
                raise InvalidManualGrade("pointsEarned must be in half-point steps")

            grade = ManualGrade(points_earned=earned, is_correct=is_correct, comments=comments)
            self.repository.save_override(session_id, question_id, grade)
            score = self._recalculate_locked(session_id)
        logger.info(f"Manual grade {float(earned)} stored for question {question_id} in session {session_id}")
        return score
