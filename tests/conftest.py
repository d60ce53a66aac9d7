import pytest
import sys
from pathlib import Path

# Add backend to sys.path so we can import bandscore_core and main
BACKEND_PATH = Path(__file__).resolve().parent.parent / "backend"
if BACKEND_PATH.as_posix() not in sys.path:
    sys.path.insert(0, BACKEND_PATH.as_posix())

from bandscore_core.models import ExamSession, Question, Section  # noqa: E402


def make_question(qid, question_type, correct_answer=None, number=0, **extra):
    data = {"id": qid, "questionType": question_type, "questionNumber": number, "correctAnswer": correct_answer}
    data.update(extra)
    return Question.model_validate(data)


def make_section(questions, section_type="reading", sid="S1", **extra):
    return Section.model_validate({"id": sid, "sectionType": section_type, "questions": questions, **extra})


# Common test fixtures
@pytest.fixture
def question():
    return make_question


@pytest.fixture
def section():
    return make_section


@pytest.fixture
def listening_session():
    """Forty single-point listening questions, the first `n` answered correctly."""
    def build(correct=0, session_id="sess-1", **extra):
        questions = [
            {"id": f"q{i}", "questionType": "short_answer", "questionNumber": i, "correctAnswer": "yes"}
            for i in range(1, 41)
        ]
        answers = {f"q{i}": "yes" if i <= correct else "no" for i in range(1, 41)}
        return ExamSession.model_validate({
            "id": session_id,
            "sections": [{"id": "L", "sectionType": "listening", "questions": questions}],
            "answers": answers,
            **extra,
        })
    return build
