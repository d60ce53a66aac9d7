class GradingError(Exception):
    """Base class for failures surfaced by the regrade operations."""


class SessionNotFound(GradingError):
    def __init__(self, session_id: str):
        super().__init__(f"Exam session {session_id} not found")
        self.session_id = session_id


class QuestionNotFound(GradingError):
    def __init__(self, session_id: str, question_id: str):
        super().__init__(f"Question {question_id} not found in session {session_id}")
        self.session_id = session_id
        self.question_id = question_id


class NotManuallyGradable(GradingError):
    def __init__(self, question_id: str, question_type: str):
        super().__init__(f"Question {question_id} ({question_type}) is auto-graded and cannot take a manual grade")
        self.question_id = question_id


class InvalidManualGrade(GradingError):
    pass


class RegradeConflict(GradingError):
    """Another regrade holds the session; safe to retry."""

    retryable = True

    def __init__(self, session_id: str):
        super().__init__(f"Session {session_id} is being regraded, retry later")
        self.session_id = session_id
