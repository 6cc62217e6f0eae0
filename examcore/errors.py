"""Exception types raised by the exam core."""


class ExamError(Exception):
    """Base class for exam lifecycle errors."""


class NotFound(ExamError):
    """Referenced exam result or candidate does not exist."""


class MissingCandidate(ExamError):
    """Exam selection was attempted without a registered candidate."""


class SessionInProgress(ExamError):
    """Result was requested for an attempt that has not been submitted."""


class InvalidAccessCode(ExamError):
    """No exam token matches (subject, exam_no, access_code)."""


class InvalidAnswer(ExamError):
    """Selected option does not belong to the question."""


class TransientStoreError(ExamError):
    """A read or write against the store failed."""
