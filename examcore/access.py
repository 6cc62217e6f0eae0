"""Access gate: validate an exam token and open a new exam session."""
import logging
from datetime import datetime
from typing import Optional

from examcore.database import ExamStore, utcnow
from examcore.errors import InvalidAccessCode, MissingCandidate, NotFound

logger = logging.getLogger(__name__)


def start_session(
    store: ExamStore,
    candidate_id: Optional[str],
    subject: str,
    exam_no: int | str,
    access_code: str,
    now: Optional[datetime] = None,
) -> str:
    """
    Validate (subject, exam_no, access_code) and create an IN_PROGRESS exam result.

    The token's duration is snapshotted onto the result so later token edits do
    not move the deadline of a session already running.

    Returns:
        The new exam result id

    Raises:
        MissingCandidate: no candidate id was supplied
        NotFound: candidate id does not resolve
        InvalidAccessCode: no token matches; nothing is written
    """
    if not candidate_id or not str(candidate_id).strip():
        raise MissingCandidate("Candidate ID not found. Please register again.")

    subject = (subject or "").strip().upper()
    access_code = (access_code or "").strip()
    try:
        exam_no = int(exam_no)
    except (TypeError, ValueError):
        raise InvalidAccessCode(f"Invalid exam number: {exam_no!r}") from None

    if store.get_candidate(candidate_id) is None:
        raise NotFound(f"Candidate {candidate_id} not found")

    token = store.find_token(subject, exam_no, access_code) if access_code else None
    if token is None:
        logger.info(f"Rejected access code for {subject}/{exam_no} (candidate {candidate_id})")
        raise InvalidAccessCode("Wrong code. Check Subject, Exam No and Access Code.")

    result = store.create_result(
        candidate_id,
        subject,
        exam_no,
        started_at=now or utcnow(),
        duration_minutes=token.get("duration_minutes"),
    )
    logger.info(f"Started exam {result['id']} for candidate {candidate_id}: {subject}/{exam_no}")
    return str(result["id"])
