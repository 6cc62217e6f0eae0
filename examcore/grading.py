"""
Grading engine: score a session from its persisted answers, exactly once.

Score = round-half-up(correct / divider * 100), where divider is the number of
questions in the exam package (falling back to the number of distinct answered
questions, then 1). A stored non-null, non-zero score is locked: later calls
return it unchanged and never write again.
"""
import logging
from dataclasses import dataclass
from typing import Dict, List, Optional

from engine import PASS_MARK, STATUS_IN_PROGRESS
from examcore.database import ExamStore
from examcore.errors import NotFound, SessionInProgress, TransientStoreError

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class GradeResult:
    score: int
    correct_count: int
    total_questions: int
    locked: bool = False

    @property
    def passed(self) -> bool:
        return self.score >= PASS_MARK


def latest_answers(answers: List[Dict]) -> Dict[str, Dict]:
    """
    Deduplicate answers by question, keeping the most recent write.
    Ties (or missing timestamps) go to the row that comes later.
    """
    latest: Dict[str, Dict] = {}
    for a in answers:
        qid = str(a["question_id"])
        prev = latest.get(qid)
        if prev is None or (a.get("updated_at") or "") >= (prev.get("updated_at") or ""):
            latest[qid] = a
    return latest


def _is_correct(answer: Dict) -> bool:
    option = answer.get("options")
    if isinstance(option, list):
        option = option[0] if option else None
    if not option or option.get("is_correct") is not True:
        return False
    # Only an option of the answered question can score it.
    owner = option.get("question_id")
    if str(owner) != str(answer["question_id"]):
        logger.warning(
            f"Answer to question {answer['question_id']} selects option "
            f"{answer.get('selected_option_id')} of question {owner}, not counted"
        )
        return False
    return True


def compute_score(correct: int, divider: int) -> int:
    # Integer round-half-up; avoids float error and banker's rounding.
    return (correct * 200 + divider) // (2 * divider)


def grade_session(store: ExamStore, result_id: str) -> GradeResult:
    """
    Grade an exam result. Safe to call on every view of the result page.

    Raises:
        NotFound: result does not exist
        TransientStoreError: answers, result or question count could not be read
    """
    answers = latest_answers(store.get_answers(result_id))
    correct = sum(1 for a in answers.values() if _is_correct(a))

    result = store.get_result(result_id)
    if result is None:
        raise NotFound(f"Exam result {result_id} not found")
    total_questions = store.count_questions(result["subject"], result["exam_no"])

    divider = total_questions if total_questions > 0 else (len(answers) or 1)
    stored = result.get("score")
    if stored:
        stored_correct = result.get("total_correct")
        logger.debug(f"Result {result_id} already graded ({stored}), returning stored score")
        return GradeResult(
            score=int(stored),
            correct_count=int(stored_correct if stored_correct is not None else correct),
            total_questions=divider,
            locked=True,
        )

    score = compute_score(correct, divider)
    try:
        written = store.save_score(result_id, score, correct)
    except TransientStoreError as e:
        # Score stays unset in the store, so the next load grades again.
        logger.error(f"Could not persist score for {result_id}: {e}")
        return GradeResult(score=score, correct_count=correct, total_questions=divider)

    if not written:
        # Lost a race with another grader; the persisted score wins.
        current = store.get_result(result_id) or {}
        if current.get("score"):
            return GradeResult(
                score=int(current["score"]),
                correct_count=int(current.get("total_correct") or 0),
                total_questions=divider,
                locked=True,
            )
    logger.info(f"Graded {result_id}: {correct}/{divider} correct, score {score}")
    return GradeResult(score=score, correct_count=correct, total_questions=divider)


def result_summary(store: ExamStore, result_id: str) -> Dict:
    """
    Grade (idempotently) and gather what the result page and its printout need.

    Raises:
        NotFound: result does not exist
        SessionInProgress: the attempt has not been submitted yet
    """
    detail: Optional[Dict] = store.get_result_with_candidate(result_id)
    if detail is None:
        raise NotFound(f"Exam result {result_id} not found")
    if detail.get("status") == STATUS_IN_PROGRESS:
        raise SessionInProgress(f"Exam result {result_id} has not been submitted")
    grade = grade_session(store, result_id)
    return {
        "result_id": str(result_id),
        "report_id": str(result_id)[:8],
        "candidate": detail.get("candidates") or {},
        "subject": detail.get("subject"),
        "exam_no": detail.get("exam_no"),
        "started_at": detail.get("started_at"),
        "finished_at": detail.get("finished_at"),
        "score": grade.score,
        "correct_count": grade.correct_count,
        "total_questions": grade.total_questions,
        "passed": grade.passed,
        "pass_mark": PASS_MARK,
    }
