"""
Session controller: lifecycle of one exam attempt.

LOADING -> ACTIVE -> SUBMITTING -> COMPLETED, with NOT_FOUND as the terminal
error state. A result that is already COMPLETED short-circuits to COMPLETED.
Both submission paths (deadline expiry and confirmed finish) go through the
same one-shot guard, so only the first one writes.
"""
import logging
import threading
from concurrent.futures import Future, ThreadPoolExecutor
from datetime import datetime, timedelta
from enum import Enum
from typing import Callable, Dict, List, Optional

from engine import DEFAULT_DURATION_MINUTES, STATUS_COMPLETED
from examcore.answers import AnswerCapture
from examcore.database import ExamStore, parse_timestamp, utcnow
from examcore.errors import ExamError, NotFound, TransientStoreError
from examcore.grading import GradeResult, grade_session
from examcore.timer import DeadlineTimer

logger = logging.getLogger(__name__)


class SessionState(str, Enum):
    LOADING = "loading"
    ACTIVE = "active"
    SUBMITTING = "submitting"
    COMPLETED = "completed"
    NOT_FOUND = "not_found"


class SessionController:
    """Drives one exam result from load to completion."""

    FLUSH_TIMEOUT_SECONDS = 5

    def __init__(
        self,
        store: ExamStore,
        result_id: str,
        clock: Callable[[], datetime] = utcnow,
        grader: Callable[[ExamStore, str], GradeResult] = grade_session,
        executor: Optional[ThreadPoolExecutor] = None,
    ):
        self.store = store
        self.result_id = str(result_id)
        self.state = SessionState.LOADING
        self.result: Optional[Dict] = None
        self.questions: List[Dict] = []
        self.current_index = 0
        self.deadline: Optional[datetime] = None
        self.finished_at: Optional[datetime] = None
        self.submit_reason: Optional[str] = None
        self.grade: Optional[GradeResult] = None
        self.timer: Optional[DeadlineTimer] = None
        self.capture: Optional[AnswerCapture] = None

        self._clock = clock
        self._grader = grader
        self._executor = executor
        self._submit_lock = threading.Lock()
        self._submit_started = False

    # ------------------------------------------------------------------ load

    def _duration_minutes(self, result: Dict) -> int:
        """Snapshot on the result, else the live token, else the default."""
        snapshot = result.get("duration_minutes")
        if snapshot:
            return int(snapshot)
        live = self.store.get_token_duration(result["subject"], result["exam_no"])
        return int(live) if live else DEFAULT_DURATION_MINUTES

    def load(self) -> SessionState:
        """
        Resolve the result and enter the matching state.

        Raises:
            NotFound: the result id does not resolve (state becomes NOT_FOUND)
            TransientStoreError: a read required to render the exam failed
        """
        result = self.store.get_result(self.result_id)
        if result is None:
            self.state = SessionState.NOT_FOUND
            raise NotFound(f"Exam result {self.result_id} not found")
        self.result = result

        if result.get("status") == STATUS_COMPLETED:
            logger.info(f"Session {self.result_id} already completed, forwarding to result")
            self.state = SessionState.COMPLETED
            return self.state

        started_at = parse_timestamp(result["started_at"])
        self.deadline = started_at + timedelta(minutes=self._duration_minutes(result))
        self.questions = self.store.get_questions(result["subject"], result["exam_no"])
        options = {str(q["id"]): {str(o["id"]) for o in q.get("options") or []} for q in self.questions}

        self.capture = AnswerCapture(
            self.store,
            self.result_id,
            is_open=lambda: self.state == SessionState.ACTIVE,
            options_by_question=options,
            executor=self._executor,
        )
        self.capture.preload(self.store.get_answers(self.result_id))
        self.timer = DeadlineTimer(self.deadline, on_expire=self._expire, clock=self._clock)

        if self.timer.remaining() == 0:
            logger.info(f"Session {self.result_id} deadline elapsed before load, submitting")
            self.timer.tick()
        else:
            self.state = SessionState.ACTIVE
            logger.info(f"Session {self.result_id} active, deadline {self.deadline.isoformat()}")
        return self.state

    # ------------------------------------------------------------ countdown

    def remaining_seconds(self) -> int:
        if self.timer is None or self.state != SessionState.ACTIVE:
            return 0
        return self.timer.remaining()

    def tick(self) -> int:
        """One countdown step; submits automatically at zero."""
        if self.timer is None or self.state != SessionState.ACTIVE:
            return 0
        return self.timer.tick()

    def _expire(self):
        self.submit("timeout")

    # --------------------------------------------------------------- answers

    @property
    def answers(self) -> Dict[str, str]:
        return self.capture.answers if self.capture else {}

    def record_answer(self, question_id, option_id) -> Optional[Future]:
        """
        Capture a selection; a no-op unless the session is ACTIVE and inside
        its deadline. A selection arriving after the deadline submits the
        session instead of being recorded.
        """
        if self.capture is None:
            return None
        if self.tick() == 0:
            logger.info(f"Ignoring answer to {question_id} for {self.result_id}: session closed")
            return None
        return self.capture.record(question_id, option_id)

    def go_to(self, index: int) -> int:
        """Move the question cursor, clamped to the loaded question set."""
        self.current_index = max(0, min(int(index), len(self.questions) - 1))
        return self.current_index

    # ------------------------------------------------------------ submission

    def request_finish(self, confirmed: bool) -> bool:
        """Candidate-initiated finish. Declining the confirmation cancels it."""
        if not confirmed:
            logger.debug(f"Finish cancelled by candidate for {self.result_id}")
            return False
        return self.submit("finish")

    def submit(self, reason: str) -> bool:
        """
        Transition ACTIVE -> SUBMITTING -> COMPLETED and hand off to grading.

        Returns:
            True if this call performed the submission; False if another
            submission already started or the session is not submittable
        """
        with self._submit_lock:
            if self._submit_started or self.deadline is None:
                return False
            if self.state not in (SessionState.LOADING, SessionState.ACTIVE):
                return False
            self._submit_started = True
            previous = self.state
            self.state = SessionState.SUBMITTING
            self.submit_reason = reason

        if self.timer is not None:
            self.timer.cancel()
        if self.capture is not None and not self.capture.flush(timeout=self.FLUSH_TIMEOUT_SECONDS):
            logger.warning(f"Submitting {self.result_id} with answer writes still in flight")

        now = self._clock()
        try:
            self.store.complete_result(self.result_id, now)
        except TransientStoreError:
            with self._submit_lock:
                self._submit_started = False
                self.state = previous
            if previous == SessionState.ACTIVE:
                # Re-arm so the next tick (or click) retries the submission.
                self.timer = DeadlineTimer(self.deadline, on_expire=self._expire, clock=self._clock)
            raise

        self.finished_at = now
        self.state = SessionState.COMPLETED
        logger.info(f"Session {self.result_id} completed ({reason})")

        try:
            self.grade = self._grader(self.store, self.result_id)
        except ExamError as e:
            # Result page grades again on load; score stays unset until then.
            logger.error(f"Grading failed for {self.result_id}: {e}")
        return True

    # -------------------------------------------------------------- teardown

    def close(self):
        """Cancel the countdown and release the answer writers on any exit path."""
        if self.timer is not None:
            self.timer.cancel()
        if self.capture is not None:
            self.capture.close(wait_for_writes=False)

    def __enter__(self) -> "SessionController":
        return self

    def __exit__(self, exc_type, exc, tb):
        self.close()
