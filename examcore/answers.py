"""
Answer capture: optimistic local update + background persistence.

The local answer map changes synchronously on every selection. The store write
runs on a worker thread, is retried a few times, and is allowed to fail without
rolling back the local view (failures are logged, never raised to the candidate).
"""
import logging
import threading
import time
from concurrent.futures import Future, ThreadPoolExecutor, wait
from typing import Callable, Dict, Iterable, Optional, Set

from engine import ANSWER_WRITE_RETRIES, ANSWER_WRITERS
from examcore.database import ExamStore
from examcore.errors import InvalidAnswer, TransientStoreError
from examcore.grading import latest_answers

logger = logging.getLogger(__name__)


class AnswerCapture:
    """Per-session answer map with fire-and-forget upserts."""

    def __init__(
        self,
        store: ExamStore,
        result_id: str,
        is_open: Callable[[], bool],
        options_by_question: Optional[Dict[str, Set[str]]] = None,
        executor: Optional[ThreadPoolExecutor] = None,
        retries: int = ANSWER_WRITE_RETRIES,
        backoff: float = 0.5,
    ):
        self.store = store
        self.result_id = str(result_id)
        self._is_open = is_open
        self._options = options_by_question
        self._owns_executor = executor is None
        self._executor = executor or ThreadPoolExecutor(max_workers=ANSWER_WRITERS, thread_name_prefix="answer-writer")
        self._retries = max(1, retries)
        self._backoff = backoff
        self._answers: Dict[str, str] = {}
        self._lock = threading.Lock()
        self._in_flight: Set[Future] = set()

    @property
    def answers(self) -> Dict[str, str]:
        """Snapshot of {question_id: option_id}."""
        with self._lock:
            return dict(self._answers)

    def preload(self, answers: Iterable[Dict]):
        """Seed the local map from persisted answers (page reload)."""
        latest = latest_answers(list(answers))
        with self._lock:
            for qid, a in latest.items():
                self._answers[qid] = str(a["selected_option_id"])

    def _validate(self, question_id: str, option_id: str):
        if self._options is None:
            return
        allowed = self._options.get(question_id)
        if allowed is None:
            raise InvalidAnswer(f"Question {question_id} is not part of this exam")
        if option_id not in allowed:
            raise InvalidAnswer(f"Option {option_id} does not belong to question {question_id}")

    def record(self, question_id, option_id) -> Optional[Future]:
        """
        Record a selection. Returns the background write's Future (resolving to
        True/False), or None when the session no longer accepts answers.
        """
        question_id, option_id = str(question_id), str(option_id)
        if not self._is_open():
            logger.info(f"Ignoring answer for {question_id}: session {self.result_id} is closed")
            return None
        self._validate(question_id, option_id)

        with self._lock:
            self._answers[question_id] = option_id
        future = self._executor.submit(self._persist, question_id, option_id)
        with self._lock:
            self._in_flight.add(future)
        future.add_done_callback(self._discard)
        return future

    def _discard(self, future: Future):
        with self._lock:
            self._in_flight.discard(future)

    def _persist(self, question_id: str, option_id: str) -> bool:
        for attempt in range(self._retries):
            try:
                self.store.upsert_answer(self.result_id, question_id, option_id)
                return True
            except TransientStoreError as e:
                logger.warning(f"Answer write failed (attempt {attempt + 1}/{self._retries}): {e}")
                if attempt < self._retries - 1:
                    time.sleep(self._backoff * (attempt + 1))
        logger.error(f"Dropped answer for question {question_id} in session {self.result_id}")
        return False

    def pending(self) -> int:
        with self._lock:
            return len(self._in_flight)

    def flush(self, timeout: Optional[float] = None) -> bool:
        """Wait for in-flight writes. Returns False if some were still running at timeout."""
        with self._lock:
            futures = list(self._in_flight)
        if not futures:
            return True
        _, not_done = wait(futures, timeout=timeout)
        return not not_done

    def close(self, wait_for_writes: bool = True):
        """Release the writer pool. In-flight writes are allowed to finish."""
        if self._owns_executor:
            self._executor.shutdown(wait=wait_for_writes)
