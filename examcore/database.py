"""
Database operations for the AMEL exam console.
Handles Supabase CRUD for candidates, exam tokens, the question bank, exam results and answers.
"""
import logging
from datetime import datetime, timezone
from typing import Dict, List, Optional
from uuid import UUID

from supabase import Client

from engine import STATUS_COMPLETED, STATUS_IN_PROGRESS
from examcore.errors import TransientStoreError

logger = logging.getLogger(__name__)

CANDIDATE_FIELDS = (
    "name",
    "personnel_no",
    "unit",
    "rating_sought",
    "exam_date",
    "dgac_amel_no",
    "dgac_rating",
    "ga_auth_no",
    "ga_rating",
)


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def parse_timestamp(value) -> Optional[datetime]:
    """Parse a PostgREST timestamp (ISO string) into an aware datetime."""
    if value is None or isinstance(value, datetime):
        return value
    parsed = datetime.fromisoformat(str(value).replace("Z", "+00:00"))
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed


class ExamStore:
    """Wrapper around Supabase client with exam-specific operations."""

    def __init__(self, client: Client):
        self.client = client

    def _first(self, response) -> Optional[Dict]:
        data = response.data or []
        return data[0] if data else None

    # ============= Candidates =============

    def create_candidate(self, candidate: Dict) -> Dict:
        """Insert a candidate registration and return the stored row (with id)."""
        row = {k: candidate.get(k) for k in CANDIDATE_FIELDS}
        try:
            response = self.client.table("candidates").insert(row).execute()
        except Exception as e:
            logger.error(f"Error saving candidate: {e}")
            raise TransientStoreError("Could not save candidate") from e
        created = self._first(response)
        if created is None:
            raise TransientStoreError("Candidate insert returned no row")
        logger.info(f"Registered candidate {created['id']}")
        return created

    def get_candidate(self, candidate_id: UUID | str) -> Optional[Dict]:
        try:
            response = (
                self.client.table("candidates")
                .select("*")
                .eq("id", str(candidate_id))
                .limit(1)
                .execute()
            )
        except Exception as e:
            logger.error(f"Error fetching candidate {candidate_id}: {e}")
            raise TransientStoreError("Could not load candidate") from e
        return self._first(response)

    # ============= Exam tokens =============

    def find_token(self, subject: str, exam_no: int, access_code: str) -> Optional[Dict]:
        """Point lookup of an issued token by (subject, exam_no, access_code)."""
        try:
            response = (
                self.client.table("exam_tokens")
                .select("*")
                .eq("subject", subject)
                .eq("exam_no", exam_no)
                .eq("access_code", access_code)
                .limit(1)
                .execute()
            )
        except Exception as e:
            logger.error(f"Error validating token for {subject}/{exam_no}: {e}")
            raise TransientStoreError("Could not validate access code") from e
        return self._first(response)

    def get_token_duration(self, subject: str, exam_no: int) -> Optional[int]:
        """Current duration configured for an exam package, or None if no token exists."""
        try:
            response = (
                self.client.table("exam_tokens")
                .select("duration_minutes")
                .eq("subject", subject)
                .eq("exam_no", exam_no)
                .limit(1)
                .execute()
            )
        except Exception as e:
            logger.error(f"Error fetching duration for {subject}/{exam_no}: {e}")
            raise TransientStoreError("Could not load exam duration") from e
        token = self._first(response)
        return token.get("duration_minutes") if token else None

    # ============= Exam results =============

    def create_result(
        self,
        candidate_id: UUID | str,
        subject: str,
        exam_no: int,
        started_at: datetime,
        duration_minutes: Optional[int] = None,
    ) -> Dict:
        """Create a new IN_PROGRESS exam result (one attempt)."""
        row = {
            "candidate_id": str(candidate_id),
            "subject": subject,
            "exam_no": exam_no,
            "status": STATUS_IN_PROGRESS,
            "started_at": started_at.isoformat(),
            "duration_minutes": duration_minutes,
        }
        try:
            response = self.client.table("exam_results").insert(row).execute()
        except Exception as e:
            logger.error(f"Error creating exam result: {e}")
            raise TransientStoreError("Could not start exam") from e
        created = self._first(response)
        if created is None:
            raise TransientStoreError("Exam result insert returned no row")
        return created

    def get_result(self, result_id: UUID | str) -> Optional[Dict]:
        try:
            response = (
                self.client.table("exam_results")
                .select("*")
                .eq("id", str(result_id))
                .limit(1)
                .execute()
            )
        except Exception as e:
            logger.error(f"Error fetching exam result {result_id}: {e}")
            raise TransientStoreError("Could not load exam session") from e
        return self._first(response)

    def get_result_with_candidate(self, result_id: UUID | str) -> Optional[Dict]:
        """Exam result joined to its candidate (key 'candidates')."""
        try:
            response = (
                self.client.table("exam_results")
                .select("*, candidates(*)")
                .eq("id", str(result_id))
                .limit(1)
                .execute()
            )
        except Exception as e:
            logger.error(f"Error fetching exam result {result_id}: {e}")
            raise TransientStoreError("Could not load exam result") from e
        return self._first(response)

    def complete_result(self, result_id: UUID | str, finished_at: datetime) -> bool:
        """
        Mark a result COMPLETED. Only rows still IN_PROGRESS are touched, so a
        completed session is never rewritten.

        Returns:
            True if this call performed the transition
        """
        try:
            response = (
                self.client.table("exam_results")
                .update({"status": STATUS_COMPLETED, "finished_at": finished_at.isoformat()})
                .eq("id", str(result_id))
                .eq("status", STATUS_IN_PROGRESS)
                .execute()
            )
        except Exception as e:
            logger.error(f"Error completing exam result {result_id}: {e}")
            raise TransientStoreError("Could not submit exam") from e
        return bool(response.data)

    def save_score(self, result_id: UUID | str, score: int, total_correct: int) -> bool:
        """
        Persist the grade. Only rows whose score is still unset (null or 0) are
        updated, so a locked score is never overwritten.

        Returns:
            True if a row was written
        """
        try:
            response = (
                self.client.table("exam_results")
                .update({"score": score, "total_correct": total_correct, "status": STATUS_COMPLETED})
                .eq("id", str(result_id))
                .or_("score.is.null,score.eq.0")
                .execute()
            )
        except Exception as e:
            logger.error(f"Error saving score for {result_id}: {e}")
            raise TransientStoreError("Could not save score") from e
        return bool(response.data)

    # ============= Questions =============

    def get_questions(self, subject: str, exam_no: int) -> List[Dict]:
        """
        Fetch the question set of an exam package with its options.
        Options never carry the is_correct flag here.
        """
        try:
            response = (
                self.client.table("questions")
                .select("id, position, question_text, options(id, position, option_text)")
                .eq("subject", subject)
                .eq("exam_no", exam_no)
                .order("position")
                .execute()
            )
        except Exception as e:
            logger.error(f"Error fetching questions for {subject}/{exam_no}: {e}")
            raise TransientStoreError("Could not load questions") from e
        questions = response.data or []
        for q in questions:
            q["options"] = sorted(q.get("options") or [], key=lambda o: (o.get("position") or 0, str(o["id"])))
        return questions

    def count_questions(self, subject: str, exam_no: int) -> int:
        try:
            r = (
                self.client.table("questions")
                .select("id", count="exact")
                .eq("subject", subject)
                .eq("exam_no", exam_no)
                .execute()
            )
        except Exception as e:
            logger.error(f"Error counting questions for {subject}/{exam_no}: {e}")
            raise TransientStoreError("Could not count questions") from e
        count = getattr(r, "count", None)
        return count if count is not None else len(r.data or [])

    def upsert_questions_bulk(self, questions: List[Dict], options: List[Dict], chunk_size: int = 200):
        """
        Bulk upsert questions, then their options. Rows must include 'id'.
        Dedupes by id so no chunk has duplicates (avoids Postgres ON CONFLICT error).
        """
        for table, rows in (("questions", questions), ("options", options)):
            by_id = {r["id"]: r for r in rows}
            rows = list(by_id.values())
            n_chunks = (len(rows) + chunk_size - 1) // chunk_size
            for i in range(0, len(rows), chunk_size):
                chunk = rows[i : i + chunk_size]
                logger.info("Upserting %s chunk %d/%d (%d rows)", table, i // chunk_size + 1, n_chunks, len(chunk))
                self.client.table(table).upsert(chunk, on_conflict="id").execute()

    # ============= Answers =============

    def upsert_answer(self, result_id: UUID | str, question_id: UUID | str, option_id: UUID | str) -> None:
        """
        Insert or update the answer for (result_id, question_id).
        Relies on the unique constraint on that pair, so the write is atomic.
        """
        row = {
            "result_id": str(result_id),
            "question_id": str(question_id),
            "selected_option_id": str(option_id),
            "updated_at": utcnow().isoformat(),
        }
        try:
            self.client.table("exam_answers").upsert(row, on_conflict="result_id,question_id").execute()
        except Exception as e:
            raise TransientStoreError(f"Could not save answer for question {question_id}") from e

    def get_answers(self, result_id: UUID | str) -> List[Dict]:
        """Fetch all answers of a result, each joined to its option's is_correct flag and owning question."""
        try:
            response = (
                self.client.table("exam_answers")
                .select("id, question_id, selected_option_id, updated_at, options(is_correct, question_id)")
                .eq("result_id", str(result_id))
                .execute()
            )
        except Exception as e:
            logger.error(f"Error fetching answers for {result_id}: {e}")
            raise TransientStoreError("Could not load answers") from e
        return response.data or []
