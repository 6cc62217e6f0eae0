import sys
from datetime import datetime, timedelta, timezone
from pathlib import Path
from uuid import uuid4

import pytest

PROJECT_ROOT = Path(__file__).resolve().parent
if str(PROJECT_ROOT) not in sys.path:
    sys.path.insert(0, str(PROJECT_ROOT))

from engine import STATUS_COMPLETED, STATUS_IN_PROGRESS
from examcore.errors import TransientStoreError

T0 = datetime(2026, 3, 1, 8, 0, 0, tzinfo=timezone.utc)


class FakeClock:
    def __init__(self, now=T0):
        self.now = now

    def __call__(self):
        return self.now

    def advance(self, seconds):
        self.now = self.now + timedelta(seconds=seconds)


class FakeStore:
    """In-memory stand-in for ExamStore with the same method surface."""

    def __init__(self):
        self.candidates = {}
        self.tokens = []
        self.questions = {}
        self.options = {}
        self.results = {}
        self.answers = []
        self.calls = []
        self.fail = set()
        self.duplicate_answers = False
        self._seq = 0

    def _call(self, op, *args):
        self.calls.append((op, args))
        if op in self.fail:
            raise TransientStoreError(f"{op} failed")

    def writes(self, op):
        return [c for c in self.calls if c[0] == op]

    # --- fixtures helpers

    def add_token(self, subject, exam_no, access_code, duration_minutes):
        token = {"subject": subject, "exam_no": exam_no, "access_code": access_code, "duration_minutes": duration_minutes}
        self.tokens.append(token)
        return token

    def add_question(self, subject, exam_no, text, option_texts, correct_idx):
        qid = str(uuid4())
        opts = []
        for i, t in enumerate(option_texts):
            oid = str(uuid4())
            self.options[oid] = {"id": oid, "question_id": qid, "option_text": t, "is_correct": i == correct_idx}
            opts.append(oid)
        self.questions[qid] = {"id": qid, "subject": subject, "exam_no": exam_no, "position": len(self.questions), "question_text": text, "option_ids": opts}
        return qid, opts

    # --- candidates

    def create_candidate(self, candidate):
        self._call("create_candidate", candidate)
        row = dict(candidate, id=str(uuid4()))
        self.candidates[row["id"]] = row
        return row

    def get_candidate(self, candidate_id):
        self._call("get_candidate", candidate_id)
        return self.candidates.get(str(candidate_id))

    # --- tokens

    def find_token(self, subject, exam_no, access_code):
        self._call("find_token", subject, exam_no, access_code)
        for t in self.tokens:
            if (t["subject"], t["exam_no"], t["access_code"]) == (subject, exam_no, access_code):
                return dict(t)
        return None

    def get_token_duration(self, subject, exam_no):
        self._call("get_token_duration", subject, exam_no)
        for t in self.tokens:
            if (t["subject"], t["exam_no"]) == (subject, exam_no):
                return t["duration_minutes"]
        return None

    # --- results

    def create_result(self, candidate_id, subject, exam_no, started_at, duration_minutes=None):
        self._call("create_result", candidate_id, subject, exam_no)
        rid = str(uuid4())
        self.results[rid] = {
            "id": rid,
            "candidate_id": str(candidate_id),
            "subject": subject,
            "exam_no": exam_no,
            "status": STATUS_IN_PROGRESS,
            "started_at": started_at.isoformat(),
            "finished_at": None,
            "score": None,
            "total_correct": None,
            "duration_minutes": duration_minutes,
        }
        return dict(self.results[rid])

    def get_result(self, result_id):
        self._call("get_result", result_id)
        row = self.results.get(str(result_id))
        return dict(row) if row else None

    def get_result_with_candidate(self, result_id):
        self._call("get_result_with_candidate", result_id)
        row = self.results.get(str(result_id))
        if not row:
            return None
        return dict(row, candidates=self.candidates.get(row["candidate_id"]))

    def complete_result(self, result_id, finished_at):
        self._call("complete_result", result_id, finished_at)
        row = self.results.get(str(result_id))
        if not row or row["status"] != STATUS_IN_PROGRESS:
            return False
        row.update(status=STATUS_COMPLETED, finished_at=finished_at.isoformat())
        return True

    def save_score(self, result_id, score, total_correct):
        self._call("save_score", result_id, score, total_correct)
        row = self.results.get(str(result_id))
        if not row or row["score"] not in (None, 0):
            return False
        row.update(score=score, total_correct=total_correct, status=STATUS_COMPLETED)
        return True

    # --- questions

    def get_questions(self, subject, exam_no):
        self._call("get_questions", subject, exam_no)
        out = []
        for q in sorted(self.questions.values(), key=lambda q: q["position"]):
            if (q["subject"], q["exam_no"]) != (subject, exam_no):
                continue
            out.append({
                "id": q["id"],
                "position": q["position"],
                "question_text": q["question_text"],
                "options": [{"id": oid, "option_text": self.options[oid]["option_text"]} for oid in q["option_ids"]],
            })
        return out

    def count_questions(self, subject, exam_no):
        self._call("count_questions", subject, exam_no)
        return sum(1 for q in self.questions.values() if (q["subject"], q["exam_no"]) == (subject, exam_no))

    # --- answers

    def _stamp(self):
        self._seq += 1
        return (T0 + timedelta(microseconds=self._seq)).isoformat()

    def upsert_answer(self, result_id, question_id, option_id):
        self._call("upsert_answer", result_id, question_id, option_id)
        if not self.duplicate_answers:
            for a in self.answers:
                if (a["result_id"], a["question_id"]) == (str(result_id), str(question_id)):
                    a.update(selected_option_id=str(option_id), updated_at=self._stamp())
                    return
        self.answers.append({
            "id": str(uuid4()),
            "result_id": str(result_id),
            "question_id": str(question_id),
            "selected_option_id": str(option_id),
            "updated_at": self._stamp(),
        })

    def get_answers(self, result_id):
        self._call("get_answers", result_id)
        out = []
        for a in self.answers:
            if a["result_id"] != str(result_id):
                continue
            option = self.options.get(a["selected_option_id"])
            out.append(dict(a, options={"is_correct": option["is_correct"], "question_id": option["question_id"]} if option else None))
        return out


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def store():
    s = FakeStore()
    s.add_token("RENEWAL", 1, "123456", 60)
    return s


@pytest.fixture
def candidate_id(store):
    return store.create_candidate({"name": "Budi Santoso", "personnel_no": "P-1029", "unit": "Line Maintenance"})["id"]


@pytest.fixture
def four_questions(store):
    """Four RENEWAL/1 questions; returns [(question_id, correct_option, wrong_option), ...]."""
    out = []
    for n in range(4):
        qid, opts = store.add_question("RENEWAL", 1, f"Question {n + 1}", ["A", "B", "C", "D"], correct_idx=n % 4)
        wrong = opts[(n + 1) % 4]
        out.append((qid, opts[n % 4], wrong))
    return out
