"""Ingest an answer-key .jsonl into the question bank; bulk UPSERT into questions + options."""
import argparse
import json
import logging
from pathlib import Path
from uuid import uuid5, NAMESPACE_DNS

from engine import SUBJECTS

logger = logging.getLogger(__name__)


def question_uuid(subject: str, exam_no: int, key: str) -> str:
    return str(uuid5(NAMESPACE_DNS, f"{subject}:{exam_no}:{key}"))


def option_uuid(question_id: str, index: int) -> str:
    return str(uuid5(NAMESPACE_DNS, f"{question_id}:option:{index}"))


def parse_line(line: str, position: int = 0) -> tuple[dict, list[dict]] | None:
    """
    Parse one JSONL line into (question row, option rows). Returns None if invalid/skip.

    Expected keys: subject, exam_no, question_text (or text), options (list of str),
    correct_option (0-based index). Optional: question_key (stable id source).
    """
    line = line.strip()
    if not line:
        return None
    try:
        raw = json.loads(line)
    except json.JSONDecodeError:
        return None
    subject = (raw.get("subject") or "").strip().upper()
    if subject not in SUBJECTS:
        return None
    try:
        exam_no = int(raw.get("exam_no"))
    except (TypeError, ValueError):
        return None
    text = (raw.get("question_text") or raw.get("text") or "").strip()
    options = raw.get("options")
    if not text or not isinstance(options, list) or len(options) < 2:
        return None
    correct_option = raw.get("correct_option")
    if not isinstance(correct_option, int) or not 0 <= correct_option < len(options):
        return None

    qid = question_uuid(subject, exam_no, str(raw.get("question_key") or text))
    question = {
        "id": qid,
        "subject": subject,
        "exam_no": exam_no,
        "position": position,
        "question_text": text,
    }
    option_rows = [
        {
            "id": option_uuid(qid, i),
            "question_id": qid,
            "position": i,
            "option_text": str(opt),
            "is_correct": i == correct_option,
        }
        for i, opt in enumerate(options)
    ]
    return question, option_rows


def load_and_transform(path: Path):
    """Read JSONL and yield (question, options) pairs; positions follow file order."""
    position = 0
    with path.open("r", encoding="utf-8") as f:
        for line in f:
            parsed = parse_line(line, position)
            if parsed:
                position += 1
                yield parsed
            elif line.strip():
                logger.warning(f"Skipping invalid line: {line.strip()[:80]}")


def run_import(jsonl_path: Path, chunk_size: int = 200, dry_run: bool = False):
    if not jsonl_path.exists():
        raise FileNotFoundError(f"JSONL not found: {jsonl_path}")
    questions, options = [], []
    for question, option_rows in load_and_transform(jsonl_path):
        questions.append(question)
        options.extend(option_rows)
    if dry_run:
        print(f"Dry run: would upsert {len(questions)} questions ({len(options)} options) from {jsonl_path}")
        if questions:
            print("Sample row:", questions[0])
        return
    from db import get_store_uncached

    get_store_uncached().upsert_questions_bulk(questions, options, chunk_size=chunk_size)
    print(f"Upserted {len(questions)} questions from {jsonl_path}")


if __name__ == "__main__":
    logging.basicConfig(level=logging.INFO, format="%(levelname)s: %(message)s")
    parser = argparse.ArgumentParser(description="Import an answer-key JSONL into the Supabase question bank.")
    parser.add_argument("jsonl", help="Path to .jsonl")
    parser.add_argument("--chunk-size", type=int, default=200, help="Upsert chunk size (default 200)")
    parser.add_argument("--dry-run", action="store_true", help="Parse only, do not upsert")
    args = parser.parse_args()
    run_import(Path(args.jsonl), chunk_size=args.chunk_size, dry_run=args.dry_run)
