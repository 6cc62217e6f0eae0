"""Exam policy constants. No UI, no store access."""
# Pass mark applies to every result surface (on-screen and printed).
# Deadline = started_at + duration; duration falls back to DEFAULT_DURATION_MINUTES.
import os

from dotenv import load_dotenv

load_dotenv()

PASS_MARK = int(os.environ.get("EXAM_PASS_MARK", "70"))
DEFAULT_DURATION_MINUTES = 60
TICK_SECONDS = 1
ANSWER_WRITE_RETRIES = 3
ANSWER_WRITERS = 4

SUBJECTS = ("RENEWAL", "ACTIVATION")
EXAM_NUMBERS = (1, 2, 3)

STATUS_IN_PROGRESS = "IN_PROGRESS"
STATUS_COMPLETED = "COMPLETED"
