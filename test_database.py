from datetime import datetime, timezone
from types import SimpleNamespace
from unittest.mock import MagicMock

import pytest

from engine import STATUS_IN_PROGRESS
from examcore.database import ExamStore, parse_timestamp
from examcore.errors import TransientStoreError

BUILDER_METHODS = ("select", "insert", "update", "upsert", "eq", "or_", "order", "limit")


def make_client(data=None, count=None, error=None):
    builder = MagicMock()
    for name in BUILDER_METHODS:
        getattr(builder, name).return_value = builder
    if error is not None:
        builder.execute.side_effect = error
    else:
        builder.execute.return_value = SimpleNamespace(data=data, count=count)
    client = MagicMock()
    client.table.return_value = builder
    return client, builder


def test_get_result_returns_none_when_missing():
    client, _ = make_client(data=[])
    assert ExamStore(client).get_result("abc") is None
    client.table.assert_called_with("exam_results")


def test_find_token_filters_on_full_key():
    client, builder = make_client(data=[{"subject": "RENEWAL", "exam_no": 1, "access_code": "123456", "duration_minutes": 60}])
    token = ExamStore(client).find_token("RENEWAL", 1, "123456")

    assert token["duration_minutes"] == 60
    builder.eq.assert_any_call("subject", "RENEWAL")
    builder.eq.assert_any_call("exam_no", 1)
    builder.eq.assert_any_call("access_code", "123456")


def test_upsert_answer_targets_unique_pair():
    client, builder = make_client(data=[{}])
    ExamStore(client).upsert_answer("r1", "q1", "o1")

    client.table.assert_called_with("exam_answers")
    row = builder.upsert.call_args.args[0]
    assert (row["result_id"], row["question_id"], row["selected_option_id"]) == ("r1", "q1", "o1")
    assert "updated_at" in row
    assert builder.upsert.call_args.kwargs["on_conflict"] == "result_id,question_id"


def test_complete_result_only_touches_in_progress_rows():
    client, builder = make_client(data=[{"id": "r1"}])
    done = ExamStore(client).complete_result("r1", datetime(2026, 3, 1, tzinfo=timezone.utc))

    assert done is True
    builder.eq.assert_any_call("status", STATUS_IN_PROGRESS)


def test_complete_result_reports_no_transition():
    client, _ = make_client(data=[])
    assert ExamStore(client).complete_result("r1", datetime(2026, 3, 1, tzinfo=timezone.utc)) is False


def test_save_score_only_fills_unset_scores():
    client, builder = make_client(data=[{"id": "r1"}])
    assert ExamStore(client).save_score("r1", 75, 3) is True
    builder.or_.assert_called_with("score.is.null,score.eq.0")
    assert builder.update.call_args.args[0] == {"score": 75, "total_correct": 3, "status": "COMPLETED"}


def test_count_questions_uses_exact_count():
    client, builder = make_client(data=[{"id": "a"}], count=40)
    assert ExamStore(client).count_questions("RENEWAL", 1) == 40
    assert builder.select.call_args.kwargs["count"] == "exact"


def test_count_questions_falls_back_to_rows():
    client, _ = make_client(data=[{"id": "a"}, {"id": "b"}], count=None)
    assert ExamStore(client).count_questions("RENEWAL", 1) == 2


def test_get_questions_orders_options():
    rows = [{"id": "q1", "position": 0, "question_text": "?", "options": [
        {"id": "b", "position": 1, "option_text": "B"},
        {"id": "a", "position": 0, "option_text": "A"},
    ]}]
    client, _ = make_client(data=rows)
    questions = ExamStore(client).get_questions("RENEWAL", 1)
    assert [o["option_text"] for o in questions[0]["options"]] == ["A", "B"]


def test_client_errors_become_transient_store_errors():
    client, _ = make_client(error=ConnectionError("network down"))
    store = ExamStore(client)
    with pytest.raises(TransientStoreError):
        store.get_answers("r1")
    with pytest.raises(TransientStoreError):
        store.upsert_answer("r1", "q1", "o1")


def test_create_candidate_keeps_known_fields_only():
    client, builder = make_client(data=[{"id": "c1", "name": "Sari"}])
    created = ExamStore(client).create_candidate({"name": "Sari", "personnel_no": "P-7", "is_admin": True})

    assert created["id"] == "c1"
    row = builder.insert.call_args.args[0]
    assert row["name"] == "Sari"
    assert "is_admin" not in row


def test_parse_timestamp_handles_zulu_and_naive():
    assert parse_timestamp("2026-03-01T08:00:00Z") == datetime(2026, 3, 1, 8, tzinfo=timezone.utc)
    assert parse_timestamp("2026-03-01T08:00:00").tzinfo == timezone.utc
    assert parse_timestamp(None) is None


def test_get_answers_joins_owning_question_of_option():
    client, builder = make_client(data=[])
    ExamStore(client).get_answers("r1")

    columns = builder.select.call_args.args[0]
    assert "options(is_correct, question_id)" in columns
    builder.eq.assert_called_with("result_id", "r1")
