"""AMEL Exam Console: registration, exam selection, timed exam, result."""
import sys
from datetime import date
from pathlib import Path

# Ensure project root is in path
project_root = Path(__file__).resolve().parent
if str(project_root) not in sys.path:
    sys.path.insert(0, str(project_root))

import streamlit as st
import streamlit.components.v1 as components

from db import get_store
from engine import EXAM_NUMBERS, PASS_MARK, SUBJECTS, TICK_SECONDS
from examcore.access import start_session
from examcore.errors import (
    InvalidAccessCode,
    InvalidAnswer,
    MissingCandidate,
    NotFound,
    SessionInProgress,
    TransientStoreError,
)
from examcore.grading import result_summary
from examcore.session import SessionController, SessionState

PAGES = ("Registration", "Select Exam", "Exam", "Result")

# Signature lines appear on paper only.
PRINT_STYLE = """
<style>
.print-only { display: none; }
@media print { .print-only { display: flex; justify-content: space-between; margin-top: 5rem; } }
.signature { text-align: center; width: 12rem; }
.signature div { height: 5rem; border-bottom: 1px solid black; margin-bottom: .5rem; }
</style>
"""
SIGNATURE_BLOCK = """
<div class="print-only">
  <div class="signature"><div></div><b>Candidate Signature</b></div>
  <div class="signature"><div></div><b>Proctor Signature</b></div>
</div>
"""

st.set_page_config(page_title="AMEL Exam Console", layout="wide")
st.sidebar.title("AMEL Exam Console")


def go(page: str, **params):
    st.query_params.clear()
    st.query_params["page"] = page
    for k, v in params.items():
        st.query_params[k] = str(v)
    st.rerun()


def format_time(seconds: int) -> str:
    m, s = divmod(max(0, int(seconds)), 60)
    return f"{m}:{s:02d}"


def disable_context_menu():
    components.html(
        "<script>window.parent.document.addEventListener('contextmenu', e => e.preventDefault());</script>",
        height=0,
    )


page = st.query_params.get("page", "Registration")
if page not in PAGES:
    page = "Registration"

# ----- Registration -----
if page == "Registration":
    st.header("Candidate Registration")
    st.caption("Please fill in your details correctly.")
    with st.form("registration"):
        name = st.text_input("Full Name")
        col1, col2 = st.columns(2)
        with col1:
            personnel_no = st.text_input("Personnel No.")
            rating_sought = st.text_input("Rating Sought")
            dgac_amel_no = st.text_input("DGAC AMEL No.")
            ga_auth_no = st.text_input("GA Authorization No.")
        with col2:
            unit = st.text_input("Unit")
            exam_date = st.date_input("Exam Date", value=date.today())
            dgac_rating = st.text_input("DGAC Rating")
            ga_rating = st.text_input("GA Rating")
        submitted = st.form_submit_button("Next", type="primary", use_container_width=True)

    if submitted:
        if not name.strip() or not personnel_no.strip() or not unit.strip():
            st.error("Name, Personnel No. and Unit are required.")
            st.stop()
        try:
            candidate = get_store().create_candidate({
                "name": name.strip(),
                "personnel_no": personnel_no.strip(),
                "unit": unit.strip(),
                "rating_sought": rating_sought.strip(),
                "exam_date": exam_date.isoformat(),
                "dgac_amel_no": dgac_amel_no.strip(),
                "dgac_rating": dgac_rating.strip(),
                "ga_auth_no": ga_auth_no.strip(),
                "ga_rating": ga_rating.strip(),
            })
        except TransientStoreError as e:
            st.error(f"Error saving data: {e}")
            st.stop()
        go("Select Exam", candidate_id=candidate["id"])

# ----- Select Exam -----
elif page == "Select Exam":
    st.header("Select Exam")
    st.caption("Enter the access code provided by the proctor.")
    candidate_id = st.query_params.get("candidate_id")
    if not candidate_id:
        st.error("Candidate ID not found. Please register again.")
        if st.button("Back to registration"):
            go("Registration")
        st.stop()

    with st.form("select_exam"):
        subject = st.selectbox("Subject", SUBJECTS)
        exam_no = st.selectbox("Exam No.", EXAM_NUMBERS)
        access_code = st.text_input("Access Code", placeholder="Enter Code (e.g. 123456)")
        start = st.form_submit_button("START EXAM", type="primary", use_container_width=True)

    if start:
        try:
            result_id = start_session(get_store(), candidate_id, subject, exam_no, access_code)
        except InvalidAccessCode as e:
            st.error(str(e))
            st.stop()
        except (MissingCandidate, NotFound) as e:
            st.error(f"{e} Please register again.")
            if st.button("Back to registration"):
                go("Registration")
            st.stop()
        except TransientStoreError as e:
            st.error(f"Failed to start exam: {e}")
            st.stop()
        go("Exam", result_id=result_id)

# ----- Exam -----
elif page == "Exam":
    result_id = st.query_params.get("result_id")
    if not result_id:
        go("Registration")

    key = f"controller_{result_id}"
    ctrl: SessionController = st.session_state.get(key)
    if ctrl is None:
        ctrl = SessionController(get_store(), result_id)
        try:
            with st.spinner("Loading Exam Data..."):
                ctrl.load()
        except NotFound:
            ctrl.close()
            st.error("Exam not found!")
            if st.button("Back to Home"):
                go("Registration")
            st.stop()
        except TransientStoreError as e:
            ctrl.close()
            st.error(f"Could not load the exam. Reload the page to try again. ({e})")
            st.stop()
        st.session_state[key] = ctrl

    if ctrl.state == SessionState.COMPLETED:
        ctrl.close()
        st.session_state.pop(key, None)
        go("Result", result_id=result_id)

    disable_context_menu()
    questions = ctrl.questions
    answers = ctrl.answers
    n = len(questions)

    @st.fragment(run_every=TICK_SECONDS)
    def countdown():
        try:
            left = ctrl.tick()
        except TransientStoreError as e:
            st.error(f"Time is up but the exam could not be submitted yet, retrying... ({e})")
            return
        if ctrl.state == SessionState.COMPLETED:
            st.rerun(scope="app")
        st.metric("Time left", format_time(left))
        if left < 300:
            st.warning("Less than 5 minutes left")

    @st.dialog("Finish exam")
    def confirm_finish():
        st.write("Are you sure you want to finish the exam?")
        col_yes, col_no = st.columns(2)
        with col_yes:
            if st.button("Yes, finish", type="primary"):
                try:
                    ctrl.request_finish(confirmed=True)
                except TransientStoreError as e:
                    st.error(f"Could not submit the exam: {e}")
                    return
                st.rerun()
        with col_no:
            if st.button("Cancel"):
                ctrl.request_finish(confirmed=False)
                st.rerun()

    with st.sidebar:
        countdown()

    idx = ctrl.go_to(ctrl.current_index)

    # Question map
    st.sidebar.caption(f"{len(answers)}/{n} answered")
    st.sidebar.progress(len(answers) / n if n else 0)
    grid = st.sidebar.columns(4)
    for i, q in enumerate(questions):
        label = f"{i + 1}" + (" ✓" if str(q["id"]) in answers else "")
        if grid[i % 4].button(label, key=f"nav_{i}", type="primary" if i == idx else "secondary"):
            ctrl.go_to(i)
            st.rerun()

    st.header("Exam Session")
    if not questions:
        st.info("No questions found for this exam package.")
        if st.button("FINISH EXAM"):
            confirm_finish()
        st.stop()

    q = questions[idx]
    qid = str(q["id"])
    st.subheader(f"Question {idx + 1} of {n}")
    st.write(q.get("question_text", ""))

    for opt in q.get("options") or []:
        oid = str(opt["id"])
        selected = answers.get(qid) == oid
        if st.button(opt.get("option_text", ""), key=f"opt_{qid}_{oid}", type="primary" if selected else "secondary", use_container_width=True):
            try:
                ctrl.record_answer(qid, oid)
            except InvalidAnswer as e:
                st.error(str(e))
                st.stop()
            except TransientStoreError as e:
                st.error(f"Time is up but the exam could not be submitted yet, retrying... ({e})")
                st.stop()
            st.rerun()

    col1, col2 = st.columns(2)
    with col1:
        if st.button("Previous", disabled=idx == 0):
            ctrl.go_to(idx - 1)
            st.rerun()
    with col2:
        if idx == n - 1:
            if st.button("FINISH EXAM", type="primary"):
                confirm_finish()
        elif st.button("Next Question"):
            ctrl.go_to(idx + 1)
            st.rerun()

# ----- Result -----
elif page == "Result":
    result_id = st.query_params.get("result_id")
    if not result_id:
        go("Registration")
    try:
        with st.spinner("CALCULATING SCORE..."):
            summary = result_summary(get_store(), result_id)
    except NotFound:
        st.error("Result not found.")
        if st.button("Back to Home"):
            go("Registration")
        st.stop()
    except SessionInProgress:
        # Not submitted yet; the exam page finishes it or resumes the countdown.
        go("Exam", result_id=result_id)
    except TransientStoreError as e:
        st.error(f"Could not load answers. Reload to try again. ({e})")
        st.stop()

    st.markdown(PRINT_STYLE, unsafe_allow_html=True)
    head, meta = st.columns([3, 1])
    with head:
        st.header("Examination Result")
        st.caption("Official Report")
    with meta:
        st.write(f"Date: {date.today().isoformat()}")
        st.write(f"ID: {summary['report_id']}")
    candidate = summary["candidate"]
    col1, col2 = st.columns(2)
    with col1:
        st.write(f"**Name:** {candidate.get('name', '')}")
        st.write(f"**Personnel No.:** {candidate.get('personnel_no', '')}")
        st.write(f"**Unit:** {candidate.get('unit', '')}")
        st.write(f"**Rating Sought:** {candidate.get('rating_sought', '')}")
    with col2:
        st.write(f"**Subject:** {summary['subject']}  ·  **Exam No.:** {summary['exam_no']}")
        st.write(f"**Exam Date:** {candidate.get('exam_date', '')}")
        st.write(f"**DGAC AMEL No.:** {candidate.get('dgac_amel_no', '')} ({candidate.get('dgac_rating', '')})")
        st.write(f"**GA Auth No.:** {candidate.get('ga_auth_no', '')} ({candidate.get('ga_rating', '')})")

    st.divider()
    st.metric("Score", f"{summary['score']}/100")
    if summary["passed"]:
        st.success(f"PASSED (pass mark {PASS_MARK})")
    else:
        st.error(f"FAILED (pass mark {PASS_MARK})")
    st.caption(f"Correct Answers: {summary['correct_count']} out of {summary['total_questions']} questions")
    st.markdown(SIGNATURE_BLOCK, unsafe_allow_html=True)

    col1, col2 = st.columns(2)
    with col1:
        if st.button("PRINT RESULT", type="primary"):
            components.html("<script>window.parent.print();</script>", height=0)
    with col2:
        if st.button("Back to Home"):
            go("Registration")
