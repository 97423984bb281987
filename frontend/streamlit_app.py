"""Streamlit UI for the clinical case tutor."""

from __future__ import annotations

import asyncio
import sys
from pathlib import Path
from typing import Any, Coroutine, TypeVar

import streamlit as st
from pydantic import ValidationError

ROOT_DIR = Path(__file__).resolve().parents[1]
if str(ROOT_DIR) not in sys.path:
    sys.path.insert(0, str(ROOT_DIR))

from clinical_tutor.main import Services, build_services, configure_logging
from clinical_tutor.models import CaseStage, ClinicalCase, Session, User, UserRole
from clinical_tutor.services.accounts import AccountError, authenticate, register
from clinical_tutor.services.performance import (
    FULL_CASE_SCORE,
    performance_by_case,
    summarize_cohort,
    summarize_student,
)
from clinical_tutor.services.tutor import TutorError
from clinical_tutor.services.oracle import OracleError
from clinical_tutor.services.selection import EmptyCaseBankError
from clinical_tutor.ui_utils import (
    describe_error,
    filter_cases,
    format_day,
    format_record,
    open_stage,
    oracle_status,
    progress_percent,
    revise_case,
    stage_label,
)

T = TypeVar("T")


def run(coro: Coroutine[Any, Any, T]) -> T:
    return asyncio.run(coro)


@st.cache_resource
def get_services() -> Services:
    configure_logging()
    return build_services()


def init_state() -> None:
    """Initialize Streamlit session state keys."""
    st.session_state.setdefault("user", None)
    st.session_state.setdefault("session", None)
    st.session_state.setdefault("case", None)
    st.session_state.setdefault("tutor_error", None)
    st.session_state.setdefault("draft_answer", "")
    st.session_state.setdefault("editing_case", None)


def render_sign_in(services: Services) -> None:
    sign_in, sign_up = st.tabs(["Sign in", "Register"])
    with sign_in:
        with st.form("sign_in"):
            email = st.text_input("Email")
            password = st.text_input("Password", type="password")
            if st.form_submit_button("Sign in"):
                try:
                    st.session_state["user"] = run(authenticate(services.storage, email, password))
                    st.rerun()
                except AccountError as exc:
                    st.error(str(exc))
    with sign_up:
        with st.form("register"):
            name = st.text_input("Full name")
            email = st.text_input("Email ")
            password = st.text_input("Password ", type="password")
            role = st.selectbox("Role", [UserRole.STUDENT, UserRole.ADMIN], format_func=lambda r: r.value)
            class_group = st.text_input("Class group (students)")
            code = st.text_input("Registration code")
            if st.form_submit_button("Create account"):
                try:
                    user = run(
                        register(services.storage, name, email, password, role, code, class_group)
                    )
                    st.session_state["user"] = user
                    st.rerun()
                except AccountError as exc:
                    st.error(str(exc))


def render_student_dashboard(services: Services, user: User) -> None:
    st.header(f"Hello, {user.name}!")
    sessions = run(services.storage.list_sessions_for_student(user.id)).value
    cases = run(services.storage.list_cases()).value
    summary = summarize_student(sessions, cases)

    cols = st.columns(3)
    cols[0].metric("Cases started", summary["sessions"])
    cols[1].metric("Finished", summary["finished"])
    cols[2].metric("Average score", summary["average"])

    if st.button("Start a random case", type="primary"):
        try:
            session = run(services.tutor.start_session(user.id))
            open_session(services, session.id.value)
        except (EmptyCaseBankError, TutorError) as exc:
            st.error(describe_error(exc))

    st.subheader("Your history")
    if not summary["rows"]:
        st.info("You have not started any clinical case yet.")
    for row in summary["rows"]:
        left, middle, right = st.columns([4, 1, 1])
        left.markdown(f"**{row['title']}**  \n{format_day(row['created_at'])}")
        middle.write(row["score"])
        if right.button("Open", key=f"open-{row['session_id']}"):
            open_session(services, row["session_id"])


def open_session(services: Services, session_id: str) -> None:
    try:
        session, case = run(services.tutor.load_session(session_id))
    except TutorError as exc:
        st.error(describe_error(exc))
        return
    st.session_state["session"] = session
    st.session_state["case"] = case
    st.session_state["tutor_error"] = None
    st.session_state["draft_answer"] = ""
    st.rerun()


def close_session() -> None:
    st.session_state["session"] = None
    st.session_state["case"] = None
    st.session_state["tutor_error"] = None


def render_tutor(services: Services) -> None:
    session: Session = st.session_state["session"]
    case: ClinicalCase = st.session_state["case"]

    st.header(case.title if session.is_finished else "Case discussion")
    st.caption(stage_label(session, case))
    st.progress(progress_percent(session, case) / 100)
    if st.button("Back to dashboard"):
        close_session()
        st.rerun()

    render_transcript(session)

    stage = open_stage(session, case)
    if stage is None:
        st.success(f"Discussion finished! Final score: {session.total_score}/{FULL_CASE_SCORE}")
        return

    st.subheader(stage.title)
    st.write(stage.content)
    st.info(stage.question)

    if st.session_state["tutor_error"]:
        st.error(st.session_state["tutor_error"])

    with st.form("answer"):
        answer = st.text_area(
            "Your answer",
            value=st.session_state["draft_answer"],
            placeholder="Describe your hypotheses and next steps...",
        )
        submitted = st.form_submit_button(
            "Try again" if st.session_state["tutor_error"] else "Submit"
        )
    if submitted:
        st.session_state["draft_answer"] = answer
        with st.spinner("The tutor is reading your answer..."):
            try:
                updated = run(services.tutor.submit_answer(session, answer, case=case))
            except (OracleError, TutorError) as exc:
                st.session_state["tutor_error"] = describe_error(exc)
            else:
                st.session_state["session"] = updated
                st.session_state["tutor_error"] = None
                st.session_state["draft_answer"] = ""
        st.rerun()


def render_transcript(session: Session) -> None:
    for record in session.records:
        with st.chat_message("user"):
            st.markdown(record.student_response)
        with st.chat_message("assistant"):
            st.markdown(format_record(record))


def render_oracle_status(services: Services) -> None:
    refresh = st.button("Check AI")
    status = run(oracle_status(st.session_state, services.oracle, refresh=refresh))
    if status is None:
        if services.oracle.available:
            st.info("AI key configured. Press Check AI to test the connection.")
        else:
            st.warning("AI key not configured. Set OPENAI_API_KEY in the environment or .env file.")
    elif status.available:
        st.success(status.message)
    else:
        st.warning(f"{status.message} {status.detail or ''}")


def render_admin_dashboard(services: Services) -> None:
    st.header("Teacher dashboard")
    render_oracle_status(services)

    users = run(services.storage.list_users()).value
    sessions = run(services.storage.list_sessions()).value
    cases = run(services.storage.list_cases()).value
    titles = {case.id: case.title for case in cases}

    stats, students, case_bank = st.tabs(["Statistics", "Students", "Cases"])
    with stats:
        cohort = summarize_cohort(users, sessions)
        cols = st.columns(3)
        cols[0].metric("Sessions", cohort["sessions"])
        cols[1].metric("Average score", cohort["average"])
        cols[2].metric("Cases", len(cases))
        st.dataframe(performance_by_case(cases, sessions), use_container_width=True)

    with students:
        search = st.text_input("Search by name, email or class group")
        cohort = summarize_cohort(users, sessions, search=search)
        for group, members in cohort["groups"].items():
            st.subheader(group)
            for member in members:
                left, middle, right = st.columns([4, 1, 1])
                left.write(f"{member['name']} ({member['email']})")
                middle.write("-" if member["grade"] is None else f"{member['grade']}/10")
                if right.button("Delete", key=f"delete-user-{member['id']}"):
                    result = run(services.storage.delete_user(member["id"]))
                    if result.ok:
                        st.rerun()
                    st.error(f"Could not delete {member['name']}: {result.error}")
                member_sessions = [s for s in sessions if s.student_id == member["id"]]
                if member_sessions:
                    with st.expander(f"Sessions of {member['name']}"):
                        for session in member_sessions:
                            st.markdown(
                                f"**{titles.get(session.case_id, 'Clinical case')}** - "
                                f"{format_day(session.created_at)} - "
                                f"{session.total_score}/{FULL_CASE_SCORE} ({session.status})"
                            )
                            render_transcript(session)

    with case_bank:
        render_case_bank(services, cases)


def render_case_bank(services: Services, cases: list[ClinicalCase]) -> None:
    search = st.text_input("Search cases by title or theme")
    for case in filter_cases(cases, search):
        left, middle, right = st.columns([5, 1, 1])
        left.write(f"**{case.title}** - {case.theme} ({case.difficulty})")
        if middle.button("Edit", key=f"edit-case-{case.id}"):
            st.session_state["editing_case"] = case
            st.rerun()
        if right.button("Delete", key=f"delete-case-{case.id}"):
            result = run(services.storage.delete_case(case.id))
            if result.ok:
                st.rerun()
            st.error(f"Could not delete {case.title}: {result.error}")

    editing: ClinicalCase | None = st.session_state["editing_case"]
    render_case_form(services, editing)
    if editing is not None and st.button("Cancel editing"):
        st.session_state["editing_case"] = None
        st.rerun()


def render_case_form(services: Services, case: ClinicalCase | None) -> None:
    """Form for a new case, or prefilled to edit ``case`` in place."""
    difficulties = ["easy", "medium", "hard"]
    form_key = f"edit_case_{case.id}" if case else "new_case"
    with st.form(form_key, clear_on_submit=case is None):
        st.subheader(f"Edit: {case.title}" if case else "New case")
        title = st.text_input("Title", value=case.title if case else "")
        theme = st.text_input("Theme", value=case.theme if case else "")
        difficulty = st.selectbox(
            "Difficulty",
            difficulties,
            index=difficulties.index(case.difficulty) if case else 1,
        )
        stages = []
        for i in range(5):
            content = st.text_area(
                f"Stage {i + 1} content", value=case.stages[i].content if case else ""
            )
            question = st.text_input(
                f"Stage {i + 1} question", value=case.stages[i].question if case else ""
            )
            stages.append((content, question))
        submitted = st.form_submit_button("Save case")
    if not submitted:
        return

    try:
        if case is None:
            to_save = ClinicalCase(
                title=title,
                theme=theme,
                difficulty=difficulty,
                stages=[
                    CaseStage(id=i, title=f"Stage {i + 1}", content=content, question=question)
                    for i, (content, question) in enumerate(stages)
                ],
            )
        else:
            to_save = revise_case(case, title, theme, difficulty, stages)
    except ValidationError as exc:
        st.error(f"The case is not valid: {exc}")
        return
    result = run(services.storage.save_case(to_save))
    if not result.ok:
        st.error(f"Could not save the case: {result.error}")
        return
    if result.fell_back:
        st.warning("Saved on this machine only; the remote store is unreachable.")
    st.session_state["editing_case"] = None
    st.rerun()


st.set_page_config(page_title="Clinical Case Tutor", layout="wide")
init_state()
services = get_services()

st.title("Clinical Case Tutor")
st.caption("Educational use only. Does not replace clinical supervision.")

user: User | None = st.session_state["user"]
with st.sidebar:
    st.caption(f"Storage: {services.storage.backend_name}")
    if user:
        st.write(f"{user.name} ({user.role.value})")
        if st.button("Sign out"):
            st.session_state["user"] = None
            st.session_state["editing_case"] = None
            close_session()
            st.rerun()

if user is None:
    render_sign_in(services)
elif user.role is UserRole.ADMIN:
    render_admin_dashboard(services)
elif st.session_state["session"] is not None:
    render_tutor(services)
else:
    render_student_dashboard(services, user)
