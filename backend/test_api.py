import asyncio

import pytest
from fastapi.testclient import TestClient
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine
from sqlalchemy.pool import NullPool

import main
from analysis import build_interview_record, parse_analysis_response, transcript_entries
from conftest import FakeLLM, scoring_reply
from database import get_db, init_db
from llm_client import ProviderTimeoutError, ProviderUnavailableError, get_llm_client
from main import app
from models import Interview, Job
from repository import save_interview_result

RECRUITER = "REC_mabc12_0f1e2d3c4b5a6978"


def make_session_factory(path, create_tables=True):
    engine = create_async_engine(f"sqlite+aiosqlite:///{path}", poolclass=NullPool)
    if create_tables:
        asyncio.run(init_db(engine))
    return engine, async_sessionmaker(engine, class_=AsyncSession, expire_on_commit=False)


@pytest.fixture
def session_factory(tmp_path):
    engine, factory = make_session_factory(tmp_path / "interviews.db")
    yield factory
    asyncio.run(engine.dispose())


@pytest.fixture
def llm():
    return FakeLLM()


@pytest.fixture
def client(session_factory, llm):
    async def override_get_db():
        async with session_factory() as session:
            yield session

    app.dependency_overrides[get_db] = override_get_db
    app.dependency_overrides[get_llm_client] = lambda: llm
    yield TestClient(app)
    app.dependency_overrides.clear()


def run_db(session_factory, fn):
    async def _run():
        async with session_factory() as session:
            return await fn(session)
    return asyncio.run(_run())


def add_job(session_factory, **fields) -> str:
    async def _add(session):
        job = Job(
            recruiter_id=fields.get("recruiter_id", RECRUITER),
            role_title=fields.get("role_title", "Backend Engineer"),
            job_description=fields.get("job_description", "Design and operate payment APIs."),
            difficulty=fields.get("difficulty", "Medium"),
        )
        session.add(job)
        await session.commit()
        return job.id
    return run_db(session_factory, _add)


def get_job_row(session_factory, job_id) -> Job:
    return run_db(session_factory, lambda session: session.get(Job, job_id))


def count_interviews(session_factory) -> int:
    async def _count(session):
        result = await session.execute(select(Interview))
        return len(result.scalars().all())
    return run_db(session_factory, _count)


def analyze_payload(history, job_id, **extra):
    payload = {
        "history": history,
        "jobContext": {"roleTitle": "Backend Engineer", "difficulty": "Medium"},
        "candidateName": "Sam Rivera",
        "recruiterId": RECRUITER,
        "jobId": job_id,
    }
    payload.update(extra)
    return payload


# ── /api/analyze ─────────────────────────────────────────

def test_analyze_scores_saves_and_counts(client, llm, session_factory, history):
    job_id = add_job(session_factory)
    llm.outcomes.append(scoring_reply(82, 75, 90))

    response = client.post("/api/analyze", json=analyze_payload(history, job_id))

    assert response.status_code == 200
    body = response.json()
    assert body["success"] is True
    assert body["analysis"]["technical_score"] == 82
    assert body["analysis"]["confidence"] == "genuine"
    assert "dbWarning" not in body

    detail = client.get(f"/api/interview-results/{body['interviewId']}", params={"recruiterId": RECRUITER})
    assert detail.status_code == 200
    data = detail.json()["data"]
    assert data["overallScore"] == 82
    assert data["result"] == "Pass"
    assert data["jobRole"] == "Backend Engineer"
    assert data["difficulty"] == "Medium"
    assert data["candidateName"] == "Sam Rivera"
    assert [entry["role"] for entry in data["fullTranscript"]] == ["interviewer", "candidate", "interviewer"]
    assert len(data["feedback"]) == 3

    assert get_job_row(session_factory, job_id).interview_count == 1


def test_analyze_rejects_greeting_only_without_provider_call(client, llm, session_factory):
    job_id = add_job(session_factory)
    llm.outcomes.append(scoring_reply())

    response = client.post(
        "/api/analyze",
        json=analyze_payload([{"role": "assistant", "content": "Hello, let's begin."}], job_id),
    )

    assert response.status_code == 400
    assert llm.calls == []
    assert count_interviews(session_factory) == 0


@pytest.mark.parametrize("history", [None, [], "not a list"])
def test_analyze_requires_history(client, llm, history):
    response = client.post("/api/analyze", json=analyze_payload(history, "job-1"))
    assert response.status_code == 400
    assert llm.calls == []


@pytest.mark.parametrize("missing", ["recruiterId", "jobId"])
def test_analyze_requires_ids(client, llm, history, missing):
    payload = analyze_payload(history, "job-1")
    del payload[missing]
    response = client.post("/api/analyze", json=payload)
    assert response.status_code == 400
    assert llm.calls == []


def test_analyze_malformed_reply_still_scores(client, llm, session_factory, history):
    job_id = add_job(session_factory)
    llm.outcomes.append("```json\n{\"technical_score\": 88, \"confidence_score\": 92}\n```")

    body = client.post("/api/analyze", json=analyze_payload(history, job_id)).json()

    assert body["success"] is True
    assert body["analysis"]["communication_score"] == 70
    assert body["analysis"]["confidence"] == "fallback"
    assert set(body["analysis"]["fallback_fields"]) == {"communication_score", "feedback"}

    data = client.get(f"/api/interview-results/{body['interviewId']}").json()["data"]
    assert data["overallScore"] == 83
    assert data["scoringConfidence"] == "fallback"


def test_analyze_provider_unavailable_is_fatal(client, llm, session_factory, history):
    job_id = add_job(session_factory)
    llm.outcomes.append(ProviderUnavailableError("gemini-test request failed"))

    response = client.post("/api/analyze", json=analyze_payload(history, job_id))

    assert response.status_code == 502
    assert count_interviews(session_factory) == 0
    assert get_job_row(session_factory, job_id).interview_count == 0


def test_analyze_provider_timeout_degrades_to_fallback(client, llm, session_factory, history):
    job_id = add_job(session_factory)
    llm.outcomes.append(ProviderTimeoutError("gemini-test did not answer within 30s"))

    body = client.post("/api/analyze", json=analyze_payload(history, job_id)).json()

    assert body["success"] is True
    assert body["analysis"]["fallback_fields"] == ["provider_timeout"]
    data = client.get(f"/api/interview-results/{body['interviewId']}").json()["data"]
    assert data["result"] == "Fail"


def test_analyze_uses_stored_job_when_context_missing(client, llm, session_factory, history):
    job_id = add_job(session_factory, role_title="Data Engineer", difficulty="Hard")
    llm.outcomes.append(scoring_reply())

    payload = analyze_payload(history, job_id)
    del payload["jobContext"]
    body = client.post("/api/analyze", json=payload).json()

    assert "Data Engineer" in llm.calls[0]["system_instruction"]
    data = client.get(f"/api/interview-results/{body['interviewId']}").json()["data"]
    assert data["jobRole"] == "Data Engineer"
    assert data["difficulty"] == "Hard"


def test_analyze_rejects_short_transcript_before_job_lookup(client, llm, session_factory, monkeypatch):
    job_id = add_job(session_factory)
    lookups = []

    async def tracking_load_job_context(db, job_id):
        lookups.append(job_id)
        return None

    monkeypatch.setattr(main, "load_job_context", tracking_load_job_context)
    payload = analyze_payload([{"role": "assistant", "content": "Hello, let's begin."}], job_id)
    del payload["jobContext"]

    assert client.post("/api/analyze", json=payload).status_code == 400
    assert lookups == []
    assert llm.calls == []


def test_saving_the_same_record_twice_is_a_no_op(session_factory, history):
    job_id = add_job(session_factory)
    record = build_interview_record(
        parse_analysis_response(scoring_reply(82, 75, 90)),
        job_id=job_id,
        recruiter_id=RECRUITER,
        transcript=transcript_entries(history),
    )

    first = run_db(session_factory, lambda session: save_interview_result(session, record))
    second = run_db(session_factory, lambda session: save_interview_result(session, record))

    assert first.id == second.id == record.id
    assert count_interviews(session_factory) == 1
    assert get_job_row(session_factory, job_id).interview_count == 1


def test_analyze_returns_result_when_save_fails(llm, tmp_path, history):
    engine, broken_factory = make_session_factory(tmp_path / "empty.db", create_tables=False)

    async def override_get_db():
        async with broken_factory() as session:
            yield session

    app.dependency_overrides[get_db] = override_get_db
    app.dependency_overrides[get_llm_client] = lambda: llm
    try:
        llm.outcomes.append(scoring_reply(82, 75, 90))
        response = TestClient(app).post("/api/analyze", json=analyze_payload(history, "job-1"))
    finally:
        app.dependency_overrides.clear()
        asyncio.run(engine.dispose())

    assert response.status_code == 200
    body = response.json()
    assert body["success"] is True
    assert body["analysis"]["technical_score"] == 82
    assert body["dbWarning"] == "Analysis completed but database save failed"
    assert "interviewId" not in body


# ── /api/chat ────────────────────────────────────────────

def test_chat_returns_interviewer_reply(client, llm, history):
    llm.outcomes.append("How would you handle bursts above the limit?")

    response = client.post("/api/chat", json={
        "message": "I'd use a token bucket per API key.",
        "history": history,
        "jobContext": {"roleTitle": "Backend Engineer", "jobDescription": "Payments", "difficulty": "Hard"},
        "context": {"fullName": "Sam Rivera", "technicalSkills": ["Python", "Redis"]},
    })

    assert response.status_code == 200
    assert response.json() == {"success": True, "response": "How would you handle bursts above the limit?"}
    call = llm.calls[0]
    assert call["model"] == "fake-chat"
    assert call["system_instruction"].startswith("The candidate is Sam Rivera. Skills: Python, Redis.")
    assert "You are interviewing for the role: Backend Engineer." in call["system_instruction"]
    assert [content.role for content in call["contents"]] == ["model", "user", "model", "user"]


def test_chat_requires_message(client, llm):
    assert client.post("/api/chat", json={"message": "  "}).status_code == 400
    assert llm.calls == []


def test_chat_empty_reply_is_an_error(client, llm):
    llm.outcomes.append("")
    assert client.post("/api/chat", json={"message": "Hello"}).status_code == 502


# ── Dashboard ────────────────────────────────────────────

def seed_interviews(client, llm, session_factory, history, scores):
    job_id = add_job(session_factory)
    ids = []
    for technical, communication, confidence in scores:
        llm.outcomes.append(scoring_reply(technical, communication, confidence))
        ids.append(client.post("/api/analyze", json=analyze_payload(history, job_id)).json()["interviewId"])
    return job_id, ids


def test_list_interview_results_filters_by_recruiter_and_job(client, llm, session_factory, history):
    job_id, ids = seed_interviews(client, llm, session_factory, history, [(95, 92, 90), (50, 55, 40)])
    other_job = add_job(session_factory, role_title="Frontend Engineer")

    response = client.get("/api/interview-results", params={"recruiterId": RECRUITER})
    assert response.status_code == 200
    assert {row["id"] for row in response.json()["data"]} == set(ids)

    by_job = client.get("/api/interview-results", params={"recruiterId": RECRUITER, "jobId": other_job})
    assert by_job.json()["data"] == []

    other = client.get("/api/interview-results", params={"recruiterId": "REC_other_00"})
    assert other.json()["data"] == []


def test_interview_results_require_recruiter(client):
    assert client.get("/api/interview-results").status_code == 400
    assert client.get("/api/interview-results/stats").status_code == 400


def test_interview_detail_checks_ownership(client, llm, session_factory, history):
    _, ids = seed_interviews(client, llm, session_factory, history, [(80, 80, 80)])

    assert client.get(f"/api/interview-results/{ids[0]}", params={"recruiterId": "REC_other_00"}).status_code == 404
    assert client.get("/api/interview-results/does-not-exist").status_code == 404


def test_recruiter_stats(client, llm, session_factory, history):
    seed_interviews(client, llm, session_factory, history, [(95, 92, 90), (80, 76, 78), (62, 60, 64), (30, 40, 50)])

    stats = client.get("/api/interview-results/stats", params={"recruiterId": RECRUITER}).json()["data"]

    assert stats["totalInterviews"] == 4
    assert stats["fallbackCount"] == 0
    assert stats["resultBreakdown"] == {"Excellent": 1, "Pass": 1, "Review": 1, "Fail": 1}
    assert stats["passRate"] == 50
    # overall scores 92, 78, 62, 40
    assert stats["averageScore"] == 68


def test_recruiter_stats_leave_out_fallback_scores(client, llm, session_factory, history):
    job_id, _ = seed_interviews(client, llm, session_factory, history, [(95, 92, 90)])
    llm.outcomes.append(ProviderTimeoutError("gemini-test did not answer within 30s"))
    client.post("/api/analyze", json=analyze_payload(history, job_id))

    stats = client.get("/api/interview-results/stats", params={"recruiterId": RECRUITER}).json()["data"]

    assert stats["totalInterviews"] == 2
    assert stats["fallbackCount"] == 1
    assert stats["resultBreakdown"] == {"Excellent": 1, "Pass": 0, "Review": 0, "Fail": 1}
    assert stats["averageScore"] == 92
    assert stats["passRate"] == 100


def test_recruiter_stats_empty(client):
    stats = client.get("/api/interview-results/stats", params={"recruiterId": RECRUITER}).json()["data"]
    assert stats == {
        "totalInterviews": 0,
        "averageScore": 0,
        "passRate": 0,
        "resultBreakdown": {"Excellent": 0, "Pass": 0, "Review": 0, "Fail": 0},
        "fallbackCount": 0,
    }


def test_health(client):
    assert client.get("/health").json() == {"status": "healthy"}
