from fastapi import FastAPI, Depends, HTTPException, Query
from fastapi.middleware.cors import CORSMiddleware
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession
from pydantic import BaseModel, ConfigDict, Field, ValidationError
from typing import Any, Optional
import logging
import os
from dotenv import load_dotenv

load_dotenv()

from database import init_db, get_db
from models import Interview
from logging_setup import setup_logging
from llm_client import GeminiClient, ProviderUnavailableError, get_llm_client
from analysis import (
    InvalidTranscriptError,
    JobContext,
    analyze_interview,
    build_interview_record,
    normalize_transcript,
    transcript_entries,
)
from interviewer import ResumeContext, get_interviewer_reply
from repository import (
    InterviewNotFoundError,
    get_interview_details,
    get_job,
    get_recruiter_interviews,
    get_recruiter_stats,
    save_interview_result,
)

logger = logging.getLogger(__name__)

app = FastAPI(title="Mock Interview API")

app.add_middleware(
    CORSMiddleware,
    allow_origins=[os.getenv("FRONTEND_URL", "http://localhost:5173")],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


@app.on_event("startup")
async def startup():
    setup_logging()
    await init_db()


@app.get("/health")
async def health():
    return {"status": "healthy"}


# ── Helpers ──────────────────────────────────────────────

async def load_job_context(db: AsyncSession, job_id: str) -> Optional[JobContext]:
    """Job posting as scoring context, or None when it cannot be read."""
    try:
        job = await get_job(db, job_id)
        if job is None:
            return None
        return JobContext(
            role_title=job.role_title,
            job_description=job.job_description,
            difficulty=job.difficulty,
        )
    except (SQLAlchemyError, ValidationError) as e:
        logger.warning("[ANALYZE] Could not load job %s for context: %s", job_id, e)
        return None


def interview_summary(interview: Interview) -> dict:
    return {
        "id": interview.id,
        "candidateName": interview.candidate_name,
        "candidateEmail": interview.candidate_email,
        "jobRole": interview.job_role or "Practice Interview",
        "overallScore": interview.overall_score,
        "result": interview.result,
        "completedAt": interview.completed_at.isoformat() if interview.completed_at else None,
        "technicalScore": interview.technical_score,
        "communicationScore": interview.communication_score,
        "confidenceScore": interview.confidence_score,
        "scoringConfidence": interview.scoring_confidence,
    }


def interview_detail(interview: Interview) -> dict:
    return {
        **interview_summary(interview),
        "jobId": interview.job_id,
        "difficulty": interview.difficulty,
        "duration": interview.duration,
        "feedback": interview.feedback,
        "fullTranscript": interview.full_transcript,
    }


# ── Interview Analysis ───────────────────────────────────

class AnalyzeRequest(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    history: Any = None
    job_context: Optional[JobContext] = Field(default=None, alias="jobContext")
    candidate_name: Optional[str] = Field(default=None, alias="candidateName")
    candidate_email: Optional[str] = Field(default=None, alias="candidateEmail")
    job_role: Optional[str] = Field(default=None, alias="jobRole")
    difficulty: Optional[str] = None
    duration: Optional[str] = None
    recruiter_id: Optional[str] = Field(default=None, alias="recruiterId")
    job_id: Optional[str] = Field(default=None, alias="jobId")


@app.post("/api/analyze")
async def analyze(
    body: AnalyzeRequest,
    db: AsyncSession = Depends(get_db),
    llm: GeminiClient = Depends(get_llm_client),
):
    history_length = len(body.history) if isinstance(body.history, list) else 0
    logger.info(
        "[ANALYZE] Request: candidate=%s recruiter=%s job=%s messages=%d",
        body.candidate_name, body.recruiter_id, body.job_id, history_length,
    )

    if not history_length:
        raise HTTPException(400, "No conversation history provided")
    if not body.recruiter_id or not body.job_id:
        raise HTTPException(400, "recruiterId and jobId are required")

    try:
        transcript = transcript_entries(body.history)
        normalize_transcript(body.history)
    except InvalidTranscriptError as e:
        raise HTTPException(400, str(e))

    job_context = body.job_context or await load_job_context(db, body.job_id)

    # Phase 1: compute. Nothing is returned unless this succeeds.
    try:
        analysis = await analyze_interview(body.history, job_context, llm)
    except ProviderUnavailableError as e:
        logger.error("[ANALYZE] Provider unavailable: %s", e)
        raise HTTPException(502, f"Analysis failed: {e}")

    record = build_interview_record(
        analysis,
        job_id=body.job_id,
        recruiter_id=body.recruiter_id,
        transcript=transcript,
        candidate_name=body.candidate_name,
        candidate_email=body.candidate_email,
        job_role=body.job_role or (job_context.role_title if job_context else None),
        difficulty=body.difficulty or (job_context.difficulty if job_context else None),
        duration=body.duration,
    )
    response = {"success": True, "analysis": analysis.model_dump()}

    # Phase 2: persist, best effort.
    try:
        interview = await save_interview_result(db, record)
    except SQLAlchemyError as e:
        logger.warning("[DB] Save failed for interview %s: %s", record.id, e)
        response["dbWarning"] = "Analysis completed but database save failed"
        return response

    response["interviewId"] = interview.id
    response["message"] = "Interview completed and saved successfully"
    return response


# ── Interviewer Chat ─────────────────────────────────────

class ChatRequest(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    message: Optional[str] = None
    history: list[dict] = []
    context: Optional[ResumeContext] = None
    job_context: Optional[JobContext] = Field(default=None, alias="jobContext")


@app.post("/api/chat")
async def chat(body: ChatRequest, llm: GeminiClient = Depends(get_llm_client)):
    if not body.message or not body.message.strip():
        raise HTTPException(400, "No message provided")

    try:
        reply = await get_interviewer_reply(
            body.message, body.history, llm, job_context=body.job_context, resume=body.context
        )
    except InvalidTranscriptError as e:
        raise HTTPException(400, str(e))
    except ProviderUnavailableError as e:
        logger.error("[CHAT] Provider unavailable: %s", e)
        raise HTTPException(502, f"Chat completion failed: {e}")

    return {"success": True, "response": reply}


# ── Dashboard Endpoints ─────────────────────────────────

@app.get("/api/interview-results")
async def list_interview_results(
    recruiter_id: Optional[str] = Query(default=None, alias="recruiterId"),
    job_id: Optional[str] = Query(default=None, alias="jobId"),
    db: AsyncSession = Depends(get_db),
):
    if not recruiter_id:
        raise HTTPException(400, "Recruiter ID is required")
    interviews = await get_recruiter_interviews(db, recruiter_id, job_id)
    return {"success": True, "data": [interview_summary(i) for i in interviews]}


@app.get("/api/interview-results/stats")
async def interview_stats(
    recruiter_id: Optional[str] = Query(default=None, alias="recruiterId"),
    db: AsyncSession = Depends(get_db),
):
    if not recruiter_id:
        raise HTTPException(400, "Recruiter ID is required")
    return {"success": True, "data": await get_recruiter_stats(db, recruiter_id)}


@app.get("/api/interview-results/{interview_id}")
async def interview_result_detail(
    interview_id: str,
    recruiter_id: Optional[str] = Query(default=None, alias="recruiterId"),
    db: AsyncSession = Depends(get_db),
):
    try:
        interview = await get_interview_details(db, interview_id, recruiter_id)
    except InterviewNotFoundError as e:
        raise HTTPException(404, str(e))
    return {"success": True, "data": interview_detail(interview)}


if __name__ == "__main__":
    import uvicorn

    uvicorn.run("main:app", host="0.0.0.0", port=int(os.getenv("PORT", "8000")))
