"""
Interview analysis pipeline.

transcript -> normalize_transcript -> build_scoring_request -> (LLM) ->
parse_analysis_response -> build_interview_record

Scoring never fails because of what the model wrote: malformed output is
replaced with defaults and the result is flagged as a fallback. Only an
unreachable provider is fatal.
"""
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Literal, Optional
import json
import logging
import math
import re
import uuid

from pydantic import BaseModel, ConfigDict, Field, ValidationError

from llm_client import GeminiClient, ProviderTimeoutError

logger = logging.getLogger(__name__)

SCORE_FIELDS = ("technical_score", "communication_score", "confidence_score")
DEFAULT_SCORE = 70  # passing default when the model omits a score
FEEDBACK_ITEMS = 3
SCORING_TEMPERATURE = 0.2

DEFAULT_FEEDBACK = [
    {"topic": "General", "feedback": "Interview completed.", "better_answer": "N/A"},
    {"topic": "Communication", "feedback": "Clear speech.", "better_answer": "N/A"},
    {"topic": "Technical", "feedback": "Good effort.", "better_answer": "N/A"},
]

_FENCE_RE = re.compile(r"```[A-Za-z]*")
_OBJECT_RE = re.compile(r"\{.*\}", re.DOTALL)


class InvalidTranscriptError(ValueError):
    """The conversation cannot be scored."""


class Role(str, Enum):
    CANDIDATE = "candidate"
    INTERVIEWER = "interviewer"


class ResultCategory(str, Enum):
    EXCELLENT = "Excellent"
    PASS = "Pass"
    REVIEW = "Review"
    FAIL = "Fail"


ROLE_ALIASES = {
    "user": Role.CANDIDATE,
    "candidate": Role.CANDIDATE,
    "assistant": Role.INTERVIEWER,
    "interviewer": Role.INTERVIEWER,
}


class TranscriptEntry(BaseModel):
    model_config = ConfigDict(frozen=True)

    role: Role
    content: str
    timestamp: datetime


class JobContext(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    role_title: str = Field(alias="roleTitle")
    job_description: str = Field(default="", alias="jobDescription")
    difficulty: Literal["Easy", "Medium", "Hard"] = "Medium"


class FeedbackItem(BaseModel):
    topic: str
    feedback: str
    better_answer: str


class AnalysisResult(BaseModel):
    model_config = ConfigDict(frozen=True)

    technical_score: int = Field(ge=0, le=100)
    communication_score: int = Field(ge=0, le=100)
    confidence_score: int = Field(ge=0, le=100)
    feedback: list[FeedbackItem] = Field(min_length=FEEDBACK_ITEMS, max_length=FEEDBACK_ITEMS)
    # "fallback" when any field above was substituted rather than produced by the model
    confidence: Literal["genuine", "fallback"] = "genuine"
    fallback_fields: list[str] = Field(default_factory=list)


class InterviewRecord(BaseModel):
    id: str
    job_id: str
    recruiter_id: str
    candidate_name: str
    candidate_email: Optional[str] = None
    job_role: str
    difficulty: str
    duration: str
    technical_score: int
    communication_score: int
    confidence_score: int
    overall_score: int
    result: ResultCategory
    feedback: list[FeedbackItem]
    full_transcript: list[TranscriptEntry]
    scoring_confidence: Literal["genuine", "fallback"]
    status: str = "completed"
    completed_at: datetime


class ScoringRequest(BaseModel):
    system_instruction: str
    prompt: str


# ── Transcript Normalizer ────────────────────────────────

def canonical_role(raw_role: Any) -> Role:
    role = ROLE_ALIASES.get(str(raw_role or "").strip().lower())
    if role is None:
        raise InvalidTranscriptError(f"Unknown message role: {raw_role!r}")
    return role


def transcript_entries(history: list[dict]) -> list[TranscriptEntry]:
    """Map raw messages to transcript entries, keeping order and every message."""
    entries: list[TranscriptEntry] = []
    for index, message in enumerate(history):
        if not isinstance(message, dict):
            raise InvalidTranscriptError(f"Message {index} is not an object")
        try:
            entries.append(TranscriptEntry(
                role=canonical_role(message.get("role")),
                content=str(message.get("content") or ""),
                timestamp=message.get("timestamp") or datetime.now(timezone.utc),
            ))
        except ValidationError as e:
            raise InvalidTranscriptError(f"Message {index} is malformed: {e.errors()[0]['msg']}") from e
    return entries


def normalize_transcript(history: list[dict]) -> list[TranscriptEntry]:
    """
    Drop the opening greeting and return the scored part of the conversation.

    Raises InvalidTranscriptError unless at least one candidate turn and one
    interviewer turn remain.
    """
    if not history:
        raise InvalidTranscriptError("Conversation history is empty")

    entries = transcript_entries(history[1:])
    roles = {entry.role for entry in entries}
    if Role.CANDIDATE not in roles or Role.INTERVIEWER not in roles:
        raise InvalidTranscriptError(
            "An interview needs at least one candidate and one interviewer turn after the greeting"
        )
    return entries


# ── Scoring Request Builder ──────────────────────────────

def render_transcript(transcript: list[TranscriptEntry]) -> str:
    return "\n\n".join(
        f"{'Candidate' if entry.role == Role.CANDIDATE else 'Interviewer'}: {entry.content}"
        for entry in transcript
    )


def build_scoring_request(
    transcript: list[TranscriptEntry], job_context: Optional[JobContext] = None
) -> ScoringRequest:
    instruction = "You are an expert Technical Interviewer. "

    if job_context:
        instruction += f"""You are analyzing an interview for: {job_context.role_title}
Role Requirements: {job_context.job_description or "Not specified"}
Difficulty Level: {job_context.difficulty}
Adjust your scoring based on the {job_context.difficulty} difficulty level. """
    else:
        instruction += "This was a general practice interview with no specific job posting. "

    instruction += f"""
Analyze the following interview transcript.
Return a STRICT JSON object (no markdown, no plain text) with EXACTLY these fields:
- "technical_score": (integer 0-100)
- "communication_score": (integer 0-100)
- "confidence_score": (integer 0-100)
- "feedback": (array of exactly {FEEDBACK_ITEMS} objects, each having: "topic", "feedback", "better_answer")

CRITICAL: Return ONLY valid JSON."""

    return ScoringRequest(
        system_instruction=instruction,
        prompt=f"Here is the transcript:\n\n{render_transcript(transcript)}",
    )


# ── Response Parser & Validator ──────────────────────────

def strip_code_fences(text: str) -> str:
    return _FENCE_RE.sub("", text).strip()


def _load_json_object(text: str) -> Optional[dict]:
    try:
        data = json.loads(text)
    except (ValueError, RecursionError):
        # The model sometimes wraps the object in prose
        match = _OBJECT_RE.search(text)
        if not match:
            return None
        try:
            data = json.loads(match.group())
        except (ValueError, RecursionError):
            return None
    return data if isinstance(data, dict) else None


def _is_number(value: Any) -> bool:
    if isinstance(value, bool):
        return False
    if isinstance(value, int):
        return True
    return isinstance(value, float) and math.isfinite(value)


def _clamp_score(value: float) -> int:
    # ints may be too large to convert to float
    if isinstance(value, int):
        return max(0, min(100, value))
    return max(0, min(100, math.floor(value + 0.5)))


def _default_feedback() -> list[FeedbackItem]:
    return [FeedbackItem(**item) for item in DEFAULT_FEEDBACK]


def _validate_feedback(value: Any) -> tuple[list[FeedbackItem], bool]:
    """Return exactly FEEDBACK_ITEMS items and whether any had to be substituted."""
    if not isinstance(value, list) or not value:
        return _default_feedback(), True

    items: list[FeedbackItem] = []
    for entry in value:
        if isinstance(entry, dict):
            topic = str(entry.get("topic") or "").strip()
            text = str(entry.get("feedback") or "").strip()
            better = str(entry.get("better_answer") or entry.get("betterAnswer") or "").strip()
            if not (topic or text):
                continue
            items.append(FeedbackItem(
                topic=topic or "General",
                feedback=text or "No feedback provided.",
                better_answer=better or "N/A",
            ))
        elif isinstance(entry, str) and entry.strip():
            items.append(FeedbackItem(topic="General", feedback=entry.strip(), better_answer="N/A"))

    if not items:
        return _default_feedback(), True

    padded = len(items) < FEEDBACK_ITEMS
    items = items[:FEEDBACK_ITEMS] + _default_feedback()[len(items):]
    return items, padded


def parse_analysis_response(raw_text: Optional[str]) -> AnalysisResult:
    """Turn raw model output into a validated AnalysisResult. Never raises."""
    raw_text = raw_text or ""
    fallback_fields: list[str] = []

    data = _load_json_object(strip_code_fences(raw_text))
    if data is None:
        logger.warning("[SCORING] Unparseable model output, using zero-score fallback: %r", raw_text[:200])
        data = {field: 0 for field in SCORE_FIELDS}
        data["feedback"] = []
        fallback_fields.append("response")

    scores: dict[str, int] = {}
    for field in SCORE_FIELDS:
        value = data.get(field)
        if _is_number(value):
            scores[field] = _clamp_score(value)
        else:
            logger.warning("[SCORING] %s missing or not a number (%r), defaulting to %d", field, value, DEFAULT_SCORE)
            scores[field] = DEFAULT_SCORE
            fallback_fields.append(field)

    feedback, substituted = _validate_feedback(data.get("feedback"))
    if substituted:
        logger.warning("[SCORING] Feedback incomplete, filled from generic feedback set")
        fallback_fields.append("feedback")

    return AnalysisResult(
        **scores,
        feedback=feedback,
        confidence="fallback" if fallback_fields else "genuine",
        fallback_fields=fallback_fields,
    )


def fallback_analysis(reason: str) -> AnalysisResult:
    """Zero scores with generic feedback, used when no model output is available."""
    return AnalysisResult(
        **{field: 0 for field in SCORE_FIELDS},
        feedback=_default_feedback(),
        confidence="fallback",
        fallback_fields=[reason],
    )


# ── Result Aggregator ────────────────────────────────────

def overall_score(technical: int, communication: int, confidence: int) -> int:
    """Mean of the three sub-scores, rounded half up."""
    return math.floor((technical + communication + confidence) / 3 + 0.5)


def result_for_score(score: int) -> ResultCategory:
    if score >= 90:
        return ResultCategory.EXCELLENT
    if score >= 75:
        return ResultCategory.PASS
    if score >= 60:
        return ResultCategory.REVIEW
    return ResultCategory.FAIL


def build_interview_record(
    analysis: AnalysisResult,
    *,
    job_id: str,
    recruiter_id: str,
    transcript: list[TranscriptEntry],
    candidate_name: Optional[str] = None,
    candidate_email: Optional[str] = None,
    job_role: Optional[str] = None,
    difficulty: Optional[str] = None,
    duration: Optional[str] = None,
    interview_id: Optional[str] = None,
    completed_at: Optional[datetime] = None,
) -> InterviewRecord:
    overall = overall_score(
        analysis.technical_score, analysis.communication_score, analysis.confidence_score
    )
    return InterviewRecord(
        id=interview_id or uuid.uuid4().hex,
        job_id=job_id,
        recruiter_id=recruiter_id,
        candidate_name=candidate_name or "Anonymous",
        candidate_email=candidate_email,
        job_role=job_role or "Practice Interview",
        difficulty=difficulty or "N/A",
        duration=duration or "N/A",
        technical_score=analysis.technical_score,
        communication_score=analysis.communication_score,
        confidence_score=analysis.confidence_score,
        overall_score=overall,
        result=result_for_score(overall),
        feedback=list(analysis.feedback),
        full_transcript=list(transcript),
        scoring_confidence=analysis.confidence,
        completed_at=completed_at or datetime.now(timezone.utc),
    )


# ── Pipeline ─────────────────────────────────────────────

async def analyze_interview(
    history: list[dict],
    job_context: Optional[JobContext],
    llm: GeminiClient,
) -> AnalysisResult:
    """
    Score a finished conversation.

    Raises InvalidTranscriptError before any provider call when the transcript
    is too short, and ProviderUnavailableError when the model cannot be reached.
    A provider that keeps timing out yields the fallback analysis instead.
    """
    transcript = normalize_transcript(history)
    request = build_scoring_request(transcript, job_context)

    try:
        raw_text = await llm.generate(
            model=llm.scoring_model,
            contents=request.prompt,
            system_instruction=request.system_instruction,
            temperature=SCORING_TEMPERATURE,
            json_output=True,
        )
    except ProviderTimeoutError as e:
        logger.warning("[SCORING] %s, returning fallback analysis", e)
        return fallback_analysis("provider_timeout")

    analysis = parse_analysis_response(raw_text)
    logger.info(
        "[SCORING] Analysis complete: technical=%d communication=%d confidence=%d (%s)",
        analysis.technical_score,
        analysis.communication_score,
        analysis.confidence_score,
        analysis.confidence,
    )
    return analysis
