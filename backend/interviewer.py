"""
Interviewer replies during a live mock interview.
"""
from typing import Optional
import logging

from google.genai import types
from pydantic import BaseModel, ConfigDict, Field

from analysis import JobContext, Role, canonical_role
from llm_client import GeminiClient, ProviderUnavailableError

logger = logging.getLogger(__name__)

SYSTEM_PROMPT = (
    "You are a professional, polite technical interviewer. Your goal is to assess the candidate. "
    "Keep your answers concise (max 2 sentences) to keep the voice conversation natural. "
    "Do not be repetitive."
)
CHAT_TEMPERATURE = 0.7
CHAT_MAX_TOKENS = 150


class ResumeContext(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    full_name: str = Field(default="", alias="fullName")
    technical_skills: list[str] = Field(default_factory=list, alias="technicalSkills")
    most_impressive_project: Optional[str] = Field(default=None, alias="mostImpressiveProject")


def build_interviewer_instruction(
    job_context: Optional[JobContext] = None,
    resume: Optional[ResumeContext] = None,
) -> str:
    """Resume details first, then the job posting, then the base persona."""
    instruction = SYSTEM_PROMPT

    if job_context:
        instruction = f"""You are interviewing for the role: {job_context.role_title}.
Job Requirements: {job_context.job_description or "Not specified"}
Difficulty Level: {job_context.difficulty}
Adjust your questions and expectations based on this {job_context.difficulty} difficulty level. """ + instruction

    if resume:
        skills = ", ".join(resume.technical_skills) or "Not specified"
        focus = resume.most_impressive_project or "their experience"
        instruction = (
            f"The candidate is {resume.full_name or 'unnamed'}. Skills: {skills}. "
            f"Focus questions on: {focus}. "
        ) + instruction

    return instruction


def build_chat_contents(history: list[dict], message: str) -> list[types.Content]:
    contents = []
    for entry in history:
        role = canonical_role(entry.get("role"))
        contents.append(types.Content(
            role="user" if role == Role.CANDIDATE else "model",
            parts=[types.Part.from_text(text=str(entry.get("content") or ""))],
        ))
    contents.append(types.Content(role="user", parts=[types.Part.from_text(text=message)]))
    return contents


async def get_interviewer_reply(
    message: str,
    history: list[dict],
    llm: GeminiClient,
    job_context: Optional[JobContext] = None,
    resume: Optional[ResumeContext] = None,
) -> str:
    if job_context:
        logger.info("[CHAT] Using job-specific context for %s", job_context.role_title)
    if resume:
        logger.info("[CHAT] Using resume-aware context")

    reply = await llm.generate(
        model=llm.chat_model,
        contents=build_chat_contents(history, message),
        system_instruction=build_interviewer_instruction(job_context, resume),
        temperature=CHAT_TEMPERATURE,
        max_output_tokens=CHAT_MAX_TOKENS,
    )
    if not reply:
        raise ProviderUnavailableError("Empty response from AI")
    return reply
