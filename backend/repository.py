"""
Persistence for interview records and the dashboard read path.
"""
from typing import Optional
import logging
import math

from sqlalchemy import select, update
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from analysis import InterviewRecord, ResultCategory
from models import Interview, Job

logger = logging.getLogger(__name__)

PASSING_RESULTS = (ResultCategory.EXCELLENT.value, ResultCategory.PASS.value)


class InterviewNotFoundError(LookupError):
    pass


async def get_job(db: AsyncSession, job_id: str) -> Optional[Job]:
    result = await db.execute(select(Job).where(Job.id == job_id))
    return result.scalar_one_or_none()


async def save_interview_result(db: AsyncSession, record: InterviewRecord) -> Interview:
    """
    Insert the record and bump the parent job's interview count in one commit.

    Saving the same record twice is a no-op, so a failed save can simply be retried.
    """
    try:
        existing = await db.get(Interview, record.id)
        if existing is not None:
            logger.info("[DB] Interview %s already saved, skipping", record.id)
            return existing

        data = record.model_dump(mode="json")
        interview = Interview(
            id=record.id,
            recruiter_id=record.recruiter_id,
            job_id=record.job_id,
            candidate_name=record.candidate_name,
            candidate_email=record.candidate_email,
            job_role=record.job_role,
            difficulty=record.difficulty,
            duration=record.duration,
            technical_score=record.technical_score,
            communication_score=record.communication_score,
            confidence_score=record.confidence_score,
            overall_score=record.overall_score,
            result=record.result.value,
            feedback=data["feedback"],
            full_transcript=data["full_transcript"],
            scoring_confidence=record.scoring_confidence,
            status=record.status,
            completed_at=record.completed_at,
        )
        db.add(interview)

        bumped = await db.execute(
            update(Job)
            .where(Job.id == record.job_id)
            .values(interview_count=Job.interview_count + 1)
        )
        if bumped.rowcount == 0:
            logger.warning("[DB] Job %s not found, interview count not updated", record.job_id)

        await db.commit()
    except SQLAlchemyError:
        await db.rollback()
        raise

    logger.info("[DB] Interview saved: %s", record.id)
    return interview


async def get_recruiter_interviews(
    db: AsyncSession, recruiter_id: str, job_id: Optional[str] = None
) -> list[Interview]:
    query = select(Interview).where(Interview.recruiter_id == recruiter_id)
    if job_id:
        query = query.where(Interview.job_id == job_id)
    result = await db.execute(
        query.order_by(Interview.completed_at.desc(), Interview.created_at.desc())
    )
    return list(result.scalars().all())


async def get_interview_details(
    db: AsyncSession, interview_id: str, recruiter_id: Optional[str] = None
) -> Interview:
    interview = await db.get(Interview, interview_id)
    if interview is None:
        raise InterviewNotFoundError("Interview not found")
    if recruiter_id and interview.recruiter_id != recruiter_id:
        raise InterviewNotFoundError("Interview does not belong to this recruiter")
    return interview


async def get_recruiter_stats(db: AsyncSession, recruiter_id: str) -> dict:
    result = await db.execute(
        select(Interview.overall_score, Interview.result, Interview.scoring_confidence).where(
            Interview.recruiter_id == recruiter_id,
            Interview.status == "completed",
        )
    )
    rows = result.all()
    breakdown = {category.value: 0 for category in ResultCategory}
    if not rows:
        return {
            "totalInterviews": 0,
            "averageScore": 0,
            "passRate": 0,
            "resultBreakdown": breakdown,
            "fallbackCount": 0,
        }

    for row in rows:
        if row.result in breakdown:
            breakdown[row.result] += 1

    # Placeholder scores from a failed analysis are not real performance
    scored = [row for row in rows if row.scoring_confidence != "fallback"]
    passed = sum(1 for row in scored if row.result in PASSING_RESULTS)
    average = sum(row.overall_score for row in scored) / len(scored) if scored else 0
    pass_rate = passed / len(scored) * 100 if scored else 0

    return {
        "totalInterviews": len(rows),
        "averageScore": math.floor(average + 0.5),
        "passRate": math.floor(pass_rate + 0.5),
        "resultBreakdown": breakdown,
        "fallbackCount": len(rows) - len(scored),
    }
