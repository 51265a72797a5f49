from sqlalchemy import Column, Integer, String, Text, DateTime, JSON, func
from sqlalchemy.orm import DeclarativeBase
import uuid


def _new_id() -> str:
    return uuid.uuid4().hex


class Base(DeclarativeBase):
    pass


class Job(Base):
    __tablename__ = "jobs"

    id = Column(String, primary_key=True, default=_new_id)
    recruiter_id = Column(String, nullable=False, index=True)
    role_title = Column(String, nullable=False)
    job_description = Column(Text, nullable=False)
    difficulty = Column(String, nullable=False, default="Medium")  # Easy, Medium, Hard
    duration = Column(String, nullable=False, default="Standard (30 min)")
    interview_count = Column(Integer, nullable=False, default=0)
    created_at = Column(DateTime, default=func.now())


class Interview(Base):
    __tablename__ = "interviews"

    id = Column(String, primary_key=True, default=_new_id)
    recruiter_id = Column(String, nullable=False, index=True)
    job_id = Column(String, nullable=False, index=True)
    candidate_name = Column(String, nullable=False)
    candidate_email = Column(String, nullable=True)
    job_role = Column(String, default="Practice Interview")
    difficulty = Column(String, default="N/A")
    duration = Column(String, default="N/A")
    technical_score = Column(Integer, nullable=False, default=0)
    communication_score = Column(Integer, nullable=False, default=0)
    confidence_score = Column(Integer, nullable=False, default=0)
    overall_score = Column(Integer, nullable=False, default=0)
    result = Column(String, nullable=False, default="Review")  # Excellent, Pass, Review, Fail
    feedback = Column(JSON, nullable=False, default=list)  # list of {topic, feedback, better_answer}
    full_transcript = Column(JSON, nullable=False, default=list)  # list of {role, content, timestamp}
    scoring_confidence = Column(String, nullable=False, default="genuine")  # genuine, fallback
    status = Column(String, nullable=False, default="completed")
    completed_at = Column(DateTime, nullable=True)
    created_at = Column(DateTime, default=func.now())
