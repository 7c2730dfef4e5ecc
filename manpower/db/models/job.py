"""
Job Model - reference entity for payments

Only the columns payments and conversations point at; posting and searching
jobs is handled elsewhere.
"""
import enum

from sqlalchemy import Column, Integer, String, DateTime, Enum as SQLEnum, ForeignKey

from manpower.db.database import Base
from manpower.db.types import utcnow


class JobStatus(str, enum.Enum):
    OPEN = "open"
    IN_PROGRESS = "in_progress"
    COMPLETED = "completed"
    CANCELLED = "cancelled"


class Job(Base):
    """Posted job"""

    __tablename__ = "jobs"

    id = Column(Integer, primary_key=True, index=True)
    business_id = Column(Integer, ForeignKey("users.id"), nullable=False, index=True)
    title = Column(String(100), nullable=False)
    status = Column(
        SQLEnum(JobStatus, name="job_status", values_callable=lambda x: [e.value for e in x]),
        default=JobStatus.OPEN,
        nullable=False,
    )

    created_at = Column(DateTime, default=utcnow)
    updated_at = Column(DateTime, default=utcnow, onupdate=utcnow)
