"""SQLAlchemy ORM models for jobs and collections."""

import uuid as uuid_module
from datetime import datetime
from typing import Any, Dict, List, Optional

from sqlalchemy import (
    JSON,
    DateTime,
    ForeignKey,
    Integer,
    String,
    Text,
    UniqueConstraint,
)
from sqlalchemy.dialects.postgresql import JSONB
from sqlalchemy.orm import Mapped, declarative_base, mapped_column, relationship

Base = declarative_base()

# JSONB on PostgreSQL, plain JSON elsewhere (SQLite in tests)
JSONType = JSON().with_variant(JSONB, "postgresql")


def _new_id() -> str:
    return str(uuid_module.uuid4())


class Job(Base):
    """A tracked unit of background work."""

    __tablename__ = "jobs"

    id: Mapped[str] = mapped_column(String(64), primary_key=True, default=_new_id)
    job_type: Mapped[str] = mapped_column(String(50), nullable=False)
    is_multi_stage: Mapped[bool] = mapped_column(default=False, nullable=False)
    status: Mapped[str] = mapped_column(
        String(20), nullable=False, default="Pending", index=True
    )  # Pending, InProgress, Completed, Failed, Cancelled
    collection_id: Mapped[Optional[str]] = mapped_column(
        String(64), nullable=True, index=True
    )
    parameters: Mapped[Optional[Dict[str, Any]]] = mapped_column(
        JSONType, nullable=True
    )
    message: Mapped[Optional[str]] = mapped_column(Text, nullable=True)

    # Non-staged progress
    total_items: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    completed_items: Mapped[int] = mapped_column(Integer, default=0, nullable=False)

    created_at: Mapped[datetime] = mapped_column(
        DateTime, default=datetime.utcnow, nullable=False
    )
    started_at: Mapped[Optional[datetime]] = mapped_column(DateTime, nullable=True)
    completed_at: Mapped[Optional[datetime]] = mapped_column(DateTime, nullable=True)
    estimated_completion: Mapped[Optional[datetime]] = mapped_column(
        DateTime, nullable=True
    )

    # Sweep bookkeeping, set once per job
    stale_flagged_at: Mapped[Optional[datetime]] = mapped_column(
        DateTime, nullable=True
    )
    failure_alerted_at: Mapped[Optional[datetime]] = mapped_column(
        DateTime, nullable=True
    )

    # Optimistic concurrency for status writes
    version: Mapped[int] = mapped_column(Integer, default=1, nullable=False)

    stages: Mapped[List["JobStage"]] = relationship(
        back_populates="job",
        order_by="JobStage.position",
        cascade="all, delete-orphan",
    )
    errors: Mapped[List["JobError"]] = relationship(
        back_populates="job",
        order_by="JobError.id",
        cascade="all, delete-orphan",
    )

    def __repr__(self) -> str:
        return f"<Job(id={self.id}, type={self.job_type}, status={self.status})>"


class JobStage(Base):
    """Per-stage counters of a multi-stage job."""

    __tablename__ = "job_stages"
    __table_args__ = (UniqueConstraint("job_id", "name", name="uq_job_stage_name"),)

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    job_id: Mapped[str] = mapped_column(
        String(64), ForeignKey("jobs.id", ondelete="CASCADE"), nullable=False
    )
    name: Mapped[str] = mapped_column(String(50), nullable=False)
    position: Mapped[int] = mapped_column(Integer, nullable=False)
    status: Mapped[str] = mapped_column(String(20), nullable=False, default="Pending")
    total: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    completed: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    failed: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    message: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    started_at: Mapped[Optional[datetime]] = mapped_column(DateTime, nullable=True)
    completed_at: Mapped[Optional[datetime]] = mapped_column(DateTime, nullable=True)

    job: Mapped[Job] = relationship(back_populates="stages")

    def __repr__(self) -> str:
        return (
            f"<JobStage(job={self.job_id}, name={self.name}, "
            f"{self.completed}+{self.failed}/{self.total})>"
        )


class JobError(Base):
    """Append-only error log of a job."""

    __tablename__ = "job_errors"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    job_id: Mapped[str] = mapped_column(
        String(64), ForeignKey("jobs.id", ondelete="CASCADE"), nullable=False, index=True
    )
    stage_name: Mapped[Optional[str]] = mapped_column(String(50), nullable=True)
    message: Mapped[str] = mapped_column(Text, nullable=False)
    created_at: Mapped[datetime] = mapped_column(
        DateTime, default=datetime.utcnow, nullable=False
    )

    job: Mapped[Job] = relationship(back_populates="errors")


class Collection(Base):
    """A registered folder or archive with its embedded image lists."""

    __tablename__ = "collections"

    id: Mapped[str] = mapped_column(String(64), primary_key=True, default=_new_id)
    name: Mapped[str] = mapped_column(String(255), nullable=False)
    path: Mapped[str] = mapped_column(Text, nullable=False, unique=True)
    kind: Mapped[str] = mapped_column(String(10), nullable=False)
    library_id: Mapped[Optional[str]] = mapped_column(String(64), nullable=True)

    # [{id, filename, file_size, is_deleted}]
    images: Mapped[List[Dict[str, Any]]] = mapped_column(
        JSONType, default=list, nullable=False
    )
    # [{image_id, ...}]
    thumbnails: Mapped[List[Dict[str, Any]]] = mapped_column(
        JSONType, default=list, nullable=False
    )
    cache_images: Mapped[List[Dict[str, Any]]] = mapped_column(
        JSONType, default=list, nullable=False
    )

    created_at: Mapped[datetime] = mapped_column(
        DateTime, default=datetime.utcnow, nullable=False
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime, default=datetime.utcnow, onupdate=datetime.utcnow, nullable=False
    )

    def __repr__(self) -> str:
        return f"<Collection(id={self.id}, name={self.name}, kind={self.kind})>"
