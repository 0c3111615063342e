"""
SQLAlchemy ORM models for the record store.
"""

from datetime import datetime
from enum import Enum

from sqlalchemy import BigInteger, Boolean, DateTime, ForeignKey, Integer, String, Text, UniqueConstraint
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column, relationship
from sqlalchemy.sql import func


class SubmissionStatus(str, Enum):
    """Local lifecycle status of a submission."""

    PENDING = "pending"
    PROCESSING = "processing"
    COMPLETED = "completed"
    FAILED = "failed"
    DOWNLOADED = "downloaded"
    PACKAGED = "packaged"


class Base(DeclarativeBase):
    pass


class TaskRecord(Base):
    """
    A graded task (one assignment of one course).

    Attributes:
        name: Task folder name inside the workspace
        external_ref: Identifier of the task in the learning platform, if any
        grading_instructions: System instructions sent with every request
    """

    __tablename__ = "tasks"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    name: Mapped[str] = mapped_column(String(255), nullable=False)
    external_ref: Mapped[str | None] = mapped_column(String(255), nullable=True)
    grading_instructions: Mapped[str | None] = mapped_column(Text, nullable=True)
    created_at: Mapped[datetime] = mapped_column(DateTime, server_default=func.now())

    submissions: Mapped[list["SubmissionRecord"]] = relationship(
        back_populates="task", cascade="all, delete-orphan", order_by="SubmissionRecord.id"
    )

    def __repr__(self) -> str:
        return f"<TaskRecord(id={self.id}, name='{self.name}', external_ref='{self.external_ref}')>"


class SubmissionRecord(Base):
    """One student's deliverable for one task."""

    __tablename__ = "submissions"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    task_id: Mapped[int] = mapped_column(ForeignKey("tasks.id", ondelete="CASCADE"), nullable=False)
    student_name: Mapped[str] = mapped_column(String(255), nullable=False)
    submission_number: Mapped[int] = mapped_column(Integer, nullable=False, default=1)
    submission_uid: Mapped[str | None] = mapped_column(String(128), nullable=True)
    batch_id: Mapped[str | None] = mapped_column(String(128), nullable=True)
    status: Mapped[str] = mapped_column(String(32), nullable=False, default=SubmissionStatus.PENDING.value)
    created_at: Mapped[datetime] = mapped_column(DateTime, server_default=func.now())
    updated_at: Mapped[datetime] = mapped_column(DateTime, server_default=func.now(), onupdate=func.now())

    task: Mapped[TaskRecord] = relationship(back_populates="submissions")
    files: Mapped[list["SubmissionFileRecord"]] = relationship(
        back_populates="submission", cascade="all, delete-orphan", order_by="SubmissionFileRecord.id"
    )
    images: Mapped[list["SubmissionImageRecord"]] = relationship(
        back_populates="submission", cascade="all, delete-orphan", order_by="SubmissionImageRecord.id"
    )

    __table_args__ = (
        UniqueConstraint("task_id", "student_name", "submission_number", name="uq_submission_task_student_number"),
    )

    def __repr__(self) -> str:
        return (
            f"<SubmissionRecord(id={self.id}, task_id={self.task_id}, "
            f"student='{self.student_name}', status='{self.status}')>"
        )


class SubmissionFileRecord(Base):
    """One file of a submission and its extracted text."""

    __tablename__ = "submission_files"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    submission_id: Mapped[int] = mapped_column(ForeignKey("submissions.id", ondelete="CASCADE"), nullable=False)
    file_path: Mapped[str] = mapped_column(String(1024), nullable=False)
    file_name: Mapped[str] = mapped_column(String(255), nullable=False)
    media_type: Mapped[str | None] = mapped_column(String(255), nullable=True)
    file_size: Mapped[int] = mapped_column(BigInteger, nullable=False, default=0)
    is_text_file: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    classification: Mapped[str | None] = mapped_column(String(32), nullable=True)
    content_extracted: Mapped[str | None] = mapped_column(Text, nullable=True)

    submission: Mapped[SubmissionRecord] = relationship(back_populates="files")

    __table_args__ = (
        UniqueConstraint("submission_id", "file_path", name="uq_submission_file_path"),
    )


class SubmissionImageRecord(Base):
    """One image extracted from a submission PDF."""

    __tablename__ = "submission_images"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    submission_id: Mapped[int] = mapped_column(ForeignKey("submissions.id", ondelete="CASCADE"), nullable=False)
    relative_path: Mapped[str] = mapped_column(String(1024), nullable=False)
    media_type: Mapped[str | None] = mapped_column(String(64), nullable=True)
    page_number: Mapped[int] = mapped_column(Integer, nullable=False)
    image_index: Mapped[int] = mapped_column(Integer, nullable=False)
    byte_size: Mapped[int] = mapped_column(BigInteger, nullable=False, default=0)
    width: Mapped[int | None] = mapped_column(Integer, nullable=True)
    height: Mapped[int | None] = mapped_column(Integer, nullable=True)
    dhash: Mapped[str | None] = mapped_column(String(64), nullable=True)
    phash: Mapped[str | None] = mapped_column(String(64), nullable=True)
    is_duplicate: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    file_handle: Mapped[str | None] = mapped_column(String(128), nullable=True)
    description: Mapped[str | None] = mapped_column(Text, nullable=True)

    submission: Mapped[SubmissionRecord] = relationship(back_populates="images")

    __table_args__ = (
        UniqueConstraint("submission_id", "relative_path", name="uq_submission_image_path"),
    )


class BatchStatusCacheRecord(Base):
    """Last known remote batch status of a task and when it was fetched."""

    __tablename__ = "batch_status_cache"

    task_id: Mapped[int] = mapped_column(ForeignKey("tasks.id", ondelete="CASCADE"), primary_key=True)
    last_check_timestamp: Mapped[int | None] = mapped_column(BigInteger, nullable=True)
    cached_status: Mapped[str | None] = mapped_column(String(32), nullable=True)
    output_file_id: Mapped[str | None] = mapped_column(String(128), nullable=True)
