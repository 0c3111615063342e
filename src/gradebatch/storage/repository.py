"""
Repositories over the record store.

The pipeline depends only on the narrow `Protocol` interfaces below.
The SQLAlchemy implementations open one short session per call and
commit it immediately, so a crash mid-task leaves every completed step
persisted and safe to resume. Upserts are keyed on natural keys.
"""

from dataclasses import dataclass
from typing import Any, Protocol

from sqlalchemy import create_engine, select, update
from sqlalchemy.engine import Engine
from sqlalchemy.orm import Session, sessionmaker
from sqlalchemy.pool import StaticPool

from ..utils.logging import get_logger
from .models import (
    Base,
    BatchStatusCacheRecord,
    SubmissionFileRecord,
    SubmissionImageRecord,
    SubmissionRecord,
    SubmissionStatus,
    TaskRecord,
)

logger = get_logger(__name__)


# -----------------------------------------------------------------------------
# Interfaces
# -----------------------------------------------------------------------------


class TaskRepository(Protocol):
    def add(self, name: str, external_ref: str | None = None, grading_instructions: str | None = None) -> TaskRecord: ...

    def get(self, task_id: int) -> TaskRecord | None: ...


class SubmissionRepository(Protocol):
    def upsert(self, task_id: int, student_name: str, submission_number: int = 1) -> SubmissionRecord: ...

    def get(self, submission_id: int) -> SubmissionRecord | None: ...

    def list_for_task(self, task_id: int) -> list[SubmissionRecord]: ...

    def set_uid(self, submission_id: int, submission_uid: str) -> None: ...

    def assign_batch(self, task_id: int, batch_id: str, status: str) -> int: ...

    def set_status_for_batch(
        self, task_id: int, batch_id: str, status: str, keep_statuses: tuple[str, ...] = ()
    ) -> int: ...


class ExtractedFileRepository(Protocol):
    def upsert(self, submission_id: int, file_path: str, **fields: Any) -> SubmissionFileRecord: ...

    def list_for_submission(self, submission_id: int) -> list[SubmissionFileRecord]: ...

    def list_with_content(self, submission_id: int) -> list[SubmissionFileRecord]: ...


class ImageRepository(Protocol):
    def upsert(self, submission_id: int, relative_path: str, **fields: Any) -> SubmissionImageRecord: ...

    def list_for_submission(self, submission_id: int) -> list[SubmissionImageRecord]: ...

    def mark_duplicates(self, image_ids: list[int]) -> int: ...

    def list_usable(self, submission_id: int) -> list[SubmissionImageRecord]: ...


class BatchStatusCacheRepository(Protocol):
    def get(self, task_id: int) -> BatchStatusCacheRecord | None: ...

    def save(
        self, task_id: int, last_check_timestamp: int, cached_status: str, output_file_id: str | None = None
    ) -> None: ...


# -----------------------------------------------------------------------------
# SQLAlchemy implementations
# -----------------------------------------------------------------------------


class _SessionRepository:
    def __init__(self, session_factory: sessionmaker[Session]):
        self._session_factory = session_factory


class SqlAlchemyTaskRepository(_SessionRepository):
    def add(self, name: str, external_ref: str | None = None, grading_instructions: str | None = None) -> TaskRecord:
        with self._session_factory.begin() as session:
            task = TaskRecord(name=name, external_ref=external_ref, grading_instructions=grading_instructions)
            session.add(task)
        logger.debug(f"Created task {task.id} ({name})")
        return task

    def get(self, task_id: int) -> TaskRecord | None:
        with self._session_factory() as session:
            return session.get(TaskRecord, task_id)


class SqlAlchemySubmissionRepository(_SessionRepository):
    def upsert(self, task_id: int, student_name: str, submission_number: int = 1) -> SubmissionRecord:
        """Return the submission for (task, student, number), creating it if needed."""
        with self._session_factory.begin() as session:
            submission = session.scalars(
                select(SubmissionRecord).where(
                    SubmissionRecord.task_id == task_id,
                    SubmissionRecord.student_name == student_name,
                    SubmissionRecord.submission_number == submission_number,
                )
            ).first()
            if submission is None:
                submission = SubmissionRecord(
                    task_id=task_id,
                    student_name=student_name,
                    submission_number=submission_number,
                    status=SubmissionStatus.PENDING.value,
                )
                session.add(submission)
        return submission

    def get(self, submission_id: int) -> SubmissionRecord | None:
        with self._session_factory() as session:
            return session.get(SubmissionRecord, submission_id)

    def list_for_task(self, task_id: int) -> list[SubmissionRecord]:
        with self._session_factory() as session:
            return list(
                session.scalars(
                    select(SubmissionRecord)
                    .where(SubmissionRecord.task_id == task_id)
                    .order_by(SubmissionRecord.id)
                )
            )

    def set_uid(self, submission_id: int, submission_uid: str) -> None:
        with self._session_factory.begin() as session:
            session.execute(
                update(SubmissionRecord)
                .where(SubmissionRecord.id == submission_id)
                .values(submission_uid=submission_uid)
            )

    def assign_batch(self, task_id: int, batch_id: str, status: str) -> int:
        """Record the job handle and status on every submission of a task."""
        with self._session_factory.begin() as session:
            result = session.execute(
                update(SubmissionRecord)
                .where(SubmissionRecord.task_id == task_id)
                .values(batch_id=batch_id, status=status)
            )
            return result.rowcount

    def set_status_for_batch(
        self, task_id: int, batch_id: str, status: str, keep_statuses: tuple[str, ...] = ()
    ) -> int:
        """Set the status of the submissions sharing a job handle, except those in `keep_statuses`."""
        statement = update(SubmissionRecord).where(
            SubmissionRecord.task_id == task_id,
            SubmissionRecord.batch_id == batch_id,
        )
        if keep_statuses:
            statement = statement.where(SubmissionRecord.status.not_in(keep_statuses))

        with self._session_factory.begin() as session:
            result = session.execute(statement.values(status=status))
            return result.rowcount


class SqlAlchemyExtractedFileRepository(_SessionRepository):
    def upsert(self, submission_id: int, file_path: str, **fields: Any) -> SubmissionFileRecord:
        """Insert or update the file row keyed by (submission, relative path)."""
        with self._session_factory.begin() as session:
            record = session.scalars(
                select(SubmissionFileRecord).where(
                    SubmissionFileRecord.submission_id == submission_id,
                    SubmissionFileRecord.file_path == file_path,
                )
            ).first()
            if record is None:
                record = SubmissionFileRecord(submission_id=submission_id, file_path=file_path, **fields)
                session.add(record)
            else:
                for name, value in fields.items():
                    setattr(record, name, value)
        return record

    def list_for_submission(self, submission_id: int) -> list[SubmissionFileRecord]:
        with self._session_factory() as session:
            return list(
                session.scalars(
                    select(SubmissionFileRecord)
                    .where(SubmissionFileRecord.submission_id == submission_id)
                    .order_by(SubmissionFileRecord.id)
                )
            )

    def list_with_content(self, submission_id: int) -> list[SubmissionFileRecord]:
        """Files with non-empty extracted text, in insertion order."""
        with self._session_factory() as session:
            return list(
                session.scalars(
                    select(SubmissionFileRecord)
                    .where(
                        SubmissionFileRecord.submission_id == submission_id,
                        SubmissionFileRecord.content_extracted.is_not(None),
                        SubmissionFileRecord.content_extracted != "",
                    )
                    .order_by(SubmissionFileRecord.id)
                )
            )


class SqlAlchemyImageRepository(_SessionRepository):
    def upsert(self, submission_id: int, relative_path: str, **fields: Any) -> SubmissionImageRecord:
        """
        Insert or update the image row keyed by (submission, relative path).

        An existing duplicate flag is kept set.
        """
        with self._session_factory.begin() as session:
            record = session.scalars(
                select(SubmissionImageRecord).where(
                    SubmissionImageRecord.submission_id == submission_id,
                    SubmissionImageRecord.relative_path == relative_path,
                )
            ).first()
            if record is None:
                record = SubmissionImageRecord(submission_id=submission_id, relative_path=relative_path, **fields)
                session.add(record)
            else:
                was_duplicate = record.is_duplicate
                for name, value in fields.items():
                    setattr(record, name, value)
                record.is_duplicate = was_duplicate or bool(record.is_duplicate)
        return record

    def list_for_submission(self, submission_id: int) -> list[SubmissionImageRecord]:
        with self._session_factory() as session:
            return list(
                session.scalars(
                    select(SubmissionImageRecord)
                    .where(SubmissionImageRecord.submission_id == submission_id)
                    .order_by(SubmissionImageRecord.id)
                )
            )

    def mark_duplicates(self, image_ids: list[int]) -> int:
        if not image_ids:
            return 0
        with self._session_factory.begin() as session:
            result = session.execute(
                update(SubmissionImageRecord)
                .where(SubmissionImageRecord.id.in_(image_ids))
                .values(is_duplicate=True)
            )
            return result.rowcount

    def list_usable(self, submission_id: int) -> list[SubmissionImageRecord]:
        """Images not flagged as duplicates."""
        with self._session_factory() as session:
            return list(
                session.scalars(
                    select(SubmissionImageRecord)
                    .where(
                        SubmissionImageRecord.submission_id == submission_id,
                        SubmissionImageRecord.is_duplicate.is_(False),
                    )
                    .order_by(SubmissionImageRecord.id)
                )
            )


class SqlAlchemyBatchStatusCacheRepository(_SessionRepository):
    def get(self, task_id: int) -> BatchStatusCacheRecord | None:
        with self._session_factory() as session:
            return session.get(BatchStatusCacheRecord, task_id)

    def save(
        self, task_id: int, last_check_timestamp: int, cached_status: str, output_file_id: str | None = None
    ) -> None:
        """Write timestamp, status and output handle together in one transaction."""
        with self._session_factory.begin() as session:
            record = session.get(BatchStatusCacheRecord, task_id)
            if record is None:
                record = BatchStatusCacheRecord(task_id=task_id)
                session.add(record)
            record.last_check_timestamp = last_check_timestamp
            record.cached_status = cached_status
            record.output_file_id = output_file_id


# -----------------------------------------------------------------------------
# Store
# -----------------------------------------------------------------------------


@dataclass
class Store:
    """All repositories sharing one engine."""

    engine: Engine
    tasks: TaskRepository
    submissions: SubmissionRepository
    files: ExtractedFileRepository
    images: ImageRepository
    status_cache: BatchStatusCacheRepository

    def dispose(self) -> None:
        self.engine.dispose()


def create_db_engine(database_url: str) -> Engine:
    """Create an engine; in-memory SQLite shares a single connection."""
    if database_url in ("sqlite://", "sqlite:///:memory:"):
        return create_engine(
            database_url,
            connect_args={"check_same_thread": False},
            poolclass=StaticPool,
        )
    return create_engine(database_url, pool_pre_ping=True)


def init_db(engine: Engine) -> None:
    """Create all tables that do not exist yet."""
    Base.metadata.create_all(engine)


def create_store(database_url: str) -> Store:
    """
    Open the record store, creating its schema if needed.

    Args:
        database_url: SQLAlchemy database URL

    Returns:
        Store with SQLAlchemy-backed repositories
    """
    engine = create_db_engine(database_url)
    init_db(engine)
    session_factory = sessionmaker(bind=engine, autoflush=False, expire_on_commit=False)
    logger.debug(f"Opened record store at {engine.url!r}")

    return Store(
        engine=engine,
        tasks=SqlAlchemyTaskRepository(session_factory),
        submissions=SqlAlchemySubmissionRepository(session_factory),
        files=SqlAlchemyExtractedFileRepository(session_factory),
        images=SqlAlchemyImageRepository(session_factory),
        status_cache=SqlAlchemyBatchStatusCacheRepository(session_factory),
    )
