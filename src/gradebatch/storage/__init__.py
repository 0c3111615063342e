"""
Record store: ORM models and the repositories the pipeline depends on.
"""

from .models import (
    Base,
    BatchStatusCacheRecord,
    SubmissionFileRecord,
    SubmissionImageRecord,
    SubmissionRecord,
    SubmissionStatus,
    TaskRecord,
)
from .repository import (
    BatchStatusCacheRepository,
    ExtractedFileRepository,
    ImageRepository,
    Store,
    SubmissionRepository,
    TaskRepository,
    create_db_engine,
    create_store,
    init_db,
)

__all__ = [
    # Models
    "Base",
    "BatchStatusCacheRecord",
    "SubmissionFileRecord",
    "SubmissionImageRecord",
    "SubmissionRecord",
    "SubmissionStatus",
    "TaskRecord",
    # Repositories
    "BatchStatusCacheRepository",
    "ExtractedFileRepository",
    "ImageRepository",
    "Store",
    "SubmissionRepository",
    "TaskRepository",
    "create_db_engine",
    "create_store",
    "init_db",
]
