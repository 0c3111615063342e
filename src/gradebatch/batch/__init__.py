"""
Batch module.

Assembles JSONL grading batches, talks to the remote batch service and
tracks job status.
"""

from .assembler import (
    AssembledBatch,
    NoContentError,
    RequestAssembler,
    build_user_content,
    write_id_map,
)
from .client import BatchService, BatchServiceError, OpenAIBatchClient
from .digest import DigestError, get_digest
from .models import BatchJob, RequestCounts, RequestLine
from .tracker import BatchLifecycleTracker, StatusCheck, map_remote_status

__all__ = [
    # Assembly
    "AssembledBatch",
    "NoContentError",
    "RequestAssembler",
    "build_user_content",
    "write_id_map",
    # Remote service
    "BatchService",
    "BatchServiceError",
    "OpenAIBatchClient",
    # Digests
    "DigestError",
    "get_digest",
    # Models
    "BatchJob",
    "RequestCounts",
    "RequestLine",
    # Status tracking
    "BatchLifecycleTracker",
    "StatusCheck",
    "map_remote_status",
]
