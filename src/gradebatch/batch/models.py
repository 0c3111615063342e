"""Batch request and job data models."""

import json
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any


@dataclass
class RequestLine:
    """One grading request of a batch file."""

    custom_id: str
    model: str
    instructions: str
    content: str
    method: str = "POST"
    url: str = "/v1/chat/completions"

    def to_dict(self) -> dict[str, Any]:
        return {
            "custom_id": self.custom_id,
            "method": self.method,
            "url": self.url,
            "body": {
                "model": self.model,
                "messages": [
                    {"role": "system", "content": self.instructions},
                    {"role": "user", "content": self.content},
                ],
            },
        }

    def to_json(self) -> str:
        """Compact single-line JSON."""
        return json.dumps(self.to_dict(), ensure_ascii=False, separators=(",", ":"))


@dataclass
class RequestCounts:
    total: int = 0
    completed: int = 0
    failed: int = 0

    @classmethod
    def from_dict(cls, data: dict[str, Any] | None) -> "RequestCounts":
        data = data or {}
        return cls(
            total=data.get("total", 0),
            completed=data.get("completed", 0),
            failed=data.get("failed", 0),
        )


def _timestamp(value: int | None) -> datetime | None:
    if value is None:
        return None
    return datetime.fromtimestamp(value, tz=timezone.utc)


@dataclass
class BatchJob:
    """Remote batch job as reported by the service."""

    id: str
    status: str
    input_file_id: str | None = None
    output_file_id: str | None = None
    error_file_id: str | None = None
    request_counts: RequestCounts = field(default_factory=RequestCounts)
    created_at: datetime | None = None
    completed_at: datetime | None = None

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "BatchJob":
        """Create from a service API response."""
        return cls(
            id=data["id"],
            status=data.get("status", ""),
            input_file_id=data.get("input_file_id"),
            output_file_id=data.get("output_file_id"),
            error_file_id=data.get("error_file_id"),
            request_counts=RequestCounts.from_dict(data.get("request_counts")),
            created_at=_timestamp(data.get("created_at")),
            completed_at=_timestamp(data.get("completed_at")),
        )
