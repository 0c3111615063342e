"""
Remote batch inference service client.

The pipeline only needs three operations from the service (upload and
enqueue a batch file, poll a job, download a result file), captured by
the `BatchService` protocol. `OpenAIBatchClient` implements it over
the OpenAI-compatible Files and Batches REST API.
"""

from pathlib import Path
from typing import Any, Protocol

import httpx

from ..config.models import BatchSettings
from ..utils.logging import get_logger
from .models import BatchJob

logger = get_logger(__name__)


# -----------------------------------------------------------------------------
# Exceptions
# -----------------------------------------------------------------------------


class BatchServiceError(Exception):
    """
    Remote batch service failure.

    Attributes:
        stage: Operation that failed (upload, enqueue, status, retrieve)
        transient: True for network errors, timeouts, rate limits and 5xx
            responses, which are worth retrying. False for structural
            failures such as rejected requests or malformed responses.
        status_code: HTTP status code, when a response was received
    """

    def __init__(self, message: str, stage: str, transient: bool = False, status_code: int | None = None):
        super().__init__(message)
        self.stage = stage
        self.transient = transient
        self.status_code = status_code


def is_transient_status(status_code: int) -> bool:
    return status_code == 429 or status_code >= 500


# -----------------------------------------------------------------------------
# Interface
# -----------------------------------------------------------------------------


class BatchService(Protocol):
    def submit(self, batch_file: Path) -> str:
        """Upload and enqueue a batch file, returning the job handle."""
        ...

    def status(self, job_handle: str) -> BatchJob: ...

    def retrieve(self, output_handle: str) -> bytes: ...


# -----------------------------------------------------------------------------
# API Client
# -----------------------------------------------------------------------------


class OpenAIBatchClient:
    """
    Batch client for the OpenAI-compatible Batches API.

    Usage:
        with OpenAIBatchClient(settings) as client:
            job_id = client.submit(Path("12345.jsonl"))
            job = client.status(job_id)
    """

    def __init__(self, settings: BatchSettings, transport: httpx.BaseTransport | None = None):
        """
        Initialize the client.

        Args:
            settings: Service URL, credentials, endpoint and timeout
            transport: Optional httpx transport (used by tests)
        """
        self.settings = settings
        self.base_url = settings.api_base_url.rstrip("/")
        self._transport = transport
        self._client: httpx.Client | None = None

    @property
    def client(self) -> httpx.Client:
        """Get or create the HTTP client."""
        if self._client is None:
            headers = {"Accept": "application/json"}
            if self.settings.api_key:
                headers["Authorization"] = f"Bearer {self.settings.api_key}"
            self._client = httpx.Client(
                base_url=self.base_url,
                timeout=self.settings.timeout,
                headers=headers,
                transport=self._transport,
            )
        return self._client

    def close(self) -> None:
        """Close the HTTP client."""
        if self._client is not None:
            self._client.close()
            self._client = None

    def __enter__(self) -> "OpenAIBatchClient":
        return self

    def __exit__(self, *args) -> None:
        self.close()

    # -------------------------------------------------------------------------
    # Core request handling
    # -------------------------------------------------------------------------

    def _request(self, stage: str, method: str, path: str, **kwargs: Any) -> httpx.Response:
        logger.debug(f"{method} {path} ({stage})")
        try:
            response = self.client.request(method, path, **kwargs)
            response.raise_for_status()
        except httpx.HTTPStatusError as e:
            status_code = e.response.status_code
            logger.error(f"HTTP error during batch {stage}: {e}")
            raise BatchServiceError(
                f"Batch {stage} failed with HTTP {status_code}: {e.response.text}",
                stage=stage,
                transient=is_transient_status(status_code),
                status_code=status_code,
            ) from e
        except httpx.RequestError as e:
            logger.error(f"Request error during batch {stage}: {e}")
            raise BatchServiceError(f"Batch {stage} request failed: {e}", stage=stage, transient=True) from e
        return response

    def _json(self, stage: str, response: httpx.Response) -> dict[str, Any]:
        try:
            data = response.json()
        except ValueError as e:
            raise BatchServiceError(f"Malformed response during batch {stage}: {e}", stage=stage) from e
        if not isinstance(data, dict) or "id" not in data:
            raise BatchServiceError(f"Unexpected response during batch {stage}: {data!r}", stage=stage)
        return data

    # -------------------------------------------------------------------------
    # Batch operations
    # -------------------------------------------------------------------------

    def upload_file(self, batch_file: Path) -> str:
        """Upload a JSONL file for batch use and return its file id."""
        with open(batch_file, "rb") as f:
            response = self._request(
                "upload",
                "POST",
                "/files",
                data={"purpose": "batch"},
                files={"file": (batch_file.name, f, "application/jsonl")},
            )
        file_id = self._json("upload", response)["id"]
        logger.info(f"Uploaded {batch_file.name} as {file_id}")
        return file_id

    def create_batch(self, input_file_id: str) -> BatchJob:
        """Enqueue a batch job over an uploaded file."""
        response = self._request(
            "enqueue",
            "POST",
            "/batches",
            json={
                "input_file_id": input_file_id,
                "endpoint": self.settings.endpoint,
                "completion_window": self.settings.completion_window,
            },
        )
        job = BatchJob.from_dict(self._json("enqueue", response))
        logger.info(f"Created batch {job.id} (status: {job.status})")
        return job

    def submit(self, batch_file: Path) -> str:
        file_id = self.upload_file(batch_file)
        return self.create_batch(file_id).id

    def status(self, job_handle: str) -> BatchJob:
        response = self._request("status", "GET", f"/batches/{job_handle}")
        return BatchJob.from_dict(self._json("status", response))

    def retrieve(self, output_handle: str) -> bytes:
        response = self._request("retrieve", "GET", f"/files/{output_handle}/content")
        logger.info(f"Downloaded {len(response.content)} bytes from file {output_handle}")
        return response.content
