"""Tests for the remote batch service client."""

import json

import httpx
import pytest

from gradebatch.batch.client import BatchServiceError, OpenAIBatchClient
from gradebatch.config.models import BatchSettings


class RecordingHandler:
    """MockTransport handler answering like the Files and Batches API."""

    def __init__(self, status_code=200):
        self.requests: list[httpx.Request] = []
        self.status_code = status_code

    def __call__(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        if self.status_code != 200:
            return httpx.Response(self.status_code, json={"error": {"message": "nope"}})

        path = request.url.path
        if path.endswith("/files") and request.method == "POST":
            return httpx.Response(200, json={"id": "file-in", "purpose": "batch"})
        if path.endswith("/batches") and request.method == "POST":
            body = json.loads(request.content)
            return httpx.Response(
                200,
                json={"id": "batch_abc", "status": "validating", "input_file_id": body["input_file_id"]},
            )
        if "/batches/" in path:
            return httpx.Response(
                200,
                json={
                    "id": "batch_abc",
                    "status": "completed",
                    "output_file_id": "file-out",
                    "request_counts": {"total": 2, "completed": 2, "failed": 0},
                    "created_at": 1_700_000_000,
                    "completed_at": 1_700_000_600,
                },
            )
        if path.endswith("/files/file-out/content"):
            return httpx.Response(200, content=b'{"custom_id": "abc"}\n')
        return httpx.Response(404, json={"error": {"message": "unknown route"}})


@pytest.fixture
def settings():
    return BatchSettings(api_key="sk-test", api_base_url="https://api.example.com/v1")


@pytest.fixture
def batch_file(tmp_path):
    path = tmp_path / "12345.jsonl"
    path.write_text('{"custom_id":"abc"}\n', encoding="utf-8")
    return path


def test_submit_uploads_then_enqueues(settings, batch_file):
    handler = RecordingHandler()

    with OpenAIBatchClient(settings, transport=httpx.MockTransport(handler)) as client:
        job_id = client.submit(batch_file)

    assert job_id == "batch_abc"
    upload, create = handler.requests
    assert upload.url.path == "/v1/files"
    assert upload.headers["Authorization"] == "Bearer sk-test"
    assert b'name="purpose"' in upload.content
    assert b"batch" in upload.content
    assert create.url.path == "/v1/batches"
    assert json.loads(create.content) == {
        "input_file_id": "file-in",
        "endpoint": "/v1/chat/completions",
        "completion_window": "24h",
    }


def test_status_parses_job(settings):
    client = OpenAIBatchClient(settings, transport=httpx.MockTransport(RecordingHandler()))

    job = client.status("batch_abc")
    client.close()

    assert job.status == "completed"
    assert job.output_file_id == "file-out"
    assert job.request_counts.total == 2
    assert job.completed_at is not None


def test_retrieve_returns_bytes(settings):
    with OpenAIBatchClient(settings, transport=httpx.MockTransport(RecordingHandler())) as client:
        assert client.retrieve("file-out") == b'{"custom_id": "abc"}\n'


@pytest.mark.parametrize("status_code, transient", [(500, True), (503, True), (429, True), (400, False), (404, False)])
def test_http_errors_are_classified(settings, status_code, transient):
    with OpenAIBatchClient(settings, transport=httpx.MockTransport(RecordingHandler(status_code))) as client:
        with pytest.raises(BatchServiceError) as excinfo:
            client.status("batch_abc")

    assert excinfo.value.stage == "status"
    assert excinfo.value.transient is transient
    assert excinfo.value.status_code == status_code


def test_network_error_is_transient(settings, batch_file):
    def handler(request):
        raise httpx.ConnectError("connection refused", request=request)

    with OpenAIBatchClient(settings, transport=httpx.MockTransport(handler)) as client:
        with pytest.raises(BatchServiceError) as excinfo:
            client.submit(batch_file)

    assert excinfo.value.stage == "upload"
    assert excinfo.value.transient


def test_malformed_response_is_structural(settings):
    def handler(request):
        return httpx.Response(200, content=b"<html>gateway</html>")

    with OpenAIBatchClient(settings, transport=httpx.MockTransport(handler)) as client:
        with pytest.raises(BatchServiceError) as excinfo:
            client.status("batch_abc")

    assert not excinfo.value.transient
