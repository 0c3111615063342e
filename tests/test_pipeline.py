"""End-to-end tests for the task pipeline."""

import hashlib
import json
import threading

import pytest

from conftest import block_pattern, make_image_pdf, make_text_pdf, write_script
from gradebatch.batch.client import BatchServiceError
from gradebatch.batch.models import BatchJob
from gradebatch.pipeline import (
    RESULTS_FILENAME,
    ConfigurationError,
    PipelineError,
    TaskNotFoundError,
    TaskPipeline,
)
from gradebatch.processing.ocr import CancellationToken


class FakeService:
    """In-memory batch service."""

    def __init__(self):
        self.submitted = []
        self.status_value = "validating"
        self.output_file_id = "file-out"
        self.submit_error = None
        self.status_calls = 0

    def submit(self, batch_file):
        if self.submit_error is not None:
            raise self.submit_error
        self.submitted.append(batch_file.read_text(encoding="utf-8"))
        return "batch_1"

    def status(self, job_handle):
        self.status_calls += 1
        return BatchJob(id=job_handle, status=self.status_value, output_file_id=self.output_file_id)

    def retrieve(self, output_handle):
        return b'{"custom_id":"x","response":{}}\n'


class Clock:
    def __init__(self, now=1_000):
        self.now = now

    def __call__(self):
        return self.now


@pytest.fixture
def service():
    return FakeService()


@pytest.fixture
def clock():
    return Clock()


@pytest.fixture
def pipeline(settings, store, service, clock):
    return TaskPipeline(settings, store, service, clock=clock)


@pytest.fixture
def workspace(work_dir, store, task):
    """Task folder with a text, a PDF, an image-only and a missing submission."""
    task_dir = work_dir / "Essay 1"
    (task_dir / "studentA").mkdir(parents=True)
    (task_dir / "studentA" / "answer.txt").write_text("hello", encoding="utf-8")
    (task_dir / "studentA" / ".DS_Store").write_bytes(b"\x00\x00")
    make_text_pdf(task_dir / "studentB" / "report.pdf", ["My scanned report"])
    (task_dir / "studentD").mkdir()
    block_pattern(4).save(task_dir / "studentD" / "photo.png")

    for name in ("studentA", "studentB", "studentC", "studentD"):
        store.submissions.upsert(task.id, name)
    return task_dir


def test_process_task_end_to_end(pipeline, store, task, service, workspace):
    summary = pipeline.process_task(task.id)

    assert summary.submissions_processed == 3
    assert summary.skipped_submissions == ["studentC"]
    assert (summary.total_files, summary.text_files, summary.pdf_files, summary.unsupported_files) == (3, 1, 1, 1)
    assert summary.batch_path == workspace / "12345.jsonl"
    assert summary.batch_id == "batch_1"

    lines = [json.loads(line) for line in service.submitted[0].splitlines()]
    by_id = {line["custom_id"]: line for line in lines}
    assert set(by_id) == {hashlib.sha1(b"studentA").hexdigest(), hashlib.sha1(b"studentB").hexdigest()}

    content_a = by_id[hashlib.sha1(b"studentA").hexdigest()]["body"]["messages"][1]["content"]
    assert ">>> File: answer.txt\nhello\n<<< End of: answer.txt" in content_a
    content_b = by_id[hashlib.sha1(b"studentB").hexdigest()]["body"]["messages"][1]["content"]
    assert "My scanned report" in content_b

    id_map = json.loads((workspace / "submission_id_map.json").read_text(encoding="utf-8"))
    assert {entry["student_name"] for entry in id_map.values()} == {"studentA", "studentB"}

    for submission in store.submissions.list_for_task(task.id):
        assert submission.batch_id == "batch_1"
        assert submission.status == "processing"


def test_extracted_files_are_persisted(pipeline, store, task, workspace):
    pipeline.process_task(task.id)
    submissions = {s.student_name: s for s in store.submissions.list_for_task(task.id)}

    [text_file] = store.files.list_for_submission(submissions["studentA"].id)
    assert (text_file.file_path, text_file.classification, text_file.is_text_file) == ("answer.txt", "plain-text", True)

    [pdf_file] = store.files.list_for_submission(submissions["studentB"].id)
    assert pdf_file.classification == "pdf-processed"
    assert "My scanned report" in pdf_file.content_extracted

    [image_file] = store.files.list_for_submission(submissions["studentD"].id)
    assert image_file.classification == "unsupported"
    assert image_file.content_extracted is None


def test_reprocessing_updates_in_place(pipeline, store, task, workspace):
    pipeline.process_task(task.id)
    (workspace / "studentA" / "answer.txt").write_text("hello again", encoding="utf-8")

    pipeline.process_task(task.id)

    submission = store.submissions.list_for_task(task.id)[0]
    [record] = store.files.list_for_submission(submission.id)
    assert record.content_extracted == "hello again"


def test_corrupt_pdf_gets_placeholder_text(pipeline, store, task, workspace):
    (workspace / "studentB" / "report.pdf").write_bytes(b"%PDF-1.4\ncorrupt")

    pipeline.process_task(task.id)

    submission = [s for s in store.submissions.list_for_task(task.id) if s.student_name == "studentB"][0]
    [record] = store.files.list_for_submission(submission.id)
    assert record.content_extracted == "[PDF text extraction failed]"
    assert record.classification == "pdf-original"


def test_missing_instructions_is_configuration_error(settings, store, service):
    task = store.tasks.add(name="Essay 2")
    pipeline = TaskPipeline(settings, store, service)

    with pytest.raises(ConfigurationError) as excinfo:
        pipeline.process_task(task.id)

    assert excinfo.value.task_id == task.id
    assert not excinfo.value.transient


def test_unknown_task(pipeline):
    with pytest.raises(TaskNotFoundError):
        pipeline.process_task(999)


def test_no_content_aborts_without_marking_submissions(pipeline, store, task, work_dir):
    (work_dir / "Essay 1" / "studentD").mkdir(parents=True)
    block_pattern(4).save(work_dir / "Essay 1" / "studentD" / "photo.png")
    store.submissions.upsert(task.id, "studentD")

    with pytest.raises(PipelineError) as excinfo:
        pipeline.process_task(task.id)

    assert excinfo.value.stage == "assemble"
    assert all(s.status == "pending" for s in store.submissions.list_for_task(task.id))


def test_enqueue_failure_is_fatal_and_transient(pipeline, store, task, service, workspace):
    service.submit_error = BatchServiceError("timed out", stage="upload", transient=True)

    with pytest.raises(PipelineError) as excinfo:
        pipeline.process_task(task.id)

    assert excinfo.value.transient
    assert excinfo.value.stage == "batch upload"
    assert all(s.batch_id is None for s in store.submissions.list_for_task(task.id))


def test_cancelled_run_does_not_assemble(pipeline, store, task, workspace):
    token = CancellationToken()
    token.cancel()

    summary = pipeline.process_task(task.id, cancel_token=token)

    assert summary.interrupted
    assert summary.batch_path is None
    assert not (workspace / "12345.jsonl").exists()


def test_without_service_batch_is_only_written(settings, store, task, workspace):
    pipeline = TaskPipeline(settings, store)

    summary = pipeline.process_task(task.id)

    assert summary.batch_path.exists()
    assert summary.batch_id is None
    with pytest.raises(ConfigurationError):
        pipeline.check_status(task.id)


def test_status_and_download(pipeline, store, task, service, clock, workspace):
    pipeline.process_task(task.id)

    assert pipeline.download_results(task.id) is None
    assert pipeline.check_status(task.id).remote_status == "validating"

    service.status_value = "completed"
    clock.now += 300
    results = pipeline.download_results(task.id)

    assert results == workspace / RESULTS_FILENAME
    assert results.read_bytes().startswith(b'{"custom_id"')
    assert {s.status for s in store.submissions.list_for_task(task.id)} == {"downloaded"}


def test_completed_without_output_is_not_downloaded(pipeline, store, task, service, workspace):
    pipeline.process_task(task.id)
    service.status_value = "completed"
    service.output_file_id = None

    assert pipeline.download_results(task.id) is None
    assert not (workspace / RESULTS_FILENAME).exists()


def test_image_sub_pipeline_flags_repeated_logo(settings, store, task, service, work_dir):
    settings.extract_images = True
    logo = block_pattern(11)
    make_image_pdf(
        work_dir / "Essay 1" / "studentA" / "scan.pdf",
        [[logo, block_pattern(99)], [logo], [logo]],
    )
    (work_dir / "Essay 1" / "studentA" / "answer.txt").write_text("see attached scan", encoding="utf-8")
    submission = store.submissions.upsert(task.id, "studentA")
    pipeline = TaskPipeline(settings, store, service)

    summary = pipeline.process_task(task.id)

    images = store.images.list_for_submission(submission.id)
    assert summary.images_extracted == 4
    assert summary.duplicate_images == 3
    assert sum(image.is_duplicate for image in images) == 3
    [usable] = pipeline.usable_images(submission.id)
    assert usable.page_number == 1
    assert (work_dir / "Essay 1" / "studentA" / "scan_images").is_dir()


def test_download_with_fresh_cache_does_not_poll_again(pipeline, store, task, service, workspace):
    pipeline.process_task(task.id)
    service.status_value = "completed"

    assert pipeline.check_status(task.id).output_file_id == "file-out"
    results = pipeline.download_results(task.id)

    assert results == workspace / RESULTS_FILENAME
    assert service.status_calls == 1


def test_images_come_from_original_when_ocr_rewrites_pdf(settings, store, task, service, work_dir, tmp_path):
    settings.extract_images = True
    rendered = make_image_pdf(
        tmp_path / "rendered.pdf",
        [[block_pattern(21)], [block_pattern(22)], [block_pattern(23)]],
    )
    settings.ocr.command = str(write_script(tmp_path / "fake-ocr", f'cp "{rendered}" "$9"'))
    logo = block_pattern(11)
    scan = make_image_pdf(
        work_dir / "Essay 1" / "studentA" / "scan.pdf",
        [[logo, block_pattern(99)], [logo], [logo]],
    )
    (work_dir / "Essay 1" / "studentA" / "answer.txt").write_text("see attached scan", encoding="utf-8")
    submission = store.submissions.upsert(task.id, "studentA")
    pipeline = TaskPipeline(settings, store, service)

    summary = pipeline.process_task(task.id)

    assert scan.read_bytes() == rendered.read_bytes()
    assert summary.images_extracted == 4
    assert summary.duplicate_images == 3
    assert all(
        image.relative_path.startswith("scan_images/") for image in store.images.list_for_submission(submission.id)
    )


def test_interrupted_ocr_skips_image_extraction(settings, store, task, service, work_dir, tmp_path):
    settings.extract_images = True
    settings.ocr.command = str(write_script(tmp_path / "slow-ocr", "exec sleep 30"))
    make_image_pdf(work_dir / "Essay 1" / "studentA" / "scan.pdf", [[block_pattern(11)]])
    submission = store.submissions.upsert(task.id, "studentA")
    pipeline = TaskPipeline(settings, store, service)
    token = CancellationToken()
    timer = threading.Timer(0.3, token.cancel)
    timer.start()

    try:
        summary = pipeline.process_task(task.id, cancel_token=token)
    finally:
        timer.cancel()

    assert summary.interrupted
    assert summary.images_extracted == 0
    assert store.images.list_for_submission(submission.id) == []
    assert not (work_dir / "Essay 1" / "studentA" / "scan_images").exists()
