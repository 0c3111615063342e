"""
Task pipeline orchestration.

Runs one task start to finish: extract the text of every submission
file, optionally extract and deduplicate PDF images, assemble the
grading batch, enqueue it, then track and download the results.

Usage:
    store = create_store(settings.resolved_database_url)
    with OpenAIBatchClient(settings.batch) as service:
        pipeline = TaskPipeline(settings, store, service)
        summary = pipeline.process_task(task_id)
        print(summary.get_summary())
"""

import time
from collections.abc import Callable
from dataclasses import dataclass, field
from pathlib import Path

from .batch.assembler import NoContentError, RequestAssembler, write_id_map
from .batch.client import BatchService, BatchServiceError
from .batch.tracker import BatchLifecycleTracker, StatusCheck
from .config.models import PipelineSettings
from .images.dedup import DuplicateClusterer
from .images.extractor import ImageExtractionError, ImageExtractor
from .processing.extractor import Classification, ContentExtractor
from .processing.ocr import CancellationToken, OCRError, OCRTextExtractor
from .processing.parser import ParseError
from .storage.models import SubmissionImageRecord, SubmissionRecord, SubmissionStatus, TaskRecord
from .storage.repository import Store
from .utils.files import ensure_dir, list_submission_files
from .utils.logging import get_logger

logger = get_logger(__name__)

PDF_EXTRACTION_FAILED_TEXT = "[PDF text extraction failed]"
RESULTS_FILENAME = "assessment_responses.jsonl"


# -----------------------------------------------------------------------------
# Exceptions
# -----------------------------------------------------------------------------


class PipelineError(Exception):
    """
    A task run failed.

    Attributes:
        task_id: Task that failed
        stage: Pipeline stage where it failed
        transient: True when retrying later may succeed (network errors)
    """

    def __init__(self, message: str, task_id: int | None = None, stage: str | None = None, transient: bool = False):
        super().__init__(f"Task {task_id} failed at {stage}: {message}")
        self.task_id = task_id
        self.stage = stage
        self.transient = transient


class ConfigurationError(PipelineError):
    """Task or pipeline is missing required configuration."""

    pass


class TaskNotFoundError(PipelineError):
    """Task does not exist in the record store."""

    pass


# -----------------------------------------------------------------------------
# Data Classes
# -----------------------------------------------------------------------------


@dataclass
class ProcessingSummary:
    """Counters and outputs of one task run."""

    task_id: int
    submissions_processed: int = 0
    total_files: int = 0
    text_files: int = 0
    pdf_files: int = 0
    unsupported_files: int = 0
    failed_files: int = 0
    images_extracted: int = 0
    duplicate_images: int = 0
    skipped_submissions: list[str] = field(default_factory=list)
    batch_path: Path | None = None
    batch_id: str | None = None
    interrupted: bool = False

    def get_summary(self) -> str:
        """Get a text summary of the run."""
        lines = [
            f"Task {self.task_id}",
            f"  Submissions processed: {self.submissions_processed}",
            f"  Files: {self.total_files} "
            f"(text: {self.text_files}, pdf: {self.pdf_files}, "
            f"unsupported: {self.unsupported_files}, failed: {self.failed_files})",
        ]
        if self.images_extracted:
            lines.append(f"  Images: {self.images_extracted} ({self.duplicate_images} duplicates)")
        if self.skipped_submissions:
            lines.append(f"  Skipped submissions: {', '.join(self.skipped_submissions)}")
        if self.batch_path:
            lines.append(f"  Batch file: {self.batch_path}")
        if self.batch_id:
            lines.append(f"  Batch id: {self.batch_id}")
        if self.interrupted:
            lines.append("  Interrupted before completion")
        return "\n".join(lines)


# -----------------------------------------------------------------------------
# Pipeline
# -----------------------------------------------------------------------------


class TaskPipeline:
    """Processes a task's submissions and manages its grading batch."""

    def __init__(
        self,
        settings: PipelineSettings,
        store: Store,
        service: BatchService | None = None,
        clock: Callable[[], float] = time.time,
    ):
        """Initialize the pipeline.

        Args:
            settings: Pipeline configuration
            store: Record store repositories
            service: Remote batch service (enqueue and tracking are
                unavailable without one)
            clock: Time source in epoch seconds
        """
        self.settings = settings
        self.store = store
        self.service = service

        self.content_extractor = ContentExtractor()
        self.ocr = OCRTextExtractor(settings.ocr)
        self.image_extractor = ImageExtractor()
        self.clusterer = DuplicateClusterer(settings.dedup)
        self.assembler = RequestAssembler(store.submissions, store.files, settings.batch)
        self.tracker = (
            BatchLifecycleTracker(service, store.status_cache, store.submissions, settings.batch, clock)
            if service is not None
            else None
        )

    # -------------------------------------------------------------------------
    # Helpers
    # -------------------------------------------------------------------------

    def get_task(self, task_id: int) -> TaskRecord:
        task = self.store.tasks.get(task_id)
        if task is None:
            raise TaskNotFoundError("task does not exist", task_id=task_id, stage="lookup")
        return task

    def task_dir(self, task: TaskRecord) -> Path:
        return self.settings.work_dir / task.name

    def _require_tracker(self, task_id: int) -> BatchLifecycleTracker:
        if self.tracker is None:
            raise ConfigurationError("no batch service configured", task_id=task_id, stage="configuration")
        return self.tracker

    # -------------------------------------------------------------------------
    # Processing
    # -------------------------------------------------------------------------

    def process_task(self, task_id: int, cancel_token: CancellationToken | None = None) -> ProcessingSummary:
        """
        Extract all submissions of a task, then assemble and enqueue its batch.

        Per-file and per-submission problems are logged and skipped. When
        cancellation is requested the run stops after recording the
        current file and nothing is assembled or enqueued.

        Args:
            task_id: Task to process
            cancel_token: Optional cancellation token

        Returns:
            ProcessingSummary of the run

        Raises:
            TaskNotFoundError: If the task does not exist
            ConfigurationError: If the task has no grading instructions
            PipelineError: If there is nothing to assemble or enqueueing fails
        """
        task = self.get_task(task_id)
        if not task.grading_instructions:
            raise ConfigurationError("no grading instructions configured", task_id=task_id, stage="configuration")

        summary = ProcessingSummary(task_id=task_id)
        task_dir = self.task_dir(task)
        logger.info(f"Processing task {task_id} ({task.name}) from {task_dir}")

        for submission in self.store.submissions.list_for_task(task_id):
            if cancel_token is not None and cancel_token.cancelled:
                summary.interrupted = True
                break

            submission_dir = task_dir / submission.student_name
            if not submission_dir.is_dir():
                logger.warning(f"Submission directory not found for {submission.student_name}: {submission_dir}")
                summary.skipped_submissions.append(submission.student_name)
                continue

            self.process_submission(task, submission, submission_dir, summary, cancel_token)
            summary.submissions_processed += 1

            if cancel_token is not None and cancel_token.cancelled:
                summary.interrupted = True
                break

        if summary.interrupted:
            logger.warning(f"Processing of task {task_id} was cancelled, batch not assembled")
            return summary

        try:
            batch = self.assembler.assemble(task, task_dir)
        except NoContentError as e:
            raise PipelineError(str(e), task_id=task_id, stage="assemble") from e

        write_id_map(batch.id_map, task_dir)
        summary.batch_path = batch.path

        if self.service is None:
            logger.info(f"No batch service configured, batch for task {task_id} left at {batch.path}")
            return summary

        try:
            batch_id = self.service.submit(batch.path)
        except BatchServiceError as e:
            raise PipelineError(str(e), task_id=task_id, stage=f"batch {e.stage}", transient=e.transient) from e

        updated = self.store.submissions.assign_batch(task_id, batch_id, SubmissionStatus.PROCESSING.value)
        summary.batch_id = batch_id
        logger.info(f"Enqueued batch {batch_id} for task {task_id} ({updated} submissions)")
        return summary

    def process_submission(
        self,
        task: TaskRecord,
        submission: SubmissionRecord,
        submission_dir: Path,
        summary: ProcessingSummary,
        cancel_token: CancellationToken | None = None,
    ) -> None:
        """Classify and extract every file of one submission."""
        files = list_submission_files(submission_dir)
        logger.info(f"Processing {len(files)} files for {submission.student_name}")

        for file_path in files:
            summary.total_files += 1
            try:
                self._process_file(task, submission, submission_dir, file_path, summary, cancel_token)
            except Exception as e:
                summary.failed_files += 1
                logger.error(f"Error processing {file_path.name} of {submission.student_name}: {e}")
                continue

            if cancel_token is not None and cancel_token.cancelled:
                break

        if self.settings.extract_images:
            self.cluster_submission_images(submission, summary)

    def _process_file(
        self,
        task: TaskRecord,
        submission: SubmissionRecord,
        submission_dir: Path,
        file_path: Path,
        summary: ProcessingSummary,
        cancel_token: CancellationToken | None,
    ) -> None:
        file_size = file_path.stat().st_size
        result = self.content_extractor.classify_and_extract(file_path)
        classification = result.classification
        text = result.extracted_text

        if result.is_pdf:
            summary.pdf_files += 1
            text, classification, original = self._extract_pdf(task, submission, file_path, cancel_token)
            if self.settings.extract_images and original is not None:
                if cancel_token is not None and cancel_token.cancelled:
                    logger.info(f"Skipping image extraction for {file_path.name}, processing was cancelled")
                else:
                    self._extract_images(submission, submission_dir, file_path, original, summary)
        elif result.is_plain_text:
            summary.text_files += 1
        else:
            summary.unsupported_files += 1

        self.store.files.upsert(
            submission.id,
            file_path.relative_to(submission_dir).as_posix(),
            file_name=file_path.name,
            media_type=result.media_type,
            file_size=file_size,
            is_text_file=result.is_plain_text,
            classification=classification.value,
            content_extracted=text,
        )

    def _extract_pdf(
        self,
        task: TaskRecord,
        submission: SubmissionRecord,
        pdf_file: Path,
        cancel_token: CancellationToken | None,
    ) -> tuple[str, Classification, Path | None]:
        """
        Extract the text of a PDF, running OCR when enabled.

        OCR rewrites the working copy with rasterized pages, so the
        archived original is returned for image extraction. It is None
        when OCR was interrupted or extraction failed.
        """
        try:
            ocr_result = self.ocr.extract(
                pdf_file,
                task_hint=task.external_ref or task.name,
                submission_hint=submission.student_name,
                workspace_root=self.settings.work_dir,
                cancel_token=cancel_token,
            )
        except (OCRError, ParseError, OSError) as e:
            logger.error(f"PDF text extraction failed for {pdf_file.name} of {submission.student_name}: {e}")
            return PDF_EXTRACTION_FAILED_TEXT, Classification.PDF_ORIGINAL, None

        if ocr_result.interrupted:
            return ocr_result.text, Classification.PDF_ORIGINAL, None
        return ocr_result.text, Classification.PDF_PROCESSED, ocr_result.backup_path or pdf_file

    # -------------------------------------------------------------------------
    # Images
    # -------------------------------------------------------------------------

    def _extract_images(
        self,
        submission: SubmissionRecord,
        submission_dir: Path,
        pdf_file: Path,
        original: Path,
        summary: ProcessingSummary,
    ) -> None:
        """Extract the images of a submission PDF from its untouched original."""
        try:
            images = self.image_extractor.extract_images(
                original,
                base_dir=submission_dir,
                output_dir=self.image_extractor.images_dir_for(pdf_file),
            )
        except (ImageExtractionError, OSError) as e:
            logger.warning(f"Image extraction failed for {pdf_file.name} of {submission.student_name}: {e}")
            return

        for image in images:
            self.store.images.upsert(
                submission.id,
                image.relative_path,
                media_type=image.media_type,
                page_number=image.page_number,
                image_index=image.image_index,
                byte_size=image.byte_size,
                width=image.width,
                height=image.height,
                dhash=image.dhash,
                phash=image.phash,
            )
        summary.images_extracted += len(images)

    def cluster_submission_images(self, submission: SubmissionRecord, summary: ProcessingSummary | None = None) -> int:
        """
        Flag repeated images of a submission as duplicates.

        Returns:
            Number of images flagged
        """
        records = self.store.images.list_for_submission(submission.id)
        if not records:
            return 0

        self.clusterer.cluster(records)
        duplicate_ids = [record.id for record in records if record.is_duplicate]
        self.store.images.mark_duplicates(duplicate_ids)

        if summary is not None:
            summary.duplicate_images += len(duplicate_ids)
        return len(duplicate_ids)

    def usable_images(self, submission_id: int) -> list[SubmissionImageRecord]:
        """Images of a submission that are not flagged as duplicates."""
        return self.store.images.list_usable(submission_id)

    # -------------------------------------------------------------------------
    # Batch tracking
    # -------------------------------------------------------------------------

    def check_status(self, task_id: int) -> StatusCheck | None:
        """
        Status of the task's batch, refreshed only when the cache is stale.

        Returns:
            StatusCheck, or None if the task was never enqueued
        """
        self.get_task(task_id)
        tracker = self._require_tracker(task_id)
        try:
            return tracker.current_status(task_id)
        except BatchServiceError as e:
            raise PipelineError(str(e), task_id=task_id, stage=f"batch {e.stage}", transient=e.transient) from e

    def download_results(self, task_id: int) -> Path | None:
        """
        Download the results of a completed batch into the task directory.

        Returns:
            Path of the results file, or None if the batch is not
            completed or has no output yet
        """
        task = self.get_task(task_id)
        check = self.check_status(task_id)
        if check is None or check.local_status is not SubmissionStatus.COMPLETED:
            status = check.remote_status if check else "not enqueued"
            logger.info(f"Batch of task {task_id} is not completed ({status}), nothing to download")
            return None

        if not check.output_file_id:
            logger.warning(f"Batch {check.batch_id} is completed but has no output file")
            return None

        try:
            content = self.service.retrieve(check.output_file_id)
        except BatchServiceError as e:
            raise PipelineError(str(e), task_id=task_id, stage=f"batch {e.stage}", transient=e.transient) from e

        output_path = ensure_dir(self.task_dir(task)) / RESULTS_FILENAME
        output_path.write_bytes(content)
        self.store.submissions.set_status_for_batch(task_id, check.batch_id, SubmissionStatus.DOWNLOADED.value)

        logger.info(f"Saved batch results of task {task_id} to {output_path}")
        return output_path
