"""
Grading request assembly.

Builds one request line per submission from the text persisted for its
files and writes them as a JSONL batch file. The batch file is rebuilt
from the record store on every call.
"""

import json
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any

from ..config.models import BatchSettings
from ..storage.models import SubmissionFileRecord, SubmissionRecord, TaskRecord
from ..storage.repository import ExtractedFileRepository, SubmissionRepository
from ..utils.files import ensure_dir, safe_filename
from ..utils.logging import get_logger
from .digest import Digest, get_digest
from .models import RequestLine

logger = get_logger(__name__)

BATCH_FILE_EXTENSION = ".jsonl"
ID_MAP_FILENAME = "submission_id_map.json"
CONTENT_HEADER = "=== SUBMISSION CONTENT ===\n\n"
FALLBACK_ID_PREFIX = "error_"


class NoContentError(Exception):
    """No submission of the task has any extracted text."""

    pass


@dataclass
class AssembledBatch:
    """A written batch file and the submissions it covers."""

    path: Path
    request_count: int
    id_map: dict[str, dict[str, Any]] = field(default_factory=dict)


def format_file_block(file_name: str, content: str) -> str:
    return f">>> File: {file_name}\n{content}\n<<< End of: {file_name}\n\n"


def build_user_content(files: list[SubmissionFileRecord]) -> str:
    """Concatenate file texts between begin/end markers, in file order."""
    parts = [CONTENT_HEADER]
    for record in files:
        parts.append(format_file_block(record.file_name, record.content_extracted or ""))
    return "".join(parts)


def batch_file_name(task: TaskRecord) -> str:
    """Batch file name from the external task reference, else the internal id."""
    stem = task.external_ref or str(task.id)
    return f"{safe_filename(stem)}{BATCH_FILE_EXTENSION}"


class RequestAssembler:
    """Writes the JSONL grading batch of a task."""

    def __init__(
        self,
        submissions: SubmissionRepository,
        files: ExtractedFileRepository,
        settings: BatchSettings | None = None,
        digest: Digest | None = None,
    ):
        """Initialize the assembler.

        Args:
            submissions: Submission repository
            files: Extracted file repository
            settings: Model, endpoint and digest selection
            digest: Digest function overriding `settings.digest_algorithm`
        """
        self.submissions = submissions
        self.files = files
        self.settings = settings or BatchSettings()
        self.digest = digest or get_digest(self.settings.digest_algorithm)

    def custom_id_for(self, submission: SubmissionRecord) -> str:
        """
        Correlation id of a submission: the digest of the student name.

        A failing digest never blocks the batch; the submission gets
        `error_<submission id>` instead. That id is not stable if the
        submission is ever re-ingested.
        """
        try:
            return self.digest(submission.student_name)
        except Exception as e:
            fallback = f"{FALLBACK_ID_PREFIX}{submission.id}"
            logger.error(
                f"Digest failed for submission {submission.id} ({submission.student_name}): {e}. "
                f"Using fallback id {fallback}"
            )
            return fallback

    def build_lines(self, task: TaskRecord) -> tuple[list[RequestLine], dict[str, dict[str, Any]]]:
        """Build request lines for every submission with extracted text."""
        lines: list[RequestLine] = []
        id_map: dict[str, dict[str, Any]] = {}

        for submission in self.submissions.list_for_task(task.id):
            files = self.files.list_with_content(submission.id)
            if not files:
                logger.debug(f"Submission {submission.student_name} has no extracted text, skipping")
                continue

            custom_id = self.custom_id_for(submission)
            self.submissions.set_uid(submission.id, custom_id)

            lines.append(
                RequestLine(
                    custom_id=custom_id,
                    model=self.settings.model,
                    url=self.settings.endpoint,
                    instructions=task.grading_instructions or "",
                    content=build_user_content(files),
                )
            )
            id_map[custom_id] = {
                "student_name": submission.student_name,
                "submission_id": submission.id,
                "submission_number": submission.submission_number,
            }

        return lines, id_map

    def assemble(self, task: TaskRecord, output_dir: Path) -> AssembledBatch:
        """
        Write the batch file of a task.

        Args:
            task: Task whose submissions are assembled
            output_dir: Directory receiving the batch file

        Returns:
            AssembledBatch with the file path and correlation ids

        Raises:
            NoContentError: If no submission has extracted text (no file is written)
        """
        lines, id_map = self.build_lines(task)
        if not lines:
            raise NoContentError(
                f"No submissions with extracted content for task {task.id} ({task.name})"
            )

        output_path = ensure_dir(output_dir) / batch_file_name(task)
        with open(output_path, "w", encoding="utf-8") as f:
            for line in lines:
                f.write(line.to_json())
                f.write("\n")

        logger.info(f"Wrote {len(lines)} grading requests to {output_path}")
        return AssembledBatch(path=output_path, request_count=len(lines), id_map=id_map)


def write_id_map(id_map: dict[str, dict[str, Any]], output_dir: Path) -> Path:
    """
    Save the custom_id -> submission correlation table.

    Returns:
        Path of the written map
    """
    path = ensure_dir(output_dir) / ID_MAP_FILENAME
    with open(path, "w", encoding="utf-8") as f:
        json.dump(id_map, f, indent=2, ensure_ascii=False)
    logger.debug(f"Wrote submission id map with {len(id_map)} entries to {path}")
    return path
