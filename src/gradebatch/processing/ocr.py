"""
OCR-backed text extraction for PDF submissions.

Each PDF goes through the same steps:

    ORIGINAL -> BACKED_UP -> OCR_ATTEMPTED -> OCR_SUCCEEDED | OCR_SKIPPED -> TEXT_EXTRACTED

The untouched original is archived first. The external OCR tool then
rewrites the working copy in place, and the text layer of whatever
document results (OCR'd or not) is read with pypdf. A missing OCR tool
only degrades quality; it never stops the pipeline.
"""

import os
import shutil
import subprocess
import threading
from dataclasses import dataclass, field
from enum import Enum
from pathlib import Path

from ..config.models import CONFIG_FOLDER, OCRSettings
from ..utils.files import ensure_dir, safe_filename
from ..utils.logging import get_logger
from .parser import extract_text_from_pdf, normalize_text

logger = get_logger(__name__)

INTERRUPTED_TEXT = "[OCR interrupted]"

# Exit codes that mean the tool could not run at all: bad arguments,
# missing dependency, bad configuration, not executable, not found.
INVOCATION_FAILURE_EXIT_CODES = frozenset({1, 3, 9, 126, 127})

# Seconds granted to the tool to exit after a termination request
TERMINATE_GRACE = 5.0


class OCRError(Exception):
    """The OCR tool ran but failed to process the document."""

    pass


class OcrState(Enum):
    """Processing state of one PDF."""

    ORIGINAL = "original"
    BACKED_UP = "backed_up"
    OCR_ATTEMPTED = "ocr_attempted"
    OCR_SUCCEEDED = "ocr_succeeded"
    OCR_SKIPPED = "ocr_skipped"
    TEXT_EXTRACTED = "text_extracted"


class OcrOutcome(Enum):
    """How the OCR pass ended."""

    SUCCEEDED = "succeeded"
    SKIPPED_NO_TOOL = "skipped_no_tool"
    INTERRUPTED = "interrupted"
    DISABLED = "disabled"


class CancellationToken:
    """Cooperative cancellation flag shared between a caller and a running job."""

    def __init__(self) -> None:
        self._event = threading.Event()

    def cancel(self) -> None:
        self._event.set()

    @property
    def cancelled(self) -> bool:
        return self._event.is_set()


@dataclass
class OcrResult:
    """Text extracted from a PDF and how it was obtained."""

    pdf_path: Path
    text: str
    outcome: OcrOutcome
    backup_path: Path | None = None
    states: list[OcrState] = field(default_factory=list)
    warnings: list[str] = field(default_factory=list)

    @property
    def interrupted(self) -> bool:
        return self.outcome is OcrOutcome.INTERRUPTED


class OCRTextExtractor:
    """Runs the external OCR tool over a PDF and reads back its text layer."""

    def __init__(self, settings: OCRSettings | None = None):
        """Initialize the extractor.

        Args:
            settings: OCR tool settings
        """
        self.settings = settings or OCRSettings()

    def build_command(self, input_pdf: Path, output_pdf: Path) -> list[str]:
        """Build the OCR tool command line."""
        return [
            self.settings.command,
            "--force-ocr",
            "--optimize", "0",
            "-l", self.settings.language_arg,
            "--output-type", "pdf",
            str(input_pdf),
            str(output_pdf),
        ]

    def backup_original(
        self,
        pdf_file: Path,
        task_hint: str | None,
        submission_hint: str,
        workspace_root: Path,
    ) -> Path:
        """
        Copy the untouched PDF to the originals archive.

        The archive lives under `<workspace>/.gradebatch/originals/<task>/<submission>/`.
        An existing backup of the same name is overwritten.

        Returns:
            Path of the backup copy
        """
        task_folder = safe_filename(task_hint) if task_hint else "unknown_task"
        originals_dir = ensure_dir(
            workspace_root / CONFIG_FOLDER / "originals" / task_folder / safe_filename(submission_hint)
        )
        backup = originals_dir / pdf_file.name
        shutil.copy2(pdf_file, backup)
        logger.debug(f"Archived original PDF to {backup}")
        return backup

    def extract(
        self,
        pdf_file: Path,
        task_hint: str | None,
        submission_hint: str,
        workspace_root: Path,
        cancel_token: CancellationToken | None = None,
    ) -> OcrResult:
        """
        OCR a PDF in place and extract its text.

        When cancellation is requested while the tool runs, the tool is
        terminated and the result carries `INTERRUPTED_TEXT` so that the
        submission is still recorded. The token stays cancelled for the
        caller to observe.

        Args:
            pdf_file: Working copy of the PDF (rewritten by OCR)
            task_hint: Task reference used for the archive folder
            submission_hint: Submission name used for the archive folder
            workspace_root: Workspace holding the archive
            cancel_token: Optional cancellation token

        Returns:
            OcrResult with the extracted text

        Raises:
            OCRError: If the OCR tool fails on the document itself
            ParseError: If the resulting PDF cannot be read
        """
        result = OcrResult(pdf_path=pdf_file, text="", outcome=OcrOutcome.DISABLED, states=[OcrState.ORIGINAL])

        if cancel_token is not None and cancel_token.cancelled:
            return self._interrupted(result)

        result.backup_path = self.backup_original(pdf_file, task_hint, submission_hint, workspace_root)
        result.states.append(OcrState.BACKED_UP)

        if self.settings.enabled:
            logger.info(f"Running OCR on {pdf_file.name}")
            result.states.append(OcrState.OCR_ATTEMPTED)
            result.outcome = self._run_ocr(pdf_file, cancel_token)
        else:
            logger.debug(f"OCR disabled, reading existing text layer of {pdf_file.name}")

        if result.outcome is OcrOutcome.INTERRUPTED:
            return self._interrupted(result)

        if result.outcome is OcrOutcome.SUCCEEDED:
            result.states.append(OcrState.OCR_SUCCEEDED)
        else:
            result.states.append(OcrState.OCR_SKIPPED)
            if result.outcome is OcrOutcome.SKIPPED_NO_TOOL:
                result.warnings.append(
                    f"OCR tool '{self.settings.command}' unavailable, using basic text extraction"
                )

        extraction = extract_text_from_pdf(pdf_file)
        result.warnings.extend(extraction.warnings)
        result.text = normalize_text(extraction.text)
        result.states.append(OcrState.TEXT_EXTRACTED)

        method = "OCR'd PDF" if result.outcome is OcrOutcome.SUCCEEDED else "PDF without OCR"
        logger.info(f"Extracted {len(result.text)} characters from {method}: {pdf_file.name}")
        return result

    def _interrupted(self, result: OcrResult) -> OcrResult:
        logger.warning(f"OCR interrupted for {result.pdf_path.name}")
        result.outcome = OcrOutcome.INTERRUPTED
        result.text = INTERRUPTED_TEXT
        return result

    def _run_ocr(self, pdf_file: Path, cancel_token: CancellationToken | None) -> OcrOutcome:
        """Run the OCR tool and swap its output in for the working copy."""
        output_pdf = pdf_file.with_name(f"{pdf_file.stem}.ocr.pdf")
        command = self.build_command(pdf_file, output_pdf)

        try:
            process = subprocess.Popen(
                command,
                stdout=subprocess.PIPE,
                stderr=subprocess.STDOUT,
                text=True,
            )
        except (FileNotFoundError, PermissionError) as e:
            self._warn_tool_missing(e)
            return OcrOutcome.SKIPPED_NO_TOOL

        returncode, output = self._wait(process, cancel_token)

        if returncode is None or (cancel_token is not None and cancel_token.cancelled):
            output_pdf.unlink(missing_ok=True)
            return OcrOutcome.INTERRUPTED

        if returncode == 0:
            os.replace(output_pdf, pdf_file)
            return OcrOutcome.SUCCEEDED

        output_pdf.unlink(missing_ok=True)

        if returncode in INVOCATION_FAILURE_EXIT_CODES:
            self._warn_tool_missing(f"exit code {returncode}")
            return OcrOutcome.SKIPPED_NO_TOOL

        tail = (output or "").strip()[-500:]
        raise OCRError(f"OCR failed for {pdf_file.name} (exit code {returncode}): {tail}")

    def _wait(
        self,
        process: subprocess.Popen,
        cancel_token: CancellationToken | None,
    ) -> tuple[int | None, str]:
        """
        Wait for the tool, polling the cancellation token.

        Returns:
            (exit code, combined output); exit code is None when cancelled
        """
        if cancel_token is None:
            output, _ = process.communicate()
            return process.returncode, output

        while True:
            try:
                output, _ = process.communicate(timeout=self.settings.poll_interval)
                return process.returncode, output
            except subprocess.TimeoutExpired:
                if not cancel_token.cancelled:
                    continue

            process.terminate()
            try:
                process.communicate(timeout=TERMINATE_GRACE)
            except subprocess.TimeoutExpired:
                process.kill()
                process.communicate()
            return None, ""

    def _warn_tool_missing(self, reason: object) -> None:
        logger.warning(
            f"OCR tool '{self.settings.command}' is not available ({reason}). "
            "Continuing without OCR using basic text extraction. "
            "Install it with your package manager or `pip install ocrmypdf` for better results."
        )
