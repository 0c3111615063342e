"""Configuration data models."""

import os
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any

from dotenv import load_dotenv

from ..utils.logging import get_logger

logger = get_logger(__name__)

CONFIG_FOLDER = ".gradebatch"
DATABASE_FILE = "gradebatch.db"


@dataclass
class BatchSettings:
    """Remote bulk-inference service and request settings."""

    status_check_interval: int = 300
    model: str = "gpt-4o"
    endpoint: str = "/v1/chat/completions"
    completion_window: str = "24h"
    api_base_url: str = "https://api.openai.com/v1"
    api_key: str | None = None
    timeout: float = 60.0
    digest_algorithm: str = "sha1"

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "BatchSettings":
        return cls(
            status_check_interval=int(data.get("status_check_interval", 300)),
            model=data.get("model", "gpt-4o"),
            endpoint=data.get("endpoint", "/v1/chat/completions"),
            completion_window=data.get("completion_window", "24h"),
            api_base_url=data.get("api_base_url", "https://api.openai.com/v1"),
            api_key=data.get("api_key"),
            timeout=float(data.get("timeout", 60.0)),
            digest_algorithm=data.get("digest_algorithm", "sha1"),
        )


@dataclass
class OCRSettings:
    """External OCR tool settings."""

    enabled: bool = True
    command: str = "ocrmypdf"
    languages: list[str] = field(default_factory=lambda: ["spa", "eng", "cat"])
    poll_interval: float = 0.5

    @property
    def language_arg(self) -> str:
        """Languages in the `-l` argument format of the OCR tool."""
        return "+".join(self.languages)

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "OCRSettings":
        languages = data.get("languages", ["spa", "eng", "cat"])
        if isinstance(languages, str):
            languages = [lang for lang in languages.split("+") if lang]
        return cls(
            enabled=data.get("enabled", True),
            command=data.get("command", "ocrmypdf"),
            languages=list(languages),
            poll_interval=float(data.get("poll_interval", 0.5)),
        )


@dataclass
class DedupSettings:
    """Perceptual-hash clustering thresholds for repeated images."""

    dhash_max_distance: int = 4
    phash_max_distance: int = 6
    min_cluster_size: int = 3

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "DedupSettings":
        return cls(
            dhash_max_distance=int(data.get("dhash_max_distance", 4)),
            phash_max_distance=int(data.get("phash_max_distance", 6)),
            min_cluster_size=int(data.get("min_cluster_size", 3)),
        )


@dataclass
class PipelineSettings:
    """Complete pipeline configuration, built once at startup."""

    work_dir: Path = field(default_factory=lambda: Path("."))
    database_url: str | None = None
    extract_images: bool = False
    batch: BatchSettings = field(default_factory=BatchSettings)
    ocr: OCRSettings = field(default_factory=OCRSettings)
    dedup: DedupSettings = field(default_factory=DedupSettings)

    @property
    def config_path(self) -> Path:
        """Hidden folder holding the database and archived originals."""
        return self.work_dir / CONFIG_FOLDER

    @property
    def resolved_database_url(self) -> str:
        """Database URL, defaulting to a SQLite file inside the config folder."""
        if self.database_url:
            return self.database_url
        return f"sqlite:///{self.config_path / DATABASE_FILE}"

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "PipelineSettings":
        return cls(
            work_dir=Path(data.get("work_dir", ".")),
            database_url=data.get("database_url"),
            extract_images=data.get("extract_images", False),
            batch=BatchSettings.from_dict(data.get("batch") or {}),
            ocr=OCRSettings.from_dict(data.get("ocr") or {}),
            dedup=DedupSettings.from_dict(data.get("dedup") or {}),
        )

    @classmethod
    def from_env(cls, dotenv_path: Path | None = None, base: "PipelineSettings | None" = None) -> "PipelineSettings":
        """
        Build settings from a .env file and the process environment.

        Environment values override those of `base` (or the defaults).

        Args:
            dotenv_path: Optional explicit .env file
            base: Settings to start from

        Returns:
            New PipelineSettings
        """
        load_dotenv(dotenv_path)
        settings = base or cls()

        work_dir = os.environ.get("WORK_DIR")
        if work_dir:
            settings.work_dir = Path(work_dir)

        api_key = os.environ.get("OPENAI_API_KEY")
        if api_key:
            settings.batch.api_key = api_key

        database_url = os.environ.get("GRADEBATCH_DATABASE_URL")
        if database_url:
            settings.database_url = database_url

        digest = os.environ.get("GRADEBATCH_DIGEST")
        if digest:
            settings.batch.digest_algorithm = digest

        languages = os.environ.get("OCR_LANGUAGES")
        if languages:
            settings.ocr.languages = [lang for lang in languages.split("+") if lang]

        interval = os.environ.get("BATCH_STATUS_CHECK_INTERVAL")
        if interval:
            try:
                settings.batch.status_check_interval = int(interval)
            except ValueError:
                logger.warning(
                    f"Invalid BATCH_STATUS_CHECK_INTERVAL={interval!r}, "
                    f"using {settings.batch.status_check_interval}s"
                )

        return settings
