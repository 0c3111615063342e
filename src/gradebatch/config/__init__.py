"""
Configuration module.

Handles loading of pipeline settings from YAML files and the environment.
"""

from .loader import ConfigLoader
from .models import BatchSettings, DedupSettings, OCRSettings, PipelineSettings

__all__ = ["ConfigLoader", "BatchSettings", "DedupSettings", "OCRSettings", "PipelineSettings"]
