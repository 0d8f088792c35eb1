"""Scan pipeline orchestration package."""

from common.exceptions import (
    AcquisitionError,
    ConstraintViolationError,
    PipelineNotInitializedError,
    ScannerError,
    SingleShotTimeoutError,
)
from .orchestrator import ScanOrchestrator
from .types import ScannerConfig, merge_config

__all__ = [
    "AcquisitionError",
    "ConstraintViolationError",
    "PipelineNotInitializedError",
    "ScannerError",
    "SingleShotTimeoutError",
    "ScanOrchestrator",
    "ScannerConfig",
    "merge_config",
]
