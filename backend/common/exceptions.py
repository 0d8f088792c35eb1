"""Custom exceptions for the scan pipeline."""


class ScannerError(Exception):
    """Base scanner exception."""


class AcquisitionError(ScannerError):
    """Raised when the input source (camera, file, image) cannot be opened."""


class ConstraintViolationError(ScannerError, ValueError):
    """Raised when the source resolution does not fit the locator patch size."""


class PipelineNotInitializedError(ScannerError):
    """Raised when starting a pipeline before ``init`` completed."""


class SingleShotTimeoutError(ScannerError, TimeoutError):
    """Raised when a single-image decode produced no result in time."""
