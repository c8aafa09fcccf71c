"""Exception types raised by the scanner."""

from typing import Optional


class FetchError(Exception):
    """A page or script could not be retrieved.

    ``kind`` is one of ``timeout``, ``network`` or ``http_status``.
    """

    def __init__(self, kind: str, url: str, message: str = "", status_code: Optional[int] = None):
        self.kind = kind
        self.url = url
        self.status_code = status_code
        super().__init__(message or f"{kind} error fetching {url}")


class SchemaError(Exception):
    """The backend's API description could not be fetched or parsed."""

    def __init__(self, message: str, status_code: Optional[int] = None):
        self.status_code = status_code
        super().__init__(message)


class ScanNotFound(Exception):
    """No scan request exists with the given id."""

    def __init__(self, request_id: str):
        self.request_id = request_id
        super().__init__(f"Scan request {request_id} not found")


class ScanRecordLocked(Exception):
    """A completed or failed scan request cannot be modified."""

    def __init__(self, request_id: str, status: str):
        self.request_id = request_id
        self.status = status
        super().__init__(f"Scan request {request_id} is {status} and can no longer change")


class StepOrderError(Exception):
    """A step was requested before the scan started or before the previous step finished."""


class AuthorizationRequired(Exception):
    """The caller's plan or payment does not allow this analysis."""


class AnalysisUnavailable(Exception):
    """No AI analysis provider is configured."""
