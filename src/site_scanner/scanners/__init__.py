"""Static detectors for leaked secrets and backend credentials."""

from .credentials import extract_credential, find_credential, resolve_credential
from .secrets import detect, detect_many, redact

__all__ = [
    "detect",
    "detect_many",
    "extract_credential",
    "find_credential",
    "redact",
    "resolve_credential",
]
