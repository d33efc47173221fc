from __future__ import annotations

import asyncio
import re
from typing import Optional


class BrowserError(Exception):
    """Base error for the documents store."""

    code: str = "browser_error"
    http: int = 500


class NotInitialized(BrowserError):
    """No execution client is available; the request was not attempted."""

    code = "not_initialized"
    http = 409


class FilterNotFound(BrowserError):
    code = "filter_not_found"
    http = 404


class BackendError(BrowserError):
    """Failure surfaced by the execution client, optionally reclassified by kind."""

    code = "backend_error"
    http = 502

    def __init__(self, message: str, *, kind: str = "unknown", cause: Optional[BaseException] = None) -> None:
        super().__init__(message)
        self.kind = kind
        self.cause = cause


class InvalidQuerySyntax(BackendError):
    """The backend rejected the request shape (HTTP 400)."""

    code = "invalid_query_syntax"


_PATTERNS = [
    ("bad_request", re.compile(r"\b400\b|bad request", re.I)),
    ("auth", re.compile(r"\b401\b|unauthori[sz]ed", re.I)),
    ("forbidden", re.compile(r"\b403\b|forbidden", re.I)),
    ("not_found", re.compile(r"\b404\b|not found", re.I)),
    ("timeout", re.compile(r"timeout|timed out", re.I)),
]


def classify_backend_error(exc: BaseException) -> BackendError:
    """Wrap whatever the execution client raised, sniffing status-like substrings for a kind."""
    if isinstance(exc, BackendError):
        return exc
    message = str(exc) or exc.__class__.__name__
    if isinstance(exc, (asyncio.TimeoutError, TimeoutError)):
        return BackendError(message, kind="timeout", cause=exc)
    for kind, pattern in _PATTERNS:
        if pattern.search(message):
            if kind == "bad_request":
                return InvalidQuerySyntax(message, kind=kind, cause=exc)
            return BackendError(message, kind=kind, cause=exc)
    return BackendError(message, cause=exc)
