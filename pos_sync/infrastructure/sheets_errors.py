from __future__ import annotations

import json

import gspread
from google.auth.exceptions import DefaultCredentialsError

from pos_sync.domain.remote_errors import (
    RemoteApiDisabledError,
    RemoteConfigError,
    RemoteCredentialsError,
    RemoteNotFoundError,
    RemoteFailure,
    RemotePermissionError,
    RemoteRateLimitError,
)

_RATE_LIMIT_STATUS_CODES = {429, 500, 503}
_RATE_LIMIT_TOKENS = (
    "[429]",
    "resource_exhausted",
    "rate_limit_exceeded",
    "quota exceeded",
    "requests per minute per user",
)


def extract_response_status_code(ex: Exception) -> int | None:
    response = getattr(ex, "response", None)
    return getattr(response, "status_code", None)


def _extract_api_error_text(ex: gspread.exceptions.APIError) -> str:
    response = getattr(ex, "response", None)
    if response is not None:
        text = getattr(response, "text", "")
        if text:
            return text
    return str(ex)


def classify_api_error(text_lower: str, status_code: int | None) -> RemoteFailure:
    if status_code in _RATE_LIMIT_STATUS_CODES or any(token in text_lower for token in _RATE_LIMIT_TOKENS):
        return RemoteRateLimitError("Google Sheets rate limit reached; retry in a minute.")
    if "google sheets api has not been used" in text_lower or "it is disabled" in text_lower:
        return RemoteApiDisabledError("The Google Sheets API is not enabled for this Google Cloud project.")
    if status_code == 404 or "[404]" in text_lower or "requested entity was not found" in text_lower:
        return RemoteNotFoundError("The spreadsheet id is invalid or the sheet does not exist.")
    if status_code == 403 or "[403]" in text_lower or "permission_denied" in text_lower:
        return RemotePermissionError("The spreadsheet is not shared with the service account.")
    return RemoteConfigError(text_lower)


def map_gspread_exception(ex: Exception) -> RemoteFailure:
    """Translates gspread/google-auth failures into remote store errors."""
    if isinstance(ex, RemoteFailure):
        return ex
    if isinstance(ex, gspread.exceptions.APIError):
        text_lower = _extract_api_error_text(ex).strip().lower()
        return classify_api_error(text_lower, extract_response_status_code(ex))
    if isinstance(ex, FileNotFoundError):
        path = getattr(ex, "filename", None)
        return RemoteCredentialsError(f"Service account credentials not found at {path}." if path else "Service account credentials not found.")
    if isinstance(ex, (json.JSONDecodeError, DefaultCredentialsError, ValueError)):
        return RemoteCredentialsError("The service account credentials file is not valid.")
    return RemoteConfigError(str(ex))
