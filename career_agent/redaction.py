"""Masking of personal details (resumes, contact info) before they are logged."""

from __future__ import annotations

import re
from typing import Any, Dict, List

EMAIL_RE = re.compile(r"\b[A-Za-z0-9._%+-]+@[A-Za-z0-9.-]+\.[A-Za-z]{2,}\b")
PHONE_RE = re.compile(r"(?:(?:\+?\d[\d\s().-]{7,}\d))")
SECRET_RE = re.compile(r"\b(?:sk|rk)-[A-Za-z0-9_-]{8,}\b")
PROFILE_URL_RE = re.compile(r"https?://(?:www\.)?(?:linkedin\.com|github\.com)/\S+", re.IGNORECASE)


def redact_text(value: str, max_length: int = 200) -> str:
    redacted = PROFILE_URL_RE.sub("[REDACTED_PROFILE]", value or "")
    redacted = EMAIL_RE.sub("[REDACTED_EMAIL]", redacted)
    redacted = SECRET_RE.sub("[REDACTED_KEY]", redacted)
    redacted = PHONE_RE.sub("[REDACTED_PHONE]", redacted)
    if len(redacted) > max_length:
        return f"{redacted[:max_length]}..."
    return redacted


def redact_for_log(value: Any) -> Any:
    if isinstance(value, str):
        return redact_text(value)
    if isinstance(value, dict):
        return {str(k): redact_for_log(v) for k, v in value.items()}
    if isinstance(value, (list, tuple)):
        return [redact_for_log(item) for item in value]
    return value


def summarize_parts(parts: List[Dict[str, Any]]) -> str:
    """One-line, redacted summary of chat message parts for request logs."""
    chunks: List[str] = []
    for part in parts:
        if part.get("type") == "file":
            chunks.append(f"<file:{part.get('media_type') or 'unknown'}>")
        else:
            chunks.append(str(part.get("text") or ""))
    return redact_text(" ".join(chunks), max_length=120)
