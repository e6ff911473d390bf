"""Turn a user message's parts into runner input and prior history."""

from __future__ import annotations

from typing import Any, Dict, List, Optional

from ..persistence.models import MessageRecord
from ..providers.types import Message

DOCX_MEDIA_TYPE = "application/vnd.openxmlformats-officedocument.wordprocessingml.document"
PDF_MEDIA_TYPE = "application/pdf"


def is_analyzable_file(part: Dict[str, Any]) -> bool:
    if part.get("type") == "image":
        return True
    if part.get("type") != "file":
        return False
    media_type = str(part.get("media_type") or "")
    return media_type.startswith("image/") or media_type in (PDF_MEDIA_TYPE, DOCX_MEDIA_TYPE)


def parts_to_text(parts: List[Dict[str, Any]]) -> str:
    """Flatten parts for history and routing; files become a ``[file]`` marker."""
    pieces = []
    for part in parts:
        if part.get("type") == "text":
            pieces.append(str(part.get("text") or ""))
        else:
            pieces.append("[file]")
    return " ".join(piece for piece in pieces if piece)


def choose_analysis_type(query: str, media_type: Optional[str]) -> str:
    lowered = query.lower()
    if "resume" in lowered or "cv" in lowered:
        return "resume_review"
    if any(word in lowered for word in ("text", "read", "transcribe")):
        return "text_extraction"
    if any(word in lowered for word in ("document", "paper", "form")):
        return "document_analysis"
    if media_type == PDF_MEDIA_TYPE:
        return "pdf_analysis"
    return "general"


def build_agent_input(parts: List[Dict[str, Any]]) -> str:
    """Runner input for one user message.

    A message carrying an image, PDF or DOCX is rewritten into an explicit
    request to run the file analysis tool on the first such file.
    """
    files = [part for part in parts if is_analyzable_file(part)]
    if not files:
        return parts_to_text(parts)

    query = " ".join(str(p.get("text") or "") for p in parts if p.get("type") == "text").strip()
    query = query or "Please analyze this file"
    file_part = files[0]
    url = file_part.get("url")
    if not url:
        return query
    media_type = file_part.get("media_type")
    analysis_type = choose_analysis_type(query, media_type)
    return (
        "I need you to analyze a file using the analyze_file tool. "
        f"The file URL is: {url}. "
        f'The filename is: "{file_part.get("name") or "Unknown"}". '
        f'The media type is: "{media_type or "Unknown"}". '
        f'The user\'s question is: "{query}". '
        f"Please use analysis type: {analysis_type}"
    )


def history_from_records(records: List[MessageRecord], limit: int) -> List[Message]:
    """Last ``limit`` persisted messages as provider messages."""
    history: List[Message] = []
    for record in records[-limit:] if limit > 0 else []:
        content = parts_to_text(record.parts)
        if not content:
            continue
        if record.role == "user":
            history.append(Message.user(content))
        elif record.role == "assistant":
            history.append(Message.assistant(content))
    return history
