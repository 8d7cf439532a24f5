"""
History reconstruction - Rebuilds finalized turns from stored backend messages.
"""

from __future__ import annotations
import logging
import os
from datetime import datetime
from typing import Any, Dict, Iterable, List, Optional
from urllib.parse import unquote, urlparse

from ..domain.interfaces.chat_backend import UploadedFile
from ..domain.models.turn import (
    CitationCategory, ProtocolMode, Role, TraceMode, TurnRecord,
)
from ..domain.services.citation_mapper import CitationMapper
from ..domain.services.partial_json import parse_structured_response

logger = logging.getLogger(__name__)


def _timestamp(value: Any) -> datetime:
    if isinstance(value, (int, float)):
        return datetime.fromtimestamp(value)
    return datetime.now()


def file_name_from_history(file_obj: Dict[str, Any]) -> str:
    """Best display name for a stored message file."""
    if file_obj.get("name"):
        return str(file_obj["name"])
    if file_obj.get("filename"):
        return str(file_obj["filename"])
    url = file_obj.get("url")
    if url:
        name = os.path.basename(unquote(urlparse(str(url)).path))
        if name and name != "file-preview" and "image_preview" not in name:
            return name
        mime = file_obj.get("mime_type") or ""
        return f"attached file.{mime.split('/')[-1]}" if "/" in mime else "attached file"
    return "attached file"


def restored_files_from_history(items: Iterable[Dict[str, Any]]) -> List[UploadedFile]:
    """Distinct files attached anywhere in the history, in first-seen order."""
    files: List[UploadedFile] = []
    seen = set()
    for item in items:
        for f in item.get("message_files") or []:
            if not isinstance(f, dict) or not f.get("id") or f["id"] in seen:
                continue
            seen.add(f["id"])
            files.append(UploadedFile(id=str(f["id"]), name=file_name_from_history(f), type=f.get("type") or "document"))
    return files


def build_turns_from_history(
    items: Iterable[Dict[str, Any]],
    mapper: Optional[CitationMapper] = None,
    session_files: Optional[List[str]] = None,
) -> List[TurnRecord]:
    """Map stored messages (oldest first) to user/assistant records."""
    mapper = mapper or CitationMapper()
    records: List[TurnRecord] = []

    for item in items:
        created_at = _timestamp(item.get("created_at"))
        message_id = str(item.get("id") or "")
        conversation_id = item.get("conversation_id")

        if item.get("query"):
            files = tuple(
                file_name_from_history(f) for f in (item.get("message_files") or []) if isinstance(f, dict)
            )
            records.append(TurnRecord(
                id=f"{message_id}_user",
                role=Role.USER,
                text=str(item["query"]),
                raw_text=str(item["query"]),
                conversation_id=conversation_id,
                files=files,
                created_at=created_at,
            ))

        answer = item.get("answer")
        if not answer:
            continue

        backend = mapper.map_retriever_resources(item.get("retriever_resources") or [])
        parsed = parse_structured_response(answer)
        structured = mapper.map_llm_citations(parsed.citations, session_files=session_files) if parsed.is_parsed else []
        citations = mapper.merge(structured, backend)

        if structured:
            categories = {c.category for c in structured}
            if CitationCategory.WEB in categories:
                trace_mode = TraceMode.SEARCH
            elif CitationCategory.RAG in categories:
                trace_mode = TraceMode.KNOWLEDGE
            else:
                trace_mode = TraceMode.DOCUMENT
        elif backend:
            trace_mode = TraceMode.SEARCH
        else:
            trace_mode = TraceMode.KNOWLEDGE

        records.append(TurnRecord(
            id=message_id,
            role=Role.ASSISTANT,
            text=parsed.answer,
            raw_text=str(answer),
            thinking=parsed.thinking,
            citations=tuple(citations),
            smart_actions=tuple(parsed.smart_actions),
            protocol_mode=ProtocolMode.JSON if parsed.is_parsed else ProtocolMode.RAW,
            trace_mode=trace_mode,
            conversation_id=conversation_id,
            message_id=message_id or None,
            created_at=created_at,
        ))

    logger.debug(f"Rebuilt {len(records)} turn(s) from history")
    return records
