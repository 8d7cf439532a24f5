"""
Citation mapper - Normalizes backend retrieval metadata and model-embedded citations.
"""

from __future__ import annotations
import logging
import os
import re
from typing import Any, Dict, Iterable, List, Optional

from ..models.turn import Citation, CitationCategory

UNKNOWN_SOURCE = "Unknown source"

_LLM_TYPE_MAP = {
    "web": CitationCategory.WEB,
    "rag": CitationCategory.RAG,
    "knowledge": CitationCategory.RAG,
    "file": CitationCategory.DOCUMENT,
    "document": CitationCategory.DOCUMENT,
}

_INLINE_REF = re.compile(r"\[(\d+)\]")


def _stem(name: str) -> str:
    return os.path.splitext(name.strip().lower())[0]


class CitationMapper:
    """Maps both citation sources onto ``Citation`` with 1-based display indices."""

    def __init__(self, logger: Optional[logging.Logger] = None):
        self._logger = logger or logging.getLogger(__name__)

    def map_retriever_resources(self, resources: Optional[Iterable[Dict[str, Any]]]) -> List[Citation]:
        """Backend-native retrieval metadata; URL means web, otherwise knowledge base."""
        if not resources:
            return []

        citations: List[Citation] = []
        seen = set()
        for res in resources:
            if not isinstance(res, dict):
                continue
            label = res.get("document_name") or res.get("dataset_name") or UNKNOWN_SOURCE
            url = res.get("document_url") or None
            # several segments of one document collapse into one entry
            key = (label, url)
            if key in seen:
                continue
            seen.add(key)
            citations.append(Citation(
                index=len(citations) + 1,
                category=CitationCategory.WEB if url else CitationCategory.RAG,
                label=str(label),
                url=url,
                source_id=res.get("document_id") or res.get("segment_id"),
            ))
        return citations

    def map_llm_citations(
        self,
        citations: Optional[Iterable[Dict[str, Any]]],
        session_files: Optional[List[str]] = None,
    ) -> List[Citation]:
        """Citations listed inside the answer envelope, indexed by position."""
        if not citations:
            return []

        files = {_stem(name): name for name in (session_files or []) if name}
        mapped: List[Citation] = []
        for position, cite in enumerate(citations):
            if not isinstance(cite, dict):
                cite = {"source": str(cite)}
            url = cite.get("url") or None
            category = _LLM_TYPE_MAP.get(str(cite.get("type") or "").lower())
            if category is None:
                category = CitationCategory.WEB if url else CitationCategory.DOCUMENT

            label = str(cite.get("source") or cite.get("title") or UNKNOWN_SOURCE)
            if url is None and files:
                label = files.get(_stem(label), label)

            mapped.append(Citation(
                index=position + 1,
                category=category,
                label=label,
                url=url,
                source_id=cite.get("id"),
            ))
        return mapped

    def merge(self, structured: List[Citation], fallback: List[Citation]) -> List[Citation]:
        """The envelope's own list wins; backend metadata is used only when it is empty."""
        if structured:
            if fallback:
                self._logger.debug(f"Using {len(structured)} model citations over {len(fallback)} backend citations")
            return list(structured)
        return list(fallback)


def resolve_inline_references(text: str, citations: List[Citation]) -> List[Citation]:
    """Citations referenced by ``[n]`` markers in ``text``, in first-mention order."""
    by_index = {c.index: c for c in citations}
    found: List[Citation] = []
    for match in _INLINE_REF.finditer(text or ""):
        citation = by_index.get(int(match.group(1)))
        if citation is not None and citation not in found:
            found.append(citation)
    return found
