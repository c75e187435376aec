"""Source citations attached to generated text."""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any


@dataclass
class Citation:
    """A reference from generated text back to a source.

    ``source_type`` is one of ``"document"``, ``"url"`` or ``"search"``.
    Index fields are character offsets into the source when the vendor
    reports them.
    """

    source_type: str = "document"
    source: str | int | None = None
    source_text: str | None = None
    source_title: str | None = None
    source_start_index: int | None = None
    source_end_index: int | None = None
    metadata: dict[str, Any] = field(default_factory=dict)


def citation_from_anthropic(data: dict) -> Citation:
    """Build a :class:`Citation` from an Anthropic citation payload."""
    kind = data.get("type", "")
    if kind == "web_search_result_location":
        return Citation(
            source_type="url",
            source=data.get("url"),
            source_text=data.get("cited_text"),
            source_title=data.get("title"),
            metadata={"encrypted_index": data.get("encrypted_index")},
        )
    if kind == "char_location":
        start, end = data.get("start_char_index"), data.get("end_char_index")
    elif kind == "page_location":
        start, end = data.get("start_page_number"), data.get("end_page_number")
    else:
        start, end = data.get("start_block_index"), data.get("end_block_index")
    return Citation(
        source_type="document",
        source=data.get("document_index"),
        source_text=data.get("cited_text"),
        source_title=data.get("document_title"),
        source_start_index=start,
        source_end_index=end,
        metadata={"location_type": kind},
    )
