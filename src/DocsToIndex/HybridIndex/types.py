"""
Core typed structures for the hybrid index.

A document enters the system as an ordered sequence of :class:`Segment`
objects produced by an external parser. The indexer derives
:class:`ParentChunk` objects from each segment and :class:`ChildChunk`
objects from each parent, then writes one :class:`IndexEntry` per child.
Searches return :class:`SearchHit` records projected from stored rows.

Field names listed in :data:`RESERVED_FIELDS` are owned by the index; caller
metadata may never override them.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Dict, Mapping, Optional, Union

import numpy as np
from numpy.typing import NDArray

__all__ = (
    "ChildChunk",
    "IndexEntry",
    "MetadataValue",
    "ParentChunk",
    "RESERVED_FIELDS",
    "SearchHit",
    "Segment",
)

MetadataValue = Union[str, int, float, bool]

RESERVED_FIELDS = frozenset(
    {
        "filename",
        "parent_id",
        "content",
        "child_content",
        "chunk_id",
        "vector",
        "image_data",
        "anchor",
    }
)


@dataclass(frozen=True)
class Segment:
    """One externally parsed unit of document content.

    Attributes:
        content: Extracted text of the page, slide, or paragraph.
        image_data: Optional opaque encoded image. ``bytes`` are stored as
            base64 text; strings are stored unchanged.
        metadata: Ordered parser metadata such as ``page_number`` or
            ``slide_number``.

    Examples:
        >>> Segment("Quarterly results.", metadata={"page_number": 3}).metadata["page_number"]
        3
    """

    content: str
    image_data: Optional[Union[str, bytes]] = None
    metadata: Mapping[str, Any] = field(default_factory=dict)


@dataclass(frozen=True)
class ParentChunk:
    """Coarse text span returned to readers as context; the unit of dedupe."""

    parent_id: str
    text: str
    source_metadata: Mapping[str, MetadataValue]
    anchor: Optional[str] = None


@dataclass(frozen=True)
class ChildChunk:
    """Fine text span that is embedded and matched.

    Attributes:
        child_id: Ordinal position of the chunk within its parent.
        text: Chunk text.
        parent_id: Identifier of the owning :class:`ParentChunk`.
        vector: Embedding, or ``None`` when the provider was unavailable.
    """

    child_id: int
    text: str
    parent_id: str
    vector: Optional[NDArray[np.float32]] = None


@dataclass(frozen=True)
class IndexEntry:
    """Row written to the index for one child chunk.

    Attributes:
        filename: Source document name.
        parent_id: Identifier shared by every row of the same parent chunk.
        content: Full parent chunk text.
        child_content: Child chunk text.
        chunk_id: Ordinal of the child within its parent.
        anchor: Optional human-readable locator (``"Page 3"``).
        image_data: Optional encoded image carried from the segment.
        metadata: Non-reserved segment metadata.
        vector: Optional child embedding; rows without one are lexical-only.
    """

    filename: str
    parent_id: str
    content: str
    child_content: str
    chunk_id: int
    anchor: Optional[str] = None
    image_data: Optional[str] = None
    metadata: Mapping[str, MetadataValue] = field(default_factory=dict)
    vector: Optional[NDArray[np.float32]] = None

    @classmethod
    def from_chunks(
        cls,
        filename: str,
        parent: ParentChunk,
        child: ChildChunk,
        *,
        image_data: Optional[str] = None,
    ) -> "IndexEntry":
        """Combine a parent and one of its children into a row."""
        return cls(
            filename=filename,
            parent_id=parent.parent_id,
            content=parent.text,
            child_content=child.text,
            chunk_id=child.child_id,
            anchor=parent.anchor,
            image_data=image_data,
            metadata=dict(parent.source_metadata),
            vector=child.vector,
        )

    def stored_fields(self) -> Dict[str, Any]:
        """Return the persisted field bag; reserved fields win over metadata."""
        fields: Dict[str, Any] = {
            key: value for key, value in self.metadata.items() if key not in RESERVED_FIELDS
        }
        fields.update(
            filename=self.filename,
            parent_id=self.parent_id,
            content=self.content,
            child_content=self.child_content,
            chunk_id=self.chunk_id,
        )
        if self.anchor is not None:
            fields["anchor"] = self.anchor
        if self.image_data is not None:
            fields["image_data"] = self.image_data
        return fields


@dataclass(frozen=True)
class SearchHit:
    """Ranked search result: a stored row plus its relevance score."""

    score: float
    fields: Mapping[str, Any]

    @property
    def parent_id(self) -> Optional[str]:
        value = self.fields.get("parent_id")
        return None if value is None else str(value)

    @property
    def filename(self) -> Optional[str]:
        return self.fields.get("filename")

    def to_record(self) -> Dict[str, Any]:
        """Return every stored field alongside ``score`` as a plain dict."""
        record = dict(self.fields)
        record["score"] = float(self.score)
        return record
