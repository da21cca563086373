"""Core data model shared by the RAG pipeline and the HTTP layer."""
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, ConfigDict, Field

from siasef import config


@dataclass
class PassageDraft:
    """A chunker output that has not been embedded or persisted yet."""

    content: str
    page_number: int
    start_offset: int
    end_offset: int


@dataclass
class Passage:
    """A persisted, immutable slice of a document's extracted text."""

    document_id: int
    sequence_index: int
    content: str
    page_number: int
    start_offset: int
    end_offset: int
    embedding: Optional[List[float]] = None
    embedding_degraded: bool = False
    id: Optional[int] = None
    # Denormalized from the owning document when read back from the store
    document_name: str = ""

    @property
    def has_embedding(self) -> bool:
        return bool(self.embedding)


@dataclass
class RankedPassage:
    """A passage paired with its similarity score for one query."""

    passage: Passage
    score: float


@dataclass
class Document:
    """Minimal document record owning a set of passages."""

    id: int
    name: str
    file_type: str
    page_count: int
    chunk_count: int
    created_at: str

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "name": self.name,
            "fileType": self.file_type,
            "pageCount": self.page_count,
            "chunkCount": self.chunk_count,
            "createdAt": self.created_at,
        }


@dataclass
class Turn:
    """One message in a conversation history."""

    role: str  # "user" or "model"
    content: str


class Source(BaseModel):
    """Citation record sent to the client ahead of the answer text.

    Serialized with camelCase keys; ``degraded`` stays server-side.
    """

    model_config = ConfigDict(populate_by_name=True)

    id: int
    chunk_id: Optional[int] = Field(default=None, alias="chunkId")
    document_name: str = Field(alias="documentName")
    page_number: int = Field(alias="pageNumber")
    content: str
    score: float
    degraded: bool = Field(default=False, exclude=True)

    def to_wire(self) -> Dict[str, Any]:
        return self.model_dump(by_alias=True)


class ChatRequest(BaseModel):
    """Body of ``POST /api/chat``."""

    model_config = ConfigDict(populate_by_name=True)

    message: str = Field(..., min_length=1, max_length=config.MAX_MESSAGE_CHARS)
    session_id: str = Field(..., alias="sessionId", min_length=1)


class DocumentIntake(BaseModel):
    """JSON body for submitting already-extracted document text."""

    model_config = ConfigDict(populate_by_name=True)

    name: str = Field(..., min_length=1)
    text: str
    page_number: int = Field(default=1, alias="pageNumber", ge=1)
    file_type: str = Field(default="text/plain", alias="fileType")


@dataclass
class IngestResult:
    """Outcome of ingesting one document."""

    document_id: int
    chunk_count: int
    page_count: int
    degraded_count: int = 0
    passage_ids: List[int] = field(default_factory=list)
