"""Thread and message types for the assistant-threads client."""

from __future__ import annotations

from datetime import datetime
from typing import Any, Dict, Generic, List, Optional, TypeVar

from pydantic import BaseModel, Field, field_validator

from .types import FrozenModel, RequestMetadata, ResponseMetadata

T = TypeVar("T")


class Thread(FrozenModel):
    """Represents a conversation thread."""

    id: str
    object: str = "thread"
    created_at: datetime
    metadata: ResponseMetadata = Field(default_factory=dict)


class TextContent(FrozenModel):
    value: str
    annotations: List[Dict[str, Any]] = Field(default_factory=list)


class MessageContent(FrozenModel):
    """One content part of a message: text, or a reference to an image file."""

    type: str
    text: Optional[TextContent] = None
    image_file: Optional[Dict[str, Any]] = None


class ThreadMessage(FrozenModel):
    """Represents a message within a thread."""

    id: str
    object: str = "thread.message"
    created_at: datetime
    thread_id: str
    role: str  # "user" or "assistant"
    content: List[MessageContent] = Field(default_factory=list)
    assistant_id: Optional[str] = None
    run_id: Optional[str] = None
    metadata: ResponseMetadata = Field(default_factory=dict)

    @property
    def text(self) -> str:
        """Concatenated text of every text part."""
        return "\n".join(part.text.value for part in self.content if part.text is not None)


class DeletedResponse(FrozenModel):
    id: str
    object: str
    deleted: bool


class ListResponse(FrozenModel, Generic[T]):
    """A page of a cursor-paginated listing."""

    object: str = "list"
    data: List[T]
    first_id: Optional[str] = None
    last_id: Optional[str] = None
    has_more: bool = False


class ThreadMessagesList(ListResponse[ThreadMessage]):
    """Response containing messages from a thread."""


class ThreadMessageFile(FrozenModel):
    """A file attached to a message."""

    id: str
    object: str = "thread.message.file"
    created_at: datetime
    message_id: str


class ThreadMessageFilesList(ListResponse[ThreadMessageFile]):
    """Response containing the files attached to a message."""


class CreateMessageRequest(BaseModel):
    """Options for creating a message, standalone or as part of a new thread."""

    content: str
    role: str = "user"
    file_ids: Optional[List[str]] = None
    metadata: Optional[RequestMetadata] = None

    @field_validator("content")
    @classmethod
    def _content_not_blank(cls, value: str) -> str:
        if not value.strip():
            raise ValueError("content must be a non-empty string")
        return value

    @field_validator("role")
    @classmethod
    def _known_role(cls, value: str) -> str:
        if value not in ("user", "assistant"):
            raise ValueError("role must be 'user' or 'assistant'")
        return value


class CreateThreadRequest(BaseModel):
    """Options for creating a thread."""

    messages: Optional[List[CreateMessageRequest]] = None
    metadata: Optional[RequestMetadata] = None
