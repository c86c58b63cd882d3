# src/medinet/schemas/message.py
"""Direct messaging schemas."""

from typing import Literal

from pydantic import BaseModel, ConfigDict, Field, model_validator

from medinet.schemas.common import UtcDatetime
from medinet.schemas.post import AuthorOut

AttachmentType = Literal["image", "document", "video", "audio"]


class MessageSend(BaseModel):
    """Schema for sending a message to a user or into a conversation."""

    recipient_id: int | None = Field(None, gt=0)
    conversation_id: int | None = Field(None, gt=0)
    content: str | None = Field(None, max_length=5000)
    attachment_url: str | None = Field(None, max_length=1000)
    attachment_type: AttachmentType | None = None
    attachment_name: str | None = Field(None, max_length=255)

    @model_validator(mode="after")
    def _require_target(self) -> "MessageSend":
        if self.recipient_id is None and self.conversation_id is None:
            raise ValueError("Either recipient_id or conversation_id is required")
        return self


class MessageEdit(BaseModel):
    content: str = Field(..., min_length=1, max_length=5000)


class MessageForward(BaseModel):
    recipient_id: int | None = Field(None, gt=0)
    conversation_id: int | None = Field(None, gt=0)
    content: str | None = Field(None, max_length=5000, description="Optional override text")

    @model_validator(mode="after")
    def _require_target(self) -> "MessageForward":
        if self.recipient_id is None and self.conversation_id is None:
            raise ValueError("Either recipient_id or conversation_id is required")
        return self


class ReactionCreate(BaseModel):
    reaction_type: str = Field(..., min_length=1, max_length=10)


class MessageOut(BaseModel):
    id: int
    conversation_id: int
    sender_id: int
    content: str
    attachment_url: str | None = None
    attachment_type: str | None = None
    attachment_name: str | None = None
    forwarded_from_message_id: int | None = None
    is_read: bool
    read_at: UtcDatetime | None = None
    delivered_at: UtcDatetime | None = None
    delivery_status: str
    edited_at: UtcDatetime | None = None
    deleted_at: UtcDatetime | None = None
    created_at: UtcDatetime
    sender: AuthorOut | None = None

    model_config = ConfigDict(from_attributes=True)
