"""API request/response models."""

from typing import Any, Dict, List, Optional
from pydantic import Field

from chathub.models.message import MAX_CHANNEL_LENGTH, SystemPayload, WireModel


# ============================================================================
# Messages Models
# ============================================================================

class CreateMessageRequest(WireModel):
    """Request model for creating a message over HTTP (text only)."""
    text: str = Field(..., description="Message text", example="Anyone up for the hackathon this weekend?")
    channel: Optional[str] = Field(
        None, max_length=MAX_CHANNEL_LENGTH, description="Channel name, defaults to 'general'", example="general"
    )


class UpdateMessageRequest(WireModel):
    """Request model for editing a message."""
    text: str = Field(..., description="Replacement text", example="Anyone up for the hackathon on Saturday?")


class MarkDeliveredRequest(WireModel):
    """Request model for bulk delivery confirmation."""
    message_ids: List[str] = Field(..., description="Messages the client has received", example=["5f0c..."])


class SystemMessageRequest(WireModel):
    """Request model for posting a system notice."""
    channel: Optional[str] = Field(None, max_length=MAX_CHANNEL_LENGTH, example="general")
    payload: SystemPayload = Field(..., description="Tagged system message body")


class MessageListResponse(WireModel):
    """Response model for paginated channel history."""
    messages: List[Dict[str, Any]]
    page: int
    limit: int
    total: Optional[int] = None
    has_more: bool = False
    next_cursor: Optional[str] = None


class MessageSearchResponse(WireModel):
    """Response model for message search."""
    messages: List[Dict[str, Any]]
    count: int
    query: str


class UserMessagesResponse(WireModel):
    """Response model for an author's message history."""
    messages: List[Dict[str, Any]]
    count: int
    user_id: str


class MarkDeliveredResponse(WireModel):
    """Response model for delivery confirmation."""
    updated: int


class DeleteMessageResponse(WireModel):
    """Response model for soft delete."""
    success: bool = True
    message: Dict[str, Any]
