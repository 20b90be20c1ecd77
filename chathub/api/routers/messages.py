"""Messages API router.

Read paths query the message store directly. Write paths go through the
lifecycle engine and broadcast the result to connected clients, the same way
the real-time gateway does.
"""

from typing import Optional
from fastapi import APIRouter, Depends, Query, Response, status

from chathub.api.dependencies import (
    get_connection_manager,
    get_current_user,
    get_lifecycle_engine,
    get_message_store,
    get_rate_limiter,
)
from chathub.api.models import (
    CreateMessageRequest,
    DeleteMessageResponse,
    MarkDeliveredRequest,
    MarkDeliveredResponse,
    MessageListResponse,
    MessageSearchResponse,
    SystemMessageRequest,
    UpdateMessageRequest,
    UserMessagesResponse,
)
from chathub.infra.config import config
from chathub.infra.rate_limiter import RateLimiter, get_rate_limit_headers
from chathub.models.events import ServerEvent, envelope
from chathub.models.user import UserProfile
from chathub.realtime.gateway import ConnectionManager
from chathub.services.lifecycle import MessageLifecycleEngine
from chathub.services.message_store import MessageStore
from chathub.services.previews import present

router = APIRouter()


@router.get("/messages", tags=["Messages"], response_model=MessageListResponse)
async def list_messages(
    page: int = Query(1, ge=1, description="Page number, 1 = newest messages"),
    limit: int = Query(50, ge=1, le=100, description="Messages per page"),
    channel: Optional[str] = Query(None, description="Channel name, defaults to 'general'"),
    cursor: Optional[str] = Query(None, description="Keyset cursor from a previous page's nextCursor"),
    user: UserProfile = Depends(get_current_user),
    store: MessageStore = Depends(get_message_store),
):
    """
    Channel history, oldest first within the page.

    Deleted messages are excluded. Pass `cursor` to continue scrolling back
    without skipping or repeating messages while new ones arrive; otherwise
    `page` selects by position.
    """
    channel = channel or config.CHAT_DEFAULT_CHANNEL
    if cursor:
        result = store.page(channel, cursor=cursor, limit=limit)
    else:
        result = store.page_by_number(channel, page=page, limit=limit)

    return MessageListResponse(
        messages=[present(message) for message in result.messages],
        page=page,
        limit=limit,
        total=result.total,
        has_more=result.has_more,
        next_cursor=result.next_cursor,
    )


@router.post("/messages", tags=["Messages"], status_code=status.HTTP_201_CREATED)
async def create_message(
    body: CreateMessageRequest,
    response: Response,
    user: UserProfile = Depends(get_current_user),
    engine: MessageLifecycleEngine = Depends(get_lifecycle_engine),
    manager: ConnectionManager = Depends(get_connection_manager),
    rate_limiter: RateLimiter = Depends(get_rate_limiter),
):
    """
    Create a text message. Media attachments and replies are only available
    over the real-time connection.
    """
    message = await engine.create_message(user.id, text=body.text, channel=body.channel)
    payload = present(message)
    await manager.broadcast(message.channel, envelope(ServerEvent.MESSAGE_CREATED, payload))
    response.headers.update(get_rate_limit_headers(rate_limiter, user.id))
    return payload


@router.get("/messages/search", tags=["Messages"], response_model=MessageSearchResponse)
async def search_messages(
    query: str = Query(..., min_length=1, max_length=200, description="Text to look for"),
    channel: Optional[str] = Query(None, description="Restrict to one channel"),
    user: UserProfile = Depends(get_current_user),
    store: MessageStore = Depends(get_message_store),
):
    """Case-insensitive search over message text and author names."""
    messages = store.search(channel, query, limit=config.CHAT_SEARCH_LIMIT)
    return MessageSearchResponse(
        messages=[present(message) for message in messages],
        count=len(messages),
        query=query,
    )


@router.get("/messages/user/{user_id}", tags=["Messages"], response_model=UserMessagesResponse)
async def list_user_messages(
    user_id: str,
    limit: int = Query(50, ge=1, le=100),
    user: UserProfile = Depends(get_current_user),
    store: MessageStore = Depends(get_message_store),
):
    """A user's messages across channels, newest first."""
    messages = store.list_by_author(user_id, limit=limit)
    return UserMessagesResponse(
        messages=[present(message) for message in messages],
        count=len(messages),
        user_id=user_id,
    )


@router.post("/messages/delivered", tags=["Messages"], response_model=MarkDeliveredResponse)
async def mark_messages_delivered(
    body: MarkDeliveredRequest,
    user: UserProfile = Depends(get_current_user),
    engine: MessageLifecycleEngine = Depends(get_lifecycle_engine),
):
    """Move the given messages from 'sent' to 'delivered'."""
    updated = await engine.mark_delivered(body.message_ids)
    return MarkDeliveredResponse(updated=updated)


@router.post("/messages/system", tags=["Messages"], status_code=status.HTTP_201_CREATED)
async def post_system_message(
    body: SystemMessageRequest,
    user: UserProfile = Depends(get_current_user),
    engine: MessageLifecycleEngine = Depends(get_lifecycle_engine),
    manager: ConnectionManager = Depends(get_connection_manager),
):
    """Post a system notice (admins only)."""
    message = await engine.post_system_message(user.id, body.channel, body.payload)
    payload = present(message)
    await manager.broadcast(message.channel, envelope(ServerEvent.MESSAGE_CREATED, payload))
    return payload


@router.put("/messages/{message_id}", tags=["Messages"])
async def update_message(
    message_id: str,
    body: UpdateMessageRequest,
    user: UserProfile = Depends(get_current_user),
    engine: MessageLifecycleEngine = Depends(get_lifecycle_engine),
    manager: ConnectionManager = Depends(get_connection_manager),
):
    """Edit your own message within the edit window."""
    result = await engine.edit_message(user.id, message_id, body.text)
    payload = present(result.message)
    if result.changed:
        await manager.broadcast(result.message.channel, envelope(ServerEvent.MESSAGE_UPDATED, payload))
    return payload


@router.delete("/messages/{message_id}", tags=["Messages"], response_model=DeleteMessageResponse)
async def delete_message(
    message_id: str,
    user: UserProfile = Depends(get_current_user),
    engine: MessageLifecycleEngine = Depends(get_lifecycle_engine),
    manager: ConnectionManager = Depends(get_connection_manager),
):
    """Soft-delete a message (author or admin)."""
    result = await engine.delete_message(user.id, message_id)
    payload = present(result.message)
    if result.changed:
        await manager.broadcast(result.message.channel, envelope(ServerEvent.MESSAGE_UPDATED, payload))
    return DeleteMessageResponse(message=payload)
