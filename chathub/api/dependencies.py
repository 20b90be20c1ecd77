"""Shared service instances for routers and the WebSocket endpoint."""

from functools import lru_cache

from fastapi import Depends, HTTPException, status

from chathub.adapters.push_client import PushClient
from chathub.infra.auth import get_current_user_id
from chathub.infra.config import config
from chathub.infra.database import SessionLocal
from chathub.infra.rate_limiter import RateLimiter, build_rate_limiter
from chathub.models.user import UserProfile
from chathub.realtime.gateway import ConnectionManager, connection_manager
from chathub.services.identity import UserDirectory
from chathub.services.lifecycle import MessageLifecycleEngine
from chathub.services.message_store import MessageStore
from chathub.services.notification_dispatcher import NotificationDispatcher


@lru_cache
def get_message_store() -> MessageStore:
    return MessageStore(SessionLocal)


@lru_cache
def get_user_directory() -> UserDirectory:
    return UserDirectory(SessionLocal)


@lru_cache
def get_rate_limiter() -> RateLimiter:
    return build_rate_limiter()


@lru_cache
def get_notification_dispatcher() -> NotificationDispatcher:
    enqueue = None
    if config.NOTIFICATION_BACKEND == "rq":
        from chathub.infra.queue import enqueue_push_notification
        enqueue = enqueue_push_notification
    return NotificationDispatcher(
        PushClient(),
        recipient_tokens=get_user_directory().push_tokens_except,
        enqueue_external=enqueue,
    )


def get_connection_manager() -> ConnectionManager:
    return connection_manager


def get_lifecycle_engine(
    store: MessageStore = Depends(get_message_store),
    directory: UserDirectory = Depends(get_user_directory),
    rate_limiter: RateLimiter = Depends(get_rate_limiter),
    dispatcher: NotificationDispatcher = Depends(get_notification_dispatcher),
) -> MessageLifecycleEngine:
    return MessageLifecycleEngine(store, directory, rate_limiter, dispatcher)


async def get_current_user(
    user_id: str = Depends(get_current_user_id),
    directory: UserDirectory = Depends(get_user_directory),
) -> UserProfile:
    """Authenticated caller, resolved against the identity store."""
    user = directory.resolve_user(user_id)
    if user is None:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Not authorized, user not found",
            headers={"WWW-Authenticate": "Bearer"},
        )
    return user
