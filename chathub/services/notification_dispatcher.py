"""Best-effort push notification fan-out, decoupled from message persistence.

The lifecycle engine hands a ``PushNotification`` to ``dispatch``, which only
enqueues it and returns. A background worker resolves recipient tokens,
batches them and calls the push provider. Nothing in this module raises back
into the caller: failures are logged and counted, never retried.
"""

import asyncio
import logging
from dataclasses import asdict, dataclass, field
from typing import Any, Callable, Dict, List, Optional

from chathub.adapters.push_client import MulticastResult, PushClient
from chathub.infra.circuit_breaker import CircuitBreaker, CircuitOpenError, push_circuit_breaker
from chathub.infra.config import config
from chathub.infra.errors import UpstreamUnavailable
from chathub.infra.metrics import notification_queue_depth, notifications_total, push_tokens_total

logger = logging.getLogger(__name__)


@dataclass
class PushNotification:
    """Notification for every user with a push token except the author."""
    title: str
    body: str
    author_id: str
    data: Dict[str, Any] = field(default_factory=dict)

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)

    @classmethod
    def from_dict(cls, payload: Dict[str, Any]) -> "PushNotification":
        return cls(**payload)


def chunk_tokens(tokens: List[str], size: int) -> List[List[str]]:
    return [tokens[i:i + size] for i in range(0, len(tokens), size)]


class NotificationDispatcher:
    """Queue-backed hand-off between the lifecycle engine and the push provider."""

    def __init__(
        self,
        push_client: PushClient,
        recipient_tokens: Callable[[str], List[str]],
        breaker: Optional[CircuitBreaker] = None,
        batch_size: Optional[int] = None,
        queue_size: Optional[int] = None,
        enqueue_external: Optional[Callable[[Dict[str, Any]], str]] = None,
    ):
        """
        Args:
            push_client: Provider client used by the in-process worker
            recipient_tokens: Returns push tokens of all users except the given author id
            breaker: Circuit breaker guarding provider calls
            batch_size: Maximum tokens per multicast call
            queue_size: In-process queue capacity; hand-offs beyond it are dropped
            enqueue_external: When set, notifications go to this external queue
                (e.g. RQ) instead of the in-process worker
        """
        self.push_client = push_client
        self.recipient_tokens = recipient_tokens
        self.breaker = breaker or push_circuit_breaker
        self.batch_size = batch_size or config.PUSH_BATCH_SIZE
        self.enqueue_external = enqueue_external
        self._queue: "asyncio.Queue[PushNotification]" = asyncio.Queue(
            maxsize=queue_size or config.NOTIFICATION_QUEUE_SIZE
        )
        self._worker: Optional[asyncio.Task] = None

    def dispatch(self, notification: PushNotification) -> bool:
        """Hand off without waiting. Returns False if the notification was dropped."""
        if self.enqueue_external is not None:
            try:
                job_id = self.enqueue_external(notification.to_dict())
            except Exception as e:
                logger.error(f"Failed to enqueue push notification: {e}", exc_info=True)
                notifications_total.labels(status="dropped").inc()
                return False
            logger.debug("Push notification enqueued", extra={"job_id": job_id})
            notifications_total.labels(status="queued").inc()
            return True

        try:
            self._queue.put_nowait(notification)
        except asyncio.QueueFull:
            logger.warning("Notification queue full; dropping push notification")
            notifications_total.labels(status="dropped").inc()
            return False
        notifications_total.labels(status="queued").inc()
        notification_queue_depth.set(self._queue.qsize())
        return True

    async def deliver(self, notification: PushNotification) -> MulticastResult:
        """Resolve recipients and send in batches. Never raises."""
        try:
            tokens = self.recipient_tokens(notification.author_id)
        except Exception as e:
            logger.error(f"Could not resolve push recipients: {e}", exc_info=True)
            notifications_total.labels(status="failed").inc()
            return MulticastResult(success_count=0, failure_count=0)

        total = MulticastResult(success_count=0, failure_count=0)
        for batch in chunk_tokens(tokens, self.batch_size):
            try:
                result = await self.breaker.call_async(
                    self.push_client.send_multicast,
                    notification.title,
                    notification.body,
                    batch,
                    notification.data,
                )
            except (UpstreamUnavailable, CircuitOpenError) as e:
                logger.warning(f"Push multicast failed: {e}", extra={"tokens": len(batch)})
                total.failure_count += len(batch)
                continue
            except Exception as e:
                logger.error(f"Unexpected push multicast error: {e}", exc_info=True)
                total.failure_count += len(batch)
                continue
            total.success_count += result.success_count
            total.failure_count += result.failure_count

        push_tokens_total.labels(outcome="success").inc(total.success_count)
        push_tokens_total.labels(outcome="failure").inc(total.failure_count)
        notifications_total.labels(status="sent" if total.failure_count == 0 else "failed").inc()
        logger.info(
            "Push notification delivered",
            extra={
                "success_count": total.success_count,
                "failure_count": total.failure_count,
                "message_id": notification.data.get("messageId"),
            },
        )
        return total

    async def _run(self) -> None:
        while True:
            notification = await self._queue.get()
            notification_queue_depth.set(self._queue.qsize())
            try:
                await self.deliver(notification)
            finally:
                self._queue.task_done()

    def start(self) -> None:
        """Start the worker on the running loop, keeping anything queued before startup."""
        if self._worker is not None and not self._worker.done():
            return
        pending = []
        while not self._queue.empty():
            pending.append(self._queue.get_nowait())
        # A fresh queue binds to the current loop
        self._queue = asyncio.Queue(maxsize=self._queue.maxsize)
        for notification in pending:
            self._queue.put_nowait(notification)
        self._worker = asyncio.create_task(self._run(), name="notification-dispatcher")

    async def stop(self) -> None:
        if self._worker is not None:
            self._worker.cancel()
            try:
                await self._worker
            except asyncio.CancelledError:
                pass
            self._worker = None
        await self.push_client.close()

    async def drain(self) -> None:
        """Wait until every queued notification has been processed."""
        await self._queue.join()

    @property
    def pending(self) -> int:
        return self._queue.qsize()
