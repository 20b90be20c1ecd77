"""Redis-backed job queue for push notification delivery."""

from typing import Any, Dict
from redis import Redis
from rq import Queue
from chathub.infra.config import config

# Initialize Redis connection
redis_conn = Redis.from_url(config.REDIS_URL)

push_queue = Queue("push_notifications", connection=redis_conn)


def enqueue_push_notification(notification: Dict[str, Any]) -> str:
    """
    Enqueue a push notification for a worker process.

    Args:
        notification: PushNotification as dict

    Returns:
        Job ID for tracking
    """
    from chathub.workers.push_worker import deliver_push_notification

    job = push_queue.enqueue(
        deliver_push_notification,
        notification,
        job_timeout=60,
        result_ttl=3600,  # Keep result for 1 hour
        failure_ttl=24 * 3600,
    )
    return job.id
