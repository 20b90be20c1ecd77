"""Worker function for delivering queued push notifications."""

import logging
from typing import Any, Dict

from chathub.adapters.push_client import send_multicast_sync
from chathub.infra.circuit_breaker import CircuitOpenError, push_circuit_breaker
from chathub.infra.config import config
from chathub.infra.database import SessionLocal
from chathub.infra.errors import UpstreamUnavailable
from chathub.services.identity import UserDirectory
from chathub.services.notification_dispatcher import PushNotification, chunk_tokens

logger = logging.getLogger(__name__)


def deliver_push_notification(payload: Dict[str, Any]) -> Dict[str, Any]:
    """
    Deliver one notification (called by RQ worker).

    Failures are logged and reported in the result, never retried.

    Args:
        payload: PushNotification as dict

    Returns:
        Result dict with success and failure counts
    """
    notification = PushNotification.from_dict(payload)
    tokens = UserDirectory(SessionLocal).push_tokens_except(notification.author_id)

    success_count = 0
    failure_count = 0
    for batch in chunk_tokens(tokens, config.PUSH_BATCH_SIZE):
        try:
            result = push_circuit_breaker.call(
                send_multicast_sync,
                notification.title,
                notification.body,
                batch,
                notification.data,
            )
        except (UpstreamUnavailable, CircuitOpenError) as e:
            logger.warning(f"Push multicast failed: {e}", extra={"tokens": len(batch)})
            failure_count += len(batch)
            continue
        success_count += result.success_count
        failure_count += result.failure_count

    logger.info(
        "Queued push notification delivered",
        extra={"success_count": success_count, "failure_count": failure_count},
    )
    return {"success_count": success_count, "failure_count": failure_count}
