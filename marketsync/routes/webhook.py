# marketsync/routes/webhook.py
"""
Mercado Livre notification endpoint.

Not behind basic auth: Mercado Livre posts here directly. Processing failures
still answer 200 so the notification is not redelivered in a loop.
"""
import logging
from typing import Optional

from fastapi import APIRouter, Depends

from marketsync.core.exceptions import BaseServiceError
from marketsync.core.utils import utcnow
from marketsync.dependencies import get_sync_service
from marketsync.schemas.sync import WebhookNotification
from marketsync.services.sync_service import SyncService

logger = logging.getLogger(__name__)
router = APIRouter(prefix="/api/ml", tags=["webhooks"])


@router.post("/webhook")
async def receive_notification(
    notification: WebhookNotification,
    service: SyncService = Depends(get_sync_service),
):
    logger.info(f"Notification {notification.topic} for seller {notification.user_id}: {notification.resource}")
    try:
        return await service.process_notification(notification)
    except BaseServiceError as e:
        logger.error(f"Failed to process notification {notification.resource}: {e}", exc_info=True)
        return {"status": "error", "detail": str(e)}


@router.get("/webhook")
async def verify_endpoint(challenge: Optional[str] = None):
    """Endpoint check used when registering the notification URL"""
    if challenge:
        return {"challenge": challenge}
    return {"status": "active", "timestamp": utcnow().isoformat()}
