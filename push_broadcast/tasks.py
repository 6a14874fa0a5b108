from __future__ import annotations

import logging
from functools import lru_cache
from typing import Any, Dict, List

from celery import shared_task

from .channels import ExpoPushChannel
from .config import DATABASE_URL
from .models import NotificationPayload
from .registry import PushTokenRegistry, create_session_factory
from .service import BroadcastDispatcher

LOGGER = logging.getLogger(__name__)


@lru_cache(maxsize=1)
def get_dispatcher() -> BroadcastDispatcher:
    registry = PushTokenRegistry(create_session_factory(DATABASE_URL))
    return BroadcastDispatcher(registry, ExpoPushChannel.from_env())


@shared_task(name="push_broadcast.tasks.broadcast_to_all")
def broadcast_to_all(payload: Dict[str, Any]) -> Dict[str, Any]:
    result = get_dispatcher().send_to_all(payload)
    LOGGER.info("Background broadcast finished: %d sent, %d failed", result.sent, result.failed)
    return result.to_dict()


@shared_task(name="push_broadcast.tasks.broadcast_to_tokens")
def broadcast_to_tokens(tokens: List[str], payload: Dict[str, Any]) -> Dict[str, Any]:
    result = get_dispatcher().send_to_tokens(tokens, payload)
    LOGGER.info("Background targeted broadcast finished: %d sent, %d failed", result.sent, result.failed)
    return result.to_dict()


def enqueue_broadcast(payload: NotificationPayload) -> str:
    """Queue a broadcast to every registered device and return the task id."""
    async_result = broadcast_to_all.delay(payload.to_dict())
    LOGGER.info("Queued broadcast '%s' as task %s", payload.title, async_result.id)
    return async_result.id
