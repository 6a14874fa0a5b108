from __future__ import annotations

import logging
import threading
from typing import Any, Iterable, Iterator, List, Mapping, Optional, Sequence, Union

from .channels import PushChannel
from .exceptions import ProviderTransportError, ValidationError
from .models import BatchOutcome, BroadcastResult, NotificationPayload, PushMessage

LOGGER = logging.getLogger(__name__)

PayloadLike = Union[NotificationPayload, Mapping[str, Any]]


def coerce_payload(payload: PayloadLike) -> NotificationPayload:
    if isinstance(payload, NotificationPayload):
        return payload
    return NotificationPayload.from_mapping(payload)


def build_message(token: str, payload: NotificationPayload) -> PushMessage:
    attachments = None
    if payload.image_url:
        # iOS rich notification attachment
        attachments = [{"url": payload.image_url, "thumbnailUrl": payload.image_url}]
    return PushMessage(
        to=token,
        title=payload.title,
        body=payload.body,
        data=payload.message_data(),
        attachments=attachments,
    )


def chunk_messages(messages: Sequence[PushMessage], size: int) -> Iterator[Sequence[PushMessage]]:
    """Yield contiguous slices of at most ``size`` messages, preserving order."""
    if size < 1:
        raise ValueError("batch size must be positive")
    for start in range(0, len(messages), size):
        yield messages[start:start + size]


class BroadcastDispatcher:
    """Fan a notification out to many device tokens in provider-sized batches.

    A failed batch is counted as failed in full and never aborts the
    broadcast; only bad input or a failing registry lookup raise.
    """

    def __init__(self, registry, channel: PushChannel):
        self.registry = registry
        self.channel = channel

    def send_to_all(
        self,
        payload: PayloadLike,
        *,
        cancel_event: Optional[threading.Event] = None,
    ) -> BroadcastResult:
        notification = coerce_payload(payload)
        tokens = list(self.registry.list_addresses())
        if not tokens:
            return BroadcastResult(message="No tokens registered")
        return self._broadcast(tokens, notification, cancel_event)

    def send_to_tokens(
        self,
        tokens: Sequence[str],
        payload: PayloadLike,
        *,
        cancel_event: Optional[threading.Event] = None,
    ) -> BroadcastResult:
        if not isinstance(tokens, (list, tuple)) or not tokens:
            raise ValidationError("Tokens array is required")
        notification = coerce_payload(payload)
        return self._broadcast(list(tokens), notification, cancel_event)

    def build_messages(self, tokens: Iterable[Any], payload: NotificationPayload) -> List[PushMessage]:
        messages: List[PushMessage] = []
        for token in tokens:
            if self.channel.is_valid_address(token):
                messages.append(build_message(token, payload))
            else:
                LOGGER.warning("Invalid push token: %s", token)
        return messages

    def send_batch(self, batch: Sequence[PushMessage]) -> BatchOutcome:
        try:
            receipts = self.channel.send_batch(batch)
        except ProviderTransportError as exc:
            LOGGER.error("Error sending notification batch of %d: %s", len(batch), exc)
            return BatchOutcome.lost(len(batch), str(exc))
        except Exception as exc:
            LOGGER.exception("Unexpected error sending notification batch of %d", len(batch))
            return BatchOutcome.lost(len(batch), str(exc) or exc.__class__.__name__)
        return BatchOutcome.delivered(len(batch), receipts)

    def _broadcast(
        self,
        tokens: List[Any],
        payload: NotificationPayload,
        cancel_event: Optional[threading.Event],
    ) -> BroadcastResult:
        messages = self.build_messages(tokens, payload)
        if not messages:
            return BroadcastResult(message="No valid tokens")

        result = BroadcastResult()
        for batch in chunk_messages(messages, self.channel.max_batch_size):
            if cancel_event is not None and cancel_event.is_set():
                LOGGER.warning(
                    "Broadcast '%s' cancelled after %d of %d messages",
                    payload.title,
                    result.total,
                    len(messages),
                )
                result.cancelled = True
                break
            result.record(self.send_batch(batch))

        LOGGER.info(
            "Broadcast '%s': %d sent, %d failed, %d skipped",
            payload.title,
            result.sent,
            result.failed,
            len(tokens) - len(messages),
        )
        return result
