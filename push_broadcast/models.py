from __future__ import annotations

from dataclasses import dataclass, field
from types import MappingProxyType
from typing import Any, Dict, List, Mapping, Optional

from .config import DEFAULT_CHANNEL_ID, DEFAULT_PRIORITY, DEFAULT_SOUND
from .exceptions import ValidationError


def _require_text(value: Any) -> str:
    if not isinstance(value, str) or not value:
        raise ValidationError("Title and body are required")
    return value


@dataclass(frozen=True, slots=True)
class NotificationPayload:
    """Content shared by every message of a single broadcast."""

    title: str
    body: str
    data: Mapping[str, Any] = field(default_factory=dict)
    image_url: Optional[str] = None

    def __post_init__(self) -> None:
        _require_text(self.title)
        _require_text(self.body)
        if self.data is None:
            object.__setattr__(self, "data", MappingProxyType({}))
        elif not isinstance(self.data, Mapping):
            raise ValidationError("data must be an object")
        else:
            object.__setattr__(self, "data", MappingProxyType(dict(self.data)))
        if self.image_url is not None and not isinstance(self.image_url, str):
            raise ValidationError("imageUrl must be a string")
        if not self.image_url:
            object.__setattr__(self, "image_url", None)

    @classmethod
    def from_mapping(cls, raw: Mapping[str, Any]) -> "NotificationPayload":
        """Build a payload from a request body (``imageUrl`` or ``image_url``)."""
        if not isinstance(raw, Mapping):
            raise ValidationError("Title and body are required")
        image_url = raw.get("imageUrl")
        if image_url is None:
            image_url = raw.get("image_url")
        return cls(
            title=raw.get("title"),
            body=raw.get("body"),
            data=raw.get("data") or {},
            image_url=image_url,
        )

    def message_data(self) -> Dict[str, Any]:
        # payload data first, then imageUrl overrides
        merged = dict(self.data)
        if self.image_url:
            merged["imageUrl"] = self.image_url
        return merged

    def to_dict(self) -> Dict[str, Any]:
        payload: Dict[str, Any] = {"title": self.title, "body": self.body, "data": dict(self.data)}
        if self.image_url:
            payload["imageUrl"] = self.image_url
        return payload


@dataclass(frozen=True, slots=True)
class PushMessage:
    """One provider message addressed to a single device token."""

    to: str
    title: str
    body: str
    data: Dict[str, Any] = field(default_factory=dict)
    sound: str = DEFAULT_SOUND
    priority: str = DEFAULT_PRIORITY
    channel_id: str = DEFAULT_CHANNEL_ID
    attachments: Optional[List[Dict[str, str]]] = None

    def to_dict(self) -> Dict[str, Any]:
        message: Dict[str, Any] = {
            "to": self.to,
            "sound": self.sound,
            "title": self.title,
            "body": self.body,
            "data": dict(self.data),
            "priority": self.priority,
            "channelId": self.channel_id,
        }
        if self.attachments:
            message["attachments"] = [dict(item) for item in self.attachments]
        return message


@dataclass(frozen=True, slots=True)
class PushReceipt:
    """Provider acknowledgement (ticket) for one submitted message."""

    status: str
    id: Optional[str] = None
    message: Optional[str] = None
    details: Dict[str, Any] = field(default_factory=dict)

    @property
    def ok(self) -> bool:
        return self.status == "ok"

    @classmethod
    def from_dict(cls, raw: Mapping[str, Any]) -> "PushReceipt":
        details = raw.get("details")
        return cls(
            status=str(raw.get("status") or "error"),
            id=raw.get("id"),
            message=raw.get("message"),
            details=dict(details) if isinstance(details, Mapping) else {},
        )

    def to_dict(self) -> Dict[str, Any]:
        ticket: Dict[str, Any] = {"status": self.status}
        if self.id is not None:
            ticket["id"] = self.id
        if self.message is not None:
            ticket["message"] = self.message
        if self.details:
            ticket["details"] = dict(self.details)
        return ticket


@dataclass(frozen=True, slots=True)
class BatchOutcome:
    """Result of one provider call: receipts, or the transport error that lost the batch."""

    size: int
    receipts: Optional[List[PushReceipt]] = None
    error: Optional[str] = None

    @classmethod
    def delivered(cls, size: int, receipts: List[PushReceipt]) -> "BatchOutcome":
        return cls(size=size, receipts=list(receipts))

    @classmethod
    def lost(cls, size: int, error: str) -> "BatchOutcome":
        return cls(size=size, error=error)

    @property
    def ok(self) -> bool:
        return self.receipts is not None


@dataclass(slots=True)
class BroadcastResult:
    """Aggregate delivery accounting for a broadcast."""

    success: bool = True
    sent: int = 0
    failed: int = 0
    tickets: List[PushReceipt] = field(default_factory=list)
    message: Optional[str] = None
    cancelled: bool = False

    @property
    def total(self) -> int:
        return self.sent + self.failed

    def record(self, outcome: BatchOutcome) -> None:
        if not outcome.ok:
            self.failed += outcome.size
            return
        for receipt in outcome.receipts:
            self.tickets.append(receipt)
            if receipt.ok:
                self.sent += 1
            else:
                self.failed += 1
        # messages the provider returned no receipt for
        self.failed += max(outcome.size - len(outcome.receipts), 0)

    def to_dict(self) -> Dict[str, Any]:
        result: Dict[str, Any] = {
            "success": self.success,
            "sent": self.sent,
            "failed": self.failed,
            "total": self.total,
            "tickets": [ticket.to_dict() for ticket in self.tickets],
        }
        if self.message:
            result["message"] = self.message
        if self.cancelled:
            result["cancelled"] = True
        return result
