from __future__ import annotations

import logging
import re
from typing import Any, Dict, List, Optional, Protocol, Sequence

import requests

from .config import EXPO_ACCESS_TOKEN, EXPO_MAX_BATCH_SIZE, EXPO_PUSH_URL, EXPO_REQUEST_TIMEOUT
from .exceptions import ProviderTransportError
from .models import PushMessage, PushReceipt

LOGGER = logging.getLogger(__name__)

_TOKEN_PREFIXES = ("ExponentPushToken[", "ExpoPushToken[")
_UUID_TOKEN = re.compile(r"^[a-z\d]{8}-[a-z\d]{4}-[a-z\d]{4}-[a-z\d]{4}-[a-z\d]{12}$", re.IGNORECASE)


class PushChannel(Protocol):
    """Provider operations the dispatcher relies on."""

    max_batch_size: int

    def is_valid_address(self, token: Any) -> bool: ...

    def send_batch(self, messages: Sequence[PushMessage]) -> List[PushReceipt]: ...


def is_expo_push_token(token: Any) -> bool:
    """Return True when ``token`` looks like an Expo push token."""
    if not isinstance(token, str):
        return False
    if token.startswith(_TOKEN_PREFIXES) and token.endswith("]"):
        return True
    return bool(_UUID_TOKEN.match(token))


class ExpoPushChannel:
    """Push provider backed by the Expo push service HTTP API."""

    def __init__(
        self,
        access_token: Optional[str] = None,
        push_url: str = EXPO_PUSH_URL,
        max_batch_size: int = EXPO_MAX_BATCH_SIZE,
        timeout: float = EXPO_REQUEST_TIMEOUT,
        session: Optional[requests.Session] = None,
    ):
        if max_batch_size < 1:
            raise ValueError("max_batch_size must be positive")
        self.access_token = access_token
        self.push_url = push_url
        self.max_batch_size = max_batch_size
        self.timeout = timeout
        self._session = session or requests.Session()

    @classmethod
    def from_env(cls) -> "ExpoPushChannel":
        return cls(access_token=EXPO_ACCESS_TOKEN)

    @staticmethod
    def is_valid_address(token: Any) -> bool:
        return is_expo_push_token(token)

    def _headers(self) -> Dict[str, str]:
        headers = {
            "Accept": "application/json",
            "Accept-Encoding": "gzip, deflate",
            "Content-Type": "application/json",
        }
        if self.access_token:
            headers["Authorization"] = f"Bearer {self.access_token}"
        return headers

    def send_batch(self, messages: Sequence[PushMessage]) -> List[PushReceipt]:
        """Submit one batch and return a receipt per message, in order."""
        if len(messages) > self.max_batch_size:
            raise ValueError(f"Batch of {len(messages)} exceeds the limit of {self.max_batch_size}")
        if not messages:
            return []

        payload = [message.to_dict() for message in messages]
        try:
            resp = self._session.post(self.push_url, headers=self._headers(), json=payload, timeout=self.timeout)
        except requests.RequestException as exc:
            raise ProviderTransportError(f"Expo push request failed: {exc}") from exc

        if resp.status_code >= 400:
            raise ProviderTransportError(
                f"Expo push service responded with {resp.status_code}: {resp.text[:120]}",
                status_code=resp.status_code,
            )

        try:
            body = resp.json()
        except ValueError as exc:
            raise ProviderTransportError("Expo push service returned a non-JSON body", status_code=resp.status_code) from exc

        if not isinstance(body, dict):
            raise ProviderTransportError("Expo push service returned an unexpected body", status_code=resp.status_code)

        errors = body.get("errors")
        if errors:
            first = errors[0] if isinstance(errors, list) and errors else errors
            detail = first.get("message") if isinstance(first, dict) else str(first)
            raise ProviderTransportError(f"Expo push service rejected the batch: {detail}", status_code=resp.status_code)

        data = body.get("data")
        if not isinstance(data, list) or len(data) != len(messages):
            raise ProviderTransportError(
                f"Expected {len(messages)} push tickets, got "
                f"{len(data) if isinstance(data, list) else 'none'}",
                status_code=resp.status_code,
            )

        receipts = [PushReceipt.from_dict(item if isinstance(item, dict) else {}) for item in data]
        LOGGER.debug("Expo accepted batch of %d messages", len(receipts))
        return receipts

    def close(self) -> None:
        self._session.close()
