import os

os.environ.setdefault("DATABASE_URL", "sqlite://")

import pytest

from push_broadcast.exceptions import ProviderTransportError
from push_broadcast.models import PushReceipt


class FakePushChannel:
    """In-process provider that records every batch it receives."""

    def __init__(self, max_batch_size=100, fail_batches=(), error_tokens=(), on_send=None):
        self.max_batch_size = max_batch_size
        self.fail_batches = set(fail_batches)
        self.error_tokens = set(error_tokens)
        self.on_send = on_send
        self.batches = []

    @staticmethod
    def is_valid_address(token):
        return isinstance(token, str) and token.startswith("ExponentPushToken[")

    def send_batch(self, messages):
        index = len(self.batches)
        self.batches.append(list(messages))
        if self.on_send:
            self.on_send(index)
        if index in self.fail_batches:
            raise ProviderTransportError("push service unavailable", status_code=503)
        receipts = []
        for message in messages:
            if message.to in self.error_tokens:
                receipts.append(PushReceipt(
                    status="error",
                    message=f"{message.to} is not a registered push notification recipient",
                    details={"error": "DeviceNotRegistered"},
                ))
            else:
                receipts.append(PushReceipt(status="ok", id=f"ticket-{message.to}"))
        return receipts


class FakeRegistry:
    def __init__(self, tokens=(), error=None):
        self.tokens = list(tokens)
        self.error = error
        self.calls = 0

    def list_addresses(self):
        self.calls += 1
        if self.error:
            raise self.error
        return list(self.tokens)


@pytest.fixture
def make_tokens():
    def _make(count, prefix="device"):
        return [f"ExponentPushToken[{prefix}-{idx:04d}]" for idx in range(count)]
    return _make


@pytest.fixture
def fake_channel():
    return FakePushChannel()


@pytest.fixture
def fake_registry():
    return FakeRegistry()
