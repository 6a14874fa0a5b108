import logging
import math
import threading

import pytest

from conftest import FakePushChannel, FakeRegistry
from push_broadcast.exceptions import ValidationError
from push_broadcast.models import NotificationPayload
from push_broadcast.service import BroadcastDispatcher, build_message, chunk_messages

PAYLOAD = {"title": "Flash sale", "body": "Everything is 20% off today"}


def test_send_to_all_with_empty_registry_skips_provider(fake_channel, fake_registry):
    dispatcher = BroadcastDispatcher(fake_registry, fake_channel)

    result = dispatcher.send_to_all(PAYLOAD)

    assert (result.sent, result.failed, result.total) == (0, 0, 0)
    assert result.success is True
    assert result.message == "No tokens registered"
    assert fake_channel.batches == []


def test_all_invalid_tokens_are_dropped_without_sending(fake_channel, caplog):
    registry = FakeRegistry(["not-a-token", "ExpoToken-broken", ""])
    dispatcher = BroadcastDispatcher(registry, fake_channel)

    with caplog.at_level(logging.WARNING, logger="push_broadcast.service"):
        result = dispatcher.send_to_all(PAYLOAD)

    assert (result.sent, result.failed, result.total) == (0, 0, 0)
    assert result.message == "No valid tokens"
    assert fake_channel.batches == []
    assert "Invalid push token: not-a-token" in caplog.text


@pytest.mark.parametrize("count,limit", [(1, 100), (7, 3), (100, 100), (101, 100), (250, 100)])
def test_batches_are_contiguous_and_sized_to_the_provider_limit(make_tokens, count, limit):
    tokens = make_tokens(count)
    channel = FakePushChannel(max_batch_size=limit)
    dispatcher = BroadcastDispatcher(FakeRegistry(tokens), channel)

    result = dispatcher.send_to_all(PAYLOAD)

    assert len(channel.batches) == math.ceil(count / limit)
    assert all(len(batch) <= limit for batch in channel.batches)
    assert [m.to for batch in channel.batches for m in batch] == tokens
    assert result.sent == count
    assert [ticket.id for ticket in result.tickets] == [f"ticket-{t}" for t in tokens]


def test_total_counts_only_valid_tokens(make_tokens):
    valid = make_tokens(5)
    channel = FakePushChannel(max_batch_size=2, error_tokens={valid[1], valid[4]})
    tokens = valid[:2] + ["bogus"] + valid[2:] + [None]
    dispatcher = BroadcastDispatcher(FakeRegistry(tokens), channel)

    result = dispatcher.send_to_all(PAYLOAD)

    assert result.total == len(valid)
    assert result.sent == 3
    assert result.failed == 2
    assert result.sent + result.failed == result.total
    assert [ticket.status for ticket in result.tickets] == ["ok", "error", "ok", "ok", "error"]
    assert result.tickets[1].details == {"error": "DeviceNotRegistered"}


def test_failed_batch_is_counted_and_later_batches_still_run(make_tokens, caplog):
    tokens = make_tokens(250)
    channel = FakePushChannel(max_batch_size=100, fail_batches={1})
    dispatcher = BroadcastDispatcher(FakeRegistry(tokens), channel)

    with caplog.at_level(logging.ERROR, logger="push_broadcast.service"):
        result = dispatcher.send_to_all(PAYLOAD)

    assert [len(batch) for batch in channel.batches] == [100, 100, 50]
    assert result.sent == 150
    assert result.failed == 100
    assert result.total == 250
    assert len(result.tickets) == 150
    assert result.tickets[100].id == f"ticket-{tokens[200]}"
    assert "push service unavailable" in caplog.text


def test_unexpected_send_error_is_folded_into_failures(make_tokens):
    class ExplodingChannel(FakePushChannel):
        def send_batch(self, messages):
            self.batches.append(list(messages))
            raise RuntimeError("socket closed")

    channel = ExplodingChannel(max_batch_size=2)
    dispatcher = BroadcastDispatcher(FakeRegistry(make_tokens(3)), channel)

    result = dispatcher.send_to_all(PAYLOAD)

    assert len(channel.batches) == 2
    assert (result.sent, result.failed, result.total) == (0, 3, 3)
    assert result.tickets == []


def test_image_url_adds_attachments_and_overrides_data():
    payload = NotificationPayload(
        title="New arrivals",
        body="Tap to see them",
        data={"screen": "catalog", "imageUrl": "https://cdn.example.com/old.png"},
        image_url="https://cdn.example.com/new.png",
    )

    message = build_message("ExponentPushToken[abc]", payload)
    wire = message.to_dict()

    assert wire["data"] == {"screen": "catalog", "imageUrl": "https://cdn.example.com/new.png"}
    assert wire["attachments"] == [{
        "url": "https://cdn.example.com/new.png",
        "thumbnailUrl": "https://cdn.example.com/new.png",
    }]
    assert wire["priority"] == "high"
    assert wire["channelId"] == "default"
    assert wire["sound"] == "default"


def test_messages_without_image_have_no_attachments(make_tokens):
    channel = FakePushChannel()
    dispatcher = BroadcastDispatcher(FakeRegistry(make_tokens(3)), channel)

    dispatcher.send_to_all({**PAYLOAD, "data": {"orderId": 42}})

    for message in channel.batches[0]:
        assert message.attachments is None
        assert "attachments" not in message.to_dict()
        assert message.data == {"orderId": 42}


def test_empty_title_fails_before_registry_lookup(fake_channel, make_tokens):
    registry = FakeRegistry(make_tokens(2))
    dispatcher = BroadcastDispatcher(registry, fake_channel)

    with pytest.raises(ValidationError):
        dispatcher.send_to_all({"title": "", "body": "x"})

    assert registry.calls == 0
    assert fake_channel.batches == []


@pytest.mark.parametrize("tokens", [[], (), None, "ExponentPushToken[abc]"])
def test_send_to_tokens_requires_a_token_list(fake_channel, tokens):
    dispatcher = BroadcastDispatcher(FakeRegistry(), fake_channel)

    with pytest.raises(ValidationError, match="Tokens array is required"):
        dispatcher.send_to_tokens(tokens, PAYLOAD)

    assert fake_channel.batches == []


def test_send_to_tokens_uses_supplied_tokens_only(make_tokens):
    channel = FakePushChannel(max_batch_size=2)
    registry = FakeRegistry(make_tokens(10, prefix="registered"))
    dispatcher = BroadcastDispatcher(registry, channel)
    targets = make_tokens(3, prefix="target") + ["garbage"]

    result = dispatcher.send_to_tokens(targets, PAYLOAD)

    assert registry.calls == 0
    assert [m.to for batch in channel.batches for m in batch] == targets[:3]
    assert (result.sent, result.failed, result.total) == (3, 0, 3)


def test_send_to_tokens_reports_no_valid_tokens(fake_channel):
    dispatcher = BroadcastDispatcher(FakeRegistry(), fake_channel)

    result = dispatcher.send_to_tokens(["nope"], PAYLOAD)

    assert result.message == "No valid tokens"
    assert fake_channel.batches == []


def test_registry_failure_propagates(fake_channel):
    dispatcher = BroadcastDispatcher(FakeRegistry(error=ConnectionError("db down")), fake_channel)

    with pytest.raises(ConnectionError):
        dispatcher.send_to_all(PAYLOAD)

    assert fake_channel.batches == []


def test_cancel_stops_further_batches_and_keeps_partial_counts(make_tokens):
    cancel = threading.Event()
    channel = FakePushChannel(max_batch_size=10, on_send=lambda index: cancel.set())
    dispatcher = BroadcastDispatcher(FakeRegistry(make_tokens(35)), channel)

    result = dispatcher.send_to_all(PAYLOAD, cancel_event=cancel)

    assert len(channel.batches) == 1
    assert result.cancelled is True
    assert (result.sent, result.failed, result.total) == (10, 0, 10)
    assert result.to_dict()["cancelled"] is True


def test_chunk_messages_rejects_non_positive_size():
    with pytest.raises(ValueError):
        list(chunk_messages([], 0))


def test_short_receipt_list_keeps_total_equal_to_submitted(make_tokens):
    class ShortChannel(FakePushChannel):
        def send_batch(self, messages):
            return super().send_batch(messages)[:-1]

    channel = ShortChannel(max_batch_size=3)
    dispatcher = BroadcastDispatcher(FakeRegistry(make_tokens(3)), channel)

    result = dispatcher.send_to_all(PAYLOAD)

    assert (result.sent, result.failed, result.total) == (2, 1, 3)
