"""Unit tests for the Redis notification publisher."""

import json
from unittest.mock import Mock

import fakeredis

from mortuary.adapters.notifications import RedisNotifier


def test_publishes_json_notification_on_channel():
    client = fakeredis.FakeRedis()
    pubsub = client.pubsub()
    pubsub.subscribe("test:notifications")
    pubsub.get_message(timeout=1)  # subscribe confirmation

    notifier = RedisNotifier(client=client, channel="test:notifications")
    notifier.notify("correction_requested", "Wristband mismatch", case_code="SGM-1", recipients=["nurse-1"])

    message = pubsub.get_message(timeout=1)
    payload = json.loads(message["data"])
    assert payload["category"] == "correction_requested"
    assert payload["case_code"] == "SGM-1"
    assert payload["recipients"] == ["nurse-1"]
    assert "sent_at" in payload


def test_redis_failure_is_logged_not_raised():
    client = Mock()
    client.publish.side_effect = ConnectionError("redis down")
    logger = Mock()

    RedisNotifier(client=client, channel="test:notifications", logger=logger).notify(
        "tray_alert", "Tray B-01 over 48h", case_code="SGM-1"
    )

    logger.error.assert_called_once()
    assert "tray_alert" in logger.error.call_args[0][0]
