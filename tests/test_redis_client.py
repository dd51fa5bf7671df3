"""Tests for the Redis receipt journal."""

import json
from unittest import mock

from last_will_guardian.config import settings
from last_will_guardian.models import EventKind, LedgerEvent, Receipt
from last_will_guardian.redis_client import RedisClient


def _receipt():
    return Receipt(
        operation="check",
        caller="0xowner",
        timestamp=1234,
        logs=[
            LedgerEvent(EventKind.TRIGGERED, {"balance": 10}),
            LedgerEvent(EventKind.FUNDS_SENT, {"recipient": "0xr", "amount": 10, "percent": 100}),
        ],
    )


class TestRedisClient:

    def setup_method(self):
        self.redis = RedisClient()
        self.redis.client = mock.MagicMock()

    def test_record_receipt_appends_json(self):
        assert self.redis.record_receipt(_receipt()) is True

        key, payload = self.redis.client.rpush.call_args[0]
        assert key == settings.redis_receipts_key
        assert json.loads(payload)["logs"][1] == {
            "event": "FundsSent",
            "args": {"recipient": "0xr", "amount": 10, "percent": 100},
        }

    def test_record_receipt_trims_journal(self):
        self.redis.record_receipt(_receipt())

        self.redis.client.ltrim.assert_called_once_with(
            settings.redis_receipts_key, -settings.redis_receipts_max, -1
        )

    def test_record_receipt_survives_redis_errors(self):
        self.redis.client.rpush.side_effect = ConnectionError("down")
        assert self.redis.record_receipt(_receipt()) is False

    def test_get_receipts_skips_garbage(self):
        self.redis.client.lrange.return_value = [json.dumps(_receipt().to_dict()), "{not json"]

        receipts = self.redis.get_receipts(limit=5)

        self.redis.client.lrange.assert_called_once_with(settings.redis_receipts_key, -5, -1)
        assert len(receipts) == 1
        assert receipts[0].triggered
        assert receipts[0].funds_sent[0].args["amount"] == 10

    def test_last_active_roundtrip_values(self):
        self.redis.set_last_active(99)
        self.redis.client.set.assert_called_once_with(settings.redis_activity_key, "99")

        self.redis.client.get.return_value = "99"
        assert self.redis.get_last_active() == 99

        self.redis.client.get.return_value = "yesterday"
        assert self.redis.get_last_active() is None

    def test_disconnected_client_is_inert(self):
        self.redis.client = None
        assert self.redis.record_receipt(_receipt()) is False
        assert self.redis.get_receipts() == []
        assert self.redis.get_last_active() is None
        self.redis.set_last_active(1)
