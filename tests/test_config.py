"""Tests for settings parsing and ledger construction from settings."""

from unittest import mock

import pytest

from last_will_guardian.chain import Chain
from last_will_guardian.config import Settings
from last_will_guardian.exceptions import InvalidConfiguration
from last_will_guardian.main import build_ledger
from last_will_guardian.redis_client import RedisClient
from last_will_guardian.watchdog import connect_journal


class TestSettings:

    def test_beneficiary_pairs(self):
        s = Settings(BENEFICIARIES="0xa:25, 0xb:75")
        assert s.beneficiary_pairs == [("0xa", 25), ("0xb", 75)]

    def test_malformed_beneficiary(self):
        s = Settings(BENEFICIARIES="0xa")
        with pytest.raises(ValueError):
            s.beneficiary_pairs

    def test_token_address_list(self):
        s = Settings(TOKEN_ADDRESSES=" 0xusdc,,0xdai ")
        assert s.token_address_list == ["0xusdc", "0xdai"]
        assert Settings().token_address_list == []

    def test_optional_channels(self):
        s = Settings(TELEGRAM_BOT_TOKEN="t", TELEGRAM_CHAT_ID="c", TARGET_HEALTH_URL="http://x/health")
        assert s.telegram_enabled
        assert s.health_check_enabled


class TestBuildLedger:

    def test_ledger_from_settings(self):
        s = Settings(
            OWNER_ADDRESS="0xowner",
            TARGET_ADDRESS="0xtarget",
            BENEFICIARIES="0xa:40,0xb:60",
            TIMEOUT_SECONDS=3600,
            USE_SERVICE_ACCOUNT=False,
        )
        chain = Chain(timestamp=0)
        with mock.patch("last_will_guardian.main.settings", s):
            ledger = build_ledger(chain)

        assert ledger.target == "0xtarget"
        assert ledger.timeout_seconds == 3600
        assert ledger.use_service_account is False
        assert [b.percent for b in ledger.beneficiaries] == [40, 60]

    def test_bad_percent_split_rejected(self):
        s = Settings(BENEFICIARIES="0xa:40,0xb:40")
        with mock.patch("last_will_guardian.main.settings", s):
            with pytest.raises(InvalidConfiguration):
                build_ledger(Chain(timestamp=0))

    def test_journaled_activity_survives_restart(self):
        s = Settings(BENEFICIARIES="0xa:100", TIMEOUT_SECONDS=3600)
        with mock.patch("last_will_guardian.main.settings", s):
            ledger = build_ledger(Chain(timestamp=10_000), last_active_ts=7_000)

        assert ledger.last_active_ts == 7_000
        assert ledger.seconds_until_due() == 600

    def test_configured_tokens_are_registered(self):
        s = Settings(BENEFICIARIES="0xa:100", TOKEN_ADDRESSES="0xusdc, 0xdai")
        chain = Chain(timestamp=0)
        existing = chain.deploy_token(address="0xusdc")
        with mock.patch("last_will_guardian.main.settings", s):
            ledger = build_ledger(chain)

        assert ledger.token_addresses == ("0xusdc", "0xdai")
        assert chain.token("0xusdc") is existing
        assert chain.has_token("0xdai")
        assert ledger.event_log[-1].operation == "register_tokens"


class TestConnectJournal:

    def test_unreachable_redis_leaves_journal_inert(self):
        redis_client = RedisClient()
        with mock.patch("last_will_guardian.redis_client.redis.Redis") as redis_cls:
            redis_cls.return_value.ping.side_effect = ConnectionError("refused")
            assert connect_journal(redis_client) is False

        assert redis_client.client is None
        assert redis_client.get_last_active() is None

    def test_connected_journal_supplies_last_activity(self):
        redis_client = RedisClient()
        with mock.patch("last_will_guardian.redis_client.redis.Redis") as redis_cls:
            redis_cls.return_value.get.return_value = "7000"
            assert connect_journal(redis_client) is True

        assert redis_client.get_last_active() == 7_000
