"""Tests for the structlog processors."""

import logging

from wastewise.config import Settings
from wastewise.middleware.logging import _service_fields, setup_logging, shorten_accounts

WALLET = "0x" + "ab" * 20


class TestShortenAccounts:
    def test_wallet_keys_are_shortened(self):
        event = shorten_accounts(None, "info", {"event": "nft_claimed", "account": WALLET, "wallet": WALLET})
        assert event["account"] == "0xabab...abab"
        assert event["wallet"] == "0xabab...abab"

    def test_other_values_untouched(self):
        event = shorten_accounts(None, "info", {"event": "x", "actor": None, "tx": WALLET, "account": "system"})
        assert event["actor"] is None
        assert event["tx"] == WALLET
        assert event["account"] == "system"


class TestServiceFields:
    def test_defaults_added(self):
        processor = _service_fields(Settings(environment="staging"))
        event = processor(None, "info", {"event": "x"})
        assert event["service"] == "wastewise"
        assert event["environment"] == "staging"

    def test_explicit_values_win(self):
        processor = _service_fields(Settings())
        assert processor(None, "info", {"event": "x", "service": "worker"})["service"] == "worker"


class TestSetupLogging:
    def test_third_party_loggers_quietened(self):
        setup_logging(Settings(debug=False, log_format="console"))
        assert logging.getLogger("httpx").level == logging.WARNING
        assert logging.getLogger("web3").level == logging.WARNING
