"""Tests for logging setup and secret redaction."""

import logging
import os
import sys

from vault_unsealer.display.logging_config import (
    SecretRedactionFilter,
    secret_redaction_filter,
    setup_logging,
)
from vault_unsealer.keystore import KeyBundle

SHARES = ("c2VjcmV0LW9uZQ==", "c2VjcmV0LXR3bw==", "c2VjcmV0LXRocmVl")


def _record(msg, args=(), exc_info=None):
    return logging.LogRecord("vault_unsealer.test", logging.INFO, __file__, 1, msg, args, exc_info)


class TestSecretRedactionFilter:
    def test_message_and_args(self):
        f = SecretRedactionFilter()
        f.register("topsecret")
        record = _record("share topsecret and %s", ("topsecret",))
        assert f.filter(record) is True
        assert "topsecret" not in record.getMessage()
        assert "***REDACTED***" in record.getMessage()

    def test_dict_args(self):
        f = SecretRedactionFilter()
        f.register("topsecret")
        record = _record("%(share)s", ({"share": "topsecret"},))
        f.filter(record)
        assert record.getMessage() == "***REDACTED***"

    def test_short_values_ignored(self):
        f = SecretRedactionFilter()
        f.register("abc")
        assert f.scrub("abc") == "abc"

    def test_longest_match_first(self):
        f = SecretRedactionFilter()
        f.register("secret")
        f.register("secret-extended")
        assert f.scrub("x secret-extended y") == "x ***REDACTED*** y"

    def test_traceback_scrubbed(self):
        f = SecretRedactionFilter()
        f.register("topsecret")
        try:
            raise RuntimeError("bad key topsecret")
        except RuntimeError:
            record = _record("failed", exc_info=sys.exc_info())
        f.filter(record)
        assert "topsecret" not in record.exc_text
        assert "RuntimeError" in record.exc_text

    def test_clear(self):
        f = SecretRedactionFilter()
        f.register("topsecret")
        f.clear()
        assert f.scrub("topsecret") == "topsecret"

    def test_key_bundle_registers_shares(self):
        KeyBundle(SHARES)
        for share in SHARES:
            assert secret_redaction_filter.scrub(share) == "***REDACTED***"


class TestSetupLogging:
    def test_console_only(self):
        assert setup_logging("info") is None
        assert logging.getLogger("vault_unsealer").level == logging.INFO

    def test_debug_level(self):
        setup_logging("debug")
        assert logging.getLogger("vault_unsealer").level == logging.DEBUG

    def test_invalid_level_falls_back(self, capsys):
        setup_logging("chatty")
        assert logging.getLogger("vault_unsealer").level == logging.INFO
        assert "invalid log level" in capsys.readouterr().err

    def test_file_log_is_redacted(self, tmp_path):
        log_dir = tmp_path / "logs"
        path = setup_logging("info", str(log_dir))
        assert path is not None
        assert os.path.dirname(path) == str(log_dir)

        KeyBundle(SHARES)
        logging.getLogger("vault_unsealer.test").info("applying %s", SHARES[0])
        for handler in logging.getLogger("vault_unsealer").handlers:
            handler.flush()

        text = open(path, encoding="utf-8").read()
        assert "applying ***REDACTED***" in text
        assert SHARES[0] not in text

    def test_filter_on_every_handler(self):
        setup_logging("info")
        for handler in logging.getLogger("vault_unsealer").handlers:
            assert secret_redaction_filter in handler.filters
