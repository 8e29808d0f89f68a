import json
import logging

import pytest
from pydantic import ValidationError

from mtasts_harvester.config import Settings, get_settings
from mtasts_harvester.logging_config import JSONFormatter, setup_logging


@pytest.mark.unit
class TestSettings:
    """Test environment-driven configuration"""

    def test_defaults(self, settings):
        assert settings.report_file == "./mtastsreport.csv"
        assert settings.policy_string_separator == " , "
        assert settings.compressed_suffixes == [".gz", ".gzip"]
        assert settings.mail_source == "outlook"

    def test_env_prefix(self, monkeypatch):
        monkeypatch.setenv("MTASTS_REPORT_FILE", "/tmp/tls.csv")
        monkeypatch.setenv("MTASTS_MAIL_SOURCE", "IMAP")

        settings = Settings(_env_file=None)

        assert settings.report_file == "/tmp/tls.csv"
        assert settings.mail_source == "imap"

    def test_comma_separated_suffixes(self, monkeypatch):
        monkeypatch.setenv("MTASTS_COMPRESSED_SUFFIXES", "gz, .GZIP,.z")

        settings = Settings(_env_file=None)

        assert settings.compressed_suffixes == [".gz", ".gzip", ".z"]

    def test_invalid_mail_source(self):
        with pytest.raises(ValidationError):
            Settings(_env_file=None, mail_source="pop3")

    def test_invalid_log_level(self):
        with pytest.raises(ValidationError):
            Settings(_env_file=None, log_level="verbose")

    def test_log_level_normalised(self):
        assert Settings(_env_file=None, log_level="debug").log_level == "DEBUG"

    def test_get_settings_cached(self):
        assert get_settings() is get_settings()


@pytest.mark.unit
class TestLogging:
    """Test logging setup"""

    def test_json_formatter(self):
        record = logging.LogRecord("mtasts", logging.INFO, __file__, 10, "Extracted %s", ("a.gz",), None)
        record.file_name = "a.gz"

        data = json.loads(JSONFormatter().format(record))

        assert data["level"] == "INFO"
        assert data["message"] == "Extracted a.gz"
        assert data["file_name"] == "a.gz"

    def test_file_logging(self, working_dir):
        root = logging.getLogger()
        saved_handlers, saved_level = root.handlers[:], root.level
        try:
            setup_logging("DEBUG", log_dir=str(working_dir / "logs"), app_name="test")
            logging.getLogger("mtasts").error("boom")
            for handler in root.handlers:
                handler.flush()

            assert "boom" in (working_dir / "logs" / "test.log").read_text(encoding="utf-8")
            assert "boom" in (working_dir / "logs" / "test-error.log").read_text(encoding="utf-8")
        finally:
            for handler in root.handlers:
                handler.close()
            root.handlers[:] = saved_handlers
            root.setLevel(saved_level)
