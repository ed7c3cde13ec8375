"""Unit tests for settings loading and validation."""

import pytest

from receipt_ocr.core.exceptions import InvalidConfiguration
from receipt_ocr.core.settings import BatchSettings, LLMSettings, validate_batch_settings


@pytest.fixture(autouse=True)
def isolated_env(monkeypatch, tmp_path):
    """Run each test away from any real .env file."""
    monkeypatch.chdir(tmp_path)


class TestBatchSettings:
    """Tests for batch settings."""

    def test_defaults(self):
        """Test documented defaults."""
        settings = BatchSettings()
        assert settings.BATCH_SIZE == 50
        assert settings.MAX_PARALLELISM == 50
        assert settings.RATE_LIMIT_WINDOW_MS == 60_000
        assert settings.MAX_ITEMS == 100
        assert settings.ITEM_TIMEOUT_SECONDS is None
        assert settings.RETRY_MAX_ATTEMPTS == 1

    def test_reads_environment(self, monkeypatch):
        """Test values come from environment variables."""
        monkeypatch.setenv("BATCH_SIZE", "5")
        monkeypatch.setenv("RATE_LIMIT_WINDOW_MS", "0")
        settings = BatchSettings()
        assert settings.BATCH_SIZE == 5
        assert settings.RATE_LIMIT_WINDOW_MS == 0

    def test_reads_dotenv_file(self, tmp_path):
        """Test values come from a .env file in the working directory."""
        (tmp_path / ".env").write_text("MAX_ITEMS=7\n", encoding="utf-8")
        assert BatchSettings().MAX_ITEMS == 7

    def test_valid_settings_pass(self):
        """Test defaults validate."""
        validate_batch_settings(BatchSettings())

    @pytest.mark.parametrize(
        "overrides,field",
        [
            ({"BATCH_SIZE": 0}, "BATCH_SIZE"),
            ({"MAX_PARALLELISM": 0}, "MAX_PARALLELISM"),
            ({"RATE_LIMIT_WINDOW_MS": -1}, "RATE_LIMIT_WINDOW_MS"),
            ({"MAX_ITEMS": -1}, "MAX_ITEMS"),
            ({"ITEM_TIMEOUT_SECONDS": 0}, "ITEM_TIMEOUT_SECONDS"),
            ({"RETRY_MAX_ATTEMPTS": 0}, "RETRY_MAX_ATTEMPTS"),
        ],
    )
    def test_invalid_settings(self, overrides, field):
        """Test out-of-range values raise InvalidConfiguration."""
        with pytest.raises(InvalidConfiguration) as exc_info:
            validate_batch_settings(BatchSettings(**overrides))
        assert exc_info.value.field == field


class TestLLMSettings:
    """Tests for inference settings."""

    def test_api_key_is_secret(self, monkeypatch):
        """Test the API key is not exposed in repr."""
        monkeypatch.setenv("LLM_API_KEY", "sk-secret")
        settings = LLMSettings()
        assert settings.LLM_API_KEY.get_secret_value() == "sk-secret"
        assert "sk-secret" not in repr(settings)

    def test_defaults(self, monkeypatch):
        """Test defaults match the chat completions setup."""
        monkeypatch.delenv("LLM_MODEL", raising=False)
        settings = LLMSettings()
        assert settings.LLM_MODEL == "gpt-4o"
        assert settings.LLM_MAX_TOKENS == 500
        assert settings.LLM_TEMPERATURE == 1.0
