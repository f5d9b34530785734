"""Tests for configuration loading and validation."""

from __future__ import annotations

from pathlib import Path

import pytest
from pydantic import ValidationError

from escapeweb.config.settings import (
    LoggingConfig,
    ServerConfig,
    Settings,
    TransformerConfig,
    load_settings,
)


class TestSettings:
    def test_default_settings(self) -> None:
        """Default Settings should be valid."""
        settings = Settings()
        assert settings.server.port == 8000
        assert settings.transformer.interpreter == "perl"
        assert settings.transformer.script == "escape_excel.pl"
        assert settings.logging.level == "INFO"

    def test_server_config_defaults(self) -> None:
        config = ServerConfig()
        assert config.host == "0.0.0.0"
        assert config.max_upload_bytes == 50 * 1024 * 1024

    def test_transformer_config_defaults(self) -> None:
        config = TransformerConfig()
        assert config.timeout == 60.0
        assert config.kill_grace == 2.0
        assert config.chunk_size == 64 * 1024
        assert config.working_dir is None

    def test_timeout_can_be_disabled(self) -> None:
        assert TransformerConfig(timeout=None).timeout is None

    @pytest.mark.parametrize("port", [0, 70000])
    def test_invalid_port_rejected(self, port: int) -> None:
        with pytest.raises(ValidationError):
            ServerConfig(port=port)

    def test_invalid_timeout_rejected(self) -> None:
        with pytest.raises(ValidationError):
            TransformerConfig(timeout=0)

    def test_settings_are_read_only(self) -> None:
        settings = Settings()
        with pytest.raises(ValidationError):
            settings.server = ServerConfig(port=9000)  # type: ignore[misc]
        with pytest.raises(ValidationError):
            settings.transformer.script = "other.pl"  # type: ignore[misc]

    def test_logging_config_defaults(self) -> None:
        config = LoggingConfig()
        assert config.file is None
        assert "%(levelname)s" in config.format


class TestLoadSettings:
    def test_load_settings_missing_file(self, tmp_path: Path) -> None:
        """load_settings with missing file should return defaults."""
        settings = load_settings(tmp_path / "nonexistent.yaml")
        assert settings.server.port == 8000

    def test_load_settings_from_yaml(self, tmp_path: Path) -> None:
        path = tmp_path / "escapeweb.yaml"
        path.write_text(
            "server:\n"
            "  port: 9000\n"
            "transformer:\n"
            "  interpreter: /usr/bin/perl\n"
            "  working_dir: /opt/escape\n"
            "  timeout: 5\n"
        )
        settings = load_settings(path)
        assert settings.server.port == 9000
        assert settings.transformer.interpreter == "/usr/bin/perl"
        assert settings.transformer.working_dir == Path("/opt/escape")
        assert settings.transformer.timeout == 5.0
        assert settings.transformer.script == "escape_excel.pl"

    def test_empty_yaml_uses_defaults(self, tmp_path: Path) -> None:
        path = tmp_path / "empty.yaml"
        path.write_text("")
        assert load_settings(path).server.port == 8000

    def test_env_overrides_defaults(
        self, tmp_path: Path, monkeypatch: pytest.MonkeyPatch
    ) -> None:
        monkeypatch.setenv("ESCAPEWEB_SERVER__PORT", "8123")
        monkeypatch.setenv("ESCAPEWEB_TRANSFORMER__SCRIPT", "/opt/escape_excel.pl")
        settings = load_settings(tmp_path / "nonexistent.yaml")
        assert settings.server.port == 8123
        assert settings.transformer.script == "/opt/escape_excel.pl"

    def test_invalid_yaml_value_rejected(self, tmp_path: Path) -> None:
        path = tmp_path / "bad.yaml"
        path.write_text("server:\n  port: -1\n")
        with pytest.raises(ValidationError):
            load_settings(path)

    def test_env_overrides_yaml(
        self, tmp_path: Path, monkeypatch: pytest.MonkeyPatch
    ) -> None:
        path = tmp_path / "escapeweb.yaml"
        path.write_text("server:\n  host: 127.0.0.1\n  port: 9000\n")
        monkeypatch.setenv("ESCAPEWEB_SERVER__PORT", "9100")
        settings = load_settings(path)
        assert settings.server.port == 9100
        assert settings.server.host == "127.0.0.1"
