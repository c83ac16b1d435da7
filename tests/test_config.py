import pytest

from usagelens.cli import parse_args
from usagelens.config import Config
from usagelens.exceptions import ConfigurationError


class TestConfigFromEnv:
    def test_defaults(self, monkeypatch: "pytest.MonkeyPatch") -> "None":
        for name in (
            "USAGE_TABLE_NAME",
            "DYNAMODB_TABLE_NAME",
            "AWS_REGION",
            "DEMO_MODE",
            "SCAN_SEGMENTS",
            "RUN_TIMEOUT_SECONDS",
        ):
            monkeypatch.delenv(name, raising=False)
        config = Config.from_env()
        assert config.table_name == ""
        assert config.aws_region == "us-east-1"
        assert config.scan_segments == 20
        assert config.run_timeout == 300.0
        assert config.demo is False

    def test_reads_env_vars(self, monkeypatch: "pytest.MonkeyPatch") -> "None":
        monkeypatch.setenv("USAGE_TABLE_NAME", "usage-records")
        monkeypatch.setenv("AWS_REGION", "eu-west-1")
        monkeypatch.setenv("SCAN_SEGMENTS", "8")
        monkeypatch.setenv("RUN_TIMEOUT_SECONDS", "60")
        monkeypatch.setenv("DEMO_MODE", "true")
        config = Config.from_env()
        assert config.table_name == "usage-records"
        assert config.aws_region == "eu-west-1"
        assert config.scan_segments == 8
        assert config.run_timeout == 60.0
        assert config.demo is True

    def test_legacy_table_variable(self, monkeypatch: "pytest.MonkeyPatch") -> "None":
        monkeypatch.delenv("USAGE_TABLE_NAME", raising=False)
        monkeypatch.setenv("DYNAMODB_TABLE_NAME", "legacy-table")
        assert Config.from_env().table_name == "legacy-table"

    def test_rejects_non_numeric_segments(
        self, monkeypatch: "pytest.MonkeyPatch"
    ) -> "None":
        monkeypatch.setenv("SCAN_SEGMENTS", "many")
        with pytest.raises(ConfigurationError):
            Config.from_env()


class TestDemoMode:
    def test_enabled_without_table(self) -> "None":
        assert Config(table_name="").demo_mode is True

    def test_disabled_with_table(self) -> "None":
        assert Config(table_name="usage").demo_mode is False

    def test_forced_with_table(self) -> "None":
        assert Config(table_name="usage", demo=True).demo_mode is True


class TestValidate:
    def test_accepts_defaults(self) -> "None":
        Config().validate()

    def test_rejects_zero_segments(self) -> "None":
        with pytest.raises(ConfigurationError):
            Config(scan_segments=0).validate()

    def test_rejects_non_positive_timeout(self) -> "None":
        with pytest.raises(ConfigurationError):
            Config(run_timeout=0).validate()


class TestParseArgs:
    def test_flags_override_env(self, monkeypatch: "pytest.MonkeyPatch") -> "None":
        monkeypatch.setenv("SCAN_SEGMENTS", "8")
        config = parse_args(
            [
                "--web.listen-address",
                "127.0.0.1:9000",
                "--scan.segments",
                "4",
                "--scan.timeout",
                "30",
                "--log.level",
                "debug",
                "--log.format",
                "json",
                "--demo",
            ]
        )
        assert config.listen_address == "127.0.0.1:9000"
        assert config.scan_segments == 4
        assert config.run_timeout == 30.0
        assert config.log_level == "debug"
        assert config.log_format == "json"
        assert config.demo is True

    def test_env_kept_without_flags(self, monkeypatch: "pytest.MonkeyPatch") -> "None":
        monkeypatch.setenv("SCAN_SEGMENTS", "8")
        config = parse_args([])
        assert config.scan_segments == 8
        assert config.listen_address == ":8080"
