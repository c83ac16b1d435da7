import os
from dataclasses import dataclass

from usagelens.exceptions import ConfigurationError

_TRUTHY = ("1", "true", "yes", "on")


@dataclass
class Config:
    # listen_address: format ":8080" or
    # "0.0.0.0:8080"
    listen_address: "str" = ":8080"
    log_level: "str" = "info"
    # "console" or "json"
    log_format: "str" = "console"

    table_name: "str" = ""
    aws_region: "str" = "us-east-1"
    # forces the in-memory demo store even when a table is configured
    demo: "bool" = False

    # number of concurrent scan segments per run
    scan_segments: "int" = 20
    # wall-clock limit for one run before its session is reset
    run_timeout: "float" = 300.0

    @classmethod
    def from_env(cls) -> "Config":
        table_name = os.environ.get("USAGE_TABLE_NAME") or os.environ.get(
            "DYNAMODB_TABLE_NAME", ""
        )
        return cls(
            table_name=table_name,
            aws_region=os.environ.get("AWS_REGION", "us-east-1"),
            demo=os.environ.get("DEMO_MODE", "").lower() in _TRUTHY,
            scan_segments=_int_env("SCAN_SEGMENTS", 20),
            run_timeout=_float_env("RUN_TIMEOUT_SECONDS", 300.0),
        )

    @property
    def demo_mode(self) -> "bool":
        return self.demo or not self.table_name

    def validate(self) -> "None":
        """
        raises ConfigurationError for values no run could start with.
        """
        if self.scan_segments < 1:
            raise ConfigurationError(
                f"scan_segments must be at least 1, got {self.scan_segments}"
            )
        if self.run_timeout <= 0:
            raise ConfigurationError(
                f"run_timeout must be positive, got {self.run_timeout}"
            )


def _int_env(name: "str", default: "int") -> "int":
    raw = os.environ.get(name, "")
    if not raw:
        return default
    try:
        return int(raw)
    except ValueError as exc:
        raise ConfigurationError(f"{name} must be an integer, got {raw!r}") from exc


def _float_env(name: "str", default: "float") -> "float":
    raw = os.environ.get(name, "")
    if not raw:
        return default
    try:
        return float(raw)
    except ValueError as exc:
        raise ConfigurationError(f"{name} must be a number, got {raw!r}") from exc
