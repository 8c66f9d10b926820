"""Configuration management with validation.

Constraints are enforced at configuration load time so the operator fails
fast on a bad environment instead of halfway through a reconciliation run.
"""

from __future__ import annotations

import os
import re
from dataclasses import dataclass
from pathlib import Path


class ConfigurationError(Exception):
    """Raised when configuration validation fails."""

    pass


# Configuration constants with documented bounds
DEFAULT_BASE_URL = "https://api.useparagon.com"
DEFAULT_SPEC_FILE = "/specs/resources.yaml"
DEFAULT_STATE_FILE = "/state/state.json"

DEFAULT_POLL_INTERVAL_SECONDS = 2
MIN_POLL_INTERVAL_SECONDS = 1
MAX_POLL_INTERVAL_SECONDS = 60

DEFAULT_REQUEST_TIMEOUT_SECONDS = 30

MAX_SPEC_FILE_SIZE_BYTES = 1024 * 1024  # 1MB max declaration file
MAX_STATE_FILE_SIZE_BYTES = 10 * 1024 * 1024

VALID_BASE_URL_PATTERN = r"^https?://[^\s/]+(/[^\s]*)?$"


@dataclass(frozen=True)
class Config:
    """Operator configuration loaded from environment variables.

    All fields are validated at construction time. Invalid configurations
    raise ConfigurationError immediately rather than failing at runtime.

    ``poll_timeout_seconds`` is None by default: deployment polling then has
    no overall deadline and waits for the remote side to settle.
    """

    access_token: str
    base_url: str = DEFAULT_BASE_URL
    spec_file: Path = Path(DEFAULT_SPEC_FILE)
    state_file: Path = Path(DEFAULT_STATE_FILE)

    # Timing
    poll_interval_seconds: int = DEFAULT_POLL_INTERVAL_SECONDS
    poll_timeout_seconds: int | None = None
    request_timeout_seconds: int = DEFAULT_REQUEST_TIMEOUT_SECONDS

    # Logging
    enable_json_logging: bool = True

    def __post_init__(self) -> None:
        """Validate configuration after initialization."""
        errors: list[str] = []

        if not self.access_token:
            errors.append("PARAGON_ACCESS_TOKEN is required")

        if not self.base_url:
            errors.append("PARAGON_BASE_URL is required")
        elif not re.match(VALID_BASE_URL_PATTERN, self.base_url):
            errors.append(f"PARAGON_BASE_URL must be an http(s) URL: {self.base_url}")

        if not (
            MIN_POLL_INTERVAL_SECONDS <= self.poll_interval_seconds <= MAX_POLL_INTERVAL_SECONDS
        ):
            errors.append(
                f"POLL_INTERVAL must be between {MIN_POLL_INTERVAL_SECONDS} "
                f"and {MAX_POLL_INTERVAL_SECONDS} seconds"
            )

        if self.poll_timeout_seconds is not None and self.poll_timeout_seconds < 1:
            errors.append("POLL_TIMEOUT must be at least 1 second when set")

        if self.request_timeout_seconds < 1:
            errors.append("REQUEST_TIMEOUT must be at least 1 second")

        if errors:
            error_msg = "Configuration validation failed:\n  - " + "\n  - ".join(errors)
            raise ConfigurationError(error_msg)

    @property
    def api_url(self) -> str:
        """Base URL without a trailing slash."""
        return self.base_url.rstrip("/")

    @classmethod
    def from_env(cls) -> Config:
        """Load configuration from environment variables.

        Environment Variables:
            PARAGON_ACCESS_TOKEN: Bearer token for the remote API (required)
            PARAGON_BASE_URL: Remote API base URL (default: https://api.useparagon.com)
            SPEC_FILE: Path to the YAML resource declaration (default: /specs/resources.yaml)
            STATE_FILE: Path to the JSON state file (default: /state/state.json)
            POLL_INTERVAL: Seconds between deployment status polls (default: 2)
            POLL_TIMEOUT: Overall deadline for a poll loop in seconds (default: unbounded)
            REQUEST_TIMEOUT: Per-request HTTP timeout in seconds (default: 30)
            ENABLE_AUDIT_LOGGING: Emit JSON logs to stdout (default: true)
        """

        def get_int(key: str, default: int) -> int:
            value = os.environ.get(key)
            if value is None:
                return default
            try:
                return int(value)
            except ValueError as e:
                raise ConfigurationError(f"{key} must be an integer: {value}") from e

        def get_optional_int(key: str) -> int | None:
            value = os.environ.get(key)
            if not value:
                return None
            try:
                return int(value)
            except ValueError as e:
                raise ConfigurationError(f"{key} must be an integer: {value}") from e

        def get_bool(key: str, default: bool) -> bool:
            value = os.environ.get(key, "").lower()
            if not value:
                return default
            return value in ("true", "1", "yes")

        return cls(
            access_token=os.environ.get("PARAGON_ACCESS_TOKEN", ""),
            base_url=os.environ.get("PARAGON_BASE_URL", DEFAULT_BASE_URL),
            spec_file=Path(os.environ.get("SPEC_FILE", DEFAULT_SPEC_FILE)),
            state_file=Path(os.environ.get("STATE_FILE", DEFAULT_STATE_FILE)),
            poll_interval_seconds=get_int("POLL_INTERVAL", DEFAULT_POLL_INTERVAL_SECONDS),
            poll_timeout_seconds=get_optional_int("POLL_TIMEOUT"),
            request_timeout_seconds=get_int("REQUEST_TIMEOUT", DEFAULT_REQUEST_TIMEOUT_SECONDS),
            enable_json_logging=get_bool("ENABLE_AUDIT_LOGGING", True),
        )
