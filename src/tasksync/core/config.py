"""Configuration classes for tasksync.

This module defines the recognized configuration surface:
- RemoteConfig: Connection settings for the remote task endpoint
- RateLimitConfig: Token bucket sizing
- RetryConfig: Backoff parameters
- SyncConfig: Everything the sync pipeline needs

Configuration is read from ~/.tasksync/config.json with environment
variable overrides (TASKSYNC_SERVER_URL, TASKSYNC_TOKEN, TASKSYNC_DB_PATH).
"""

from __future__ import annotations

import json
import os
from dataclasses import dataclass, field, replace
from pathlib import Path
from typing import Any

from tasksync.core.errors import ValidationError

DEFAULT_CONCURRENCY_LIMIT = 4
DEFAULT_CALL_TIMEOUT = 30.0  # seconds


@dataclass
class RemoteConfig:
    """Configuration for connecting to the remote task endpoint.

    Attributes:
        server_url: Base URL of the server (e.g., "https://tasks.example.com").
        token: Bearer token, empty when the server runs without auth.
        timeout: Request timeout in seconds.
        verify_ssl: Whether to verify SSL certificates (default True).
    """

    server_url: str
    token: str = ""
    timeout: float = DEFAULT_CALL_TIMEOUT
    verify_ssl: bool = True

    def __post_init__(self) -> None:
        """Normalize server URL."""
        self.server_url = self.server_url.rstrip("/")

    @property
    def is_secure(self) -> bool:
        """Check if using HTTPS."""
        return self.server_url.startswith("https://")


@dataclass
class RateLimitConfig:
    """Token bucket sizing.

    Attributes:
        capacity: Maximum burst size (bucket capacity).
        refill_per_second: Continuous refill rate.
        acquire_timeout: Longest a worker waits for a token, in seconds.
    """

    capacity: int = 10
    refill_per_second: float = 5.0
    acquire_timeout: float = 30.0

    def __post_init__(self) -> None:
        if self.capacity < 1:
            raise ValidationError("rate_limit.capacity must be >= 1")
        if self.refill_per_second <= 0:
            raise ValidationError("rate_limit.refill_per_second must be > 0")


@dataclass
class RetryConfig:
    """Retry/backoff parameters.

    Attributes:
        max_attempts: Total attempts before an operation is abandoned.
        base_delay: Delay before the first retry, in seconds.
        max_delay: Upper bound for any delay, in seconds.
        backoff_factor: Multiplier applied per attempt.
        jitter: Apply multiplicative jitter in [0.5, 1.5].
    """

    max_attempts: int = 5
    base_delay: float = 1.0
    max_delay: float = 60.0
    backoff_factor: float = 2.0
    jitter: bool = True

    def __post_init__(self) -> None:
        if self.max_attempts < 1:
            raise ValidationError("retry.max_attempts must be >= 1")
        if self.base_delay < 0 or self.max_delay < 0:
            raise ValidationError("retry delays must be >= 0")
        if self.backoff_factor < 1:
            raise ValidationError("retry.backoff_factor must be >= 1")


@dataclass
class SyncConfig:
    """Configuration of the sync pipeline.

    Attributes:
        concurrency_limit: Worker pool size.
        rate_limit: Token bucket settings.
        retry: Retry policy settings.
        call_timeout: Deadline of a single remote call, in seconds.
        remote: Remote endpoint, None when running offline only.
        db_path: Location of the durable operation log.
        log_path: Optional log file.
    """

    concurrency_limit: int = DEFAULT_CONCURRENCY_LIMIT
    rate_limit: RateLimitConfig = field(default_factory=RateLimitConfig)
    retry: RetryConfig = field(default_factory=RetryConfig)
    call_timeout: float = DEFAULT_CALL_TIMEOUT
    remote: RemoteConfig | None = None
    db_path: Path = field(default_factory=lambda: get_config_dir() / "operations.db")
    log_path: Path | None = None

    def __post_init__(self) -> None:
        if self.concurrency_limit < 1:
            raise ValidationError("concurrency_limit must be >= 1")
        if self.call_timeout <= 0:
            raise ValidationError("call_timeout must be > 0")
        self.db_path = Path(self.db_path).expanduser()
        if self.log_path is not None:
            self.log_path = Path(self.log_path).expanduser()

    def client_remote(self) -> RemoteConfig:
        """Remote settings for an HTTP client, with call_timeout as the request timeout.

        Raises:
            ValidationError: If no remote is configured.
        """
        if self.remote is None:
            raise ValidationError("No remote server configured")
        return replace(self.remote, timeout=self.call_timeout)

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> SyncConfig:
        """Build a SyncConfig from the JSON config layout.

        Keys mirror the recognized options: concurrencyLimit, rateLimit
        {capacity, refillPerSecond}, retry {maxAttempts, baseDelay, maxDelay,
        backoffFactor}, callTimeout. snake_case keys are accepted too.
        """

        def pick(section: dict[str, Any], snake: str, camel: str, default: Any) -> Any:
            if snake in section:
                return section[snake]
            return section.get(camel, default)

        rate = data.get("rate_limit", data.get("rateLimit", {})) or {}
        retry = data.get("retry", {}) or {}
        remote = data.get("remote") or {}

        defaults_rate = RateLimitConfig()
        defaults_retry = RetryConfig()

        config = cls(
            concurrency_limit=int(
                pick(data, "concurrency_limit", "concurrencyLimit", DEFAULT_CONCURRENCY_LIMIT)
            ),
            rate_limit=RateLimitConfig(
                capacity=int(pick(rate, "capacity", "capacity", defaults_rate.capacity)),
                refill_per_second=float(
                    pick(rate, "refill_per_second", "refillPerSecond", defaults_rate.refill_per_second)
                ),
                acquire_timeout=float(
                    pick(rate, "acquire_timeout", "acquireTimeout", defaults_rate.acquire_timeout)
                ),
            ),
            retry=RetryConfig(
                max_attempts=int(pick(retry, "max_attempts", "maxAttempts", defaults_retry.max_attempts)),
                base_delay=float(pick(retry, "base_delay", "baseDelay", defaults_retry.base_delay)),
                max_delay=float(pick(retry, "max_delay", "maxDelay", defaults_retry.max_delay)),
                backoff_factor=float(
                    pick(retry, "backoff_factor", "backoffFactor", defaults_retry.backoff_factor)
                ),
                jitter=bool(pick(retry, "jitter", "jitter", defaults_retry.jitter)),
            ),
            call_timeout=float(pick(data, "call_timeout", "callTimeout", DEFAULT_CALL_TIMEOUT)),
        )

        server_url = pick(remote, "server_url", "serverUrl", None)
        if server_url:
            config.remote = RemoteConfig(
                server_url=server_url,
                token=remote.get("token", ""),
                timeout=config.call_timeout,
                verify_ssl=bool(pick(remote, "verify_ssl", "verifySsl", True)),
            )
        db_path = pick(data, "db_path", "dbPath", None)
        if db_path:
            config.db_path = Path(db_path).expanduser()
        log_path = pick(data, "log_path", "logPath", None)
        if log_path:
            config.log_path = Path(log_path).expanduser()
        return config


def get_config_dir() -> Path:
    """Get the configuration directory for tasksync.

    Returns:
        Path to ~/.tasksync.
    """
    return Path.home() / ".tasksync"


def get_config_file() -> Path:
    """Get the path to the config file."""
    return get_config_dir() / "config.json"


def load_config(path: Path | None = None) -> SyncConfig:
    """Load configuration from a JSON file and the environment.

    Args:
        path: Config file to read (defaults to ~/.tasksync/config.json).
            A missing file yields the defaults.

    Returns:
        The effective SyncConfig.
    """
    config_file = path or get_config_file()
    data: dict[str, Any] = {}
    if config_file.exists():
        data = dict(json.loads(config_file.read_text()))
    config = SyncConfig.from_dict(data)

    server_url = os.environ.get("TASKSYNC_SERVER_URL")
    if server_url:
        token = os.environ.get("TASKSYNC_TOKEN", config.remote.token if config.remote else "")
        config.remote = RemoteConfig(
            server_url=server_url,
            token=token,
            timeout=config.call_timeout,
        )
    elif config.remote and os.environ.get("TASKSYNC_TOKEN"):
        config.remote.token = os.environ["TASKSYNC_TOKEN"]

    db_path = os.environ.get("TASKSYNC_DB_PATH")
    if db_path:
        config.db_path = Path(db_path).expanduser()
    return config


def save_config(data: dict[str, Any], path: Path | None = None) -> None:
    """Save raw configuration to the config file."""
    config_file = path or get_config_file()
    config_file.parent.mkdir(parents=True, exist_ok=True)
    config_file.write_text(json.dumps(data, indent=2))
