"""
Configuration for the S3 log collector.

All settings are read from environment variables exactly once, at cold start,
and validated before any AWS call is made. A misconfigured function fails fast
with a `ConfigurationError` instead of failing on every scheduled tick.
"""

import os
import re
from dataclasses import dataclass
from typing import Mapping, Optional

# The SQS service's per-call limit for ReceiveMessage.
MAX_RECEIVE_BATCH = 10
# The SQS service's upper bound for long polling.
MAX_WAIT_TIME_SECONDS = 20

QUEUE_URL_PATTERN = re.compile(
    r"^https://sqs\.[a-z0-9-]+-\d\.amazonaws\.com(\.cn)?/[0-9]{12}/[^/]+$"
)
BUCKET_NAME_PATTERN = re.compile(r"^[a-zA-Z0-9][a-zA-Z0-9-.]{1,61}[a-zA-Z0-9]$")


class ConfigurationError(ValueError):
    """Raised when a required setting is missing or invalid."""


def get_env_var(
    name: str, default: Optional[str] = None, environ: Optional[Mapping[str, str]] = None
) -> str:
    """
    Gets an environment variable or raises a ConfigurationError for fast-failure.

    Args:
        name: The name of the environment variable.
        default: An optional default value. If not provided, the variable is required.
        environ: The mapping to read from. Defaults to `os.environ`.

    Returns:
        The value of the environment variable.

    Raises:
        ConfigurationError: If the required environment variable is not set.
    """
    source = os.environ if environ is None else environ
    value = source.get(name, default)
    if value is None or value == "":
        if default is not None:
            return default
        raise ConfigurationError(f"FATAL: Environment variable '{name}' is not set.")
    return value


def _get_int(name: str, default: int, low: int, high: int, environ: Mapping[str, str]) -> int:
    raw = get_env_var(name, str(default), environ)
    try:
        value = int(raw)
    except ValueError:
        raise ConfigurationError(f"FATAL: '{name}' must be an integer, got {raw!r}.") from None
    if not low <= value <= high:
        raise ConfigurationError(f"FATAL: '{name}' must be between {low} and {high}, got {value}.")
    return value


@dataclass(frozen=True)
class CollectorConfig:
    """
    Validated settings for one collector.

    Attributes:
        queue_url: The SQS queue to drain.
        bucket_name: The bucket the notifications are expected to reference.
                     Only used to flag out-of-scope references in the logs.
        max_messages: Upper bound on messages received per invocation (1-10).
        wait_time_seconds: Long-poll wait for ReceiveMessage (0-20).
        download_dir: Scratch directory that fetched objects are written under.
        malformed_queue_url: Optional queue that receives the bodies of
                             messages that cannot be decoded.
        environment: Value of the `Environment` metric dimension.
        log_level: Level for the Powertools logger.
        endpoint_url: Optional endpoint override for SQS and S3 (local stacks).
    """

    queue_url: str
    bucket_name: Optional[str] = None
    max_messages: int = MAX_RECEIVE_BATCH
    wait_time_seconds: int = MAX_WAIT_TIME_SECONDS
    download_dir: str = "/tmp"
    malformed_queue_url: Optional[str] = None
    environment: str = "dev"
    log_level: str = "INFO"
    endpoint_url: Optional[str] = None

    def __post_init__(self):
        if not self.endpoint_url:
            for name, url in (("QUEUE_URL", self.queue_url), ("MALFORMED_QUEUE_URL", self.malformed_queue_url)):
                if url is not None and not QUEUE_URL_PATTERN.match(url):
                    raise ConfigurationError(f"FATAL: '{name}' is not a valid SQS queue URL: {url!r}")
        if self.malformed_queue_url is not None and self.malformed_queue_url == self.queue_url:
            raise ConfigurationError("FATAL: 'MALFORMED_QUEUE_URL' must differ from 'QUEUE_URL'.")
        if self.bucket_name is not None and not BUCKET_NAME_PATTERN.match(self.bucket_name):
            raise ConfigurationError(f"FATAL: 'S3_BUCKET_NAME' is not a valid bucket name: {self.bucket_name!r}")
        if not 1 <= self.max_messages <= MAX_RECEIVE_BATCH:
            raise ConfigurationError(f"FATAL: 'MAX_MESSAGES' must be between 1 and {MAX_RECEIVE_BATCH}.")
        if not 0 <= self.wait_time_seconds <= MAX_WAIT_TIME_SECONDS:
            raise ConfigurationError(f"FATAL: 'WAIT_TIME_SECONDS' must be between 0 and {MAX_WAIT_TIME_SECONDS}.")

    @classmethod
    def from_env(cls, environ: Optional[Mapping[str, str]] = None) -> "CollectorConfig":
        """
        Builds a validated configuration from environment variables.

        Raises:
            ConfigurationError: If a required variable is missing or a value is invalid.
        """
        env = os.environ if environ is None else environ
        return cls(
            queue_url=get_env_var("QUEUE_URL", environ=env),
            bucket_name=env.get("S3_BUCKET_NAME") or None,
            max_messages=_get_int("MAX_MESSAGES", MAX_RECEIVE_BATCH, 1, MAX_RECEIVE_BATCH, env),
            wait_time_seconds=_get_int("WAIT_TIME_SECONDS", MAX_WAIT_TIME_SECONDS, 0, MAX_WAIT_TIME_SECONDS, env),
            download_dir=get_env_var("DOWNLOAD_DIR", "/tmp", env),
            malformed_queue_url=env.get("MALFORMED_QUEUE_URL") or None,
            environment=get_env_var("ENVIRONMENT", "dev", env),
            log_level=get_env_var("LOG_LEVEL", "INFO", env).upper(),
            endpoint_url=env.get("SQS_ENDPOINT_URL") or None,
        )
