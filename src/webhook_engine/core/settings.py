"""Engine Settings Module.

Holds the tunables for the webhook engine: scheduler cadence,
concurrency limits, retry policy defaults, retention and health
thresholds. Settings can be built directly or loaded from the
environment (and a local .env file).
"""

import os
from enum import Enum
from typing import Dict, Optional

from dotenv import load_dotenv
from pydantic import BaseModel, ConfigDict, Field

ENV_PREFIX = "WEBHOOK_ENGINE_"
SECRET_ENV_PREFIX = "WEBHOOK_SECRET_"


class MissingHandlerPolicy(str, Enum):
    """What to do with an event that has no registered handler."""

    RETRY = "retry"              # retry with backoff, then dead-letter
    DEAD_LETTER = "dead_letter"  # dead-letter after the first attempt


class EngineSettings(BaseModel):
    """Webhook engine configuration."""

    model_config = ConfigDict(validate_assignment=True)

    # Scheduler
    tick_interval_seconds: float = Field(1.0, gt=0)
    max_concurrent_processing: int = Field(10, ge=1)
    batch_size: int = Field(5, ge=1)

    # Processing / retry
    processing_timeout_seconds: float = Field(30.0, gt=0)
    default_max_retries: int = Field(3, ge=0)
    default_retry_delay_seconds: float = Field(30.0, ge=0)
    missing_handler_policy: MissingHandlerPolicy = MissingHandlerPolicy.RETRY

    # Receipt
    dedup_window_size: int = Field(1000, ge=0)
    signature_tolerance_seconds: int = 300
    secrets: Dict[str, str] = Field(
        default_factory=dict,
        description="Per-source shared secrets used by the default verifiers",
    )

    # Retention / storage
    retention_days: float = Field(7.0, ge=0)
    store_path: Optional[str] = Field(
        None, description="SQLite file for a durable event store (None = in-memory)"
    )

    # Health thresholds
    queue_warning_threshold: int = 1000
    dead_letter_warning_threshold: int = 10
    dead_letter_error_threshold: int = 100

    log_level: str = "INFO"

    @classmethod
    def from_env(cls, env_file: Optional[str] = None, **overrides) -> "EngineSettings":
        """Build settings from WEBHOOK_ENGINE_* and WEBHOOK_SECRET_* variables.

        Args:
            env_file: Optional .env path (defaults to python-dotenv's lookup).
            **overrides: Explicit values that win over the environment.

        Returns:
            EngineSettings: The resolved settings.
        """
        load_dotenv(env_file)

        values = {}
        for name in cls.model_fields:
            if name == "secrets":
                continue
            raw = os.getenv(f"{ENV_PREFIX}{name.upper()}")
            if raw is not None and raw != "":
                values[name] = raw

        secrets = {
            key[len(SECRET_ENV_PREFIX):].lower(): value
            for key, value in os.environ.items()
            if key.startswith(SECRET_ENV_PREFIX) and value
        }
        if secrets:
            values["secrets"] = secrets

        values.update(overrides)
        return cls(**values)
