# SPDX-License-Identifier: MPL-2.0
"""Engine configuration.

Settings are plain pydantic models with built-in defaults.
``EngineSettings.from_env`` overlays ``FHE_LEDGER_*`` environment
variables on top of those defaults.
"""

from __future__ import annotations

import logging
import os
from decimal import Decimal
from typing import Mapping, Optional

from pydantic import BaseModel, ValidationError, field_validator

from fhe_ledger.core.codec import DEFAULT_MAX_MAGNITUDE, MAX_SUPPORTED_MAGNITUDE
from fhe_ledger.core.exceptions import ConfigurationError
from fhe_ledger.core.operator import DEFAULT_AML_THRESHOLD

DEFAULT_AUTH_TIMEOUT = 60.0  # seconds
DEFAULT_WINDOW_DAYS = 30

ENV_PREFIX = "FHE_LEDGER_"

_ENV_FIELDS = {
    "AML_THRESHOLD": "aml_threshold",
    "MAX_MAGNITUDE": "max_magnitude",
    "AUTH_TIMEOUT": "authorization_timeout",
    "WINDOW_DAYS": "window_duration_days",
    "DATABASE": "database",
    "LOG_LEVEL": "log_level",
}


class EngineSettings(BaseModel):
    """Configuration for the ledger engine."""

    aml_threshold: Decimal = DEFAULT_AML_THRESHOLD
    max_magnitude: Decimal = DEFAULT_MAX_MAGNITUDE
    authorization_timeout: float = DEFAULT_AUTH_TIMEOUT
    window_duration_days: int = DEFAULT_WINDOW_DAYS
    database: str = "ledger.db"
    log_level: str = "INFO"

    @field_validator("aml_threshold")
    @classmethod
    def _finite_threshold(cls, v: Decimal) -> Decimal:
        if not v.is_finite():
            raise ValueError("aml_threshold must be finite")
        return v

    @field_validator("max_magnitude")
    @classmethod
    def _positive_magnitude(cls, v: Decimal) -> Decimal:
        if not v.is_finite() or v <= 0:
            raise ValueError("max_magnitude must be a positive finite number")
        if v > MAX_SUPPORTED_MAGNITUDE:
            raise ValueError(f"max_magnitude must not exceed {MAX_SUPPORTED_MAGNITUDE}")
        return v

    @field_validator("authorization_timeout")
    @classmethod
    def _positive_timeout(cls, v: float) -> float:
        if v <= 0:
            raise ValueError("authorization_timeout must be positive")
        return v

    @field_validator("window_duration_days")
    @classmethod
    def _positive_window(cls, v: int) -> int:
        if v < 1:
            raise ValueError("window_duration_days must be at least 1")
        return v

    @field_validator("log_level")
    @classmethod
    def _known_level(cls, v: str) -> str:
        level = v.upper()
        if not isinstance(logging.getLevelName(level), int):
            raise ValueError(f"unknown log level: {v}")
        return level

    @classmethod
    def from_env(cls, environ: Optional[Mapping[str, str]] = None) -> EngineSettings:
        """Build settings from ``FHE_LEDGER_*`` environment variables.

        Raises:
            ConfigurationError: If a variable holds an invalid value.
        """
        env = os.environ if environ is None else environ
        values = {}
        for suffix, field in _ENV_FIELDS.items():
            raw = env.get(ENV_PREFIX + suffix)
            if raw is not None and raw.strip() != "":
                values[field] = raw.strip()
        try:
            return cls(**values)
        except ValidationError as e:
            raise ConfigurationError(
                f"Invalid engine configuration: {e}",
                details={"fields": sorted(values)},
            ) from e


def configure_logging(level: str = "INFO") -> None:
    """Configure root logging for the CLI and the HTTP service."""
    logging.basicConfig(
        level=getattr(logging, level.upper(), logging.INFO),
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )
