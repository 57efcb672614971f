"""
llmwire - Request Configuration Models

Per-call configuration validated with pydantic. A RequestConfig is frozen
and owned by a single call; nothing in it is shared across calls.
"""

from enum import Enum
from typing import Any, Dict, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator

from .cancellation import CancellationToken


# ============================================================
# Enums
# ============================================================

class AuthMode(str, Enum):
    """How the API key is presented to the upstream."""
    BEARER = "bearer"                  # Authorization: Bearer <key>
    API_KEY_HEADER = "api-key-header"  # x-api-key: <key> + version header


class WireFormat(str, Enum):
    """Streaming convention spoken by the upstream."""
    DELTA_JSON = "delta-json"    # data: {"choices":[{"delta":...}]} ... data: [DONE]
    TYPED_EVENT = "typed-event"  # event: <name> / data: {...}


# ============================================================
# Config
# ============================================================

class BackoffPolicy(BaseModel):
    """Exponential backoff with jitter, in seconds."""
    base_delay: float = Field(default=1.0, gt=0)
    max_delay: float = Field(default=16.0, gt=0)
    exponential_base: float = Field(default=2.0, ge=1.0)
    jitter_factor: float = Field(default=0.25, ge=0.0, le=1.0)

    model_config = ConfigDict(frozen=True)

    @model_validator(mode="after")
    def _check_bounds(self) -> "BackoffPolicy":
        if self.max_delay < self.base_delay:
            raise ValueError("max_delay must be >= base_delay")
        return self


class RequestConfig(BaseModel):
    """Options for one request or stream."""
    max_retries: int = Field(default=2, ge=0)
    timeout_ms: int = Field(default=30000, gt=0)
    auth_mode: AuthMode = AuthMode.BEARER
    wire_format: WireFormat = WireFormat.DELTA_JSON
    extra_headers: Dict[str, str] = Field(default_factory=dict)
    api_key_header: str = Field(default="x-api-key", min_length=1)
    api_version: str = Field(default="2023-06-01", min_length=1)
    backoff: BackoffPolicy = Field(default_factory=BackoffPolicy)
    cancellation_token: Optional[CancellationToken] = None

    model_config = ConfigDict(frozen=True, arbitrary_types_allowed=True)

    @field_validator("extra_headers")
    @classmethod
    def _check_headers(cls, v: Dict[str, str]) -> Dict[str, str]:
        for name in v:
            if not name or any(ch in name for ch in " :\r\n"):
                raise ValueError(f"invalid header name: {name!r}")
        return dict(v)

    @property
    def timeout_seconds(self) -> float:
        return self.timeout_ms / 1000.0

    @property
    def cancelled(self) -> bool:
        return self.cancellation_token is not None and self.cancellation_token.cancelled

    @classmethod
    def from_env(cls, **overrides: Any) -> "RequestConfig":
        """
        Build a config from LLMWIRE_* environment defaults.

        Keyword overrides win over the environment.
        """
        from .. import config as env

        values: Dict[str, Any] = {
            "max_retries": env.get_default_max_retries(),
            "timeout_ms": env.get_default_timeout_ms(),
            "api_version": env.get_anthropic_version(),
            "backoff": BackoffPolicy(
                base_delay=env.get_backoff_base_ms() / 1000.0,
                max_delay=max(env.get_backoff_max_ms(), env.get_backoff_base_ms()) / 1000.0,
            ),
        }
        values.update(overrides)
        return cls(**values)
