"""Configuration module for idempotent execution.

This module provides the IdempotencyConfig class, the immutable policy object
consumed by the handler and the persistence layer, and the fixed retry bound
for the inconsistent-state loop.

Example:
    Basic usage with defaults:

        >>> config = IdempotencyConfig()
        >>> config.expires_after_seconds
        3600

    Custom configuration:

        >>> config = IdempotencyConfig(
        ...     event_key_path="body.order_id",
        ...     payload_validation_path="body.amount",
        ...     throw_on_no_idempotency_key=True,
        ...     expires_after_seconds=600,
        ... )

    Loading from environment:

        >>> import os
        >>> os.environ['IDEMPOTENCY_EVENT_KEY_PATH'] = 'body.order_id'
        >>> os.environ['IDEMPOTENCY_EXPIRES_AFTER_SECONDS'] = '600'
        >>> config = IdempotencyConfig.from_env()
"""

import os
from typing import Any, Literal

from pydantic import BaseModel, Field, field_validator

# Retries of the inconsistent-state loop; total reservation attempts is MAX_RETRIES + 1
MAX_RETRIES = 2

# Environment switch that disables idempotency regardless of config
DISABLED_ENV_VAR = "IDEMPOTENCY_DISABLED"

# Methods the ASGI adapter accepts in enabled_methods
VALID_HTTP_METHODS = frozenset(
    ("GET", "HEAD", "POST", "PUT", "PATCH", "DELETE", "OPTIONS", "CONNECT", "TRACE")
)

_TRUTHY = {"1", "true", "yes", "on", "y"}


def _is_truthy(value: str | None) -> bool:
    return value is not None and value.strip().lower() in _TRUTHY


class IdempotencyConfig(BaseModel):
    """Policy for idempotent execution.

    Attributes:
        event_key_path: Dotted path selecting the part of the payload hashed
            into the idempotency key (e.g. ``"body.order_id"``). When unset,
            the whole payload is hashed.
        payload_validation_path: Dotted path selecting the part of the payload
            whose hash is stored on the record and checked on replay. When
            unset, no payload validation is performed.
        throw_on_no_idempotency_key: When the selected key value is empty,
            raise IdempotencyKeyError (True) or bypass idempotency for that
            call (False). Default is False.
        expires_after_seconds: Lifetime of a record, sets its expiry
            timestamp. Must be between 1 and 604800 (7 days). Default 3600.
        disabled: When True, work runs directly and no persistence call is
            made. The IDEMPOTENCY_DISABLED environment variable has the same
            effect.
        hash_function: hashlib algorithm used for key and payload hashes.
        enabled_methods: HTTP methods the ASGI adapter makes idempotent.
        idempotency_header: Request header the ASGI adapter reads the key from.

    Note:
        This class is immutable (frozen=True). Create a new instance if you
        need different settings.
    """

    event_key_path: str | None = Field(
        default=None,
        description="Dotted path of the payload value hashed into the key",
    )
    payload_validation_path: str | None = Field(
        default=None,
        description="Dotted path of the payload value validated on replay",
    )
    throw_on_no_idempotency_key: bool = Field(
        default=False,
        description="Raise when no idempotency key can be derived",
    )
    expires_after_seconds: int = Field(
        default=3600,
        description="Lifetime of an idempotency record in seconds (1-604800)",
    )
    disabled: bool = Field(
        default=False,
        description="Bypass idempotency entirely",
    )
    hash_function: Literal["sha256", "sha1", "md5"] = Field(
        default="sha256",
        description="hashlib algorithm for key and payload hashes",
    )
    enabled_methods: list[str] = Field(
        default=["POST", "PUT", "PATCH", "DELETE"],
        description="HTTP methods the ASGI adapter makes idempotent",
    )
    idempotency_header: str = Field(
        default="idempotency-key",
        description="Request header carrying the idempotency key",
    )

    model_config = {"frozen": True}

    @field_validator("event_key_path", "payload_validation_path")
    @classmethod
    def validate_path(cls, v: str | None) -> str | None:
        """Normalize a dotted path; blank paths mean "not set".

        Raises:
            ValueError: If the path has empty segments (e.g. ``"a..b"``).
        """
        if v is None or not v.strip():
            return None
        v = v.strip()
        if any(segment == "" for segment in v.split(".")):
            raise ValueError(f"Invalid path {v!r}: empty segment")
        return v

    @field_validator("expires_after_seconds")
    @classmethod
    def validate_expires_after_seconds(cls, v: int) -> int:
        """Validate record lifetime is within acceptable range.

        Raises:
            ValueError: If not between 1 and 604800 (7 days).
        """
        if not (1 <= v <= 604800):
            raise ValueError(
                f"expires_after_seconds must be between 1 and 604800 (7 days), got {v}"
            )
        return v

    @field_validator("enabled_methods", mode="before")
    @classmethod
    def normalize_methods(cls, v: Any) -> list[str]:
        """Accept a list or a comma-separated string of methods, uppercased.

        Raises:
            ValueError: If a method is not a known HTTP method.

        Example:
            >>> IdempotencyConfig(enabled_methods="post, put").enabled_methods
            ['POST', 'PUT']
        """
        items = v.split(",") if isinstance(v, str) else v
        if not isinstance(items, (list, tuple)):
            raise ValueError("enabled_methods must be a list or comma-separated string")

        methods = [str(item).strip().upper() for item in items if str(item).strip()]
        unknown = sorted(set(methods) - VALID_HTTP_METHODS)
        if unknown:
            raise ValueError(f"Invalid HTTP methods: {', '.join(unknown)}")
        return methods

    @field_validator("idempotency_header")
    @classmethod
    def validate_idempotency_header(cls, v: str) -> str:
        """Header names are matched case-insensitively, so store them lowercase."""
        v = v.strip().lower()
        if not v:
            raise ValueError("idempotency_header cannot be empty")
        return v

    def is_disabled(self) -> bool:
        """Whether idempotency is off for this call.

        The environment switch is read on every call so it can be flipped
        without rebuilding the config.
        """
        return self.disabled or _is_truthy(os.environ.get(DISABLED_ENV_VAR))

    @classmethod
    def from_env(cls, prefix: str = "IDEMPOTENCY_") -> "IdempotencyConfig":
        """Create configuration from environment variables.

        Variable names are uppercase field names with the prefix, e.g.
        ``IDEMPOTENCY_EXPIRES_AFTER_SECONDS``. Missing variables use the
        model defaults.

        Args:
            prefix: Prefix for environment variable names.

        Returns:
            IdempotencyConfig instance populated from environment variables.

        Raises:
            ValidationError: If a variable holds an invalid value.
        """
        values: dict[str, Any] = {}
        for name, field in cls.model_fields.items():
            raw = os.environ.get(f"{prefix}{name.upper()}")
            if raw is None:
                continue
            # pydantic coerces the rest; methods arrive comma-separated
            values[name] = _is_truthy(raw) if field.annotation is bool else raw
        return cls(**values)

    @classmethod
    def from_dict(cls, config_dict: dict[str, Any]) -> "IdempotencyConfig":
        """Create configuration from a dictionary.

        Raises:
            ValidationError: If the dictionary contains invalid values.
        """
        return cls.model_validate(config_dict)
