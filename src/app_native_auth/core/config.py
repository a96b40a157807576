"""Client configuration for the identity server.

Values are usually supplied by the caller.  :meth:`AuthConfig.from_env`
reads the single-instance environment variables::

    APP_AUTH_CLIENT_ID       OAuth client identifier (required)
    APP_AUTH_CLIENT_SECRET   only for confidential clients
    APP_AUTH_CALLBACK_URL    registered redirect URI (required)
    APP_AUTH_BASE_URL        identity server base URL (required)

The client secret is never logged nor included in ``repr()``.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Final
from urllib.parse import urlparse

from app_native_auth.core.errors import ConfigError
from app_native_auth.utils.environment import ENV_PREFIX, env_float, env_int, env_str

_LOG = logging.getLogger("app-native-auth.core.config")

DEFAULT_RESEND_COOLDOWN: Final[int] = 60
DEFAULT_RESTART_DELAY: Final[float] = 2.0
DEFAULT_HTTP_TIMEOUT: Final[float] = 20.0


@dataclass(frozen=True, slots=True)
class AuthConfig:
    """Immutable client settings borrowed by the orchestrator for a flow."""

    client_id: str
    callback_url: str
    base_url: str
    client_secret: str | None = field(default=None, repr=False)
    resend_cooldown: int = DEFAULT_RESEND_COOLDOWN
    restart_delay: float = DEFAULT_RESTART_DELAY
    http_timeout: float = DEFAULT_HTTP_TIMEOUT

    def __post_init__(self) -> None:
        # Normalise user input once; the instance is frozen afterwards.
        object.__setattr__(self, "client_id", (self.client_id or "").strip())
        object.__setattr__(self, "callback_url", (self.callback_url or "").strip())
        object.__setattr__(self, "base_url", (self.base_url or "").strip().rstrip("/"))
        secret = (self.client_secret or "").strip()
        object.__setattr__(self, "client_secret", secret or None)

    @classmethod
    def from_env(cls, prefix: str = ENV_PREFIX) -> "AuthConfig":
        """Build a validated configuration from ``${prefix}*`` variables."""
        config = cls(
            client_id=env_str("CLIENT_ID", prefix=prefix) or "",
            client_secret=env_str("CLIENT_SECRET", prefix=prefix),
            callback_url=env_str("CALLBACK_URL", prefix=prefix) or "",
            base_url=env_str("BASE_URL", prefix=prefix) or "",
            resend_cooldown=env_int("RESEND_COOLDOWN", DEFAULT_RESEND_COOLDOWN, prefix=prefix),
            restart_delay=env_float("RESTART_DELAY", DEFAULT_RESTART_DELAY, prefix=prefix),
            http_timeout=env_float("HTTP_TIMEOUT", DEFAULT_HTTP_TIMEOUT, prefix=prefix),
        )
        config.validate()
        _LOG.debug(
            "Loaded configuration from %s* (base_url=%s, confidential=%s)",
            prefix,
            config.base_url,
            config.is_confidential,
        )
        return config

    @property
    def is_confidential(self) -> bool:
        return self.client_secret is not None

    def validate(self) -> "AuthConfig":
        """Raise :class:`ConfigError` unless every required value is usable."""
        if not self.client_id:
            raise ConfigError("Client ID is required")
        if not self.callback_url:
            raise ConfigError("Callback URL is required")
        if not self.base_url:
            raise ConfigError("Identity server base URL is required")
        parsed = urlparse(self.base_url)
        if parsed.scheme not in ("http", "https") or not parsed.netloc:
            raise ConfigError(
                "Invalid identity server base URL. Expected: https://your-host[:port]"
            )
        return self
