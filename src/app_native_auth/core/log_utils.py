"""Structured logging helpers for flow components.

This module purposefully restricts **which** contextual attributes are attached
to log records in order to avoid accidentally leaking secrets.  All helpers
ONLY inject the following *non-sensitive* fields:

- ``flow_id``        – The server flow identifier (first 6 chars kept)
- ``step``           – Current step kind (``totp``, ``sms-otp``…)
- ``correlation_id`` – Request correlation id, wired by the HTTP layer

Usage
-----
>>> from app_native_auth.core.log_utils import get_flow_logger
>>> log = get_flow_logger(
...     base_logger_name="app-native-auth.core.orchestrator",
...     flow_id="4a1f0c77-7b1e-4a6a-9b52-1d3f6d1f9e21",
...     step="totp",
... )
>>> log.info("Submitting code")
INFO app-native-auth.core.orchestrator flow_id=4a1f0c step=totp ...

The adapter is a thin wrapper around :class:`logging.LoggerAdapter`.
"""

from __future__ import annotations

import logging
from typing import Any, Mapping, MutableMapping


class _FlowLoggerAdapter(logging.LoggerAdapter):
    """Inject whitelisted flow context into log records."""

    extra_keys = ("flow_id", "step", "correlation_id")

    def __init__(self, logger: logging.Logger, extra: Mapping[str, Any] | None = None):
        extra_clean: MutableMapping[str, Any] = {}
        for k in self.extra_keys:
            if not extra or extra.get(k) is None:
                continue
            if k == "flow_id":
                # keep only first 6 characters of the server-issued id
                extra_clean[k] = str(extra[k])[:6]
            else:
                extra_clean[k] = extra[k]
        super().__init__(logger, extra_clean)

    def process(self, msg: str, kwargs: MutableMapping[str, Any]):
        if "extra" not in kwargs or kwargs["extra"] is None:
            kwargs["extra"] = {}
        # merge but do not overwrite call-site provided extras
        for k, v in self.extra.items():
            kwargs["extra"].setdefault(k, v)
        if self.extra:
            context = " ".join(f"{k}={v}" for k, v in self.extra.items())
            msg = f"{msg} [{context}]"
        return msg, kwargs


def get_flow_logger(
    *,
    base_logger_name: str = "app-native-auth.core",
    flow_id: str | None = None,
    step: str | None = None,
    correlation_id: str | None = None,
) -> logging.LoggerAdapter:
    """Return a LoggerAdapter pre-filled with flow context."""
    logger = logging.getLogger(base_logger_name)
    return _FlowLoggerAdapter(
        logger,
        {
            "flow_id": flow_id,
            "step": step,
            "correlation_id": correlation_id,
        },
    )
