"""Exception types shared across loadwatch."""
from __future__ import annotations


class LoadwatchError(RuntimeError):
    pass


class ConfigError(LoadwatchError):
    """Configuration is invalid; the monitor cannot start."""


class MailDeliveryError(LoadwatchError):
    """The outbound mail transport rejected or failed to send a message."""
