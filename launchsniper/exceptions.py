# launchsniper/exceptions.py
"""
Typed exceptions for the sniper.

Per-token pipeline problems are logged and swallowed at the polling loop;
only the startup errors (ConfigError, CollaboratorUnavailable) stop the bot.
"""


class SniperError(Exception):
    """Base exception for all sniper errors."""

    def __init__(self, message: str, **context):
        super().__init__(message)
        self.message = message
        self.context = context

    def __str__(self):
        if self.context:
            ctx_str = ", ".join(f"{k}={v}" for k, v in self.context.items())
            return f"{self.message} [{ctx_str}]"
        return self.message


class ConfigError(SniperError):
    """Raised when configuration is missing or invalid."""
    pass


class CollaboratorUnavailable(SniperError):
    """Raised when a required collaborator cannot be reached at startup."""
    pass


class InvalidTransition(SniperError):
    """Raised on a backwards or out-of-terminal trade status change."""
    pass


class TradingHalted(SniperError):
    """Raised when a trade is requested after stop_all()."""
    pass


class SubmissionError(SniperError):
    """Raised when a transaction is refused before it reaches the network."""
    pass
