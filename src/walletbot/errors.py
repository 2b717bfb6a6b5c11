"""Exception hierarchy for the wallet bot."""

from typing import Optional


class WalletBotError(Exception):
    """Base class for all wallet bot errors."""


class ValidationError(WalletBotError):
    """User input rejected at a conversation step.

    The message is safe to show to the user verbatim.
    """


class BackendError(WalletBotError):
    """A wallet backend, DEX, risk or auth service call failed."""

    def __init__(self, message: str, status_code: Optional[int] = None):
        self.status_code = status_code
        super().__init__(message)


class AuthStartError(BackendError):
    """The backend refused to open an authentication session request."""


class AuthDecryptError(WalletBotError):
    """The credential payload returned by the backend could not be decrypted."""


class AuthTimeoutError(WalletBotError):
    """Authentication polling gave up before the request was completed."""


class StateError(WalletBotError):
    """A chat session is in a step no handler recognizes."""


class VisualizationError(WalletBotError):
    """A chart or scannable code could not be rendered."""
