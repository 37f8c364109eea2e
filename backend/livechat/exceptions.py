"""
Chat error taxonomy.

Gateway implementations raise GatewayError; the stores translate it into the
error the caller is expected to recover from.
"""


class ChatError(Exception):
    """Base class for all live chat errors."""


class GatewayError(ChatError):
    """The persistence gateway could not complete a request."""


class StoreUnavailable(ChatError):
    """A session or message read/write could not reach the gateway. Retryable."""


class SessionNotFound(ChatError):
    """No chat session exists with the requested id."""


class InvalidStatusTransition(ChatError):
    """The requested session status change is not allowed."""


class SendFailed(ChatError):
    """A message insert failed; the caller must restore the unsent input."""


class UploadFailed(ChatError):
    """An attachment upload failed; no message may reference it."""


class SubscriptionError(ChatError):
    """The live feed could not be established or was dropped."""
