"""Exception hierarchy shared by the chat engine."""


class RbchatError(Exception):
    """Base class for all rbchat errors."""


# -- Backend dispatch ----------------------------------------------------------


class BackendError(RbchatError):
    """A backend request failed. The turn is aborted and rolled back."""


class BackendTimeoutError(BackendError, TimeoutError):
    """The request exceeded the configured timeout."""


class NetworkError(BackendError):
    """Transport failure or non-success HTTP status from the provider."""


class BackendProtocolError(BackendError):
    """The provider response does not parse into an AssistantTurn."""


class UnsupportedContentError(BackendError):
    """Image content was sent to a model without vision support."""


# -- Tools ---------------------------------------------------------------------


class ToolValidationError(RbchatError):
    """Tool arguments did not match the declared schema (or unknown tool)."""


class ToolExecutionError(RbchatError):
    """A tool ran but could not complete its action."""


# -- Knowledge -----------------------------------------------------------------


class EmbeddingError(RbchatError):
    """Computing an embedding vector failed."""


class KnowledgeIndexError(RbchatError):
    """The on-disk knowledge index is unreadable or inconsistent."""


# -- Sessions / turns ----------------------------------------------------------


class SessionIOError(RbchatError):
    """Saving or loading a chat session failed."""


class IterationLimitError(RbchatError):
    """The tool-calling loop needed more backend rounds than allowed."""
