"""Errors raised while assembling a prompt.

Budget overflow and missing sections are distinct types so callers can tell
a fatal overflow of mandatory content apart from configuration defects.
"""


class PromptAssemblyError(Exception):
    """Base exception for prompt assembly failures."""
    pass


class TokenBudgetExceeded(PromptAssemblyError):
    """Raised when adding content would push the token budget below zero."""

    def __init__(self, identifier: str = ""):
        self.identifier = identifier
        super().__init__(f"Token budget exceeded. Message: {identifier}")


class IdentifierNotFound(PromptAssemblyError):
    """Raised when a named collection was never added to the completion."""

    def __init__(self, identifier: str):
        self.identifier = identifier
        super().__init__(f"Identifier {identifier} not found.")


class InvalidArgument(PromptAssemblyError, TypeError):
    """Raised when something other than a message or collection is handed over."""
    pass
