"""Prompt assembly: messages, collections, the token budget and the pipeline."""

from .collection import MessageCollection
from .completion import ChatCompletion
from .exceptions import (
    IdentifierNotFound,
    InvalidArgument,
    PromptAssemblyError,
    TokenBudgetExceeded,
)
from .message import Message
from .population import PreparedChat, PromptAssembler, prepare_chat_messages

__all__ = [
    "ChatCompletion",
    "IdentifierNotFound",
    "InvalidArgument",
    "Message",
    "MessageCollection",
    "PreparedChat",
    "PromptAssembler",
    "PromptAssemblyError",
    "TokenBudgetExceeded",
    "prepare_chat_messages",
]
