"""Domain models for the prompt assembly engine.

This module contains the data structures that describe prompts, chat history
and the per-request configuration consumed by the population pipeline.
"""

# Chat models - Stored history and its prompt-ready form
from .chat import (
    ChatMessage,
    GenerationType,
    HistoryEntry,
    ToolInvocation,
)

# Prompt models - Prompt definitions and ordering
from .prompts import (
    InjectionPosition,
    Prompt,
    PromptCollection,
    PromptOrderEntry,
    Role,
)

# Settings models - Per-request configuration
from .settings import (
    ChatCompletionSource,
    ImageQuality,
    NamesBehavior,
    PromptSettings,
)

# Source models - Generation-time prompt data
from .source import (
    Character,
    ExtensionPrompt,
    ExtensionPromptPosition,
    ExtensionPromptRole,
    PromptSource,
)

__all__ = [
    # Chat models
    "ChatMessage",
    "GenerationType",
    "HistoryEntry",
    "ToolInvocation",

    # Prompt models
    "InjectionPosition",
    "Prompt",
    "PromptCollection",
    "PromptOrderEntry",
    "Role",

    # Settings models
    "ChatCompletionSource",
    "ImageQuality",
    "NamesBehavior",
    "PromptSettings",

    # Source models
    "Character",
    "ExtensionPrompt",
    "ExtensionPromptPosition",
    "ExtensionPromptRole",
    "PromptSource",
]
