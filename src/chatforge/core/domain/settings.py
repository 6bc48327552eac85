"""Per-request prompt settings.

These replace a process-wide settings object: every pipeline call receives its
own ``PromptSettings`` instance.
"""

from enum import Enum, IntEnum

from pydantic import BaseModel, Field

from .prompts import Prompt, PromptOrderEntry, default_prompt_order, default_prompts


class ChatCompletionSource(str, Enum):
    """Supported chat completion vendors."""

    OPENAI = "openai"
    CLAUDE = "claude"
    OPENROUTER = "openrouter"
    AI21 = "ai21"
    MAKERSUITE = "makersuite"
    VERTEXAI = "vertexai"
    MISTRALAI = "mistralai"
    CUSTOM = "custom"
    COHERE = "cohere"
    PERPLEXITY = "perplexity"
    GROQ = "groq"
    ELECTRONHUB = "electronhub"
    NANOGPT = "nanogpt"
    DEEPSEEK = "deepseek"
    AIMLAPI = "aimlapi"
    XAI = "xai"
    POLLINATIONS = "pollinations"
    MOONSHOT = "moonshot"
    FIREWORKS = "fireworks"
    COMETAPI = "cometapi"
    AZURE_OPENAI = "azure_openai"


class NamesBehavior(IntEnum):
    """How speaker names are conveyed to the model."""

    NONE = -1
    DEFAULT = 0
    COMPLETION = 1
    CONTENT = 2


class ImageQuality(str, Enum):
    """Detail level requested for inline images."""

    LOW = "low"
    AUTO = "auto"
    HIGH = "high"


DEFAULT_IMPERSONATION_PROMPT = (
    "[Write your next reply from the point of view of {{user}}, using the chat history "
    "so far as a guideline for the writing style of {{user}}. Don't write as {{char}} "
    "or system. Don't describe actions of {{char}}.]"
)


class PromptSettings(BaseModel):
    """Prompt assembly configuration for one generation request."""

    # Budget
    openai_max_context: int = Field(default=4095, ge=0, description="Context size in tokens")
    openai_max_tokens: int = Field(default=300, ge=0, description="Tokens reserved for the reply")
    chat_completion_source: ChatCompletionSource = ChatCompletionSource.OPENAI
    model: str = "gpt-4-turbo"

    # Templates
    new_chat_prompt: str = "[Start a new Chat]"
    new_group_chat_prompt: str = "[Start a new group chat. Group members: {{group}}]"
    new_example_chat_prompt: str = "[Example Chat]"
    continue_nudge_prompt: str = "[Continue your last message without repeating its original content.]"
    group_nudge_prompt: str = "[Write the next reply only as {{char}}.]"
    impersonation_prompt: str = DEFAULT_IMPERSONATION_PROMPT
    wi_format: str = "{0}"
    scenario_format: str = "{{scenario}}"
    personality_format: str = "{{personality}}"
    send_if_empty: str = ""
    injection_separator: str = Field(
        default="\n",
        description="Joiner for in-chat prompts merged into one message",
    )

    # Behavior
    wrap_in_quotes: bool = False
    names_behavior: NamesBehavior = NamesBehavior.DEFAULT
    squash_system_messages: bool = False
    image_inlining: bool = False
    inline_image_quality: ImageQuality = ImageQuality.LOW
    video_inlining: bool = False
    continue_prefill: bool = False
    assistant_prefill: str = ""
    function_calling: bool = False
    pin_examples: bool = Field(
        default=False,
        description="Populate dialogue examples before chat history",
    )

    # Prompt manager
    prompts: list[Prompt] = Field(default_factory=default_prompts)
    prompt_order: list[PromptOrderEntry] = Field(default_factory=default_prompt_order)

    def is_prompt_enabled(self, identifier: str) -> bool:
        """Whether a prompt is present and enabled in the prompt order."""
        return any(e.identifier == identifier and e.enabled for e in self.prompt_order)

    def supports_assistant_prefill(self) -> bool:
        return self.chat_completion_source == ChatCompletionSource.CLAUDE
