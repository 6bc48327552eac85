"""Prompt definitions and the ordered prompt collection.

A prompt is a named fragment of text (or a marker standing in for text that is
supplied at generation time, such as the character description) together with
the metadata that decides where it lands in the assembled chat.
"""

from enum import Enum, IntEnum

from pydantic import BaseModel, Field


class Role(str, Enum):
    """Chat roles understood by chat completion vendors."""

    SYSTEM = "system"
    USER = "user"
    ASSISTANT = "assistant"
    TOOL = "tool"


class InjectionPosition(IntEnum):
    """Where an ordered prompt is placed."""

    RELATIVE = 0  # At its slot in the prompt order
    ABSOLUTE = 1  # Injected into chat history at a depth


DEFAULT_INJECTION_DEPTH = 4
DEFAULT_INJECTION_ORDER = 100


class Prompt(BaseModel):
    """A single prompt fragment with its placement metadata."""

    identifier: str = Field(..., description="Unique identifier of the prompt", min_length=1)
    name: str = Field(default="", description="Human readable prompt name")
    role: Role = Field(default=Role.SYSTEM, description="Chat role of the prompt")
    content: str = Field(default="", description="Prompt text, may contain macros")
    system_prompt: bool = Field(
        default=False,
        description="Built-in prompt as opposed to a user-defined one",
    )
    marker: bool = Field(
        default=False,
        description="Placeholder filled with generation-time content",
    )
    injection_position: InjectionPosition = InjectionPosition.RELATIVE
    injection_depth: int = Field(default=DEFAULT_INJECTION_DEPTH, ge=0)
    injection_order: int = Field(default=DEFAULT_INJECTION_ORDER)
    forbid_overrides: bool = Field(
        default=False,
        description="Ignore character-specific overrides of this prompt",
    )
    position: str | int | None = Field(
        default=None,
        description="Anchor offset inside the main prompt: 'start', 'end' or an index",
    )
    extension: bool = Field(
        default=False,
        description="Prompt contributed by an extension",
    )


class PromptOrderEntry(BaseModel):
    """One entry of the user-defined prompt order."""

    identifier: str
    enabled: bool = True


DEFAULT_MAIN_PROMPT = (
    "Write {{char}}'s next reply in a fictional chat between {{charIfNotGroup}} and {{user}}."
)
DEFAULT_ENHANCE_DEFINITIONS_PROMPT = (
    "If you have more knowledge of {{char}}, add to the character's lore and personality "
    "to enhance them but keep the Character Sheet's definitions absolute."
)


def default_prompts() -> list[Prompt]:
    """Built-in prompt definitions."""
    return [
        Prompt(identifier="main", name="Main Prompt", system_prompt=True, content=DEFAULT_MAIN_PROMPT),
        Prompt(identifier="nsfw", name="Auxiliary Prompt", system_prompt=True),
        Prompt(identifier="dialogueExamples", name="Chat Examples", system_prompt=True, marker=True),
        Prompt(identifier="jailbreak", name="Post-History Instructions", system_prompt=True),
        Prompt(identifier="chatHistory", name="Chat History", system_prompt=True, marker=True),
        Prompt(identifier="worldInfoAfter", name="World Info (after)", system_prompt=True, marker=True),
        Prompt(identifier="worldInfoBefore", name="World Info (before)", system_prompt=True, marker=True),
        Prompt(
            identifier="enhanceDefinitions",
            name="Enhance Definitions",
            system_prompt=True,
            content=DEFAULT_ENHANCE_DEFINITIONS_PROMPT,
        ),
        Prompt(identifier="charDescription", name="Char Description", system_prompt=True, marker=True),
        Prompt(identifier="charPersonality", name="Char Personality", system_prompt=True, marker=True),
        Prompt(identifier="scenario", name="Scenario", system_prompt=True, marker=True),
        Prompt(identifier="personaDescription", name="Persona Description", system_prompt=True, marker=True),
    ]


def default_prompt_order() -> list[PromptOrderEntry]:
    """Built-in prompt order."""
    return [
        PromptOrderEntry(identifier="main"),
        PromptOrderEntry(identifier="worldInfoBefore"),
        PromptOrderEntry(identifier="personaDescription"),
        PromptOrderEntry(identifier="charDescription"),
        PromptOrderEntry(identifier="charPersonality"),
        PromptOrderEntry(identifier="scenario"),
        PromptOrderEntry(identifier="enhanceDefinitions", enabled=False),
        PromptOrderEntry(identifier="nsfw"),
        PromptOrderEntry(identifier="worldInfoAfter"),
        PromptOrderEntry(identifier="dialogueExamples"),
        PromptOrderEntry(identifier="chatHistory"),
        PromptOrderEntry(identifier="jailbreak"),
    ]


class PromptCollection:
    """Ordered prompts addressable by identifier.

    The index of a prompt in this collection is its slot in the assembled chat,
    so replacing a prompt keeps its position.
    """

    def __init__(self, *prompts: Prompt) -> None:
        self.collection: list[Prompt] = list(prompts)
        self.overridden_prompts: list[str] = []

    def add(self, *prompts: Prompt) -> None:
        self.collection.extend(prompts)

    def set(self, prompt: Prompt, position: int) -> None:
        self.collection[position] = prompt

    def get(self, identifier: str) -> Prompt | None:
        return next((p for p in self.collection if p.identifier == identifier), None)

    def index(self, identifier: str) -> int:
        """Return the slot of a prompt, or -1 when absent."""
        for i, prompt in enumerate(self.collection):
            if prompt.identifier == identifier:
                return i
        return -1

    def has(self, identifier: str) -> bool:
        return self.index(identifier) != -1

    def override(self, prompt: Prompt, position: int) -> None:
        """Replace the prompt at a slot and remember that it was overridden."""
        self.set(prompt, position)
        self.overridden_prompts.append(prompt.identifier)

    def __len__(self) -> int:
        return len(self.collection)

    def __iter__(self):
        return iter(self.collection)
