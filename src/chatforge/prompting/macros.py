"""Macro substitution for prompt templates."""

import re
import unicodedata
from dataclasses import dataclass, field

from ..core.domain.source import PromptSource

MACRO_PATTERN = re.compile(r"\{\{(\w+)\}\}")
VALID_NAME_PATTERN = re.compile(r"^[a-zA-Z0-9_-]{1,64}$")

LEGACY_MACROS = {
    "<USER>": "user",
    "<BOT>": "char",
    "<CHAR>": "char",
}


@dataclass
class MacroContext:
    """Values available to ``{{macro}}`` placeholders."""

    user: str
    char: str
    group: list[str] = field(default_factory=list)
    personality: str = ""
    scenario: str = ""
    persona: str = ""
    description: str = ""

    @classmethod
    def from_source(cls, source: PromptSource) -> "MacroContext":
        return cls(
            user=source.user_name,
            char=source.character.name,
            group=list(source.group_members),
            personality=source.character.personality,
            scenario=source.character.scenario,
            persona=source.persona_description,
            description=source.character.description,
        )

    def values(self) -> dict[str, str]:
        group = ", ".join(self.group) if self.group else self.char
        return {
            "user": self.user,
            "char": self.char,
            "group": group,
            "charifnotgroup": group,
            "personality": self.personality,
            "scenario": self.scenario,
            "persona": self.persona,
            "description": self.description,
        }

    def substitute(self, text: str, **extra: str) -> str:
        """Replace known macros; unknown ones are left untouched.

        Macro names are case-insensitive. Keyword arguments add or override
        macros for this call, e.g. ``original`` or ``lastChatMessage``.
        """
        if not text:
            return ""

        values = self.values()
        values.update({key.lower(): value for key, value in extra.items()})

        def replace(match: re.Match) -> str:
            key = match.group(1).lower()
            return values[key] if key in values else match.group(0)

        # Nested macros such as {{personality}} inside a format are resolved once more
        result = MACRO_PATTERN.sub(replace, text)
        result = MACRO_PATTERN.sub(replace, result)

        for legacy, key in LEGACY_MACROS.items():
            value = values[key]
            result = re.sub(re.escape(legacy), lambda _: value, result, flags=re.IGNORECASE)
        return result


def string_format(template: str, *args: str) -> str:
    """Fill ``{0}``, ``{1}``... placeholders, leaving other braces alone."""
    return re.sub(
        r"\{(\d+)\}",
        lambda m: args[int(m.group(1))] if int(m.group(1)) < len(args) else m.group(0),
        template,
    )


def format_world_info(value: str, wi_format: str) -> str:
    if not value:
        return ""
    if not wi_format.strip():
        return value
    return string_format(wi_format, value)


def is_valid_name(name: str) -> bool:
    return bool(VALID_NAME_PATTERN.match(name))


def sanitize_name(name: str) -> str:
    """Reduce a speaker name to the characters vendors accept in ``name``."""
    normalized = unicodedata.normalize("NFD", name)
    stripped = "".join(c for c in normalized if not unicodedata.combining(c))
    return re.sub(r"[^a-zA-Z0-9_-]", "", stripped.replace(" ", "_"))[:64]
