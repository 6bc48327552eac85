"""Conversion of stored chat and example dialogues into prompt-ready entries."""

import re

from ..core.domain.chat import ChatMessage, HistoryEntry
from ..core.domain.settings import NamesBehavior, PromptSettings
from ..core.domain.source import PromptSource

START_PATTERN = re.compile(r"<START>", re.IGNORECASE)


def format_chat_history(source: PromptSource, settings: PromptSettings) -> list[HistoryEntry]:
    """Turn the stored chat into role-tagged entries, oldest first.

    Ignored messages are dropped, narration is sent as system, and speaker
    names are applied according to the names behavior.
    """
    entries: list[HistoryEntry] = []
    for message in source.chat:
        if message.ignored:
            continue

        role = "user" if message.is_user else "assistant"
        if message.is_narrator:
            role = "system"

        content = _apply_names_behavior(message, source, settings.names_behavior)
        content = content.replace("\r", "")

        if role == "user" and settings.wrap_in_quotes:
            content = f'"{content}"'

        entries.append(HistoryEntry(
            role=role,
            content=content,
            name=message.name,
            image=message.image,
            video=message.video,
            invocations=message.tool_invocations,
        ))
    return entries


def _apply_names_behavior(
    message: ChatMessage, source: PromptSource, behavior: NamesBehavior
) -> str:
    content = message.content
    if behavior == NamesBehavior.DEFAULT:
        from_other_speaker = message.name != source.user_name
        if (source.is_group and from_other_speaker) or (
            message.force_avatar and from_other_speaker and not message.is_narrator
        ):
            content = f"{message.name}: {content}"
    elif behavior == NamesBehavior.CONTENT:
        if not message.is_narrator:
            content = f"{message.name}: {content}"
    return content


def split_message_examples(examples: str) -> list[str]:
    """Split an example dialogue string into ``<START>`` blocks."""
    if not examples or not examples.strip():
        return []

    examples = examples.replace("\r", "")
    blocks = [block.strip() for block in START_PATTERN.split(examples)]
    return [f"<START>\n{block}" for block in blocks if block]


def parse_example_into_individual(
    example: str, source: PromptSource, append_names_for_group: bool = True
) -> list[HistoryEntry]:
    """Split one example block into individual turns.

    The first line is the block header and is skipped. Lines starting with
    ``User:`` or ``Char:`` (or a group member's name) open a new turn.
    """
    user_name = source.user_name
    char_name = source.character.name
    group_prefixes = [f"{name}:" for name in source.group_members]

    result: list[HistoryEntry] = []
    current_lines: list[str] = []
    in_user = False
    in_bot = False
    bot_name = char_name

    def add_message(name: str, system_name: str) -> None:
        nonlocal current_lines
        parsed = "\n".join(current_lines).replace(f"{name}:", "", 1).strip()
        if append_names_for_group and source.is_group:
            parsed = f"{name}: {parsed}"
        result.append(HistoryEntry(role="system", content=parsed, name=system_name))
        current_lines = []

    for line in example.split("\n")[1:]:
        if line.startswith(f"{user_name}:"):
            if in_bot:
                add_message(bot_name, "example_assistant")
            in_user = True
            in_bot = False
        elif line.startswith(f"{char_name}:") or any(line.startswith(p) for p in group_prefixes):
            if in_user:
                add_message(user_name, "example_user")
            if not line.startswith(f"{char_name}:") and group_prefixes:
                bot_name = line.split(":", 1)[0]
            in_bot = True
            in_user = False
        current_lines.append(line)

    if in_user:
        add_message(user_name, "example_user")
    elif in_bot:
        add_message(bot_name, "example_assistant")
    return result


def format_message_examples(source: PromptSource) -> list[list[HistoryEntry]]:
    """Parse the character's example dialogues into groups of turns."""
    dialogues = []
    for block in split_message_examples(source.character.message_examples):
        block = START_PATTERN.sub("{Example Dialogue:}", block, count=1)
        dialogues.append(parse_example_into_individual(block, source))
    return dialogues
