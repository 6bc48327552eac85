"""Depth injection of prompts into chat history."""

import logging

from ..core.domain.chat import HistoryEntry
from ..core.domain.prompts import DEFAULT_INJECTION_ORDER, InjectionPosition, Prompt, Role
from ..core.domain.source import ExtensionPrompt, ExtensionPromptPosition, ExtensionPromptRole

logger = logging.getLogger(__name__)

# Within one depth and order, roles are emitted in this order (newest first)
ROLE_PRIORITY = (Role.SYSTEM, Role.USER, Role.ASSISTANT)

EXTENSION_ROLES = {
    ExtensionPromptRole.SYSTEM: Role.SYSTEM,
    ExtensionPromptRole.USER: Role.USER,
    ExtensionPromptRole.ASSISTANT: Role.ASSISTANT,
}


def extension_prompts_in_chat(extension_prompts: dict[str, ExtensionPrompt]) -> list[Prompt]:
    """In-chat extension prompts as absolute prompts at the default order."""
    prompts = []
    for key, extension in extension_prompts.items():
        if extension.position != ExtensionPromptPosition.IN_CHAT or not extension.value.strip():
            continue
        prompts.append(Prompt(
            identifier=key,
            role=EXTENSION_ROLES[extension.role],
            content=extension.value,
            injection_position=InjectionPosition.ABSOLUTE,
            injection_depth=extension.depth,
            injection_order=DEFAULT_INJECTION_ORDER,
            extension=True,
        ))
    return prompts


def inject_depth_prompts(
    prompts: list[Prompt],
    history: list[HistoryEntry],
    separator: str = "\n",
) -> list[HistoryEntry]:
    """Splice absolute prompts into a copy of the history.

    A prompt at depth ``d`` lands so that ``d + 1`` original history messages
    follow it: depth 0 sits right before the newest message. Prompts sharing a
    depth are grouped by order and then by role; the contents of one group
    and role are joined into a single message. Higher orders end up closer to
    the newest message; within an order the chronological sequence is
    assistant, user, system. Synthetic entries are marked ``injected``.

    Args:
        prompts: Absolute prompts to place
        history: Chat history, oldest first
        separator: Joiner for prompts merged into one message

    Returns:
        New history list, oldest first
    """
    prompts = [p for p in prompts if p.content.strip()]
    if not prompts:
        return list(history)

    newest_first = list(reversed(history))
    total_inserted = 0
    max_depth = max(p.injection_depth for p in prompts)

    for depth in range(max_depth + 1):
        at_depth = [p for p in prompts if p.injection_depth == depth]
        if not at_depth:
            continue

        entries: list[HistoryEntry] = []
        for order in sorted({p.injection_order for p in at_depth}, reverse=True):
            for role in ROLE_PRIORITY:
                content = separator.join(
                    p.content.strip()
                    for p in at_depth
                    if p.injection_order == order and p.role == role
                )
                if content:
                    entries.append(HistoryEntry(role=role.value, content=content, injected=True))

        if entries:
            index = depth + 1 + total_inserted
            newest_first[index:index] = entries
            total_inserted += len(entries)
            logger.debug(f"Injected {len(entries)} message(s) at depth {depth}")

    return list(reversed(newest_first))
