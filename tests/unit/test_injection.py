"""Unit tests for depth injection."""

from chatforge.core.domain import (
    ExtensionPrompt,
    ExtensionPromptPosition,
    ExtensionPromptRole,
    HistoryEntry,
    InjectionPosition,
    Prompt,
    Role,
)
from chatforge.prompting.injection import extension_prompts_in_chat, inject_depth_prompts


def history(*contents: str) -> list[HistoryEntry]:
    return [HistoryEntry(role="user", content=content) for content in contents]


def absolute(content: str, depth: int, order: int = 100, role: Role = Role.SYSTEM) -> Prompt:
    return Prompt(
        identifier=content,
        role=role,
        content=content,
        injection_position=InjectionPosition.ABSOLUTE,
        injection_depth=depth,
        injection_order=order,
    )


class TestInjectDepthPrompts:
    """Test cases for splicing prompts into history."""

    def test_depth_zero_before_newest_message(self) -> None:
        result = inject_depth_prompts([absolute("debug-note", 0)], history("a", "b", "c"))

        assert [e.content for e in result] == ["a", "b", "debug-note", "c"]
        assert result[2].injected is True
        assert result[2].role == "system"

    def test_multiple_depths(self) -> None:
        result = inject_depth_prompts(
            [absolute("deep", 1), absolute("shallow", 0)],
            history("a", "b", "c"),
        )

        assert [e.content for e in result] == ["a", "deep", "b", "shallow", "c"]

    def test_depth_beyond_history_goes_first(self) -> None:
        result = inject_depth_prompts([absolute("lore", 10)], history("a", "b"))

        assert [e.content for e in result] == ["lore", "a", "b"]

    def test_empty_history(self) -> None:
        result = inject_depth_prompts([absolute("note", 0)], [])

        assert [e.content for e in result] == ["note"]

    def test_same_depth_and_role_are_joined(self) -> None:
        result = inject_depth_prompts(
            [absolute("one", 0), absolute("two", 0)],
            history("a"),
        )

        assert [e.content for e in result] == ["one\ntwo", "a"]

    def test_order_and_role_grouping(self) -> None:
        """Test higher orders sit closer to the newest message."""
        result = inject_depth_prompts(
            [
                absolute("low", 0, order=10),
                absolute("high-user", 0, order=200, role=Role.USER),
                absolute("high-system", 0, order=200),
            ],
            history("a", "b"),
        )

        assert [e.content for e in result] == ["a", "low", "high-user", "high-system", "b"]
        assert [e.role for e in result[1:4]] == ["system", "user", "system"]

    def test_blank_prompts_are_ignored(self) -> None:
        entries = history("a")

        result = inject_depth_prompts([absolute("   ", 0)], entries)

        assert result == entries
        assert result is not entries


class TestExtensionPromptsInChat:
    """Test cases for in-chat extension prompts."""

    def test_only_in_chat_prompts(self) -> None:
        prompts = extension_prompts_in_chat({
            "2_floating_prompt": ExtensionPrompt(
                value="Author's note", position=ExtensionPromptPosition.IN_CHAT,
                depth=2, role=ExtensionPromptRole.USER,
            ),
            "1_memory": ExtensionPrompt(value="Summary", position=ExtensionPromptPosition.IN_PROMPT),
            "empty": ExtensionPrompt(value=" ", position=ExtensionPromptPosition.IN_CHAT),
        })

        assert len(prompts) == 1
        assert prompts[0].injection_depth == 2
        assert prompts[0].role == Role.USER
        assert prompts[0].injection_position == InjectionPosition.ABSOLUTE
