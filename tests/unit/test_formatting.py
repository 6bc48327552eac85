"""Unit tests for chat history and example dialogue formatting."""

from chatforge.core.domain import (
    Character,
    ChatMessage,
    NamesBehavior,
    PromptSettings,
    PromptSource,
)
from chatforge.prompting.formatting import (
    format_chat_history,
    format_message_examples,
    parse_example_into_individual,
    split_message_examples,
)


def make_source(**kwargs) -> PromptSource:
    kwargs.setdefault("character", Character(name="Seraphina"))
    kwargs.setdefault("user_name", "Ava")
    return PromptSource(**kwargs)


class TestFormatChatHistory:
    """Test cases for converting stored chat into history entries."""

    def test_roles_and_order(self) -> None:
        source = make_source(chat=[
            ChatMessage(name="Ava", content="Hello", is_user=True),
            ChatMessage(name="Seraphina", content="Hi\r\nthere"),
            ChatMessage(name="System", content="Time passes.", is_narrator=True),
        ])

        history = format_chat_history(source, PromptSettings())

        assert [entry.role for entry in history] == ["user", "assistant", "system"]
        assert history[1].content == "Hi\nthere"

    def test_ignored_messages_are_dropped(self) -> None:
        source = make_source(chat=[
            ChatMessage(name="Ava", content="Hidden", is_user=True, ignored=True),
            ChatMessage(name="Ava", content="Shown", is_user=True),
        ])

        history = format_chat_history(source, PromptSettings())

        assert [entry.content for entry in history] == ["Shown"]

    def test_wrap_in_quotes_applies_to_user(self) -> None:
        source = make_source(chat=[
            ChatMessage(name="Ava", content="Hello", is_user=True),
            ChatMessage(name="Seraphina", content="Hi"),
        ])

        history = format_chat_history(source, PromptSettings(wrap_in_quotes=True))

        assert history[0].content == '"Hello"'
        assert history[1].content == "Hi"

    def test_content_names_behavior(self) -> None:
        source = make_source(chat=[ChatMessage(name="Seraphina", content="Hi")])

        history = format_chat_history(source, PromptSettings(names_behavior=NamesBehavior.CONTENT))

        assert history[0].content == "Seraphina: Hi"

    def test_default_names_in_group(self) -> None:
        source = make_source(
            group_members=["Seraphina", "Kael"],
            chat=[
                ChatMessage(name="Ava", content="Hello", is_user=True),
                ChatMessage(name="Kael", content="Greetings"),
            ],
        )

        history = format_chat_history(source, PromptSettings())

        assert history[0].content == "Hello"
        assert history[1].content == "Kael: Greetings"
        assert history[1].name == "Kael"


class TestExamples:
    """Test cases for example dialogue parsing."""

    def test_split_message_examples(self) -> None:
        text = "<START>\nAva: Hi\nSeraphina: Hello\n<START>\nAva: Bye\r\n"

        blocks = split_message_examples(text)

        assert blocks == ["<START>\nAva: Hi\nSeraphina: Hello", "<START>\nAva: Bye"]
        assert split_message_examples("   ") == []

    def test_parse_example_into_individual(self) -> None:
        block = "<START>\nAva: How are you?\nSeraphina: Well, thank you.\nI hope you are too."

        turns = parse_example_into_individual(block, make_source())

        assert [(t.role, t.name) for t in turns] == [
            ("system", "example_user"),
            ("system", "example_assistant"),
        ]
        assert turns[0].content == "How are you?"
        assert turns[1].content == "Well, thank you.\nI hope you are too."

    def test_format_message_examples(self) -> None:
        source = make_source(character=Character(
            name="Seraphina",
            message_examples="<START>\nAva: Hi\nSeraphina: Hello\n<start>\nSeraphina: Welcome back",
        ))

        dialogues = format_message_examples(source)

        assert len(dialogues) == 2
        assert [t.content for t in dialogues[0]] == ["Hi", "Hello"]
        assert [t.name for t in dialogues[1]] == ["example_assistant"]
