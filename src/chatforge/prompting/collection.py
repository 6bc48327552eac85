"""Named, ordered containers of messages."""

from collections.abc import Iterator
from typing import Any, Union

from .exceptions import InvalidArgument
from .message import Message

Item = Union[Message, "MessageCollection"]


def validate_item(item: Any) -> None:
    if not isinstance(item, (Message, MessageCollection)):
        raise InvalidArgument(
            "Only Message and MessageCollection instances can be added to MessageCollection"
        )


class MessageCollection:
    """Ordered tree node holding messages and nested collections.

    Children keep insertion order, which is the order they are emitted in.
    Slots may be left empty when items are placed at explicit positions; empty
    slots are skipped everywhere.
    """

    def __init__(self, identifier: str, *items: Item) -> None:
        for item in items:
            validate_item(item)
        self.identifier = identifier
        self.collection: list[Item | None] = list(items)

    @property
    def items(self) -> list[Item]:
        """Children without empty slots."""
        return [item for item in self.collection if item is not None]

    def add(self, item: Item) -> None:
        """Append an item."""
        validate_item(item)
        self.collection.append(item)

    def place(self, item: Item, position: int) -> None:
        """Put an item at a slot, replacing whatever occupied it."""
        validate_item(item)
        if position >= len(self.collection):
            self.collection.extend([None] * (position + 1 - len(self.collection)))
        self.collection[position] = item

    def insert(self, item: Item, position: int) -> None:
        validate_item(item)
        self.collection.insert(position, item)

    def pop(self) -> Item | None:
        """Remove and return the last item, or None when empty."""
        while self.collection:
            item = self.collection.pop()
            if item is not None:
                return item
        return None

    def get_item_by_identifier(self, identifier: str) -> Item | None:
        return next((item for item in self.items if item.identifier == identifier), None)

    def has_item_with_identifier(self, identifier: str) -> bool:
        return self.get_item_by_identifier(identifier) is not None

    def get_tokens(self) -> int:
        """Total tokens of every message below this collection."""
        return sum(item.get_tokens() for item in self.items)

    def flatten(self) -> list[Message]:
        """Depth-first list of the messages below this collection."""
        messages: list[Message] = []
        for item in self.items:
            if isinstance(item, MessageCollection):
                messages.extend(item.flatten())
            else:
                messages.append(item)
        return messages

    def get_chat(self) -> list[dict[str, Any]]:
        """Wire-format chat entries, skipping messages with nothing to send."""
        return [message.to_chat() for message in self.flatten() if message.has_payload]

    def __len__(self) -> int:
        return len(self.items)

    def __iter__(self) -> Iterator[Item]:
        return iter(self.items)

    def __repr__(self) -> str:
        return f"MessageCollection(identifier={self.identifier!r}, items={len(self)})"
