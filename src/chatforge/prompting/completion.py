"""Token-budgeted chat assembly.

``ChatCompletion`` owns the remaining token budget and the root collection of
the prompt tree. Every operation that attaches content checks the budget first
and leaves both the budget and the tree untouched when it fails.
"""

import logging
from collections.abc import Iterable
from typing import Any, Union

from .collection import MessageCollection
from .exceptions import IdentifierNotFound, InvalidArgument, TokenBudgetExceeded
from .message import Message

logger = logging.getLogger(__name__)

Item = Union[Message, MessageCollection]

# Markers that keep their own turn when system messages are squashed
SQUASH_EXCLUDED_IDENTIFIERS = frozenset({"newMainChat", "newChat", "groupNudge"})


class ChatCompletion:
    """Prompt tree plus the token budget that bounds it."""

    def __init__(self) -> None:
        """Initialize an empty completion with a zero budget."""
        self.token_budget = 0
        self.messages = MessageCollection("root")
        self.logging_enabled = False
        self.overridden_prompts: list[str] = []

    def get_messages(self) -> MessageCollection:
        return self.messages

    def set_token_budget(self, context: int, response: int) -> None:
        """Set the budget to the context size minus the reply allowance.

        The result may be negative; only adding content is validated.
        """
        self.log(f"Prompt tokens: {context}")
        self.log(f"Completion tokens: {response}")

        self.token_budget = context - response

        self.log(f"Token budget: {self.token_budget}")

    def add(self, item: Item, position: int | None = None) -> "ChatCompletion":
        """Attach a message or collection to the root.

        Args:
            item: Message or collection to attach
            position: Root slot to occupy, replacing any occupant; appended
                when None or -1

        Raises:
            InvalidArgument: If the item is neither a message nor a collection
            TokenBudgetExceeded: If the item does not fit in the budget
        """
        self.validate_item(item)
        self.check_token_budget(item, item.identifier)

        if position is not None and position != -1:
            self.messages.place(item, position)
        else:
            self.messages.add(item)

        self.decrease_token_budget_by(item.get_tokens())

        self.log(f"Added {item.identifier}. Remaining tokens: {self.token_budget}")

        return self

    def insert_at_start(self, message: Message, identifier: str) -> None:
        self.insert(message, identifier, "start")

    def insert_at_end(self, message: Message, identifier: str) -> None:
        self.insert(message, identifier, "end")

    def insert(self, message: Message, identifier: str, position: str | int = "end") -> None:
        """Insert a message into a named top-level collection.

        Messages with neither content nor tool calls are ignored.

        Args:
            message: Message to insert
            identifier: Identifier of the target collection
            position: 'start', 'end' or an index within the target collection

        Raises:
            IdentifierNotFound: If no top-level item has the identifier
            TokenBudgetExceeded: If the message does not fit in the budget
        """
        self.validate_message(message)
        target = self._find_collection(identifier)
        self.check_token_budget(message, message.identifier)

        if not message.has_payload:
            self.log(f"Skipping empty message {message.identifier} for {identifier}")
            return

        if position == "start":
            target.insert(message, 0)
        elif position == "end":
            target.add(message)
        elif isinstance(position, int):
            target.insert(message, position)
        else:
            raise InvalidArgument(f"Unknown insert position: {position!r}")

        self.decrease_token_budget_by(message.get_tokens())

        self.log(f"Inserted {message.identifier} into {identifier}. Remaining tokens: {self.token_budget}")

    def remove_last_from(self, identifier: str) -> None:
        """Remove the last item of a named collection and give its tokens back."""
        target = self._find_collection(identifier)
        message = target.pop()

        if message is None:
            self.log(f"No message to remove from {identifier}")
            return

        self.increase_token_budget_by(message.get_tokens())

        self.log(f"Removed {message.identifier} from {identifier}. Remaining tokens: {self.token_budget}")

    def can_afford(self, item: Item) -> bool:
        return self.token_budget - item.get_tokens() >= 0

    def can_afford_all(self, items: Iterable[Item]) -> bool:
        return self.token_budget - sum(item.get_tokens() for item in items) >= 0

    def has(self, identifier: str) -> bool:
        return self.messages.has_item_with_identifier(identifier)

    def get_total_token_count(self) -> int:
        return self.messages.get_tokens()

    def get_token_breakdown(self) -> dict[str, int]:
        """Tokens used by each top-level item, keyed by identifier."""
        breakdown: dict[str, int] = {}
        for item in self.messages:
            breakdown[item.identifier] = breakdown.get(item.identifier, 0) + item.get_tokens()
        return breakdown

    def get_chat(self) -> list[dict[str, Any]]:
        """The assembled chat in wire format."""
        chat: list[dict[str, Any]] = []
        for item in self.messages:
            if isinstance(item, MessageCollection):
                chat.extend(item.get_chat())
            elif item.has_payload:
                chat.append(item.to_chat())
            else:
                self.log(f"Skipping empty message in collection: {item.identifier}")
        return chat

    async def squash_system_messages(self) -> None:
        """Merge consecutive unnamed system messages into one.

        The tree is flattened first. Empty system messages are dropped and the
        markers in ``SQUASH_EXCLUDED_IDENTIFIERS`` are never merged.
        """

        def should_squash(message: Message) -> bool:
            return (
                message.identifier not in SQUASH_EXCLUDED_IDENTIFIERS
                and message.role == "system"
                and not message.name
                and isinstance(message.content, str)
            )

        last_message: Message | None = None
        squashed: list[Message] = []

        for message in self.messages.flatten():
            if message.role == "system" and not message.content:
                continue

            if should_squash(message) and last_message is not None and should_squash(last_message):
                await last_message.set_content(f"{last_message.content}\n{message.content}")
            else:
                squashed.append(message)
                last_message = message

        self.messages = MessageCollection("root", *squashed)

    def log(self, output: str) -> None:
        """Log a diagnostic line when logging is enabled."""
        if self.logging_enabled:
            logger.info(f"[ChatCompletion] {output}")

    def enable_logging(self) -> None:
        self.logging_enabled = True

    def disable_logging(self) -> None:
        self.logging_enabled = False

    def validate_item(self, item: Any) -> None:
        if not isinstance(item, (Message, MessageCollection)):
            raise InvalidArgument("Argument must be an instance of Message or MessageCollection")

    def validate_message(self, message: Any) -> None:
        if not isinstance(message, Message):
            raise InvalidArgument("Argument must be an instance of Message")

    def check_token_budget(self, item: Item, identifier: str) -> None:
        """Raise when the item does not fit in the remaining budget."""
        if not self.can_afford(item):
            raise TokenBudgetExceeded(identifier)

    def reserve_budget(self, item: Item | int) -> None:
        """Take tokens out of the budget without attaching content."""
        tokens = item if isinstance(item, int) else item.get_tokens()
        self.decrease_token_budget_by(tokens)

    def free_budget(self, item: Item | int) -> None:
        """Give back tokens taken by :meth:`reserve_budget`."""
        tokens = item if isinstance(item, int) else item.get_tokens()
        self.increase_token_budget_by(tokens)

    def increase_token_budget_by(self, tokens: int) -> None:
        self.token_budget += tokens

    def decrease_token_budget_by(self, tokens: int) -> None:
        self.token_budget -= tokens

    def find_message_index(self, identifier: str) -> int:
        """Root slot of the item with the identifier.

        Raises:
            IdentifierNotFound: If no top-level item has the identifier
        """
        for index, item in enumerate(self.messages.collection):
            if item is not None and item.identifier == identifier:
                return index
        raise IdentifierNotFound(identifier)

    def _find_collection(self, identifier: str) -> MessageCollection:
        target = self.messages.collection[self.find_message_index(identifier)]
        if not isinstance(target, MessageCollection):
            raise InvalidArgument(f"{identifier} is not a collection")
        return target

    def set_overridden_prompts(self, identifiers: list[str]) -> None:
        self.overridden_prompts = list(identifiers)

    def get_overridden_prompts(self) -> list[str]:
        return self.overridden_prompts
